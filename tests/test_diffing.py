import pytest

from gcode.diffing import apply_diff, compute_diff, diff_ops, diff_stats, render_patch

PAIRS = [
    ("a\nb\nc", "a\nB\nc"),
    ("", "hello\nworld"),
    ("hello\nworld", ""),
    ("x\ny\n", "x\ny\nz\n"),
    ("one\ntwo\nthree\nfour", "zero\none\nthree\nfour\nfive"),
    ("same", "same"),
    ("  indented\n\tline", "  indented\n\tline2\n"),
]


@pytest.mark.parametrize("before,after", PAIRS)
def test_apply_of_compute_reproduces_after(before, after):
    assert apply_diff(before, compute_diff(before, after)) == after


@pytest.mark.parametrize("before,after", PAIRS)
def test_apply_with_patch_headers(before, after):
    assert apply_diff(before, render_patch(before, after, "f.txt")) == after


def test_compute_diff_prefixes():
    assert compute_diff("a\nb\nc", "a\nB\nc") == " a\n-b\n+B\n c"


def test_tie_prefers_removal_first():
    assert diff_ops("a", "b") == [("-", "a"), ("+", "b")]


def test_identical_text_is_all_context():
    diff = compute_diff("a\nb", "a\nb")
    assert diff == " a\n b"
    assert apply_diff("a\nb", diff) == "a\nb"


def test_context_mismatch_is_noop():
    assert apply_diff("x\ny", " a\n-b\n+B") == "x\ny"


def test_unmatched_deletion_does_not_advance():
    assert apply_diff("a\nc", " a\n-b\n+B\n c") == "a\nB\nc"


def test_uncovered_tail_is_kept():
    assert apply_diff("a\nb\nc\nd", " a\n-b\n+B") == "a\nB\nc\nd"


def test_trailing_newline_in_diff_text_ignored():
    assert apply_diff("a\nb", " a\n-b\n+c\n") == "a\nc"


def test_empty_diff_is_noop():
    assert apply_diff("keep\nme", "") == "keep\nme"


def test_git_preamble_skipped():
    diff = "diff --git a/f b/f\nindex 1234abc..5678def 100644\n--- a/f\n+++ b/f\n@@ -1,2 +1,2 @@\n a\n-b\n+c"
    assert apply_diff("a\nb", diff) == "a\nc"


def test_diff_stats():
    assert diff_stats(" a\n-b\n+B\n+C") == (2, 1)
