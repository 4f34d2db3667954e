"""Line-level diff generation and tolerant patch application.

compute_diff() aligns two texts with a longest-common-subsequence table and
emits one prefixed line per aligned line (' ' context, '-' before-only,
'+' after-only), with no headers or hunks. apply_diff() replays such a diff,
or a model-written unified diff, against a base text. Apply never raises: a
context mismatch returns the base unchanged.
"""

import re
from typing import List, Tuple

from .utils import dbg

_GIT_PREAMBLE_RE = re.compile(r"^(diff --git |index [0-9a-fA-F]+\.\.[0-9a-fA-F]+|\\ No newline)")


def _lcs_table(old: List[str], new: List[str]) -> List[List[int]]:
    m, n = len(old), len(new)
    dp = [[0] * (n + 1) for _ in range(m + 1)]
    for i in range(m - 1, -1, -1):
        row = dp[i]
        below = dp[i + 1]
        line = old[i]
        for j in range(n - 1, -1, -1):
            if line == new[j]:
                row[j] = below[j + 1] + 1
            else:
                row[j] = below[j] if below[j] >= row[j + 1] else row[j + 1]
    return dp


def diff_ops(before: str, after: str) -> List[Tuple[str, str]]:
    """Aligned (prefix, line) pairs. Ties consume the before line first."""
    old = before.split("\n")
    new = after.split("\n")
    dp = _lcs_table(old, new)
    m, n = len(old), len(new)
    i = j = 0
    ops: List[Tuple[str, str]] = []
    while i < m and j < n:
        if old[i] == new[j]:
            ops.append((" ", old[i]))
            i += 1
            j += 1
        elif dp[i + 1][j] >= dp[i][j + 1]:
            ops.append(("-", old[i]))
            i += 1
        else:
            ops.append(("+", new[j]))
            j += 1
    while i < m:
        ops.append(("-", old[i]))
        i += 1
    while j < n:
        ops.append(("+", new[j]))
        j += 1
    return ops


def compute_diff(before: str, after: str) -> str:
    return "\n".join(prefix + line for prefix, line in diff_ops(before or "", after or ""))


def render_patch(before: str, after: str, path: str) -> str:
    """compute_diff() wrapped in file headers and a single whole-file hunk header."""
    before = before or ""
    after = after or ""
    body = compute_diff(before, after)
    old_count = len(before.split("\n"))
    new_count = len(after.split("\n"))
    return f"--- a/{path}\n+++ b/{path}\n@@ -1,{old_count} +1,{new_count} @@\n{body}"


def diff_stats(diff: str) -> Tuple[int, int]:
    """(added, removed) line counts of a diff produced by compute_diff()."""
    added = removed = 0
    for line in _operation_lines(diff):
        if line.startswith("+"):
            added += 1
        elif line.startswith("-"):
            removed += 1
    return added, removed


def _operation_lines(diff_text: str) -> List[str]:
    if not diff_text:
        return []
    lines = diff_text.split("\n")
    if diff_text.endswith("\n"):
        lines.pop()
    ops: List[str] = []
    k = 0
    while k < len(lines):
        line = lines[k]
        if line.startswith("@@") or _GIT_PREAMBLE_RE.match(line):
            k += 1
            continue
        # "--- x" / "+++ y" is a file header only when a hunk header follows it.
        if (
            line.startswith("--- ")
            and k + 2 < len(lines)
            and lines[k + 1].startswith("+++ ")
            and lines[k + 2].startswith("@@")
        ):
            k += 2
            continue
        ops.append(line)
        k += 1
    return ops


def apply_diff(before: str, diff_text: str) -> str:
    """Replay diff_text against before.

    Context lines must match the cursor line or the whole apply is abandoned
    and before is returned. Deletions advance only on a match. Additions and
    unrecognized lines are emitted as-is. Base lines past the last operation
    are kept.
    """
    before = before or ""
    base = before.split("\n")
    out: List[str] = []
    i = 0
    for op in _operation_lines(diff_text):
        if op.startswith(" "):
            expected = op[1:]
            if i < len(base) and base[i] == expected:
                out.append(expected)
                i += 1
            else:
                dbg(f"apply_diff: context mismatch at base line {i + 1}; keeping original")
                return before
        elif op.startswith("-"):
            if i < len(base) and base[i] == op[1:]:
                i += 1
        elif op.startswith("+"):
            out.append(op[1:])
        else:
            out.append(op)
    out.extend(base[i:])
    return "\n".join(out)
