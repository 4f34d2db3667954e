import json

from fakes import FakeProvider, FakeTestRunner, RecordingRecall
from gcode import cli
from gcode.pipeline import Workbench


def _patch_workbench(monkeypatch, tmp_path, fast_replies=(), refine_replies=()):
    def build(args):
        wb = Workbench(
            root=tmp_path,
            fast=FakeProvider(list(fast_replies)),
            refine=FakeProvider(list(refine_replies)),
            recall=RecordingRecall(),
            test_runner=FakeTestRunner("Tests: 1 passed, 1 total"),
        )
        wb.load()
        return wb

    monkeypatch.setattr(cli, "_build_workbench", build)


def test_parser_gen_options():
    args = cli.build_parser().parse_args(["gen", "Create a form", "--mode", "dual", "--preset", "scrappy", "--json"])
    assert (args.command, args.prompt, args.mode, args.preset, args.json) == ("gen", "Create a form", "dual", "scrappy", True)


def test_gen_prints_route_and_diff(monkeypatch, tmp_path, capsys):
    _patch_workbench(monkeypatch, tmp_path, fast_replies=['<file path="a.jsx">X</file>'])
    assert cli.main(["gen", "Create a form", "--preset", "fast"]) == 0
    out = capsys.readouterr().out
    assert "route: fast (speed_preset)" in out
    assert "+X" in out
    assert "1 change(s) staged" in out


def test_gen_apply_writes_file(monkeypatch, tmp_path, capsys):
    _patch_workbench(monkeypatch, tmp_path, fast_replies=['<file path="a.jsx">X</file>'])
    assert cli.main(["gen", "Create a form", "--apply"]) == 0
    assert (tmp_path / "a.jsx").read_text() == "X"
    assert "applied 1, skipped 0" in capsys.readouterr().out


def test_gen_json_output(monkeypatch, tmp_path, capsys):
    _patch_workbench(monkeypatch, tmp_path, fast_replies=['<file path="a.jsx">X</file>'])
    cli.main(["gen", "Create a form", "--json"])
    payload = json.loads(capsys.readouterr().out)
    assert payload["route"] == "fast"
    assert payload["files"][0]["path"] == "a.jsx"


def test_errors_print_one_line(monkeypatch, tmp_path, capsys):
    from gcode.errors import ProviderFailure

    _patch_workbench(monkeypatch, tmp_path, fast_replies=[ProviderFailure("fast: HTTP 503")])
    assert cli.main(["gen", "Create a form"]) == 1
    assert capsys.readouterr().err.strip().endswith("error: fast: HTTP 503")
