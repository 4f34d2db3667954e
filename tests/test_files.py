from pathlib import Path

import pytest

from gcode.files import is_allowed_file, list_project_files, load_snapshot, resolve_path, write_file_text


def test_resolve_path_stays_under_root(tmp_path: Path):
    assert resolve_path(tmp_path, "./src/a.js") == (tmp_path / "src" / "a.js").resolve()
    with pytest.raises(ValueError):
        resolve_path(tmp_path, "../outside.js")
    with pytest.raises(ValueError):
        resolve_path(tmp_path, "")


def test_write_creates_parents_atomically(tmp_path: Path):
    target = write_file_text(tmp_path, "src/components/Button.jsx", "export const Button = 1;\n")
    assert target.read_text() == "export const Button = 1;\n"
    assert not [p for p in target.parent.iterdir() if ".tmp." in p.name]


def test_snapshot_skips_ignored_dirs_and_types(tmp_path: Path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "App.jsx").write_text("app")
    (tmp_path / "node_modules" / "x").mkdir(parents=True)
    (tmp_path / "node_modules" / "x" / "index.js").write_text("dep")
    (tmp_path / "logo.png").write_bytes(b"\x89PNG")
    (tmp_path / "package.json").write_text("{}")
    assert list_project_files(tmp_path) == ["package.json", "src/App.jsx"]
    assert load_snapshot(tmp_path) == {"package.json": "{}", "src/App.jsx": "app"}


def test_snapshot_of_explicit_paths(tmp_path: Path):
    (tmp_path / "a.js").write_text("a")
    assert load_snapshot(tmp_path, ["a.js", "missing.js"]) == {"a.js": "a"}


def test_allowed_names():
    assert is_allowed_file("Dockerfile")
    assert is_allowed_file(".gitignore")
    assert not is_allowed_file(".env")
    assert not is_allowed_file("image.png")


def test_failed_write_leaves_no_temp_file(tmp_path: Path, monkeypatch):
    from gcode import files

    def boom(fd):
        raise OSError("no space left on device")

    monkeypatch.setattr(files.os, "fsync", boom)
    with pytest.raises(OSError):
        write_file_text(tmp_path, "src/App.jsx", "x")
    assert list((tmp_path / "src").iterdir()) == []
