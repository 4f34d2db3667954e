import os
import re
import tempfile
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from . import config
from .utils import dbg

_ALLOWED_NAMES = {
    "dockerfile", "makefile", "procfile",
    ".gitignore", ".npmrc", ".nvmrc", ".prettierrc", ".eslintrc", ".babelrc", ".editorconfig",
}


def _norm_rel_path(p: str) -> str:
    p = (p or "").strip().replace("\\", "/")
    p = re.sub(r"^\./+", "", p)
    return Path(p).as_posix()


def is_allowed_file(path_like) -> bool:
    path_obj = Path(path_like)
    name = path_obj.name.lower()
    if name in _ALLOWED_NAMES:
        return True
    if name.startswith("."):
        return False
    return path_obj.suffix.lower().lstrip(".") in config.ALLOWED_EXTS


def resolve_path(root: Path, rel_path: str) -> Path:
    """Absolute path of rel_path under root; anything escaping root is refused."""
    root = Path(root).resolve()
    rel_path = _norm_rel_path(rel_path)
    if not rel_path or rel_path == ".":
        raise ValueError("empty path")
    target = (root / rel_path).resolve()
    try:
        target.relative_to(root)
    except ValueError:
        raise ValueError(f"outside root: target={target} root={root}")
    return target


def list_project_files(root: Path, max_files: Optional[int] = None) -> List[str]:
    root = Path(root).resolve()
    max_files = config.MAX_SNAPSHOT_FILES if max_files is None else max_files
    files: List[str] = []
    if not root.exists():
        dbg(f"files: root does not exist: {root}")
        return files
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in config.IGNORE_DIRS and not d.startswith("."))
        for fname in sorted(filenames):
            full = Path(dirpath, fname)
            if not is_allowed_file(full):
                continue
            files.append(full.relative_to(root).as_posix())
            if len(files) >= max_files:
                dbg(f"files: hit max files ({max_files})")
                return files
    return files


def load_snapshot(root: Path, paths: Optional[Iterable[str]] = None) -> Dict[str, str]:
    """path -> text for the given paths, or for every allowed file under root."""
    root = Path(root).resolve()
    rels = [_norm_rel_path(p) for p in paths] if paths is not None else list_project_files(root)
    snapshot: Dict[str, str] = {}
    for rel in rels:
        target = resolve_path(root, rel)
        if not target.is_file():
            continue
        if target.stat().st_size > config.MAX_FILE_BYTES:
            dbg(f"files: skipping large file {rel}")
            continue
        snapshot[rel] = target.read_text(encoding="utf-8", errors="replace")
    dbg(f"files: loaded {len(snapshot)} file(s) from {root}")
    return snapshot


def _write_atomic(target: Path, content: str) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=str(target.parent), prefix=target.name + ".tmp.")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as tmp:
            tmp.write(content)
            tmp.flush()
            os.fsync(tmp.fileno())
        tmp_path.replace(target)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()
    if target.read_text(encoding="utf-8") != content:
        raise IOError(f"write verification failed for {target}")


def write_file_text(root: Path, rel_path: str, content: str) -> Path:
    target = resolve_path(root, rel_path)
    _write_atomic(target, content)
    dbg(f"files: wrote {_norm_rel_path(rel_path)} ({len(content)} chars)")
    return target
