"""Model-facing output protocol.

Models answer with zero or more ``<file path="...">...</file>`` blocks, at most
one ``<explanation>`` block and at most one ``<tests>`` block. The hardening
pass uses the same framing with ``<diff path="...">`` blocks.

Blocks are located with a small forward scanner instead of one large regex so
adversarial model output cannot trigger catastrophic backtracking. Malformed or
unclosed markers are skipped; parsing never raises.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from . import config
from .utils import dbg


@dataclass
class FileBlock:
    path: str
    content: str


@dataclass
class ParsedOutput:
    files: List[FileBlock] = field(default_factory=list)
    explanation: str = ""
    tests: str = ""
    # True when no <file> block was found and the whole reply became one file
    used_fallback: bool = False

    @property
    def has_file_blocks(self) -> bool:
        return bool(self.files) and not self.used_fallback


def _normalize(text: str) -> str:
    return (text or "").replace("\r\n", "\n").replace("\r", "\n")


def _read_path_attr(text: str, pos: int) -> Optional[Tuple[str, int]]:
    """Read ` path="..."` + `>` starting right after the tag name.

    Returns (path, index just past '>') or None when the marker is malformed.
    """
    n = len(text)
    if pos >= n or not text[pos].isspace():
        return None
    while pos < n and text[pos].isspace():
        pos += 1
    if not text.startswith("path", pos):
        return None
    pos += 4
    while pos < n and text[pos] in " \t":
        pos += 1
    if pos >= n or text[pos] != "=":
        return None
    pos += 1
    while pos < n and text[pos] in " \t":
        pos += 1
    if pos >= n or text[pos] not in "\"'":
        return None
    quote = text[pos]
    pos += 1
    start = pos
    while pos < n and text[pos] != quote:
        if text[pos] == "\n":
            return None
        pos += 1
    if pos >= n:
        return None
    path = text[start:pos].strip()
    pos += 1
    while pos < n and text[pos] in " \t":
        pos += 1
    if pos >= n or text[pos] != ">":
        return None
    return path, pos + 1


def scan_path_blocks(raw: str, tag: str) -> List[Tuple[str, str]]:
    """Return (path, untrimmed body) for every well-formed ``<tag path="...">`` block."""
    text = _normalize(raw)
    open_prefix = f"<{tag}"
    close_tag = f"</{tag}>"
    blocks: List[Tuple[str, str]] = []
    pos = 0
    while True:
        start = text.find(open_prefix, pos)
        if start < 0:
            break
        attr = _read_path_attr(text, start + len(open_prefix))
        if attr is None:
            pos = start + len(open_prefix)
            continue
        path, body_start = attr
        end = text.find(close_tag, body_start)
        if end < 0:
            dbg(f"protocol: unclosed <{tag}> for path={path!r}")
            break
        # A second opener before the close means the first one was never closed.
        reopen = text.find(open_prefix, body_start, end)
        if reopen >= 0 and _read_path_attr(text, reopen + len(open_prefix)) is not None:
            dbg(f"protocol: dropping unclosed <{tag}> for path={path!r}")
            pos = reopen
            continue
        if path:
            blocks.append((path, text[body_start:end]))
        pos = end + len(close_tag)
    return blocks


def scan_section(raw: str, tag: str) -> str:
    """Trimmed body of the first ``<tag>...</tag>`` pair, or ''."""
    text = _normalize(raw)
    open_tag = f"<{tag}>"
    close_tag = f"</{tag}>"
    start = text.find(open_tag)
    if start < 0:
        return ""
    body_start = start + len(open_tag)
    end = text.find(close_tag, body_start)
    if end < 0:
        return ""
    return text[body_start:end].strip()


def parse(raw: str, default_path: Optional[str] = None) -> ParsedOutput:
    """Parse a raw model reply into file blocks, explanation and tests."""
    files = [FileBlock(path=p, content=body.strip()) for p, body in scan_path_blocks(raw, "file")]
    out = ParsedOutput(
        files=files,
        explanation=scan_section(raw, "explanation"),
        tests=scan_section(raw, "tests"),
    )
    trimmed = _normalize(raw).strip()
    if not files and trimmed:
        out.files = [FileBlock(path=default_path or config.DEFAULT_FILE_PATH, content=trimmed)]
        out.used_fallback = True
        dbg(f"protocol: no <file> blocks, wrapped reply as {out.files[0].path}")
    elif files:
        dbg(f"protocol: extracted {len(files)} file block(s)")
    return out


def _check_path(path: str) -> str:
    if not path or '"' in path or "\n" in path:
        raise ValueError(f"path cannot be encoded in a file tag: {path!r}")
    return path


def encode(files: Iterable[FileBlock], explanation: str = "", tests: str = "") -> str:
    """Serialize blocks in exactly the form parse() reads back."""
    parts = [f'<file path="{_check_path(f.path)}">\n{f.content}\n</file>' for f in files]
    if explanation:
        parts.append(f"<explanation>\n{explanation}\n</explanation>")
    if tests:
        parts.append(f"<tests>\n{tests}\n</tests>")
    return "\n".join(parts)


def encode_parsed(parsed: ParsedOutput) -> str:
    return encode(parsed.files, parsed.explanation, parsed.tests)


def encode_files(files: Dict[str, str]) -> str:
    return encode(FileBlock(path=p, content=c) for p, c in files.items())


def parse_diff_blocks(raw: str) -> List[FileBlock]:
    """Extract ``<diff path="...">`` blocks.

    Only blank lines are trimmed at the block edges: a leading space is a
    context-line prefix and must survive.
    """
    out: List[FileBlock] = []
    for path, body in scan_path_blocks(raw, "diff"):
        delta = body.strip("\n")
        if delta.strip():
            out.append(FileBlock(path=path, content=delta))
    return out
