import os
import sys
import time

from . import config


def _append_log(line: str) -> None:
    try:
        with open(config.DEBUG_LOG_PATH, "a") as f:
            f.write(line + "\n")
    except Exception:
        pass


def dbg(message: str):
    if not config.DEBUG:
        return
    ts = time.strftime("%Y-%m-%d %H:%M:%S")
    line = f"[debug] [{ts} pid={os.getpid()}] {message}"
    print(line, file=sys.stderr)
    _append_log(line)


def warn(message: str):
    """Always visible: contained failures (recall writes, fallbacks, retries)."""
    ts = time.strftime("%Y-%m-%d %H:%M:%S")
    line = f"[warn] [{ts} pid={os.getpid()}] {message}"
    print(line, file=sys.stderr)
    if config.DEBUG:
        _append_log(line)


def dbg_dump(label: str, text: str):
    """Append a model reply to the debug log.

    Long replies keep their head and tail (file tags open and close there);
    GCODE_DEBUG_DUMP_VERBOSE writes them whole.
    """
    if not config.DEBUG:
        return
    content = text or ""
    limit = config.DEBUG_DUMP_MAX_CHARS
    if config.DEBUG_DUMP_VERBOSE or len(content) <= limit:
        body = content
    else:
        half = max(1, limit // 2)
        body = f"{content[:half]}\n[... {len(content) - 2 * half} chars elided ...]\n{content[-half:]}"
    _append_log(f"[dump] {label} len={len(content)}\n{body}")
