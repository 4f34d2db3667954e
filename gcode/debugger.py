"""Debug pipeline: a captured runtime error becomes explained fix options.

debug_error() is a generator of plain dict messages, in order:

    {"type": "status", "message": ...}          (one or two)
    {"type": "explanation", "explanation": ...}
    {"type": "fix", "index": i, "fix": {...}}   (one per valid fix)
    {"type": "complete", "count": n}

or a single {"type": "error", "error": ...} that ends the stream. Any
ordered channel (SSE, a queue, a CLI printer) can carry the messages.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

from . import config
from .budget import CallBudget, ensure_budget
from .diffing import apply_diff
from .errors import GcodeError, ProviderFailure, RateLimited
from .model_providers.base import ModelProvider, collect_stream
from .orchestrator import call_with_retry
from .prompts import (
    DEBUG_SYSTEM_PROMPT,
    DEBUG_TRADEOFF_SYSTEM_PROMPT,
    build_debug_tradeoff_prompt,
    build_debug_user_prompt,
    join_single_message,
)
from .recall import RecallStore
from .router import Route, normalize_mode
from .staging import StagedChange
from .utils import dbg, dbg_dump, warn

_ASYNC_MARKERS = ("async", "Promise", "await", "then(", "catch(")
_LONG_STACK_LINES = 10


@dataclass
class ErrorCapture:
    stack: str
    file: str = ""
    message: str = ""

    @property
    def error_text(self) -> str:
        return self.stack or self.message

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ErrorCapture":
        if not isinstance(data, Mapping):
            raise ValueError("error capture must be an object")
        stack = str(data.get("stack") or "")
        if not stack:
            raise ValueError("error capture requires a stack")
        return cls(stack=stack, file=str(data.get("file") or ""), message=str(data.get("message") or ""))


@dataclass
class DebugFix:
    explanation: str
    tradeoffs: List[str] = field(default_factory=list)
    path: str = ""
    delta: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "explanation": self.explanation,
            "tradeoffs": list(self.tradeoffs),
            "diff": {"path": self.path, "delta": self.delta},
        }


def is_complex_error(capture: ErrorCapture) -> bool:
    """Async-looking or long stacks get a second tradeoff pass."""
    stack = capture.stack or ""
    if any(marker in stack for marker in _ASYNC_MARKERS):
        return True
    return len(stack.split("\n")) > _LONG_STACK_LINES


def parse_json_response(text: str) -> Optional[Dict[str, Any]]:
    """A JSON object from a reply that may wrap it in prose or a fenced block."""
    text = (text or "").strip()
    if not text:
        return None
    try:
        obj = json.loads(text)
    except json.JSONDecodeError:
        start = text.find("{")
        end = text.rfind("}")
        if start < 0 or end <= start:
            return None
        try:
            obj = json.loads(text[start : end + 1])
        except json.JSONDecodeError:
            return None
    return obj if isinstance(obj, dict) else None


def validate_fix(raw: Any) -> Optional[DebugFix]:
    if not isinstance(raw, dict):
        return None
    diff = raw.get("diff")
    tradeoffs = raw.get("tradeoffs")
    if not raw.get("explanation") or not isinstance(tradeoffs, list) or not isinstance(diff, dict):
        return None
    if not diff.get("path") or not diff.get("delta"):
        return None
    return DebugFix(
        explanation=str(raw["explanation"]),
        tradeoffs=[str(t) for t in tradeoffs],
        path=str(diff["path"]),
        delta=str(diff["delta"]),
    )


def fix_to_staged_change(fix: DebugFix, files: Mapping[str, str]) -> Optional[StagedChange]:
    """Replay the fix's diff against the current file. None when it changes nothing."""
    before = files.get(fix.path, "")
    after = apply_diff(before, fix.delta)
    if after == before:
        return None
    return StagedChange(path=fix.path, before=before, after=after, produced_by="debug")


def correction_content(fix: DebugFix, capture: ErrorCapture, preset: Optional[str]) -> Dict[str, Any]:
    return {
        "prompt": f"Fix for error in {capture.file or 'unknown'}",
        "diff": fix.delta,
        "preset": preset,
        "explanation": fix.explanation,
        "tradeoffs": list(fix.tradeoffs),
        "error": capture.error_text,
    }


def _refine_tradeoffs(
    refine: ModelProvider,
    fast_text: str,
    capture: ErrorCapture,
    preset: Optional[str],
    budget: CallBudget,
    timeout_s: Optional[int],
) -> Optional[Dict[str, Any]]:
    if not budget.acquire("refine"):
        warn("debug: budget exhausted, skipping tradeoff refinement")
        return None
    try:
        text = refine.generate(
            DEBUG_TRADEOFF_SYSTEM_PROMPT,
            build_debug_tradeoff_prompt(fast_text, capture.error_text, preset),
            timeout_s=timeout_s,
        )
    except ProviderFailure as exc:
        warn(f"debug: tradeoff refinement failed ({exc}), using fast analysis")
        return None
    dbg_dump("debug_refine_raw", text)
    parsed = parse_json_response(text)
    fixes = parsed.get("fixes") if parsed else None
    if isinstance(fixes, list) and fixes:
        return parsed
    dbg("debug: tradeoff refinement unusable, using fast analysis")
    return None


def debug_error(
    capture: ErrorCapture,
    fast: ModelProvider,
    refine: Optional[ModelProvider] = None,
    mode: Optional[str] = "chained",
    preset: Optional[str] = None,
    recall: Optional[RecallStore] = None,
    user_id: Optional[str] = None,
    budget: Optional[CallBudget] = None,
    retries: Optional[int] = None,
    backoff: Optional[float] = None,
    sleep: Callable[[float], None] = time.sleep,
    timeout_s: Optional[int] = None,
) -> Iterator[Dict[str, Any]]:
    budget = ensure_budget(budget)
    timeout_s = timeout_s or config.GEN_TIMEOUT
    fast_name = getattr(fast, "name", "fast")
    try:
        yield {"type": "status", "message": f"Analyzing error with {fast_name}..."}
        budget.require("fast")
        prompt = join_single_message(
            DEBUG_SYSTEM_PROMPT, "USER:\n" + build_debug_user_prompt(capture.stack, capture.file, preset)
        )
        try:
            fast_text = call_with_retry(
                lambda: collect_stream(fast.stream(prompt, timeout_s=timeout_s), provider=fast_name),
                "debug",
                retries,
                backoff,
                sleep,
            )
        except RateLimited:
            yield {"type": "error", "error": "Rate limit exceeded. Please try again later."}
            return
        dbg_dump("debug_fast_raw", fast_text)
        parsed = parse_json_response(fast_text)

        chained = normalize_mode(mode) is Route.CHAINED
        if chained and refine is not None and parsed is not None and is_complex_error(capture):
            refine_name = getattr(refine, "name", "refine")
            yield {"type": "status", "message": f"Refining tradeoffs with {refine_name}..."}
            refined = _refine_tradeoffs(refine, fast_text, capture, preset, budget, timeout_s)
            if refined is not None:
                parsed = refined

        if parsed is None or not isinstance(parsed.get("fixes"), list):
            yield {"type": "error", "error": "Failed to parse fixes from model response"}
            return

        yield {
            "type": "explanation",
            "explanation": str(parsed.get("explanation") or "No explanation provided"),
        }
        raw_fixes = parsed["fixes"]
        for i, raw_fix in enumerate(raw_fixes):
            fix = validate_fix(raw_fix)
            if fix is None:
                warn(f"debug: skipping invalid fix at index {i}")
                continue
            if recall is not None:
                recall.record_detached("correction", correction_content(fix, capture, preset), user_id)
            yield {"type": "fix", "index": i, "fix": fix.to_dict()}
        yield {"type": "complete", "count": len(raw_fixes)}
    except GcodeError as exc:
        yield {"type": "error", "error": str(exc) or "Internal error"}
