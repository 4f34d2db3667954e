"""Generation orchestrator: runs the routed model call(s) and parses the result.

Fast-only and refine-only requests make one call. Chained requests draft with
the fast model, show the parsed draft back to the refine model as a scaffold,
and fall back to the draft whenever the refine pass yields no file blocks.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, TypeVar

from . import config
from .budget import CallBudget, ensure_budget
from .errors import RateLimited
from .model_providers.base import ModelProvider, collect_stream
from .prompts import (
    build_refine_user_prompt,
    build_system_prompt,
    build_user_prompt,
    join_single_message,
)
from .protocol import ParsedOutput, encode_parsed, parse
from .router import Route, route_with_reason
from .utils import dbg, dbg_dump, warn

T = TypeVar("T")


@dataclass(frozen=True)
class GenerationRequest:
    prompt: str
    mode: Optional[str] = None
    preset: Optional[str] = None
    scraped: Optional[str] = None
    base_files: Optional[Mapping[str, str]] = None
    tests_spec: Optional[str] = None


@dataclass
class CandidateFile:
    path: str
    content: str
    produced_by: Route
    # None when the request carried no base snapshot
    differs_from_base: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "content": self.content,
            "produced_by": self.produced_by.value,
            "differs_from_base": self.differs_from_base,
        }


@dataclass
class GenerationResult:
    route: Route
    reason: str
    files: List[CandidateFile] = field(default_factory=list)
    explanation: str = ""
    tests: str = ""
    produced_by: Route = Route.FAST
    refine_fell_back: bool = False
    used_fallback_path: bool = False
    diffs: Dict[str, str] = field(default_factory=dict)
    budget: Dict[str, object] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "route": self.route.value,
            "reason": self.reason,
            "files": [f.to_dict() for f in self.files],
            "explanation": self.explanation,
            "tests": self.tests,
            "produced_by": self.produced_by.value,
            "refine_fell_back": self.refine_fell_back,
            "used_fallback_path": self.used_fallback_path,
            "diffs": dict(self.diffs),
            "budget": dict(self.budget),
        }


def call_with_retry(
    fn: Callable[[], T],
    label: str = "model",
    retries: Optional[int] = None,
    backoff: Optional[float] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call fn, retrying only RateLimited up to `retries` extra attempts.

    The wait is the provider's retry-after when it sent one, else
    backoff * (attempt + 1). The last RateLimited propagates.
    """
    retries = config.RATE_LIMIT_RETRIES if retries is None else max(0, int(retries))
    backoff = config.RATE_LIMIT_BACKOFF if backoff is None else float(backoff)
    attempt = 0
    while True:
        try:
            return fn()
        except RateLimited as exc:
            if attempt >= retries:
                warn(f"{label}: rate limited, giving up after {attempt + 1} attempt(s)")
                raise
            wait = exc.retry_after if exc.retry_after is not None else backoff * (attempt + 1)
            warn(f"{label}: rate limited, retry {attempt + 1}/{retries} in {wait:.1f}s")
            sleep(wait)
            attempt += 1


class GenerationOrchestrator:
    def __init__(
        self,
        fast: ModelProvider,
        refine: ModelProvider,
        budget: Optional[CallBudget] = None,
        retries: Optional[int] = None,
        backoff: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        timeout_s: Optional[int] = None,
        default_path: Optional[str] = None,
    ):
        self.fast = fast
        self.refine = refine
        self.budget = budget
        self.retries = retries
        self.backoff = backoff
        self.sleep = sleep
        self.timeout_s = timeout_s or config.GEN_TIMEOUT
        self.default_path = default_path

    def _retry(self, fn: Callable[[], T], label: str) -> T:
        return call_with_retry(fn, label, self.retries, self.backoff, self.sleep)

    def call_fast(self, system: str, user: str) -> str:
        """Fast model is a single-message streaming API: system text is inlined."""
        prompt = join_single_message(system, user)
        name = getattr(self.fast, "name", "fast")
        return self._retry(
            lambda: collect_stream(self.fast.stream(prompt, timeout_s=self.timeout_s), provider=name),
            "fast",
        )

    def call_refine(self, system: str, user: str) -> str:
        return self._retry(
            lambda: self.refine.generate(system, user, timeout_s=self.timeout_s),
            "refine",
        )

    def _parse(self, raw: str) -> ParsedOutput:
        return parse(raw, default_path=self.default_path)

    def generate(
        self, request: GenerationRequest, budget: Optional[CallBudget] = None
    ) -> GenerationResult:
        budget = ensure_budget(budget if budget is not None else self.budget)
        chosen, reason = route_with_reason(request.prompt, request.mode, request.preset)
        dbg(f"orchestrator: route={chosen.value} reason={reason}")

        base_paths = list(request.base_files.keys()) if request.base_files else []
        system = build_system_prompt(request.scraped, base_paths)
        user = build_user_prompt(request.prompt, request.tests_spec)

        produced_by = chosen
        fell_back = False
        if chosen is Route.REFINE:
            budget.require("refine")
            raw = self.call_refine(system, user)
            dbg_dump("refine_raw", raw)
            parsed = self._parse(raw)
        else:
            budget.require("fast")
            fast_raw = self.call_fast(system, user)
            dbg_dump("fast_raw", fast_raw)
            parsed = self._parse(fast_raw)
            produced_by = Route.FAST
            if chosen is Route.CHAINED:
                refined = self._refine_scaffold(parsed, request, system, budget)
                if refined is None:
                    fell_back = True
                else:
                    parsed = refined
                    produced_by = Route.REFINE

        result = GenerationResult(
            route=chosen,
            reason=reason,
            files=[
                CandidateFile(path=b.path, content=b.content, produced_by=produced_by)
                for b in parsed.files
            ],
            explanation=parsed.explanation,
            tests=parsed.tests,
            produced_by=produced_by,
            refine_fell_back=fell_back,
            used_fallback_path=parsed.used_fallback,
            budget=budget.snapshot(),
        )
        if request.base_files is not None:
            annotate_against_base(result.files, request.base_files)
        dbg(
            f"orchestrator: {len(result.files)} candidate(s) from {produced_by.value}"
            + (" (refine fell back)" if fell_back else "")
        )
        return result

    def _refine_scaffold(
        self,
        draft: ParsedOutput,
        request: GenerationRequest,
        system: str,
        budget: CallBudget,
    ) -> Optional[ParsedOutput]:
        """Refine the fast draft. None means keep the draft."""
        if not budget.acquire("refine"):
            warn("orchestrator: budget exhausted before refine pass, keeping fast draft")
            return None
        scaffold = encode_parsed(draft)
        raw = self.call_refine(system, build_refine_user_prompt(scaffold, request.prompt))
        dbg_dump("refine_raw", raw)
        refined = self._parse(raw)
        if not refined.has_file_blocks:
            warn("orchestrator: refine pass produced no file blocks, keeping fast draft")
            return None
        return refined


def annotate_against_base(files: List[CandidateFile], base_files: Mapping[str, str]) -> None:
    for cand in files:
        cand.differs_from_base = cand.content != base_files.get(cand.path, "")
