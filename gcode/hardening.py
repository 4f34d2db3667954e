"""Production hardening pass.

The refine model sees every current file and answers with one
``<diff path="...">`` block per touched file. Each diff is replayed
tolerantly against the current content; only real changes are staged.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, List, Mapping, Optional

from .budget import CallBudget, ensure_budget
from .diffing import apply_diff
from .model_providers.base import ModelProvider
from .orchestrator import call_with_retry
from .prompts import build_harden_system_prompt, build_harden_user_prompt
from .protocol import encode_files, parse_diff_blocks
from .router import Route
from .staging import StagedChange
from .utils import dbg, dbg_dump


@dataclass
class HardenResult:
    changes: List[StagedChange] = field(default_factory=list)
    # paths the model sent a diff for that left the content unchanged
    unchanged: List[str] = field(default_factory=list)
    raw: str = ""


def harden(
    files: Mapping[str, str],
    refine: ModelProvider,
    preset: Optional[str] = None,
    budget: Optional[CallBudget] = None,
    retries: Optional[int] = None,
    backoff: Optional[float] = None,
    sleep: Callable[[float], None] = time.sleep,
    timeout_s: Optional[int] = None,
) -> HardenResult:
    budget = ensure_budget(budget)
    budget.require("refine")
    system = build_harden_system_prompt(preset)
    user = build_harden_user_prompt(encode_files(dict(files)))
    raw = call_with_retry(
        lambda: refine.generate(system, user, timeout_s=timeout_s),
        "harden",
        retries,
        backoff,
        sleep,
    )
    dbg_dump("harden_raw", raw)

    result = HardenResult(raw=raw)
    for block in parse_diff_blocks(raw):
        before = files.get(block.path, "")
        after = apply_diff(before, block.content)
        if after == before:
            result.unchanged.append(block.path)
            continue
        result.changes.append(
            StagedChange(path=block.path, before=before, after=after, produced_by=Route.REFINE.value)
        )
    dbg(f"harden: {len(result.changes)} change(s), {len(result.unchanged)} no-op diff(s)")
    return result
