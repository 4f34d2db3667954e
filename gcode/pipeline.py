"""One project session: generate -> stage -> test -> apply, plus recall.

A Workbench owns the session's staged-change manager (pending set and local
edits). Use one Workbench per project session.
"""

from __future__ import annotations

import dataclasses
import time
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional

from . import config
from .budget import CallBudget, ensure_budget
from .debugger import DebugFix, ErrorCapture, debug_error, fix_to_staged_change
from .diffing import compute_diff, render_patch
from .errors import ApplyBlocked
from .files import load_snapshot, resolve_path, write_file_text
from .hardening import HardenResult, harden
from .model_providers import build_fast_provider, build_refine_provider
from .model_providers.base import ModelProvider
from .orchestrator import GenerationOrchestrator, GenerationRequest, GenerationResult
from .recall import RecallHit, RecallStore
from .staging import ApplyResult, StagedChange, StagedChangeManager, meets_pass_rate
from .utils import dbg, warn
from .verify import TestRunner, TestRunResult, run_and_parse


class Workbench:
    def __init__(
        self,
        root: Optional[Path] = None,
        fast: Optional[ModelProvider] = None,
        refine: Optional[ModelProvider] = None,
        recall: Optional[RecallStore] = None,
        test_runner: Optional[TestRunner] = None,
        budget: Optional[CallBudget] = None,
        files: Optional[Mapping[str, str]] = None,
        write_to_disk: bool = True,
        min_pass_rate: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.root = Path(root or config.ROOT).resolve()
        self.fast = fast if fast is not None else build_fast_provider()
        self.refine = refine if refine is not None else build_refine_provider()
        self.recall = recall
        self.test_runner = test_runner
        self.budget = ensure_budget(budget)
        self.min_pass_rate = config.APPLY_MIN_PASS_RATE if min_pass_rate is None else min_pass_rate
        self.sleep = sleep
        self.staging = StagedChangeManager(
            files=files,
            writer=self._write if write_to_disk else None,
            path_check=self._check_path if write_to_disk else None,
        )
        self.orchestrator = GenerationOrchestrator(
            self.fast, self.refine, budget=self.budget, sleep=sleep
        )
        self.last_test_result: Optional[TestRunResult] = None
        self._last_prompt = ""
        self._last_preset: Optional[str] = None

    def _write(self, path: str, content: str) -> None:
        write_file_text(self.root, path, content)

    def _check_path(self, path: str) -> None:
        resolve_path(self.root, path)

    @property
    def files(self) -> Dict[str, str]:
        return self.staging.files

    @property
    def pending(self) -> List[StagedChange]:
        return self.staging.pending

    def load(self, paths=None) -> Dict[str, str]:
        """Sync the session with what is on disk."""
        snapshot = load_snapshot(self.root, paths)
        self.staging.load(snapshot)
        return snapshot

    def edit(self, path: str, content: str) -> None:
        self.staging.update_file(path, content)

    def generate(self, request: GenerationRequest) -> GenerationResult:
        """Generate candidates and stage the ones that differ from the project."""
        if request.base_files is None:
            request = dataclasses.replace(request, base_files=self.staging.files)
        result = self.orchestrator.generate(request, budget=self.budget)
        base = request.base_files or {}
        result.diffs = {
            c.path: compute_diff(base.get(c.path, ""), c.content) for c in result.files
        }
        self.staging.stage_files(
            {c.path: c.content for c in result.files}, produced_by=result.produced_by.value
        )
        self._last_prompt = request.prompt
        self._last_preset = request.preset
        return result

    def harden(self, preset: Optional[str] = None) -> HardenResult:
        result = harden(
            self.staging.files, self.refine, preset=preset, budget=self.budget, sleep=self.sleep
        )
        self.staging.stage(result.changes)
        self._last_prompt = f"Production hardening ({preset or 'default'})"
        self._last_preset = preset
        return result

    def debug(
        self,
        capture: ErrorCapture,
        mode: Optional[str] = "chained",
        preset: Optional[str] = None,
        user_id: Optional[str] = None,
    ):
        """Stream of debug messages; see debugger.debug_error."""
        return debug_error(
            capture,
            self.fast,
            self.refine,
            mode=mode,
            preset=preset,
            recall=self.recall,
            user_id=user_id,
            budget=self.budget,
            sleep=self.sleep,
        )

    def stage_fix(self, fix: DebugFix) -> Optional[StagedChange]:
        change = fix_to_staged_change(fix, self.staging.files)
        if change is None:
            warn(f"workbench: fix for {fix.path} does not change the file")
            return None
        self.staging.stage([change])
        self._last_prompt = f"Fix for {fix.path}"
        return change

    def run_tests(self, selector: Optional[str] = None) -> TestRunResult:
        if self.test_runner is None:
            raise ApplyBlocked("no test runner configured")
        self.last_test_result = run_and_parse(self.test_runner, selector)
        dbg(
            f"workbench: tests {self.last_test_result.passed}/{self.last_test_result.total} "
            f"passed ({self.last_test_result.source})"
        )
        return self.last_test_result

    def apply(
        self, selector: Optional[str] = None, test_result: Optional[TestRunResult] = None
    ) -> ApplyResult:
        """Gate on the latest test run, then apply the pending set.

        Raises ApplyBlocked (pending set kept) when the pass rate is too low.
        """
        result = test_result if test_result is not None else self.run_tests(selector)
        self.last_test_result = result
        if not meets_pass_rate(result, self.min_pass_rate):
            raise ApplyBlocked(
                f"tests passed {result.passed}/{result.total}, need {self.min_pass_rate:.0%}",
                test_result=result,
            )
        pending = {c.path: c for c in self.staging.pending}
        outcome = self.staging.apply()
        if outcome.applied and self.recall is not None:
            patch = "\n".join(
                render_patch(pending[p].before, pending[p].after, p) for p in outcome.applied
            )
            self.recall.record_detached(
                "pattern",
                {"prompt": self._last_prompt, "diff": patch, "preset": self._last_preset},
            )
        return outcome

    def discard(self) -> int:
        return self.staging.discard()

    def similar(
        self,
        text: str,
        min_similarity: Optional[float] = None,
        limit: Optional[int] = None,
        record_type: Optional[str] = None,
    ) -> List[RecallHit]:
        if self.recall is None:
            return []
        return self.recall.query(text, min_similarity, limit, record_type)
