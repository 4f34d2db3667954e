"""Pending change set and local-edit tracking for one project session.

The manager owns the in-memory project state (path -> text), the set of paths
the user edited directly since the last sync, and at most one pending set of
staged changes. Staging replaces the pending set; apply and discard consume it
as one batch.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional

from . import config
from .diffing import compute_diff
from .utils import dbg, warn
from .verify import TestRunResult

Writer = Callable[[str, str], None]
PathCheck = Callable[[str], object]


@dataclass(frozen=True)
class StagedChange:
    path: str
    before: str
    after: str
    produced_by: str = ""

    @property
    def diff(self) -> str:
        return compute_diff(self.before, self.after)

    def to_dict(self) -> Dict[str, str]:
        return {
            "path": self.path,
            "before": self.before,
            "after": self.after,
            "produced_by": self.produced_by,
            "diff": self.diff,
        }


@dataclass
class ApplyResult:
    applied: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def applied_count(self) -> int:
        return len(self.applied)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)

    @property
    def failed_count(self) -> int:
        return len(self.failed)

    def to_dict(self) -> Dict[str, object]:
        return {
            "applied_count": self.applied_count,
            "skipped_count": self.skipped_count,
            "failed_count": self.failed_count,
            "applied": list(self.applied),
            "skipped": list(self.skipped),
            "failed": list(self.failed),
        }


def meets_pass_rate(result: Optional[TestRunResult], threshold: Optional[float] = None) -> bool:
    """Apply gate: the latest run must have tests and pass at or above threshold."""
    if result is None or result.total <= 0:
        return False
    threshold = config.APPLY_MIN_PASS_RATE if threshold is None else float(threshold)
    return result.pass_rate >= threshold


class StagedChangeManager:
    """Empty -> Staged -> (Applied | Discarded) -> Empty.

    Concurrent stage() calls race and the later one wins. The lock only keeps
    each operation internally consistent.
    """

    def __init__(
        self,
        files: Optional[Mapping[str, str]] = None,
        writer: Optional[Writer] = None,
        path_check: Optional[PathCheck] = None,
    ):
        self._lock = threading.RLock()
        self._files: Dict[str, str] = dict(files or {})
        self._local_edits: set = set()
        self._pending: List[StagedChange] = []
        self._writer = writer
        self._path_check = path_check

    @property
    def state(self) -> str:
        return "staged" if self._pending else "empty"

    @property
    def files(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._files)

    @property
    def local_edits(self) -> FrozenSet[str]:
        with self._lock:
            return frozenset(self._local_edits)

    @property
    def pending(self) -> List[StagedChange]:
        with self._lock:
            return list(self._pending)

    def get(self, path: str, default: str = "") -> str:
        with self._lock:
            return self._files.get(path, default)

    def load(self, files: Mapping[str, str]) -> None:
        """Sync with a fresh project snapshot: new baseline, no edits, nothing pending."""
        with self._lock:
            self._files = dict(files)
            self._local_edits.clear()
            self._pending = []
        dbg(f"staging: loaded {len(files)} file(s)")

    def update_file(self, path: str, content: str) -> None:
        """Direct user edit in the working copy."""
        with self._lock:
            self._files[path] = content
            self._local_edits.add(path)

    def rename_path(self, old: str, new: str) -> None:
        with self._lock:
            if old not in self._files:
                raise KeyError(old)
            if new in self._files:
                raise FileExistsError(new)
            self._files[new] = self._files.pop(old)
            if old in self._local_edits:
                self._local_edits.discard(old)
            self._local_edits.add(new)

    def stage(self, changes: Iterable[StagedChange]) -> List[StagedChange]:
        """Replace the pending set. No merge with an earlier round."""
        staged = list(changes)
        with self._lock:
            replaced = len(self._pending)
            self._pending = staged
        if replaced:
            dbg(f"staging: replaced {replaced} pending change(s) with {len(staged)}")
        else:
            dbg(f"staging: staged {len(staged)} change(s)")
        return staged

    def stage_files(self, files: Mapping[str, str], produced_by: str = "") -> List[StagedChange]:
        """Stage every candidate whose content differs from the current project state."""
        with self._lock:
            changes = [
                StagedChange(path=p, before=self._files.get(p, ""), after=c, produced_by=produced_by)
                for p, c in files.items()
                if self._files.get(p, "") != c
            ]
            return self.stage(changes)

    def apply(self) -> ApplyResult:
        """Write every pending change not shadowed by a local edit.

        Paths are checked before the first write; a path the checker refuses
        or the writer fails on is reported in `failed` and left untouched in
        memory. The pending set is always consumed whole.
        """
        result = ApplyResult()
        with self._lock:
            pending, self._pending = self._pending, []
            writable: List[StagedChange] = []
            for change in pending:
                if change.path in self._local_edits:
                    result.skipped.append(change.path)
                    continue
                if self._path_check is not None:
                    try:
                        self._path_check(change.path)
                    except ValueError as exc:
                        warn(f"staging: refusing {change.path!r}: {exc}")
                        result.failed.append(change.path)
                        continue
                writable.append(change)
            for change in writable:
                if self._writer is not None:
                    try:
                        self._writer(change.path, change.after)
                    except (OSError, ValueError) as exc:
                        warn(f"staging: write failed for {change.path}: {exc}")
                        result.failed.append(change.path)
                        continue
                self._files[change.path] = change.after
                self._local_edits.discard(change.path)
                result.applied.append(change.path)
        dbg(
            f"staging: applied={result.applied_count} skipped={result.skipped_count} "
            f"failed={result.failed_count}"
        )
        return result

    def discard(self) -> int:
        with self._lock:
            count = len(self._pending)
            self._pending = []
        dbg(f"staging: discarded {count} change(s)")
        return count
