"""Per-request model-call counter, passed explicitly through the call chain."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Dict, Optional

from . import config
from .errors import BudgetExceeded
from .utils import dbg, warn


@dataclass
class CallBudget:
    limit: int = field(default_factory=lambda: config.MAX_MODEL_CALLS)
    calls: int = 0
    by_service: Dict[str, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def acquire(self, service: str) -> bool:
        """Count one call to service. False (and nothing counted) once the ceiling is hit."""
        with self._lock:
            if self.calls >= self.limit:
                warn(f"budget: call limit reached {self.calls}/{self.limit} ({service})")
                return False
            self.calls += 1
            self.by_service[service] = self.by_service.get(service, 0) + 1
            dbg(f"budget: {service} call #{self.calls}/{self.limit}")
            return True

    def require(self, service: str) -> None:
        if not self.acquire(service):
            raise BudgetExceeded(self.calls, self.limit, service)

    def snapshot(self) -> Dict[str, object]:
        return {"calls": self.calls, "limit": self.limit, "by_service": dict(self.by_service)}


def ensure_budget(budget: Optional[CallBudget]) -> CallBudget:
    return budget if budget is not None else CallBudget()
