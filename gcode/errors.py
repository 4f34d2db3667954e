"""Failure taxonomy shared by providers, the orchestrator and the workbench."""

from __future__ import annotations

from typing import Optional


class GcodeError(Exception):
    pass


class ProviderFailure(GcodeError):
    """Generic model/embedding provider failure (transport, HTTP status, bad payload)."""

    def __init__(self, message: str, provider: str = ""):
        super().__init__(message)
        self.message = message
        self.provider = provider


class RateLimited(ProviderFailure):
    """Provider answered 429. retry_after is in seconds when the provider sent one."""

    def __init__(self, message: str, retry_after: Optional[float] = None, provider: str = ""):
        super().__init__(message, provider=provider)
        self.retry_after = retry_after


class StreamInterrupted(ProviderFailure):
    """A streamed response ended before its completion signal."""


class BudgetExceeded(GcodeError):
    def __init__(self, calls: int, limit: int, service: str = ""):
        super().__init__(f"model call limit reached ({calls}/{limit}) for {service or 'model'}")
        self.calls = calls
        self.limit = limit
        self.service = service


class StorageFailure(GcodeError):
    """Recall-store embedding or persistence failure. Never escapes record()."""


class ApplyBlocked(GcodeError):
    """The latest test run is below the pass-rate gate; staged changes stay pending."""

    def __init__(self, message: str, test_result=None):
        super().__init__(message)
        self.test_result = test_result
