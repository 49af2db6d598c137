"""Combo engine error taxonomy."""
from typing import Optional


class ComboEngineError(Exception):
    """Base class for combo engine errors."""
    pass


class InvalidArgumentsError(ComboEngineError):
    """Raised synchronously for bad input, before any work begins. Never retried."""
    pass


class UpstreamError(ComboEngineError):
    """Raised when the search endpoint cannot produce a result."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class UpstreamTransientError(UpstreamError):
    """429, 5xx, timeouts and transport errors. Retried per policy."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message, status_code)
        self.retry_after = retry_after


class UpstreamPermanentError(UpstreamError):
    """4xx other than 429 and malformed responses. Not retried."""
    pass


class CircuitOpenError(ComboEngineError):
    """Raised when the circuit breaker rejects a request without attempting it."""
    pass


class CacheWriteError(ComboEngineError):
    """Raised when a ranking cache write fails. Logged, never fails a fetch."""
    pass
