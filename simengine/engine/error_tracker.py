"""
Error Tracker — per-orchestrator error accounting and circuit breaking.

Counts failures per service inside a trailing window. A service with at
least `error_threshold` errors inside the window is considered degraded and
callers short-circuit until errors age out or the service is reset.
"""

import time
from collections import defaultdict, deque
from typing import Any, Callable, Optional

import structlog
from pydantic import BaseModel, Field

from simengine.config import get_settings
from simengine.engine.errors import SimulationError, get_error_severity, normalize_error
from simengine.models.enums import ErrorType, Severity

logger = structlog.get_logger()

# Recovery hints per error type
RECOVERY_HINTS = {
    ErrorType.TIMEOUT: "API timeout occurred. Consider using cached results or simplified model.",
    ErrorType.API_ERROR: "Primary model unavailable. Switching to remaining providers.",
    ErrorType.INSUFFICIENT_DATA: "Insufficient data for full simulation. Using basic trend projection.",
    ErrorType.RATE_LIMIT: "Rate limit exceeded. Retry after the advertised delay.",
    ErrorType.VALIDATION_ERROR: "Data validation failed. Correct the request and resubmit.",
    ErrorType.PROCESSING_ERROR: "Unexpected error occurred. Using simplified simulation approach.",
}


class FailureReport(BaseModel):
    """Outcome of handling one error."""

    error: Any = Field(description="Normalized SimulationError")
    service: str
    severity: Severity
    recovery_hint: str
    error_count: int
    circuit_open: bool


class ErrorTracker:
    """
    Tracks errors per service and decides when to short-circuit.

    One instance is owned by each orchestrator, so tests and separate
    orchestrators never share counters.

    Attributes:
        error_threshold: Errors inside the window that open the circuit
        window_seconds: Trailing window length
    """

    def __init__(
        self,
        error_threshold: Optional[int] = None,
        window_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        settings = get_settings()
        self.error_threshold = error_threshold or settings.circuit_error_threshold
        self.window_seconds = window_seconds or settings.circuit_window_seconds
        self._clock = clock
        self._errors: dict[str, deque[float]] = defaultdict(deque)
        self._totals: dict[str, int] = defaultdict(int)
        self.logger = structlog.get_logger()

    def record_error(self, service: str, error: Optional[BaseException] = None) -> int:
        """
        Record one failure for a service.

        Returns:
            Number of errors currently inside the window
        """
        now = self._clock()
        timestamps = self._errors[service]
        timestamps.append(now)
        self._totals[service] += 1
        self._evict(service, now)
        return len(timestamps)

    def handle_error(self, error: BaseException, service: str = "simulation", **context: Any) -> FailureReport:
        """
        Normalize, record and log an error.

        Args:
            error: Raised exception
            service: Service or component the error belongs to
            **context: Extra fields for the log line

        Returns:
            FailureReport with the normalized error and recovery hint
        """
        sim_error: SimulationError = normalize_error(error, **context)
        count = self.record_error(service, sim_error)
        circuit_open = count >= self.error_threshold
        severity = get_error_severity(sim_error)

        self.logger.error(
            "simulation_error",
            service=service,
            error_type=sim_error.error_type.value,
            code=sim_error.code,
            message=sim_error.message,
            retryable=sim_error.retryable,
            error_count=count,
            circuit_open=circuit_open,
            **context,
        )

        return FailureReport(
            error=sim_error,
            service=service,
            severity=severity,
            recovery_hint=RECOVERY_HINTS.get(sim_error.error_type, RECOVERY_HINTS[ErrorType.PROCESSING_ERROR]),
            error_count=count,
            circuit_open=circuit_open,
        )

    def should_circuit_break(self, service: str) -> bool:
        """True while the service has too many errors inside the window."""
        if service not in self._errors:
            return False
        self._evict(service, self._clock())
        return len(self._errors[service]) >= self.error_threshold

    def recent_error_count(self, service: str) -> int:
        if service not in self._errors:
            return 0
        self._evict(service, self._clock())
        return len(self._errors[service])

    def reset(self, service: Optional[str] = None) -> None:
        """Forget errors for one service, or for all services."""
        if service is None:
            self._errors.clear()
            self._totals.clear()
        else:
            self._errors.pop(service, None)
            self._totals.pop(service, None)
        self.logger.info("error_tracking_reset", service=service or "all")

    def error_counts(self) -> dict[str, int]:
        """Lifetime error totals per service."""
        return dict(self._totals)

    def _evict(self, service: str, now: float) -> None:
        cutoff = now - self.window_seconds
        timestamps = self._errors[service]
        while timestamps and timestamps[0] <= cutoff:
            timestamps.popleft()
