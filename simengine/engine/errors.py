"""
Simulation error taxonomy.

Every failure the engine surfaces is a SimulationError carrying a type,
a machine-readable code, a retryable flag and structured context. Foreign
exceptions are folded into the taxonomy with normalize_error().
"""

import asyncio
import re
from typing import Any, Optional

from simengine.models.enums import ErrorType, Severity
from simengine.models.results import SimulationFailure


class SimulationError(Exception):
    """Base class for all engine failures."""

    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.PROCESSING_ERROR,
        code: str = "GENERIC_ERROR",
        retryable: bool = False,
        context: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        self.code = code
        self.retryable = retryable
        self.context = context or {}

    def to_failure(self) -> SimulationFailure:
        """Structured reason for a failed simulation."""
        return SimulationFailure(
            error_type=self.error_type.value,
            code=self.code,
            message=self.message,
            retryable=self.retryable,
            context={k: _safe_value(v) for k, v in self.context.items()},
        )

    def to_dict(self) -> dict[str, Any]:
        return self.to_failure().model_dump()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class DataValidationError(SimulationError):
    """Request or dataset is malformed. Never retried."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Any = None,
        code: str = "VALIDATION_ERROR",
        context: Optional[dict[str, Any]] = None,
    ):
        ctx = {"field": field, "value": value}
        ctx.update(context or {})
        super().__init__(message, ErrorType.VALIDATION_ERROR, code, False, ctx)
        self.field = field
        self.value = value


class NoPredictionsError(DataValidationError):
    """The ensemble was given nothing to combine."""

    def __init__(self, message: str = "No predictions provided for ensemble"):
        super().__init__(message, field="predictions", code="NO_PREDICTIONS")


class InsufficientDataError(SimulationError):
    """Required inputs are missing. Never retried."""

    def __init__(
        self,
        message: str,
        required_fields: Optional[list[str]] = None,
        missing_fields: Optional[list[str]] = None,
        code: str = "INSUFFICIENT_DATA",
        context: Optional[dict[str, Any]] = None,
    ):
        ctx = {
            "required_fields": required_fields or [],
            "missing_fields": missing_fields or [],
        }
        ctx.update(context or {})
        super().__init__(message, ErrorType.INSUFFICIENT_DATA, code, False, ctx)
        self.required_fields = required_fields or []
        self.missing_fields = missing_fields or []


class InsufficientConfidenceError(SimulationError):
    """No prediction met the ensemble confidence threshold."""

    def __init__(self, threshold: float, total_predictions: int):
        super().__init__(
            "No valid predictions meet confidence threshold",
            ErrorType.INSUFFICIENT_DATA,
            "LOW_CONFIDENCE_PREDICTIONS",
            False,
            {"threshold": threshold, "total_predictions": total_predictions},
        )
        self.threshold = threshold
        self.total_predictions = total_predictions


class ModelAPIError(SimulationError):
    """A provider call failed. Retryable for 5xx or when no status is known."""

    def __init__(
        self,
        message: str,
        model_name: str,
        status_code: Optional[int] = None,
        context: Optional[dict[str, Any]] = None,
    ):
        ctx = {"model_name": model_name, "status_code": status_code}
        ctx.update(context or {})
        retryable = status_code is None or status_code >= 500
        super().__init__(message, ErrorType.API_ERROR, "MODEL_API_ERROR", retryable, ctx)
        self.model_name = model_name
        self.status_code = status_code


class RateLimitError(SimulationError):
    """A service asked us to slow down; honors its retry-after."""

    def __init__(self, message: str, service: str, retry_after: Optional[float] = None):
        super().__init__(
            message,
            ErrorType.RATE_LIMIT,
            "RATE_LIMIT_EXCEEDED",
            True,
            {"service": service, "retry_after": retry_after},
        )
        self.service = service
        self.retry_after = retry_after


class ProcessingTimeoutError(SimulationError):
    """An operation exceeded its time budget."""

    def __init__(self, message: str, timeout_seconds: float):
        super().__init__(
            message,
            ErrorType.TIMEOUT,
            "PROCESSING_TIMEOUT",
            True,
            {"timeout_seconds": timeout_seconds},
        )
        self.timeout_seconds = timeout_seconds


class TotalFailureError(SimulationError):
    """Primary and fallback paths both failed. Terminal."""

    def __init__(
        self,
        message: str,
        primary_error: Optional[BaseException] = None,
        fallback_error: Optional[BaseException] = None,
        context: Optional[dict[str, Any]] = None,
    ):
        ctx = {"primary_error": primary_error, "fallback_error": fallback_error}
        ctx.update(context or {})
        super().__init__(message, ErrorType.PROCESSING_ERROR, "TOTAL_FAILURE", False, ctx)
        self.primary_error = primary_error
        self.fallback_error = fallback_error


class QueueLimitExceededError(SimulationError):
    """Organization already has the maximum number of queued jobs."""

    def __init__(self, tier: str, max_queued: int):
        super().__init__(
            f"Queue limit exceeded for {tier} tier. Maximum {max_queued} queued jobs allowed.",
            ErrorType.RATE_LIMIT,
            "QUEUE_LIMIT_EXCEEDED",
            False,
            {"tier": tier, "max_queued": max_queued},
        )
        self.tier = tier
        self.max_queued = max_queued


class SimulationCancelledError(SimulationError):
    """A job was cancelled; raised at the next pipeline checkpoint."""

    def __init__(self, simulation_id: str):
        super().__init__(
            f"Simulation {simulation_id} was cancelled",
            ErrorType.PROCESSING_ERROR,
            "SIMULATION_CANCELLED",
            False,
            {"simulation_id": simulation_id},
        )
        self.simulation_id = simulation_id


class ServiceDegradedError(SimulationError):
    """Circuit is open for a service; callers short-circuit."""

    def __init__(self, service: str, error_count: int):
        super().__init__(
            f"Service {service} is degraded ({error_count} recent errors)",
            ErrorType.API_ERROR,
            "SERVICE_DEGRADED",
            False,
            {"service": service, "error_count": error_count},
        )
        self.service = service


# =============================================================================
# Classification helpers
# =============================================================================

_RETRYABLE_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (r"timeout", r"timed out", r"network", r"connection", r"\b50[023]\b")
]


def is_retryable_error(error: BaseException) -> bool:
    """Whether a retry could plausibly succeed."""
    if isinstance(error, SimulationError):
        return error.retryable
    if isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True
    message = str(error)
    return any(p.search(message) for p in _RETRYABLE_PATTERNS)


def get_error_severity(error: BaseException) -> Severity:
    if isinstance(error, RateLimitError):
        return Severity.LOW
    if isinstance(
        error,
        (InsufficientDataError, InsufficientConfidenceError, DataValidationError, ProcessingTimeoutError),
    ):
        return Severity.MEDIUM
    return Severity.HIGH


def normalize_error(error: BaseException, **context: Any) -> SimulationError:
    """
    Fold any exception into the SimulationError taxonomy.

    Args:
        error: Exception raised anywhere in the pipeline
        **context: Extra context attached to generic errors

    Returns:
        The error itself when already a SimulationError, otherwise a mapped one
    """
    if isinstance(error, SimulationError):
        return error
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return ProcessingTimeoutError(str(error) or "Operation timed out", 30.0)

    message = str(error) or type(error).__name__
    lowered = message.lower()
    if "timeout" in lowered or "timed out" in lowered:
        return ProcessingTimeoutError(message, 30.0)
    if "rate limit" in lowered or "429" in lowered:
        return RateLimitError(message, service="unknown")
    if "validation" in lowered or "invalid" in lowered:
        return DataValidationError(message)
    return SimulationError(
        message,
        ErrorType.PROCESSING_ERROR,
        "GENERIC_ERROR",
        is_retryable_error(error),
        dict(context),
    )


def _safe_value(value: Any) -> Any:
    """Render exceptions in context as strings so failures serialize."""
    if isinstance(value, BaseException):
        return f"{type(value).__name__}: {value}"
    return value
