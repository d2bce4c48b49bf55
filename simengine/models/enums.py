"""
Enumeration types for the campaign simulation engine.

All enums inherit from str so they serialize to plain JSON values and
compare equal to their raw string form.
"""

from enum import Enum


class Granularity(str, Enum):
    """Trajectory period length."""

    DAILY = "daily"
    WEEKLY = "weekly"


class MetricType(str, Enum):
    """
    Campaign metrics a simulation can request.

    Providers may emit additional metrics (roi, conversions per channel);
    these are the ones accepted in a request.
    """

    CTR = "ctr"
    IMPRESSIONS = "impressions"
    ENGAGEMENT = "engagement"
    REACH = "reach"
    CONVERSIONS = "conversions"
    CPC = "cpc"
    CPM = "cpm"


class ScenarioType(str, Enum):
    """Scenario variants derived from the merged trajectory."""

    OPTIMISTIC = "optimistic"
    REALISTIC = "realistic"
    PESSIMISTIC = "pessimistic"
    CUSTOM = "custom"


class AdjustmentFactor(str, Enum):
    """User-specified scenario levers."""

    BUDGET = "budget"
    COMPETITION = "competition"
    SEASONALITY = "seasonality"
    CREATIVE_FATIGUE = "creative_fatigue"


class SimulationStatus(str, Enum):
    """
    Simulation lifecycle states.

    queued -> processing -> completed | failed | cancelled
    """

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            SimulationStatus.COMPLETED,
            SimulationStatus.FAILED,
            SimulationStatus.CANCELLED,
        )


class RiskType(str, Enum):
    """Adverse patterns flagged by the risk detector."""

    PERFORMANCE_DIP = "performance_dip"
    AUDIENCE_FATIGUE = "audience_fatigue"
    COMPETITOR_THREAT = "competitor_threat"
    BUDGET_OVERRUN = "budget_overrun"


class Severity(str, Enum):
    """Risk alert severity, ordered low to critical."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return {"low": 1, "medium": 2, "high": 3, "critical": 4}[self.value]


class RecommendationType(str, Enum):
    """Pivot recommendation categories."""

    BUDGET_REALLOCATION = "budget_reallocation"
    CREATIVE_REFRESH = "creative_refresh"
    AUDIENCE_EXPANSION = "audience_expansion"
    CHANNEL_SHIFT = "channel_shift"
    TIMING_ADJUSTMENT = "timing_adjustment"


class EffortLevel(str, Enum):
    """Qualitative implementation effort."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class WeightingStrategy(str, Enum):
    """Ensemble weighting strategies."""

    STATIC = "static"
    CONFIDENCE_BASED = "confidence_based"
    PERFORMANCE_BASED = "performance_based"
    DYNAMIC = "dynamic"


class SubscriptionTier(str, Enum):
    """Organization subscription level controlling queue admission."""

    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class ProviderFamily(str, Enum):
    """Prediction provider families with distinct result shapes."""

    LANGUAGE_MODEL = "language_model"
    TIME_SERIES = "time_series"


class ErrorType(str, Enum):
    """Failure classes carried by SimulationError."""

    VALIDATION_ERROR = "validation_error"
    API_ERROR = "api_error"
    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    INSUFFICIENT_DATA = "insufficient_data"
    PROCESSING_ERROR = "processing_error"


class PerformanceStatus(str, Enum):
    """Accuracy band of an evaluated simulation, by MAPE."""

    EXCELLENT = "excellent"
    GOOD = "good"
    DEGRADED = "degraded"
    POOR = "poor"


class PerformanceAlertType(str, Enum):
    """Model accuracy problems raised when actuals come in."""

    ACCURACY_DEGRADATION = "accuracy_degradation"
    CONFIDENCE_MISCALIBRATION = "confidence_miscalibration"
    PREDICTION_BIAS = "prediction_bias"


class ActualDataSource(str, Enum):
    """Where observed campaign performance came from."""

    PLATFORM_API = "platform_api"
    MANUAL_ENTRY = "manual_entry"
    IMPORTED = "imported"
