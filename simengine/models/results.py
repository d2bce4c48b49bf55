"""
Simulation output models: scenarios, risk alerts, pivot recommendations and
the assembled SimulationResult.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from .enums import (
    EffortLevel,
    RecommendationType,
    RiskType,
    ScenarioType,
    Severity,
    SimulationStatus,
)
from .prediction import ModelMetadata, TrajectoryPoint
from .request import DateRange


class ScenarioResult(BaseModel):
    """
    A scenario variant of the merged trajectory.

    Attributes:
        type: Scenario type
        probability: Normalized probability across the simulation's scenarios
        trajectory: Adjusted trajectory
        key_factors: Qualitative drivers of the scenario
        confidence: Scenario confidence in [0.1, 0.99]
    """

    type: ScenarioType
    probability: float = Field(ge=0.0, le=1.0)
    trajectory: list[TrajectoryPoint] = Field(default_factory=list)
    key_factors: list[str] = Field(default_factory=list)
    confidence: float = Field(ge=0.0, le=1.0)


class RiskAlert(BaseModel):
    """
    A detected adverse pattern.

    Attributes:
        type: Risk category
        severity: low, medium, high or critical
        probability: Likelihood in [0, 1]
        impact: Impact score 0-100
        timeframe: Affected date range
        description: Human readable summary
        recommendations: Type-specific remediation steps
        confidence: Detection confidence in [0, 1]
    """

    type: RiskType
    severity: Severity
    probability: float = Field(ge=0.0, le=1.0)
    impact: float = Field(ge=0.0, le=100.0)
    timeframe: DateRange
    description: str
    recommendations: list[str] = Field(default_factory=list)
    confidence: float = Field(ge=0.0, le=1.0)


class ImpactEstimate(BaseModel):
    metric: str
    improvement: float = Field(description="Expected relative improvement (0.1 = 10%)")
    confidence: float = Field(ge=0.0, le=1.0)


class ImplementationPlan(BaseModel):
    description: str
    steps: list[str] = Field(default_factory=list)
    effort: EffortLevel
    timeline: str


class PivotRecommendation(BaseModel):
    """An actionable suggested change with estimated impact."""

    id: str
    type: RecommendationType
    priority: int = Field(ge=0, le=100)
    impact_estimate: ImpactEstimate
    implementation: ImplementationPlan
    simulation_preview: Optional[list[TrajectoryPoint]] = None


class SimulationFailure(BaseModel):
    """Structured reason attached to a failed simulation."""

    error_type: str
    code: str
    message: str
    retryable: bool = False
    context: dict[str, Any] = Field(default_factory=dict)


class SimulationResult(BaseModel):
    """
    Final outcome of a simulation, written once to cache and storage.

    Attributes:
        id: Simulation identifier
        campaign_id: Campaign the simulation was run for
        status: Terminal status
        trajectories: Merged trajectory
        scenarios: Scenario variants
        risks: Prioritized risk alerts
        recommendations: Ranked pivot recommendations
        model_metadata: Aggregated ensemble metadata
        created_at: When processing started
        completed_at: When the result was assembled
        error: Failure reason for failed simulations
    """

    id: str
    campaign_id: Optional[str] = None
    status: SimulationStatus
    trajectories: list[TrajectoryPoint] = Field(default_factory=list)
    scenarios: list[ScenarioResult] = Field(default_factory=list)
    risks: list[RiskAlert] = Field(default_factory=list)
    recommendations: list[PivotRecommendation] = Field(default_factory=list)
    model_metadata: Optional[ModelMetadata] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    error: Optional[SimulationFailure] = None


class SimulationStatusReport(BaseModel):
    """Status lookup answer for a simulation id."""

    simulation_id: str
    status: SimulationStatus
    progress: float = Field(default=0.0, ge=0.0, le=100.0)
    current_step: Optional[str] = None
    error: Optional[SimulationFailure] = None


class ValidationIssue(BaseModel):
    field: str
    message: str
    code: str
    severity: str = "error"


class ValidationWarning(BaseModel):
    field: str
    message: str
    suggestion: str = ""


class ValidationResult(BaseModel):
    valid: bool
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationWarning] = Field(default_factory=list)
    score: float = Field(default=1.0, ge=0.0, le=1.0)


class FeedbackRecord(BaseModel):
    """User correction or rating for a completed simulation."""

    simulation_id: str
    model_name: str
    accuracy: float = Field(ge=0.0, le=1.0, description="Observed accuracy score")
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    comment: str = ""
    created_at: datetime = Field(default_factory=datetime.utcnow)


class CacheStatistics(BaseModel):
    total_entries: int = 0
    hits: int = 0
    misses: int = 0
    hit_rate: float = 0.0
    average_retrieval_time_ms: float = 0.0
    evictions: int = 0
