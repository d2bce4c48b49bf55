"""
Prediction accuracy models: observed actuals, prediction-vs-actual
comparisons, accuracy metrics, alerts and the per-simulation report.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from .enums import ActualDataSource, PerformanceAlertType, PerformanceStatus, Severity


class ActualPerformance(BaseModel):
    """Observed campaign metrics for one day."""

    campaign_id: str
    date: datetime
    metrics: dict[str, float] = Field(default_factory=dict)
    source: ActualDataSource = ActualDataSource.MANUAL_ENTRY


class PredictionComparison(BaseModel):
    """
    One predicted metric matched to its observed value.

    Attributes:
        error: Absolute error
        percentage_error: Error as a percentage of the actual (0 when the actual is 0)
    """

    date: datetime
    metric: str
    predicted_value: float
    actual_value: float
    confidence: float = Field(ge=0.0, le=1.0)
    error: float = Field(ge=0.0)
    percentage_error: float = Field(ge=0.0)


class AccuracyMetrics(BaseModel):
    mape: float = Field(ge=0.0, description="Mean absolute percentage error")
    rmse: float = Field(ge=0.0)
    mae: float = Field(ge=0.0)
    r2_score: float
    confidence_calibration: float = Field(le=1.0)


class PerformanceAlert(BaseModel):
    type: PerformanceAlertType
    severity: Severity
    message: str
    triggered_at: datetime = Field(default_factory=datetime.utcnow)
    acknowledged: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)


class ModelPerformanceReport(BaseModel):
    """
    Accuracy of a completed simulation against observed performance.

    Attributes:
        predictions: Every matched prediction
        accuracy_metrics: None when nothing could be matched
        performance_status: Band derived from MAPE; poor without metrics
        alerts: Degradation, calibration and bias alerts
        recommendations: Deduplicated follow-up actions
    """

    simulation_id: str
    campaign_id: str
    model_name: str = "unknown"
    model_version: str = "unknown"
    predictions: list[PredictionComparison] = Field(default_factory=list)
    accuracy_metrics: Optional[AccuracyMetrics] = None
    performance_status: PerformanceStatus = PerformanceStatus.POOR
    alerts: list[PerformanceAlert] = Field(default_factory=list)
    evaluated_at: datetime = Field(default_factory=datetime.utcnow)
    recommendations: list[str] = Field(default_factory=list)


class PerformanceTrendPoint(BaseModel):
    date: datetime
    metrics: AccuracyMetrics
