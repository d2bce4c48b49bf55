"""
Prediction models shared by providers and the ensemble coordinator.

Every provider result is converted into a PredictionOutput at the adapter
boundary, so the engine only ever handles these validated shapes.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from .dataset import DataQualityScore


class TrajectoryPoint(BaseModel):
    """
    One period of a predicted trajectory.

    Attributes:
        date: Period start
        metrics: Metric name to predicted value
        confidence: Confidence in this point, in [0, 1]
    """

    date: datetime = Field(description="Period start")
    metrics: dict[str, float] = Field(default_factory=dict, description="Metric values")
    confidence: float = Field(default=0.0, ge=0.0, le=1.0, description="Point confidence")


class ConfidenceInterval(BaseModel):
    lower: float
    upper: float
    confidence_level: float = Field(default=0.95, ge=0.0, le=1.0)


class FeatureImportance(BaseModel):
    feature: str
    importance: float = Field(ge=0.0)
    category: Optional[str] = None


class ModelMetadata(BaseModel):
    """Provenance of a prediction (single provider or ensemble)."""

    model_name: str
    model_version: str = "1.0.0"
    confidence_score: float = Field(default=0.0, ge=0.0, le=1.0)
    processing_time: float = Field(default=0.0, ge=0.0, description="Milliseconds")
    data_quality: Optional[DataQualityScore] = None
    feature_count: int = Field(default=0, ge=0)
    prediction_horizon: int = Field(default=0, ge=0, description="Predicted periods")
    consensus_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    diversity_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    model_weights: dict[str, float] = Field(default_factory=dict, description="Ensemble weights used")


class PredictionOutput(BaseModel):
    """Trajectory with intervals, feature importance and metadata."""

    trajectories: list[TrajectoryPoint] = Field(default_factory=list)
    confidence_intervals: list[ConfidenceInterval] = Field(default_factory=list)
    feature_importance: list[FeatureImportance] = Field(default_factory=list)
    model_metadata: ModelMetadata


class ModelPrediction(BaseModel):
    """
    A provider's prediction for one simulation run.

    Ephemeral: produced per run and consumed by the ensemble coordinator.

    Attributes:
        model_name: Provider name
        prediction: Provider output
        weight: Declared static weight
        confidence: Declared confidence in [0, 1]
        processing_time_ms: Provider latency in milliseconds
    """

    model_name: str
    prediction: PredictionOutput
    weight: float = Field(default=1.0, ge=0.0)
    confidence: float = Field(ge=0.0, le=1.0)
    processing_time_ms: float = Field(default=0.0, ge=0.0)


class EnsembleMetrics(BaseModel):
    """Observability snapshot of an ensemble run."""

    total_models: int
    active_models: int
    average_confidence: float
    weight_distribution: dict[str, float]
    consensus_score: float
    diversity_score: float
