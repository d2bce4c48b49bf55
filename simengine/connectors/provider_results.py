"""
Provider Results — tagged result shapes per provider family.

Providers answer in one of two shapes, distinguished by the `family` field:

- language_model: a full trajectory with intervals, feature importance,
  metadata and an optional free-text reasoning
- time_series: Prophet-style forecasts (ds, yhat, yhat_lower, yhat_upper,
  trend, seasonal, confidence) keyed by metric

Payloads are validated eagerly at the adapter boundary and converted into a
PredictionOutput, so the engine never handles untyped provider data.
"""

from collections import defaultdict
from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union

import numpy as np
from pydantic import BaseModel, Field, TypeAdapter, ValidationError, model_validator

from simengine.engine.errors import DataValidationError
from simengine.models.prediction import (
    ConfidenceInterval,
    FeatureImportance,
    ModelMetadata,
    PredictionOutput,
    TrajectoryPoint,
)

# Default interval width when a forecast omits its bounds
DEFAULT_LOWER_RATIO = 0.8
DEFAULT_UPPER_RATIO = 1.2
# Prophet reports 80% intervals
PROPHET_CONFIDENCE_LEVEL = 0.8


class LanguageModelResult(BaseModel):
    """Result of a language-model provider."""

    family: Literal["language_model"] = Field(
        default="language_model", description="Result discriminator"
    )
    trajectories: list[TrajectoryPoint] = Field(default_factory=list)
    confidence_intervals: list[ConfidenceInterval] = Field(default_factory=list)
    feature_importance: list[FeatureImportance] = Field(default_factory=list)
    metadata: ModelMetadata
    reasoning: Optional[str] = Field(default=None, description="Model explanation, not used by the engine")

    def to_prediction_output(self) -> PredictionOutput:
        trajectories = sorted(self.trajectories, key=lambda p: p.date)
        metadata = self.metadata.model_copy(
            update={
                "prediction_horizon": self.metadata.prediction_horizon or len(trajectories),
                "feature_count": self.metadata.feature_count or len(self.feature_importance),
            }
        )
        return PredictionOutput(
            trajectories=trajectories,
            confidence_intervals=list(self.confidence_intervals),
            feature_importance=list(self.feature_importance),
            model_metadata=metadata,
        )


class ForecastPoint(BaseModel):
    """
    One Prophet-style forecast row.

    Missing bounds default to 0.8x and 1.2x the point estimate; a missing
    trend defaults to the point estimate.
    """

    ds: datetime = Field(description="Forecast date")
    yhat: float = Field(description="Point estimate")
    yhat_lower: Optional[float] = None
    yhat_upper: Optional[float] = None
    trend: Optional[float] = None
    seasonal: float = 0.0
    confidence: float = Field(default=0.8, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def fill_bounds(self) -> "ForecastPoint":
        if self.yhat_lower is None:
            self.yhat_lower = self.yhat * DEFAULT_LOWER_RATIO
        if self.yhat_upper is None:
            self.yhat_upper = self.yhat * DEFAULT_UPPER_RATIO
        if self.trend is None:
            self.trend = self.yhat
        if self.yhat_lower > self.yhat_upper:
            self.yhat_lower, self.yhat_upper = self.yhat_upper, self.yhat_lower
        return self


class TimeSeriesResult(BaseModel):
    """
    Result of a time-series provider.

    Attributes:
        forecasts: Metric name to forecast rows
        interval_metric: Metric whose native bounds become the confidence
            intervals (first forecast metric when omitted)
    """

    family: Literal["time_series"] = Field(default="time_series", description="Result discriminator")
    model_name: str = Field(default="time_series")
    model_version: str = Field(default="1.0.0")
    forecasts: dict[str, list[ForecastPoint]] = Field(default_factory=dict)
    feature_importance: list[FeatureImportance] = Field(default_factory=list)
    interval_metric: Optional[str] = None
    processing_time: float = Field(default=0.0, ge=0.0, description="Milliseconds")

    def to_prediction_output(self) -> PredictionOutput:
        metrics_by_date: dict[datetime, dict[str, float]] = defaultdict(dict)
        confidence_by_date: dict[datetime, list[float]] = defaultdict(list)
        for metric, rows in self.forecasts.items():
            for row in rows:
                metrics_by_date[row.ds][metric] = row.yhat
                confidence_by_date[row.ds].append(row.confidence)

        dates = sorted(metrics_by_date)
        trajectories = [
            TrajectoryPoint(
                date=d,
                metrics=metrics_by_date[d],
                confidence=float(np.mean(confidence_by_date[d])),
            )
            for d in dates
        ]

        interval_metric = self.interval_metric or next(iter(self.forecasts), None)
        intervals: list[ConfidenceInterval] = []
        if interval_metric in self.forecasts:
            rows = {row.ds: row for row in self.forecasts[interval_metric]}
            # Positional alignment with the trajectory; dates the metric lacks get no interval
            for d in dates:
                row = rows.get(d)
                if row is None:
                    break
                intervals.append(
                    ConfidenceInterval(
                        lower=row.yhat_lower,
                        upper=row.yhat_upper,
                        confidence_level=PROPHET_CONFIDENCE_LEVEL,
                    )
                )

        confidence_score = float(np.mean([p.confidence for p in trajectories])) if trajectories else 0.0
        return PredictionOutput(
            trajectories=trajectories,
            confidence_intervals=intervals,
            feature_importance=list(self.feature_importance),
            model_metadata=ModelMetadata(
                model_name=self.model_name,
                model_version=self.model_version,
                confidence_score=confidence_score,
                processing_time=self.processing_time,
                feature_count=len(self.feature_importance),
                prediction_horizon=len(trajectories),
            ),
        )


ProviderResult = Annotated[
    Union[LanguageModelResult, TimeSeriesResult],
    Field(discriminator="family"),
]

_provider_result_adapter = TypeAdapter(ProviderResult)


def parse_provider_result(payload: Any) -> PredictionOutput:
    """
    Validate a raw provider payload and convert it to a PredictionOutput.

    Args:
        payload: Decoded JSON object carrying a `family` tag

    Returns:
        Validated prediction output

    Raises:
        DataValidationError: If the payload does not match its family's shape
    """
    try:
        result = _provider_result_adapter.validate_python(payload)
    except ValidationError as e:
        errors = [
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in e.errors()
        ]
        family = payload.get("family") if isinstance(payload, dict) else None
        raise DataValidationError(
            "Invalid provider result",
            field="family",
            value=family,
            code="INVALID_PROVIDER_RESULT",
            context={"errors": errors},
        ) from e
    return result.to_prediction_output()
