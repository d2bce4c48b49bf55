"""
Trend Analyzer — least-squares trend and inflection detection over metric series.

Slope is the scipy.stats.linregress slope of the values against their index.
A series is stable when |slope| < STABLE_SLOPE; otherwise it is increasing or
decreasing by sign. Confidence grows with slope magnitude and series length:
    confidence = min(0.95, |slope| * n / 2)

With three or more points the same fit also reports the slope's p-value
for callers that want statistical significance.
"""

from datetime import datetime
from typing import Iterable, Optional, Sequence

import numpy as np
import structlog
from pydantic import BaseModel, Field
from scipy import stats

from simengine.models.prediction import TrajectoryPoint

logger = structlog.get_logger()

INCREASING = "increasing"
DECREASING = "decreasing"
STABLE = "stable"


class TrendResult(BaseModel):
    """Direction, slope and confidence of a single series."""

    direction: str = STABLE
    slope: float = 0.0
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    p_value: Optional[float] = None


class PerformanceTrend(BaseModel):
    """Trend of one trajectory metric with its turning points."""

    metric: str
    direction: str
    magnitude: float = Field(description="|slope|")
    confidence: float
    inflection_points: list[datetime] = Field(default_factory=list)


class HalfSplitTrend(BaseModel):
    """Second-half versus first-half average change."""

    direction: str = STABLE
    magnitude: float = 0.0


class TrendAnalyzer:
    """
    Linear-regression trend detection for trajectory metrics.

    Attributes:
        stable_slope: |slope| below which a series is stable
        max_confidence: Confidence ceiling
        min_points: Points required for per-metric trend analysis
        half_split_threshold: Relative change that counts as a half-split trend

    Example:
        >>> analyzer = TrendAnalyzer()
        >>> analyzer.calculate_trend([5.0, 4.0, 3.0]).direction
        'decreasing'
    """

    STABLE_SLOPE = 0.001
    MAX_CONFIDENCE = 0.95

    def __init__(
        self,
        stable_slope: float = STABLE_SLOPE,
        max_confidence: float = MAX_CONFIDENCE,
        min_points: int = 3,
        half_split_threshold: float = 0.05,
    ):
        self.stable_slope = stable_slope
        self.max_confidence = max_confidence
        self.min_points = min_points
        self.half_split_threshold = half_split_threshold
        self.logger = structlog.get_logger()

    def calculate_trend(self, values: Sequence[float]) -> TrendResult:
        """
        Least-squares slope of values against their index.

        Args:
            values: Ordered series

        Returns:
            TrendResult; fewer than two values yields stable with zero confidence
        """
        n = len(values)
        if n < 2:
            return TrendResult()

        y = np.asarray(values, dtype=float)
        if not np.all(np.isfinite(y)) or float(np.ptp(y)) == 0:
            return TrendResult()

        x = np.arange(n, dtype=float)
        fit = stats.linregress(x, y)
        slope = float(fit.slope)

        confidence = min(self.max_confidence, abs(slope) * n / 2)
        if abs(slope) < self.stable_slope:
            direction = STABLE
        elif slope > 0:
            direction = INCREASING
        else:
            direction = DECREASING

        p_value = float(fit.pvalue) if n >= 3 else None

        return TrendResult(direction=direction, slope=slope, confidence=confidence, p_value=p_value)

    def find_inflection_points(self, trajectory: Sequence[TrajectoryPoint], metric: str) -> list[datetime]:
        """Dates of strict local maxima and minima of a metric."""
        values = metric_series(trajectory, metric)
        points = []
        for i in range(1, len(values) - 1):
            prev, curr, nxt = values[i - 1], values[i], values[i + 1]
            if (curr > prev and curr > nxt) or (curr < prev and curr < nxt):
                points.append(trajectory[i].date)
        return points

    def analyze_performance_trends(self, trajectory: Sequence[TrajectoryPoint]) -> list[PerformanceTrend]:
        """
        Trend every metric present anywhere in the trajectory.

        Points missing a metric contribute 0 for it. Returns nothing for
        trajectories shorter than `min_points`.
        """
        if len(trajectory) < self.min_points:
            return []

        trends = []
        for metric in metric_names(trajectory):
            trend = self.calculate_trend(metric_series(trajectory, metric))
            trends.append(
                PerformanceTrend(
                    metric=metric,
                    direction=trend.direction,
                    magnitude=abs(trend.slope),
                    confidence=trend.confidence,
                    inflection_points=self.find_inflection_points(trajectory, metric),
                )
            )
        return trends

    def composite_trend(self, trajectory: Sequence[TrajectoryPoint], metrics: Iterable[str]) -> PerformanceTrend:
        """Trend of the per-point average of the given metrics."""
        values = composite_series(trajectory, metrics)
        trend = self.calculate_trend(values)
        return PerformanceTrend(
            metric="composite",
            direction=trend.direction,
            magnitude=abs(trend.slope),
            confidence=trend.confidence,
        )

    def half_split_trend(self, trajectory: Sequence[TrajectoryPoint], metric: str) -> HalfSplitTrend:
        """
        Compare the average of the second half with the first half.

        Changes beyond ±half_split_threshold are increasing/decreasing.
        """
        values = metric_series(trajectory, metric)
        if len(values) < 2:
            return HalfSplitTrend()

        middle = len(values) // 2
        first_avg = float(np.mean(values[:middle]))
        second_avg = float(np.mean(values[middle:]))
        change = (second_avg - first_avg) / first_avg if first_avg > 0 else 0.0

        if change > self.half_split_threshold:
            direction = INCREASING
        elif change < -self.half_split_threshold:
            direction = DECREASING
        else:
            direction = STABLE
        return HalfSplitTrend(direction=direction, magnitude=abs(change))


# =============================================================================
# Series helpers
# =============================================================================


def metric_names(trajectory: Iterable[TrajectoryPoint]) -> list[str]:
    """Metric names in first-seen order."""
    names: dict[str, None] = {}
    for point in trajectory:
        for name in point.metrics:
            names.setdefault(name, None)
    return list(names)


def metric_series(trajectory: Iterable[TrajectoryPoint], metric: str) -> list[float]:
    """Values of one metric, 0 where a point lacks it."""
    return [float(point.metrics.get(metric, 0.0)) for point in trajectory]


def composite_series(trajectory: Iterable[TrajectoryPoint], metrics: Iterable[str]) -> list[float]:
    """Per-point average of the listed metrics; points with none are skipped."""
    metrics = list(metrics)
    values = []
    for point in trajectory:
        present = [point.metrics[m] for m in metrics if m in point.metrics]
        if present:
            values.append(sum(present) / len(present))
    return values
