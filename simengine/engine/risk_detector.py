"""
Risk Detector — early-warning alerts over a predicted trajectory.

Detects four adverse patterns:
- performance_dip: a metric trends down and declines at least
  `performance_dip_threshold` from first to last point
- audience_fatigue: the engagement composite (engagement, ctr) declines at
  least `audience_fatigue_threshold`
- competitor_threat: a competitor's activity series trends up with slope
  above `competitor_threat_threshold`
- budget_overrun: linear spend projection exceeds the total budget

Triggered dips and fatigue never report probability below
MIN_ALERT_PROBABILITY or confidence below MIN_ALERT_CONFIDENCE. These floors
favor recall for early warning and are class constants so callers can tune
them.

Severity buckets on magnitude / threshold:
    >= 3 critical, >= 2 high, >= 1.5 medium, else low
"""

from collections import defaultdict
from typing import Optional, Sequence

import structlog
from pydantic import BaseModel, Field

from simengine.config import get_settings
from simengine.engine.errors import SimulationError
from simengine.engine.trend_analyzer import (
    DECREASING,
    INCREASING,
    PerformanceTrend,
    TrendAnalyzer,
    composite_series,
    metric_series,
)
from simengine.models.dataset import CompetitorMetric
from simengine.models.enums import RiskType, Severity
from simengine.models.prediction import TrajectoryPoint
from simengine.models.request import DateRange, SimulationContext
from simengine.models.results import RiskAlert

logger = structlog.get_logger()

ENGAGEMENT_METRICS = ("engagement", "ctr")

# Impact weight by metric importance
METRIC_IMPACT_WEIGHTS = {
    "ctr": 1.2,
    "engagement": 1.1,
    "conversions": 1.5,
    "impressions": 0.8,
    "reach": 0.9,
}

PERFORMANCE_DIP_RECOMMENDATIONS = [
    "Review and refresh creative assets",
    "Analyze audience targeting parameters",
    "Consider budget reallocation to better-performing segments",
]

FATIGUE_RECOMMENDATIONS = [
    "Introduce new creative variations",
    "Expand to fresh audience segments",
    "Implement frequency capping",
    "Consider campaign pause and relaunch strategy",
]

COMPETITOR_RECOMMENDATIONS = [
    "Monitor competitor campaigns and adjust strategy",
    "Increase bid competitiveness in key segments",
    "Differentiate creative messaging",
    "Consider alternative channels or timing",
]

BUDGET_RECOMMENDATIONS = [
    "Implement stricter budget controls",
    "Reallocate spend from underperforming segments",
    "Adjust bid strategies to control costs",
    "Consider campaign duration adjustment",
]


class RiskDetectionOptions(BaseModel):
    """Detection thresholds. Defaults come from settings."""

    performance_dip_threshold: float = Field(default=0.15, ge=0.0)
    audience_fatigue_threshold: float = Field(default=0.12, ge=0.0)
    competitor_threat_threshold: float = Field(default=0.25, ge=0.0)
    lookback_days: int = Field(default=14, ge=1)
    confidence_threshold: float = Field(default=0.6, ge=0.0, le=1.0)

    @classmethod
    def from_settings(cls) -> "RiskDetectionOptions":
        settings = get_settings()
        return cls(
            performance_dip_threshold=settings.risk_performance_dip_threshold,
            audience_fatigue_threshold=settings.risk_audience_fatigue_threshold,
            competitor_threat_threshold=settings.risk_competitor_threat_threshold,
            lookback_days=settings.risk_lookback_days,
            confidence_threshold=settings.risk_confidence_threshold,
        )


class BudgetProjection(BaseModel):
    total_budget: float = 0.0
    current_spend: float = 0.0
    projected_spend: float = 0.0
    overrun_amount: float = 0.0
    overrun_probability: float = 0.0
    confidence: float = 0.0


class RiskDetector:
    """
    Flag adverse patterns in a trajectory and its market context.

    Attributes:
        trend_analyzer: Shared least-squares trend analysis

    Example:
        >>> detector = RiskDetector()
        >>> alerts = detector.detect(trajectory, context)
        >>> [a.type for a in alerts]
        ['performance_dip', 'budget_overrun']
    """

    MIN_ALERT_CONFIDENCE = 0.6
    MIN_ALERT_PROBABILITY = 0.5
    COMPETITOR_MIN_SLOPE = 0.2
    BUDGET_ALERT_PROBABILITY = 0.1
    BUDGET_SEVERITY_THRESHOLD = 0.3

    def __init__(self, trend_analyzer: Optional[TrendAnalyzer] = None):
        self.trend_analyzer = trend_analyzer or TrendAnalyzer()
        self.logger = structlog.get_logger()

    def detect(
        self,
        trajectory: Sequence[TrajectoryPoint],
        context: SimulationContext,
        options: Optional[RiskDetectionOptions] = None,
    ) -> list[RiskAlert]:
        """
        Run all detectors, filter by confidence and rank.

        Args:
            trajectory: Ensemble trajectory
            context: Simulation context (dataset and request)
            options: Thresholds; settings defaults when omitted

        Returns:
            Alerts sorted by severity, impact then probability (descending).
            A failing detector is logged and skipped.

        Raises:
            SimulationError: every detector failed
        """
        options = options or RiskDetectionOptions.from_settings()
        detectors = {
            "performance_dips": lambda: self.detect_performance_dips(trajectory, options),
            "audience_fatigue": lambda: self.detect_audience_fatigue(trajectory, options),
            "competitor_threats": lambda: self.detect_competitor_threats(
                context.dataset.market_data.competitor_activity, options
            ),
            "budget_overrun": lambda: self.detect_budget_overrun(trajectory, context),
        }

        risks = []
        failures: dict[str, str] = {}
        for name, run in detectors.items():
            try:
                risks.extend(run())
            except Exception as e:
                failures[name] = str(e)
                self.logger.error(
                    "risk_detector_failed",
                    detector=name,
                    simulation_id=context.simulation_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        if len(failures) == len(detectors):
            raise SimulationError(
                "Every risk detector failed",
                code="RISK_DETECTION_FAILED",
                context={"failures": failures},
            )

        filtered = [risk for risk in risks if risk.confidence >= options.confidence_threshold]
        ranked = prioritize_risks(filtered)
        self.logger.info(
            "risks_detected",
            simulation_id=context.simulation_id,
            detected=len(risks),
            reported=len(ranked),
        )
        return ranked

    # =========================================================================
    # Detectors
    # =========================================================================

    def detect_performance_dips(
        self, trajectory: Sequence[TrajectoryPoint], options: RiskDetectionOptions
    ) -> list[RiskAlert]:
        risks = []
        for trend in self.trend_analyzer.analyze_performance_trends(trajectory):
            if trend.direction != DECREASING:
                continue

            decline = relative_decline(metric_series(trajectory, trend.metric))
            if decline < options.performance_dip_threshold:
                continue

            risks.append(
                RiskAlert(
                    type=RiskType.PERFORMANCE_DIP,
                    severity=calculate_severity(decline, options.performance_dip_threshold),
                    probability=max(self.MIN_ALERT_PROBABILITY, trend.confidence),
                    impact=metric_impact(decline, trend.metric),
                    timeframe=risk_timeframe(trajectory, trend.inflection_points),
                    description=(
                        f"Predicted {round(decline * 100)}% decline in {trend.metric} performance. "
                        f"Trend analysis shows {trend.direction} pattern with "
                        f"{round(trend.confidence * 100)}% confidence."
                    ),
                    recommendations=performance_dip_recommendations(trend),
                    confidence=max(self.MIN_ALERT_CONFIDENCE, trend.confidence),
                )
            )
        return risks

    def detect_audience_fatigue(
        self, trajectory: Sequence[TrajectoryPoint], options: RiskDetectionOptions
    ) -> list[RiskAlert]:
        values = composite_series(trajectory, ENGAGEMENT_METRICS)
        trend = self.trend_analyzer.calculate_trend(values)
        if trend.direction != DECREASING or not values:
            return []

        decline = relative_decline(values)
        if decline < options.audience_fatigue_threshold:
            return []

        middle = len(trajectory) // 2
        return [
            RiskAlert(
                type=RiskType.AUDIENCE_FATIGUE,
                severity=calculate_severity(decline, options.audience_fatigue_threshold),
                probability=max(self.MIN_ALERT_PROBABILITY, trend.confidence),
                impact=min(100.0, decline * 150),
                timeframe=DateRange(start=trajectory[middle].date, end=trajectory[-1].date),
                description=(
                    f"Audience fatigue detected with {round(decline * 100)}% decline in engagement metrics. "
                    "Pattern suggests diminishing returns from current creative approach."
                ),
                recommendations=list(FATIGUE_RECOMMENDATIONS),
                confidence=max(self.MIN_ALERT_CONFIDENCE, trend.confidence),
            )
        ]

    def detect_competitor_threats(
        self, competitor_activity: Sequence[CompetitorMetric], options: RiskDetectionOptions
    ) -> list[RiskAlert]:
        groups: dict[str, list[CompetitorMetric]] = defaultdict(list)
        for record in competitor_activity:
            groups[record.competitor].append(record)

        risks = []
        for competitor, records in groups.items():
            records = sorted(records, key=lambda r: r.date)
            trend = self.trend_analyzer.calculate_trend([r.value for r in records])
            magnitude = abs(trend.slope)
            if trend.direction != INCREASING or magnitude <= self.COMPETITOR_MIN_SLOPE:
                continue
            if magnitude < options.competitor_threat_threshold:
                continue

            risks.append(
                RiskAlert(
                    type=RiskType.COMPETITOR_THREAT,
                    severity=calculate_severity(magnitude, options.competitor_threat_threshold),
                    probability=trend.confidence,
                    impact=min(100.0, magnitude * 120),
                    timeframe=DateRange(start=records[0].date, end=records[-1].date),
                    description=(
                        f"Increased competitor activity detected with {round(magnitude * 100)}% activity spike. "
                        "Market competition may impact campaign performance."
                    ),
                    recommendations=list(COMPETITOR_RECOMMENDATIONS),
                    confidence=trend.confidence,
                )
            )
            self.logger.debug("competitor_threat_detected", competitor=competitor, slope=trend.slope)
        return risks

    def detect_budget_overrun(
        self, trajectory: Sequence[TrajectoryPoint], context: SimulationContext
    ) -> list[RiskAlert]:
        projection = project_budget(len(trajectory), context)
        if projection.overrun_probability <= self.BUDGET_ALERT_PROBABILITY:
            return []

        if trajectory:
            start_index = int(len(trajectory) * 0.7)
            timeframe = DateRange(start=trajectory[start_index].date, end=trajectory[-1].date)
        else:
            timeframe = DateRange(
                start=context.request.timeframe.start_date,
                end=context.request.timeframe.end_date,
            )

        return [
            RiskAlert(
                type=RiskType.BUDGET_OVERRUN,
                severity=calculate_severity(projection.overrun_probability, self.BUDGET_SEVERITY_THRESHOLD),
                probability=projection.overrun_probability,
                impact=min(100.0, projection.overrun_amount / projection.total_budget * 100),
                timeframe=timeframe,
                description=(
                    f"Budget overrun risk detected with {round(projection.overrun_probability * 100)}% probability. "
                    f"Projected overspend of ${round(projection.overrun_amount)}."
                ),
                recommendations=list(BUDGET_RECOMMENDATIONS),
                confidence=projection.confidence,
            )
        ]


# =============================================================================
# Helpers
# =============================================================================


def relative_decline(values: Sequence[float]) -> float:
    """(first - last) / first, 0 when the series is empty or starts at 0."""
    if not values:
        return 0.0
    start, end = values[0], values[-1]
    return (start - end) / start if start > 0 else 0.0


def calculate_severity(magnitude: float, threshold: float) -> Severity:
    ratio = magnitude / threshold if threshold > 0 else float("inf")
    if ratio >= 3:
        return Severity.CRITICAL
    if ratio >= 2:
        return Severity.HIGH
    if ratio >= 1.5:
        return Severity.MEDIUM
    return Severity.LOW


def metric_impact(decline: float, metric: str) -> float:
    return min(100.0, decline * 100 * METRIC_IMPACT_WEIGHTS.get(metric, 1.0))


def risk_timeframe(trajectory: Sequence[TrajectoryPoint], inflection_points: list) -> DateRange:
    """Span of the inflection points, or the whole trajectory when there are none."""
    if not inflection_points:
        return DateRange(start=trajectory[0].date, end=trajectory[-1].date)
    return DateRange(start=inflection_points[0], end=inflection_points[-1])


def performance_dip_recommendations(trend: PerformanceTrend) -> list[str]:
    recommendations = list(PERFORMANCE_DIP_RECOMMENDATIONS)
    if trend.metric == "ctr":
        recommendations.append("A/B test new ad copy and visuals")
    if trend.metric == "engagement":
        recommendations.append("Experiment with different content formats")
    return recommendations


def project_budget(elapsed_periods: int, context: SimulationContext) -> BudgetProjection:
    """
    Linear spend projection against the total budget.

    daily rate = spent / elapsed; projected = spent + rate * max(1, days - elapsed)
    """
    budget = context.dataset.budget_allocation
    total = budget.total
    if total <= 0:
        return BudgetProjection()

    spent = budget.total_spent
    elapsed = max(1, elapsed_periods)
    remaining_days = max(1, context.request.timeframe.days - elapsed_periods)
    projected = spent + (spent / elapsed) * remaining_days
    overrun = max(0.0, projected - total)

    return BudgetProjection(
        total_budget=total,
        current_spend=spent,
        projected_spend=projected,
        overrun_amount=overrun,
        overrun_probability=min(0.9, overrun / total) if overrun > 0 else 0.0,
        confidence=0.8 if spent / total > 0.5 else 0.6,
    )


def prioritize_risks(risks: list[RiskAlert]) -> list[RiskAlert]:
    return sorted(risks, key=lambda r: (r.severity.rank, r.impact, r.probability), reverse=True)
