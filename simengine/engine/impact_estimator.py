"""
What-if projections for pivot recommendations.

The baseline extends the current trajectory by `simulation_days` points.
Each metric follows its least-squares slope plus uniform noise scaled by
its volatility (std / mean, clamped to [0.05, 0.5]); projected confidence
falls by 0.02 a day down to 0.3. Each recommendation type then reshapes the
baseline over its own rollout:

    budget      ramps in over 3 days
    creative    no effect for 5 days, then 7 days of recovery
    audience    +5% reach and impressions while testing (7 days), then 14 days of scaling
    channel     -5% impressions during setup (7 days), then 14 days of learning
    timing      full effect from day 1

Pairs of the three highest-priority recommendations are combined unless
they conflict, and every metric of a pair is scaled by an interaction
factor below 1.
"""

import itertools
import math
from datetime import datetime, timedelta
from typing import Callable, Optional, Sequence

import numpy as np
import structlog
from pydantic import BaseModel, Field

from simengine.engine.trend_analyzer import TrendAnalyzer, metric_names, metric_series
from simengine.models.dataset import EnrichedDataset
from simengine.models.enums import EffortLevel, RecommendationType
from simengine.models.impact import (
    BaselineComparison,
    EstimatedImpact,
    ImpactEstimationResult,
    ImplementationComplexity,
    RecommendationComparison,
    UncertaintyBounds,
    WhatIfScenario,
)
from simengine.models.prediction import TrajectoryPoint
from simengine.models.results import PivotRecommendation

# Used when there is no trajectory to project from
DEFAULT_METRICS = {
    "ctr": 0.02,
    "impressions": 10000.0,
    "engagement": 0.05,
    "reach": 8000.0,
    "conversions": 50.0,
    "cpc": 1.0,
    "cpm": 10.0,
}

TYPE_UNCERTAINTY = {
    RecommendationType.BUDGET_REALLOCATION: 0.15,
    RecommendationType.CREATIVE_REFRESH: 0.25,
    RecommendationType.AUDIENCE_EXPANSION: 0.3,
    RecommendationType.CHANNEL_SHIFT: 0.35,
    RecommendationType.TIMING_ADJUSTMENT: 0.1,
}

TYPE_COMPLEXITY = {
    RecommendationType.BUDGET_REALLOCATION: 2,
    RecommendationType.CREATIVE_REFRESH: 6,
    RecommendationType.AUDIENCE_EXPANSION: 5,
    RecommendationType.CHANNEL_SHIFT: 8,
    RecommendationType.TIMING_ADJUSTMENT: 1,
}

EFFORT_MULTIPLIERS = {EffortLevel.LOW: 1.0, EffortLevel.MEDIUM: 1.5, EffortLevel.HIGH: 2.0}

TYPE_PROS = {
    RecommendationType.BUDGET_REALLOCATION: ("Quick results", "No additional resources needed"),
    RecommendationType.TIMING_ADJUSTMENT: ("Immediate implementation", "No additional costs"),
    RecommendationType.CREATIVE_REFRESH: ("Addresses audience fatigue", "Long-term benefits"),
}

MAX_UNCERTAINTY = 0.5
MAX_COMBINED = 3


class ImpactEstimationOptions(BaseModel):
    simulation_days: int = Field(default=30, ge=1, description="Days projected past the trajectory")
    include_uncertainty: bool = True
    projection_noise: bool = Field(default=True, description="Add volatility noise to projected points")


class RecommendationImpactEstimator:
    """
    Projects the effect of recommendations on a simulated trajectory.

    Attributes:
        trend_analyzer: Slope source for the baseline projection
        rng: Noise source for projected points
        clock: Start date of the default trajectory
    """

    def __init__(
        self,
        trend_analyzer: Optional[TrendAnalyzer] = None,
        rng: Optional[np.random.Generator] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.trend_analyzer = trend_analyzer or TrendAnalyzer()
        self.rng = rng or np.random.default_rng()
        self.clock = clock
        self.logger = structlog.get_logger()

    # =========================================================================
    # Public API
    # =========================================================================

    def estimate_impact(
        self,
        recommendation: PivotRecommendation,
        trajectory: Sequence[TrajectoryPoint],
        dataset: EnrichedDataset,
        options: Optional[ImpactEstimationOptions] = None,
    ) -> ImpactEstimationResult:
        """
        Project one recommendation against the baseline.

        Args:
            recommendation: Recommendation to apply
            trajectory: Current (simulated) trajectory
            dataset: Campaign dataset, for data quality and creative inventory
            options: Projection options

        Returns:
            Primary-metric impact, preview, uncertainty bounds, risks and complexity
        """
        options = options or ImpactEstimationOptions()
        baseline = self.baseline_projection(trajectory, options)
        result = self._estimate_against(recommendation, baseline, trajectory, dataset, options)
        self.logger.info(
            "recommendation_impact_estimated",
            recommendation_id=recommendation.id,
            metric=result.estimated_impact.metric,
            improvement=round(result.estimated_impact.improvement, 4),
            confidence=round(result.estimated_impact.confidence, 3),
        )
        return result

    def run_what_if_scenarios(
        self,
        recommendations: Sequence[PivotRecommendation],
        trajectory: Sequence[TrajectoryPoint],
        dataset: EnrichedDataset,
        options: Optional[ImpactEstimationOptions] = None,
    ) -> list[WhatIfScenario]:
        """
        One scenario per recommendation, then every feasible pair of the
        three highest-priority ones, all against a shared baseline.
        """
        options = options or ImpactEstimationOptions()
        baseline = self.baseline_projection(trajectory, options)

        scenarios = [self._single_scenario(rec, baseline) for rec in recommendations]
        top = sorted(recommendations, key=lambda r: r.priority, reverse=True)[:MAX_COMBINED]
        for pair in itertools.combinations(top, 2):
            if combination_feasible(pair):
                scenarios.append(self._combination_scenario(pair, baseline))

        self.logger.info(
            "what_if_scenarios_generated",
            recommendations=len(recommendations),
            scenarios=len(scenarios),
        )
        return scenarios

    def compare_recommendations(
        self,
        recommendations: Sequence[PivotRecommendation],
        trajectory: Sequence[TrajectoryPoint],
        dataset: EnrichedDataset,
        options: Optional[ImpactEstimationOptions] = None,
    ) -> list[RecommendationComparison]:
        """
        Side-by-side estimates ranked best first.

        Score = improvement * 40 + confidence * 30 - complexity / 10 * 20 - risks / 5 * 10
        """
        options = options or ImpactEstimationOptions()
        baseline = self.baseline_projection(trajectory, options)

        scored = []
        for recommendation in recommendations:
            impact = self._estimate_against(recommendation, baseline, trajectory, dataset, options)
            scored.append((ranking_score(impact), recommendation, impact))
        scored.sort(key=lambda item: item[0], reverse=True)

        return [
            RecommendationComparison(
                recommendation=recommendation,
                impact=impact,
                ranking=rank,
                ranking_score=score,
                pros=recommendation_pros(recommendation, impact),
                cons=recommendation_cons(recommendation, impact),
            )
            for rank, (score, recommendation, impact) in enumerate(scored, start=1)
        ]

    # =========================================================================
    # Projection
    # =========================================================================

    def baseline_projection(
        self, trajectory: Sequence[TrajectoryPoint], options: ImpactEstimationOptions
    ) -> list[TrajectoryPoint]:
        """The trajectory followed by `simulation_days` trend-projected points."""
        if not trajectory:
            return self._default_trajectory(options)

        trends = {}
        if len(trajectory) >= 2:
            trends = {m: self._metric_trend(metric_series(trajectory, m)) for m in metric_names(trajectory)}

        last = trajectory[-1]
        projection = [point.model_copy(deep=True) for point in trajectory]
        for day in range(1, options.simulation_days + 1):
            metrics = {}
            for metric, value in last.metrics.items():
                slope, volatility = trends.get(metric, (0.0, 0.1))
                noise = self._noise(options) * volatility * value
                metrics[metric] = max(0.0, value + slope * day + noise)
            projection.append(
                TrajectoryPoint(
                    date=last.date + timedelta(days=day),
                    metrics=metrics,
                    confidence=max(0.3, 0.9 - day * 0.02),
                )
            )
        return projection

    def _default_trajectory(self, options: ImpactEstimationOptions) -> list[TrajectoryPoint]:
        start = self.clock()
        return [
            TrajectoryPoint(
                date=start + timedelta(days=day),
                metrics={m: base * (1 + self._noise(options) * 0.2) for m, base in DEFAULT_METRICS.items()},
                confidence=0.6,
            )
            for day in range(options.simulation_days)
        ]

    def _metric_trend(self, values: list[float]) -> tuple[float, float]:
        slope = self.trend_analyzer.calculate_trend(values).slope
        mean = float(np.mean(values))
        ratio = float(np.std(values)) / mean if mean != 0 else 0.0
        return slope, min(0.5, max(0.05, ratio or 0.1))

    def _noise(self, options: ImpactEstimationOptions) -> float:
        """Uniform in [-0.5, 0.5), or 0 when noise is off."""
        return float(self.rng.random()) - 0.5 if options.projection_noise else 0.0

    # =========================================================================
    # Estimation helpers
    # =========================================================================

    def _estimate_against(
        self,
        recommendation: PivotRecommendation,
        baseline: list[TrajectoryPoint],
        trajectory: Sequence[TrajectoryPoint],
        dataset: EnrichedDataset,
        options: ImpactEstimationOptions,
    ) -> ImpactEstimationResult:
        projected = apply_recommendation(baseline, recommendation)

        bounds = UncertaintyBounds()
        if options.include_uncertainty:
            factor = uncertainty_factor(recommendation, dataset)
            bounds = UncertaintyBounds(
                lower=scale_metrics(projected, 1 - factor), upper=scale_metrics(projected, 1 + factor)
            )

        return ImpactEstimationResult(
            recommendation=recommendation,
            estimated_impact=impact_metrics(baseline, projected, recommendation.impact_estimate.metric),
            simulation_preview=projected,
            uncertainty_bounds=bounds,
            risk_factors=implementation_risks(recommendation, dataset, len(trajectory)),
            implementation_complexity=implementation_complexity(recommendation),
        )

    def _single_scenario(self, recommendation: PivotRecommendation, baseline: list[TrajectoryPoint]) -> WhatIfScenario:
        projected = apply_recommendation(baseline, recommendation)
        return WhatIfScenario(
            scenario_id=f"single_{recommendation.id}",
            description=f"Implementing {recommendation.type.value}: {recommendation.implementation.description}",
            parameters={
                "recommendation_type": recommendation.type.value,
                "expected_improvement": recommendation.impact_estimate.improvement,
                "implementation_effort": recommendation.implementation.effort.value,
            },
            projected_outcome=projected,
            confidence=recommendation.impact_estimate.confidence,
            comparison_to_baseline=compare_to_baseline(baseline, projected),
        )

    def _combination_scenario(
        self, recommendations: Sequence[PivotRecommendation], baseline: list[TrajectoryPoint]
    ) -> WhatIfScenario:
        projected = baseline
        for recommendation in recommendations:
            projected = apply_recommendation(projected, recommendation)
        factor = interaction_factor(recommendations)
        projected = scale_metrics(projected, factor)

        return WhatIfScenario(
            scenario_id="combo_" + "_".join(r.id for r in recommendations),
            description="Combining: " + " + ".join(r.type.value for r in recommendations),
            parameters={
                "recommendation_types": [r.type.value for r in recommendations],
                "combined_improvement": sum(r.impact_estimate.improvement for r in recommendations),
                "interaction_factor": factor,
            },
            projected_outcome=projected,
            confidence=float(np.prod([r.impact_estimate.confidence for r in recommendations])),
            comparison_to_baseline=compare_to_baseline(baseline, projected),
        )


# =============================================================================
# Recommendation effects
# =============================================================================


def _rollout(index: int, start: int, length: int) -> float:
    return min(1.0, (index - start) / length)


def _budget_effect(metrics: dict[str, float], index: int, factor: float) -> dict[str, float]:
    effective = 1 + (factor - 1) * _rollout(index, 0, 3)
    metrics["roi"] = metrics.get("roi", 1.0) * effective
    metrics["cpc"] = metrics.get("cpc", 1.0) / effective
    metrics["conversions"] = metrics.get("conversions", 0.0) * effective
    return metrics


def _creative_effect(metrics: dict[str, float], index: int, factor: float) -> dict[str, float]:
    if index < 5:
        return metrics
    effective = 1 + (factor - 1) * _rollout(index, 5, 7)
    metrics["ctr"] = metrics.get("ctr", 0.02) * effective
    metrics["engagement"] = metrics.get("engagement", 0.05) * effective
    metrics["impressions"] = metrics.get("impressions", 10000.0) * math.sqrt(max(0.0, effective))
    return metrics


def _audience_effect(metrics: dict[str, float], index: int, factor: float) -> dict[str, float]:
    if index < 7:
        metrics["reach"] = metrics.get("reach", 8000.0) * 1.05
        metrics["impressions"] = metrics.get("impressions", 10000.0) * 1.05
        return metrics
    scaling = _rollout(index, 7, 14)
    effective = 1 + (factor - 1) * scaling
    metrics["reach"] = metrics.get("reach", 8000.0) * effective
    metrics["impressions"] = metrics.get("impressions", 10000.0) * effective
    # Broader audiences convert slightly worse until fully scaled
    metrics["ctr"] = metrics.get("ctr", 0.02) * (0.95 + 0.05 * scaling)
    return metrics


def _channel_effect(metrics: dict[str, float], index: int, factor: float) -> dict[str, float]:
    if index < 7:
        metrics["impressions"] = metrics.get("impressions", 10000.0) * 0.95
        return metrics
    effective = 1 + (factor - 1) * _rollout(index, 7, 14)
    metrics["cpc"] = metrics.get("cpc", 1.0) / effective
    metrics["reach"] = metrics.get("reach", 8000.0) * effective
    metrics["impressions"] = metrics.get("impressions", 10000.0) * effective
    return metrics


def _timing_effect(metrics: dict[str, float], index: int, factor: float) -> dict[str, float]:
    if index < 1:
        return metrics
    metrics["impressions"] = metrics.get("impressions", 10000.0) * factor
    metrics["reach"] = metrics.get("reach", 8000.0) * factor
    metrics["ctr"] = metrics.get("ctr", 0.02) * math.sqrt(max(0.0, factor))
    return metrics


RECOMMENDATION_EFFECTS = {
    RecommendationType.BUDGET_REALLOCATION: _budget_effect,
    RecommendationType.CREATIVE_REFRESH: _creative_effect,
    RecommendationType.AUDIENCE_EXPANSION: _audience_effect,
    RecommendationType.CHANNEL_SHIFT: _channel_effect,
    RecommendationType.TIMING_ADJUSTMENT: _timing_effect,
}


def apply_recommendation(
    projection: Sequence[TrajectoryPoint], recommendation: PivotRecommendation
) -> list[TrajectoryPoint]:
    """A copy of the projection with the recommendation's rollout applied."""
    effect = RECOMMENDATION_EFFECTS[recommendation.type]
    factor = 1 + recommendation.impact_estimate.improvement
    return [
        point.model_copy(update={"metrics": effect(dict(point.metrics), index, factor)})
        for index, point in enumerate(projection)
    ]


def scale_metrics(trajectory: Sequence[TrajectoryPoint], factor: float) -> list[TrajectoryPoint]:
    return [
        point.model_copy(update={"metrics": {m: v * factor for m, v in point.metrics.items()}})
        for point in trajectory
    ]


# =============================================================================
# Scoring
# =============================================================================


def impact_metrics(
    baseline: Sequence[TrajectoryPoint], projected: Sequence[TrajectoryPoint], metric: str
) -> EstimatedImpact:
    """Mean of the primary metric with and without the recommendation."""
    if not baseline or not projected:
        return EstimatedImpact(metric=metric)

    baseline_values = metric_series(baseline, metric)
    projected_values = metric_series(projected, metric)
    baseline_avg = float(np.mean(baseline_values))
    projected_avg = float(np.mean(projected_values))
    return EstimatedImpact(
        metric=metric,
        baseline_value=baseline_avg,
        projected_value=projected_avg,
        improvement=(projected_avg - baseline_avg) / baseline_avg if baseline_avg > 0 else 0.0,
        confidence=impact_confidence(baseline_values, projected_values),
    )


def impact_confidence(baseline: Sequence[float], projected: Sequence[float]) -> float:
    """Share of improved points * 0.8 plus up to 0.2 for sample size, in [0.3, 0.95]."""
    if len(baseline) != len(projected) or not baseline:
        return 0.5
    consistency = sum(p > b for b, p in zip(baseline, projected)) / len(baseline)
    confidence = consistency * 0.8 + min(0.2, len(baseline) / 100)
    return min(0.95, max(0.3, confidence))


def uncertainty_factor(recommendation: PivotRecommendation, dataset: EnrichedDataset) -> float:
    factor = TYPE_UNCERTAINTY.get(recommendation.type, 0.2)
    factor += (1 - recommendation.impact_estimate.confidence) * 0.2
    factor += (1 - dataset.data_quality.overall) * 0.15
    return min(MAX_UNCERTAINTY, factor)


def implementation_risks(
    recommendation: PivotRecommendation, dataset: EnrichedDataset, trajectory_length: int
) -> list[str]:
    improvement = recommendation.impact_estimate.improvement
    risks = []
    if recommendation.type == RecommendationType.BUDGET_REALLOCATION:
        risks.append("Temporary performance dip during transition")
        if improvement > 0.3:
            risks.append("Overly optimistic projections")
    elif recommendation.type == RecommendationType.CREATIVE_REFRESH:
        risks.append("New creatives may not resonate with audience")
        risks.append("Development and approval time delays")
        if len(dataset.creative_assets) < 3:
            risks.append("Limited creative testing capacity")
    elif recommendation.type == RecommendationType.AUDIENCE_EXPANSION:
        risks.append("New audiences may have different behavior patterns")
        risks.append("Increased competition in expanded segments")
        if improvement > 0.2:
            risks.append("Audience expansion may dilute performance")
    elif recommendation.type == RecommendationType.CHANNEL_SHIFT:
        risks.append("Learning curve on new platform")
        risks.append("Different audience behavior on new channel")
        risks.append("Platform-specific optimization requirements")
    elif recommendation.type == RecommendationType.TIMING_ADJUSTMENT:
        risks.append("Seasonal factors may override timing benefits")
        if trajectory_length < 7:
            risks.append("Insufficient data to validate timing patterns")

    if recommendation.implementation.effort == EffortLevel.HIGH:
        risks.append("High implementation complexity")
        risks.append("Resource allocation challenges")
    return risks


def implementation_complexity(recommendation: PivotRecommendation) -> ImplementationComplexity:
    """Type base score, +2 for long plans, times effort, +1 for big impacts; capped at 10."""
    score = float(TYPE_COMPLEXITY.get(recommendation.type, 5))
    factors = []
    if len(recommendation.implementation.steps) > 5:
        score += 2
        factors.append("Multiple implementation steps")

    effort = recommendation.implementation.effort
    score *= EFFORT_MULTIPLIERS[effort]
    factors.append(f"{effort.value} effort level")

    if recommendation.impact_estimate.improvement > 0.25:
        score += 1
        factors.append("High expected impact")

    if score > 7:
        timeline = "7-14 days"
    elif score > 4:
        timeline = "3-7 days"
    else:
        timeline = "1-3 days"
    return ImplementationComplexity(score=min(10.0, score), factors=factors, timeline=timeline)


def compare_to_baseline(
    baseline: Sequence[TrajectoryPoint], projected: Sequence[TrajectoryPoint]
) -> BaselineComparison:
    """Relative change of the summed metrics and the share of points that improved."""
    if not baseline or not projected:
        return BaselineComparison()

    baseline_total = sum(_point_total(p) for p in baseline)
    projected_total = sum(_point_total(p) for p in projected)
    length = min(len(baseline), len(projected))
    improved = sum(_point_total(projected[i]) > _point_total(baseline[i]) for i in range(length))
    return BaselineComparison(
        improvement=(projected_total - baseline_total) / baseline_total if baseline_total > 0 else 0.0,
        significance=improved / length,
    )


def combination_feasible(recommendations: Sequence[PivotRecommendation]) -> bool:
    """Budget moves conflict with channel shifts; one creative refresh at a time."""
    types = [r.type for r in recommendations]
    if RecommendationType.BUDGET_REALLOCATION in types and RecommendationType.CHANNEL_SHIFT in types:
        return False
    return types.count(RecommendationType.CREATIVE_REFRESH) <= 1


def interaction_factor(recommendations: Sequence[PivotRecommendation]) -> float:
    types = {r.type for r in recommendations}
    if {RecommendationType.BUDGET_REALLOCATION, RecommendationType.TIMING_ADJUSTMENT} <= types:
        return 0.9
    if {RecommendationType.CREATIVE_REFRESH, RecommendationType.AUDIENCE_EXPANSION} <= types:
        return 0.95
    return 0.85


def recommendation_pros(recommendation: PivotRecommendation, impact: ImpactEstimationResult) -> list[str]:
    pros = []
    if impact.estimated_impact.improvement > 0.2:
        pros.append("High expected improvement")
    if impact.estimated_impact.confidence > 0.8:
        pros.append("High confidence in results")
    if recommendation.implementation.effort == EffortLevel.LOW:
        pros.append("Easy to implement")
    if impact.implementation_complexity.score < 4:
        pros.append("Low complexity")
    pros.extend(TYPE_PROS.get(recommendation.type, ()))
    return pros


def recommendation_cons(recommendation: PivotRecommendation, impact: ImpactEstimationResult) -> list[str]:
    cons = []
    if impact.estimated_impact.confidence < 0.6:
        cons.append("Low confidence in results")
    if len(impact.risk_factors) > 2:
        cons.append("Multiple risk factors")
    if recommendation.implementation.effort == EffortLevel.HIGH:
        cons.append("High implementation effort")
    if impact.implementation_complexity.score > 7:
        cons.append("High complexity")
    cons.extend(impact.risk_factors[:2])
    return cons


def ranking_score(impact: ImpactEstimationResult) -> float:
    return (
        impact.estimated_impact.improvement * 40
        + impact.estimated_impact.confidence * 30
        - impact.implementation_complexity.score / 10 * 20
        - len(impact.risk_factors) / 5 * 10
    )


def _point_total(point: TrajectoryPoint) -> float:
    return sum(point.metrics.values())
