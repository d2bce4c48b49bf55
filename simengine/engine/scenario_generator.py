"""
Scenario Generator — percentile-adjusted variants of the merged trajectory.

Each requested scenario is built in four steps:

1. Percentile adjustment: factor = 0.4 + (percentile / 100) * 1.2, so the
   50th percentile leaves the trajectory unchanged. Performance metrics
   (ctr, engagement) scale by factor^1.2, volume metrics (impressions,
   reach) by factor^0.8, cost metrics (cpc, cpm) by 1 / factor^0.6 and
   anything else linearly.
2. User adjustments (budget, competition, seasonality, creative_fatigue),
   applied only inside each adjustment's window.
3. Optional market factors from the dataset's volatility, competitor
   activity and seasonal trends.
4. Probability, key factors and confidence.

Probabilities across one batch are renormalized to sum to 1.
"""

import math
from typing import Optional, Sequence

import structlog
from pydantic import BaseModel, Field

from simengine.engine.errors import DataValidationError
from simengine.engine.validation import match_timezone
from simengine.models.dataset import MarketDataset, SeasonalTrend
from simengine.models.enums import AdjustmentFactor, ScenarioType
from simengine.models.prediction import TrajectoryPoint
from simengine.models.request import ScenarioAdjustment, ScenarioConfig, SimulationContext
from simengine.models.results import ScenarioResult

logger = structlog.get_logger()

PERCENTILE_MAPPINGS = {
    ScenarioType.OPTIMISTIC: 75.0,
    ScenarioType.REALISTIC: 50.0,
    ScenarioType.PESSIMISTIC: 25.0,
    ScenarioType.CUSTOM: 50.0,
}

SCENARIO_PRIORS = {
    ScenarioType.OPTIMISTIC: 0.25,
    ScenarioType.REALISTIC: 0.50,
    ScenarioType.PESSIMISTIC: 0.25,
    ScenarioType.CUSTOM: 0.33,
}

TYPE_KEY_FACTORS = {
    ScenarioType.OPTIMISTIC: ["favorable_market_conditions", "strong_creative_performance"],
    ScenarioType.PESSIMISTIC: ["increased_competition", "market_volatility"],
    ScenarioType.REALISTIC: ["current_market_trends", "historical_performance"],
}

PERFORMANCE_METRICS = {"ctr", "engagement"}
VOLUME_METRICS = {"impressions", "reach"}
COST_METRICS = {"cpc", "cpm"}


class ScenarioGenerationOptions(BaseModel):
    include_market_factors: bool = Field(default=False, description="Overlay dataset market factors")


class ScenarioFactors(BaseModel):
    """Market perturbations for one scenario type."""

    market_volatility: float = 0.0
    competitor_activity: float = 0.0
    seasonal_trends: float = 0.0
    creative_fatigue: float = 0.0


class ScenarioGenerator:
    """
    Expand a merged trajectory into scenario variants.

    Example:
        >>> generator = ScenarioGenerator()
        >>> scenarios = generator.generate(trajectory, request.scenarios, context)
        >>> round(sum(s.probability for s in scenarios), 6)
        1.0
    """

    IDEAL_HISTORY_POINTS = 30
    IDEAL_EXTERNAL_SOURCES = 3

    def __init__(self):
        self.logger = structlog.get_logger()

    def generate(
        self,
        base_trajectory: Sequence[TrajectoryPoint],
        scenario_configs: Sequence[ScenarioConfig],
        context: SimulationContext,
        options: Optional[ScenarioGenerationOptions] = None,
    ) -> list[ScenarioResult]:
        """
        One scenario per config; a failing config is logged and skipped.

        Args:
            base_trajectory: Ensemble trajectory
            scenario_configs: Requested scenarios
            context: Simulation context (dataset and request)
            options: Generation options

        Returns:
            Scenarios with probabilities summing to 1
        """
        options = options or ScenarioGenerationOptions()
        scenarios = []
        for config in scenario_configs:
            try:
                scenarios.append(self.generate_single(base_trajectory, config, context, options))
            except Exception as e:
                self.logger.error(
                    "scenario_generation_failed",
                    scenario_type=config.type.value,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        scenarios = normalize_probabilities(scenarios)
        self.logger.info(
            "scenarios_generated",
            requested=len(scenario_configs),
            generated=len(scenarios),
            simulation_id=context.simulation_id,
        )
        return scenarios

    def generate_single(
        self,
        base_trajectory: Sequence[TrajectoryPoint],
        config: ScenarioConfig,
        context: SimulationContext,
        options: ScenarioGenerationOptions,
    ) -> ScenarioResult:
        percentile = config.percentile if config.percentile is not None else PERCENTILE_MAPPINGS[config.type]
        if not 0 <= percentile <= 100:
            raise DataValidationError(
                f"Percentile must be between 0 and 100, got {percentile}",
                field="percentile",
                value=percentile,
                code="INVALID_PERCENTILE",
            )

        trajectory = apply_percentile_adjustment(base_trajectory, percentile)
        for adjustment in config.adjustments:
            trajectory = apply_adjustment(trajectory, adjustment)

        market_data = context.dataset.market_data
        if options.include_market_factors:
            trajectory = apply_market_factors(trajectory, calculate_scenario_factors(market_data, config.type))

        return ScenarioResult(
            type=config.type,
            probability=self.calculate_probability(config, trajectory, context),
            trajectory=trajectory,
            key_factors=identify_key_factors(config, market_data),
            confidence=self.calculate_confidence(config, context),
        )

    def calculate_probability(
        self,
        config: ScenarioConfig,
        trajectory: Sequence[TrajectoryPoint],
        context: SimulationContext,
    ) -> float:
        """Type prior scaled by data quality, historical similarity and market stability."""
        dataset = context.dataset
        probability = SCENARIO_PRIORS.get(config.type, 0.33)
        probability *= 0.2 + dataset.data_quality.overall * 0.8
        probability *= 0.5 + historical_similarity(trajectory, context) * 0.5
        stability = 1 - dataset.market_data.market_volatility.overall
        probability *= 0.7 + stability * 0.3
        return max(0.01, min(0.99, probability))

    def calculate_confidence(self, config: ScenarioConfig, context: SimulationContext) -> float:
        """Confidence from data quality, history depth and external-source count."""
        confidence = 0.8
        confidence *= 0.3 + context.dataset.data_quality.overall * 0.7

        history = min(len(context.dataset.historical_performance) / self.IDEAL_HISTORY_POINTS, 1.0)
        confidence *= 0.6 + history * 0.4

        external = min(len(context.request.external_data_sources) / self.IDEAL_EXTERNAL_SOURCES, 1.0)
        confidence *= 0.8 + external * 0.2

        if config.type == ScenarioType.REALISTIC:
            confidence *= 1.1
        elif config.type == ScenarioType.CUSTOM:
            confidence *= 0.9
        return max(0.1, min(0.99, confidence))


# =============================================================================
# Trajectory transforms
# =============================================================================


def percentile_to_factor(percentile: float) -> float:
    """25th -> 0.7, 50th -> 1.0, 75th -> 1.3."""
    return 0.4 + (percentile / 100) * 1.2


def adjust_metric(metric: str, value: float, factor: float) -> float:
    if metric in PERFORMANCE_METRICS:
        return value * factor**1.2
    if metric in VOLUME_METRICS:
        return value * factor**0.8
    if metric in COST_METRICS:
        return value / factor**0.6
    return value * factor


def apply_percentile_adjustment(trajectory: Sequence[TrajectoryPoint], percentile: float) -> list[TrajectoryPoint]:
    factor = percentile_to_factor(percentile)
    confidence_scale = 0.8 + (percentile / 100) * 0.4
    if factor == 1.0:
        return [point.model_copy(deep=True) for point in trajectory]
    return [
        TrajectoryPoint(
            date=point.date,
            metrics={m: max(0.0, adjust_metric(m, v, factor)) for m, v in point.metrics.items()},
            confidence=min(1.0, point.confidence * confidence_scale),
        )
        for point in trajectory
    ]


def blend_adjustment(value: float, factor: AdjustmentFactor, multiplier: float) -> float:
    """Factor-specific blend of a raw multiplier."""
    if factor == AdjustmentFactor.COMPETITION:
        return value * (1 - (1 - multiplier) * 0.8)
    if factor == AdjustmentFactor.CREATIVE_FATIGUE:
        return value * (1 - (1 - multiplier) * 0.6)
    return value * multiplier


def apply_adjustment(trajectory: Sequence[TrajectoryPoint], adjustment: ScenarioAdjustment) -> list[TrajectoryPoint]:
    """Apply one adjustment to points inside its window (whole trajectory by default)."""
    if not trajectory:
        return []
    reference = trajectory[0].date
    start = match_timezone(adjustment.timeframe.start, reference) if adjustment.timeframe else reference
    end = match_timezone(adjustment.timeframe.end, reference) if adjustment.timeframe else trajectory[-1].date

    adjusted = []
    for point in trajectory:
        if start <= point.date <= end:
            point = point.model_copy(
                update={
                    "metrics": {
                        m: max(0.0, blend_adjustment(v, adjustment.factor, adjustment.multiplier))
                        for m, v in point.metrics.items()
                    }
                }
            )
        adjusted.append(point)
    return adjusted


def seasonal_strength(trends: Sequence[SeasonalTrend]) -> float:
    if not trends:
        return 0.0
    average = sum(abs(t.trend) for t in trends) / len(trends)
    return min(average / 100, 1.0)


def calculate_scenario_factors(market_data: MarketDataset, scenario_type: ScenarioType) -> ScenarioFactors:
    """Optimistic halves the adverse factors, pessimistic scales them by 1.5."""
    if scenario_type == ScenarioType.OPTIMISTIC:
        k = 0.5
    elif scenario_type == ScenarioType.PESSIMISTIC:
        k = 1.5
    else:
        k = 1.0
    return ScenarioFactors(
        market_volatility=market_data.market_volatility.overall * k,
        competitor_activity=min(len(market_data.competitor_activity) / 10, 1.0) * k,
        seasonal_trends=seasonal_strength(market_data.seasonal_trends),
        creative_fatigue=0.1 * k,
    )


def apply_market_factors(trajectory: Sequence[TrajectoryPoint], factors: ScenarioFactors) -> list[TrajectoryPoint]:
    n = len(trajectory)
    adjusted = []
    for index, point in enumerate(trajectory):
        time_factor = 0.5 + math.sin((index / n) * math.pi)
        multiplier = (
            (1 + factors.market_volatility * time_factor)
            * (1 - factors.competitor_activity * 0.1)
            * (1 + factors.seasonal_trends * math.sin(index * math.pi / 30))
            * (1 - factors.creative_fatigue * (index / n))
        )
        adjusted.append(
            point.model_copy(update={"metrics": {m: max(0.0, v * multiplier) for m, v in point.metrics.items()}})
        )
    return adjusted


# =============================================================================
# Scoring helpers
# =============================================================================


def historical_similarity(trajectory: Sequence[TrajectoryPoint], context: SimulationContext) -> float:
    """
    Mean relative agreement between scenario and historical metric means.

    0.5 when no metric has both a positive scenario mean and positive history.
    """
    history: dict[str, list[float]] = {}
    for record in context.dataset.historical_performance:
        history.setdefault(record.metric, []).append(record.value)
    if not history or not trajectory:
        return 0.5

    scores = []
    for metric, values in history.items():
        scenario_values = [p.metrics[metric] for p in trajectory if metric in p.metrics]
        if not scenario_values:
            continue
        scenario_mean = sum(scenario_values) / len(scenario_values)
        historical_mean = sum(values) / len(values)
        if scenario_mean <= 0 or historical_mean <= 0:
            continue
        scores.append(max(0.0, 1 - abs(scenario_mean - historical_mean) / max(scenario_mean, historical_mean)))
    return sum(scores) / len(scores) if scores else 0.5


def identify_key_factors(config: ScenarioConfig, market_data: MarketDataset) -> list[str]:
    factors = list(TYPE_KEY_FACTORS.get(config.type, []))
    factors.extend(f"{adj.factor.value}_adjustment" for adj in config.adjustments)
    if market_data.market_volatility.overall > 0.3:
        factors.append("high_market_volatility")
    if len(market_data.competitor_activity) > 5:
        factors.append("competitive_market")
    if seasonal_strength(market_data.seasonal_trends) > 0.2:
        factors.append("seasonal_trends")
    return factors


def normalize_probabilities(scenarios: list[ScenarioResult]) -> list[ScenarioResult]:
    """Rescale probabilities so they sum to 1."""
    total = sum(s.probability for s in scenarios)
    if total <= 0:
        return scenarios
    return [s.model_copy(update={"probability": s.probability / total}) for s in scenarios]
