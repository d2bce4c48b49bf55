"""
Pivot Recommendation Engine — actionable changes from simulation output.

Five generators feed one ranked list:
- budget_reallocation: move up to 30% (max $1000) from channels more than
  20% below the average ROI to channels more than 20% above it
- creative_refresh: fatigue-driven refresh plus per-creative fixes
- audience_expansion: age-band lookalikes and demographic/location widening
- channel_shift: unused channels suited to the campaign category
- timing_adjustment: shift scheduling toward the best-performing hours

Recommendations below the minimum impact or confidence are dropped; the
rest are ranked and capped at `max_recommendations`.

Priority:
    round(min(100, improvement * 100 * type multiplier))
"""

from collections import defaultdict
from functools import cmp_to_key
from typing import Optional, Sequence

import structlog
from pydantic import BaseModel, Field

from simengine.config import get_settings
from simengine.engine.trend_analyzer import DECREASING, INCREASING, TrendAnalyzer
from simengine.models.dataset import AudienceConfig, CreativeAsset, EnrichedDataset
from simengine.models.enums import EffortLevel, RecommendationType, RiskType
from simengine.models.prediction import TrajectoryPoint
from simengine.models.request import SimulationContext
from simengine.models.results import ImpactEstimate, ImplementationPlan, PivotRecommendation, RiskAlert

logger = structlog.get_logger()

TYPE_PRIORITY_MULTIPLIERS = {
    RecommendationType.BUDGET_REALLOCATION: 1.2,
    RecommendationType.CREATIVE_REFRESH: 1.0,
    RecommendationType.AUDIENCE_EXPANSION: 0.9,
    RecommendationType.CHANNEL_SHIFT: 0.8,
    RecommendationType.TIMING_ADJUSTMENT: 1.1,
}

# Channel performance relative to the trajectory average
CHANNEL_MULTIPLIERS = {
    "facebook": {"roi": 1.1, "cpc": 0.9, "ctr": 1.2},
    "google": {"roi": 1.3, "cpc": 1.1, "ctr": 0.9},
    "twitter": {"roi": 0.8, "cpc": 0.7, "ctr": 1.1},
    "linkedin": {"roi": 1.2, "cpc": 1.4, "ctr": 0.8},
    "instagram": {"roi": 1.0, "cpc": 0.8, "ctr": 1.3},
}

# Impacts closer than this rank by priority instead
IMPACT_TOLERANCE = 0.02

ALL_CHANNELS = ["facebook", "google", "twitter", "linkedin", "instagram", "tiktok"]
ESTABLISHED_CHANNELS = {"facebook", "google", "instagram"}

CHANNEL_CPC = {"facebook": 0.8, "google": 1.2, "twitter": 0.6, "linkedin": 1.8, "instagram": 0.9, "tiktok": 0.7}
CHANNEL_REACH = {"facebook": 1.5, "google": 1.2, "twitter": 0.8, "linkedin": 0.6, "instagram": 1.3, "tiktok": 1.1}

CHANNEL_SUITABILITY = {
    "pr": {"twitter": 0.9, "linkedin": 0.8, "facebook": 0.7, "instagram": 0.6},
    "content": {"instagram": 0.9, "tiktok": 0.8, "facebook": 0.7, "twitter": 0.6},
    "social": {"facebook": 0.9, "instagram": 0.8, "twitter": 0.7, "tiktok": 0.6},
}

CREATIVE_ISSUE_IMPACT = {
    "Low click-through rate": 0.2,
    "Low engagement rate": 0.15,
    "Negative sentiment": 0.25,
    "General underperformance": 0.1,
}

CREATIVE_IMPROVEMENTS = {
    "image": ["Test different visual styles", "Update color scheme", "Try different compositions"],
    "video": ["Shorten video length", "Add captions", "Test different thumbnails"],
    "text": ["Revise headline", "Update call-to-action", "Test different messaging angles"],
}
DEFAULT_IMPROVEMENTS = ["Refresh creative content", "Test new variations"]

DEFAULT_SCHEDULE_HOURS = [9, 12, 15, 18]


class RecommendationOptions(BaseModel):
    max_recommendations: int = Field(default=5, ge=1)
    min_impact_threshold: float = Field(default=0.05, ge=0.0, description="Minimum expected improvement")
    min_confidence_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    prioritize_high_impact: bool = True
    include_simulation_previews: bool = False

    @classmethod
    def from_settings(cls) -> "RecommendationOptions":
        settings = get_settings()
        return cls(
            max_recommendations=settings.recommendation_max_count,
            min_impact_threshold=settings.recommendation_min_impact,
            min_confidence_threshold=settings.recommendation_min_confidence,
            prioritize_high_impact=settings.recommendation_prioritize_impact,
            include_simulation_previews=settings.recommendation_include_previews,
        )


class BudgetReallocation(BaseModel):
    source: str
    target: str
    amount: float
    expected_improvement: float


class CreativeRefresh(BaseModel):
    creative_id: str
    reason: str
    suggested_changes: list[str]


class CreativeAnalysis(BaseModel):
    fatigue_indicators: list[str] = Field(default_factory=list)
    performing_creatives: list[str] = Field(default_factory=list)
    underperforming_creatives: list[str] = Field(default_factory=list)
    suggested_refreshes: list[CreativeRefresh] = Field(default_factory=list)


class AudienceOpportunity(BaseModel):
    segment: str
    estimated_size: float
    similarity: float
    expected_performance: float


class ChannelAlternative(BaseModel):
    channel: str
    estimated_cpc: float
    estimated_reach: float
    suitability: float


class TimingAnalysis(BaseModel):
    suboptimal: bool
    optimal_times: list[str]
    recommendation: str
    confidence: float = 0.75


class PivotRecommendationEngine:
    """
    Turn trajectory, risks and campaign data into ranked recommendations.

    Example:
        >>> engine = PivotRecommendationEngine()
        >>> recs = engine.generate(context, trajectory, risks)
        >>> recs[0].type
        <RecommendationType.CHANNEL_SHIFT: 'channel_shift'>
    """

    TIMING_IMPACT = 0.08

    def __init__(self, trend_analyzer: Optional[TrendAnalyzer] = None):
        self.trend_analyzer = trend_analyzer or TrendAnalyzer()
        self.logger = structlog.get_logger()

    def generate(
        self,
        context: SimulationContext,
        trajectory: Sequence[TrajectoryPoint],
        risks: Sequence[RiskAlert],
        options: Optional[RecommendationOptions] = None,
    ) -> list[PivotRecommendation]:
        """
        Build, filter and rank recommendations.

        Args:
            context: Simulation context (campaign data lives on the dataset)
            trajectory: Ensemble trajectory
            risks: Alerts from the risk detector
            options: Limits and ranking; settings defaults when omitted

        Returns:
            At most `max_recommendations` recommendations. Empty on failure.
        """
        options = options or RecommendationOptions.from_settings()
        try:
            recommendations = []
            recommendations.extend(self.budget_recommendations(context.dataset, trajectory, options))
            recommendations.extend(self.creative_recommendations(context.dataset, trajectory, risks, options))
            recommendations.extend(self.audience_recommendations(context.dataset, trajectory, options))
            recommendations.extend(self.channel_recommendations(context.dataset, trajectory, options))
            recommendations.extend(self.timing_recommendations(trajectory, options))
        except Exception as e:
            self.logger.error(
                "recommendation_generation_failed",
                simulation_id=context.simulation_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return []

        filtered = [
            rec
            for rec in recommendations
            if rec.impact_estimate.improvement >= options.min_impact_threshold
            and rec.impact_estimate.confidence >= options.min_confidence_threshold
        ]
        ranked = rank_recommendations(filtered, options)
        self.logger.info(
            "recommendations_generated",
            simulation_id=context.simulation_id,
            candidates=len(recommendations),
            returned=len(ranked),
        )
        return ranked

    # =========================================================================
    # Budget reallocation
    # =========================================================================

    def budget_recommendations(
        self,
        dataset: EnrichedDataset,
        trajectory: Sequence[TrajectoryPoint],
        options: RecommendationOptions,
    ) -> list[PivotRecommendation]:
        recommendations = []
        for move in self.analyze_budget(dataset, trajectory):
            if move.expected_improvement < options.min_impact_threshold:
                continue

            confidence = 0.7
            if len(trajectory) > 14:
                confidence += 0.1
            if move.expected_improvement > 0.2:
                confidence += 0.1

            amount = f"${move.amount:.2f}"
            preview = None
            if options.include_simulation_previews:
                factor = 1 + move.expected_improvement
                preview = _preview(
                    trajectory,
                    lambda m: {
                        "roi": m.get("roi", 1.0) * factor,
                        "cpc": m.get("cpc", 1.0) / factor,
                    },
                )

            recommendations.append(
                PivotRecommendation(
                    id=f"budget_{move.source}_to_{move.target}",
                    type=RecommendationType.BUDGET_REALLOCATION,
                    priority=calculate_priority(move.expected_improvement, RecommendationType.BUDGET_REALLOCATION),
                    impact_estimate=ImpactEstimate(
                        metric="roi",
                        improvement=move.expected_improvement,
                        confidence=min(0.95, confidence),
                    ),
                    implementation=ImplementationPlan(
                        description=f"Reallocate {amount} from {move.source} to {move.target}",
                        steps=[
                            f"Reduce {move.source} budget by {amount}",
                            f"Increase {move.target} budget by {amount}",
                            "Monitor performance for 3-5 days",
                            "Adjust further based on results",
                        ],
                        effort=EffortLevel.LOW,
                        timeline="1-2 days",
                    ),
                    simulation_preview=preview,
                )
            )
        return recommendations

    def analyze_budget(
        self, dataset: EnrichedDataset, trajectory: Sequence[TrajectoryPoint]
    ) -> list[BudgetReallocation]:
        """Top three ROI-improving moves from under- to over-performing channels."""
        performance = channel_performance(dataset, trajectory)
        if not performance:
            return []

        average_roi = sum(p["roi"] for p in performance.values()) / len(performance)
        under = [c for c, p in performance.items() if p["roi"] < average_roi * 0.8]
        over = [c for c, p in performance.items() if p["roi"] > average_roi * 1.2]

        moves = []
        for source in under:
            amount = min(dataset.budget_allocation.allocated.get(source, 0.0) * 0.3, 1000.0)
            if amount <= 0:
                continue
            for target in over:
                from_roi = performance[source]["roi"] or 1.0
                improvement = (performance[target]["roi"] - from_roi) / from_roi
                if improvement > 0.05:
                    moves.append(
                        BudgetReallocation(
                            source=source,
                            target=target,
                            amount=amount,
                            expected_improvement=improvement,
                        )
                    )
        moves.sort(key=lambda m: m.expected_improvement, reverse=True)
        return moves[:3]

    # =========================================================================
    # Creative refresh
    # =========================================================================

    def creative_recommendations(
        self,
        dataset: EnrichedDataset,
        trajectory: Sequence[TrajectoryPoint],
        risks: Sequence[RiskAlert],
        options: RecommendationOptions,
    ) -> list[PivotRecommendation]:
        analysis = self.analyze_creatives(dataset, trajectory)
        recommendations = []

        has_fatigue_risk = any(risk.type == RiskType.AUDIENCE_FATIGUE for risk in risks)
        if has_fatigue_risk or analysis.fatigue_indicators:
            improvement = creative_refresh_impact(analysis)
            if improvement >= options.min_impact_threshold:
                confidence = 0.65 + len(analysis.fatigue_indicators) * 0.05
                if len(analysis.performing_creatives) + len(analysis.underperforming_creatives) > 3:
                    confidence += 0.1

                preview = None
                if options.include_simulation_previews:
                    preview = _preview(
                        trajectory,
                        lambda m: {
                            "ctr": m.get("ctr", 0.02) * 1.15,
                            "engagement": m.get("engagement", 0.05) * 1.15,
                        },
                    )

                recommendations.append(
                    PivotRecommendation(
                        id="creative_refresh_fatigue",
                        type=RecommendationType.CREATIVE_REFRESH,
                        priority=calculate_priority(improvement, RecommendationType.CREATIVE_REFRESH),
                        impact_estimate=ImpactEstimate(
                            metric="engagement",
                            improvement=improvement,
                            confidence=min(0.9, confidence),
                        ),
                        implementation=ImplementationPlan(
                            description="Refresh creative assets to combat audience fatigue",
                            steps=[
                                "Identify underperforming creative assets",
                                "Develop new creative variations",
                                "A/B test new creatives against current ones",
                                "Gradually replace underperforming assets",
                                "Monitor engagement recovery",
                            ],
                            effort=EffortLevel.MEDIUM,
                            timeline="5-7 days",
                        ),
                        simulation_preview=preview,
                    )
                )

        for refresh in analysis.suggested_refreshes:
            improvement = CREATIVE_ISSUE_IMPACT.get(refresh.reason, 0.1)
            if improvement < options.min_impact_threshold:
                continue
            recommendations.append(
                PivotRecommendation(
                    id=f"creative_optimize_{refresh.creative_id}",
                    type=RecommendationType.CREATIVE_REFRESH,
                    priority=calculate_priority(improvement, RecommendationType.CREATIVE_REFRESH),
                    impact_estimate=ImpactEstimate(metric="ctr", improvement=improvement, confidence=0.7),
                    implementation=ImplementationPlan(
                        description=f"Optimize creative {refresh.creative_id}: {refresh.reason}",
                        steps=refresh.suggested_changes
                        + ["Test optimized version", "Monitor performance metrics", "Scale if successful"],
                        effort=EffortLevel.LOW,
                        timeline="2-3 days",
                    ),
                )
            )
        return recommendations

    def analyze_creatives(self, dataset: EnrichedDataset, trajectory: Sequence[TrajectoryPoint]) -> CreativeAnalysis:
        creatives = dataset.creative_assets
        analysis = CreativeAnalysis(fatigue_indicators=self.fatigue_indicators(trajectory))
        if not creatives:
            return analysis

        ctrs = {c.id: creative_scores(c)["ctr"] for c in creatives}
        average_ctr = sum(ctrs.values()) / len(ctrs)
        analysis.performing_creatives = [cid for cid, ctr in ctrs.items() if ctr > average_ctr * 1.1]
        analysis.underperforming_creatives = [cid for cid, ctr in ctrs.items() if ctr < average_ctr * 0.9]

        by_id = {c.id: c for c in creatives}
        analysis.suggested_refreshes = [
            CreativeRefresh(
                creative_id=cid,
                reason=creative_issue(by_id[cid]),
                suggested_changes=list(CREATIVE_IMPROVEMENTS.get(by_id[cid].type, DEFAULT_IMPROVEMENTS)),
            )
            for cid in analysis.underperforming_creatives
        ]
        return analysis

    def fatigue_indicators(self, trajectory: Sequence[TrajectoryPoint]) -> list[str]:
        """Half-split trend signals of creative wear-out."""
        if len(trajectory) < 3:
            return []

        indicators = []
        engagement = self.trend_analyzer.half_split_trend(trajectory, "engagement")
        if engagement.direction == DECREASING and engagement.magnitude > 0.1:
            indicators.append("declining_engagement")

        ctr = self.trend_analyzer.half_split_trend(trajectory, "ctr")
        if ctr.direction == DECREASING and ctr.magnitude > 0.1:
            indicators.append("declining_ctr")

        impressions = self.trend_analyzer.half_split_trend(trajectory, "impressions")
        reach = self.trend_analyzer.half_split_trend(trajectory, "reach")
        if impressions.direction == INCREASING and reach.direction != INCREASING:
            indicators.append("frequency_without_reach")
        return indicators

    # =========================================================================
    # Audience expansion
    # =========================================================================

    def audience_recommendations(
        self,
        dataset: EnrichedDataset,
        trajectory: Sequence[TrajectoryPoint],
        options: RecommendationOptions,
    ) -> list[PivotRecommendation]:
        saturated = self.saturated_audiences(dataset.campaign.audiences, trajectory)
        if saturated:
            self.logger.debug("audiences_saturated", segments=saturated)

        recommendations = []
        for opportunity in expansion_opportunities(dataset.campaign.audiences):
            if opportunity.expected_performance < options.min_impact_threshold:
                continue

            confidence = opportunity.similarity * 0.8
            if 5000 < opportunity.estimated_size < 100000:
                confidence += 0.1

            preview = None
            if options.include_simulation_previews:
                multiplier = 1 + opportunity.expected_performance * 0.5
                preview = _preview(
                    trajectory,
                    lambda m: {
                        "reach": m.get("reach", 10000.0) * multiplier,
                        "impressions": m.get("impressions", 15000.0) * multiplier,
                    },
                )

            recommendations.append(
                PivotRecommendation(
                    id=f"audience_expand_{opportunity.segment}",
                    type=RecommendationType.AUDIENCE_EXPANSION,
                    priority=calculate_priority(opportunity.expected_performance, RecommendationType.AUDIENCE_EXPANSION),
                    impact_estimate=ImpactEstimate(
                        metric="reach",
                        improvement=opportunity.expected_performance,
                        confidence=min(0.85, confidence),
                    ),
                    implementation=ImplementationPlan(
                        description=f"Expand to {opportunity.segment} audience segment",
                        steps=[
                            f"Create lookalike audience based on {opportunity.segment}",
                            "Start with small test budget (10-15% of total)",
                            "Monitor performance vs existing segments",
                            "Scale budget if performance meets targets",
                            "Optimize targeting based on initial results",
                        ],
                        effort=EffortLevel.MEDIUM,
                        timeline="3-5 days",
                    ),
                    simulation_preview=preview,
                )
            )
        return recommendations

    def saturated_audiences(
        self, audiences: Sequence[AudienceConfig], trajectory: Sequence[TrajectoryPoint]
    ) -> list[str]:
        """All audiences when reach is flat while impressions grow."""
        reach = self.trend_analyzer.half_split_trend(trajectory, "reach")
        impressions = self.trend_analyzer.half_split_trend(trajectory, "impressions")
        if reach.direction != INCREASING and impressions.direction == INCREASING:
            return [a.name for a in audiences]
        return []

    # =========================================================================
    # Channel shift
    # =========================================================================

    def channel_recommendations(
        self,
        dataset: EnrichedDataset,
        trajectory: Sequence[TrajectoryPoint],
        options: RecommendationOptions,
    ) -> list[PivotRecommendation]:
        current_cpc = average_metrics(trajectory)["cpc"]
        recommendations = []
        for alternative in alternative_channels(dataset):
            cpc_gain = max(0.0, (current_cpc - alternative.estimated_cpc) / current_cpc) if current_cpc > 0 else 0.0
            improvement = min(0.3, cpc_gain * 0.7 + alternative.suitability * 0.3)
            if improvement < options.min_impact_threshold:
                continue

            confidence = alternative.suitability * 0.7
            if alternative.channel in ESTABLISHED_CHANNELS:
                confidence += 0.1

            recommendations.append(
                PivotRecommendation(
                    id=f"channel_shift_{alternative.channel}",
                    type=RecommendationType.CHANNEL_SHIFT,
                    priority=calculate_priority(improvement, RecommendationType.CHANNEL_SHIFT),
                    impact_estimate=ImpactEstimate(
                        metric="cpc",
                        improvement=improvement,
                        confidence=min(0.8, confidence),
                    ),
                    implementation=ImplementationPlan(
                        description=f"Shift budget to {alternative.channel} channel",
                        steps=[
                            f"Set up campaign on {alternative.channel}",
                            "Allocate 20% of budget for testing",
                            "Run parallel campaigns for comparison",
                            "Monitor cost efficiency and performance",
                            "Gradually shift more budget if successful",
                        ],
                        effort=EffortLevel.HIGH,
                        timeline="7-10 days",
                    ),
                )
            )
        return recommendations

    # =========================================================================
    # Timing
    # =========================================================================

    def timing_recommendations(
        self, trajectory: Sequence[TrajectoryPoint], options: RecommendationOptions
    ) -> list[PivotRecommendation]:
        analysis = analyze_timing(trajectory)
        if not analysis.suboptimal or self.TIMING_IMPACT < options.min_impact_threshold:
            return []

        return [
            PivotRecommendation(
                id="timing_adjustment",
                type=RecommendationType.TIMING_ADJUSTMENT,
                priority=calculate_priority(self.TIMING_IMPACT, RecommendationType.TIMING_ADJUSTMENT),
                impact_estimate=ImpactEstimate(
                    metric="impressions",
                    improvement=self.TIMING_IMPACT,
                    confidence=analysis.confidence,
                ),
                implementation=ImplementationPlan(
                    description=analysis.recommendation,
                    steps=[
                        "Analyze current scheduling patterns",
                        "Identify optimal time windows",
                        "Adjust ad scheduling settings",
                        "Monitor performance changes",
                        "Fine-tune based on results",
                    ],
                    effort=EffortLevel.LOW,
                    timeline="1-2 days",
                ),
            )
        ]


# =============================================================================
# Scoring helpers
# =============================================================================


def calculate_priority(improvement: float, rec_type: RecommendationType) -> int:
    priority = improvement * 100 * TYPE_PRIORITY_MULTIPLIERS[rec_type]
    return int(round(max(0.0, min(100.0, priority))))


def rank_recommendations(
    recommendations: list[PivotRecommendation], options: RecommendationOptions
) -> list[PivotRecommendation]:
    """
    Impact then priority when prioritizing impact, else priority then impact.

    Impacts within IMPACT_TOLERANCE of each other count as equal.
    """
    if options.prioritize_high_impact:
        ordered = sorted(recommendations, key=cmp_to_key(_compare_by_impact))
    else:
        ordered = sorted(
            recommendations,
            key=lambda r: (r.priority, r.impact_estimate.improvement),
            reverse=True,
        )
    return ordered[: options.max_recommendations]


def _compare_by_impact(a: PivotRecommendation, b: PivotRecommendation) -> float:
    impact_diff = b.impact_estimate.improvement - a.impact_estimate.improvement
    if abs(impact_diff) > IMPACT_TOLERANCE:
        return impact_diff
    return b.priority - a.priority


def average_metrics(trajectory: Sequence[TrajectoryPoint]) -> dict[str, float]:
    """Mean roi/cpc/ctr/conversions with defaults for missing metrics."""
    defaults = {"roi": 1.0, "cpc": 1.0, "ctr": 0.02, "conversions": 0.0}
    if not trajectory:
        return defaults

    totals: dict[str, float] = defaultdict(float)
    for point in trajectory:
        for metric, value in point.metrics.items():
            totals[metric] += value
    averages = {}
    for metric, default in defaults.items():
        value = totals.get(metric, 0.0) / len(trajectory)
        averages[metric] = value or default
    return averages


def channel_performance(dataset: EnrichedDataset, trajectory: Sequence[TrajectoryPoint]) -> dict[str, dict[str, float]]:
    averages = average_metrics(trajectory)
    performance = {}
    for channel in dataset.campaign.channels:
        multiplier = CHANNEL_MULTIPLIERS.get(channel.type, {"roi": 1.0, "cpc": 1.0, "ctr": 1.0})
        performance[channel.type] = {
            "roi": averages["roi"] * multiplier["roi"] or 1.0,
            "cpc": averages["cpc"] * multiplier["cpc"] or 1.0,
            "ctr": averages["ctr"] * multiplier["ctr"] or 0.02,
            "conversions": averages["conversions"],
        }
    return performance


def creative_scores(creative: CreativeAsset) -> dict[str, float]:
    performance = creative.performance
    return {
        "ctr": performance.ctr or 0.02,
        "engagement": performance.engagement or 0.05,
        "sentiment": performance.sentiment or 0.5,
    }


def creative_issue(creative: CreativeAsset) -> str:
    scores = creative_scores(creative)
    if scores["ctr"] < 0.01:
        return "Low click-through rate"
    if scores["engagement"] < 0.02:
        return "Low engagement rate"
    if scores["sentiment"] < 0.3:
        return "Negative sentiment"
    return "General underperformance"


def creative_refresh_impact(analysis: CreativeAnalysis) -> float:
    """15% base + 5% per fatigue indicator + up to 10% for underperformers, capped at 40%."""
    improvement = 0.15 + len(analysis.fatigue_indicators) * 0.05
    rated = len(analysis.underperforming_creatives) + len(analysis.performing_creatives)
    if rated:
        improvement += len(analysis.underperforming_creatives) / rated * 0.1
    return min(0.4, improvement)


def expansion_opportunities(audiences: Sequence[AudienceConfig]) -> list[AudienceOpportunity]:
    opportunities = []
    for audience in audiences:
        if (audience.estimated_size or 0) <= 10000:
            continue
        size = audience.estimated_size or 10000
        low, high = audience.demographics.age_range
        if low > 18:
            opportunities.append(
                AudienceOpportunity(
                    segment=f"{audience.name}_younger",
                    estimated_size=size * 0.8,
                    similarity=0.85,
                    expected_performance=0.12,
                )
            )
        if high < 65:
            opportunities.append(
                AudienceOpportunity(
                    segment=f"{audience.name}_older",
                    estimated_size=size * 0.6,
                    similarity=0.8,
                    expected_performance=0.1,
                )
            )

    genders = {a.demographics.gender for a in audiences}
    if "all" not in genders:
        opportunities.append(
            AudienceOpportunity(segment="all_genders", estimated_size=50000, similarity=0.75, expected_performance=0.08)
        )
    locations = {loc for a in audiences for loc in a.demographics.location}
    if len(locations) < 5:
        opportunities.append(
            AudienceOpportunity(
                segment="expanded_locations", estimated_size=30000, similarity=0.7, expected_performance=0.09
            )
        )
    return opportunities[:3]


def alternative_channels(dataset: EnrichedDataset) -> list[ChannelAlternative]:
    """Two most suitable unused channels with suitability above 0.6."""
    current = {c.type for c in dataset.campaign.channels}
    suitability = CHANNEL_SUITABILITY.get(dataset.campaign.category, {})
    alternatives = [
        ChannelAlternative(
            channel=channel,
            estimated_cpc=CHANNEL_CPC.get(channel, 1.0),
            estimated_reach=10000 * CHANNEL_REACH.get(channel, 1.0),
            suitability=suitability.get(channel, 0.5),
        )
        for channel in ALL_CHANNELS
        if channel not in current
    ]
    alternatives = [a for a in alternatives if a.suitability > 0.6]
    alternatives.sort(key=lambda a: a.suitability, reverse=True)
    return alternatives[:2]


def hour_label(hour: int) -> str:
    if hour == 0:
        return "12AM"
    if hour < 12:
        return f"{hour}AM"
    if hour == 12:
        return "12PM"
    return f"{hour - 12}PM"


def analyze_timing(trajectory: Sequence[TrajectoryPoint]) -> TimingAnalysis:
    """Compare the top three hours of summed performance against the default schedule."""
    hourly: dict[int, float] = defaultdict(float)
    for point in trajectory:
        hourly[point.date.hour] += sum(point.metrics.values())

    top_hours = sorted(hourly.items(), key=lambda item: item[1], reverse=True)[:3]
    optimal = [hour_label(hour) for hour, _ in top_hours]
    current = {hour_label(hour) for hour in DEFAULT_SCHEDULE_HOURS}
    suboptimal = bool(optimal) and len([t for t in optimal if t in current]) < 2

    return TimingAnalysis(
        suboptimal=suboptimal,
        optimal_times=optimal,
        recommendation=(
            f"Adjust scheduling to focus on {', '.join(optimal)} for better performance"
            if suboptimal
            else "Current timing appears optimal"
        ),
    )


def _preview(trajectory: Sequence[TrajectoryPoint], update) -> list[TrajectoryPoint]:
    """Multiplicative projection of the trajectory."""
    return [
        point.model_copy(update={"metrics": {**point.metrics, **update(point.metrics)}})
        for point in trajectory
    ]
