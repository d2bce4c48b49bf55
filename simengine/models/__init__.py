"""
Pydantic v2 data models for the campaign simulation engine.

Model Organization:
    - enums: Enumeration types shared across the engine
    - dataset: Enriched campaign and market dataset (read-only input)
    - request: Simulation request, timeframe and run context
    - prediction: Trajectories, provider predictions and ensemble metadata
    - results: Scenarios, risk alerts, recommendations and final results
    - queue: Processing queue entries, tier limits and metrics
    - performance: Observed actuals, accuracy metrics and performance reports
    - impact: What-if projections and recommendation comparisons

Usage:
    >>> from simengine.models import SimulationRequest, Timeframe
    >>> request = SimulationRequest(
    ...     campaign_id="cmp_1",
    ...     timeframe=Timeframe(start_date=start, end_date=start + timedelta(days=30)),
    ...     metrics=[MetricSpec(type="ctr", weight=1.0)],
    ...     scenarios=[ScenarioConfig(type=ScenarioType.REALISTIC)],
    ... )
"""

from .enums import (
    ActualDataSource,
    AdjustmentFactor,
    EffortLevel,
    ErrorType,
    Granularity,
    MetricType,
    PerformanceAlertType,
    PerformanceStatus,
    ProviderFamily,
    RecommendationType,
    RiskType,
    ScenarioType,
    Severity,
    SimulationStatus,
    SubscriptionTier,
    WeightingStrategy,
)
from .dataset import (
    AudienceConfig,
    BudgetAllocation,
    CampaignData,
    ChannelConfig,
    CompetitorMetric,
    CreativeAsset,
    CreativePerformance,
    DataQualityScore,
    Demographics,
    EnrichedDataset,
    MarketDataset,
    MarketVolatility,
    PerformanceMetric,
    SeasonalTrend,
)
from .request import (
    DateRange,
    ExternalDataSource,
    MetricSpec,
    ScenarioAdjustment,
    ScenarioConfig,
    SimulationContext,
    SimulationRequest,
    Timeframe,
)
from .prediction import (
    ConfidenceInterval,
    EnsembleMetrics,
    FeatureImportance,
    ModelMetadata,
    ModelPrediction,
    PredictionOutput,
    TrajectoryPoint,
)
from .results import (
    CacheStatistics,
    FeedbackRecord,
    ImpactEstimate,
    ImplementationPlan,
    PivotRecommendation,
    RiskAlert,
    ScenarioResult,
    SimulationFailure,
    SimulationResult,
    SimulationStatusReport,
    ValidationIssue,
    ValidationResult,
    ValidationWarning,
)
from .queue import OrganizationQueueStatus, QueueMetrics, SimulationQueueEntry, TierLimits
from .performance import (
    AccuracyMetrics,
    ActualPerformance,
    ModelPerformanceReport,
    PerformanceAlert,
    PerformanceTrendPoint,
    PredictionComparison,
)
from .impact import (
    BaselineComparison,
    EstimatedImpact,
    ImpactEstimationResult,
    ImplementationComplexity,
    RecommendationComparison,
    UncertaintyBounds,
    WhatIfScenario,
)

__all__ = [
    # Enumerations
    "ActualDataSource",
    "AdjustmentFactor",
    "EffortLevel",
    "ErrorType",
    "Granularity",
    "MetricType",
    "PerformanceAlertType",
    "PerformanceStatus",
    "ProviderFamily",
    "RecommendationType",
    "RiskType",
    "ScenarioType",
    "Severity",
    "SimulationStatus",
    "SubscriptionTier",
    "WeightingStrategy",
    # Dataset
    "AudienceConfig",
    "BudgetAllocation",
    "CampaignData",
    "ChannelConfig",
    "CompetitorMetric",
    "CreativeAsset",
    "CreativePerformance",
    "DataQualityScore",
    "Demographics",
    "EnrichedDataset",
    "MarketDataset",
    "MarketVolatility",
    "PerformanceMetric",
    "SeasonalTrend",
    # Request
    "DateRange",
    "ExternalDataSource",
    "MetricSpec",
    "ScenarioAdjustment",
    "ScenarioConfig",
    "SimulationContext",
    "SimulationRequest",
    "Timeframe",
    # Prediction
    "ConfidenceInterval",
    "EnsembleMetrics",
    "FeatureImportance",
    "ModelMetadata",
    "ModelPrediction",
    "PredictionOutput",
    "TrajectoryPoint",
    # Results
    "CacheStatistics",
    "FeedbackRecord",
    "ImpactEstimate",
    "ImplementationPlan",
    "PivotRecommendation",
    "RiskAlert",
    "ScenarioResult",
    "SimulationFailure",
    "SimulationResult",
    "SimulationStatusReport",
    "ValidationIssue",
    "ValidationResult",
    "ValidationWarning",
    # Queue
    "OrganizationQueueStatus",
    "QueueMetrics",
    "SimulationQueueEntry",
    "TierLimits",
    # Performance
    "AccuracyMetrics",
    "ActualPerformance",
    "ModelPerformanceReport",
    "PerformanceAlert",
    "PerformanceTrendPoint",
    "PredictionComparison",
    # Impact
    "BaselineComparison",
    "EstimatedImpact",
    "ImpactEstimationResult",
    "ImplementationComplexity",
    "RecommendationComparison",
    "UncertaintyBounds",
    "WhatIfScenario",
]
