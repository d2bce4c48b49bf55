"""
Pytest configuration and shared fixtures for the simulation engine test suite.

Provides pydantic model factories, in-memory fakes for the dataset and
prediction providers, and environment isolation so retry and queue delays
never slow the suite down.
"""

import asyncio
import os
from datetime import datetime, timedelta
from typing import Optional, Sequence, Union

import pytest

# Settings are cached on first use; configure them BEFORE importing the engine
os.environ["RETRY_BASE_DELAY_SECONDS"] = "0"
os.environ["RETRY_MAX_JITTER_SECONDS"] = "0"
os.environ["QUEUE_RETRY_DELAY_SECONDS"] = "0"
os.environ["QUEUE_TICK_INTERVAL_SECONDS"] = "0.01"
os.environ["LOG_LEVEL"] = "warning"


# ---------------------------------------------------------------------------
# Pydantic model factories reused across all test suites
# ---------------------------------------------------------------------------

from simengine.connectors.base import DatasetProvider, PredictionProvider
from simengine.engine.retry import RetryPolicy
from simengine.models.dataset import (
    AudienceConfig,
    BudgetAllocation,
    CampaignData,
    ChannelConfig,
    CompetitorMetric,
    CreativeAsset,
    DataQualityScore,
    EnrichedDataset,
    MarketDataset,
    MarketVolatility,
    PerformanceMetric,
    SeasonalTrend,
)
from simengine.models.enums import Granularity, ProviderFamily, ScenarioType, SubscriptionTier
from simengine.models.prediction import (
    ConfidenceInterval,
    ModelMetadata,
    ModelPrediction,
    PredictionOutput,
    TrajectoryPoint,
)
from simengine.models.request import (
    ExternalDataSource,
    MetricSpec,
    ScenarioConfig,
    SimulationContext,
    SimulationRequest,
    Timeframe,
)
from simengine.orchestrator import SimulationOrchestrator
from simengine.storage import InMemoryStorage
from simengine.utils.logging import configure_logging

configure_logging()

# Far enough ahead that request validation never warns about a past start
BASE_DATE = datetime(2030, 1, 1)

SeriesSpec = Union[float, Sequence[float]]


def make_timeframe(
    days: int = 30,
    start: datetime = BASE_DATE,
    granularity: Granularity = Granularity.DAILY,
) -> Timeframe:
    """Factory function for creating test Timeframe objects."""
    return Timeframe(start_date=start, end_date=start + timedelta(days=days), granularity=granularity)


def make_request(
    campaign_id: str = "cmp_001",
    days: int = 30,
    metrics: Sequence[str] = ("ctr",),
    scenarios: Sequence[ScenarioType] = (ScenarioType.REALISTIC,),
    sources: Sequence[str] = (),
    **overrides,
) -> SimulationRequest:
    """Factory function for creating test SimulationRequest objects."""
    weight = 1.0 / len(metrics) if metrics else 1.0
    defaults = dict(
        campaign_id=campaign_id,
        timeframe=make_timeframe(days),
        metrics=[m if isinstance(m, MetricSpec) else MetricSpec(type=m, weight=weight) for m in metrics],
        scenarios=[s if isinstance(s, ScenarioConfig) else ScenarioConfig(type=s) for s in scenarios],
        external_data_sources=[ExternalDataSource(source=s) for s in sources],
    )
    defaults.update(overrides)
    return SimulationRequest(**defaults)


def make_trajectory(
    days: int = 30,
    confidence: float = 0.9,
    start: datetime = BASE_DATE,
    **series: SeriesSpec,
) -> list[TrajectoryPoint]:
    """
    Factory function for daily trajectories.

    Each keyword is a metric: a float repeats for every day, a sequence
    gives the value per day. Defaults to a constant ctr of 0.04.
    """
    series = series or {"ctr": 0.04}
    points = []
    for day in range(days):
        metrics = {}
        for metric, values in series.items():
            metrics[metric] = float(values if isinstance(values, (int, float)) else values[day])
        points.append(TrajectoryPoint(date=start + timedelta(days=day), metrics=metrics, confidence=confidence))
    return points


def make_prediction_output(
    model_name: str = "prophet",
    trajectory: Optional[list[TrajectoryPoint]] = None,
    confidence_score: float = 0.9,
    with_intervals: bool = False,
) -> PredictionOutput:
    """Factory function for creating test PredictionOutput objects."""
    trajectory = trajectory if trajectory is not None else make_trajectory()
    intervals = []
    if with_intervals:
        intervals = [
            ConfidenceInterval(lower=p.metrics.get("ctr", 0.0) * 0.8, upper=p.metrics.get("ctr", 0.0) * 1.2)
            for p in trajectory
        ]
    return PredictionOutput(
        trajectories=trajectory,
        confidence_intervals=intervals,
        model_metadata=ModelMetadata(
            model_name=model_name,
            confidence_score=confidence_score,
            prediction_horizon=len(trajectory),
        ),
    )


def make_prediction(
    model_name: str = "prophet",
    trajectory: Optional[list[TrajectoryPoint]] = None,
    confidence: float = 0.9,
    weight: float = 1.0,
    processing_time_ms: float = 0.0,
    **overrides,
) -> ModelPrediction:
    """Factory function for creating test ModelPrediction objects."""
    defaults = dict(
        model_name=model_name,
        prediction=make_prediction_output(model_name, trajectory, confidence),
        weight=weight,
        confidence=confidence,
        processing_time_ms=processing_time_ms,
    )
    defaults.update(overrides)
    return ModelPrediction(**defaults)


def make_history(days: int = 30, metric: str = "ctr", value: float = 0.04) -> list[PerformanceMetric]:
    """Daily historical records ending the day before BASE_DATE."""
    return [
        PerformanceMetric(date=BASE_DATE - timedelta(days=days - day), metric=metric, value=value)
        for day in range(days)
    ]


def make_dataset(
    campaign_id: str = "cmp_001",
    budget: float = 10000.0,
    channels: Sequence[str] = ("facebook", "google"),
    category: str = "social",
    history: Optional[list[PerformanceMetric]] = None,
    audiences: Optional[list[AudienceConfig]] = None,
    creatives: Optional[list[CreativeAsset]] = None,
    budget_allocation: Optional[BudgetAllocation] = None,
    competitor_activity: Optional[list[CompetitorMetric]] = None,
    seasonal_trends: Optional[list[SeasonalTrend]] = None,
    volatility: float = 0.0,
    data_quality: float = 0.8,
    **overrides,
) -> EnrichedDataset:
    """Factory function for creating test EnrichedDataset objects."""
    defaults = dict(
        campaign=CampaignData(
            id=campaign_id,
            name="Spring launch",
            budget=budget,
            category=category,
            channels=[ChannelConfig(type=c, budget=budget / max(1, len(channels))) for c in channels],
            audiences=audiences or [],
        ),
        historical_performance=history if history is not None else make_history(),
        creative_assets=creatives or [],
        budget_allocation=budget_allocation or BudgetAllocation(),
        market_data=MarketDataset(
            competitor_activity=competitor_activity or [],
            seasonal_trends=seasonal_trends or [],
            market_volatility=MarketVolatility(overall=volatility),
        ),
        data_quality=DataQualityScore(
            completeness=data_quality,
            accuracy=data_quality,
            freshness=data_quality,
            consistency=data_quality,
            overall=data_quality,
        ),
    )
    defaults.update(overrides)
    return EnrichedDataset(**defaults)


def make_context(
    request: Optional[SimulationRequest] = None,
    dataset: Optional[EnrichedDataset] = None,
    simulation_id: str = "sim_test_001",
    tier: SubscriptionTier = SubscriptionTier.PRO,
) -> SimulationContext:
    """Factory function for creating test SimulationContext objects."""
    return SimulationContext(
        simulation_id=simulation_id,
        organization_id="org_001",
        user_id="user_001",
        tier=tier,
        request=request or make_request(),
        dataset=dataset or make_dataset(),
    )


# ---------------------------------------------------------------------------
# Provider fakes
# ---------------------------------------------------------------------------


class StaticDatasetProvider(DatasetProvider):
    """Returns a fixed dataset, or raises a configured error."""

    def __init__(self, dataset: Optional[EnrichedDataset] = None, error: Optional[Exception] = None):
        self.dataset = dataset or make_dataset()
        self.error = error
        self.calls: list[str] = []

    async def get_enriched_dataset(self, campaign_id, sources):
        self.calls.append(campaign_id)
        if self.error is not None:
            raise self.error
        return self.dataset.model_copy(deep=True)


class StaticPredictionProvider(PredictionProvider):
    """
    Returns a fixed prediction.

    `errors` are raised one per call before the provider starts answering;
    `delay_seconds` makes every call sleep first.
    """

    def __init__(
        self,
        name: str = "prophet",
        output: Optional[PredictionOutput] = None,
        errors: Sequence[Exception] = (),
        weight: float = 1.0,
        delay_seconds: float = 0.0,
        family: ProviderFamily = ProviderFamily.TIME_SERIES,
    ):
        self.name = name
        self.family = family
        self.weight = weight
        self.output = output or make_prediction_output(name)
        self.errors = list(errors)
        self.delay_seconds = delay_seconds
        self.calls = 0

    async def predict(self, dataset, request):
        self.calls += 1
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if self.errors:
            raise self.errors.pop(0)
        return self.output.model_copy(deep=True)


def make_orchestrator(
    providers: Optional[Sequence[PredictionProvider]] = None,
    dataset: Optional[EnrichedDataset] = None,
    storage: Optional[InMemoryStorage] = None,
    dataset_provider: Optional[DatasetProvider] = None,
    **overrides,
) -> SimulationOrchestrator:
    """Orchestrator wired to fakes, fresh storage and zero-delay retries."""
    defaults = dict(
        dataset_provider=dataset_provider or StaticDatasetProvider(dataset),
        providers=providers if providers is not None else [StaticPredictionProvider()],
        storage=storage if storage is not None else InMemoryStorage(),
        retry_policy=RetryPolicy(max_retries=1, base_delay_seconds=0.0, max_jitter_seconds=0.0),
        provider_timeout_seconds=5.0,
        queue_options={"tick_interval_seconds": 0.01, "retry_delay_seconds": 0.0, "max_retries": 0},
    )
    defaults.update(overrides)
    return SimulationOrchestrator(**defaults)


# ---------------------------------------------------------------------------
# Pytest fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def storage():
    """Fresh InMemoryStorage instance for each test."""
    return InMemoryStorage()


@pytest.fixture
def sample_request():
    """30-day realistic ctr simulation."""
    return make_request()


@pytest.fixture
def sample_dataset():
    """Campaign with 30 days of flat ctr history and two channels."""
    return make_dataset()


@pytest.fixture
def sample_context(sample_request, sample_dataset):
    return make_context(sample_request, sample_dataset)


@pytest.fixture
def declining_trajectory():
    """ctr falling linearly from 0.10 to 0.013 over 30 days."""
    return make_trajectory(ctr=[0.10 - 0.003 * day for day in range(30)])
