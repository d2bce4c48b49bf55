"""
Simulation request models.

A SimulationRequest is immutable once submitted: the cache key, queue entry
and stored result all refer to the same frozen instance.
"""

import math
from datetime import datetime, timedelta
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from .dataset import EnrichedDataset
from .enums import AdjustmentFactor, Granularity, ScenarioType, SubscriptionTier


class DateRange(BaseModel):
    """Inclusive date window."""

    model_config = ConfigDict(frozen=True)

    start: datetime = Field(description="Window start (inclusive)")
    end: datetime = Field(description="Window end (inclusive)")

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end


class Timeframe(BaseModel):
    """
    Simulation window.

    Attributes:
        start_date: First day of the simulated window
        end_date: End of the simulated window
        granularity: Period length of trajectory points
    """

    model_config = ConfigDict(frozen=True)

    start_date: datetime = Field(description="Window start")
    end_date: datetime = Field(description="Window end")
    granularity: Granularity = Field(default=Granularity.DAILY, description="daily or weekly periods")

    @property
    def days(self) -> int:
        """Whole days covered by the window, rounded up."""
        seconds = (self.end_date - self.start_date).total_seconds()
        return max(0, math.ceil(seconds / 86400))

    @property
    def periods(self) -> int:
        """Number of trajectory points the window spans."""
        if self.granularity == Granularity.WEEKLY:
            return max(0, math.ceil(self.days / 7))
        return self.days

    def period_dates(self) -> list[datetime]:
        """Start date of every period in the window."""
        step = timedelta(days=7 if self.granularity == Granularity.WEEKLY else 1)
        return [self.start_date + step * i for i in range(self.periods)]


class MetricSpec(BaseModel):
    """A requested metric with its weight in the overall objective."""

    model_config = ConfigDict(frozen=True)

    type: str = Field(description="Metric name (ctr, impressions, ...)")
    weight: float = Field(default=1.0, description="Relative weight, expected in [0, 1]")
    benchmark_source: Optional[str] = Field(default=None, description="Optional benchmark source")


class ScenarioAdjustment(BaseModel):
    """A user lever applied to a scenario inside an optional window."""

    model_config = ConfigDict(frozen=True)

    factor: AdjustmentFactor = Field(description="Lever being adjusted")
    multiplier: float = Field(ge=0.0, description="Raw multiplier (1.0 = unchanged)")
    timeframe: Optional[DateRange] = Field(
        default=None, description="Window the adjustment applies to; whole trajectory if omitted"
    )


class ScenarioConfig(BaseModel):
    """Requested scenario with optional percentile override and adjustments."""

    model_config = ConfigDict(frozen=True)

    type: ScenarioType = Field(description="Scenario type")
    percentile: Optional[float] = Field(default=None, description="Explicit percentile 0-100")
    adjustments: list[ScenarioAdjustment] = Field(default_factory=list, description="User levers")


class ExternalDataSource(BaseModel):
    """External market data source toggle."""

    model_config = ConfigDict(frozen=True)

    source: str = Field(description="Source identifier")
    enabled: bool = Field(default=True, description="Whether the source is used")
    config: dict[str, Any] = Field(default_factory=dict, description="Source-specific options")


class SimulationRequest(BaseModel):
    """
    A request to simulate a campaign over a time window.

    Attributes:
        campaign_id: Campaign being simulated
        timeframe: Simulated window
        metrics: Ordered requested metrics
        scenarios: Ordered scenario configurations
        external_data_sources: External sources to enrich the dataset with
    """

    model_config = ConfigDict(frozen=True)

    campaign_id: str = Field(description="Campaign identifier")
    timeframe: Timeframe = Field(description="Simulation window")
    metrics: list[MetricSpec] = Field(default_factory=list, description="Requested metrics")
    scenarios: list[ScenarioConfig] = Field(default_factory=list, description="Requested scenarios")
    external_data_sources: list[ExternalDataSource] = Field(
        default_factory=list, description="External data sources"
    )

    @property
    def enabled_sources(self) -> list[ExternalDataSource]:
        return [s for s in self.external_data_sources if s.enabled]


class SimulationContext(BaseModel):
    """Everything a pipeline stage needs about one simulation run."""

    simulation_id: str = Field(description="Simulation identifier")
    organization_id: str = Field(description="Owning organization")
    user_id: str = Field(description="Requesting user")
    tier: SubscriptionTier = Field(default=SubscriptionTier.FREE, description="Subscription tier")
    request: SimulationRequest = Field(description="Submitted request")
    dataset: EnrichedDataset = Field(description="Enriched campaign and market data")
