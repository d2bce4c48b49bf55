"""
Enriched dataset models.

The dataset is assembled by a DatasetProvider collaborator from campaign,
market and external sources. The engine only reads it; every model here is
frozen.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DataQualityScore(BaseModel):
    """Data quality dimensions, each in [0, 1]."""

    model_config = ConfigDict(frozen=True)

    completeness: float = Field(default=0.8, ge=0.0, le=1.0)
    accuracy: float = Field(default=0.8, ge=0.0, le=1.0)
    freshness: float = Field(default=0.8, ge=0.0, le=1.0)
    consistency: float = Field(default=0.8, ge=0.0, le=1.0)
    overall: float = Field(default=0.8, ge=0.0, le=1.0)


class Demographics(BaseModel):
    model_config = ConfigDict(frozen=True)

    age_range: tuple[int, int] = Field(default=(18, 65), description="Inclusive age band")
    gender: str = Field(default="all", description="male, female or all")
    location: list[str] = Field(default_factory=list, description="Targeted locations")
    interests: list[str] = Field(default_factory=list, description="Targeted interests")

    @field_validator("age_range")
    @classmethod
    def ordered_age_range(cls, v: tuple[int, int]) -> tuple[int, int]:
        """Ensure the age band is ordered."""
        if v[0] > v[1]:
            raise ValueError("age_range must be (min, max)")
        return v


class AudienceConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    demographics: Demographics = Field(default_factory=Demographics)
    estimated_size: Optional[int] = Field(default=None, ge=0, description="Estimated audience size")


class ChannelConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str = Field(description="Channel name (facebook, google, ...)")
    enabled: bool = True
    budget: float = Field(default=0.0, ge=0.0)
    settings: dict[str, Any] = Field(default_factory=dict)


class CampaignData(BaseModel):
    """Campaign facts as configured by the advertiser."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    budget: float = Field(default=0.0, ge=0.0)
    category: str = Field(default="social", description="pr, content, social, ...")
    channels: list[ChannelConfig] = Field(default_factory=list)
    audiences: list[AudienceConfig] = Field(default_factory=list)
    kpis: dict[str, float] = Field(default_factory=dict)


class PerformanceMetric(BaseModel):
    """One historical observation."""

    model_config = ConfigDict(frozen=True)

    date: datetime
    metric: str
    value: float
    channel: Optional[str] = None
    audience: Optional[str] = None


class CreativePerformance(BaseModel):
    model_config = ConfigDict(frozen=True)

    ctr: Optional[float] = None
    engagement: Optional[float] = None
    sentiment: Optional[float] = None


class CreativeAsset(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    type: str = Field(default="image", description="image, video, text, ...")
    content: str = ""
    performance: CreativePerformance = Field(default_factory=CreativePerformance)


class BudgetAllocation(BaseModel):
    """Budget split per channel; spent is cumulative to date."""

    model_config = ConfigDict(frozen=True)

    total: float = Field(default=0.0, ge=0.0)
    allocated: dict[str, float] = Field(default_factory=dict)
    spent: dict[str, float] = Field(default_factory=dict)
    remaining: float = Field(default=0.0)

    @property
    def total_spent(self) -> float:
        return sum(self.spent.values())


class CompetitorMetric(BaseModel):
    model_config = ConfigDict(frozen=True)

    competitor: str
    metric: str
    value: float
    date: datetime
    source: str = ""


class SeasonalTrend(BaseModel):
    model_config = ConfigDict(frozen=True)

    keyword: str
    trend: float = Field(description="Search/interest trend index, 0-100")
    date: datetime


class MarketVolatility(BaseModel):
    model_config = ConfigDict(frozen=True)

    overall: float = Field(default=0.0, ge=0.0)
    by_channel: dict[str, float] = Field(default_factory=dict)
    by_audience: dict[str, float] = Field(default_factory=dict)
    factors: list[str] = Field(default_factory=list)


class MarketDataset(BaseModel):
    model_config = ConfigDict(frozen=True)

    competitor_activity: list[CompetitorMetric] = Field(default_factory=list)
    seasonal_trends: list[SeasonalTrend] = Field(default_factory=list)
    industry_benchmarks: dict[str, float] = Field(default_factory=dict)
    market_volatility: MarketVolatility = Field(default_factory=MarketVolatility)


class EnrichedDataset(BaseModel):
    """
    Campaign, market and external data consumed by a simulation.

    Attributes:
        campaign: Campaign configuration
        historical_performance: Historical metric observations
        audience_insights: Free-form audience insight payload
        creative_assets: Creatives with their observed performance
        budget_allocation: Budget split and spend to date
        market_data: Competitor, seasonal and volatility data
        external_data: Payloads from enabled external sources
        data_quality: Quality score of the assembled dataset
    """

    model_config = ConfigDict(frozen=True)

    campaign: CampaignData
    historical_performance: list[PerformanceMetric] = Field(default_factory=list)
    audience_insights: dict[str, Any] = Field(default_factory=dict)
    creative_assets: list[CreativeAsset] = Field(default_factory=list)
    budget_allocation: BudgetAllocation = Field(default_factory=BudgetAllocation)
    market_data: MarketDataset = Field(default_factory=MarketDataset)
    external_data: dict[str, Any] = Field(default_factory=dict)
    data_quality: DataQualityScore = Field(default_factory=DataQualityScore)
