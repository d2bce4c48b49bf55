"""
Abstract collaborator interfaces for data and prediction providers.

The engine never talks to a vendor directly. Campaign and market data come
from a DatasetProvider; forecasts come from one PredictionProvider per model
family. Both are async since concrete implementations are network bound.
"""

from abc import ABC, abstractmethod
from typing import Sequence

from simengine.models.dataset import EnrichedDataset
from simengine.models.enums import ProviderFamily
from simengine.models.prediction import PredictionOutput
from simengine.models.request import ExternalDataSource, SimulationRequest


class DatasetProvider(ABC):
    """Assembles the enriched dataset for a campaign."""

    @abstractmethod
    async def get_enriched_dataset(
        self, campaign_id: str, sources: Sequence[ExternalDataSource]
    ) -> EnrichedDataset:
        """
        Load campaign, market and external data.

        Args:
            campaign_id: Campaign identifier
            sources: Enabled external data sources

        Returns:
            Read-only enriched dataset

        Raises:
            InsufficientDataError: If the campaign cannot be assembled
        """
        pass


class PredictionProvider(ABC):
    """
    A single forecasting model behind the adapter boundary.

    Attributes:
        name: Provider name used for ensemble weights and circuit breaking
        family: Result shape the provider produces
        weight: Declared static ensemble weight
    """

    name: str = "provider"
    family: ProviderFamily = ProviderFamily.TIME_SERIES
    weight: float = 1.0

    @abstractmethod
    async def predict(self, dataset: EnrichedDataset, request: SimulationRequest) -> PredictionOutput:
        """
        Forecast the requested window.

        Raises:
            DataValidationError: Provider returned a malformed payload
            ModelAPIError: Provider call failed
            RateLimitError: Provider asked the caller to back off
            ProcessingTimeoutError: Provider did not answer in time
        """
        pass
