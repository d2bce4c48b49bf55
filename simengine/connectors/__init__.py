"""
Provider adapter boundary for the simulation engine.

This package defines the collaborator contracts the engine depends on and a
generic HTTP adapter:
- DatasetProvider / PredictionProvider abstract interfaces
- Tagged provider results validated eagerly with pydantic
- HTTP JSON prediction provider with error taxonomy mapping

Usage:
    >>> from simengine.connectors import HTTPPredictionProvider
    >>>
    >>> async with HTTPPredictionProvider(
    ...     name="prophet",
    ...     endpoint="https://models.internal/prophet/predict",
    ... ) as provider:
    ...     output = await provider.predict(dataset, request)
"""

from simengine.connectors.base import DatasetProvider, PredictionProvider
from simengine.connectors.http_provider import HTTPPredictionProvider, parse_retry_after
from simengine.connectors.provider_results import (
    ForecastPoint,
    LanguageModelResult,
    ProviderResult,
    TimeSeriesResult,
    parse_provider_result,
)

__all__ = [
    # Contracts
    "DatasetProvider",
    "PredictionProvider",
    # Result shapes
    "ForecastPoint",
    "LanguageModelResult",
    "ProviderResult",
    "TimeSeriesResult",
    "parse_provider_result",
    # HTTP adapter
    "HTTPPredictionProvider",
    "parse_retry_after",
]
