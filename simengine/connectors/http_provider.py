"""
Generic HTTP JSON prediction provider.

Posts the enriched dataset and simulation request to a model endpoint and
validates the answer through the tagged provider-result union. HTTP failures
are mapped into the engine's error taxonomy so the orchestrator's retry and
circuit-breaking logic can act on them:

- 429 -> RateLimitError (honors Retry-After)
- 5xx -> ModelAPIError (retryable)
- other 4xx -> ModelAPIError (not retryable)
- timeouts -> ProcessingTimeoutError
- transport errors -> ModelAPIError without status (retryable)
"""

import time
from typing import Any, Optional

import httpx
import structlog

from simengine.config import get_settings
from simengine.connectors.base import PredictionProvider
from simengine.connectors.provider_results import parse_provider_result
from simengine.engine.errors import ModelAPIError, ProcessingTimeoutError, RateLimitError
from simengine.models.dataset import EnrichedDataset
from simengine.models.enums import ProviderFamily
from simengine.models.prediction import PredictionOutput
from simengine.models.request import SimulationRequest

logger = structlog.get_logger()


class HTTPPredictionProvider(PredictionProvider):
    """
    Prediction provider backed by an HTTP JSON endpoint.

    The endpoint receives `{"dataset": ..., "request": ...}` and must answer
    with a provider result tagged by `family`. Use as an async context
    manager, or pass a preconfigured client (e.g. one using
    httpx.MockTransport in tests).

    Attributes:
        name: Provider name
        endpoint: Absolute URL of the prediction endpoint
        family: Expected result family, sent as a hint to the endpoint
        weight: Declared static ensemble weight
    """

    def __init__(
        self,
        name: str,
        endpoint: str,
        family: ProviderFamily = ProviderFamily.TIME_SERIES,
        weight: float = 1.0,
        api_key: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the provider.

        Args:
            name: Provider name used in weights and circuit breaking
            endpoint: Prediction endpoint URL
            family: Result family the endpoint produces
            weight: Declared static ensemble weight
            api_key: Optional bearer token
            timeout_seconds: HTTP timeout (provider_timeout_seconds by default)
            client: Externally managed HTTP client
        """
        self.name = name
        self.endpoint = endpoint
        self.family = family
        self.weight = weight
        self._api_key = api_key
        self.timeout_seconds = timeout_seconds or get_settings().provider_timeout_seconds
        self._http_client = client
        self._owns_client = client is None

        logger.info(
            "http_provider_initialized",
            provider=name,
            endpoint=endpoint,
            family=family.value,
            has_credentials=bool(api_key),
        )

    async def __aenter__(self):
        """Async context manager entry."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout_seconds)
            self._owns_client = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.aclose()

    async def aclose(self) -> None:
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def build_payload(self, dataset: EnrichedDataset, request: SimulationRequest) -> dict[str, Any]:
        return {
            "family": self.family.value,
            "dataset": dataset.model_dump(mode="json"),
            "request": request.model_dump(mode="json"),
        }

    async def predict(self, dataset: EnrichedDataset, request: SimulationRequest) -> PredictionOutput:
        """
        Request a forecast from the endpoint.

        Args:
            dataset: Enriched campaign dataset
            request: Simulation request

        Returns:
            Validated prediction output

        Raises:
            RateLimitError: Endpoint answered 429
            ModelAPIError: Endpoint failed or was unreachable
            ProcessingTimeoutError: Endpoint did not answer in time
            DataValidationError: Endpoint answered with a malformed result
        """
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout_seconds)
            self._owns_client = True

        started = time.perf_counter()
        try:
            response = await self._http_client.post(
                self.endpoint,
                json=self.build_payload(dataset, request),
                headers=self._headers(),
            )
            response.raise_for_status()

        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            logger.error(
                "provider_request_failed",
                provider=self.name,
                status_code=status_code,
                error=e.response.text[:500],
            )
            if status_code == 429:
                raise RateLimitError(
                    f"Provider {self.name} rate limited the request",
                    service=self.name,
                    retry_after=parse_retry_after(e.response.headers.get("Retry-After")),
                ) from e
            raise ModelAPIError(
                f"Provider {self.name} request failed: {e.response.text[:200]}",
                model_name=self.name,
                status_code=status_code,
            ) from e

        except httpx.TimeoutException as e:
            logger.error("provider_request_timeout", provider=self.name, timeout_seconds=self.timeout_seconds)
            raise ProcessingTimeoutError(
                f"Provider {self.name} timed out after {self.timeout_seconds}s",
                self.timeout_seconds,
            ) from e

        except httpx.HTTPError as e:
            logger.error("provider_request_error", provider=self.name, error=str(e))
            raise ModelAPIError(
                f"Provider {self.name} unreachable: {e}",
                model_name=self.name,
            ) from e

        elapsed_ms = (time.perf_counter() - started) * 1000
        try:
            payload = response.json()
        except ValueError as e:
            raise ModelAPIError(
                f"Provider {self.name} returned a non-JSON body",
                model_name=self.name,
                status_code=response.status_code,
            ) from e

        output = parse_provider_result(payload)
        if not output.model_metadata.processing_time:
            output.model_metadata.processing_time = elapsed_ms

        logger.debug(
            "provider_request_success",
            provider=self.name,
            status_code=response.status_code,
            points=len(output.trajectories),
            duration_ms=round(elapsed_ms, 2),
        )
        return output


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Retry-After header in seconds; HTTP-date values are ignored."""
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None
