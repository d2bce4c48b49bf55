"""
Unit tests for the provider adapter boundary.

HTTP calls go through httpx.MockTransport, so no network is used.
"""

import asyncio
import json
from datetime import datetime

import httpx
import pytest

from simengine.connectors import (
    ForecastPoint,
    HTTPPredictionProvider,
    TimeSeriesResult,
    parse_provider_result,
    parse_retry_after,
)
from simengine.engine.errors import (
    DataValidationError,
    ModelAPIError,
    ProcessingTimeoutError,
    RateLimitError,
)
from simengine.models.enums import ProviderFamily
from tests.conftest import make_dataset, make_request

ENDPOINT = "https://models.test/prophet/predict"


def time_series_payload(days: int = 2, metric: str = "ctr", value: float = 0.04) -> dict:
    return {
        "family": "time_series",
        "model_name": "prophet",
        "forecasts": {
            metric: [
                {"ds": f"2030-01-0{day + 1}T00:00:00", "yhat": value, "confidence": 0.9}
                for day in range(days)
            ]
        },
    }


def make_provider(handler, **kwargs) -> HTTPPredictionProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HTTPPredictionProvider(name="prophet", endpoint=ENDPOINT, client=client, **kwargs)


def predict(provider: HTTPPredictionProvider):
    return asyncio.run(provider.predict(make_dataset(), make_request()))


# ============================================================================
# HTTPPredictionProvider
# ============================================================================


class TestHTTPPredictionProvider:
    """Test HTTPPredictionProvider.predict."""

    def test_http_provider_parses_time_series_result(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=time_series_payload())

        output = predict(make_provider(handler, api_key="secret"))

        assert seen["auth"] == "Bearer secret"
        assert seen["body"]["family"] == "time_series"
        assert seen["body"]["request"]["campaign_id"] == "cmp_001"
        assert seen["body"]["dataset"]["campaign"]["id"] == "cmp_001"
        assert [p.metrics["ctr"] for p in output.trajectories] == [0.04, 0.04]
        assert output.model_metadata.model_name == "prophet"
        assert output.model_metadata.confidence_score == pytest.approx(0.9)
        assert output.model_metadata.processing_time >= 0.0
        assert output.confidence_intervals[0].lower == pytest.approx(0.032)
        assert output.confidence_intervals[0].upper == pytest.approx(0.048)

    def test_http_provider_parses_language_model_result(self):
        payload = {
            "family": "language_model",
            "trajectories": [
                {"date": "2030-01-02T00:00:00", "metrics": {"ctr": 0.06}, "confidence": 0.8},
                {"date": "2030-01-01T00:00:00", "metrics": {"ctr": 0.05}, "confidence": 0.8},
            ],
            "metadata": {"model_name": "openai", "confidence_score": 0.85, "processing_time": 1200},
            "reasoning": "Seasonal uplift expected",
        }
        provider = make_provider(lambda request: httpx.Response(200, json=payload))
        provider.family = ProviderFamily.LANGUAGE_MODEL

        output = predict(provider)

        assert [p.metrics["ctr"] for p in output.trajectories] == [0.05, 0.06]
        assert output.model_metadata.prediction_horizon == 2
        assert output.model_metadata.processing_time == pytest.approx(1200)

    def test_http_provider_maps_rate_limit(self):
        provider = make_provider(lambda request: httpx.Response(429, headers={"Retry-After": "7"}, text="slow down"))
        with pytest.raises(RateLimitError) as exc_info:
            predict(provider)
        assert exc_info.value.retry_after == 7.0
        assert exc_info.value.service == "prophet"
        assert exc_info.value.retryable

    def test_http_provider_server_error_is_retryable(self):
        provider = make_provider(lambda request: httpx.Response(503, text="unavailable"))
        with pytest.raises(ModelAPIError) as exc_info:
            predict(provider)
        assert exc_info.value.status_code == 503
        assert exc_info.value.retryable

    def test_http_provider_client_error_is_permanent(self):
        provider = make_provider(lambda request: httpx.Response(400, text="bad request"))
        with pytest.raises(ModelAPIError) as exc_info:
            predict(provider)
        assert exc_info.value.status_code == 400
        assert not exc_info.value.retryable

    def test_http_provider_maps_timeouts(self):
        def handler(request):
            raise httpx.ReadTimeout("read timed out", request=request)

        with pytest.raises(ProcessingTimeoutError):
            predict(make_provider(handler, timeout_seconds=2.0))

    def test_http_provider_maps_transport_errors(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ModelAPIError) as exc_info:
            predict(make_provider(handler))
        assert exc_info.value.status_code is None
        assert exc_info.value.retryable

    def test_http_provider_rejects_malformed_payload(self):
        payload = {"family": "time_series", "forecasts": {"ctr": [{"ds": "2030-01-01", "yhat": "high"}]}}
        with pytest.raises(DataValidationError) as exc_info:
            predict(make_provider(lambda request: httpx.Response(200, json=payload)))
        assert exc_info.value.code == "INVALID_PROVIDER_RESULT"
        assert exc_info.value.context["errors"]

    def test_http_provider_rejects_non_json_body(self):
        provider = make_provider(lambda request: httpx.Response(200, text="<html>oops</html>"))
        with pytest.raises(ModelAPIError) as exc_info:
            predict(provider)
        assert "non-JSON" in exc_info.value.message

    def test_http_provider_keeps_external_client_open(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, json=time_series_payload())))

        async def scenario():
            async with HTTPPredictionProvider(name="prophet", endpoint=ENDPOINT, client=client) as provider:
                await provider.predict(make_dataset(), make_request())
            closed = client.is_closed
            await client.aclose()
            return closed

        assert asyncio.run(scenario()) is False


class TestParseRetryAfter:
    @pytest.mark.parametrize(
        "value,expected",
        [("5", 5.0), ("2.5", 2.5), ("-3", 0.0), (None, None), ("", None), ("Wed, 21 Oct 2030 07:28:00 GMT", None)],
    )
    def test_parse_retry_after(self, value, expected):
        assert parse_retry_after(value) == expected


# ============================================================================
# Provider result shapes
# ============================================================================


class TestProviderResults:
    """Test tagged provider result parsing."""

    def test_forecast_point_defaults_bounds(self):
        point = ForecastPoint(ds=datetime(2030, 1, 1), yhat=10.0)
        assert (point.yhat_lower, point.yhat_upper, point.trend) == (8.0, 12.0, 10.0)

    def test_forecast_point_orders_bounds(self):
        point = ForecastPoint(ds=datetime(2030, 1, 1), yhat=10.0, yhat_lower=12.0, yhat_upper=9.0)
        assert (point.yhat_lower, point.yhat_upper) == (9.0, 12.0)

    def test_time_series_merges_metrics_by_date(self):
        result = TimeSeriesResult(
            forecasts={
                "ctr": [ForecastPoint(ds=datetime(2030, 1, d), yhat=0.04, confidence=0.8) for d in (1, 2)],
                "reach": [ForecastPoint(ds=datetime(2030, 1, 1), yhat=1000.0, confidence=0.6)],
            },
        )
        output = result.to_prediction_output()
        assert len(output.trajectories) == 2
        assert output.trajectories[0].metrics == {"ctr": 0.04, "reach": 1000.0}
        assert output.trajectories[0].confidence == pytest.approx(0.7)
        assert output.trajectories[1].metrics == {"ctr": 0.04}
        assert len(output.confidence_intervals) == 2

    def test_time_series_interval_metric_stops_at_gaps(self):
        result = TimeSeriesResult(
            forecasts={
                "ctr": [ForecastPoint(ds=datetime(2030, 1, d), yhat=0.04) for d in (1, 2)],
                "reach": [ForecastPoint(ds=datetime(2030, 1, 1), yhat=1000.0)],
            },
            interval_metric="reach",
        )
        intervals = result.to_prediction_output().confidence_intervals
        assert len(intervals) == 1
        assert intervals[0].lower == pytest.approx(800.0)
        assert intervals[0].confidence_level == pytest.approx(0.8)

    def test_parse_provider_result_requires_known_family(self):
        with pytest.raises(DataValidationError) as exc_info:
            parse_provider_result({"family": "crystal_ball", "forecasts": {}})
        assert exc_info.value.value == "crystal_ball"

    def test_parse_provider_result_rejects_non_objects(self):
        with pytest.raises(DataValidationError):
            parse_provider_result(["not", "a", "result"])
