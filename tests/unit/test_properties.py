"""
Property-based tests using Hypothesis for the simulation engine.

These tests check bounds and invariants of the ensemble, scenario, trend,
risk and cache components across generated inputs.
"""

import hypothesis.strategies as st
import pytest
from hypothesis import assume, given, settings

from simengine.caching import generate_cache_key
from simengine.engine.ensemble import EnsembleConfig, EnsembleCoordinator
from simengine.engine.risk_detector import (
    RiskDetectionOptions,
    RiskDetector,
    calculate_severity,
    relative_decline,
)
from simengine.engine.scenario_generator import ScenarioGenerator, percentile_to_factor
from simengine.engine.trend_analyzer import DECREASING, INCREASING, STABLE, TrendAnalyzer
from simengine.models.enums import ScenarioType, WeightingStrategy
from simengine.models.request import ScenarioConfig
from tests.conftest import make_context, make_dataset, make_prediction, make_request, make_trajectory

model_names = st.lists(
    st.sampled_from(["openai", "prophet", "huggingface", "lstm", "custom_model"]),
    min_size=1,
    max_size=5,
    unique=True,
)
unit_floats = st.floats(min_value=0.0, max_value=1.0, allow_nan=False, allow_infinity=False)


# =============================================================================
# EnsembleCoordinator Property Tests
# =============================================================================


@given(
    names=model_names,
    strategy=st.sampled_from(list(WeightingStrategy)),
    confidences=st.lists(unit_floats, min_size=5, max_size=5),
    processing_times=st.lists(st.floats(min_value=0.0, max_value=60000.0), min_size=5, max_size=5),
)
@settings(max_examples=100)
def test_prop_ensemble_weights_sum_to_one(names, strategy, confidences, processing_times):
    """
    Invariant: weights are non-negative and sum to 1 under every strategy.
    """
    coordinator = EnsembleCoordinator(EnsembleConfig(weighting_strategy=strategy))
    predictions = [
        make_prediction(name, confidence=confidences[i], processing_time_ms=processing_times[i])
        for i, name in enumerate(names)
    ]

    weights = coordinator.calculate_weights(predictions, make_dataset())

    assert set(weights) == set(names)
    assert all(w >= 0.0 for w in weights.values())
    assert sum(weights.values()) == pytest.approx(1.0)


@given(
    values=st.lists(
        st.floats(min_value=0.001, max_value=1.0, allow_nan=False, allow_infinity=False),
        min_size=2,
        max_size=4,
    ),
    confidences=st.lists(st.floats(min_value=0.6, max_value=1.0), min_size=4, max_size=4),
)
@settings(max_examples=100)
def test_prop_ensemble_merge_stays_within_inputs(values, confidences):
    """
    Invariant: every merged metric value is a weighted average, so it lies
    between the smallest and largest provider value for that point.
    """
    names = ["openai", "prophet", "huggingface", "lstm"][: len(values)]
    predictions = [
        make_prediction(name, trajectory=make_trajectory(days=5, ctr=value), confidence=confidences[i])
        for i, (name, value) in enumerate(zip(names, values))
    ]

    merged = EnsembleCoordinator().combine(predictions, make_dataset())

    assert len(merged.trajectories) == 5
    for point in merged.trajectories:
        assert min(values) - 1e-9 <= point.metrics["ctr"] <= max(values) + 1e-9


# =============================================================================
# ScenarioGenerator Property Tests
# =============================================================================


@given(
    types=st.lists(
        st.sampled_from([ScenarioType.OPTIMISTIC, ScenarioType.REALISTIC, ScenarioType.PESSIMISTIC]),
        min_size=1,
        max_size=3,
        unique=True,
    ),
    volatility=unit_floats,
    data_quality=unit_floats,
)
@settings(max_examples=50)
def test_prop_scenario_probabilities_sum_to_one(types, volatility, data_quality):
    """
    Invariant: generated scenario probabilities always sum to 1 and every
    confidence stays in [0.1, 0.99].
    """
    context = make_context(dataset=make_dataset(volatility=volatility, data_quality=data_quality))
    scenarios = ScenarioGenerator().generate(
        make_trajectory(days=10), [ScenarioConfig(type=t) for t in types], context
    )

    assert [s.type for s in scenarios] == types
    assert sum(s.probability for s in scenarios) == pytest.approx(1.0)
    assert all(0.1 <= s.confidence <= 0.99 for s in scenarios)


@given(
    low=st.floats(min_value=0.0, max_value=100.0),
    high=st.floats(min_value=0.0, max_value=100.0),
)
@settings(max_examples=100)
def test_prop_percentile_factor_is_monotonic(low, high):
    assume(low <= high)
    assert percentile_to_factor(low) <= percentile_to_factor(high)
    assert 0.4 <= percentile_to_factor(low) <= 1.6


# =============================================================================
# TrendAnalyzer Property Tests
# =============================================================================


@given(
    intercept=st.floats(min_value=-100.0, max_value=100.0),
    slope=st.floats(min_value=-10.0, max_value=10.0),
    length=st.integers(min_value=2, max_value=60),
)
@settings(max_examples=100)
def test_prop_trend_direction_follows_slope(intercept, slope, length):
    """
    Invariant: on an exact line the fitted direction matches the slope's sign
    and confidence stays within [0, 0.95].
    """
    assume(abs(slope) >= 0.01 or slope == 0.0)
    result = TrendAnalyzer().calculate_trend([intercept + slope * i for i in range(length)])

    expected = STABLE if slope == 0.0 else (INCREASING if slope > 0 else DECREASING)
    assert result.direction == expected
    assert 0.0 <= result.confidence <= 0.95


# =============================================================================
# RiskDetector Property Tests
# =============================================================================


@given(
    low=st.floats(min_value=0.0, max_value=10.0),
    high=st.floats(min_value=0.0, max_value=10.0),
    threshold=st.floats(min_value=0.01, max_value=1.0),
)
@settings(max_examples=100)
def test_prop_severity_is_monotonic(low, high, threshold):
    """
    Invariant: a larger magnitude never maps to a lower severity.
    """
    assume(low <= high)
    assert calculate_severity(low, threshold).rank <= calculate_severity(high, threshold).rank


@given(
    start=st.floats(min_value=0.0, max_value=1000.0),
    steps=st.lists(st.floats(min_value=0.001, max_value=100.0), min_size=2, max_size=40),
)
@settings(max_examples=100)
def test_prop_increasing_series_has_no_performance_dip(start, steps):
    """
    Invariant: a strictly increasing metric never raises a performance dip,
    even with a zero dip threshold.
    """
    values = [start]
    for step in steps:
        values.append(values[-1] + step)
    assume(all(b > a for a, b in zip(values, values[1:])))

    risks = RiskDetector().detect_performance_dips(
        make_trajectory(days=len(values), ctr=values),
        RiskDetectionOptions(performance_dip_threshold=0.0),
    )

    assert risks == []


@given(values=st.lists(st.floats(min_value=0.0, max_value=1000.0), min_size=1, max_size=30))
@settings(max_examples=100)
def test_prop_relative_decline_never_exceeds_one(values):
    """A non-negative series cannot decline by more than 100%."""
    assert relative_decline(values) <= 1.0


# =============================================================================
# Cache key Property Tests
# =============================================================================


@given(
    metrics=st.permutations(["ctr", "reach", "engagement", "conversions"]),
    scenarios=st.permutations([ScenarioType.OPTIMISTIC, ScenarioType.REALISTIC, ScenarioType.PESSIMISTIC]),
    sources=st.permutations(["trends", "news", "weather"]),
)
@settings(max_examples=50)
def test_prop_cache_key_ignores_ordering(metrics, scenarios, sources):
    """
    Invariant: requests differing only in list order share one cache key.
    """
    reference = make_request(
        metrics=("ctr", "reach", "engagement", "conversions"),
        scenarios=(ScenarioType.OPTIMISTIC, ScenarioType.REALISTIC, ScenarioType.PESSIMISTIC),
        sources=("trends", "news", "weather"),
    )
    shuffled = make_request(metrics=metrics, scenarios=scenarios, sources=sources)

    assert generate_cache_key(shuffled) == generate_cache_key(reference)
