"""
Unit tests for ModelPerformanceTracker.

Results are written straight into InMemoryStorage; the tracker clock is
pinned so history windows are deterministic.
"""

import math
from datetime import datetime, timedelta, timezone

import pytest

from simengine.engine.errors import DataValidationError, InsufficientDataError
from simengine.engine.performance_tracker import (
    ModelPerformanceTracker,
    accuracy_score,
    confidence_calibration,
    performance_recommendations,
    performance_status,
)
from simengine.models.enums import PerformanceAlertType, PerformanceStatus, Severity, SimulationStatus
from simengine.models.performance import (
    AccuracyMetrics,
    ActualPerformance,
    PerformanceAlert,
    PredictionComparison,
)
from simengine.models.prediction import ModelMetadata
from simengine.models.results import SimulationResult
from tests.conftest import BASE_DATE, make_trajectory

RISING_CTR = [0.01, 0.02, 0.03, 0.04, 0.05]


def _comparison(predicted, actual, confidence=0.9):
    error = abs(actual - predicted)
    return PredictionComparison(
        date=BASE_DATE,
        metric="ctr",
        predicted_value=predicted,
        actual_value=actual,
        confidence=confidence,
        error=error,
        percentage_error=error / abs(actual) * 100 if actual else 0.0,
    )


def _metrics(mape=5.0, calibration=0.9, r2=0.9):
    return AccuracyMetrics(mape=mape, rmse=1.0, mae=1.0, r2_score=r2, confidence_calibration=calibration)


def _save_result(storage, simulation_id="sim_1", trajectory=None, campaign_id="cmp_001"):
    result = SimulationResult(
        id=simulation_id,
        campaign_id=campaign_id,
        status=SimulationStatus.COMPLETED,
        trajectories=trajectory if trajectory is not None else make_trajectory(days=5, ctr=RISING_CTR),
        model_metadata=ModelMetadata(model_name="Ensemble", model_weights={"prophet": 1.0}),
    )
    storage.save(result)
    return result


def _actuals(trajectory, scale=1.0, campaign_id="cmp_001"):
    return [
        ActualPerformance(
            campaign_id=campaign_id,
            date=point.date,
            metrics={m: v * scale for m, v in point.metrics.items()},
        )
        for point in trajectory
    ]


# ============================================================================
# Matching and metrics
# ============================================================================


class TestComparePredictions:
    def test_performance_matches_actuals_by_calendar_day(self, storage):
        result = _save_result(storage, trajectory=make_trajectory(days=3, ctr=0.04))
        actuals = [
            ActualPerformance(campaign_id="cmp_001", date=BASE_DATE, metrics={"ctr": 0.05}),
            ActualPerformance(
                campaign_id="cmp_001", date=BASE_DATE + timedelta(days=1, hours=15), metrics={"ctr": 0.04}
            ),
            ActualPerformance(campaign_id="cmp_other", date=BASE_DATE + timedelta(days=2), metrics={"ctr": 1.0}),
            ActualPerformance(campaign_id="cmp_001", date=BASE_DATE + timedelta(hours=3), metrics={"ctr": 0.5}),
        ]

        comparisons = ModelPerformanceTracker(storage).compare_predictions(result, actuals)

        assert len(comparisons) == 2
        assert comparisons[0].error == pytest.approx(0.01)
        assert comparisons[0].percentage_error == pytest.approx(20.0)
        assert comparisons[0].confidence == 0.9
        assert comparisons[1].error == pytest.approx(0.0)

    def test_performance_matches_timezone_aware_actuals(self, storage):
        result = _save_result(storage, trajectory=make_trajectory(days=3, ctr=0.04))
        actual = ActualPerformance(
            campaign_id="cmp_001", date=datetime(2030, 1, 3, 6, tzinfo=timezone.utc), metrics={"ctr": 0.04}
        )

        comparisons = ModelPerformanceTracker(storage).compare_predictions(result, [actual])

        assert [c.date for c in comparisons] == [BASE_DATE + timedelta(days=2)]

    def test_performance_skips_metrics_without_actuals(self, storage):
        result = _save_result(storage, trajectory=make_trajectory(days=1, ctr=0.04, reach=100.0))
        actual = ActualPerformance(campaign_id="cmp_001", date=BASE_DATE, metrics={"reach": 80.0})

        comparisons = ModelPerformanceTracker(storage).compare_predictions(result, [actual])

        assert [c.metric for c in comparisons] == ["reach"]
        assert comparisons[0].percentage_error == pytest.approx(25.0)

    def test_performance_zero_actual_has_zero_percentage_error(self, storage):
        result = _save_result(storage, trajectory=make_trajectory(days=1, ctr=0.04))
        actual = ActualPerformance(campaign_id="cmp_001", date=BASE_DATE, metrics={"ctr": 0.0})

        comparisons = ModelPerformanceTracker(storage).compare_predictions(result, [actual])

        assert comparisons[0].error == pytest.approx(0.04)
        assert comparisons[0].percentage_error == 0.0

    def test_performance_requires_a_trajectory(self, storage):
        result = _save_result(storage, trajectory=[])
        with pytest.raises(InsufficientDataError) as exc_info:
            ModelPerformanceTracker(storage).compare_predictions(result, [])
        assert exc_info.value.code == "NO_PREDICTION_DATA"


class TestAccuracyMetrics:
    def test_performance_accuracy_metrics(self, storage):
        comparisons = [_comparison(11, 10), _comparison(18, 20), _comparison(30, 30)]

        metrics = ModelPerformanceTracker(storage).calculate_accuracy_metrics(comparisons)

        assert metrics.mape == pytest.approx(20 / 3)
        assert metrics.rmse == pytest.approx(math.sqrt(5 / 3))
        assert metrics.mae == pytest.approx(1.0)
        assert metrics.r2_score == pytest.approx(0.975)
        assert metrics.confidence_calibration == pytest.approx(1 - 1.7 / 3)

    def test_performance_constant_actuals_have_zero_r2(self, storage):
        comparisons = [_comparison(9, 10), _comparison(11, 10)]
        metrics = ModelPerformanceTracker(storage).calculate_accuracy_metrics(comparisons)
        assert metrics.r2_score == 0.0

    def test_performance_metrics_need_comparisons(self, storage):
        with pytest.raises(InsufficientDataError) as exc_info:
            ModelPerformanceTracker(storage).calculate_accuracy_metrics([])
        assert exc_info.value.code == "NO_COMPARISONS"

    def test_performance_calibration_bins_by_confidence(self):
        """Bin 0.9 is fully accurate (gap 0.1); bin 0.5 is never accurate (gap 0.5)."""
        comparisons = [_comparison(10, 10, 0.95), _comparison(10, 10, 0.9), _comparison(20, 10, 0.55)]
        assert confidence_calibration(comparisons) == pytest.approx(1 - (2 * 0.1 + 0.5) / 3)
        assert confidence_calibration([]) == 0.0

    @pytest.mark.parametrize(
        "mape,status",
        [
            (0.0, PerformanceStatus.EXCELLENT),
            (4.9, PerformanceStatus.EXCELLENT),
            (5.0, PerformanceStatus.GOOD),
            (14.9, PerformanceStatus.GOOD),
            (15.0, PerformanceStatus.DEGRADED),
            (29.9, PerformanceStatus.DEGRADED),
            (30.0, PerformanceStatus.POOR),
        ],
    )
    def test_performance_status_bands(self, mape, status):
        assert performance_status(mape) == status

    def test_performance_accuracy_score_is_clamped(self):
        assert accuracy_score(_metrics(mape=12.0)) == pytest.approx(0.88)
        assert accuracy_score(_metrics(mape=250.0)) == 0.0


# ============================================================================
# Alerts and recommendations
# ============================================================================


class TestDetectDegradation:
    def test_performance_healthy_metrics_raise_nothing(self, storage):
        assert ModelPerformanceTracker(storage).detect_degradation(_metrics(), _metrics()) == []

    @pytest.mark.parametrize("current_mape,severity", [(13.0, Severity.MEDIUM), (16.0, Severity.HIGH)])
    def test_performance_mape_rise_against_baseline(self, storage, current_mape, severity):
        alerts = ModelPerformanceTracker(storage).detect_degradation(_metrics(mape=current_mape), _metrics(mape=10.0))

        assert [a.type for a in alerts] == [PerformanceAlertType.ACCURACY_DEGRADATION]
        assert alerts[0].severity == severity
        assert alerts[0].metadata["degradation_percentage"] == pytest.approx((current_mape - 10.0) * 10)

    def test_performance_small_mape_rise_is_tolerated(self, storage):
        assert ModelPerformanceTracker(storage).detect_degradation(_metrics(mape=11.9), _metrics(mape=10.0)) == []

    @pytest.mark.parametrize("calibration,severity", [(0.6, Severity.MEDIUM), (0.4, Severity.HIGH)])
    def test_performance_miscalibration(self, storage, calibration, severity):
        alerts = ModelPerformanceTracker(storage).detect_degradation(_metrics(calibration=calibration))
        assert [(a.type, a.severity) for a in alerts] == [(PerformanceAlertType.CONFIDENCE_MISCALIBRATION, severity)]

    @pytest.mark.parametrize("r2,severity", [(0.5, Severity.MEDIUM), (0.2, Severity.HIGH)])
    def test_performance_low_r2_is_bias(self, storage, r2, severity):
        alerts = ModelPerformanceTracker(storage).detect_degradation(_metrics(r2=r2))
        assert [(a.type, a.severity) for a in alerts] == [(PerformanceAlertType.PREDICTION_BIAS, severity)]


class TestPerformanceRecommendations:
    def test_performance_recommendations_without_metrics(self):
        assert performance_recommendations(None) == [
            "Collect more actual performance data to enable accuracy assessment"
        ]

    def test_performance_recommendations_for_high_error(self):
        assert performance_recommendations(_metrics(mape=25.0)) == [
            "Consider retraining the model with more recent data",
            "Review input features for data quality issues",
        ]
        assert performance_recommendations(_metrics(mape=12.0)) == [
            "Monitor model performance closely for further degradation"
        ]

    def test_performance_recommendations_are_deduplicated(self):
        alert = PerformanceAlert(type=PerformanceAlertType.PREDICTION_BIAS, severity=Severity.HIGH, message="bias")

        recommendations = performance_recommendations(_metrics(), [alert, alert.model_copy()])

        assert recommendations == ["Analyze prediction residuals for systematic bias patterns"]


# ============================================================================
# Reports and history
# ============================================================================


class TestGenerateReport:
    def test_performance_exact_predictions_are_excellent(self, storage):
        result = _save_result(storage)
        tracker = ModelPerformanceTracker(storage, clock=lambda: BASE_DATE)

        report = tracker.generate_report("sim_1", _actuals(result.trajectories))

        assert report.model_name == "Ensemble"
        assert len(report.predictions) == 5
        assert report.accuracy_metrics.mape == 0.0
        assert report.accuracy_metrics.r2_score == pytest.approx(1.0)
        assert report.accuracy_metrics.confidence_calibration == pytest.approx(0.9)
        assert report.performance_status == PerformanceStatus.EXCELLENT
        assert report.alerts == []
        assert report.recommendations == []
        assert report.evaluated_at == BASE_DATE

    def test_performance_later_report_compares_against_history(self, storage):
        """Actuals 1.5x the predictions: MAPE 33.3 against a baseline of 0, R² 1 - 0.001375 / 0.00225."""
        first = _save_result(storage, "sim_1")
        second = _save_result(storage, "sim_2")
        tracker = ModelPerformanceTracker(storage, clock=lambda: BASE_DATE)
        tracker.generate_report("sim_1", _actuals(first.trajectories))

        report = tracker.generate_report("sim_2", _actuals(second.trajectories, scale=1.5))

        assert report.accuracy_metrics.mape == pytest.approx(100 / 3)
        assert report.accuracy_metrics.r2_score == pytest.approx(1 - 0.001375 / 0.00225)
        assert report.performance_status == PerformanceStatus.POOR
        assert [(a.type, a.severity) for a in report.alerts] == [
            (PerformanceAlertType.ACCURACY_DEGRADATION, Severity.HIGH),
            (PerformanceAlertType.CONFIDENCE_MISCALIBRATION, Severity.HIGH),
            (PerformanceAlertType.PREDICTION_BIAS, Severity.MEDIUM),
        ]
        assert report.alerts[0].metadata["degradation_percentage"] is None
        assert len(tracker.get_performance_trends("cmp_001")) == 2

    def test_performance_unmatched_actuals_yield_empty_report(self, storage):
        _save_result(storage)
        tracker = ModelPerformanceTracker(storage)
        late = ActualPerformance(campaign_id="cmp_001", date=BASE_DATE + timedelta(days=90), metrics={"ctr": 0.1})

        report = tracker.generate_report("sim_1", [late])

        assert report.accuracy_metrics is None
        assert report.predictions == []
        assert report.performance_status == PerformanceStatus.POOR
        assert report.recommendations == ["Collect more actual performance data to enable accuracy assessment"]
        assert tracker.get_performance_trends("cmp_001") == []

    def test_performance_unknown_simulation(self, storage):
        with pytest.raises(DataValidationError) as exc_info:
            ModelPerformanceTracker(storage).generate_report("sim_missing", [])
        assert exc_info.value.code == "SIMULATION_NOT_FOUND"

    def test_performance_returned_report_is_a_copy(self, storage):
        result = _save_result(storage)
        tracker = ModelPerformanceTracker(storage)

        report = tracker.generate_report("sim_1", _actuals(result.trajectories))
        report.recommendations.append("edited")

        assert tracker.get_report("sim_1").recommendations == []
        assert tracker.get_report("sim_unknown") is None


class TestPerformanceHistory:
    def test_performance_old_evaluations_leave_the_baseline(self, storage):
        now = [BASE_DATE]
        first = _save_result(storage, "sim_1")
        second = _save_result(storage, "sim_2")
        tracker = ModelPerformanceTracker(storage, lookback_days=30, clock=lambda: now[0])
        tracker.generate_report("sim_1", _actuals(first.trajectories))

        now[0] = BASE_DATE + timedelta(days=40)
        report = tracker.generate_report("sim_2", _actuals(second.trajectories, scale=1.5))

        assert PerformanceAlertType.ACCURACY_DEGRADATION not in [a.type for a in report.alerts]
        assert [p.date for p in tracker.get_performance_trends("cmp_001", days=30)] == [now[0]]
        assert [p.date for p in tracker.get_performance_trends("cmp_001", days=60)] == [BASE_DATE, now[0]]
        assert tracker.historical_baseline("cmp_001").mape == pytest.approx(100 / 3)

    def test_performance_history_is_per_campaign(self, storage):
        result = _save_result(storage, campaign_id="cmp_a")
        tracker = ModelPerformanceTracker(storage, clock=lambda: BASE_DATE)

        tracker.generate_report("sim_1", _actuals(result.trajectories, campaign_id="cmp_a"))

        assert len(tracker.get_performance_trends("cmp_a")) == 1
        assert tracker.historical_baseline("cmp_b") is None

    def test_performance_acknowledge_alert(self, storage):
        result = _save_result(storage)
        tracker = ModelPerformanceTracker(storage)
        tracker.generate_report("sim_1", _actuals(result.trajectories, scale=1.5))

        alert = tracker.acknowledge_alert("sim_1", 0)

        assert alert.acknowledged
        assert tracker.get_report("sim_1").alerts[0].acknowledged
        with pytest.raises(DataValidationError) as exc_info:
            tracker.acknowledge_alert("sim_1", 9)
        assert exc_info.value.code == "ALERT_NOT_FOUND"
