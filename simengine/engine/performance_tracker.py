"""
Prediction accuracy tracking.

Completed simulations are matched against observed campaign performance on
the same calendar day. Each evaluation yields MAPE, RMSE, MAE, R² and a
confidence calibration score; a campaign's earlier evaluations inside the
lookback window form the baseline that degradation alerts compare against.

Calibration buckets comparisons by floor(confidence * 10) / 10 and counts a
prediction as accurate when its percentage error is under 10:

    calibration = 1 - sum(bin_total * |bin_confidence - bin_accuracy|) / total
"""

import math
from collections import defaultdict, deque
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional, Sequence

import numpy as np
import structlog

from simengine.engine.errors import DataValidationError, InsufficientDataError
from simengine.models.enums import PerformanceAlertType, PerformanceStatus, Severity
from simengine.models.performance import (
    AccuracyMetrics,
    ActualPerformance,
    ModelPerformanceReport,
    PerformanceAlert,
    PerformanceTrendPoint,
    PredictionComparison,
)
from simengine.models.results import SimulationResult
from simengine.storage.base import ResultStore

ACCURATE_PERCENTAGE_ERROR = 10.0

# Upper MAPE bound of each status, checked in order
STATUS_BANDS = (
    (5.0, PerformanceStatus.EXCELLENT),
    (15.0, PerformanceStatus.GOOD),
    (30.0, PerformanceStatus.DEGRADED),
)

ALERT_RECOMMENDATIONS = {
    PerformanceAlertType.ACCURACY_DEGRADATION: "Implement automated model retraining pipeline",
    PerformanceAlertType.CONFIDENCE_MISCALIBRATION: "Review confidence score calculation methodology",
    PerformanceAlertType.PREDICTION_BIAS: "Analyze prediction residuals for systematic bias patterns",
}


class ModelPerformanceTracker:
    """
    Evaluates stored simulations against actuals and keeps per-campaign
    accuracy history.

    Attributes:
        result_store: Where completed simulations are read from
        lookback_days: Window of earlier evaluations forming the baseline
        clock: Source of evaluation timestamps
    """

    DEGRADATION_RATIO = 1.2
    SEVERE_DEGRADATION_RATIO = 1.5
    MIN_CALIBRATION = 0.7
    SEVERE_CALIBRATION = 0.5
    MIN_R2 = 0.6
    SEVERE_R2 = 0.3

    def __init__(
        self,
        result_store: ResultStore,
        lookback_days: int = 30,
        history_size: int = 100,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.result_store = result_store
        self.lookback_days = lookback_days
        self.history_size = history_size
        self.clock = clock
        self._history: dict[str, deque] = {}
        self._reports: dict[str, ModelPerformanceReport] = {}
        self.logger = structlog.get_logger()

    # =========================================================================
    # Evaluation
    # =========================================================================

    def generate_report(self, simulation_id: str, actuals: Sequence[ActualPerformance]) -> ModelPerformanceReport:
        """
        Evaluate a stored simulation against observed performance.

        Without any matched day the report carries no metrics, a poor status
        and a request for more data.

        Raises:
            DataValidationError: Unknown simulation
            InsufficientDataError: The simulation has no trajectory
        """
        result = self.result_store.get(simulation_id)
        if result is None:
            raise DataValidationError(
                f"Simulation {simulation_id} not found",
                field="simulation_id",
                value=simulation_id,
                code="SIMULATION_NOT_FOUND",
            )

        comparisons = self.compare_predictions(result, actuals)
        metrics: Optional[AccuracyMetrics] = None
        status = PerformanceStatus.POOR
        alerts: list[PerformanceAlert] = []
        campaign_id = result.campaign_id or ""
        if comparisons:
            metrics = self.calculate_accuracy_metrics(comparisons)
            status = performance_status(metrics.mape)
            alerts = self.detect_degradation(metrics, self.historical_baseline(campaign_id))

        metadata = result.model_metadata
        report = ModelPerformanceReport(
            simulation_id=simulation_id,
            campaign_id=campaign_id,
            model_name=metadata.model_name if metadata else "unknown",
            model_version=metadata.model_version if metadata else "unknown",
            predictions=comparisons,
            accuracy_metrics=metrics,
            performance_status=status,
            alerts=alerts,
            evaluated_at=self.clock(),
            recommendations=performance_recommendations(metrics, alerts),
        )

        self._reports[simulation_id] = report
        if metrics is not None:
            history = self._history.setdefault(campaign_id, deque(maxlen=self.history_size))
            history.append(PerformanceTrendPoint(date=report.evaluated_at, metrics=metrics))

        self.logger.info(
            "performance_report_generated",
            simulation_id=simulation_id,
            campaign_id=campaign_id,
            comparisons=len(comparisons),
            status=status.value,
            mape=round(metrics.mape, 3) if metrics else None,
            alerts=[a.type.value for a in alerts],
        )
        return report.model_copy(deep=True)

    def compare_predictions(
        self, result: SimulationResult, actuals: Sequence[ActualPerformance]
    ) -> list[PredictionComparison]:
        """
        Pair every predicted metric with the actual of the same day.

        Actuals for other campaigns are ignored; the first actual of a day wins.

        Raises:
            InsufficientDataError: The simulation has no trajectory
        """
        if not result.trajectories:
            raise InsufficientDataError(
                f"No prediction data found for simulation {result.id}",
                required_fields=["trajectories"],
                missing_fields=["trajectories"],
                code="NO_PREDICTION_DATA",
            )

        by_day: dict[date, ActualPerformance] = {}
        for actual in actuals:
            if actual.campaign_id == result.campaign_id:
                by_day.setdefault(_calendar_day(actual.date), actual)

        comparisons = []
        for point in result.trajectories:
            actual = by_day.get(_calendar_day(point.date))
            if actual is None:
                continue
            for metric, predicted in point.metrics.items():
                if metric not in actual.metrics:
                    continue
                observed = actual.metrics[metric]
                error = abs(observed - predicted)
                comparisons.append(
                    PredictionComparison(
                        date=point.date,
                        metric=metric,
                        predicted_value=predicted,
                        actual_value=observed,
                        confidence=point.confidence,
                        error=error,
                        percentage_error=error / abs(observed) * 100 if observed != 0 else 0.0,
                    )
                )
        return comparisons

    def calculate_accuracy_metrics(self, comparisons: Sequence[PredictionComparison]) -> AccuracyMetrics:
        """
        MAPE, RMSE, MAE, R² and calibration over the comparisons.

        R² is 0 when the actuals have no variance.

        Raises:
            InsufficientDataError: No comparisons
        """
        if not comparisons:
            raise InsufficientDataError(
                "No comparison data available for accuracy calculation",
                required_fields=["comparisons"],
                missing_fields=["comparisons"],
                code="NO_COMPARISONS",
            )

        actual = np.array([c.actual_value for c in comparisons])
        predicted = np.array([c.predicted_value for c in comparisons])
        errors = np.array([c.error for c in comparisons])

        total_sum_squares = float(np.sum((actual - actual.mean()) ** 2))
        residual_sum_squares = float(np.sum((actual - predicted) ** 2))
        r2 = 1 - residual_sum_squares / total_sum_squares if total_sum_squares != 0 else 0.0

        return AccuracyMetrics(
            mape=float(np.mean([c.percentage_error for c in comparisons])),
            rmse=float(np.sqrt(np.mean(errors**2))),
            mae=float(np.mean(errors)),
            r2_score=r2,
            confidence_calibration=confidence_calibration(comparisons),
        )

    def detect_degradation(
        self, current: AccuracyMetrics, baseline: Optional[AccuracyMetrics] = None
    ) -> list[PerformanceAlert]:
        """Alerts for rising MAPE against the baseline, poor calibration and low R²."""
        now = self.clock()
        alerts = []

        if baseline is not None and current.mape > baseline.mape * self.DEGRADATION_RATIO:
            severe = current.mape > baseline.mape * self.SEVERE_DEGRADATION_RATIO
            alerts.append(
                PerformanceAlert(
                    type=PerformanceAlertType.ACCURACY_DEGRADATION,
                    severity=Severity.HIGH if severe else Severity.MEDIUM,
                    message=(
                        f"Model accuracy has degraded. MAPE increased from "
                        f"{baseline.mape:.2f}% to {current.mape:.2f}%"
                    ),
                    triggered_at=now,
                    metadata={
                        "previous_mape": baseline.mape,
                        "current_mape": current.mape,
                        "degradation_percentage": (
                            (current.mape - baseline.mape) / baseline.mape * 100 if baseline.mape > 0 else None
                        ),
                    },
                )
            )

        if current.confidence_calibration < self.MIN_CALIBRATION:
            severe = current.confidence_calibration < self.SEVERE_CALIBRATION
            alerts.append(
                PerformanceAlert(
                    type=PerformanceAlertType.CONFIDENCE_MISCALIBRATION,
                    severity=Severity.HIGH if severe else Severity.MEDIUM,
                    message=(
                        "Model confidence scores are poorly calibrated. "
                        f"Calibration score: {current.confidence_calibration:.2f}"
                    ),
                    triggered_at=now,
                    metadata={"calibration_score": current.confidence_calibration},
                )
            )

        if current.r2_score < self.MIN_R2:
            severe = current.r2_score < self.SEVERE_R2
            alerts.append(
                PerformanceAlert(
                    type=PerformanceAlertType.PREDICTION_BIAS,
                    severity=Severity.HIGH if severe else Severity.MEDIUM,
                    message=f"Model shows poor predictive power. R² score: {current.r2_score:.2f}",
                    triggered_at=now,
                    metadata={"r2_score": current.r2_score},
                )
            )

        for alert in alerts:
            self.logger.warning("model_performance_alert", alert_type=alert.type.value, severity=alert.severity.value)
        return alerts

    # =========================================================================
    # History
    # =========================================================================

    def historical_baseline(self, campaign_id: str) -> Optional[AccuracyMetrics]:
        """Mean of the campaign's evaluations inside the lookback window."""
        points = self.get_performance_trends(campaign_id, self.lookback_days)
        if not points:
            return None
        return AccuracyMetrics(
            mape=float(np.mean([p.metrics.mape for p in points])),
            rmse=float(np.mean([p.metrics.rmse for p in points])),
            mae=float(np.mean([p.metrics.mae for p in points])),
            r2_score=float(np.mean([p.metrics.r2_score for p in points])),
            confidence_calibration=float(np.mean([p.metrics.confidence_calibration for p in points])),
        )

    def get_performance_trends(self, campaign_id: str, days: int = 30) -> list[PerformanceTrendPoint]:
        """Evaluations of the last `days` days, oldest first."""
        cutoff = self.clock() - timedelta(days=days)
        points = [p for p in self._history.get(campaign_id, ()) if p.date >= cutoff]
        return sorted(points, key=lambda p: p.date)

    def get_report(self, simulation_id: str) -> Optional[ModelPerformanceReport]:
        report = self._reports.get(simulation_id)
        return report.model_copy(deep=True) if report is not None else None

    def acknowledge_alert(self, simulation_id: str, alert_index: int) -> PerformanceAlert:
        """
        Mark one alert of a report as acknowledged.

        Raises:
            DataValidationError: No such report or alert
        """
        report = self._reports.get(simulation_id)
        if report is None or not 0 <= alert_index < len(report.alerts):
            raise DataValidationError(
                f"No alert {alert_index} for simulation {simulation_id}",
                field="alert_index",
                value=alert_index,
                code="ALERT_NOT_FOUND",
            )
        alert = report.alerts[alert_index]
        alert.acknowledged = True
        self.logger.info("performance_alert_acknowledged", simulation_id=simulation_id, alert_type=alert.type.value)
        return alert.model_copy()


def confidence_calibration(comparisons: Sequence[PredictionComparison]) -> float:
    """1 minus the count-weighted gap between bin confidence and bin accuracy."""
    if not comparisons:
        return 0.0

    bins: dict[float, list[int]] = defaultdict(lambda: [0, 0])
    for comparison in comparisons:
        # Round before flooring so float noise never drops a value into the bin below
        confidence_bin = math.floor(round(comparison.confidence * 10, 9)) / 10
        counts = bins[confidence_bin]
        counts[1] += 1
        if comparison.percentage_error < ACCURATE_PERCENTAGE_ERROR:
            counts[0] += 1

    calibration_error = sum(total * abs(confidence - correct / total) for confidence, (correct, total) in bins.items())
    return 1 - calibration_error / len(comparisons)


def performance_status(mape: float) -> PerformanceStatus:
    for upper, status in STATUS_BANDS:
        if mape < upper:
            return status
    return PerformanceStatus.POOR


def performance_recommendations(
    metrics: Optional[AccuracyMetrics], alerts: Sequence[PerformanceAlert] = ()
) -> list[str]:
    """Follow-up actions for the metrics and alerts, without duplicates."""
    if metrics is None:
        return ["Collect more actual performance data to enable accuracy assessment"]

    recommendations = []
    if metrics.mape > 20:
        recommendations.append("Consider retraining the model with more recent data")
        recommendations.append("Review input features for data quality issues")
    elif metrics.mape > 10:
        recommendations.append("Monitor model performance closely for further degradation")

    if metrics.confidence_calibration < ModelPerformanceTracker.MIN_CALIBRATION:
        recommendations.append("Recalibrate confidence scores using Platt scaling or isotonic regression")
        recommendations.append("Consider ensemble methods to improve confidence estimation")

    if metrics.r2_score < ModelPerformanceTracker.MIN_R2:
        recommendations.append("Investigate feature engineering opportunities")
        recommendations.append("Consider more complex model architectures")

    recommendations.extend(ALERT_RECOMMENDATIONS[alert.type] for alert in alerts)
    return list(dict.fromkeys(recommendations))


def accuracy_score(metrics: AccuracyMetrics) -> float:
    """Accuracy in [0, 1] fed back into ensemble performance history."""
    return max(0.0, min(1.0, 1 - metrics.mape / 100))


def _calendar_day(moment: datetime) -> date:
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.date()
