"""
Request, dataset and model-output validation.

Validators collect every problem into a ValidationResult instead of failing
on the first one:
    score = max(0, 1 - 0.3 * errors - 0.1 * warnings)

throw_if_invalid() converts a failed result into a DataValidationError so
the orchestrator can fail fast before anything is queued.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Optional

import structlog

from simengine.engine.errors import DataValidationError, InsufficientDataError
from simengine.models.dataset import EnrichedDataset, MarketDataset, PerformanceMetric
from simengine.models.enums import MetricType
from simengine.models.prediction import PredictionOutput
from simengine.models.request import ScenarioConfig, SimulationRequest, Timeframe
from simengine.models.results import ValidationIssue, ValidationResult, ValidationWarning

logger = structlog.get_logger()

VALID_METRIC_TYPES = {m.value for m in MetricType}


def _issue(field: str, message: str, code: str) -> ValidationIssue:
    return ValidationIssue(field=field, message=message, code=code, severity="error")


def _warning(field: str, message: str, suggestion: str) -> ValidationWarning:
    return ValidationWarning(field=field, message=message, suggestion=suggestion)


def validation_score(errors: list, warnings: list) -> float:
    return max(0.0, 1.0 - len(errors) * 0.3 - len(warnings) * 0.1)


def match_timezone(moment: datetime, reference: datetime) -> datetime:
    """`moment` made aware (UTC) or naive to compare against `reference`."""
    if reference.tzinfo is not None and moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    if reference.tzinfo is None and moment.tzinfo is not None:
        return moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment


def _now_like(moment: datetime, clock: Callable[[], datetime]) -> datetime:
    """Current time, aware or naive to match `moment`."""
    return match_timezone(clock(), moment)


class SimulationRequestValidator:
    """
    Validate simulation requests before admission.

    Attributes:
        clock: Source of "now" for the past-start warning
    """

    REQUIRED_FIELDS = ["campaign_id", "timeframe", "metrics"]
    MIN_TIMEFRAME_DAYS = 5
    MAX_TIMEFRAME_DAYS = 90
    MAX_METRICS = 10

    def __init__(self, clock: Callable[[], datetime] = datetime.utcnow):
        self.clock = clock

    def validate(self, request: SimulationRequest) -> ValidationResult:
        """Collect errors and warnings for a request."""
        errors: list[ValidationIssue] = []
        warnings: list[ValidationWarning] = []

        for field in self.REQUIRED_FIELDS:
            value = getattr(request, field, None)
            if value is None or value == "":
                errors.append(_issue(field, f"{field} is required", "REQUIRED_FIELD_MISSING"))

        self._validate_timeframe(request.timeframe, errors, warnings)
        self._validate_metrics(request, errors, warnings)
        self._validate_scenarios(request.scenarios, errors)

        return ValidationResult(
            valid=not errors,
            errors=errors,
            warnings=warnings,
            score=validation_score(errors, warnings),
        )

    def _validate_timeframe(
        self, timeframe: Timeframe, errors: list[ValidationIssue], warnings: list[ValidationWarning]
    ) -> None:
        if timeframe.start_date >= timeframe.end_date:
            errors.append(_issue("timeframe", "End date must be after start date", "INVALID_DATE_RANGE"))

        days = timeframe.days
        if days < self.MIN_TIMEFRAME_DAYS:
            errors.append(
                _issue(
                    "timeframe",
                    f"Timeframe must be at least {self.MIN_TIMEFRAME_DAYS} days",
                    "TIMEFRAME_TOO_SHORT",
                )
            )
        if days > self.MAX_TIMEFRAME_DAYS:
            warnings.append(
                _warning(
                    "timeframe",
                    f"Timeframe longer than {self.MAX_TIMEFRAME_DAYS} days may reduce accuracy",
                    "Consider shorter timeframes for better predictions",
                )
            )
        if timeframe.start_date < _now_like(timeframe.start_date, self.clock):
            warnings.append(
                _warning("timeframe", "Start date is in the past", "Use current or future dates for predictions")
            )

    def _validate_metrics(
        self, request: SimulationRequest, errors: list[ValidationIssue], warnings: list[ValidationWarning]
    ) -> None:
        metrics = request.metrics
        if not metrics:
            errors.append(_issue("metrics", "At least one metric is required", "NO_METRICS"))
            return

        if len(metrics) > self.MAX_METRICS:
            warnings.append(
                _warning(
                    "metrics",
                    f"More than {self.MAX_METRICS} metrics may impact performance",
                    "Consider focusing on key metrics",
                )
            )

        total_weight = sum(m.weight for m in metrics)
        if abs(total_weight - 1.0) > 0.01:
            warnings.append(_warning("metrics", "Metric weights should sum to 1.0", "Adjust weights to total 100%"))

        for index, metric in enumerate(metrics):
            if metric.type not in VALID_METRIC_TYPES:
                errors.append(
                    _issue(f"metrics[{index}].type", f"Invalid metric type: {metric.type}", "INVALID_METRIC_TYPE")
                )
            if metric.weight < 0 or metric.weight > 1:
                errors.append(
                    _issue(f"metrics[{index}].weight", "Metric weight must be between 0 and 1", "INVALID_WEIGHT")
                )

    def _validate_scenarios(self, scenarios: list[ScenarioConfig], errors: list[ValidationIssue]) -> None:
        for index, scenario in enumerate(scenarios):
            if scenario.percentile is not None and not 0 <= scenario.percentile <= 100:
                errors.append(
                    _issue(
                        f"scenarios[{index}].percentile",
                        "Percentile must be between 0 and 100",
                        "INVALID_PERCENTILE",
                    )
                )


class DataQualityValidator:
    """Check an enriched dataset before it feeds the providers."""

    COMPLETENESS_THRESHOLD = 0.7
    FRESHNESS_THRESHOLD_DAYS = 30
    MIN_HISTORY_POINTS = 7
    MAX_HISTORY_GAP_DAYS = 7

    def __init__(self, clock: Callable[[], datetime] = datetime.utcnow):
        self.clock = clock

    def validate_dataset(self, dataset: EnrichedDataset) -> ValidationResult:
        errors: list[ValidationIssue] = []
        warnings: list[ValidationWarning] = []

        campaign = dataset.campaign
        if not campaign.id:
            errors.append(_issue("campaign.id", "Campaign id is required", "MISSING_CAMPAIGN_FIELD"))
        if campaign.budget <= 0:
            errors.append(_issue("campaign.budget", "Campaign budget must be positive", "INVALID_BUDGET"))
        if not campaign.channels:
            warnings.append(
                _warning("campaign.channels", "No channels configured", "Add at least one channel for better predictions")
            )

        self._validate_history(dataset.historical_performance, warnings)
        self._validate_market(dataset.market_data, warnings)

        completeness = self.completeness(dataset)
        if completeness < self.COMPLETENESS_THRESHOLD:
            warnings.append(
                _warning(
                    "dataset",
                    f"Dataset completeness {completeness:.0%} is below {self.COMPLETENESS_THRESHOLD:.0%}",
                    "Connect more data sources",
                )
            )
        latest = self._days_since_latest(dataset.historical_performance)
        if latest is not None and latest > self.FRESHNESS_THRESHOLD_DAYS:
            warnings.append(
                _warning(
                    "historical_performance",
                    f"Latest historical data is {int(latest)} days old",
                    "Refresh campaign data before simulating",
                )
            )

        return ValidationResult(
            valid=not errors,
            errors=errors,
            warnings=warnings,
            score=self.data_quality_score(dataset),
        )

    def require_sufficient_data(self, dataset: EnrichedDataset) -> None:
        """
        Raise when the dataset cannot support a simulation.

        Raises:
            InsufficientDataError: no historical performance
        """
        if not dataset.historical_performance:
            raise InsufficientDataError(
                "No historical performance data available",
                required_fields=["historical_performance"],
                missing_fields=["historical_performance"],
            )

    def data_quality_score(self, dataset: EnrichedDataset) -> float:
        """Mean of completeness, accuracy, freshness and consistency."""
        return (
            self.completeness(dataset)
            + self.accuracy(dataset)
            + self.freshness(dataset)
            + self.consistency(dataset)
        ) / 4

    def completeness(self, dataset: EnrichedDataset) -> float:
        present = [
            bool(dataset.campaign.id),
            bool(dataset.campaign.name),
            dataset.campaign.budget > 0,
            bool(dataset.historical_performance),
            bool(dataset.audience_insights),
        ]
        return sum(present) / len(present)

    def accuracy(self, dataset: EnrichedDataset) -> float:
        score = 1.0
        if any(p.value < 0 for p in dataset.historical_performance):
            score -= 0.2
        if dataset.campaign.budget > 10_000_000:
            score -= 0.1
        return max(0.0, score)

    def freshness(self, dataset: EnrichedDataset) -> float:
        days = self._days_since_latest(dataset.historical_performance)
        if days is None:
            return 0.5
        if days <= 1:
            return 1.0
        if days <= 7:
            return 0.9
        if days <= 30:
            return 0.7
        if days <= 90:
            return 0.5
        return 0.3

    def consistency(self, dataset: EnrichedDataset) -> float:
        score = 1.0
        allocated = sum(dataset.budget_allocation.allocated.values())
        budget = dataset.campaign.budget
        if abs(allocated - budget) > budget * 0.1:
            score -= 0.2
        return max(0.0, score)

    def _validate_history(self, history: list[PerformanceMetric], warnings: list[ValidationWarning]) -> None:
        if not history:
            warnings.append(
                _warning(
                    "historical_performance",
                    "No historical performance data available",
                    "Historical data improves prediction accuracy",
                )
            )
            return

        if len(history) < self.MIN_HISTORY_POINTS:
            warnings.append(
                _warning(
                    "historical_performance",
                    "Limited historical data (less than 7 data points)",
                    "More historical data improves accuracy",
                )
            )

        dates = sorted(p.date for p in history)
        for previous, current in zip(dates, dates[1:]):
            if (current - previous).total_seconds() / 86400 > self.MAX_HISTORY_GAP_DAYS:
                warnings.append(
                    _warning(
                        "historical_performance",
                        "Gaps detected in historical data",
                        "Fill data gaps for better trend analysis",
                    )
                )
                break

    def _validate_market(self, market_data: MarketDataset, warnings: list[ValidationWarning]) -> None:
        if not market_data.industry_benchmarks:
            warnings.append(
                _warning(
                    "market_data.industry_benchmarks",
                    "No industry benchmarks available",
                    "Benchmarks help contextualize predictions",
                )
            )
        if not market_data.competitor_activity:
            warnings.append(
                _warning(
                    "market_data.competitor_activity",
                    "No competitor data available",
                    "Competitor insights improve risk detection",
                )
            )

    def _days_since_latest(self, history: list[PerformanceMetric]) -> Optional[float]:
        if not history:
            return None
        latest = max(p.date for p in history)
        return (_now_like(latest, self.clock) - latest).total_seconds() / 86400


class ModelOutputValidator:
    """Sanity checks on a provider's PredictionOutput."""

    def validate_prediction_output(self, output: PredictionOutput) -> ValidationResult:
        errors: list[ValidationIssue] = []
        warnings: list[ValidationWarning] = []

        if not output.trajectories:
            errors.append(
                _issue("trajectories", "Prediction output must contain trajectories", "MISSING_TRAJECTORIES")
            )
        for index, point in enumerate(output.trajectories):
            if not point.metrics:
                errors.append(
                    _issue(f"trajectories[{index}].metrics", "Trajectory point must have metrics", "MISSING_METRICS")
                )
            if point.confidence < 0.5:
                warnings.append(
                    _warning(f"trajectories[{index}].confidence", "Low confidence prediction", "Consider gathering more data")
                )

        for index, interval in enumerate(output.confidence_intervals):
            if interval.lower > interval.upper:
                errors.append(
                    _issue(
                        f"confidence_intervals[{index}]",
                        "Lower bound must be less than upper bound",
                        "INVALID_INTERVAL",
                    )
                )

        metadata = output.model_metadata
        if not metadata.model_name:
            errors.append(_issue("model_metadata.model_name", "Model name is required", "MISSING_MODEL_NAME"))
        if metadata.confidence_score < 0.7:
            warnings.append(
                _warning(
                    "model_metadata.confidence_score",
                    "Low model confidence",
                    "Consider using additional data sources",
                )
            )

        score = 1.0 - len(errors) * 0.3 - len(warnings) * 0.1
        if metadata.confidence_score:
            score += (metadata.confidence_score - 0.5) * 0.2
        return ValidationResult(
            valid=not errors,
            errors=errors,
            warnings=warnings,
            score=max(0.0, min(1.0, score)),
        )


def throw_if_invalid(result: ValidationResult, context: str = "Validation", value: Any = None) -> None:
    """
    Raise DataValidationError listing every error of a failed result.

    Raises:
        DataValidationError: result is not valid
    """
    if result.valid:
        return
    messages = ", ".join(f"{e.field}: {e.message}" for e in result.errors)
    first_code = result.errors[0].code if result.errors else "VALIDATION_ERROR"
    raise DataValidationError(
        f"{context} failed: {messages}",
        field="multiple",
        value=value,
        code=first_code,
        context={"errors": [e.model_dump() for e in result.errors]},
    )
