"""
Ensemble Coordinator — weighted combination of provider predictions.

Merges N provider predictions into one PredictionOutput:

1. Filter: drop disabled models, predictions below the confidence threshold
   and predictions with an empty trajectory.
2. Weight: one of four strategies (static, confidence_based,
   performance_based, dynamic). Weights always sum to 1.
3. Merge: point-by-point weighted average per metric; providers lacking an
   index or a metric are left out and the remaining weights re-normalized.
4. Describe: consensus (mean pairwise agreement), diversity (1 - consensus)
   and aggregated metadata.

Dynamic weighting composite:
    score = 0.4 * confidence
          + 0.3 * rolling historical accuracy (0.5 with no history)
          + 0.2 * data-quality compatibility
          + 0.1 * efficiency (1 - processing_time / 30s, floored at 0)
"""

from collections import defaultdict, deque
from typing import Optional, Sequence

import numpy as np
import structlog
from pydantic import BaseModel, Field

from simengine.config import get_settings
from simengine.engine.errors import InsufficientConfidenceError, NoPredictionsError
from simengine.models.dataset import DataQualityScore, EnrichedDataset
from simengine.models.enums import WeightingStrategy
from simengine.models.prediction import (
    ConfidenceInterval,
    EnsembleMetrics,
    FeatureImportance,
    ModelMetadata,
    ModelPrediction,
    PredictionOutput,
    TrajectoryPoint,
)

logger = structlog.get_logger()

# Model name fragments per provider family
LANGUAGE_MODEL_HINTS = ("openai", "gpt", "llm", "language")
TIME_SERIES_HINTS = ("huggingface", "prophet", "lstm", "time_series")


class EnsembleModelConfig(BaseModel):
    name: str
    weight: float = Field(default=1.0, ge=0.0)
    enabled: bool = True


class EnsembleConfig(BaseModel):
    """
    Ensemble configuration.

    Models absent from `models` are treated as enabled with weight 1.
    """

    models: list[EnsembleModelConfig] = Field(default_factory=list)
    weighting_strategy: WeightingStrategy = WeightingStrategy.DYNAMIC
    confidence_threshold: float = Field(default=0.6, ge=0.0, le=1.0)

    @classmethod
    def from_settings(cls, models: Optional[list[EnsembleModelConfig]] = None) -> "EnsembleConfig":
        settings = get_settings()
        return cls(
            models=models or [],
            weighting_strategy=WeightingStrategy(settings.ensemble_weighting_strategy),
            confidence_threshold=settings.ensemble_confidence_threshold,
        )


class EnsembleCoordinator:
    """
    Combine provider predictions into a single ensemble prediction.

    Attributes:
        config: Weighting strategy, threshold and per-model settings
        history_size: Accuracy scores kept per model

    Example:
        >>> coordinator = EnsembleCoordinator()
        >>> output = coordinator.combine(predictions, dataset)
        >>> output.model_metadata.model_weights
        {'openai': 0.55, 'prophet': 0.45}
    """

    MAX_PROCESSING_TIME_MS = 30000.0
    DEFAULT_PERFORMANCE = 0.5
    DEFAULT_COMPATIBILITY = 0.5

    def __init__(self, config: Optional[EnsembleConfig] = None, history_size: Optional[int] = None):
        self.config = config or EnsembleConfig.from_settings()
        self.history_size = history_size or get_settings().ensemble_history_size
        self._performance_history: dict[str, deque[float]] = {}
        self.logger = structlog.get_logger()

    # =========================================================================
    # Public API
    # =========================================================================

    def combine(
        self,
        predictions: Sequence[ModelPrediction],
        dataset: Optional[EnrichedDataset] = None,
    ) -> PredictionOutput:
        """
        Merge provider predictions.

        All validation happens before any merge work, so a failure never
        leaves a partially merged result.

        Args:
            predictions: One prediction per provider
            dataset: Enriched dataset used for data-quality compatibility

        Returns:
            Ensemble PredictionOutput with weights recorded in its metadata

        Raises:
            NoPredictionsError: predictions is empty
            InsufficientConfidenceError: nothing survived filtering
        """
        if not predictions:
            raise NoPredictionsError()

        valid = self.filter_predictions(predictions)
        if not valid:
            raise InsufficientConfidenceError(
                threshold=self.config.confidence_threshold,
                total_predictions=len(predictions),
            )

        weights = self.calculate_weights(valid, dataset)
        trajectories = self._combine_trajectories(valid, weights)
        intervals = self._combine_confidence_intervals(valid, weights)
        features = self._aggregate_feature_importance(valid, weights)
        metadata = self._build_metadata(valid, weights, dataset)

        self.logger.info(
            "ensemble_combined",
            total_models=len(predictions),
            active_models=len(valid),
            strategy=self.config.weighting_strategy.value,
            consensus_score=metadata.consensus_score,
            points=len(trajectories),
        )

        return PredictionOutput(
            trajectories=trajectories,
            confidence_intervals=intervals,
            feature_importance=features,
            model_metadata=metadata,
        )

    def filter_predictions(self, predictions: Sequence[ModelPrediction]) -> list[ModelPrediction]:
        """Drop disabled, low-confidence and empty predictions."""
        valid = []
        for prediction in predictions:
            model_config = self._model_config(prediction.model_name)
            if model_config is not None and not model_config.enabled:
                self.logger.debug("ensemble_model_disabled", model=prediction.model_name)
                continue
            if prediction.confidence < self.config.confidence_threshold:
                self.logger.debug(
                    "ensemble_prediction_below_threshold",
                    model=prediction.model_name,
                    confidence=prediction.confidence,
                    threshold=self.config.confidence_threshold,
                )
                continue
            if not prediction.prediction.trajectories:
                continue
            valid.append(prediction)
        return valid

    def calculate_weights(
        self,
        predictions: Sequence[ModelPrediction],
        dataset: Optional[EnrichedDataset] = None,
    ) -> dict[str, float]:
        """
        Weights per model name under the configured strategy.

        Returns:
            Mapping model name -> weight, summing to 1
        """
        strategy = self.config.weighting_strategy
        if strategy == WeightingStrategy.STATIC:
            raw = {p.model_name: self._static_weight(p) for p in predictions}
        elif strategy == WeightingStrategy.CONFIDENCE_BASED:
            raw = {p.model_name: p.confidence for p in predictions}
        elif strategy == WeightingStrategy.PERFORMANCE_BASED:
            raw = {p.model_name: self.average_performance(p.model_name) for p in predictions}
        else:
            raw = {p.model_name: self._dynamic_score(p, dataset) for p in predictions}
        return _normalize(raw)

    def update_model_performance(self, model_name: str, observed_accuracy: float) -> None:
        """Append an accuracy score to the model's bounded history."""
        history = self._performance_history.get(model_name)
        if history is None:
            history = deque(maxlen=self.history_size)
            self._performance_history[model_name] = history
        history.append(float(observed_accuracy))
        self.logger.debug(
            "model_performance_updated",
            model=model_name,
            accuracy=observed_accuracy,
            history_length=len(history),
        )

    def average_performance(self, model_name: str) -> float:
        history = self._performance_history.get(model_name)
        if not history:
            return self.DEFAULT_PERFORMANCE
        return sum(history) / len(history)

    def performance_history(self, model_name: str) -> list[float]:
        return list(self._performance_history.get(model_name, ()))

    def reset_performance_history(self, model_name: Optional[str] = None) -> None:
        if model_name is None:
            self._performance_history.clear()
        else:
            self._performance_history.pop(model_name, None)

    def record_feedback(self, store, simulation_id: str) -> int:
        """
        Feed stored user feedback for a simulation into performance history.

        Args:
            store: FeedbackStore holding the records
            simulation_id: Simulation the feedback refers to

        Returns:
            Number of records applied
        """
        records = store.list_for_simulation(simulation_id)
        for record in records:
            self.update_model_performance(record.model_name, record.accuracy)
        self.logger.info("ensemble_feedback_applied", simulation_id=simulation_id, records=len(records))
        return len(records)

    def get_ensemble_metrics(
        self,
        predictions: Sequence[ModelPrediction],
        dataset: Optional[EnrichedDataset] = None,
    ) -> EnsembleMetrics:
        """Observability snapshot for a set of predictions."""
        valid = self.filter_predictions(predictions)
        weights = self.calculate_weights(valid, dataset) if valid else {}
        consensus = self.consensus_score(predictions)
        return EnsembleMetrics(
            total_models=len(predictions),
            active_models=len(weights),
            average_confidence=(
                sum(p.confidence for p in predictions) / len(predictions) if predictions else 0.0
            ),
            weight_distribution=weights,
            consensus_score=consensus,
            diversity_score=self.diversity_score(predictions),
        )

    # =========================================================================
    # Agreement
    # =========================================================================

    def consensus_score(self, predictions: Sequence[ModelPrediction]) -> float:
        """
        Mean pairwise agreement between all model pairs.

        1.0 for fewer than two models.
        """
        if len(predictions) < 2:
            return 1.0

        agreements = []
        for i in range(len(predictions)):
            for j in range(i + 1, len(predictions)):
                agreements.append(
                    model_agreement(
                        predictions[i].prediction.trajectories,
                        predictions[j].prediction.trajectories,
                    )
                )
        return sum(agreements) / len(agreements) if agreements else 0.5

    def diversity_score(self, predictions: Sequence[ModelPrediction]) -> float:
        if len(predictions) < 2:
            return 0.0
        return max(0.0, 1.0 - self.consensus_score(predictions))

    # =========================================================================
    # Weighting internals
    # =========================================================================

    def _model_config(self, model_name: str) -> Optional[EnsembleModelConfig]:
        for model_config in self.config.models:
            if model_config.name == model_name:
                return model_config
        return None

    def _static_weight(self, prediction: ModelPrediction) -> float:
        model_config = self._model_config(prediction.model_name)
        return model_config.weight if model_config is not None else prediction.weight

    def _dynamic_score(self, prediction: ModelPrediction, dataset: Optional[EnrichedDataset]) -> float:
        efficiency = max(0.0, 1.0 - prediction.processing_time_ms / self.MAX_PROCESSING_TIME_MS)
        return (
            prediction.confidence * 0.4
            + self.average_performance(prediction.model_name) * 0.3
            + self.data_quality_compatibility(prediction.model_name, dataset) * 0.2
            + efficiency * 0.1
        )

    def data_quality_compatibility(self, model_name: str, dataset: Optional[EnrichedDataset]) -> float:
        """
        How well a model copes with the dataset's quality.

        Language models tolerate poor data; time-series models need it clean.
        """
        if dataset is None:
            return self.DEFAULT_COMPATIBILITY

        overall = dataset.data_quality.overall
        name = model_name.lower()
        if any(hint in name for hint in LANGUAGE_MODEL_HINTS):
            return 0.3 + overall * 0.7
        if any(hint in name for hint in TIME_SERIES_HINTS):
            return overall
        return 0.5 + overall * 0.5

    # =========================================================================
    # Merge internals
    # =========================================================================

    def _combine_trajectories(
        self, predictions: Sequence[ModelPrediction], weights: dict[str, float]
    ) -> list[TrajectoryPoint]:
        length = max(len(p.prediction.trajectories) for p in predictions)
        merged = []
        for index in range(length):
            point = self._combine_point(predictions, weights, index)
            if point is not None:
                merged.append(point)
        return merged

    def _combine_point(
        self, predictions: Sequence[ModelPrediction], weights: dict[str, float], index: int
    ) -> Optional[TrajectoryPoint]:
        contributions = [
            (p.prediction.trajectories[index], weights.get(p.model_name, 0.0))
            for p in predictions
            if index < len(p.prediction.trajectories)
        ]
        if not contributions:
            return None
        contributions = _equalize_if_weightless(contributions)
        total_weight = sum(weight for _, weight in contributions)

        metric_sums: dict[str, float] = defaultdict(float)
        metric_weights: dict[str, float] = defaultdict(float)
        metric_values: dict[str, list[float]] = defaultdict(list)
        for point, weight in contributions:
            for metric, value in point.metrics.items():
                metric_sums[metric] += value * weight
                metric_weights[metric] += weight
                metric_values[metric].append(value)

        # Metrics reported only by zero-weight providers fall back to a plain mean
        metrics = {
            metric: (
                metric_sums[metric] / metric_weights[metric]
                if metric_weights[metric] > 0
                else float(np.mean(metric_values[metric]))
            )
            for metric in metric_values
        }
        confidence = sum(point.confidence * weight for point, weight in contributions) / total_weight

        return TrajectoryPoint(
            date=contributions[0][0].date,
            metrics=metrics,
            confidence=min(1.0, max(0.0, confidence)),
        )

    def _combine_confidence_intervals(
        self, predictions: Sequence[ModelPrediction], weights: dict[str, float]
    ) -> list[ConfidenceInterval]:
        length = max((len(p.prediction.confidence_intervals) for p in predictions), default=0)
        merged = []
        for index in range(length):
            contributions = [
                (p.prediction.confidence_intervals[index], weights.get(p.model_name, 0.0))
                for p in predictions
                if index < len(p.prediction.confidence_intervals)
            ]
            contributions = _equalize_if_weightless(contributions)
            total_weight = sum(weight for _, weight in contributions)
            merged.append(
                ConfidenceInterval(
                    lower=sum(ci.lower * w for ci, w in contributions) / total_weight,
                    upper=sum(ci.upper * w for ci, w in contributions) / total_weight,
                    confidence_level=min(
                        1.0, sum(ci.confidence_level * w for ci, w in contributions) / total_weight
                    ),
                )
            )
        return merged

    def _aggregate_feature_importance(
        self, predictions: Sequence[ModelPrediction], weights: dict[str, float]
    ) -> list[FeatureImportance]:
        importance: dict[str, float] = defaultdict(float)
        categories: dict[str, Optional[str]] = {}
        for prediction in predictions:
            weight = weights.get(prediction.model_name, 0.0)
            for feature in prediction.prediction.feature_importance:
                importance[feature.feature] += feature.importance * weight
                categories.setdefault(feature.feature, feature.category)

        total = sum(importance.values())
        features = [
            FeatureImportance(
                feature=name,
                importance=value / total if total > 0 else value,
                category=categories[name],
            )
            for name, value in importance.items()
        ]
        features.sort(key=lambda f: f.importance, reverse=True)
        return features

    def _build_metadata(
        self,
        predictions: Sequence[ModelPrediction],
        weights: dict[str, float],
        dataset: Optional[EnrichedDataset],
    ) -> ModelMetadata:
        data_quality = next(
            (p.prediction.model_metadata.data_quality for p in predictions if p.prediction.model_metadata.data_quality),
            None,
        )
        if data_quality is None:
            data_quality = dataset.data_quality if dataset is not None else DataQualityScore()

        return ModelMetadata(
            model_name="Ensemble",
            model_version="1.0.0",
            confidence_score=sum(p.confidence for p in predictions) / len(predictions),
            processing_time=sum(p.processing_time_ms for p in predictions),
            data_quality=data_quality,
            feature_count=max(p.prediction.model_metadata.feature_count for p in predictions),
            prediction_horizon=max(p.prediction.model_metadata.prediction_horizon for p in predictions),
            consensus_score=self.consensus_score(predictions),
            diversity_score=self.diversity_score(predictions),
            model_weights=dict(weights),
        )


# =============================================================================
# Helpers
# =============================================================================


def model_agreement(first: Sequence[TrajectoryPoint], second: Sequence[TrajectoryPoint]) -> float:
    """
    Agreement between two trajectories over their common prefix.

    Per common positive metric value: max(0, 1 - |v1 - v2| / max(v1, v2)).
    0.5 when nothing is comparable, 0 when either trajectory is empty.
    """
    length = min(len(first), len(second))
    if length == 0:
        return 0.0

    scores = []
    for a, b in zip(first[:length], second[:length]):
        for metric, v1 in a.metrics.items():
            v2 = b.metrics.get(metric)
            if v2 is None or v1 <= 0 or v2 <= 0:
                continue
            scores.append(max(0.0, 1.0 - abs(v1 - v2) / max(v1, v2)))
    return float(np.mean(scores)) if scores else 0.5


def _normalize(raw: dict[str, float]) -> dict[str, float]:
    """Scale to sum 1; equal weights when everything is zero."""
    if not raw:
        return {}
    total = sum(raw.values())
    if total <= 0:
        equal = 1.0 / len(raw)
        return {name: equal for name in raw}
    return {name: value / total for name, value in raw.items()}


def _equalize_if_weightless(contributions: list[tuple]) -> list[tuple]:
    """Equal weights over the contributors when none of them carries weight."""
    if sum(weight for _, weight in contributions) > 0:
        return contributions
    return [(item, 1.0) for item, _ in contributions]
