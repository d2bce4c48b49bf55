"""
Simulation Orchestrator — owns the lifecycle of a simulation request.

States: queued -> processing -> completed | failed | cancelled

run_simulation validates the request (an invalid request fails at once and
is never queued), answers from the cache when it can and otherwise admits a
job to the processing queue. The queue runs the pipeline:

    dataset -> providers (parallel, timeout + retry + circuit breaker)
            -> ensemble -> scenarios | risks (concurrent)
            -> recommendations -> result written to cache and storage

Every pipeline step is a cooperative cancellation checkpoint, and the result
is written only after all steps succeed.

Completed results can later be scored against observed performance
(evaluate_simulation, which feeds accuracy back into ensemble weighting)
and their recommendations projected as what-if scenarios.
"""

import asyncio
import time
from datetime import datetime
from typing import Any, Optional, Sequence
from uuid import uuid4

import numpy as np
import structlog
from pydantic import BaseModel

from simengine.caching.cache_manager import CacheManager
from simengine.caching.simulation_cache import SimulationCache
from simengine.config import get_settings
from simengine.connectors.base import DatasetProvider, PredictionProvider
from simengine.engine.ensemble import EnsembleCoordinator
from simengine.engine.error_tracker import ErrorTracker
from simengine.engine.errors import (
    DataValidationError,
    ServiceDegradedError,
    SimulationCancelledError,
    SimulationError,
    TotalFailureError,
)
from simengine.engine.impact_estimator import ImpactEstimationOptions, RecommendationImpactEstimator
from simengine.engine.performance_tracker import ModelPerformanceTracker, accuracy_score
from simengine.engine.recommendations import PivotRecommendationEngine, RecommendationOptions
from simengine.engine.retry import RetryPolicy, with_retry, with_timeout
from simengine.engine.risk_detector import RiskDetectionOptions, RiskDetector
from simengine.engine.scenario_generator import ScenarioGenerationOptions, ScenarioGenerator
from simengine.engine.validation import (
    DataQualityValidator,
    ModelOutputValidator,
    SimulationRequestValidator,
    throw_if_invalid,
)
from simengine.models.dataset import EnrichedDataset
from simengine.models.enums import SimulationStatus, SubscriptionTier
from simengine.models.impact import ImpactEstimationResult, RecommendationComparison, WhatIfScenario
from simengine.models.performance import ActualPerformance, ModelPerformanceReport
from simengine.models.prediction import ModelPrediction, TrajectoryPoint
from simengine.models.queue import OrganizationQueueStatus, QueueMetrics, SimulationQueueEntry
from simengine.models.request import SimulationContext, SimulationRequest
from simengine.models.results import (
    FeedbackRecord,
    RiskAlert,
    ScenarioResult,
    SimulationResult,
    SimulationStatusReport,
)
from simengine.scheduling.processing_queue import AsyncProcessingQueue, JobHandle
from simengine.storage import get_storage
from simengine.storage.base import SimulationStorage, StorageError
from simengine.utils.logging import job_log_context

logger = structlog.get_logger()


class SimulationSubmission(BaseModel):
    """Answer to run_simulation."""

    simulation_id: str
    status: SimulationStatus
    cached: bool = False
    queued: bool = False
    estimated_processing_time_ms: float = 0.0


class SimulationOrchestrator:
    """
    Root component tying validation, caching, queueing and the analytical
    pipeline together.

    Each orchestrator owns its ErrorTracker, queue and cache, so separate
    instances never share state.

    Attributes:
        providers: Prediction providers invoked in parallel per job
        storage: Result, queue and feedback store
        queue: Processing queue running the pipeline
        cache: Result cache
        error_tracker: Per-service error counts and circuit state
        performance_tracker: Accuracy history of evaluated simulations
        impact_estimator: What-if projector for recommendations
    """

    def __init__(
        self,
        dataset_provider: DatasetProvider,
        providers: Sequence[PredictionProvider],
        storage: Optional[SimulationStorage] = None,
        ensemble: Optional[EnsembleCoordinator] = None,
        scenario_generator: Optional[ScenarioGenerator] = None,
        risk_detector: Optional[RiskDetector] = None,
        recommendation_engine: Optional[PivotRecommendationEngine] = None,
        cache: Optional[SimulationCache] = None,
        error_tracker: Optional[ErrorTracker] = None,
        retry_policy: Optional[RetryPolicy] = None,
        request_validator: Optional[SimulationRequestValidator] = None,
        scenario_options: Optional[ScenarioGenerationOptions] = None,
        risk_options: Optional[RiskDetectionOptions] = None,
        recommendation_options: Optional[RecommendationOptions] = None,
        provider_timeout_seconds: Optional[float] = None,
        performance_tracker: Optional[ModelPerformanceTracker] = None,
        impact_estimator: Optional[RecommendationImpactEstimator] = None,
        queue_options: Optional[dict[str, Any]] = None,
    ):
        """
        Initialize the orchestrator with all sub-components.

        Args:
            dataset_provider: Source of enriched campaign datasets
            providers: Prediction providers
            storage: Backing store (shared in-memory storage by default)
            ensemble: Optional custom ensemble coordinator
            scenario_generator: Optional custom scenario generator
            risk_detector: Optional custom risk detector
            recommendation_engine: Optional custom recommendation engine
            cache: Optional custom result cache
            error_tracker: Optional custom error tracker
            retry_policy: Provider retry policy (settings by default)
            request_validator: Optional custom request validator
            scenario_options: Scenario generation options
            risk_options: Risk detection thresholds
            recommendation_options: Recommendation filters
            provider_timeout_seconds: Per-provider call timeout
            performance_tracker: Accuracy tracker (reads from storage by default)
            impact_estimator: What-if projector for recommendations
            queue_options: Keyword arguments for AsyncProcessingQueue
        """
        settings = get_settings()
        self.dataset_provider = dataset_provider
        self.providers = list(providers)
        self.storage = storage if storage is not None else get_storage()
        self.ensemble = ensemble or EnsembleCoordinator()
        self.scenario_generator = scenario_generator or ScenarioGenerator()
        self.risk_detector = risk_detector or RiskDetector()
        self.recommendation_engine = recommendation_engine or PivotRecommendationEngine()
        self.cache = cache or SimulationCache()
        self.error_tracker = error_tracker or ErrorTracker()
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self.request_validator = request_validator or SimulationRequestValidator()
        self.data_quality_validator = DataQualityValidator()
        self.output_validator = ModelOutputValidator()
        self.scenario_options = scenario_options or ScenarioGenerationOptions()
        self.risk_options = risk_options or RiskDetectionOptions.from_settings()
        self.recommendation_options = recommendation_options or RecommendationOptions.from_settings()
        self.provider_timeout_seconds = provider_timeout_seconds or settings.provider_timeout_seconds
        self.performance_tracker = performance_tracker or ModelPerformanceTracker(self.storage)
        self.impact_estimator = impact_estimator or RecommendationImpactEstimator()

        self.queue = AsyncProcessingQueue(
            self._process,
            store=self.storage,
            on_terminal=self._on_job_terminal,
            **(queue_options or {}),
        )
        self.cache_manager = CacheManager(self.cache, self.queue)
        self.logger = structlog.get_logger()

        self.logger.info(
            "orchestrator_initialized",
            providers=[p.name for p in self.providers],
            weighting_strategy=self.ensemble.config.weighting_strategy.value,
        )

    # =========================================================================
    # Public API
    # =========================================================================

    async def run_simulation(
        self,
        request: SimulationRequest,
        organization_id: str,
        user_id: str,
        tier: SubscriptionTier = SubscriptionTier.FREE,
        force_async: bool = False,
    ) -> SimulationSubmission:
        """
        Submit a simulation.

        Args:
            request: Simulation request
            organization_id: Owning organization
            user_id: Submitting user
            tier: Organization's subscription tier
            force_async: Always leave the job to the scheduler

        Returns:
            Submission with the new simulation id and its current status

        Raises:
            DataValidationError: Request is invalid; a failed result is stored
                and nothing is queued
            QueueLimitExceededError: Organization's queue is full
        """
        simulation_id = self.generate_simulation_id()

        with job_log_context(simulation_id, organization_id):
            validation = self.request_validator.validate(request)
            for warning in validation.warnings:
                self.logger.warning(
                    "request_validation_warning",
                    field=warning.field,
                    message=warning.message,
                    suggestion=warning.suggestion,
                )
            try:
                throw_if_invalid(validation, "Simulation request validation", value=request.campaign_id)
            except DataValidationError as e:
                self.error_tracker.handle_error(e, service="validation", simulation_id=simulation_id)
                self._save_failed_result(simulation_id, request.campaign_id, e)
                raise

            decision = await self.cache_manager.process_simulation(
                simulation_id,
                request,
                organization_id,
                user_id,
                tier,
                force_async=force_async,
            )

            if decision.cached:
                now = datetime.utcnow()
                result = decision.cached_result.model_copy(
                    update={
                        "id": simulation_id,
                        "campaign_id": request.campaign_id,
                        "created_at": now,
                        "completed_at": now,
                    }
                )
                self.storage.save(result)
                self.logger.info("simulation_served_from_cache", campaign_id=request.campaign_id)
                return SimulationSubmission(
                    simulation_id=simulation_id,
                    status=SimulationStatus.COMPLETED,
                    cached=True,
                )

            status = self.get_simulation_status(simulation_id)
            self.logger.info(
                "simulation_submitted",
                campaign_id=request.campaign_id,
                tier=tier.value,
                queued=decision.queued,
                status=status.status.value if status else None,
            )
            return SimulationSubmission(
                simulation_id=simulation_id,
                status=status.status if status else SimulationStatus.QUEUED,
                queued=decision.queued,
                estimated_processing_time_ms=self.estimate_processing_time(request),
            )

    async def cancel_simulation(self, simulation_id: str) -> bool:
        """
        Cancel a queued or processing simulation.

        Returns:
            False when the simulation is unknown or already terminal
        """
        cancelled = await self.queue.cancel(simulation_id)
        if not cancelled:
            self.logger.info("simulation_cancel_ignored", simulation_id=simulation_id)
        return cancelled

    def get_simulation_status(self, simulation_id: str) -> Optional[SimulationStatusReport]:
        """
        Status of a simulation: live queue state first, then storage.

        Returns:
            Status report, None for unknown ids
        """
        entry = self.queue.get_entry(simulation_id)
        if entry is not None:
            return SimulationStatusReport(
                simulation_id=simulation_id,
                status=entry.status,
                progress=entry.progress,
                current_step=entry.current_step,
                error=entry.error if entry.status == SimulationStatus.FAILED else None,
            )

        result = self.storage.get(simulation_id)
        if result is not None:
            return SimulationStatusReport(
                simulation_id=simulation_id,
                status=result.status,
                progress=100.0 if result.status == SimulationStatus.COMPLETED else 0.0,
                error=result.error,
            )
        return None

    def get_result(self, simulation_id: str) -> Optional[SimulationResult]:
        return self.storage.get(simulation_id)

    async def wait_for(self, simulation_id: str, timeout_seconds: Optional[float] = None) -> Optional[SimulationResult]:
        """Wait for a job to finish and return its stored result."""
        await self.queue.wait_for(simulation_id, timeout_seconds)
        return self.get_result(simulation_id)

    def get_queue_status(self) -> QueueMetrics:
        return self.queue.get_metrics()

    def get_organization_queue_status(
        self, organization_id: str, tier: Optional[SubscriptionTier] = None
    ) -> OrganizationQueueStatus:
        return self.queue.get_queue_status(organization_id, tier)

    def record_feedback(self, feedback: FeedbackRecord) -> None:
        """Store user feedback and feed it into ensemble performance history."""
        self.storage.record(feedback)
        self.ensemble.update_model_performance(feedback.model_name, feedback.accuracy)

    def evaluate_simulation(
        self, simulation_id: str, actuals: Sequence[ActualPerformance]
    ) -> ModelPerformanceReport:
        """
        Score a finished simulation against observed performance.

        When any day matched, every model weighted into the ensemble gets a
        feedback record with accuracy 1 - MAPE / 100.

        Raises:
            DataValidationError: Unknown simulation
            InsufficientDataError: The simulation has no trajectory
        """
        report = self.performance_tracker.generate_report(simulation_id, actuals)
        if report.accuracy_metrics is None:
            return report

        result = self.storage.get(simulation_id)
        accuracy = accuracy_score(report.accuracy_metrics)
        model_names = list(result.model_metadata.model_weights) if result.model_metadata else []
        for model_name in model_names:
            self.record_feedback(
                FeedbackRecord(
                    simulation_id=simulation_id,
                    model_name=model_name,
                    accuracy=accuracy,
                    comment=f"Evaluated against {len(report.predictions)} observed values",
                )
            )
        self.logger.info(
            "simulation_evaluated",
            simulation_id=simulation_id,
            models=model_names,
            accuracy=round(accuracy, 3),
        )
        return report

    async def estimate_recommendation_impact(
        self,
        simulation_id: str,
        recommendation_id: str,
        options: Optional[ImpactEstimationOptions] = None,
    ) -> ImpactEstimationResult:
        """
        Project one recommendation of a completed simulation.

        Raises:
            DataValidationError: Simulation not completed or recommendation unknown
        """
        result, dataset = await self._load_completed(simulation_id)
        recommendation = next((r for r in result.recommendations if r.id == recommendation_id), None)
        if recommendation is None:
            raise DataValidationError(
                f"Recommendation {recommendation_id} not found in simulation {simulation_id}",
                field="recommendation_id",
                value=recommendation_id,
                code="RECOMMENDATION_NOT_FOUND",
            )
        return self.impact_estimator.estimate_impact(recommendation, result.trajectories, dataset, options)

    async def run_what_if_scenarios(
        self, simulation_id: str, options: Optional[ImpactEstimationOptions] = None
    ) -> list[WhatIfScenario]:
        result, dataset = await self._load_completed(simulation_id)
        return self.impact_estimator.run_what_if_scenarios(result.recommendations, result.trajectories, dataset, options)

    async def compare_recommendations(
        self, simulation_id: str, options: Optional[ImpactEstimationOptions] = None
    ) -> list[RecommendationComparison]:
        result, dataset = await self._load_completed(simulation_id)
        return self.impact_estimator.compare_recommendations(
            result.recommendations, result.trajectories, dataset, options
        )

    def start(self) -> None:
        self.queue.start()

    async def stop(self, wait_for_jobs: bool = False) -> None:
        await self.queue.stop(wait_for_jobs=wait_for_jobs)

    def estimate_processing_time(self, request: SimulationRequest) -> float:
        """Rough end-to-end time of a request in milliseconds."""
        estimate = 10000.0
        estimate += request.timeframe.days * 100
        estimate += len(request.metrics) * 1000
        estimate += len(request.scenarios) * 2000
        estimate += len(request.external_data_sources) * 3000
        return estimate

    @staticmethod
    def generate_simulation_id() -> str:
        return f"sim_{int(time.time() * 1000)}_{uuid4().hex[:9]}"

    # =========================================================================
    # Pipeline
    # =========================================================================

    async def _process(self, entry: SimulationQueueEntry, handle: JobHandle) -> SimulationResult:
        try:
            return await self._run_pipeline(entry, handle)
        except SimulationCancelledError:
            raise
        except Exception as e:
            self.error_tracker.handle_error(e, service="simulation", simulation_id=entry.simulation_id)
            raise

    async def _run_pipeline(self, entry: SimulationQueueEntry, handle: JobHandle) -> SimulationResult:
        request = entry.request
        created_at = datetime.utcnow()
        started = time.perf_counter()

        await handle.step("Loading campaign data")
        dataset = await self.dataset_provider.get_enriched_dataset(
            request.campaign_id, request.enabled_sources
        )
        quality = self.data_quality_validator.validate_dataset(dataset)
        for warning in quality.warnings:
            self.logger.warning("dataset_quality_warning", field=warning.field, message=warning.message)
        throw_if_invalid(quality, "Dataset validation", value=request.campaign_id)
        self.data_quality_validator.require_sufficient_data(dataset)

        context = SimulationContext(
            simulation_id=entry.simulation_id,
            organization_id=entry.organization_id,
            user_id=entry.user_id,
            tier=entry.tier,
            request=request,
            dataset=dataset,
        )

        await handle.step("Fetching market data")
        market = dataset.market_data
        self.logger.info(
            "market_data_loaded",
            competitor_records=len(market.competitor_activity),
            seasonal_trends=len(market.seasonal_trends),
            volatility=market.market_volatility.overall,
            external_sources=sorted(dataset.external_data),
        )

        await handle.step("Running AI models")
        predictions = await self._collect_predictions(context)
        merged = self.ensemble.combine(predictions, dataset)

        await handle.step("Generating scenarios")
        scenarios, risks = await asyncio.gather(
            self._generate_scenarios(merged.trajectories, context),
            self._detect_risks(merged.trajectories, context),
        )

        await handle.step("Calculating recommendations")
        recommendations = self.recommendation_engine.generate(
            context, merged.trajectories, risks, self.recommendation_options
        )

        await handle.step("Finalizing results")
        elapsed_ms = (time.perf_counter() - started) * 1000
        result = SimulationResult(
            id=entry.simulation_id,
            campaign_id=request.campaign_id,
            status=SimulationStatus.COMPLETED,
            trajectories=merged.trajectories,
            scenarios=scenarios,
            risks=risks,
            recommendations=recommendations,
            model_metadata=merged.model_metadata.model_copy(
                update={"processing_time": elapsed_ms, "data_quality": dataset.data_quality}
            ),
            created_at=created_at,
            completed_at=datetime.utcnow(),
        )

        # No await from here on: a completed run is written whole or not at all
        if self.cache.should_cache(request):
            self.cache.set(request, result)
        self.storage.save(result)

        self.logger.info(
            "simulation_completed",
            campaign_id=request.campaign_id,
            providers=len(predictions),
            scenarios=len(scenarios),
            risks=len(risks),
            recommendations=len(recommendations),
            duration_ms=round(elapsed_ms, 2),
        )
        return result

    async def _collect_predictions(self, context: SimulationContext) -> list[ModelPrediction]:
        """
        Call every available provider in parallel.

        Providers with an open circuit are skipped; failed providers are
        recorded and left out.

        Raises:
            TotalFailureError: No provider produced a prediction
        """
        available = []
        degraded: list[ServiceDegradedError] = []
        for provider in self.providers:
            if self.error_tracker.should_circuit_break(provider.name):
                skipped = ServiceDegradedError(provider.name, self.error_tracker.recent_error_count(provider.name))
                self.logger.warning(
                    "provider_skipped_circuit_open",
                    provider=provider.name,
                    recent_errors=skipped.context["error_count"],
                )
                degraded.append(skipped)
                continue
            available.append(provider)

        outcomes = await asyncio.gather(
            *(self._call_provider(provider, context) for provider in available),
            return_exceptions=True,
        )

        predictions: list[ModelPrediction] = []
        failures: dict[str, str] = {e.service: e.message for e in degraded}
        first_error: Optional[BaseException] = None
        for provider, outcome in zip(available, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                report = self.error_tracker.handle_error(
                    outcome, service=provider.name, simulation_id=context.simulation_id
                )
                failures[provider.name] = report.error.message
                first_error = first_error or outcome
                continue
            predictions.append(outcome)

        if not predictions:
            raise TotalFailureError(
                "No prediction provider produced a result",
                primary_error=first_error or (degraded[0] if degraded else None),
                context={
                    "providers": [p.name for p in self.providers],
                    "skipped": [e.service for e in degraded],
                    "failures": failures,
                },
            )

        self.logger.info(
            "predictions_collected",
            succeeded=[p.model_name for p in predictions],
            failed=sorted(failures),
        )
        return predictions

    async def _call_provider(self, provider: PredictionProvider, context: SimulationContext) -> ModelPrediction:
        started = time.perf_counter()
        output = await with_retry(
            lambda: with_timeout(
                provider.predict(context.dataset, context.request),
                self.provider_timeout_seconds,
            ),
            policy=self.retry_policy,
            operation_name=f"predict:{provider.name}",
        )
        elapsed_ms = (time.perf_counter() - started) * 1000

        validation = self.output_validator.validate_prediction_output(output)
        if validation.warnings:
            self.logger.info(
                "prediction_output_warnings",
                provider=provider.name,
                warnings=len(validation.warnings),
                score=round(validation.score, 3),
            )
        throw_if_invalid(validation, f"{provider.name} prediction output", value=provider.name)

        confidence = output.model_metadata.confidence_score
        if not confidence and output.trajectories:
            confidence = float(np.mean([p.confidence for p in output.trajectories]))

        return ModelPrediction(
            model_name=provider.name,
            prediction=output,
            weight=provider.weight,
            confidence=confidence,
            processing_time_ms=output.model_metadata.processing_time or elapsed_ms,
        )

    async def _generate_scenarios(
        self, trajectory: list[TrajectoryPoint], context: SimulationContext
    ) -> list[ScenarioResult]:
        scenarios = await asyncio.to_thread(
            self.scenario_generator.generate,
            trajectory,
            context.request.scenarios,
            context,
            self.scenario_options,
        )
        if context.request.scenarios and not scenarios:
            raise SimulationError(
                "None of the requested scenarios could be generated",
                code="NO_SCENARIOS_GENERATED",
                context={"requested": [s.type.value for s in context.request.scenarios]},
            )
        return scenarios

    async def _detect_risks(self, trajectory: list[TrajectoryPoint], context: SimulationContext) -> list[RiskAlert]:
        return await asyncio.to_thread(self.risk_detector.detect, trajectory, context, self.risk_options)

    # =========================================================================
    # Bookkeeping
    # =========================================================================

    def _on_job_terminal(self, entry: SimulationQueueEntry) -> None:
        if entry.status != SimulationStatus.FAILED:
            return
        result = SimulationResult(
            id=entry.simulation_id,
            campaign_id=entry.request.campaign_id,
            status=SimulationStatus.FAILED,
            created_at=entry.created_at,
            completed_at=entry.completed_at,
            error=entry.error,
        )
        try:
            self.storage.save(result)
        except StorageError as e:
            self.logger.error("failed_result_write_failed", simulation_id=entry.simulation_id, error=str(e))

    async def _load_completed(self, simulation_id: str) -> tuple[SimulationResult, EnrichedDataset]:
        """A completed result with a freshly fetched dataset for its campaign."""
        result = self.storage.get(simulation_id)
        if result is None or result.status != SimulationStatus.COMPLETED:
            raise DataValidationError(
                f"No completed simulation {simulation_id}",
                field="simulation_id",
                value=simulation_id,
                code="SIMULATION_NOT_FOUND",
            )
        dataset = await self.dataset_provider.get_enriched_dataset(result.campaign_id, [])
        return result, dataset

    def _save_failed_result(self, simulation_id: str, campaign_id: str, error: DataValidationError) -> None:
        now = datetime.utcnow()
        self.storage.save(
            SimulationResult(
                id=simulation_id,
                campaign_id=campaign_id,
                status=SimulationStatus.FAILED,
                created_at=now,
                completed_at=now,
                error=error.to_failure(),
            )
        )
