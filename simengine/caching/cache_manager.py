"""
Cache Manager — routes a simulation through the cache and the queue.

A request is answered from the cache when possible. Otherwise it is admitted
to the processing queue; simple requests from paying tiers are run right
away, while free-tier and expensive requests wait for the scheduler.
"""

from typing import Optional

import structlog
from pydantic import BaseModel

from simengine.caching.simulation_cache import SimulationCache
from simengine.config import get_settings
from simengine.models.enums import SubscriptionTier
from simengine.models.queue import QueueMetrics
from simengine.models.request import SimulationRequest
from simengine.models.results import CacheStatistics, SimulationResult
from simengine.scheduling.processing_queue import AsyncProcessingQueue

logger = structlog.get_logger()


class ProcessingDecision(BaseModel):
    """How a submitted simulation was handled."""

    simulation_id: str
    cached: bool = False
    queued: bool = False
    cached_result: Optional[SimulationResult] = None


class MaintenanceReport(BaseModel):
    expired_cache_entries: int = 0


class PerformanceMetrics(BaseModel):
    cache: CacheStatistics
    queue: QueueMetrics


class CacheManager:
    """
    Unified front of SimulationCache and AsyncProcessingQueue.

    Attributes:
        cache: Result cache
        queue: Processing queue
        smart_caching: Consult the cache before queueing
        value_threshold: Cache value above which work is processed async
    """

    # Complexity factors needed to force async processing
    MIN_COMPLEXITY_FACTORS = 2

    def __init__(
        self,
        cache: SimulationCache,
        queue: AsyncProcessingQueue,
        smart_caching: Optional[bool] = None,
        value_threshold: Optional[float] = None,
    ):
        settings = get_settings()
        self.cache = cache
        self.queue = queue
        self.smart_caching = settings.cache_smart_caching if smart_caching is None else smart_caching
        self.value_threshold = (
            settings.cache_value_threshold if value_threshold is None else value_threshold
        )
        self.logger = structlog.get_logger()

    async def process_simulation(
        self,
        simulation_id: str,
        request: SimulationRequest,
        organization_id: str,
        user_id: str,
        tier: SubscriptionTier = SubscriptionTier.FREE,
        force_async: bool = False,
    ) -> ProcessingDecision:
        """
        Answer from the cache or admit the job to the queue.

        Args:
            simulation_id: Identifier of the new simulation
            request: Validated simulation request
            organization_id: Owning organization
            user_id: Submitting user
            tier: Organization's subscription tier
            force_async: Always leave the job to the scheduler

        Returns:
            Decision carrying the cached result on a hit

        Raises:
            QueueLimitExceededError: Organization's queue is full
        """
        if self.smart_caching:
            cached = self.cache.get(request)
            if cached is not None:
                return ProcessingDecision(simulation_id=simulation_id, cached=True, cached_result=cached)

        await self.queue.submit(simulation_id, request, organization_id, user_id, tier)

        if force_async or self.should_process_async(request, tier):
            return ProcessingDecision(simulation_id=simulation_id, queued=True)

        ran = await self.queue.run_now(simulation_id)
        self.logger.info("simulation_processed_inline", simulation_id=simulation_id, ran=ran)
        return ProcessingDecision(simulation_id=simulation_id, queued=not ran)

    def should_process_async(self, request: SimulationRequest, tier: SubscriptionTier) -> bool:
        """
        Whether a job should wait for the scheduler instead of running inline.

        Free tier always waits. Otherwise a high cache value, or at least two
        complexity factors, sends the job to the scheduler.
        """
        if tier == SubscriptionTier.FREE:
            return True

        if self.cache.estimate_cache_value(request) > self.value_threshold:
            return True

        complexity_factors = [
            len(request.scenarios) > 2,
            len(request.external_data_sources) > 1,
            len(request.metrics) > 5,
            request.timeframe.days > 14,
        ]
        return sum(complexity_factors) >= self.MIN_COMPLEXITY_FACTORS

    def invalidate_campaign(self, campaign_id: str) -> int:
        return self.cache.invalidate_campaign(campaign_id)

    def perform_maintenance(self) -> MaintenanceReport:
        report = MaintenanceReport(expired_cache_entries=self.cache.cleanup_expired())
        logger.info("cache_maintenance_completed", expired_cache_entries=report.expired_cache_entries)
        return report

    def get_performance_metrics(self) -> PerformanceMetrics:
        return PerformanceMetrics(cache=self.cache.get_statistics(), queue=self.queue.get_metrics())
