"""
Async Processing Queue — tier-prioritized scheduler for simulation jobs.

Jobs are admitted per organization against the tier's queued-job ceiling and
ordered in a single heap by (-priority, sequence), so equal priorities run
FIFO. A periodic tick starts eligible jobs while respecting the global
concurrency cap, the tier's per-organization concurrency ceiling and any
retry delay. Every state transition is mirrored to the QueueStore.

Tier table (priority, max concurrent, max queued):
    free        10    1    3
    pro         50    3   10
    enterprise  90   10   50
"""

import asyncio
import heapq
import itertools
import time
from contextlib import suppress
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional

import structlog

from simengine.config import get_settings
from simengine.engine.errors import (
    DataValidationError,
    ProcessingTimeoutError,
    QueueLimitExceededError,
    SimulationCancelledError,
    SimulationError,
    normalize_error,
)
from simengine.models.enums import SimulationStatus, SubscriptionTier
from simengine.models.queue import (
    OrganizationQueueStatus,
    QueueMetrics,
    SimulationQueueEntry,
    TierLimits,
)
from simengine.models.request import SimulationRequest
from simengine.models.results import SimulationFailure
from simengine.storage import get_storage
from simengine.storage.base import QueueStore
from simengine.utils.logging import job_log_context

logger = structlog.get_logger()

DEFAULT_TIER_LIMITS: dict[SubscriptionTier, TierLimits] = {
    SubscriptionTier.FREE: TierLimits(priority=10, max_concurrent_jobs=1, max_queued_jobs=3),
    SubscriptionTier.PRO: TierLimits(priority=50, max_concurrent_jobs=3, max_queued_jobs=10),
    SubscriptionTier.ENTERPRISE: TierLimits(priority=90, max_concurrent_jobs=10, max_queued_jobs=50),
}

# Named pipeline steps and the progress reached when each starts
PIPELINE_STEPS: dict[str, float] = {
    "Loading campaign data": 10.0,
    "Fetching market data": 25.0,
    "Running AI models": 70.0,
    "Generating scenarios": 85.0,
    "Calculating recommendations": 95.0,
    "Finalizing results": 100.0,
}

INITIAL_STEP = "Initializing simulation"

# Smoothing factor of the processing-time moving average
PROCESSING_EMA_ALPHA = 0.1

JobExecutor = Callable[[SimulationQueueEntry, "JobHandle"], Awaitable[Any]]


class JobHandle:
    """
    Worker-side view of a running job.

    The executor reports progress through step(); each call is also the
    cooperative cancellation checkpoint.
    """

    def __init__(self, queue: "AsyncProcessingQueue", simulation_id: str):
        self._queue = queue
        self.simulation_id = simulation_id

    @property
    def cancelled(self) -> bool:
        return self._queue.is_cancel_requested(self.simulation_id)

    def check_cancelled(self) -> None:
        """
        Raises:
            SimulationCancelledError: If the job was cancelled
        """
        if self.cancelled:
            raise SimulationCancelledError(self.simulation_id)

    async def step(self, name: str) -> None:
        """
        Enter a named pipeline step.

        Raises:
            SimulationCancelledError: If the job was cancelled
            ValueError: If the step name is unknown
        """
        await self._queue.advance(self.simulation_id, name)


class AsyncProcessingQueue:
    """
    Priority scheduler with tier-based admission and concurrency limits.

    Attributes:
        max_concurrent_jobs: Global worker slots
        tick_interval_seconds: Scheduler loop period
        max_retries: Job-level retries for retryable failures
        retry_delay_seconds: Delay before a retried job becomes eligible
        job_timeout_seconds: Time budget of one job run
    """

    def __init__(
        self,
        executor: JobExecutor,
        store: Optional[QueueStore] = None,
        tier_limits: Optional[dict[SubscriptionTier, TierLimits]] = None,
        max_concurrent_jobs: Optional[int] = None,
        tick_interval_seconds: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_delay_seconds: Optional[float] = None,
        job_timeout_seconds: Optional[float] = None,
        on_terminal: Optional[Callable[[SimulationQueueEntry], None]] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        """
        Initialize the queue.

        Args:
            executor: Coroutine running one job; receives a copy of the entry
                and a JobHandle
            store: Durable mirror of queue entries (shared in-memory storage
                when omitted)
            tier_limits: Per-tier admission and concurrency limits
            max_concurrent_jobs: Global concurrency cap
            tick_interval_seconds: Scheduler loop period
            max_retries: Job-level retries for retryable failures
            retry_delay_seconds: Delay before a retried job is eligible
            job_timeout_seconds: Time budget of one job run
            on_terminal: Callback receiving every entry that reaches a
                terminal state
            clock: Current time, injectable for tests
        """
        settings = get_settings()
        self._executor = executor
        self._store = store if store is not None else get_storage()
        self.tier_limits = dict(tier_limits or DEFAULT_TIER_LIMITS)
        self.max_concurrent_jobs = max_concurrent_jobs or settings.queue_max_concurrent_jobs
        self.tick_interval_seconds = tick_interval_seconds or settings.queue_tick_interval_seconds
        self.max_retries = max_retries if max_retries is not None else settings.queue_max_retries
        self.retry_delay_seconds = (
            retry_delay_seconds if retry_delay_seconds is not None else settings.queue_retry_delay_seconds
        )
        self.job_timeout_seconds = job_timeout_seconds or settings.queue_job_timeout_seconds
        self._on_terminal = on_terminal
        self._clock = clock

        self._heap: list[tuple[int, int, str]] = []
        self._sequence = itertools.count()
        self._entries: dict[str, SimulationQueueEntry] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._cancel_requested: set[str] = set()
        self._done_events: dict[str, asyncio.Event] = {}
        self._lock = asyncio.Lock()
        self._metrics = QueueMetrics()
        self._loop_task: Optional[asyncio.Task] = None
        self.logger = structlog.get_logger()

    # =========================================================================
    # Admission
    # =========================================================================

    def limits_for(self, tier: SubscriptionTier) -> TierLimits:
        return self.tier_limits.get(tier) or self.tier_limits[SubscriptionTier.FREE]

    async def submit(
        self,
        simulation_id: str,
        request: SimulationRequest,
        organization_id: str,
        user_id: str,
        tier: SubscriptionTier = SubscriptionTier.FREE,
    ) -> SimulationQueueEntry:
        """
        Admit a job.

        Args:
            simulation_id: Identifier of the new simulation
            request: Validated simulation request
            organization_id: Owning organization
            user_id: Submitting user
            tier: Organization's subscription tier

        Returns:
            Copy of the queued entry

        Raises:
            QueueLimitExceededError: Organization already has the maximum
                number of queued jobs for its tier
            DataValidationError: Simulation id already tracked
        """
        limits = self.limits_for(tier)
        async with self._lock:
            if simulation_id in self._entries:
                raise DataValidationError(
                    f"Simulation {simulation_id} is already queued",
                    field="simulation_id",
                    value=simulation_id,
                    code="DUPLICATE_SIMULATION",
                )

            queued = self._count(organization_id, SimulationStatus.QUEUED)
            if queued >= limits.max_queued_jobs:
                self.logger.warning(
                    "queue_limit_exceeded",
                    organization_id=organization_id,
                    tier=tier.value,
                    queued_jobs=queued,
                    max_queued_jobs=limits.max_queued_jobs,
                )
                raise QueueLimitExceededError(tier.value, limits.max_queued_jobs)

            entry = SimulationQueueEntry(
                simulation_id=simulation_id,
                organization_id=organization_id,
                user_id=user_id,
                tier=tier,
                request=request,
                priority=limits.priority,
                created_at=self._clock(),
                estimated_duration_ms=self.estimate_processing_duration(request),
            )
            self._entries[simulation_id] = entry
            self._push(entry)
            self._store.save_entry(entry)
            self._metrics.total_jobs += 1

        self.logger.info(
            "job_admitted",
            simulation_id=simulation_id,
            organization_id=organization_id,
            tier=tier.value,
            priority=limits.priority,
            estimated_duration_ms=entry.estimated_duration_ms,
        )
        return entry.model_copy(deep=True)

    def estimate_processing_duration(self, request: SimulationRequest) -> float:
        """Expected run time of a request in milliseconds."""
        duration = 30000.0
        duration += len(request.scenarios) * 10000
        duration += len(request.external_data_sources) * 15000
        duration += min(request.timeframe.days * 1000, 60000)
        duration += len(request.metrics) * 2000
        return duration

    # =========================================================================
    # Scheduling
    # =========================================================================

    async def tick(self) -> list[str]:
        """
        Start every eligible job that fits the available slots.

        Returns:
            Simulation ids started by this tick
        """
        started: list[str] = []
        async with self._lock:
            now = self._clock()
            deferred: list[tuple[int, int, str]] = []
            while self._heap and len(self._tasks) < self.max_concurrent_jobs:
                item = heapq.heappop(self._heap)
                entry = self._entries.get(item[2])
                if entry is None or entry.status != SimulationStatus.QUEUED:
                    continue
                if not self._is_eligible(entry, now):
                    deferred.append(item)
                    continue
                self._start(entry, now)
                started.append(entry.simulation_id)

            for item in deferred:
                heapq.heappush(self._heap, item)

        return started

    async def run_now(self, simulation_id: str) -> bool:
        """
        Start one queued job immediately and wait for it, if limits allow.

        Returns:
            True when the job ran, False when it stays queued
        """
        async with self._lock:
            entry = self._entries.get(simulation_id)
            if entry is None or entry.status != SimulationStatus.QUEUED:
                return False
            if len(self._tasks) >= self.max_concurrent_jobs or not self._is_eligible(entry, self._clock()):
                return False
            self._start(entry, self._clock())
            task = self._tasks[simulation_id]

        await task
        return True

    def start(self) -> None:
        """Start the periodic scheduler loop on the running event loop."""
        if self._loop_task is not None and not self._loop_task.done():
            return
        self._loop_task = asyncio.create_task(self._scheduler_loop())
        self.logger.info(
            "queue_scheduler_started",
            tick_interval_seconds=self.tick_interval_seconds,
            max_concurrent_jobs=self.max_concurrent_jobs,
        )

    async def stop(self, wait_for_jobs: bool = False) -> None:
        """Stop the scheduler loop, optionally waiting for running jobs."""
        if self._loop_task is not None:
            self._loop_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._loop_task
            self._loop_task = None
        if wait_for_jobs and self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)
        self.logger.info("queue_scheduler_stopped", active_jobs=len(self._tasks))

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    async def drain(self, timeout_seconds: Optional[float] = None) -> None:
        """
        Run the queue until no job is queued or running.

        Raises:
            ProcessingTimeoutError: If the queue did not drain in time
        """
        if timeout_seconds is None:
            await self._drain()
            return
        try:
            await asyncio.wait_for(self._drain(), timeout=timeout_seconds)
        except asyncio.TimeoutError as e:
            raise ProcessingTimeoutError(
                f"Queue did not drain within {timeout_seconds}s", timeout_seconds
            ) from e

    async def wait_for(
        self, simulation_id: str, timeout_seconds: Optional[float] = None
    ) -> Optional[SimulationQueueEntry]:
        """
        Wait until a job reaches a terminal state.

        Drains the queue when the scheduler loop is not running.

        Returns:
            The terminal entry, None for unknown ids

        Raises:
            ProcessingTimeoutError: If the job did not finish in time
        """
        if simulation_id in self._entries:
            if self.is_running:
                event = self._done_events.setdefault(simulation_id, asyncio.Event())
                try:
                    await asyncio.wait_for(event.wait(), timeout=timeout_seconds)
                except asyncio.TimeoutError as e:
                    raise ProcessingTimeoutError(
                        f"Simulation {simulation_id} did not finish within {timeout_seconds}s", timeout_seconds
                    ) from e
            else:
                await self.drain(timeout_seconds)
        return self.get_entry(simulation_id)

    # =========================================================================
    # Cancellation and progress
    # =========================================================================

    async def cancel(self, simulation_id: str) -> bool:
        """
        Cancel a queued or processing job.

        A queued job is removed at once. A processing job is marked cancelled
        and its worker stops at the next pipeline checkpoint without
        persisting a result.

        Returns:
            False when the job is unknown or already terminal
        """
        async with self._lock:
            entry = self._entries.get(simulation_id)
            if entry is None:
                return False
            previous = entry.status
            if previous == SimulationStatus.PROCESSING:
                self._cancel_requested.add(simulation_id)
            self._finish(entry, SimulationStatus.CANCELLED)

        self.logger.info("job_cancelled", simulation_id=simulation_id, previous_status=previous.value)
        return True

    def is_cancel_requested(self, simulation_id: str) -> bool:
        return simulation_id in self._cancel_requested

    async def advance(self, simulation_id: str, step: str) -> None:
        """Record that a running job entered a named step."""
        if step not in PIPELINE_STEPS:
            raise ValueError(f"Unknown pipeline step: {step}")
        async with self._lock:
            entry = self._entries.get(simulation_id)
            if simulation_id in self._cancel_requested or entry is None:
                raise SimulationCancelledError(simulation_id)
            entry.current_step = step
            entry.progress = PIPELINE_STEPS[step]
            self._store.save_entry(entry)

        self.logger.debug("job_progress", simulation_id=simulation_id, step=step, progress=PIPELINE_STEPS[step])

    # =========================================================================
    # Queries
    # =========================================================================

    def get_entry(self, simulation_id: str) -> Optional[SimulationQueueEntry]:
        """Live entry for queued or running jobs, else the stored one."""
        entry = self._entries.get(simulation_id)
        if entry is not None:
            return entry.model_copy(deep=True)
        return self._store.get_entry(simulation_id)

    def get_metrics(self) -> QueueMetrics:
        metrics = self._metrics.model_copy()
        metrics.queue_size = sum(1 for e in self._entries.values() if e.status == SimulationStatus.QUEUED)
        metrics.active_jobs = len(self._tasks)
        return metrics

    def get_queue_status(
        self, organization_id: str, tier: Optional[SubscriptionTier] = None
    ) -> OrganizationQueueStatus:
        """
        Queue view for one organization.

        The estimated wait is the work queued at the same or higher priority
        spread over the global worker slots.
        """
        entries = [e for e in self._entries.values() if e.organization_id == organization_id]
        if tier is None:
            tier = entries[0].tier if entries else SubscriptionTier.FREE
        limits = self.limits_for(tier)

        ahead = sum(
            e.estimated_duration_ms
            for e in self._entries.values()
            if e.status == SimulationStatus.QUEUED and e.priority >= limits.priority
        )
        return OrganizationQueueStatus(
            organization_id=organization_id,
            tier=tier,
            queued_jobs=sum(1 for e in entries if e.status == SimulationStatus.QUEUED),
            active_jobs=sum(1 for e in entries if e.status == SimulationStatus.PROCESSING),
            max_queued_jobs=limits.max_queued_jobs,
            max_concurrent_jobs=limits.max_concurrent_jobs,
            estimated_wait_ms=ahead / self.max_concurrent_jobs,
        )

    # =========================================================================
    # Internals
    # =========================================================================

    def _push(self, entry: SimulationQueueEntry) -> None:
        heapq.heappush(self._heap, (-entry.priority, next(self._sequence), entry.simulation_id))

    def _count(self, organization_id: str, status: SimulationStatus) -> int:
        return sum(
            1
            for e in self._entries.values()
            if e.organization_id == organization_id and e.status == status
        )

    def _is_eligible(self, entry: SimulationQueueEntry, now: datetime) -> bool:
        if entry.not_before is not None and entry.not_before > now:
            return False
        limits = self.limits_for(entry.tier)
        return self._count(entry.organization_id, SimulationStatus.PROCESSING) < limits.max_concurrent_jobs

    def _start(self, entry: SimulationQueueEntry, now: datetime) -> None:
        # Caller holds the lock
        entry.status = SimulationStatus.PROCESSING
        entry.started_at = now
        entry.progress = 0.0
        entry.current_step = INITIAL_STEP
        self._store.save_entry(entry)
        self._tasks[entry.simulation_id] = asyncio.create_task(self._run(entry.simulation_id))
        self.logger.info(
            "job_started",
            simulation_id=entry.simulation_id,
            organization_id=entry.organization_id,
            priority=entry.priority,
            retry_count=entry.retry_count,
        )

    async def _run(self, simulation_id: str) -> None:
        entry = self._entries.get(simulation_id)
        if entry is None:
            # Cancelled before the worker got scheduled
            self._tasks.pop(simulation_id, None)
            self._cancel_requested.discard(simulation_id)
            return
        handle = JobHandle(self, simulation_id)
        started = time.perf_counter()

        with job_log_context(simulation_id, entry.organization_id):
            try:
                await asyncio.wait_for(
                    self._executor(entry.model_copy(deep=True), handle),
                    timeout=self.job_timeout_seconds,
                )
            except SimulationCancelledError:
                self.logger.info("job_stopped_after_cancel", simulation_id=simulation_id)
            except asyncio.TimeoutError:
                await self._handle_failure(
                    simulation_id,
                    ProcessingTimeoutError(
                        f"Simulation exceeded {self.job_timeout_seconds}s", self.job_timeout_seconds
                    ),
                )
            except Exception as e:
                await self._handle_failure(simulation_id, normalize_error(e, simulation_id=simulation_id))
            else:
                await self._handle_success(simulation_id, (time.perf_counter() - started) * 1000)
            finally:
                self._tasks.pop(simulation_id, None)
                self._cancel_requested.discard(simulation_id)

    async def _handle_success(self, simulation_id: str, elapsed_ms: float) -> None:
        async with self._lock:
            entry = self._entries.get(simulation_id)
            if entry is None:
                self.logger.info("job_result_discarded", simulation_id=simulation_id)
                return
            self._finish(entry, SimulationStatus.COMPLETED)
            self._metrics.average_processing_time_ms = (
                PROCESSING_EMA_ALPHA * elapsed_ms
                + (1 - PROCESSING_EMA_ALPHA) * self._metrics.average_processing_time_ms
            )

        self.logger.info("job_completed", simulation_id=simulation_id, duration_ms=round(elapsed_ms, 2))

    async def _handle_failure(self, simulation_id: str, error: SimulationError) -> None:
        async with self._lock:
            entry = self._entries.get(simulation_id)
            if entry is None:
                return

            if error.retryable and entry.retry_count < self.max_retries:
                entry.retry_count += 1
                entry.status = SimulationStatus.QUEUED
                entry.started_at = None
                entry.progress = 0.0
                entry.current_step = None
                entry.not_before = self._clock() + timedelta(seconds=self.retry_delay_seconds)
                entry.error = error.to_failure()
                self._push(entry)
                self._store.save_entry(entry)
                self.logger.warning(
                    "job_retry_scheduled",
                    simulation_id=simulation_id,
                    retry_count=entry.retry_count,
                    max_retries=self.max_retries,
                    error_code=error.code,
                )
                return

            self._finish(entry, SimulationStatus.FAILED, error.to_failure())

        self.logger.error(
            "job_failed",
            simulation_id=simulation_id,
            error_type=error.error_type.value,
            error_code=error.code,
            error=error.message,
        )

    def _finish(
        self,
        entry: SimulationQueueEntry,
        status: SimulationStatus,
        failure: Optional[SimulationFailure] = None,
    ) -> None:
        # Caller holds the lock
        entry.status = status
        entry.completed_at = self._clock()
        if status == SimulationStatus.COMPLETED:
            entry.progress = 100.0
            entry.current_step = None
            entry.error = None
        elif failure is not None:
            entry.error = failure

        self._entries.pop(entry.simulation_id, None)
        self._store.save_entry(entry)

        if status == SimulationStatus.COMPLETED:
            self._metrics.completed_jobs += 1
        elif status == SimulationStatus.FAILED:
            self._metrics.failed_jobs += 1
        elif status == SimulationStatus.CANCELLED:
            self._metrics.cancelled_jobs += 1

        event = self._done_events.pop(entry.simulation_id, None)
        if event is not None:
            event.set()

        if self._on_terminal is not None:
            self._on_terminal(entry.model_copy(deep=True))

    async def _drain(self) -> None:
        while True:
            await self.tick()
            if self._tasks:
                await asyncio.wait(list(self._tasks.values()), return_when=asyncio.FIRST_COMPLETED)
                continue
            if not any(e.status == SimulationStatus.QUEUED for e in self._entries.values()):
                return
            await asyncio.sleep(self._next_wait_seconds())

    def _next_wait_seconds(self) -> float:
        now = self._clock()
        waits = [
            (e.not_before - now).total_seconds()
            for e in self._entries.values()
            if e.status == SimulationStatus.QUEUED and e.not_before is not None
        ]
        if not waits:
            return self.tick_interval_seconds
        return min(max(0.0, min(waits)), self.tick_interval_seconds)

    async def _scheduler_loop(self) -> None:
        while True:
            try:
                await self.tick()
            except Exception as e:
                logger.error("queue_tick_failed", error=str(e))
            await asyncio.sleep(self.tick_interval_seconds)
