"""
Unit tests for AsyncProcessingQueue.

Each test drives one scenario inside a single asyncio.run() so the queue's
lock and tasks stay on one event loop.
"""

import asyncio

import pytest

from simengine.engine.errors import (
    DataValidationError,
    ModelAPIError,
    ProcessingTimeoutError,
    QueueLimitExceededError,
)
from simengine.models.enums import SimulationStatus, SubscriptionTier
from simengine.scheduling import PIPELINE_STEPS, AsyncProcessingQueue
from simengine.storage import InMemoryStorage
from tests.conftest import make_request


class ScriptedExecutor:
    """
    Queue executor with scripted failures and an optional gate.

    `errors` are raised one per run before the executor starts succeeding.
    When `gated`, every run enters "Loading campaign data", signals `started`
    and waits for `release` before entering "Running AI models".
    """

    def __init__(self, errors=(), gated=False, sleep_seconds=0.0):
        self.errors = list(errors)
        self.gated = gated
        self.sleep_seconds = sleep_seconds
        self.runs = []
        self.finished = []
        self.started = None
        self.release = None

    def bind(self):
        # Events must be created on the running loop
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def __call__(self, entry, handle):
        self.runs.append(entry.simulation_id)
        if self.sleep_seconds:
            await asyncio.sleep(self.sleep_seconds)
        if self.errors:
            raise self.errors.pop(0)
        if self.gated:
            await handle.step("Loading campaign data")
            self.started.set()
            await self.release.wait()
            await handle.step("Running AI models")
        self.finished.append(entry.simulation_id)


def make_queue(executor=None, **overrides):
    options = dict(
        store=InMemoryStorage(),
        tick_interval_seconds=0.01,
        retry_delay_seconds=0.0,
        max_retries=0,
    )
    options.update(overrides)
    return AsyncProcessingQueue(executor or ScriptedExecutor(), **options)


async def submit(queue, simulation_id, org="org_1", tier=SubscriptionTier.FREE, **request_overrides):
    return await queue.submit(simulation_id, make_request(**request_overrides), org, "user_1", tier)


# ============================================================================
# Admission
# ============================================================================


class TestQueueAdmission:
    """Test AsyncProcessingQueue.submit."""

    def test_queue_submit_assigns_tier_priority(self):
        queue = make_queue()

        async def scenario():
            return await submit(queue, "sim_1", tier=SubscriptionTier.ENTERPRISE)

        entry = asyncio.run(scenario())
        assert entry.priority == 90
        assert entry.status == SimulationStatus.QUEUED
        assert entry.estimated_duration_ms == pytest.approx(72000.0)

    def test_queue_enforces_queued_limit_per_organization(self):
        queue = make_queue()

        async def scenario():
            for i in range(3):
                await submit(queue, f"sim_{i}")
            with pytest.raises(QueueLimitExceededError) as exc_info:
                await submit(queue, "sim_overflow")
            await submit(queue, "sim_other_org", org="org_2")
            return exc_info.value

        error = asyncio.run(scenario())
        assert error.code == "QUEUE_LIMIT_EXCEEDED"
        assert error.max_queued == 3
        assert queue.get_entry("sim_overflow") is None
        assert queue.get_entry("sim_other_org").status == SimulationStatus.QUEUED

    def test_queue_rejects_duplicate_ids(self):
        queue = make_queue()

        async def scenario():
            await submit(queue, "sim_1")
            with pytest.raises(DataValidationError) as exc_info:
                await submit(queue, "sim_1")
            return exc_info.value

        assert asyncio.run(scenario()).code == "DUPLICATE_SIMULATION"

    def test_queue_mirrors_entries_to_store(self):
        store = InMemoryStorage()
        queue = make_queue(store=store)
        asyncio.run(submit(queue, "sim_1"))
        assert store.get_entry("sim_1").status == SimulationStatus.QUEUED


# ============================================================================
# Scheduling
# ============================================================================


class TestQueueScheduling:
    """Test ordering, concurrency and retries."""

    def test_queue_runs_higher_tiers_first(self):
        executor = ScriptedExecutor()
        queue = make_queue(executor, max_concurrent_jobs=1)

        async def scenario():
            await submit(queue, "free", org="org_free", tier=SubscriptionTier.FREE)
            await submit(queue, "enterprise", org="org_ent", tier=SubscriptionTier.ENTERPRISE)
            await submit(queue, "pro", org="org_pro", tier=SubscriptionTier.PRO)
            await queue.drain(timeout_seconds=5)

        asyncio.run(scenario())
        assert executor.runs == ["enterprise", "pro", "free"]

    def test_queue_equal_priority_is_fifo(self):
        executor = ScriptedExecutor()
        queue = make_queue(executor, max_concurrent_jobs=1)

        async def scenario():
            for name in ("first", "second", "third"):
                await submit(queue, name, org=f"org_{name}", tier=SubscriptionTier.PRO)
            await queue.drain(timeout_seconds=5)

        asyncio.run(scenario())
        assert executor.runs == ["first", "second", "third"]

    def test_queue_respects_tier_concurrency(self):
        """A pro organization never runs more than three jobs at once."""
        executor = ScriptedExecutor(gated=True)
        queue = make_queue(executor, max_concurrent_jobs=10)

        async def scenario():
            executor.bind()
            for i in range(4):
                await submit(queue, f"sim_{i}", tier=SubscriptionTier.PRO)
            started = await queue.tick()
            status = queue.get_queue_status("org_1")
            executor.release.set()
            await queue.drain(timeout_seconds=5)
            return started, status

        started, status = asyncio.run(scenario())
        assert started == ["sim_0", "sim_1", "sim_2"]
        assert status.active_jobs == 3
        assert status.queued_jobs == 1
        assert len(executor.finished) == 4

    def test_queue_respects_global_concurrency(self):
        executor = ScriptedExecutor(gated=True)
        queue = make_queue(executor, max_concurrent_jobs=2)

        async def scenario():
            executor.bind()
            for i in range(3):
                await submit(queue, f"sim_{i}", org=f"org_{i}", tier=SubscriptionTier.ENTERPRISE)
            started = await queue.tick()
            executor.release.set()
            await queue.drain(timeout_seconds=5)
            return started

        assert len(asyncio.run(scenario())) == 2

    def test_queue_retries_retryable_failures(self):
        executor = ScriptedExecutor(errors=[ModelAPIError("down", "prophet", 503)])
        queue = make_queue(executor, max_retries=1)

        async def scenario():
            await submit(queue, "sim_1")
            return await queue.wait_for("sim_1", timeout_seconds=5)

        entry = asyncio.run(scenario())
        assert entry.status == SimulationStatus.COMPLETED
        assert entry.retry_count == 1
        assert entry.error is None
        assert executor.runs == ["sim_1", "sim_1"]

    def test_queue_fails_after_retries_exhausted(self):
        errors = [ModelAPIError("down", "prophet", 503) for _ in range(3)]
        executor = ScriptedExecutor(errors=errors)
        queue = make_queue(executor, max_retries=2)

        async def scenario():
            await submit(queue, "sim_1")
            return await queue.wait_for("sim_1", timeout_seconds=5)

        entry = asyncio.run(scenario())
        assert entry.status == SimulationStatus.FAILED
        assert entry.retry_count == 2
        assert entry.error.code == "MODEL_API_ERROR"
        assert len(executor.runs) == 3
        assert queue.get_metrics().failed_jobs == 1

    def test_queue_does_not_retry_permanent_failures(self):
        terminal = []
        executor = ScriptedExecutor(errors=[ModelAPIError("bad request", "prophet", 400)])
        queue = make_queue(executor, max_retries=3, on_terminal=terminal.append)

        async def scenario():
            await submit(queue, "sim_1")
            await queue.drain(timeout_seconds=5)

        asyncio.run(scenario())
        assert len(executor.runs) == 1
        assert [e.status for e in terminal] == [SimulationStatus.FAILED]
        assert terminal[0].error.retryable is False

    def test_queue_job_timeout(self):
        executor = ScriptedExecutor(sleep_seconds=1.0)
        queue = make_queue(executor, job_timeout_seconds=0.05)

        async def scenario():
            await submit(queue, "sim_1")
            return await queue.wait_for("sim_1", timeout_seconds=5)

        entry = asyncio.run(scenario())
        assert entry.status == SimulationStatus.FAILED
        assert entry.error.code == "PROCESSING_TIMEOUT"

    def test_queue_run_now_waits_for_completion(self):
        executor = ScriptedExecutor()
        queue = make_queue(executor)

        async def scenario():
            await submit(queue, "sim_1", tier=SubscriptionTier.PRO)
            return await queue.run_now("sim_1")

        assert asyncio.run(scenario()) is True
        assert queue.get_entry("sim_1").status == SimulationStatus.COMPLETED
        assert queue.get_metrics().completed_jobs == 1

    def test_queue_run_now_unknown_job(self):
        assert asyncio.run(make_queue().run_now("missing")) is False

    def test_queue_scheduler_loop_processes_jobs(self):
        executor = ScriptedExecutor()
        queue = make_queue(executor)

        async def scenario():
            queue.start()
            assert queue.is_running
            await submit(queue, "sim_1")
            entry = await queue.wait_for("sim_1", timeout_seconds=5)
            await queue.stop()
            return entry

        assert asyncio.run(scenario()).status == SimulationStatus.COMPLETED
        assert not queue.is_running

    def test_queue_wait_for_times_out_while_scheduler_runs(self):
        executor = ScriptedExecutor(gated=True)
        queue = make_queue(executor)

        async def scenario():
            executor.bind()
            queue.start()
            await submit(queue, "sim_1")
            with pytest.raises(ProcessingTimeoutError):
                await queue.wait_for("sim_1", timeout_seconds=0.05)
            executor.release.set()
            entry = await queue.wait_for("sim_1", timeout_seconds=5)
            await queue.stop()
            return entry

        assert asyncio.run(scenario()).status == SimulationStatus.COMPLETED


# ============================================================================
# Cancellation and progress
# ============================================================================


class TestQueueCancellation:
    """Test cancel() and step progress."""

    def test_queue_cancel_queued_job(self):
        executor = ScriptedExecutor()
        queue = make_queue(executor)

        async def scenario():
            await submit(queue, "sim_1")
            first = await queue.cancel("sim_1")
            second = await queue.cancel("sim_1")
            await queue.drain(timeout_seconds=5)
            return first, second

        first, second = asyncio.run(scenario())
        assert first is True
        assert second is False
        assert executor.runs == []
        assert queue.get_entry("sim_1").status == SimulationStatus.CANCELLED
        assert queue.get_metrics().cancelled_jobs == 1

    def test_queue_cancel_processing_job_stops_at_next_step(self):
        executor = ScriptedExecutor(gated=True)
        terminal = []
        queue = make_queue(executor, on_terminal=terminal.append)

        async def scenario():
            executor.bind()
            await submit(queue, "sim_1")
            await queue.tick()
            await executor.started.wait()
            cancelled = await queue.cancel("sim_1")
            executor.release.set()
            await queue.drain(timeout_seconds=5)
            return cancelled

        assert asyncio.run(scenario()) is True
        assert executor.finished == []
        assert queue.get_entry("sim_1").status == SimulationStatus.CANCELLED
        assert [e.status for e in terminal] == [SimulationStatus.CANCELLED]
        assert queue.get_metrics().completed_jobs == 0

    def test_queue_cancel_unknown_job(self):
        assert asyncio.run(make_queue().cancel("missing")) is False

    def test_queue_step_updates_progress(self):
        executor = ScriptedExecutor(gated=True)
        queue = make_queue(executor)

        async def scenario():
            executor.bind()
            await submit(queue, "sim_1")
            await queue.tick()
            await executor.started.wait()
            entry = queue.get_entry("sim_1")
            executor.release.set()
            await queue.drain(timeout_seconds=5)
            return entry

        entry = asyncio.run(scenario())
        assert entry.status == SimulationStatus.PROCESSING
        assert entry.current_step == "Loading campaign data"
        assert entry.progress == PIPELINE_STEPS["Loading campaign data"]
        assert queue.get_entry("sim_1").progress == 100.0

    def test_queue_unknown_step_raises(self):
        queue = make_queue()

        async def scenario():
            await submit(queue, "sim_1")
            await queue.advance("sim_1", "Polishing results")

        with pytest.raises(ValueError, match="Unknown pipeline step"):
            asyncio.run(scenario())

    def test_pipeline_progress_is_monotonic(self):
        progress = list(PIPELINE_STEPS.values())
        assert progress == sorted(progress)
        assert progress[-1] == 100.0


# ============================================================================
# Queries
# ============================================================================


class TestQueueStatus:
    def test_queue_status_estimates_wait(self):
        """Work at the same or higher priority spread over the worker slots."""
        queue = make_queue(max_concurrent_jobs=2)

        async def scenario():
            await submit(queue, "sim_1", tier=SubscriptionTier.PRO)
            await submit(queue, "sim_2", tier=SubscriptionTier.PRO)
            await submit(queue, "sim_free", org="org_2", tier=SubscriptionTier.FREE)

        asyncio.run(scenario())
        status = queue.get_queue_status("org_1")
        assert status.tier == SubscriptionTier.PRO
        assert status.queued_jobs == 2
        assert status.max_queued_jobs == 10
        assert status.max_concurrent_jobs == 3
        assert status.estimated_wait_ms == pytest.approx(72000.0)

    def test_queue_status_for_idle_organization(self):
        status = make_queue().get_queue_status("org_idle")
        assert status.tier == SubscriptionTier.FREE
        assert status.queued_jobs == 0
        assert status.estimated_wait_ms == 0.0

    def test_queue_metrics(self):
        queue = make_queue()

        async def scenario():
            await submit(queue, "sim_1")
            await submit(queue, "sim_2")

        asyncio.run(scenario())
        metrics = queue.get_metrics()
        assert metrics.total_jobs == 2
        assert metrics.queue_size == 2
        assert metrics.active_jobs == 0

    def test_queue_wait_for_unknown_id(self):
        assert asyncio.run(make_queue().wait_for("missing")) is None
