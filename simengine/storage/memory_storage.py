"""
In-memory storage implementation.

Implements ResultStore, QueueStore and FeedbackStore behind a single
threading.Lock. Every read and write goes through deep copies so callers can
never mutate stored state. Suitable for tests, local runs and single-process
deployments.
"""

import threading
from typing import Optional

import structlog

from simengine.models.queue import SimulationQueueEntry
from simengine.models.results import FeedbackRecord, SimulationResult

from .base import SimulationStorage, StorageError

logger = structlog.get_logger(__name__)


class InMemoryStorage(SimulationStorage):
    """
    Thread-safe in-memory store for results, queue entries and feedback.

    Example:
        >>> storage = InMemoryStorage()
        >>> storage.save(result)
        'sim_1700000000000_ab12cd34e'
        >>> storage.get(result.id).status
        <SimulationStatus.COMPLETED: 'completed'>
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._results: dict[str, SimulationResult] = {}
        self._entries: dict[str, SimulationQueueEntry] = {}
        self._feedback: list[FeedbackRecord] = []
        logger.info("memory_storage_initialized")

    # =========================================================================
    # ResultStore
    # =========================================================================

    def save(self, result: SimulationResult) -> str:
        if not result.id:
            raise StorageError("Cannot save a result without an id")
        if not result.status.is_terminal:
            raise StorageError(f"Cannot save result {result.id} in non-terminal status {result.status.value}")

        with self._lock:
            self._results[result.id] = result.model_copy(deep=True)

        logger.info("result_written", simulation_id=result.id, status=result.status.value)
        return result.id

    def get(self, simulation_id: str) -> Optional[SimulationResult]:
        with self._lock:
            result = self._results.get(simulation_id)
            return result.model_copy(deep=True) if result is not None else None

    def list_for_campaign(self, campaign_id: str, limit: int = 50) -> list[SimulationResult]:
        with self._lock:
            matches = [
                result.model_copy(deep=True)
                for result in self._results.values()
                if result.campaign_id == campaign_id
            ]
        matches.sort(key=lambda r: r.created_at, reverse=True)
        return matches[:limit]

    # =========================================================================
    # QueueStore
    # =========================================================================

    def save_entry(self, entry: SimulationQueueEntry) -> None:
        if not entry.simulation_id:
            raise StorageError("Cannot save a queue entry without a simulation id")
        with self._lock:
            self._entries[entry.simulation_id] = entry.model_copy(deep=True)
        logger.debug("queue_entry_written", simulation_id=entry.simulation_id, status=entry.status.value)

    def get_entry(self, simulation_id: str) -> Optional[SimulationQueueEntry]:
        with self._lock:
            entry = self._entries.get(simulation_id)
            return entry.model_copy(deep=True) if entry is not None else None

    def delete_entry(self, simulation_id: str) -> bool:
        with self._lock:
            return self._entries.pop(simulation_id, None) is not None

    def list_entries(self, organization_id: Optional[str] = None) -> list[SimulationQueueEntry]:
        with self._lock:
            entries = [
                entry.model_copy(deep=True)
                for entry in self._entries.values()
                if organization_id is None or entry.organization_id == organization_id
            ]
        entries.sort(key=lambda e: e.created_at)
        return entries

    # =========================================================================
    # FeedbackStore
    # =========================================================================

    def record(self, feedback: FeedbackRecord) -> None:
        if not feedback.simulation_id or not feedback.model_name:
            raise StorageError("Feedback requires a simulation id and a model name")
        with self._lock:
            self._feedback.append(feedback.model_copy(deep=True))
        logger.info(
            "feedback_recorded",
            simulation_id=feedback.simulation_id,
            model=feedback.model_name,
            accuracy=feedback.accuracy,
        )

    def list_for_simulation(self, simulation_id: str) -> list[FeedbackRecord]:
        with self._lock:
            return [f.model_copy(deep=True) for f in self._feedback if f.simulation_id == simulation_id]

    def list_for_model(self, model_name: str) -> list[FeedbackRecord]:
        with self._lock:
            return [f.model_copy(deep=True) for f in self._feedback if f.model_name == model_name]
