"""
Abstract storage interfaces for the simulation engine.

The engine never owns durable state. Completed results, queue entries and
user feedback go through these contracts so any backing store (a relational
table, a document store, a distributed queue) can be plugged in without
changing engine code.
"""

from abc import ABC, abstractmethod
from typing import Optional

from simengine.models.queue import SimulationQueueEntry
from simengine.models.results import FeedbackRecord, SimulationResult


class StorageError(Exception):
    """Base exception for all storage operation failures."""

    pass


class ResultStore(ABC):
    """
    Persistence for completed simulation results.

    Results are written once, after the whole pipeline succeeds, so readers
    never observe a partial simulation.
    """

    @abstractmethod
    def save(self, result: SimulationResult) -> str:
        """
        Persist a result.

        Args:
            result: Terminal simulation result

        Returns:
            The result id

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    def get(self, simulation_id: str) -> Optional[SimulationResult]:
        """Result by simulation id, None when unknown."""
        pass

    @abstractmethod
    def list_for_campaign(self, campaign_id: str, limit: int = 50) -> list[SimulationResult]:
        """
        Most recent results for a campaign.

        Args:
            campaign_id: Campaign identifier
            limit: Maximum results returned

        Returns:
            Results ordered newest first
        """
        pass


class QueueStore(ABC):
    """Durable mirror of the in-memory processing queue."""

    @abstractmethod
    def save_entry(self, entry: SimulationQueueEntry) -> None:
        """Insert or replace an entry. Called on every state transition."""
        pass

    @abstractmethod
    def get_entry(self, simulation_id: str) -> Optional[SimulationQueueEntry]:
        pass

    @abstractmethod
    def delete_entry(self, simulation_id: str) -> bool:
        """Remove an entry; False when it did not exist."""
        pass

    @abstractmethod
    def list_entries(self, organization_id: Optional[str] = None) -> list[SimulationQueueEntry]:
        """Entries, optionally for one organization, oldest first."""
        pass


class FeedbackStore(ABC):
    """User corrections and ratings that feed ensemble performance history."""

    @abstractmethod
    def record(self, feedback: FeedbackRecord) -> None:
        pass

    @abstractmethod
    def list_for_simulation(self, simulation_id: str) -> list[FeedbackRecord]:
        pass

    @abstractmethod
    def list_for_model(self, model_name: str) -> list[FeedbackRecord]:
        pass


class SimulationStorage(ResultStore, QueueStore, FeedbackStore):
    """A backend that serves as result, queue and feedback store at once."""

    pass
