"""
Unit tests for InMemoryStorage.
"""

from datetime import timedelta

import pytest

from simengine.models.enums import SimulationStatus, SubscriptionTier
from simengine.models.queue import SimulationQueueEntry
from simengine.models.results import FeedbackRecord, SimulationResult
from simengine.storage import StorageError
from tests.conftest import BASE_DATE, make_request, make_trajectory


def make_entry(simulation_id: str, organization_id: str = "org_1", minutes: int = 0) -> SimulationQueueEntry:
    return SimulationQueueEntry(
        simulation_id=simulation_id,
        organization_id=organization_id,
        user_id="user_1",
        tier=SubscriptionTier.PRO,
        request=make_request(),
        priority=50,
        created_at=BASE_DATE + timedelta(minutes=minutes),
    )


class TestResultStore:
    def test_storage_round_trips_copies(self, storage):
        result = SimulationResult(
            id="sim_1", campaign_id="cmp_001", status=SimulationStatus.COMPLETED, trajectories=make_trajectory(days=3)
        )
        assert storage.save(result) == "sim_1"

        result.trajectories.clear()
        stored = storage.get("sim_1")
        stored.trajectories.clear()

        assert len(storage.get("sim_1").trajectories) == 3

    def test_storage_rejects_non_terminal_results(self, storage):
        with pytest.raises(StorageError):
            storage.save(SimulationResult(id="sim_1", status=SimulationStatus.PROCESSING))

    def test_storage_lists_campaign_results_newest_first(self, storage):
        for day in range(3):
            storage.save(
                SimulationResult(
                    id=f"sim_{day}",
                    campaign_id="cmp_001",
                    status=SimulationStatus.COMPLETED,
                    created_at=BASE_DATE + timedelta(days=day),
                )
            )
        storage.save(SimulationResult(id="sim_other", campaign_id="cmp_002", status=SimulationStatus.FAILED))

        assert [r.id for r in storage.list_for_campaign("cmp_001", limit=2)] == ["sim_2", "sim_1"]


class TestQueueStore:
    def test_storage_queue_entries(self, storage):
        storage.save_entry(make_entry("sim_b", minutes=5))
        storage.save_entry(make_entry("sim_a"))
        storage.save_entry(make_entry("sim_c", organization_id="org_2"))

        assert [e.simulation_id for e in storage.list_entries("org_1")] == ["sim_a", "sim_b"]
        assert len(storage.list_entries()) == 3
        assert storage.delete_entry("sim_a")
        assert not storage.delete_entry("sim_a")
        assert storage.get_entry("sim_a") is None


class TestFeedbackStore:
    def test_storage_feedback_by_simulation_and_model(self, storage):
        storage.record(FeedbackRecord(simulation_id="sim_1", model_name="prophet", accuracy=0.8))
        storage.record(FeedbackRecord(simulation_id="sim_1", model_name="openai", accuracy=0.6))
        storage.record(FeedbackRecord(simulation_id="sim_2", model_name="prophet", accuracy=0.9))

        assert len(storage.list_for_simulation("sim_1")) == 2
        assert [f.accuracy for f in storage.list_for_model("prophet")] == [0.8, 0.9]

    def test_storage_feedback_requires_ids(self, storage):
        with pytest.raises(StorageError):
            storage.record(FeedbackRecord(simulation_id="", model_name="prophet", accuracy=0.5))
