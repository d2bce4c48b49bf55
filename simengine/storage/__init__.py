"""
Storage collaborators for results, queue state and feedback.

The engine depends only on the abstract stores; InMemoryStorage is the
reference implementation.
"""

from functools import lru_cache

from .base import FeedbackStore, QueueStore, ResultStore, SimulationStorage, StorageError
from .memory_storage import InMemoryStorage


@lru_cache
def get_storage() -> SimulationStorage:
    """
    Get cached storage instance (singleton).

    Returns:
        Process-wide InMemoryStorage
    """
    return InMemoryStorage()


__all__ = [
    "FeedbackStore",
    "InMemoryStorage",
    "QueueStore",
    "ResultStore",
    "SimulationStorage",
    "StorageError",
    "get_storage",
]
