"""
Result caching for the simulation engine.

SimulationCache stores completed results under a requester-independent key;
CacheManager decides between a cache hit, inline processing and the queue.
"""

from simengine.caching.cache_manager import CacheManager, ProcessingDecision
from simengine.caching.simulation_cache import SimulationCache, generate_cache_key

__all__ = [
    "CacheManager",
    "ProcessingDecision",
    "SimulationCache",
    "generate_cache_key",
]
