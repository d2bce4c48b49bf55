"""
Job scheduling for the simulation engine.

AsyncProcessingQueue admits simulation jobs per organization against tier
ceilings and runs them on a bounded pool of asyncio workers.
"""

from simengine.scheduling.processing_queue import (
    DEFAULT_TIER_LIMITS,
    PIPELINE_STEPS,
    AsyncProcessingQueue,
    JobHandle,
)

__all__ = [
    "AsyncProcessingQueue",
    "JobHandle",
    "DEFAULT_TIER_LIMITS",
    "PIPELINE_STEPS",
]
