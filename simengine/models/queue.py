"""
Processing queue models: entries, tier limits and queue metrics.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from .enums import SimulationStatus, SubscriptionTier
from .request import SimulationRequest
from .results import SimulationFailure


class TierLimits(BaseModel):
    """Admission and scheduling limits for a subscription tier."""

    priority: int = Field(ge=0, le=100)
    max_concurrent_jobs: int = Field(ge=1)
    max_queued_jobs: int = Field(ge=1)


class SimulationQueueEntry(BaseModel):
    """
    A simulation job tracked by the processing queue.

    Created at submission, mutated by the scheduler on every state
    transition, removed from the in-memory queue on a terminal state.
    """

    simulation_id: str
    organization_id: str
    user_id: str
    tier: SubscriptionTier
    request: SimulationRequest
    priority: int = Field(ge=0, le=100)
    status: SimulationStatus = SimulationStatus.QUEUED
    created_at: datetime = Field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    estimated_duration_ms: float = Field(default=0.0, ge=0.0)
    retry_count: int = Field(default=0, ge=0)
    progress: float = Field(default=0.0, ge=0.0, le=100.0)
    current_step: Optional[str] = None
    not_before: Optional[datetime] = Field(default=None, description="Earliest start for retried jobs")
    error: Optional[SimulationFailure] = None


class QueueMetrics(BaseModel):
    total_jobs: int = 0
    completed_jobs: int = 0
    failed_jobs: int = 0
    cancelled_jobs: int = 0
    average_processing_time_ms: float = 0.0
    queue_size: int = 0
    active_jobs: int = 0


class OrganizationQueueStatus(BaseModel):
    """Queue view for one organization."""

    organization_id: str
    tier: SubscriptionTier
    queued_jobs: int
    active_jobs: int
    max_queued_jobs: int
    max_concurrent_jobs: int
    estimated_wait_ms: float = 0.0

