"""Projections — per-contract event handlers and their lifecycle tables."""

from taskgraph.projection.disputes import DisputeProjection
from taskgraph.projection.lifecycle import (
    DISPUTE_LIFECYCLE,
    MILESTONE_LIFECYCLE,
    TASK_LIFECYCLE,
    Lifecycle,
)
from taskgraph.projection.tasks import (
    BiddingTaskProjection,
    FixedPaymentTaskProjection,
    MilestoneTaskProjection,
    TaskProjection,
)
from taskgraph.projection.users import UserProjection

__all__ = [
    "BiddingTaskProjection",
    "DISPUTE_LIFECYCLE",
    "DisputeProjection",
    "FixedPaymentTaskProjection",
    "Lifecycle",
    "MILESTONE_LIFECYCLE",
    "MilestoneTaskProjection",
    "TASK_LIFECYCLE",
    "TaskProjection",
    "UserProjection",
]
