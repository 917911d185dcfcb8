"""Entity and event models for the task-escrow projection."""

from taskgraph.models.dispute import AdminVote, Dispute, DisputeStatus
from taskgraph.models.events import ChainEvent, ContractKind, EventName
from taskgraph.models.task import (
    Bid,
    Milestone,
    MilestoneStage,
    Task,
    TaskKind,
    TaskStatus,
    WorkProof,
)
from taskgraph.models.user import ZERO_ADDRESS, Admin, User, UserProfile

__all__ = [
    "Admin",
    "AdminVote",
    "Bid",
    "ChainEvent",
    "ContractKind",
    "Dispute",
    "DisputeStatus",
    "EventName",
    "Milestone",
    "MilestoneStage",
    "Task",
    "TaskKind",
    "TaskStatus",
    "User",
    "UserProfile",
    "WorkProof",
    "ZERO_ADDRESS",
]
