"""Task models — escrowed work items, bids, and milestones.

Three contracts emit task events: bidding tasks, fixed-payment tasks and
milestone-payment tasks. They share one lifecycle and one core record;
the kind tag decides which child collection is in use:

    bidding        → task.bids        (Bid keys, arrival order)
    fixed_payment  → neither
    milestone      → task.milestones  (Milestone keys, index order)

Task lifecycle: Open → InProgress → Completed → Paid
                Open / InProgress → Cancelled
Milestone lifecycle: unsubmitted → submitted → approved → paid

Children are stored under their own composite keys and referenced from
the parent by key only, so a bid or milestone update never rewrites the
task record.
"""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from taskgraph.models.user import ZERO_ADDRESS


class TaskKind(str, enum.Enum):
    """Which escrow contract a task belongs to."""
    BIDDING = "bidding"
    FIXED_PAYMENT = "fixed_payment"
    MILESTONE = "milestone"


class TaskStatus(str, enum.Enum):
    """Lifecycle status shared by all task kinds (contract spelling)."""
    OPEN = "Open"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    PAID = "Paid"
    CANCELLED = "Cancelled"


class MilestoneStage(str, enum.Enum):
    """Derived position of a milestone in its proof/payment lifecycle."""
    UNSUBMITTED = "unsubmitted"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    PAID = "paid"


def task_key(kind: TaskKind, task_id: str) -> str:
    """Store key for a task. Task IDs are only unique per contract."""
    return f"{kind.value}:{task_id}"


def bid_key(task_id: str, bidder: str) -> str:
    return f"{task_id}-{bidder}"


def milestone_key(task_id: str, index: int) -> str:
    return f"{task_id}-{index}"


@dataclass
class Task:
    """An escrowed unit of work as last reported by its contract."""
    task_id: str
    kind: TaskKind
    creator: str
    title: str = ""
    description: str = ""
    worker: str = ZERO_ADDRESS
    reward: int = 0
    deadline: int = 0
    status: TaskStatus = TaskStatus.OPEN
    proof_of_work: str = ""
    created_at: int = 0
    updated_at: int = 0
    bids: list[str] = field(default_factory=list)
    milestones: list[str] = field(default_factory=list)

    @property
    def key(self) -> str:
        return task_key(self.kind, self.task_id)

    @property
    def has_worker(self) -> bool:
        return self.worker != ZERO_ADDRESS

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        data["status"] = self.status.value
        return data

    @staticmethod
    def from_dict(data: dict[str, Any]) -> Task:
        fields = dict(data)
        fields["kind"] = TaskKind(fields["kind"])
        fields["status"] = TaskStatus(fields["status"])
        fields["bids"] = list(fields.get("bids", []))
        fields["milestones"] = list(fields.get("milestones", []))
        return Task(**fields)


@dataclass
class Bid:
    """A bidder's current offer on a bidding task.

    One bid per (task, bidder): a resubmission replaces the offer in
    place rather than adding a second record.
    """
    bid_id: str
    task_id: str
    bidder: str
    amount: int = 0
    estimated_time: int = 0
    description: str = ""
    created_at: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(data: dict[str, Any]) -> Bid:
        return Bid(**data)


@dataclass
class WorkProof:
    proof: str = ""
    submitted: bool = False
    approved: bool = False
    submitted_at: Optional[int] = None


@dataclass
class Milestone:
    """A partially-payable slice of a milestone task."""
    milestone_id: str
    task_id: str
    index: int
    description: str = ""
    reward: int = 0
    paid: bool = False
    completed_at: Optional[int] = None
    work_proof: WorkProof = field(default_factory=WorkProof)

    @property
    def stage(self) -> MilestoneStage:
        if self.paid:
            return MilestoneStage.PAID
        if self.work_proof.approved:
            return MilestoneStage.APPROVED
        if self.work_proof.submitted:
            return MilestoneStage.SUBMITTED
        return MilestoneStage.UNSUBMITTED

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(data: dict[str, Any]) -> Milestone:
        fields = dict(data)
        fields["work_proof"] = WorkProof(**fields.get("work_proof", {}))
        return Milestone(**fields)
