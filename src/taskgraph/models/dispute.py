"""Dispute models — reward-split disputes and the admin votes that settle them.

Dispute lifecycle:
    Filed → Resolved        (votes processed, worker share proposed)
    Resolved → Distributed  (both parties approved, funds paid out)
    Resolved → Filed        (proposal rejected; approvals and votes reset)
"""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from typing import Any, Optional


class DisputeStatus(str, enum.Enum):
    """Lifecycle status of a dispute (contract spelling)."""
    FILED = "Filed"
    RESOLVED = "Resolved"
    DISTRIBUTED = "Distributed"


def vote_key(dispute_id: str, admin: str) -> str:
    return f"{dispute_id}-{admin}"


@dataclass
class Dispute:
    """A worker-filed dispute over a task's reward.

    worker_share is only meaningful once the dispute has left FILED.
    """
    dispute_id: str
    task_id: str
    task_contract: str
    worker: str
    task_creator: str
    reward_amount: int = 0
    worker_share: int = 0
    proof_of_work: str = ""
    status: DisputeStatus = DisputeStatus.FILED
    worker_approved: bool = False
    creator_approved: bool = False
    created_at: int = 0
    resolved_at: Optional[int] = None
    distributed_at: Optional[int] = None
    votes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @staticmethod
    def from_dict(data: dict[str, Any]) -> Dispute:
        fields = dict(data)
        fields["status"] = DisputeStatus(fields["status"])
        fields["votes"] = list(fields.get("votes", []))
        return Dispute(**fields)


@dataclass(frozen=True)
class AdminVote:
    """One admin's proposed worker share for one dispute round."""
    vote_id: str
    dispute_id: str
    admin: str
    worker_share: int
    created_at: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(data: dict[str, Any]) -> AdminVote:
        return AdminVote(**data)
