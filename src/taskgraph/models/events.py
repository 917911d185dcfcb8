"""Chain event records — the only input the projection ever consumes.

A ChainEvent is one decoded contract log. Its position in the chain,
(block_number, log_index), orders it within its contract's stream. The
event_hash is computed at creation time over the canonical JSON form so
archived events can be verified on reload.
"""

from __future__ import annotations

import enum
import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Optional

from taskgraph.errors import MalformedEventError


class ContractKind(str, enum.Enum):
    """Which deployed contract a stream of events comes from."""
    BIDDING_TASK = "bidding_task"
    FIXED_PAYMENT_TASK = "fixed_payment_task"
    MILESTONE_TASK = "milestone_task"
    DISPUTE_RESOLVER = "dispute_resolver"
    USER_INFO = "user_info"


class EventName(str, enum.Enum):
    """Canonical event names understood by the projections."""
    # Task contracts
    TASK_CREATED = "TaskCreated"
    BID_SUBMITTED = "BidSubmitted"
    WORKER_ADDED = "WorkerAdded"
    PROOF_OF_WORK_SUBMITTED = "ProofOfWorkSubmitted"
    PROOF_OF_WORK_APPROVED = "ProofOfWorkApproved"
    MILESTONE_ADDED = "MilestoneAdded"
    MILESTONE_PAID = "MilestonePaid"
    TASK_COMPLETED = "TaskCompleted"
    TASK_CANCELLED = "TaskCancelled"
    TASK_PAID = "TaskPaid"
    REWARD_INCREASED = "RewardIncreased"
    DEADLINE_CHANGED = "DeadlineChanged"
    # Dispute resolver
    DISPUTE_FILED = "DisputeFiled"
    ADMIN_VOTED = "AdminVoted"
    DISPUTE_RESOLVED = "DisputeResolved"
    PROPOSAL_APPROVED_BY_WORKER = "ProposalApprovedByWorker"
    PROPOSAL_APPROVED_BY_CREATOR = "ProposalApprovedByCreator"
    FUNDS_DISTRIBUTED = "FundsDistributed"
    PROPOSAL_REJECTED = "ProposalRejected"
    ADMIN_STAKED = "AdminStaked"
    ADMIN_WITHDRAWN = "AdminWithdrawn"
    # User info
    USER_PROFILE_UPDATED = "UserProfileUpdated"
    USER_SKILLS_UPDATED = "UserSkillsUpdated"


# ABI event names that differ from the canonical name
_ALIASES: dict[str, EventName] = {
    "BiddingTaskCreated": EventName.TASK_CREATED,
    "TaskWorkerAdded": EventName.WORKER_ADDED,
    "TaskDeadlineChanged": EventName.DEADLINE_CHANGED,
    "MilestoneProofOfWorkSubmitted": EventName.PROOF_OF_WORK_SUBMITTED,
    "MilestoneApproved": EventName.PROOF_OF_WORK_APPROVED,
}

# Inherited-event prefixes produced by graph codegen ("BiddingTask_TaskPaid")
_CONTRACT_PREFIXES = (
    "BiddingTask_",
    "FixedPaymentTask_",
    "MilestonePaymentTask_",
    "DisputeResolver_",
    "UserInfo_",
)


def canonical_event_name(raw: str) -> Optional[EventName]:
    """Map a raw ABI event name to its canonical name, or None if unknown."""
    name = raw
    for prefix in _CONTRACT_PREFIXES:
        if name.startswith(prefix):
            name = name[len(prefix):]
            break
    if name in _ALIASES:
        return _ALIASES[name]
    try:
        return EventName(name)
    except ValueError:
        return None


def compute_event_hash(
    contract_address: str,
    event_name: str,
    block_number: int,
    log_index: int,
    block_timestamp: int,
    params: dict[str, Any],
    transaction_hash: str,
) -> str:
    """SHA-256 over sorted-key JSON of the event's content fields."""
    canonical = json.dumps(
        {
            "contract_address": contract_address,
            "event_name": event_name,
            "block_number": block_number,
            "log_index": log_index,
            "block_timestamp": block_timestamp,
            "params": params,
            "transaction_hash": transaction_hash,
        },
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"


@dataclass(frozen=True)
class ChainEvent:
    """A single decoded contract log, immutable once created."""
    contract_address: str
    event_name: str
    block_number: int
    log_index: int
    block_timestamp: int
    params: dict[str, Any] = field(default_factory=dict)
    transaction_hash: str = ""
    event_hash: str = ""

    @staticmethod
    def create(
        contract_address: str,
        event_name: str,
        block_number: int,
        log_index: int,
        block_timestamp: int,
        params: dict[str, Any],
        transaction_hash: str = "",
    ) -> ChainEvent:
        """Create a new event with its content hash filled in."""
        address = contract_address.lower()
        return ChainEvent(
            contract_address=address,
            event_name=event_name,
            block_number=block_number,
            log_index=log_index,
            block_timestamp=block_timestamp,
            params=params,
            transaction_hash=transaction_hash,
            event_hash=compute_event_hash(
                address, event_name, block_number, log_index,
                block_timestamp, params, transaction_hash,
            ),
        )

    @property
    def position(self) -> tuple[int, int]:
        return (self.block_number, self.log_index)

    @property
    def event_id(self) -> str:
        return f"{self.contract_address}:{self.block_number}:{self.log_index}"

    @property
    def canonical_name(self) -> Optional[EventName]:
        return canonical_event_name(self.event_name)

    def param(self, name: str) -> Any:
        """Return a decoded parameter, failing with MalformedEventError."""
        if name not in self.params:
            raise MalformedEventError(
                f"{self.event_name} at {self.event_id} has no parameter {name!r}",
                entity_kind="event",
                entity_id=self.event_id,
            )
        return self.params[name]

    def int_param(self, name: str, default: Optional[int] = None) -> int:
        """Return a parameter as an int; a missing one falls back to default.

        Raises MalformedEventError when the value is missing without a
        default or cannot be read as an integer.
        """
        if default is not None and name not in self.params:
            return default
        raw = self.param(name)
        try:
            return int(raw)
        except (TypeError, ValueError):
            raise MalformedEventError(
                f"{self.event_name} at {self.event_id} has non-integer {name!r}: {raw!r}",
                entity_kind="event",
                entity_id=self.event_id,
            ) from None

    def to_dict(self) -> dict[str, Any]:
        return {
            "contract_address": self.contract_address,
            "event_name": self.event_name,
            "block_number": self.block_number,
            "log_index": self.log_index,
            "block_timestamp": self.block_timestamp,
            "params": self.params,
            "transaction_hash": self.transaction_hash,
            "event_hash": self.event_hash,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> ChainEvent:
        return ChainEvent(
            contract_address=data["contract_address"],
            event_name=data["event_name"],
            block_number=data["block_number"],
            log_index=data["log_index"],
            block_timestamp=data["block_timestamp"],
            params=data.get("params", {}),
            transaction_hash=data.get("transaction_hash", ""),
            event_hash=data.get("event_hash", ""),
        )
