"""Event ABI fragments for the task, dispute and user-info contracts.

Only events are described; the indexer never calls contract functions.
Milestone tasks emit their own proof events carrying a milestone index,
so they use the milestone-specific names that canonical_event_name maps
back onto ProofOfWorkSubmitted / ProofOfWorkApproved.
"""

from __future__ import annotations

from typing import Any

from taskgraph.models.events import ContractKind


def _event(name: str, *inputs: tuple[str, str, bool]) -> dict[str, Any]:
    return {
        "type": "event",
        "name": name,
        "anonymous": False,
        "inputs": [
            {"name": arg, "type": abi_type, "indexed": indexed}
            for arg, abi_type, indexed in inputs
        ],
    }


_TASK_ID = ("taskId", "uint256", True)
_DISPUTE_ID = ("disputeId", "uint256", True)


def _common_task_events(
    created: str = "TaskCreated",
    worker_added: str = "WorkerAdded",
    deadline_changed: str = "DeadlineChanged",
) -> list[dict[str, Any]]:
    return [
        _event(
            created,
            _TASK_ID,
            ("creator", "address", True),
            ("title", "string", False),
            ("description", "string", False),
            ("deadline", "uint256", False),
        ),
        _event(worker_added, _TASK_ID, ("worker", "address", True), ("amount", "uint256", False)),
        _event("TaskCancelled", _TASK_ID),
        _event("RewardIncreased", _TASK_ID, ("amount", "uint256", False)),
        _event(deadline_changed, _TASK_ID, ("newDeadline", "uint256", False)),
    ]


_WHOLE_TASK_PROOF_EVENTS = [
    _event("ProofOfWorkSubmitted", _TASK_ID, ("proof", "string", False)),
    _event("ProofOfWorkApproved", _TASK_ID),
    _event("TaskPaid", _TASK_ID, ("amount", "uint256", False)),
]

FIXED_PAYMENT_TASK_ABI = _common_task_events() + _WHOLE_TASK_PROOF_EVENTS

# Bidding tasks emit their own names for creation, assignment and deadline changes.
BIDDING_TASK_ABI = _common_task_events(
    created="BiddingTaskCreated",
    worker_added="TaskWorkerAdded",
    deadline_changed="TaskDeadlineChanged",
) + _WHOLE_TASK_PROOF_EVENTS + [
    _event(
        "BidSubmitted",
        _TASK_ID,
        ("bidder", "address", True),
        ("amount", "uint256", False),
        ("estimatedTime", "uint256", False),
        ("description", "string", False),
    ),
]

MILESTONE_TASK_ABI = _common_task_events() + [
    _event(
        "MilestoneAdded",
        _TASK_ID,
        ("milestoneIndex", "uint256", False),
        ("description", "string", False),
        ("reward", "uint256", False),
    ),
    _event(
        "MilestoneProofOfWorkSubmitted",
        _TASK_ID,
        ("milestoneIndex", "uint256", False),
        ("proof", "string", False),
    ),
    _event("MilestoneApproved", _TASK_ID, ("milestoneIndex", "uint256", False)),
    _event(
        "MilestonePaid",
        _TASK_ID,
        ("milestoneIndex", "uint256", False),
        ("amount", "uint256", False),
    ),
    _event("TaskCompleted", _TASK_ID),
]

DISPUTE_RESOLVER_ABI = [
    _event(
        "DisputeFiled",
        _DISPUTE_ID,
        ("taskId", "uint256", True),
        ("taskContract", "address", False),
        ("worker", "address", False),
        ("taskCreator", "address", False),
        ("rewardAmount", "uint256", False),
        ("proof", "string", False),
    ),
    _event(
        "AdminVoted",
        _DISPUTE_ID,
        ("admin", "address", True),
        ("workerShare", "uint256", False),
    ),
    _event("DisputeResolved", _DISPUTE_ID, ("workerShare", "uint256", False)),
    _event("ProposalApprovedByWorker", _DISPUTE_ID),
    _event("ProposalApprovedByCreator", _DISPUTE_ID),
    _event("FundsDistributed", _DISPUTE_ID),
    _event("ProposalRejected", _DISPUTE_ID),
    _event("AdminStaked", ("admin", "address", True), ("amount", "uint256", False)),
    _event("AdminWithdrawn", ("admin", "address", True), ("amount", "uint256", False)),
]

USER_INFO_ABI = [
    _event(
        "UserProfileUpdated",
        ("user", "address", True),
        ("name", "string", False),
        ("email", "string", False),
        ("bio", "string", False),
        ("website", "string", False),
    ),
    _event("UserSkillsUpdated", ("user", "address", True), ("skills", "string[]", False)),
]

EVENT_ABIS: dict[ContractKind, list[dict[str, Any]]] = {
    ContractKind.BIDDING_TASK: BIDDING_TASK_ABI,
    ContractKind.FIXED_PAYMENT_TASK: FIXED_PAYMENT_TASK_ABI,
    ContractKind.MILESTONE_TASK: MILESTONE_TASK_ABI,
    ContractKind.DISPUTE_RESOLVER: DISPUTE_RESOLVER_ABI,
    ContractKind.USER_INFO: USER_INFO_ABI,
}


def event_names(kind: ContractKind) -> list[str]:
    """ABI event names emitted by one contract kind, in declaration order."""
    return [entry["name"] for entry in EVENT_ABIS[kind]]
