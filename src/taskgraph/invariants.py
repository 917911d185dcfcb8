"""Cross-entity consistency checks over a projected store.

Usage:
    errors = check_store(store)
    if errors:
        ...

Handlers are meant to make every one of these impossible; the checker
exists to catch a snapshot that was edited by hand or produced by an
older build.
"""

from __future__ import annotations

from taskgraph.models.dispute import DisputeStatus
from taskgraph.models.task import TaskKind
from taskgraph.persistence.entity_store import EntityKind, EntityStore


def _check_children(
    owner: str,
    children: list[str],
    store: EntityStore,
    kind: EntityKind,
    errors: list[str],
) -> None:
    seen: set[str] = set()
    for child in children:
        if child in seen:
            errors.append(f"{owner} lists {kind.value} {child} more than once")
        seen.add(child)
        if not store.contains(kind, child):
            errors.append(f"{owner} references missing {kind.value} {child}")


def check_store(store: EntityStore) -> list[str]:
    """Return a list of invariant violations. Empty means healthy."""
    errors: list[str] = []

    # --- Tasks and their children ---
    for task in store.values(EntityKind.TASK):
        owner = f"task {task.key}"
        if not store.contains(EntityKind.USER, task.creator):
            errors.append(f"{owner} creator {task.creator} has no user record")
        if not store.contains(EntityKind.USER, task.worker):
            errors.append(f"{owner} worker {task.worker} has no user record")
        if task.bids and task.kind != TaskKind.BIDDING:
            errors.append(f"{owner} has bids but is a {task.kind.value} task")
        if task.milestones and task.kind != TaskKind.MILESTONE:
            errors.append(f"{owner} has milestones but is a {task.kind.value} task")
        _check_children(owner, task.bids, store, EntityKind.BID, errors)
        _check_children(owner, task.milestones, store, EntityKind.MILESTONE, errors)

    for bid in store.values(EntityKind.BID):
        if bid.amount < 0:
            errors.append(f"bid {bid.bid_id} has negative amount {bid.amount}")

    # --- Milestone flags never regress ---
    for milestone in store.values(EntityKind.MILESTONE):
        proof = milestone.work_proof
        if milestone.paid and not proof.approved:
            errors.append(f"milestone {milestone.milestone_id} is paid but not approved")
        if proof.approved and not proof.submitted:
            errors.append(f"milestone {milestone.milestone_id} is approved but not submitted")

    # --- Disputes ---
    for dispute in store.values(EntityKind.DISPUTE):
        owner = f"dispute {dispute.dispute_id}"
        if dispute.status == DisputeStatus.FILED:
            if dispute.worker_approved or dispute.creator_approved:
                errors.append(f"{owner} is Filed but carries approvals")
        if dispute.status == DisputeStatus.DISTRIBUTED and dispute.distributed_at is None:
            errors.append(f"{owner} is Distributed without distributed_at")
        _check_children(owner, dispute.votes, store, EntityKind.ADMIN_VOTE, errors)
        for key in dispute.votes:
            vote = store.get(EntityKind.ADMIN_VOTE, key)
            if vote is not None and vote.dispute_id != dispute.dispute_id:
                errors.append(f"{owner} lists vote {key} of dispute {vote.dispute_id}")

    # --- Admins ---
    for admin in store.values(EntityKind.ADMIN):
        if not admin.is_active and admin.stake_amount != 0:
            errors.append(
                f"admin {admin.address} is inactive but holds stake {admin.stake_amount}"
            )

    return errors
