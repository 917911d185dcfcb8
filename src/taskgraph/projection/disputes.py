"""Dispute projection — apply dispute-resolver events to Dispute, AdminVote, Admin.

    DisputeFiled              → new Dispute (Filed, no votes, no approvals)
    AdminVoted                → AdminVote + append-if-absent to dispute.votes
    DisputeResolved           → Filed → Resolved, worker_share, resolved_at
    ProposalApprovedByWorker  → worker_approved (Resolved only)
    ProposalApprovedByCreator → creator_approved (Resolved only)
    FundsDistributed          → Resolved → Distributed, distributed_at
    ProposalRejected          → Resolved → Filed, approvals and votes cleared
    AdminStaked               → Admin stake set, active
    AdminWithdrawn            → Admin stake zeroed, inactive

Votes are one per admin per round. A round starts when the dispute is
filed and restarts on every rejection; the rejection clears the vote list,
and an admin voting again afterwards replaces their stale vote record.
"""

from __future__ import annotations

import logging
from typing import Callable

from taskgraph.errors import (
    DuplicateCreationError,
    InvalidTransitionError,
    MissingParentError,
)
from taskgraph.identity import IdentityResolver, normalize_address
from taskgraph.models.dispute import AdminVote, Dispute, DisputeStatus, vote_key
from taskgraph.models.events import ChainEvent, EventName
from taskgraph.persistence.entity_store import EntityKind, EntityStore
from taskgraph.projection.lifecycle import DISPUTE_LIFECYCLE

logger = logging.getLogger(__name__)

Handler = Callable[[ChainEvent], None]

_ADMIN_EVENTS = frozenset({EventName.ADMIN_STAKED, EventName.ADMIN_WITHDRAWN})


class DisputeProjection:
    """Handlers for the dispute-resolver contract."""

    def __init__(self, store: EntityStore, identities: IdentityResolver) -> None:
        self._store = store
        self._identities = identities

    def handlers(self) -> dict[EventName, Handler]:
        return {
            EventName.DISPUTE_FILED: self.handle_dispute_filed,
            EventName.ADMIN_VOTED: self.handle_admin_voted,
            EventName.DISPUTE_RESOLVED: self.handle_dispute_resolved,
            EventName.PROPOSAL_APPROVED_BY_WORKER: self.handle_approved_by_worker,
            EventName.PROPOSAL_APPROVED_BY_CREATOR: self.handle_approved_by_creator,
            EventName.FUNDS_DISTRIBUTED: self.handle_funds_distributed,
            EventName.PROPOSAL_REJECTED: self.handle_proposal_rejected,
            EventName.ADMIN_STAKED: self.handle_admin_staked,
            EventName.ADMIN_WITHDRAWN: self.handle_admin_withdrawn,
        }

    def entity_key(self, event: ChainEvent) -> str:
        """Serialization key for the router."""
        if event.canonical_name in _ADMIN_EVENTS:
            return f"admin:{normalize_address(event.param('admin'))}"
        return f"dispute:{event.param('disputeId')}"

    # ------------------------------------------------------------------
    # Dispute lifecycle
    # ------------------------------------------------------------------

    def handle_dispute_filed(self, event: ChainEvent) -> None:
        dispute_id = str(event.param("disputeId"))
        if self._store.contains(EntityKind.DISPUTE, dispute_id):
            raise DuplicateCreationError(
                f"{event.event_name}: dispute {dispute_id} already exists",
                entity_kind=EntityKind.DISPUTE.value,
                entity_id=dispute_id,
            )

        ts = event.block_timestamp
        worker = self._identities.get_or_create_user(event.param("worker"), ts)
        creator = self._identities.get_or_create_user(event.param("taskCreator"), ts)
        dispute = Dispute(
            dispute_id=dispute_id,
            task_id=str(event.param("taskId")),
            task_contract=normalize_address(event.param("taskContract")),
            worker=worker.address,
            task_creator=creator.address,
            reward_amount=event.int_param("rewardAmount"),
            worker_share=0,
            proof_of_work=event.params.get("proof", ""),
            status=DisputeStatus.FILED,
            created_at=ts,
        )
        self._store.put(EntityKind.DISPUTE, dispute_id, dispute)

    def handle_admin_voted(self, event: ChainEvent) -> None:
        dispute = self._load_dispute(event)
        if dispute.status != DisputeStatus.FILED:
            raise InvalidTransitionError(
                f"{event.event_name}: dispute {dispute.dispute_id} is "
                f"{dispute.status.value}, votes are only accepted while Filed",
                entity_kind=EntityKind.DISPUTE.value,
                entity_id=dispute.dispute_id,
            )

        admin = normalize_address(event.param("admin"))
        key = vote_key(dispute.dispute_id, admin)
        if key in dispute.votes:
            raise DuplicateCreationError(
                f"{event.event_name}: admin {admin} already voted on "
                f"dispute {dispute.dispute_id} this round",
                entity_kind=EntityKind.ADMIN_VOTE.value,
                entity_id=key,
            )

        self._identities.get_or_create_admin(admin, event.block_timestamp)
        vote = AdminVote(
            vote_id=key,
            dispute_id=dispute.dispute_id,
            admin=admin,
            worker_share=event.int_param("workerShare"),
            created_at=event.block_timestamp,
        )
        self._store.put(EntityKind.ADMIN_VOTE, key, vote)
        self._store.append(EntityKind.DISPUTE, dispute.dispute_id, "votes", key)

    def handle_dispute_resolved(self, event: ChainEvent) -> None:
        dispute = self._load_dispute(event)
        if not self._transition(dispute, DisputeStatus.RESOLVED, event):
            return
        dispute.worker_share = event.int_param("workerShare")
        dispute.resolved_at = event.block_timestamp
        self._store.put(EntityKind.DISPUTE, dispute.dispute_id, dispute)

    def handle_approved_by_worker(self, event: ChainEvent) -> None:
        dispute = self._load_dispute(event)
        self._require_resolved(dispute, event)
        dispute.worker_approved = True
        self._store.put(EntityKind.DISPUTE, dispute.dispute_id, dispute)

    def handle_approved_by_creator(self, event: ChainEvent) -> None:
        dispute = self._load_dispute(event)
        self._require_resolved(dispute, event)
        dispute.creator_approved = True
        self._store.put(EntityKind.DISPUTE, dispute.dispute_id, dispute)

    def handle_funds_distributed(self, event: ChainEvent) -> None:
        # Both approvals are a contract precondition; not re-checked here.
        dispute = self._load_dispute(event)
        if not self._transition(dispute, DisputeStatus.DISTRIBUTED, event):
            return
        dispute.distributed_at = event.block_timestamp
        self._store.put(EntityKind.DISPUTE, dispute.dispute_id, dispute)

    def handle_proposal_rejected(self, event: ChainEvent) -> None:
        dispute = self._load_dispute(event)
        if dispute.status != DisputeStatus.RESOLVED:
            raise InvalidTransitionError(
                f"{event.event_name}: dispute {dispute.dispute_id} is "
                f"{dispute.status.value}, only a Resolved proposal can be rejected",
                entity_kind=EntityKind.DISPUTE.value,
                entity_id=dispute.dispute_id,
            )
        self._transition(dispute, DisputeStatus.FILED, event)
        dispute.worker_approved = False
        dispute.creator_approved = False
        dispute.votes = []
        self._store.put(EntityKind.DISPUTE, dispute.dispute_id, dispute)

    # ------------------------------------------------------------------
    # Admin stake
    # ------------------------------------------------------------------

    def handle_admin_staked(self, event: ChainEvent) -> None:
        ts = event.block_timestamp
        admin = self._identities.get_or_create_admin(event.param("admin"), ts)
        admin.stake_amount = event.int_param("amount")
        admin.is_active = True
        admin.updated_at = ts
        self._store.put(EntityKind.ADMIN, admin.address, admin)

    def handle_admin_withdrawn(self, event: ChainEvent) -> None:
        address = normalize_address(event.param("admin"))
        admin = self._store.get(EntityKind.ADMIN, address)
        if admin is None:
            raise MissingParentError(
                f"{event.event_name}: admin {address} has never staked",
                entity_kind=EntityKind.ADMIN.value,
                entity_id=address,
            )
        admin.stake_amount = 0
        admin.is_active = False
        admin.updated_at = event.block_timestamp
        self._store.put(EntityKind.ADMIN, address, admin)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load_dispute(self, event: ChainEvent) -> Dispute:
        dispute_id = str(event.param("disputeId"))
        dispute = self._store.get(EntityKind.DISPUTE, dispute_id)
        if dispute is None:
            raise MissingParentError(
                f"{event.event_name}: dispute {dispute_id} does not exist",
                entity_kind=EntityKind.DISPUTE.value,
                entity_id=dispute_id,
            )
        return dispute

    def _transition(
        self, dispute: Dispute, target: DisputeStatus, event: ChainEvent
    ) -> bool:
        """Move dispute to target. False means it was already there (replay)."""
        if dispute.status == target:
            logger.debug(
                "Replay of %s on dispute %s ignored (already %s)",
                event.event_name, dispute.dispute_id, target.value,
            )
            return False
        errors = DISPUTE_LIFECYCLE.validate_transition(dispute.status, target)
        if errors:
            raise InvalidTransitionError(
                f"{event.event_name} on dispute {dispute.dispute_id}: {errors[0]}",
                entity_kind=EntityKind.DISPUTE.value,
                entity_id=dispute.dispute_id,
            )
        dispute.status = target
        return True

    def _require_resolved(self, dispute: Dispute, event: ChainEvent) -> None:
        if dispute.status != DisputeStatus.RESOLVED:
            raise InvalidTransitionError(
                f"{event.event_name}: dispute {dispute.dispute_id} is "
                f"{dispute.status.value}, approvals need a Resolved proposal",
                entity_kind=EntityKind.DISPUTE.value,
                entity_id=dispute.dispute_id,
            )
