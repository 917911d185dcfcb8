"""Task projections — apply task-contract events to Task, Bid and Milestone.

One projection per contract kind. Each handler takes a single ChainEvent,
reads what it needs from the store, and writes back whole entities:

    TaskCreated           → new Task (Open, zero-address worker, reward 0)
    BidSubmitted          → Bid upsert + append-if-absent to task.bids
    WorkerAdded           → worker, reward, Open → InProgress
    ProofOfWorkSubmitted  → proof text (milestone: one milestone's proof)
    ProofOfWorkApproved   → InProgress → Completed (milestone: approved flag)
    MilestoneAdded        → new Milestone + append-if-absent to task.milestones
    MilestonePaid         → milestone paid flag and completed_at
    TaskCompleted         → InProgress → Completed (milestone tasks)
    TaskCancelled         → Open / InProgress → Cancelled
    TaskPaid              → Completed → Paid, final reward
    RewardIncreased       → reward (non-terminal only)
    DeadlineChanged       → deadline (non-terminal only)

Handlers raise ProjectionError subclasses when an event cannot be applied;
the router logs and skips them. Re-delivery of an event whose effect is
already visible is a no-op.
"""

from __future__ import annotations

import logging
from typing import Callable

from taskgraph.errors import (
    DuplicateCreationError,
    InvalidTransitionError,
    MissingParentError,
)
from taskgraph.identity import IdentityResolver
from taskgraph.models.events import ChainEvent, EventName
from taskgraph.models.task import (
    Bid,
    Milestone,
    MilestoneStage,
    Task,
    TaskKind,
    TaskStatus,
    bid_key,
    milestone_key,
    task_key,
)
from taskgraph.persistence.entity_store import EntityKind, EntityStore
from taskgraph.projection.lifecycle import MILESTONE_LIFECYCLE, TASK_LIFECYCLE

logger = logging.getLogger(__name__)

Handler = Callable[[ChainEvent], None]

# Statuses in which reward and deadline may still change
_MUTABLE_STATUSES = frozenset({
    TaskStatus.OPEN,
    TaskStatus.IN_PROGRESS,
    TaskStatus.COMPLETED,
})


class TaskProjection:
    """Handlers shared by every task contract.

    Subclasses set ``kind`` and extend ``handlers()`` with the events
    their contract adds. The base behaviour is that of a fixed-payment
    task.
    """

    kind: TaskKind = TaskKind.FIXED_PAYMENT

    def __init__(self, store: EntityStore, identities: IdentityResolver) -> None:
        self._store = store
        self._identities = identities

    def handlers(self) -> dict[EventName, Handler]:
        return {
            EventName.TASK_CREATED: self.handle_task_created,
            EventName.WORKER_ADDED: self.handle_worker_added,
            EventName.PROOF_OF_WORK_SUBMITTED: self.handle_proof_submitted,
            EventName.PROOF_OF_WORK_APPROVED: self.handle_proof_approved,
            EventName.TASK_CANCELLED: self.handle_task_cancelled,
            EventName.TASK_PAID: self.handle_task_paid,
            EventName.REWARD_INCREASED: self.handle_reward_increased,
            EventName.DEADLINE_CHANGED: self.handle_deadline_changed,
        }

    def entity_key(self, event: ChainEvent) -> str:
        """Serialization key for the router: the task this event touches."""
        return f"task:{task_key(self.kind, str(event.param('taskId')))}"

    # ------------------------------------------------------------------
    # Shared handlers
    # ------------------------------------------------------------------

    def handle_task_created(self, event: ChainEvent) -> None:
        task_id = str(event.param("taskId"))
        key = task_key(self.kind, task_id)
        if self._store.contains(EntityKind.TASK, key):
            raise DuplicateCreationError(
                f"{event.event_name}: task {key} already exists",
                entity_kind=EntityKind.TASK.value,
                entity_id=key,
            )

        ts = event.block_timestamp
        creator = self._identities.get_or_create_user(event.param("creator"), ts)
        worker = self._identities.zero_user(ts)
        task = Task(
            task_id=task_id,
            kind=self.kind,
            creator=creator.address,
            title=event.param("title"),
            description=event.params.get("description", ""),
            worker=worker.address,
            reward=0,
            deadline=event.int_param("deadline", 0),
            status=TaskStatus.OPEN,
            created_at=ts,
            updated_at=ts,
        )
        self._store.put(EntityKind.TASK, key, task)

    def handle_worker_added(self, event: ChainEvent) -> None:
        task = self._load_task(event)
        if not self._transition(task, TaskStatus.IN_PROGRESS, event):
            return
        worker = self._identities.get_or_create_user(
            event.param("worker"), event.block_timestamp
        )
        task.worker = worker.address
        task.reward = self._assigned_reward(task, event)
        self._save(task, event)

    def handle_proof_submitted(self, event: ChainEvent) -> None:
        task = self._load_task(event)
        self._require_status(task, {TaskStatus.IN_PROGRESS}, event)
        task.proof_of_work = str(event.param("proof"))
        self._save(task, event)

    def handle_proof_approved(self, event: ChainEvent) -> None:
        task = self._load_task(event)
        if self._transition(task, TaskStatus.COMPLETED, event):
            self._save(task, event)

    def handle_task_cancelled(self, event: ChainEvent) -> None:
        task = self._load_task(event)
        if self._transition(task, TaskStatus.CANCELLED, event):
            self._save(task, event)

    def handle_task_paid(self, event: ChainEvent) -> None:
        task = self._load_task(event)
        if not self._transition(task, TaskStatus.PAID, event):
            return
        task.reward = event.int_param("amount")
        self._save(task, event)

    def handle_reward_increased(self, event: ChainEvent) -> None:
        task = self._load_task(event)
        self._require_status(task, _MUTABLE_STATUSES, event)
        task.reward = event.int_param("amount")
        self._save(task, event)

    def handle_deadline_changed(self, event: ChainEvent) -> None:
        task = self._load_task(event)
        self._require_status(task, _MUTABLE_STATUSES, event)
        task.deadline = event.int_param("newDeadline")
        self._save(task, event)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _assigned_reward(self, task: Task, event: ChainEvent) -> int:
        return event.int_param("amount")

    def _load_task(self, event: ChainEvent) -> Task:
        key = task_key(self.kind, str(event.param("taskId")))
        task = self._store.get(EntityKind.TASK, key)
        if task is None:
            raise MissingParentError(
                f"{event.event_name}: task {key} does not exist",
                entity_kind=EntityKind.TASK.value,
                entity_id=key,
            )
        return task

    def _transition(self, task: Task, target: TaskStatus, event: ChainEvent) -> bool:
        """Move task to target. False means it was already there (replay)."""
        if task.status == target:
            logger.debug(
                "Replay of %s on task %s ignored (already %s)",
                event.event_name, task.key, target.value,
            )
            return False
        errors = TASK_LIFECYCLE.validate_transition(task.status, target)
        if errors:
            raise InvalidTransitionError(
                f"{event.event_name} on task {task.key}: {errors[0]}",
                entity_kind=EntityKind.TASK.value,
                entity_id=task.key,
            )
        task.status = target
        return True

    def _require_status(
        self,
        task: Task,
        allowed: set[TaskStatus] | frozenset[TaskStatus],
        event: ChainEvent,
    ) -> None:
        if task.status not in allowed:
            raise InvalidTransitionError(
                f"{event.event_name} not applicable to task {task.key} "
                f"in status {task.status.value}",
                entity_kind=EntityKind.TASK.value,
                entity_id=task.key,
            )

    def _save(self, task: Task, event: ChainEvent) -> None:
        task.updated_at = event.block_timestamp
        self._store.put(EntityKind.TASK, task.key, task)

    def _append_child(
        self, task: Task, field_name: str, child_id: str, event: ChainEvent
    ) -> None:
        """Set-append a child key to the task and stamp updated_at."""
        self._store.append(EntityKind.TASK, task.key, field_name, child_id)
        refreshed = self._store.get(EntityKind.TASK, task.key)
        self._save(refreshed, event)


class FixedPaymentTaskProjection(TaskProjection):
    """Fixed-payment tasks: the creator names the worker and the amount."""

    kind = TaskKind.FIXED_PAYMENT


class BiddingTaskProjection(TaskProjection):
    """Bidding tasks: workers bid, the creator picks one bid."""

    kind = TaskKind.BIDDING

    def handlers(self) -> dict[EventName, Handler]:
        handlers = super().handlers()
        handlers[EventName.BID_SUBMITTED] = self.handle_bid_submitted
        return handlers

    def handle_bid_submitted(self, event: ChainEvent) -> None:
        task = self._load_task(event)
        self._require_status(task, {TaskStatus.OPEN}, event)

        bidder = self._identities.get_or_create_user(
            event.param("bidder"), event.block_timestamp
        )
        bid = Bid(
            bid_id=bid_key(task.task_id, bidder.address),
            task_id=task.task_id,
            bidder=bidder.address,
            amount=event.int_param("amount"),
            estimated_time=event.int_param("estimatedTime", 0),
            description=event.params.get("description", ""),
            created_at=event.block_timestamp,
        )
        self._store.put(EntityKind.BID, bid.bid_id, bid)
        self._append_child(task, "bids", bid.bid_id, event)

    def _assigned_reward(self, task: Task, event: ChainEvent) -> int:
        # The winning bid's amount is the reward; the event amount is the
        # fallback for a worker who never bid through this contract.
        bid = self._store.get(EntityKind.BID, bid_key(task.task_id, task.worker))
        if bid is not None:
            return bid.amount
        return event.int_param("amount")


class MilestoneTaskProjection(TaskProjection):
    """Milestone tasks: proof, approval and payment happen per milestone."""

    kind = TaskKind.MILESTONE

    def handlers(self) -> dict[EventName, Handler]:
        handlers = super().handlers()
        # Milestone tasks settle per milestone; there is no whole-task payout.
        del handlers[EventName.TASK_PAID]
        handlers[EventName.MILESTONE_ADDED] = self.handle_milestone_added
        handlers[EventName.MILESTONE_PAID] = self.handle_milestone_paid
        handlers[EventName.TASK_COMPLETED] = self.handle_task_completed
        return handlers

    def handle_milestone_added(self, event: ChainEvent) -> None:
        task = self._load_task(event)
        self._require_status(task, {TaskStatus.OPEN, TaskStatus.IN_PROGRESS}, event)

        index = event.int_param("milestoneIndex")
        key = milestone_key(task.task_id, index)
        if self._store.contains(EntityKind.MILESTONE, key):
            raise DuplicateCreationError(
                f"{event.event_name}: milestone {key} already exists",
                entity_kind=EntityKind.MILESTONE.value,
                entity_id=key,
            )
        milestone = Milestone(
            milestone_id=key,
            task_id=task.task_id,
            index=index,
            description=event.params.get("description", ""),
            reward=event.int_param("reward"),
        )
        self._store.put(EntityKind.MILESTONE, key, milestone)
        self._append_child(task, "milestones", key, event)

    def handle_proof_submitted(self, event: ChainEvent) -> None:
        task = self._load_task(event)
        self._require_status(task, {TaskStatus.IN_PROGRESS}, event)
        milestone = self._load_milestone(task, event)

        # Resubmission before approval replaces the proof; after approval
        # the proof is frozen.
        if milestone.stage not in (MilestoneStage.UNSUBMITTED, MilestoneStage.SUBMITTED):
            raise InvalidTransitionError(
                f"{event.event_name}: milestone {milestone.milestone_id} "
                f"is already {milestone.stage.value}",
                entity_kind=EntityKind.MILESTONE.value,
                entity_id=milestone.milestone_id,
            )
        milestone.work_proof.proof = str(event.param("proof"))
        milestone.work_proof.submitted = True
        milestone.work_proof.submitted_at = event.block_timestamp
        self._save_milestone(task, milestone, event)

    def handle_proof_approved(self, event: ChainEvent) -> None:
        task = self._load_task(event)
        self._require_status(task, {TaskStatus.IN_PROGRESS}, event)
        milestone = self._load_milestone(task, event)
        if not self._advance_milestone(milestone, MilestoneStage.APPROVED, event):
            return
        milestone.work_proof.approved = True
        self._save_milestone(task, milestone, event)

    def handle_milestone_paid(self, event: ChainEvent) -> None:
        task = self._load_task(event)
        self._require_status(task, {TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED}, event)
        milestone = self._load_milestone(task, event)
        if not self._advance_milestone(milestone, MilestoneStage.PAID, event):
            return
        milestone.paid = True
        milestone.completed_at = event.block_timestamp
        self._save_milestone(task, milestone, event)

    def handle_task_completed(self, event: ChainEvent) -> None:
        task = self._load_task(event)
        if self._transition(task, TaskStatus.COMPLETED, event):
            self._save(task, event)

    def _load_milestone(self, task: Task, event: ChainEvent) -> Milestone:
        key = milestone_key(task.task_id, event.int_param("milestoneIndex"))
        milestone = self._store.get(EntityKind.MILESTONE, key)
        if milestone is None:
            raise MissingParentError(
                f"{event.event_name}: milestone {key} does not exist",
                entity_kind=EntityKind.MILESTONE.value,
                entity_id=key,
            )
        return milestone

    def _advance_milestone(
        self, milestone: Milestone, target: MilestoneStage, event: ChainEvent
    ) -> bool:
        if milestone.stage == target:
            logger.debug(
                "Replay of %s on milestone %s ignored (already %s)",
                event.event_name, milestone.milestone_id, target.value,
            )
            return False
        errors = MILESTONE_LIFECYCLE.validate_transition(milestone.stage, target)
        if errors:
            raise InvalidTransitionError(
                f"{event.event_name} on milestone {milestone.milestone_id}: {errors[0]}",
                entity_kind=EntityKind.MILESTONE.value,
                entity_id=milestone.milestone_id,
            )
        return True

    def _save_milestone(self, task: Task, milestone: Milestone, event: ChainEvent) -> None:
        self._store.put(EntityKind.MILESTONE, milestone.milestone_id, milestone)
        self._save(task, event)
