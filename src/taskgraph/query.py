"""Query facade — read-only access to the projected state.

Listings follow the conventions of a graph-node style API: ``first`` and
``skip`` for pagination, ``order_by`` / ``order_direction`` for ordering,
newest first by default. Ties on the order key are broken by the entity
key so pages are stable between calls.

Everything returned is a copy; callers cannot change projected state.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence, TypeVar, Union

from taskgraph.identity import normalize_address
from taskgraph.models.dispute import AdminVote, Dispute, DisputeStatus, vote_key
from taskgraph.models.task import (
    Bid,
    Milestone,
    Task,
    TaskKind,
    TaskStatus,
    bid_key,
    milestone_key,
    task_key,
)
from taskgraph.models.user import Admin, User
from taskgraph.persistence.entity_store import EntityKind, EntityStore

T = TypeVar("T")

DEFAULT_PAGE_SIZE = 100
MAX_PAGE_SIZE = 1000


class OrderDirection(str, enum.Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class UserWorkSummary:
    """Everything one address has created, worked on, bid on or disputed."""
    address: str
    user: Optional[User]
    created_tasks: dict[TaskKind, list[Task]] = field(default_factory=dict)
    assigned_tasks: dict[TaskKind, list[Task]] = field(default_factory=dict)
    worker_disputes: list[Dispute] = field(default_factory=list)
    creator_disputes: list[Dispute] = field(default_factory=list)
    bids: list[Bid] = field(default_factory=list)
    completed_milestones: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "user": self.user.to_dict() if self.user is not None else None,
            "created_tasks": {
                kind.value: [t.to_dict() for t in tasks]
                for kind, tasks in self.created_tasks.items()
            },
            "assigned_tasks": {
                kind.value: [t.to_dict() for t in tasks]
                for kind, tasks in self.assigned_tasks.items()
            },
            "worker_disputes": [d.to_dict() for d in self.worker_disputes],
            "creator_disputes": [d.to_dict() for d in self.creator_disputes],
            "bids": [b.to_dict() for b in self.bids],
            "completed_milestones": dict(self.completed_milestones),
        }


def _paginate(
    items: Sequence[T],
    sort_key: Callable[[T], Any],
    first: int,
    skip: int,
    order_direction: Union[OrderDirection, str],
) -> list[T]:
    if first < 0 or first > MAX_PAGE_SIZE:
        raise ValueError(f"first must be between 0 and {MAX_PAGE_SIZE}, got {first}")
    if skip < 0:
        raise ValueError(f"skip must be >= 0, got {skip}")
    direction = OrderDirection(order_direction)
    ordered = sorted(items, key=sort_key, reverse=direction == OrderDirection.DESC)
    return ordered[skip:skip + first]


def _order_key(order_by: str, allowed: tuple[str, ...], id_attr: str) -> Callable[[Any], Any]:
    if order_by not in allowed:
        raise ValueError(f"Cannot order by {order_by!r}; allowed: {', '.join(allowed)}")
    return lambda entity: (getattr(entity, order_by), getattr(entity, id_attr))


class QueryFacade:
    """Read-only accessor over an EntityStore."""

    def __init__(self, store: EntityStore) -> None:
        self._store = store

    # ------------------------------------------------------------------
    # Lookups by ID
    # ------------------------------------------------------------------

    def get_task(self, kind: Union[TaskKind, str], task_id: str) -> Optional[Task]:
        return self._store.get(EntityKind.TASK, task_key(TaskKind(kind), str(task_id)))

    def get_bid(self, task_id: str, bidder: str) -> Optional[Bid]:
        return self._store.get(EntityKind.BID, bid_key(str(task_id), normalize_address(bidder)))

    def get_milestone(self, task_id: str, index: int) -> Optional[Milestone]:
        return self._store.get(EntityKind.MILESTONE, milestone_key(str(task_id), index))

    def get_dispute(self, dispute_id: str) -> Optional[Dispute]:
        return self._store.get(EntityKind.DISPUTE, str(dispute_id))

    def get_vote(self, dispute_id: str, admin: str) -> Optional[AdminVote]:
        return self._store.get(
            EntityKind.ADMIN_VOTE, vote_key(str(dispute_id), normalize_address(admin))
        )

    def get_user(self, address: str) -> Optional[User]:
        return self._store.get(EntityKind.USER, normalize_address(address))

    def get_admin(self, address: str) -> Optional[Admin]:
        return self._store.get(EntityKind.ADMIN, normalize_address(address))

    # ------------------------------------------------------------------
    # Children
    # ------------------------------------------------------------------

    def bids_for_task(self, task_id: str) -> list[Bid]:
        """Bids on a bidding task in order of first arrival."""
        task = self.get_task(TaskKind.BIDDING, task_id)
        if task is None:
            return []
        bids = (self._store.get(EntityKind.BID, key) for key in task.bids)
        return [bid for bid in bids if bid is not None]

    def milestones_for_task(self, task_id: str) -> list[Milestone]:
        task = self.get_task(TaskKind.MILESTONE, task_id)
        if task is None:
            return []
        milestones = (self._store.get(EntityKind.MILESTONE, key) for key in task.milestones)
        return sorted((m for m in milestones if m is not None), key=lambda m: m.index)

    def completed_milestones_count(self, task_id: str) -> int:
        return sum(1 for m in self.milestones_for_task(task_id) if m.paid)

    def votes_for_dispute(self, dispute_id: str) -> list[AdminVote]:
        """Votes of the current round, in the order they were cast."""
        dispute = self.get_dispute(dispute_id)
        if dispute is None:
            return []
        votes = (self._store.get(EntityKind.ADMIN_VOTE, key) for key in dispute.votes)
        return [vote for vote in votes if vote is not None]

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    def list_tasks(
        self,
        kind: Optional[Union[TaskKind, str]] = None,
        status: Optional[Union[TaskStatus, str]] = None,
        creator: Optional[str] = None,
        worker: Optional[str] = None,
        first: int = DEFAULT_PAGE_SIZE,
        skip: int = 0,
        order_by: str = "created_at",
        order_direction: Union[OrderDirection, str] = OrderDirection.DESC,
    ) -> list[Task]:
        tasks = self._store.values(EntityKind.TASK)
        if kind is not None:
            wanted_kind = TaskKind(kind)
            tasks = [t for t in tasks if t.kind == wanted_kind]
        if status is not None:
            wanted_status = TaskStatus(status)
            tasks = [t for t in tasks if t.status == wanted_status]
        if creator is not None:
            creator = normalize_address(creator)
            tasks = [t for t in tasks if t.creator == creator]
        if worker is not None:
            worker = normalize_address(worker)
            tasks = [t for t in tasks if t.worker == worker]
        sort_key = _order_key(order_by, ("created_at", "updated_at"), "key")
        return _paginate(tasks, sort_key, first, skip, order_direction)

    def list_disputes(
        self,
        status: Optional[Union[DisputeStatus, str]] = None,
        worker: Optional[str] = None,
        task_creator: Optional[str] = None,
        first: int = DEFAULT_PAGE_SIZE,
        skip: int = 0,
        order_by: str = "created_at",
        order_direction: Union[OrderDirection, str] = OrderDirection.DESC,
    ) -> list[Dispute]:
        disputes = self._store.values(EntityKind.DISPUTE)
        if status is not None:
            wanted = DisputeStatus(status)
            disputes = [d for d in disputes if d.status == wanted]
        if worker is not None:
            worker = normalize_address(worker)
            disputes = [d for d in disputes if d.worker == worker]
        if task_creator is not None:
            task_creator = normalize_address(task_creator)
            disputes = [d for d in disputes if d.task_creator == task_creator]
        sort_key = _order_key(order_by, ("created_at",), "dispute_id")
        return _paginate(disputes, sort_key, first, skip, order_direction)

    def list_bids(
        self,
        bidder: Optional[str] = None,
        task_id: Optional[str] = None,
        first: int = DEFAULT_PAGE_SIZE,
        skip: int = 0,
        order_by: str = "created_at",
        order_direction: Union[OrderDirection, str] = OrderDirection.DESC,
    ) -> list[Bid]:
        bids = self._store.values(EntityKind.BID)
        if bidder is not None:
            bidder = normalize_address(bidder)
            bids = [b for b in bids if b.bidder == bidder]
        if task_id is not None:
            bids = [b for b in bids if b.task_id == str(task_id)]
        sort_key = _order_key(order_by, ("created_at",), "bid_id")
        return _paginate(bids, sort_key, first, skip, order_direction)

    def list_admins(
        self,
        active: Optional[bool] = None,
        first: int = DEFAULT_PAGE_SIZE,
        skip: int = 0,
        order_by: str = "created_at",
        order_direction: Union[OrderDirection, str] = OrderDirection.DESC,
    ) -> list[Admin]:
        admins = self._store.values(EntityKind.ADMIN)
        if active is not None:
            admins = [a for a in admins if a.is_active == active]
        sort_key = _order_key(order_by, ("created_at",), "address")
        return _paginate(admins, sort_key, first, skip, order_direction)

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------

    def user_work_summary(self, address: str) -> UserWorkSummary:
        """Per-user roll-up of tasks, disputes and bids, newest first."""
        address = normalize_address(address)
        created: dict[TaskKind, list[Task]] = {kind: [] for kind in TaskKind}
        assigned: dict[TaskKind, list[Task]] = {kind: [] for kind in TaskKind}
        newest_first = _order_key("created_at", ("created_at",), "key")
        for task in sorted(self._store.values(EntityKind.TASK), key=newest_first, reverse=True):
            if task.creator == address:
                created[task.kind].append(task)
            if task.worker == address:
                assigned[task.kind].append(task)

        completed = {
            task.task_id: self.completed_milestones_count(task.task_id)
            for task in assigned[TaskKind.MILESTONE]
        }
        return UserWorkSummary(
            address=address,
            user=self.get_user(address),
            created_tasks=created,
            assigned_tasks=assigned,
            worker_disputes=self.list_disputes(worker=address, first=MAX_PAGE_SIZE),
            creator_disputes=self.list_disputes(task_creator=address, first=MAX_PAGE_SIZE),
            bids=self.list_bids(bidder=address, first=MAX_PAGE_SIZE),
            completed_milestones=completed,
        )
