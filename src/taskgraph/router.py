"""Event router — sends each chain event to exactly one projection handler.

Routing is two-level: the emitting contract's address selects the
projection (bidding, fixed-payment, milestone, dispute, user-info), and
the canonical event name selects the handler within it.

The router is also where the error policy lives:
- Unknown contracts and unknown event names are logged and dropped.
- ProjectionError (missing parent, invalid transition, duplicate
  creation, malformed event) is logged and the event skipped.
- StoreIOError propagates; the stream checkpoint is not advanced, so the
  event is retried on the next delivery.

Ordering: ``ingest`` applies events of one stream strictly after that
stream's checkpoint. Handlers touching the same task, dispute, admin or
user are serialized with a striped per-entity lock, so several streams
may be ingested from different threads.
"""

from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass
from typing import Iterable, Optional

from taskgraph.errors import ProjectionError
from taskgraph.identity import IdentityResolver, normalize_address
from taskgraph.models.events import ChainEvent, ContractKind
from taskgraph.persistence.entity_store import EntityStore
from taskgraph.projection.disputes import DisputeProjection
from taskgraph.projection.tasks import (
    BiddingTaskProjection,
    FixedPaymentTaskProjection,
    MilestoneTaskProjection,
)
from taskgraph.projection.users import UserProjection

logger = logging.getLogger(__name__)

ENTITY_LOCK_STRIPES = 64


class DispatchOutcome(str, enum.Enum):
    """What happened to one event."""
    APPLIED = "applied"
    SKIPPED = "skipped"
    DROPPED = "dropped"
    ALREADY_APPLIED = "already_applied"


@dataclass
class ReplayStats:
    """Outcome counts for a batch of ingested events."""
    applied: int = 0
    skipped: int = 0
    dropped: int = 0
    already_applied: int = 0

    def record(self, outcome: DispatchOutcome) -> None:
        setattr(self, outcome.value, getattr(self, outcome.value) + 1)

    @property
    def total(self) -> int:
        return self.applied + self.skipped + self.dropped + self.already_applied


class EventRouter:
    """Dispatches chain events to projections and tracks stream checkpoints.

    Usage:
        router = EventRouter(store, {
            "0xbidding...": ContractKind.BIDDING_TASK,
            "0xdispute...": ContractKind.DISPUTE_RESOLVER,
        })
        for event in source:
            router.ingest(event)
    """

    def __init__(
        self,
        store: EntityStore,
        contracts: dict[str, ContractKind],
        identities: Optional[IdentityResolver] = None,
    ) -> None:
        self._store = store
        self._identities = identities or IdentityResolver(store)
        self._contracts: dict[str, ContractKind] = {
            normalize_address(address): kind for address, kind in contracts.items()
        }
        self._projections = {
            ContractKind.BIDDING_TASK: BiddingTaskProjection(store, self._identities),
            ContractKind.FIXED_PAYMENT_TASK: FixedPaymentTaskProjection(store, self._identities),
            ContractKind.MILESTONE_TASK: MilestoneTaskProjection(store, self._identities),
            ContractKind.DISPUTE_RESOLVER: DisputeProjection(store, self._identities),
            ContractKind.USER_INFO: UserProjection(store, self._identities),
        }
        self._handlers = {
            kind: projection.handlers()
            for kind, projection in self._projections.items()
        }
        # Entity keys share a fixed pool of striped locks; stream locks are
        # bounded by the registered contracts.
        self._entity_locks = [threading.Lock() for _ in range(ENTITY_LOCK_STRIPES)]
        self._stream_locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @property
    def store(self) -> EntityStore:
        return self._store

    @property
    def contracts(self) -> dict[str, ContractKind]:
        return dict(self._contracts)

    def contract_kind(self, address: str) -> Optional[ContractKind]:
        return self._contracts.get(normalize_address(address))

    def register_contract(self, address: str, kind: ContractKind) -> None:
        self._contracts[normalize_address(address)] = kind

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def dispatch(self, event: ChainEvent) -> DispatchOutcome:
        """Apply one event through its handler, ignoring checkpoints."""
        kind = self.contract_kind(event.contract_address)
        if kind is None:
            logger.warning(
                "Dropping %s at %s: contract %s is not registered",
                event.event_name, event.event_id, event.contract_address,
            )
            return DispatchOutcome.DROPPED

        name = event.canonical_name
        handler = self._handlers[kind].get(name) if name is not None else None
        if handler is None:
            logger.warning(
                "Dropping %s at %s: no handler for %s contracts",
                event.event_name, event.event_id, kind.value,
            )
            return DispatchOutcome.DROPPED

        projection = self._projections[kind]
        try:
            with self._entity_lock(projection.entity_key(event)):
                handler(event)
        except ProjectionError as exc:
            logger.warning(
                "Skipped %s at %s (%s): %s",
                event.event_name, event.event_id, type(exc).__name__, exc,
            )
            return DispatchOutcome.SKIPPED

        logger.debug("Applied %s at %s", event.event_name, event.event_id)
        return DispatchOutcome.APPLIED

    def ingest(self, event: ChainEvent) -> DispatchOutcome:
        """Apply an event if it lies beyond its stream's checkpoint.

        The checkpoint advances for applied, skipped and dropped events
        alike; all three are final decisions about that log position.
        """
        stream = normalize_address(event.contract_address)
        with self._stream_lock(stream):
            checkpoint = self._store.checkpoint(stream)
            if checkpoint is not None and event.position <= checkpoint:
                logger.debug(
                    "Ignoring %s at %s: stream already at %s",
                    event.event_name, event.event_id, checkpoint,
                )
                return DispatchOutcome.ALREADY_APPLIED
            outcome = self.dispatch(event)
            self._store.set_checkpoint(stream, event.position)
            return outcome

    def replay(self, events: Iterable[ChainEvent]) -> ReplayStats:
        """Ingest a sequence of events in order and count the outcomes."""
        stats = ReplayStats()
        for event in events:
            stats.record(self.ingest(event))
        logger.info(
            "Replayed %d events: %d applied, %d skipped, %d dropped, %d already applied",
            stats.total, stats.applied, stats.skipped, stats.dropped, stats.already_applied,
        )
        return stats

    def rewind(self, stream: str, position: Optional[tuple[int, int]] = None) -> None:
        """Move a stream's checkpoint back (None clears it) for catch-up replay."""
        stream = normalize_address(stream)
        with self._stream_lock(stream):
            if position is None:
                self._store.clear_checkpoint(stream)
            else:
                self._store.set_checkpoint(stream, position)
        logger.info("Rewound stream %s to %s", stream, position)

    def _entity_lock(self, key: str) -> threading.Lock:
        return self._entity_locks[hash(key) % len(self._entity_locks)]

    def _stream_lock(self, stream: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._stream_locks.get(stream)
            if lock is None:
                lock = threading.Lock()
                self._stream_locks[stream] = lock
            return lock
