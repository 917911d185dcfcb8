"""Entity store — keyed, lock-guarded storage for projected entities.

The store is the only shared mutable resource in the engine. Every
operation takes one re-entrant lock and copies entities on the way in and
on the way out, so a reader can never observe half of a write and a
caller can never mutate stored state by accident.

Stream checkpoints live in the same store and are written in the same
snapshot as the entities, which keeps "what has been applied" and "what
it produced" in step across restarts.

Snapshot format (JSON):
    {
      "version": 1,
      "checkpoints": {"<stream>": [block_number, log_index], ...},
      "entities": {"<kind>": {"<key>": {...entity fields...}, ...}, ...}
    }
"""

from __future__ import annotations

import copy
import enum
import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Callable, Optional

from taskgraph.errors import MissingParentError, StoreIOError
from taskgraph.models.dispute import AdminVote, Dispute
from taskgraph.models.task import Bid, Milestone, Task
from taskgraph.models.user import Admin, User

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


class EntityKind(str, enum.Enum):
    """Entity collections held by the store."""
    USER = "user"
    ADMIN = "admin"
    TASK = "task"
    BID = "bid"
    MILESTONE = "milestone"
    DISPUTE = "dispute"
    ADMIN_VOTE = "admin_vote"


_DECODERS: dict[EntityKind, Callable[[dict[str, Any]], Any]] = {
    EntityKind.USER: User.from_dict,
    EntityKind.ADMIN: Admin.from_dict,
    EntityKind.TASK: Task.from_dict,
    EntityKind.BID: Bid.from_dict,
    EntityKind.MILESTONE: Milestone.from_dict,
    EntityKind.DISPUTE: Dispute.from_dict,
    EntityKind.ADMIN_VOTE: AdminVote.from_dict,
}


class EntityStore:
    """In-memory entity store with optional JSON snapshot persistence.

    Usage:
        store = EntityStore(storage_path=Path("data/state.json"))
        store.put(EntityKind.TASK, "bidding:1", task)
        store.append(EntityKind.TASK, "bidding:1", "bids", "1-0xabc")
        store.set_checkpoint("0xcontract", (120, 3))
        store.flush()
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._lock = threading.RLock()
        self._entities: dict[EntityKind, dict[str, Any]] = {
            kind: {} for kind in EntityKind
        }
        self._checkpoints: dict[str, tuple[int, int]] = {}
        self._storage_path = storage_path

        if storage_path is not None and storage_path.exists():
            self._load_from_file(storage_path)

    @property
    def storage_path(self) -> Optional[Path]:
        return self._storage_path

    # ------------------------------------------------------------------
    # Entity operations
    # ------------------------------------------------------------------

    def get(self, kind: EntityKind, entity_id: str) -> Optional[Any]:
        """Return a copy of the stored entity, or None if absent."""
        with self._lock:
            entity = self._entities[kind].get(entity_id)
            return copy.deepcopy(entity) if entity is not None else None

    def put(self, kind: EntityKind, entity_id: str, entity: Any) -> None:
        """Full upsert. The last put for a key wins."""
        with self._lock:
            self._entities[kind][entity_id] = copy.deepcopy(entity)

    def setdefault(self, kind: EntityKind, entity_id: str, entity: Any) -> Any:
        """Insert entity only if the key is free; return the stored value."""
        with self._lock:
            stored = self._entities[kind].get(entity_id)
            if stored is None:
                stored = copy.deepcopy(entity)
                self._entities[kind][entity_id] = stored
            return copy.deepcopy(stored)

    def append(
        self,
        kind: EntityKind,
        entity_id: str,
        field_name: str,
        child_id: str,
    ) -> bool:
        """Append child_id to a list field unless it is already present.

        Returns True when the list changed. Raises MissingParentError if
        the parent entity does not exist.
        """
        with self._lock:
            entity = self._entities[kind].get(entity_id)
            if entity is None:
                raise MissingParentError(
                    f"Cannot append to missing {kind.value} {entity_id}",
                    entity_kind=kind.value,
                    entity_id=entity_id,
                )
            children: list[str] = getattr(entity, field_name)
            if child_id in children:
                return False
            children.append(child_id)
            return True

    def contains(self, kind: EntityKind, entity_id: str) -> bool:
        with self._lock:
            return entity_id in self._entities[kind]

    def values(self, kind: EntityKind) -> list[Any]:
        """Return copies of every entity of one kind, in insertion order."""
        with self._lock:
            return copy.deepcopy(list(self._entities[kind].values()))

    def count(self, kind: EntityKind) -> int:
        with self._lock:
            return len(self._entities[kind])

    def counts(self) -> dict[str, int]:
        with self._lock:
            return {kind.value: len(items) for kind, items in self._entities.items()}

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    def checkpoint(self, stream: str) -> Optional[tuple[int, int]]:
        """Last applied (block_number, log_index) for a stream."""
        with self._lock:
            return self._checkpoints.get(stream)

    def set_checkpoint(self, stream: str, position: tuple[int, int]) -> None:
        with self._lock:
            self._checkpoints[stream] = (int(position[0]), int(position[1]))

    def clear_checkpoint(self, stream: str) -> None:
        with self._lock:
            self._checkpoints.pop(stream, None)

    def checkpoints(self) -> dict[str, tuple[int, int]]:
        with self._lock:
            return dict(self._checkpoints)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def snapshot(self) -> dict[str, Any]:
        """Serialise entities and checkpoints as one consistent document."""
        with self._lock:
            return {
                "version": SNAPSHOT_VERSION,
                "checkpoints": {
                    stream: list(position)
                    for stream, position in sorted(self._checkpoints.items())
                },
                "entities": {
                    kind.value: {
                        key: entity.to_dict() for key, entity in items.items()
                    }
                    for kind, items in self._entities.items()
                },
            }

    def flush(self) -> None:
        """Atomically replace the snapshot file with the current state.

        No-op for a purely in-memory store. Raises StoreIOError on any
        filesystem failure.
        """
        if self._storage_path is None:
            return
        document = self.snapshot()
        path = self._storage_path
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent)
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(document, f, sort_keys=True, ensure_ascii=False)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as exc:
            raise StoreIOError(f"Failed to write snapshot {path}: {exc}") from exc
        logger.debug("Snapshot written to %s", path)

    def _load_from_file(self, path: Path) -> None:
        """Load a snapshot. Fail-closed on unreadable or unknown formats."""
        try:
            with path.open("r", encoding="utf-8") as f:
                document = json.load(f)
        except (OSError, ValueError) as exc:
            raise StoreIOError(f"Failed to read snapshot {path}: {exc}") from exc

        version = document.get("version")
        if version != SNAPSHOT_VERSION:
            raise StoreIOError(
                f"Unsupported snapshot version in {path}: {version!r}"
            )

        try:
            for stream, position in document.get("checkpoints", {}).items():
                self._checkpoints[stream] = (int(position[0]), int(position[1]))
            for kind_value, items in document.get("entities", {}).items():
                kind = EntityKind(kind_value)
                decode = _DECODERS[kind]
                self._entities[kind] = {
                    key: decode(data) for key, data in items.items()
                }
        except (KeyError, TypeError, ValueError) as exc:
            raise StoreIOError(f"Corrupt snapshot {path}: {exc}") from exc

        logger.info(
            "Loaded snapshot %s (%d streams checkpointed)",
            path, len(self._checkpoints),
        )
