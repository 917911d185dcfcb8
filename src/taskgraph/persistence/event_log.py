"""Append-only chain event archive — the replayable input of the projection.

Every event received from the chain can be appended here before it is
projected. Events are immutable once written. The archive serves as:
1. The input for rebuilding the projection from scratch (replay).
2. A record of exactly what the chain reported, for later audit.

Stored as JSONL, one event per line. The event hash is recomputed on
load, so a hand-edited line is caught instead of silently projected.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Iterator, Optional

from taskgraph.models.events import ChainEvent, EventName, compute_event_hash


class EventLog:
    """Append-only chain event log with optional file persistence.

    Events can only be appended, never modified or deleted. Event IDs are
    derived from (contract, block, log index), so the same log delivered
    twice by the chain client is recognised as a duplicate.
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._events: list[ChainEvent] = []
        self._storage_path = storage_path
        self._event_ids: set[str] = set()

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    def append(self, event: ChainEvent) -> None:
        """Append an event to the log.

        Raises ValueError if event_id is a duplicate (replay protection).
        """
        if event.event_id in self._event_ids:
            raise ValueError(f"Duplicate event ID: {event.event_id}")

        self._events.append(event)
        self._event_ids.add(event.event_id)

        if self._storage_path:
            self._append_to_file(event)

    def contains(self, event_id: str) -> bool:
        return event_id in self._event_ids

    def events(
        self,
        name: Optional[EventName] = None,
        contract_address: Optional[str] = None,
    ) -> list[ChainEvent]:
        """Return events in append order, optionally filtered."""
        result = list(self._events)
        if name is not None:
            result = [e for e in result if e.canonical_name == name]
        if contract_address is not None:
            address = contract_address.lower()
            result = [e for e in result if e.contract_address == address]
        return result

    def events_after(
        self,
        contract_address: str,
        position: tuple[int, int],
    ) -> list[ChainEvent]:
        """Return one stream's events strictly after a checkpoint."""
        return [
            e for e in self.events(contract_address=contract_address)
            if e.position > position
        ]

    def __iter__(self) -> Iterator[ChainEvent]:
        return iter(list(self._events))

    @property
    def count(self) -> int:
        return len(self._events)

    @property
    def last_event(self) -> Optional[ChainEvent]:
        return self._events[-1] if self._events else None

    def _append_to_file(self, event: ChainEvent) -> None:
        """Append a single event to the JSONL file."""
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)
        with self._storage_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(event.to_dict(), sort_keys=True, ensure_ascii=False) + "\n")

    def _load_from_file(self, path: Path) -> None:
        """Load events from a JSONL file with integrity verification.

        Fail-closed: rejects tampered records (hash mismatch) and
        duplicate event IDs.
        """
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                event = ChainEvent.from_dict(json.loads(line))

                if event.event_id in self._event_ids:
                    raise ValueError(
                        f"Duplicate event ID on recovery (line {line_num}): {event.event_id}"
                    )

                expected_hash = compute_event_hash(
                    event.contract_address,
                    event.event_name,
                    event.block_number,
                    event.log_index,
                    event.block_timestamp,
                    event.params,
                    event.transaction_hash,
                )
                if event.event_hash != expected_hash:
                    raise ValueError(
                        f"Integrity check failed (line {line_num}): event {event.event_id} "
                        f"stored hash {event.event_hash} != computed {expected_hash}"
                    )

                self._events.append(event)
                self._event_ids.add(event.event_id)
