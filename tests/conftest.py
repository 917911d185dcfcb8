"""Shared fixtures: an in-memory store, a router over it, and an event factory."""

from __future__ import annotations

from typing import Any, Optional

import pytest

from taskgraph.models.events import ChainEvent, ContractKind
from taskgraph.persistence.entity_store import EntityStore
from taskgraph.router import EventRouter


CONTRACT_ADDRESSES: dict[ContractKind, str] = {
    ContractKind.BIDDING_TASK: "0x" + "b1" * 20,
    ContractKind.FIXED_PAYMENT_TASK: "0x" + "f1" * 20,
    ContractKind.MILESTONE_TASK: "0x" + "a1" * 20,
    ContractKind.DISPUTE_RESOLVER: "0x" + "d1" * 20,
    ContractKind.USER_INFO: "0x" + "e1" * 20,
}

BASE_TIMESTAMP = 1_700_000_000


class EventFactory:
    """Builds ChainEvents in chain order: each call lands one block later."""

    def __init__(self) -> None:
        self._block = 100

    def address(self, kind: ContractKind) -> str:
        return CONTRACT_ADDRESSES[kind]

    def __call__(
        self,
        kind: ContractKind,
        event_name: str,
        block: Optional[int] = None,
        log_index: int = 0,
        timestamp: Optional[int] = None,
        **params: Any,
    ) -> ChainEvent:
        if block is None:
            self._block += 1
            block = self._block
        if timestamp is None:
            timestamp = BASE_TIMESTAMP + block * 12
        return ChainEvent.create(
            contract_address=CONTRACT_ADDRESSES[kind],
            event_name=event_name,
            block_number=block,
            log_index=log_index,
            block_timestamp=timestamp,
            params=params,
            transaction_hash="0x" + f"{block:064x}",
        )


@pytest.fixture
def store() -> EntityStore:
    return EntityStore()


@pytest.fixture
def router(store: EntityStore) -> EventRouter:
    contracts = {address: kind for kind, address in CONTRACT_ADDRESSES.items()}
    return EventRouter(store, contracts)


@pytest.fixture
def make_event() -> EventFactory:
    return EventFactory()
