"""Indexer configuration, read from the environment (and an optional .env).

    TASKGRAPH_RPC_URL                     JSON-RPC endpoint (needed for tail)
    TASKGRAPH_BIDDING_TASK_ADDRESS        contract addresses; any subset
    TASKGRAPH_FIXED_PAYMENT_TASK_ADDRESS
    TASKGRAPH_MILESTONE_TASK_ADDRESS
    TASKGRAPH_DISPUTE_RESOLVER_ADDRESS
    TASKGRAPH_USER_INFO_ADDRESS
    TASKGRAPH_DATA_DIR                    snapshot + event archive (default: data)
    TASKGRAPH_START_BLOCK                 first block for a fresh tail (default: 0)
    TASKGRAPH_CONFIRMATIONS               blocks behind head (default: 12)
    TASKGRAPH_POLL_INTERVAL               seconds between polls (default: 5.0)
    TASKGRAPH_BATCH_SIZE                  blocks per eth_getLogs (default: 2000)
    TASKGRAPH_LOG_LEVEL                   default: INFO
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, TypeVar

from dotenv import load_dotenv

from taskgraph.identity import normalize_address
from taskgraph.models.events import ContractKind

ENV_PREFIX = "TASKGRAPH_"
SNAPSHOT_FILE = "state.json"
EVENT_LOG_FILE = "events.jsonl"

_ADDRESS_VARS: dict[ContractKind, str] = {
    ContractKind.BIDDING_TASK: "BIDDING_TASK_ADDRESS",
    ContractKind.FIXED_PAYMENT_TASK: "FIXED_PAYMENT_TASK_ADDRESS",
    ContractKind.MILESTONE_TASK: "MILESTONE_TASK_ADDRESS",
    ContractKind.DISPUTE_RESOLVER: "DISPUTE_RESOLVER_ADDRESS",
    ContractKind.USER_INFO: "USER_INFO_ADDRESS",
}

N = TypeVar("N", int, float)


def _getenv(name: str, default: str = "") -> str:
    return os.getenv(ENV_PREFIX + name, default).strip()


def _number(name: str, default: N, parse: Callable[[str], N], minimum: N) -> N:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        value = parse(raw)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name} must be a number, got {raw!r}") from None
    if value < minimum:
        raise ValueError(f"{ENV_PREFIX}{name} must be >= {minimum}, got {value}")
    return value


def parse_contract(entry: str) -> tuple[str, ContractKind]:
    """Parse an ADDRESS=KIND contract registration."""
    from web3 import Web3

    raw, sep, kind = entry.partition("=")
    if not sep:
        raise ValueError(f"contract must be ADDRESS=KIND, got {entry!r}")
    if not Web3.is_address(raw.strip()):
        raise ValueError(f"not a valid address: {raw!r}")
    return normalize_address(raw), ContractKind(kind.strip())


@dataclass(frozen=True)
class IndexerConfig:
    """Everything the CLI needs to build a store, router and log source."""
    rpc_url: str = ""
    contracts: dict[str, ContractKind] = field(default_factory=dict)
    data_dir: Path = Path("data")
    start_block: int = 0
    confirmations: int = 12
    poll_interval: float = 5.0
    batch_size: int = 2000
    log_level: str = "INFO"

    @property
    def snapshot_path(self) -> Path:
        return self.data_dir / SNAPSHOT_FILE

    @property
    def event_log_path(self) -> Path:
        return self.data_dir / EVENT_LOG_FILE

    @staticmethod
    def from_env(env_file: Optional[Path] = None) -> IndexerConfig:
        """Load configuration. Raises ValueError on any invalid value.

        Variables already set in the process environment take precedence
        over the .env file.
        """
        from web3 import Web3

        if env_file is not None:
            load_dotenv(env_file)
        else:
            load_dotenv()

        contracts: dict[str, ContractKind] = {}
        for kind, var in _ADDRESS_VARS.items():
            raw = _getenv(var)
            if not raw:
                continue
            if not Web3.is_address(raw):
                raise ValueError(f"{ENV_PREFIX}{var} is not a valid address: {raw!r}")
            address = normalize_address(raw)
            if address in contracts:
                raise ValueError(
                    f"{ENV_PREFIX}{var} repeats the {contracts[address].value} address {address}"
                )
            contracts[address] = kind

        return IndexerConfig(
            rpc_url=_getenv("RPC_URL"),
            contracts=contracts,
            data_dir=Path(_getenv("DATA_DIR") or "data"),
            start_block=_number("START_BLOCK", 0, int, 0),
            confirmations=_number("CONFIRMATIONS", 12, int, 0),
            poll_interval=_number("POLL_INTERVAL", 5.0, float, 0.0),
            batch_size=_number("BATCH_SIZE", 2000, int, 1),
            log_level=(_getenv("LOG_LEVEL") or "INFO").upper(),
        )
