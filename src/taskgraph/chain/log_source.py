"""Web3 log source — pulls contract logs and decodes them into ChainEvents.

Logs are fetched for every registered contract in one ``eth_getLogs``
call per block range, decoded against the contract kind's event ABI, and
returned in chain order. Address arguments are validated and lowercased
here, so projections only ever see canonical store keys.

Tailing stays ``confirmations`` blocks behind the head. Reorgs deeper
than that are recovered by rewinding checkpoints and replaying; the
projections converge because every handler is idempotent.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Iterator, Optional

from web3 import Web3
from web3.exceptions import MismatchedABI

from taskgraph.chain.abi import EVENT_ABIS, event_names
from taskgraph.identity import normalize_address
from taskgraph.models.events import ChainEvent, ContractKind

logger = logging.getLogger(__name__)


def _hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    return str(value)


class _ContractDecoder:
    """Decodes raw logs of one deployed contract."""

    def __init__(self, w3: Web3, address: str, kind: ContractKind) -> None:
        self.address = address
        self.kind = kind
        abi = EVENT_ABIS[kind]
        self._contract = w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)
        self._names = event_names(kind)
        self._arg_types = {
            entry["name"]: {arg["name"]: arg["type"] for arg in entry["inputs"]}
            for entry in abi
        }

    def decode(self, log: Any) -> Optional[Any]:
        """Return web3 event data for the first matching ABI event, or None."""
        for name in self._names:
            try:
                return getattr(self._contract.events, name)().process_log(log)
            except MismatchedABI:
                continue
        return None

    def params(self, event_name: str, args: Any) -> dict[str, Any]:
        """Convert decoded args to plain JSON-safe values.

        Raises ValueError on an address argument that is not a valid
        address.
        """
        types = self._arg_types.get(event_name, {})
        params: dict[str, Any] = {}
        for arg, value in dict(args).items():
            abi_type = types.get(arg, "")
            if abi_type == "address":
                if not Web3.is_address(value):
                    raise ValueError(f"{event_name}.{arg} is not an address: {value!r}")
                params[arg] = normalize_address(value)
            elif abi_type.endswith("[]"):
                params[arg] = [_hex(item) if isinstance(item, (bytes, bytearray)) else item
                               for item in value]
            elif isinstance(value, (bytes, bytearray)):
                params[arg] = _hex(value)
            else:
                params[arg] = value
        return params


class Web3LogSource:
    """Fetches and decodes logs of the registered contracts.

    Usage:
        source = Web3LogSource(Web3(HTTPProvider(url)), router.contracts)
        for batch in source.tail(start_block):
            runner.submit_all(batch)
            runner.drain()
    """

    def __init__(
        self,
        w3: Web3,
        contracts: dict[str, ContractKind],
        confirmations: int = 12,
        batch_size: int = 2000,
        poll_interval: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if batch_size <= 0:
            raise ValueError(f"batch_size must be > 0, got {batch_size}")
        if confirmations < 0:
            raise ValueError(f"confirmations must be >= 0, got {confirmations}")
        self._w3 = w3
        self._decoders = {
            normalize_address(address): _ContractDecoder(w3, normalize_address(address), kind)
            for address, kind in contracts.items()
        }
        self._confirmations = confirmations
        self._batch_size = batch_size
        self._poll_interval = poll_interval
        self._sleep = sleep
        self._timestamps: dict[int, int] = {}

    def safe_head(self) -> int:
        """Highest block considered final enough to project."""
        return int(self._w3.eth.block_number) - self._confirmations

    def fetch(self, from_block: int, to_block: int) -> list[ChainEvent]:
        """Decode all logs of the registered contracts in [from_block, to_block]."""
        if to_block < from_block or not self._decoders:
            return []
        logs = self._w3.eth.get_logs({
            "fromBlock": from_block,
            "toBlock": to_block,
            "address": [Web3.to_checksum_address(a) for a in self._decoders],
        })

        events: list[ChainEvent] = []
        for log in logs:
            event = self._to_event(log)
            if event is not None:
                events.append(event)
        events.sort(key=lambda e: (e.block_number, e.log_index))
        self._timestamps.clear()
        logger.debug(
            "Fetched %d events from blocks %d-%d", len(events), from_block, to_block
        )
        return events

    def tail(self, start_block: int, max_polls: Optional[int] = None) -> Iterator[list[ChainEvent]]:
        """Yield event batches as confirmed blocks become available.

        Each poll either yields one batch (possibly empty) covering at most
        ``batch_size`` blocks, or sleeps ``poll_interval`` when there is no
        new confirmed block. ``max_polls`` bounds the loop; None runs forever.
        """
        next_block = start_block
        polls = 0
        while max_polls is None or polls < max_polls:
            polls += 1
            head = self.safe_head()
            if head < next_block:
                logger.debug("Caught up at block %d, sleeping %.1fs", head, self._poll_interval)
                self._sleep(self._poll_interval)
                continue
            to_block = min(head, next_block + self._batch_size - 1)
            batch = self.fetch(next_block, to_block)
            logger.info(
                "Blocks %d-%d: %d events (safe head %d)",
                next_block, to_block, len(batch), head,
            )
            yield batch
            next_block = to_block + 1

    def _to_event(self, log: Any) -> Optional[ChainEvent]:
        address = normalize_address(log["address"])
        decoder = self._decoders.get(address)
        if decoder is None:
            logger.warning("Ignoring log from unregistered contract %s", address)
            return None

        decoded = decoder.decode(log)
        if decoded is None:
            logger.warning(
                "Ignoring undecodable log %s:%s from %s contract %s",
                log["blockNumber"], log["logIndex"], decoder.kind.value, address,
            )
            return None

        try:
            params = decoder.params(decoded["event"], decoded["args"])
        except ValueError as exc:
            logger.warning(
                "Ignoring log %s:%s from %s: %s",
                log["blockNumber"], log["logIndex"], address, exc,
            )
            return None

        block_number = int(decoded["blockNumber"])
        return ChainEvent.create(
            contract_address=address,
            event_name=decoded["event"],
            block_number=block_number,
            log_index=int(decoded["logIndex"]),
            block_timestamp=self._block_timestamp(block_number),
            params=params,
            transaction_hash=_hex(decoded["transactionHash"]),
        )

    def _block_timestamp(self, block_number: int) -> int:
        if block_number not in self._timestamps:
            block = self._w3.eth.get_block(block_number)
            self._timestamps[block_number] = int(block["timestamp"])
        return self._timestamps[block_number]
