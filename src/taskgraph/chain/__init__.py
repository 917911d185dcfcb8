"""Chain access — event ABIs and the web3-backed log source."""

from taskgraph.chain.abi import EVENT_ABIS, event_names
from taskgraph.chain.log_source import Web3LogSource

__all__ = ["EVENT_ABIS", "Web3LogSource", "event_names"]
