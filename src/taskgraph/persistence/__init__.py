"""Persistence — entity store snapshots and the chain event archive."""

from taskgraph.persistence.entity_store import EntityKind, EntityStore
from taskgraph.persistence.event_log import EventLog

__all__ = ["EntityKind", "EntityStore", "EventLog"]
