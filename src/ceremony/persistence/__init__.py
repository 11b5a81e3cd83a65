"""Persistence — the chain repository and the append-only audit log."""

from ceremony.persistence.chain_store import ChainStore
from ceremony.persistence.event_log import EventKind, EventLog, EventRecord

__all__ = ["ChainStore", "EventKind", "EventLog", "EventRecord"]
