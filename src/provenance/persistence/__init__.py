"""Persistence layer — asset store, named queries, event log, snapshots."""

from provenance.persistence.asset_store import AssetStore, StoreError, StoreTransaction
from provenance.persistence.event_log import EventKind, EventLog, EventRecord
from provenance.persistence.queries import QueryService
from provenance.persistence.state_store import StateStore

__all__ = [
    "AssetStore",
    "StoreError",
    "StoreTransaction",
    "EventKind",
    "EventLog",
    "EventRecord",
    "QueryService",
    "StateStore",
]
