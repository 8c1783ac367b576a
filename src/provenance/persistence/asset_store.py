"""Asset store — transactional key-value storage for ledger assets.

Assets are keyed by (type name, identifier). All writes go through a
``StoreTransaction``: they are staged, visible to reads within the same
transaction, and applied to the committed state in one step when the
transaction succeeds. A failed transaction leaves no trace.

Reads hand out copies. Mutating an entity returned by ``get`` changes
nothing until it is written back with ``update``.

This is a simple in-memory store suitable for single-node deployment and
tests. Ledger-backed deployments replace it while keeping the same
interface.
"""

from __future__ import annotations

import copy
from contextlib import contextmanager
from typing import Any, Iterable, Iterator, Optional

Key = tuple[str, str]


class StoreError(Exception):
    """Integrity violation at the storage layer (duplicate add, missing update)."""


def _key(entity: Any) -> Key:
    return entity.TYPE_NAME, entity.identifier


class AssetStore:
    """Committed asset state plus the transaction entry point.

    Usage:
        store = AssetStore()
        with store.transaction() as tx:
            if not tx.exists("Case", "C-1"):
                tx.add(case)
        # committed here, or discarded if the block raised
    """

    def __init__(self) -> None:
        self._assets: dict[Key, Any] = {}
        self._in_transaction = False

    @contextmanager
    def transaction(self) -> Iterator[StoreTransaction]:
        if self._in_transaction:
            raise StoreError("Nested transactions are not supported")
        self._in_transaction = True
        try:
            tx = StoreTransaction(self)
            yield tx
            tx.commit()
        finally:
            self._in_transaction = False

    # ------------------------------------------------------------------
    # Committed reads
    # ------------------------------------------------------------------

    def exists(self, type_name: str, identifier: str) -> bool:
        return (type_name, identifier) in self._assets

    def get(self, type_name: str, identifier: str) -> Optional[Any]:
        entity = self._assets.get((type_name, identifier))
        return copy.deepcopy(entity) if entity is not None else None

    def all(self, type_name: str) -> list[Any]:
        return [
            copy.deepcopy(e) for (t, _), e in self._assets.items()
            if t == type_name
        ]

    @property
    def count(self) -> int:
        return len(self._assets)

    def restore(self, entities: Iterable[Any]) -> None:
        """Load entities from a snapshot, bypassing transactions."""
        for entity in entities:
            self._assets[_key(entity)] = entity

    def _apply(self, staged: dict[Key, Any]) -> None:
        self._assets.update(staged)


class StoreTransaction:
    """A staged view over the committed state. One per transaction."""

    def __init__(self, store: AssetStore) -> None:
        self._store = store
        self._staged: dict[Key, Any] = {}
        self._closed = False

    def exists(self, type_name: str, identifier: str) -> bool:
        key = (type_name, identifier)
        return key in self._staged or key in self._store._assets

    def get(self, type_name: str, identifier: str) -> Optional[Any]:
        key = (type_name, identifier)
        entity = self._staged.get(key, self._store._assets.get(key))
        return copy.deepcopy(entity) if entity is not None else None

    def all(self, type_name: str) -> list[Any]:
        """All entities of a type, committed first, in insertion order."""
        merged = {
            k: e for k, e in self._store._assets.items() if k[0] == type_name
        }
        for k, e in self._staged.items():
            if k[0] == type_name:
                merged[k] = e
        return [copy.deepcopy(e) for e in merged.values()]

    def add(self, entity: Any) -> None:
        self._check_open()
        key = _key(entity)
        if self.exists(*key):
            raise StoreError(f"{key[0]} {key[1]} already exists")
        self._staged[key] = copy.deepcopy(entity)

    def update(self, entity: Any) -> None:
        self.update_all([entity])

    def update_all(self, entities: Iterable[Any]) -> None:
        """Stage updates for several entities as one batch.

        Every entity must already exist; if one does not, nothing is staged.
        """
        self._check_open()
        batch = list(entities)
        for entity in batch:
            key = _key(entity)
            if not self.exists(*key):
                raise StoreError(f"Cannot update missing {key[0]} {key[1]}")
        for entity in batch:
            self._staged[_key(entity)] = copy.deepcopy(entity)

    @property
    def pending_writes(self) -> int:
        return len(self._staged)

    def commit(self) -> None:
        self._check_open()
        self._store._apply(self._staged)
        self._closed = True

    def _check_open(self) -> None:
        if self._closed:
            raise StoreError("Transaction already committed")
