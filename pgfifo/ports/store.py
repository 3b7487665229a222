"""
TransactionalStore — the single port in pgfifo.

Any object satisfying this structural Protocol can back a Queue. No base class
or registration is required.

Transaction contract
--------------------
begin()
  - returns an async context manager yielding a Transaction
  - leaving the context without commit() or rollback() rolls back
    (this covers exceptions and task cancellation — the crash path)

claim_next()
  - selects the READY row with the lowest id, skipping rows locked by other
    open transactions, locks it for the lifetime of this transaction and sets
    it IN_PROGRESS (visible to others only after commit)
  - returns None when nothing is claimable; never blocks on other claimants

Every method raises StoreError on a store failure, and also when called after
the transaction was committed or rolled back.
"""

from __future__ import annotations

import dataclasses
from contextlib import AbstractAsyncContextManager
from typing import Protocol, runtime_checkable

from pgfifo.domain.models import ItemStatus


@dataclasses.dataclass(frozen=True)
class StoredRow:
    """A queue row as the store returns it; `item` is the raw JSON text."""

    id: int
    status: ItemStatus
    item: str
    error: str | None = None


@runtime_checkable
class Transaction(Protocol):
    """One open transaction against the queue table."""

    async def insert(self, item: str) -> int:
        """Insert a READY row with JSON text `item`; return the assigned id."""
        ...

    async def claim_next(self) -> StoredRow | None:
        """Lock and mark IN_PROGRESS the oldest claimable READY row."""
        ...

    async def mark_done(self, item_id: int) -> None:
        """Set a claimed row to DONE."""
        ...

    async def mark_failed(self, item_id: int, error: str) -> None:
        """Set a claimed row to FAILED and record `error`."""
        ...

    async def fetch(self, item_id: int) -> StoredRow | None:
        """Read a row without locking it. None if absent."""
        ...

    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...


@runtime_checkable
class TransactionalStore(Protocol):
    """
    Minimal interface required by the pgfifo core.

    Implementing adapters (built-in):
      - PostgresStore — asyncpg connection or pool, FOR UPDATE SKIP LOCKED
      - InMemoryStore — in-process row locks, for tests and benchmarks
    """

    def begin(self) -> AbstractAsyncContextManager[Transaction]:
        """Open a transaction; rolled back on exit unless already closed."""
        ...
