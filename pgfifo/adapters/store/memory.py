"""
InMemoryStore — in-process emulation of a locked, transactional queue table.

Faithfully simulates what the Postgres adapter gets from the database:
  - ids come from a sequence that is never rolled back (like BIGSERIAL)
  - inserts and updates stay private to their transaction until commit
  - claim_next() skips rows locked by other open transactions
    (FOR UPDATE SKIP LOCKED) instead of waiting on them
  - commit/rollback releases every lock held by the transaction

An asyncio.Lock serializes access to the shared table state.

Zero external dependencies. Safe for multiple concurrent coroutines in a
single event loop. NOT safe across processes or threads.
"""
from __future__ import annotations

import asyncio
import dataclasses
import itertools
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from pgfifo.domain.errors import StoreError
from pgfifo.domain.models import ItemStatus
from pgfifo.ports.store import StoredRow


@dataclasses.dataclass
class InMemoryStore:
    """
    In-process queue table.

    Parameters
    ----------
    initial_rows : optional committed rows to start from (useful for test setup)
    """

    initial_rows: dataclasses.InitVar[tuple[StoredRow, ...]] = ()

    def __post_init__(self, initial_rows: tuple[StoredRow, ...]) -> None:
        self._rows: dict[int, StoredRow] = {row.id: row for row in initial_rows}
        self._locks: dict[int, _MemoryTransaction] = {}
        self._ids = itertools.count(max(self._rows, default=0) + 1)
        self._lock: asyncio.Lock = asyncio.Lock()

    @asynccontextmanager
    async def begin(self) -> AsyncIterator[_MemoryTransaction]:
        """Open a transaction; rolled back on exit unless already closed."""
        tx = _MemoryTransaction(self)
        try:
            yield tx
        finally:
            if not tx.closed:
                await tx.rollback()

    def rows(self) -> tuple[StoredRow, ...]:
        """Committed snapshot of the table, ordered by id."""
        return tuple(self._rows[i] for i in sorted(self._rows))

    def locked_ids(self) -> frozenset[int]:
        """Ids currently locked by an open transaction."""
        return frozenset(self._locks)


class _MemoryTransaction:
    def __init__(self, store: InMemoryStore) -> None:
        self._store = store
        self._pending: dict[int, StoredRow] = {}
        self.closed = False

    def _visible(self, item_id: int) -> StoredRow | None:
        if item_id in self._pending:
            return self._pending[item_id]
        return self._store._rows.get(item_id)

    def _check_open(self) -> None:
        if self.closed:
            raise StoreError(
                "Transaction is closed", RuntimeError("commit or rollback already ran")
            )

    def _check_claimed(self, item_id: int) -> StoredRow:
        row = self._visible(item_id)
        if row is None or self._store._locks.get(item_id) is not self:
            raise StoreError(
                f"Item {item_id} is not claimed by this transaction",
                LookupError(item_id),
            )
        return row

    async def insert(self, item: str) -> int:
        self._check_open()
        async with self._store._lock:
            item_id = next(self._store._ids)
            self._pending[item_id] = StoredRow(item_id, ItemStatus.READY, item)
            # New rows are implicitly locked by their inserting transaction
            self._store._locks[item_id] = self
            return item_id

    async def claim_next(self) -> StoredRow | None:
        self._check_open()
        async with self._store._lock:
            locks = self._store._locks
            candidates = sorted(
                row_id
                for row_id in self._store._rows.keys() | self._pending.keys()
                if locks.get(row_id, self) is self
            )
            for row_id in candidates:
                row = self._visible(row_id)
                if row is not None and row.status == ItemStatus.READY:
                    locks[row_id] = self
                    claimed = dataclasses.replace(row, status=ItemStatus.IN_PROGRESS)
                    self._pending[row_id] = claimed
                    return claimed
            return None

    async def mark_done(self, item_id: int) -> None:
        self._check_open()
        async with self._store._lock:
            row = self._check_claimed(item_id)
            self._pending[item_id] = dataclasses.replace(
                row, status=ItemStatus.DONE, error=None
            )

    async def mark_failed(self, item_id: int, error: str) -> None:
        self._check_open()
        async with self._store._lock:
            row = self._check_claimed(item_id)
            self._pending[item_id] = dataclasses.replace(
                row, status=ItemStatus.FAILED, error=error
            )

    async def fetch(self, item_id: int) -> StoredRow | None:
        self._check_open()
        async with self._store._lock:
            return self._visible(item_id)

    async def commit(self) -> None:
        self._check_open()
        async with self._store._lock:
            self._store._rows.update(self._pending)
            self._release()

    async def rollback(self) -> None:
        self._check_open()
        async with self._store._lock:
            self._release()

    def _release(self) -> None:
        locks = self._store._locks
        for row_id in [i for i, owner in locks.items() if owner is self]:
            del locks[row_id]
        self._pending.clear()
        self.closed = True
