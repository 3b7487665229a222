"""
PostgresStore — asyncpg-backed queue table with FOR UPDATE SKIP LOCKED claims.

Requires: pip install asyncpg

Accepts either
  - an asyncpg.Connection — each begin() opens a transaction on it, or a
    SAVEPOINT when the caller already opened one. A connection runs one
    transaction at a time, so begin() calls on the same store queue up
    behind each other; use a Pool for parallel workers, or
  - an asyncpg.Pool — each begin() checks out a connection for the lifetime
    of the transaction and returns it afterwards.

Claim query
-----------
    UPDATE queue SET status = 'in_progress'
    WHERE id = (
        SELECT id FROM queue
        WHERE status = 'ready'
        ORDER BY id
        LIMIT 1
        FOR UPDATE SKIP LOCKED
    )
    RETURNING id, status, item::text, error

The row lock taken by the subquery is held until commit/rollback; concurrent
claimants skip it instead of waiting, so every worker makes progress on a
distinct row. A rollback (explicit, on error, or because the connection died)
discards the IN_PROGRESS update and the row is READY again.

Payloads are bound as text and cast ($1::text::jsonb) and read back as
item::text, so the adapter works whether or not a jsonb codec is registered
on the connection.
"""
from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import logging
import re
from collections.abc import AsyncIterator, Iterator
from typing import Any

import asyncpg

from pgfifo.domain.errors import StoreError
from pgfifo.domain.models import ItemStatus
from pgfifo.ports.store import StoredRow

logger = logging.getLogger(__name__)

_DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS {table} (
    id     BIGSERIAL PRIMARY KEY,
    status TEXT NOT NULL DEFAULT 'ready'
           CHECK (status IN ('ready', 'in_progress', 'done', 'failed')),
    item   JSONB NOT NULL,
    -- Set if and only if the item failed permanently
    error  TEXT CHECK ((error IS NULL) = (status <> 'failed'))
);
CREATE INDEX IF NOT EXISTS {index} ON {table} (id) WHERE status = 'ready';
"""


def _check_table(table: str) -> str:
    if not _IDENTIFIER.match(table):
        raise ValueError(f"Invalid table name: {table!r}")
    return table


@contextlib.contextmanager
def _translate(action: str) -> Iterator[None]:
    """Re-raise driver failures as StoreError, keeping the original as cause."""
    try:
        yield
    except _DRIVER_ERRORS as exc:
        raise StoreError(f"Postgres {action} failed", exc) from exc


async def install_schema(conn: Any, table: str = "queue") -> None:
    """
    Create the queue table and its ready-index if they do not exist yet.

    Call once at application startup with an explicit connection (or pool);
    it is idempotent. Versioned migrations are left to the host application.
    """
    table = _check_table(table)
    index = f"{table.replace('.', '_')}_ready_idx"
    with _translate("schema install"):
        await conn.execute(_SCHEMA.format(table=table, index=index))
    logger.info(f"Installed queue schema for table {table}")


@dataclasses.dataclass
class PostgresStore:
    """
    Queue table in PostgreSQL.

    With a Pool every begin() gets its own connection and workers claim in
    parallel. With a single Connection, transactions are serialized by a
    per-store lock: a second begin() waits until the first one commits or
    rolls back instead of nesting inside it.

    Parameters
    ----------
    source : asyncpg.Connection or asyncpg.Pool
    table  : queue table name, optionally schema-qualified (default "queue")
    """

    source: Any
    table: str = "queue"

    def __post_init__(self) -> None:
        self._conn_lock = asyncio.Lock()
        t = _check_table(self.table)
        self._sql = _Statements(
            insert=f"INSERT INTO {t} (status, item) VALUES ('ready', $1::text::jsonb) RETURNING id",
            claim=(
                f"UPDATE {t} SET status = 'in_progress' "
                f"WHERE id = ("
                f"SELECT id FROM {t} WHERE status = 'ready' "
                f"ORDER BY id LIMIT 1 FOR UPDATE SKIP LOCKED"
                f") RETURNING id, status, item::text AS item, error"
            ),
            done=f"UPDATE {t} SET status = 'done', error = NULL WHERE id = $1",
            failed=f"UPDATE {t} SET status = 'failed', error = $2 WHERE id = $1",
            fetch=f"SELECT id, status, item::text AS item, error FROM {t} WHERE id = $1",
        )

    @contextlib.asynccontextmanager
    async def begin(self) -> AsyncIterator[_PostgresTransaction]:
        """Open a transaction; rolled back on exit unless already closed."""
        async with self._acquire() as conn:
            tr = conn.transaction()
            with _translate("begin"):
                await tr.start()
            tx = _PostgresTransaction(conn, tr, self._sql)
            try:
                yield tx
            except BaseException as exc:
                if not tx.closed:
                    try:
                        await tx.rollback()
                    except StoreError as rollback_exc:
                        # The in-flight exception wins; the rollback failure rides along
                        exc.add_note(f"pgfifo: {rollback_exc}")
                        logger.warning(f"Rollback failed while handling {exc!r}: {rollback_exc}")
                raise
            else:
                if not tx.closed:
                    await tx.rollback()

    def _acquire(self) -> contextlib.AbstractAsyncContextManager[Any]:
        if isinstance(self.source, asyncpg.Pool):
            return _checkout(self.source)
        return _exclusive(self.source, self._conn_lock)


@contextlib.asynccontextmanager
async def _exclusive(conn: Any, lock: asyncio.Lock) -> AsyncIterator[Any]:
    async with lock:
        yield conn


@contextlib.asynccontextmanager
async def _checkout(pool: Any) -> AsyncIterator[Any]:
    with _translate("connection checkout"):
        conn = await pool.acquire()
    try:
        yield conn
    finally:
        await pool.release(conn)


@dataclasses.dataclass(frozen=True)
class _Statements:
    insert: str
    claim: str
    done: str
    failed: str
    fetch: str


class _PostgresTransaction:
    def __init__(self, conn: Any, tr: Any, sql: _Statements) -> None:
        self._conn = conn
        self._tr = tr
        self._sql = sql
        self.closed = False

    def _check_open(self) -> None:
        if self.closed:
            raise StoreError(
                "Transaction is closed", RuntimeError("commit or rollback already ran")
            )

    async def insert(self, item: str) -> int:
        self._check_open()
        with _translate("insert"):
            return await self._conn.fetchval(self._sql.insert, item)

    async def claim_next(self) -> StoredRow | None:
        self._check_open()
        with _translate("claim"):
            record = await self._conn.fetchrow(self._sql.claim)
        return _to_row(record)

    async def mark_done(self, item_id: int) -> None:
        self._check_open()
        with _translate("update"):
            await self._conn.execute(self._sql.done, item_id)

    async def mark_failed(self, item_id: int, error: str) -> None:
        self._check_open()
        with _translate("update"):
            await self._conn.execute(self._sql.failed, item_id, error)

    async def fetch(self, item_id: int) -> StoredRow | None:
        self._check_open()
        with _translate("select"):
            record = await self._conn.fetchrow(self._sql.fetch, item_id)
        return _to_row(record)

    async def commit(self) -> None:
        self._check_open()
        self.closed = True
        with _translate("commit"):
            await self._tr.commit()

    async def rollback(self) -> None:
        self._check_open()
        self.closed = True
        with _translate("rollback"):
            await self._tr.rollback()


def _to_row(record: Any) -> StoredRow | None:
    if record is None:
        return None
    return StoredRow(
        id=record["id"],
        status=ItemStatus(record["status"]),
        item=record["item"],
        error=record["error"],
    )
