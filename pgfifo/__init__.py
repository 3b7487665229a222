"""
pgfifo — FIFO work queue on a PostgreSQL table.

No broker process: enqueue() is an INSERT, and process() claims the oldest
ready row with SELECT ... FOR UPDATE SKIP LOCKED inside a transaction, runs
your handler, and commits or rolls back depending on the outcome. Row locks
give exactly one worker per item; a crashed worker's transaction is rolled
back by the database and the item becomes ready again.

Sized for roughly a thousand operations per second — not a high-throughput
broker.

Quick start
-----------
    import asyncio
    import asyncpg
    from pgfifo import Fail, PostgresStore, Queue, Success, install_schema

    async def main():
        pool = await asyncpg.create_pool("postgresql://localhost/app")
        await install_schema(pool)          # once, at startup

        q = Queue(PostgresStore(pool))
        await q.enqueue({"to": "user@example.com"})

        def send(payload):
            if "to" not in payload:
                return Fail("missing recipient")
            print("sending to", payload["to"])
            return Success()

        await q.process(send)

    asyncio.run(main())

Handler outcomes
----------------
  Success()      — mark DONE, commit
  Fail(message)  — mark FAILED with the message, commit (never retried)
  Requeue()      — roll back; item stays READY, process() returns normally
  raise ...      — roll back; item stays READY, the exception propagates

Store adapters
--------------
  - PostgresStore   — asyncpg Connection or Pool
  - InMemoryStore   — in-process row-lock emulation, for tests and examples

Custom stores only need to implement the TransactionalStore port.

Architecture
------------
Follows the Ports & Adapters pattern:
  domain/   — pure value types (QueueItem, ItemStatus, outcomes, errors)
  ports/    — Protocol interfaces (TransactionalStore, Transaction)
  core/     — business logic (Queue, payload codec)
  adapters/ — concrete store implementations
"""
from __future__ import annotations

from pgfifo.adapters.store.memory import InMemoryStore
from pgfifo.adapters.store.postgres import PostgresStore, install_schema
from pgfifo.core.queue import Handler, Queue, enqueue, process
from pgfifo.domain.errors import (
    EmptyQueueError,
    PgFifoError,
    SerializationError,
    StoreError,
)
from pgfifo.domain.models import (
    Fail,
    ItemStatus,
    Outcome,
    QueueItem,
    Requeue,
    Success,
)
from pgfifo.ports.store import StoredRow, Transaction, TransactionalStore

__all__ = [
    # Domain models
    "QueueItem",
    "ItemStatus",
    # Handler outcomes
    "Outcome",
    "Success",
    "Fail",
    "Requeue",
    # Errors
    "PgFifoError",
    "SerializationError",
    "StoreError",
    "EmptyQueueError",
    # Port (for typing custom adapters)
    "TransactionalStore",
    "Transaction",
    "StoredRow",
    # Queue API
    "Queue",
    "Handler",
    "enqueue",
    "process",
    # Built-in store adapters
    "InMemoryStore",
    "PostgresStore",
    "install_schema",
]
