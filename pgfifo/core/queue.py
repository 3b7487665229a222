"""
Queue — FIFO work queue, one store transaction per operation.

enqueue(item)
  1. encode item to JSON (SerializationError before touching the store)
  2. begin, INSERT a READY row, commit
  3. return the store-assigned id

process(handler)
  1. begin
  2. claim the oldest READY row not locked by another transaction and mark it
     IN_PROGRESS (uncommitted); EmptyQueueError if there is none
  3. call handler(payload) — sync or async
  4. act on the outcome:

     Success()       → DONE, commit
     Fail(message)   → FAILED with error=message, commit
     Requeue()       → rollback (row stays READY), return normally
     raises          → rollback (row stays READY), re-raise unchanged

The store's row locks, not anything held in this process, keep two workers
off the same item. A crash before commit rolls back and requeues for free;
there is no retry counter, so an item that never succeeds is retried forever.
"""
from __future__ import annotations

import dataclasses
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import JsonValue

from pgfifo.core import codec
from pgfifo.domain.errors import EmptyQueueError
from pgfifo.domain.models import Fail, Outcome, QueueItem, Requeue, Success
from pgfifo.ports.store import StoredRow, TransactionalStore

logger = logging.getLogger(__name__)

Handler = Callable[[JsonValue], Outcome | Awaitable[Outcome]]


@dataclasses.dataclass
class Queue:
    """
    Stateless facade over a TransactionalStore.

    Safe to share between coroutines and to run in any number of processes
    against the same table; each call is an independent transaction. How far
    coroutines actually overlap depends on the store: PostgresStore over a
    Pool claims in parallel, over a single Connection one call at a time.
    """

    store: TransactionalStore

    async def enqueue(self, item: Any) -> int:
        """Add an item to the tail of the queue. Returns its id."""
        data = codec.encode(item)
        async with self.store.begin() as tx:
            item_id = await tx.insert(data)
            await tx.commit()
        logger.debug(f"Enqueued item {item_id}")
        return item_id

    async def process(self, handler: Handler) -> None:
        """
        Claim the next item and run `handler` on its payload.

        Raises EmptyQueueError without blocking when nothing is claimable.
        Exceptions from the handler are re-raised after the claim is rolled back.
        If that rollback fails too, the handler's exception is still the one
        raised, with the StoreError recorded in its __notes__.
        """
        async with self.store.begin() as tx:
            row = await tx.claim_next()
            if row is None:
                raise EmptyQueueError()
            item = _to_item(row)
            logger.debug(f"Claimed item {item.id}")

            try:
                outcome = handler(item.payload)
                if inspect.isawaitable(outcome):
                    outcome = await outcome
            except Exception:
                logger.warning(f"Handler raised on item {item.id}; returning it to the queue")
                raise

            match outcome:
                case Success():
                    await tx.mark_done(item.id)
                    await tx.commit()
                    logger.debug(f"Item {item.id} done")
                case Fail(message=message):
                    await tx.mark_failed(item.id, message)
                    await tx.commit()
                    logger.debug(f"Item {item.id} failed permanently: {message}")
                case Requeue():
                    await tx.rollback()
                    logger.debug(f"Item {item.id} requeued")
                case _:
                    raise TypeError(
                        f"Handler returned {outcome!r}; expected Success, Fail or Requeue"
                    )

    async def get(self, item_id: int) -> QueueItem | None:
        """Read-only view of one item, or None if the id does not exist."""
        async with self.store.begin() as tx:
            row = await tx.fetch(item_id)
            await tx.commit()
        return None if row is None else _to_item(row)


def _to_item(row: StoredRow) -> QueueItem:
    return QueueItem(
        id=row.id,
        status=row.status,
        payload=codec.decode(row.item),
        error=row.error,
    )


# ---------------------------------------------------------------------- #
# Function-style API                                                      #
# ---------------------------------------------------------------------- #


async def enqueue(store: TransactionalStore, item: Any) -> int:
    """Shorthand for Queue(store).enqueue(item)."""
    return await Queue(store).enqueue(item)


async def process(store: TransactionalStore, handler: Handler) -> None:
    """Shorthand for Queue(store).process(handler)."""
    await Queue(store).process(handler)
