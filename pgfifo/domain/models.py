"""
Domain models for pgfifo — backed by Pydantic v2.

QueueItem is the read-side view of one row of the queue table. The handler
outcomes (Success, Fail, Requeue) are tiny frozen models so that process()
can dispatch on them with structural pattern matching.

All models are frozen (immutable).
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, JsonValue


class ItemStatus(str, Enum):
    """Lifecycle states for a queued item."""

    READY = "ready"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """DONE and FAILED rows are never claimed or mutated again."""
        return self in (ItemStatus.DONE, ItemStatus.FAILED)


class QueueItem(BaseModel):
    """
    A single unit of work stored in the queue.

    id      — assigned by the store on insert; strictly increasing, defines FIFO order
    status  — current lifecycle state (advisory; the row lock is authoritative)
    payload — decoded JSON value, set at enqueue time and never mutated
    error   — failure message, present only when status is FAILED
    """

    model_config = ConfigDict(frozen=True)

    id: int
    status: ItemStatus = ItemStatus.READY
    payload: JsonValue = None
    error: str | None = None


# ---------------------------------------------------------------------- #
# Handler outcomes                                                        #
# ---------------------------------------------------------------------- #


class Success(BaseModel):
    """The item was handled: mark it DONE and commit."""

    model_config = ConfigDict(frozen=True)


class Fail(BaseModel):
    """The item can never succeed: mark it FAILED with `message` and commit."""

    model_config = ConfigDict(frozen=True)

    message: str

    def __init__(self, message: str) -> None:
        super().__init__(message=message)


class Requeue(BaseModel):
    """Leave the item READY for a later attempt. process() still returns normally."""

    model_config = ConfigDict(frozen=True)


Outcome = Success | Fail | Requeue
