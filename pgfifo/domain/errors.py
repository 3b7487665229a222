"""
Exception hierarchy for pgfifo.

PgFifoError
├── SerializationError — payload could not be encoded or decoded
├── StoreError         — begin/query/commit/rollback failure (wraps original exception)
└── EmptyQueueError    — no READY item is claimable right now

Exceptions raised by a process() handler are never wrapped: they propagate
to the caller unchanged after the claim is rolled back.
"""

from __future__ import annotations


class PgFifoError(Exception):
    """Base class for all pgfifo exceptions."""


class SerializationError(PgFifoError):
    """
    Raised when a payload cannot be encoded to (or decoded from) JSON.

    Not retryable by the library — the caller must fix the payload.

    Attributes
    ----------
    cause : Exception
        The original exception from the encoder.
    """

    def __init__(self, message: str, cause: Exception) -> None:
        self.cause = cause
        super().__init__(f"{message}: {cause}")


class StoreError(PgFifoError):
    """
    Wraps an underlying failure of the transactional store.

    Covers connection loss, constraint violations and any failure to begin,
    query, commit or roll back. The library performs no internal retry.

    Attributes
    ----------
    cause : Exception
        The original exception from the store driver.
    """

    def __init__(self, message: str, cause: Exception) -> None:
        self.cause = cause
        super().__init__(f"{message}: {cause}")


class EmptyQueueError(PgFifoError):
    """
    Raised by process() when no READY item can be claimed.

    This is the normal empty-result signal, not a fault. Callers driving a
    polling loop are expected to back off and try again.
    """

    def __init__(self) -> None:
        super().__init__("No ready item to process")
