import asyncio

import pytest

from pgfifo.adapters.store.memory import InMemoryStore
from pgfifo.domain.errors import StoreError
from pgfifo.domain.models import ItemStatus
from pgfifo.ports.store import StoredRow, TransactionalStore


def test_satisfies_port():
    assert isinstance(InMemoryStore(), TransactionalStore)


async def test_insert_assigns_increasing_ids():
    store = InMemoryStore()
    async with store.begin() as tx:
        first = await tx.insert('{"a": 1}')
        second = await tx.insert('{"a": 2}')
        await tx.commit()
    assert (first, second) == (1, 2)
    assert [r.status for r in store.rows()] == [ItemStatus.READY, ItemStatus.READY]


async def test_uncommitted_insert_is_invisible_to_others():
    store = InMemoryStore()
    async with store.begin() as writer:
        item_id = await writer.insert('"x"')
        async with store.begin() as reader:
            assert await reader.fetch(item_id) is None
            assert await reader.claim_next() is None
        assert await writer.fetch(item_id) is not None
        await writer.commit()
    assert [r.id for r in store.rows()] == [item_id]


async def test_rolled_back_insert_burns_its_id():
    store = InMemoryStore()
    async with store.begin() as tx:
        await tx.insert('"lost"')
        await tx.rollback()
    async with store.begin() as tx:
        item_id = await tx.insert('"kept"')
        await tx.commit()
    assert item_id == 2
    assert [r.id for r in store.rows()] == [2]


async def test_claim_marks_in_progress_only_inside_transaction():
    store = InMemoryStore((StoredRow(1, ItemStatus.READY, "1"),))
    async with store.begin() as tx:
        row = await tx.claim_next()
        assert row is not None
        assert row.status == ItemStatus.IN_PROGRESS
        assert store.rows()[0].status == ItemStatus.READY
        assert store.locked_ids() == {1}


async def test_claim_skips_rows_locked_by_others():
    store = InMemoryStore(
        (StoredRow(1, ItemStatus.READY, "1"), StoredRow(2, ItemStatus.READY, "2"))
    )
    async with store.begin() as a, store.begin() as b:
        row_a = await a.claim_next()
        row_b = await b.claim_next()
        assert row_a is not None and row_b is not None
        assert (row_a.id, row_b.id) == (1, 2)
        async with store.begin() as c:
            assert await c.claim_next() is None


async def test_claim_skips_terminal_rows():
    store = InMemoryStore(
        (
            StoredRow(1, ItemStatus.DONE, "1"),
            StoredRow(2, ItemStatus.FAILED, "2", error="boom"),
            StoredRow(3, ItemStatus.READY, "3"),
        )
    )
    async with store.begin() as tx:
        row = await tx.claim_next()
    assert row is not None
    assert row.id == 3


async def test_commit_applies_update_and_releases_lock():
    store = InMemoryStore((StoredRow(1, ItemStatus.READY, "1"),))
    async with store.begin() as tx:
        await tx.claim_next()
        await tx.mark_failed(1, "boom")
        await tx.commit()
    [row] = store.rows()
    assert row.status == ItemStatus.FAILED
    assert row.error == "boom"
    assert store.locked_ids() == frozenset()


async def test_leaving_context_rolls_back():
    store = InMemoryStore((StoredRow(1, ItemStatus.READY, "1"),))
    with pytest.raises(RuntimeError):
        async with store.begin() as tx:
            await tx.claim_next()
            await tx.mark_done(1)
            raise RuntimeError("crash")
    assert store.rows()[0].status == ItemStatus.READY
    assert store.locked_ids() == frozenset()


async def test_mark_unclaimed_row_raises():
    store = InMemoryStore((StoredRow(1, ItemStatus.READY, "1"),))
    async with store.begin() as tx:
        with pytest.raises(StoreError):
            await tx.mark_done(1)


async def test_closed_transaction_rejects_calls():
    store = InMemoryStore()
    async with store.begin() as tx:
        await tx.commit()
        with pytest.raises(StoreError):
            await tx.insert('"late"')
        with pytest.raises(StoreError):
            await tx.rollback()


async def test_concurrent_claims_get_distinct_rows():
    store = InMemoryStore(
        tuple(StoredRow(i, ItemStatus.READY, str(i)) for i in range(1, 6))
    )
    release = asyncio.Event()

    async def claim() -> int | None:
        async with store.begin() as tx:
            row = await tx.claim_next()
            await release.wait()
            await tx.commit()
        return None if row is None else row.id

    tasks = [asyncio.create_task(claim()) for _ in range(5)]
    await asyncio.sleep(0)
    release.set()
    ids = await asyncio.gather(*tasks)
    assert sorted(ids) == [1, 2, 3, 4, 5]
