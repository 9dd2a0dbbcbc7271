"""
Tests for the ledger store's units of work.
"""

import asyncio

import pytest

from conftest import ADMIN, DONOR
from dts.domain.errors import CampaignNotFound, StorageUnavailable
from dts.infrastructure.database import ActorRecord
from dts.infrastructure.store import GLOBAL_KEY, KeyedLocks, LedgerStore
from dts.services import LedgerQueries, LifecycleEngine


@pytest.fixture
async def store(tmp_path):
    store = LedgerStore(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}", timeout_seconds=0.5)
    await store.open()
    yield store
    await store.close()


async def actor_exists(store, actor_id):
    async with store.reader() as ledger:
        return await ledger.session.get(ActorRecord, actor_id) is not None


async def test_commit_on_success(store):
    async with store.unit_of_work() as ledger:
        await ledger.ensure_actor(ADMIN)
    assert await actor_exists(store, ADMIN.id)


async def test_rollback_on_error(store):
    with pytest.raises(RuntimeError):
        async with store.unit_of_work() as ledger:
            await ledger.ensure_actor(ADMIN)
            raise RuntimeError("boom")
    assert not await actor_exists(store, ADMIN.id)


async def test_timeout_rolls_back_and_is_retryable(store):
    with pytest.raises(StorageUnavailable) as excinfo:
        async with store.unit_of_work() as ledger:
            await ledger.ensure_actor(ADMIN)
            await asyncio.sleep(2)
    assert excinfo.value.retryable
    assert not await actor_exists(store, ADMIN.id)


async def test_sqlite_writers_are_serialized_across_keys(store):
    order = []
    holder_ready = asyncio.Event()

    async def hold_lock():
        async with store.unit_of_work(1):
            holder_ready.set()
            await asyncio.sleep(0.1)
            order.append("first")

    holder = asyncio.create_task(hold_lock())
    await holder_ready.wait()
    async with store.unit_of_work(2) as ledger:
        order.append("second")
        await ledger.ensure_actor(ADMIN)
    await holder

    assert order == ["first", "second"]
    assert await actor_exists(store, ADMIN.id)


async def test_closed_store_is_unavailable(tmp_path):
    store = LedgerStore(f"sqlite+aiosqlite:///{tmp_path / 'closed.db'}")
    assert not store.is_open
    with pytest.raises(StorageUnavailable):
        async with store.unit_of_work():
            pass


def test_keyed_locks():
    per_key = KeyedLocks()
    assert per_key.get(1) is per_key.get(1)
    assert per_key.get(1) is not per_key.get(2)

    shared = KeyedLocks(serialize_all=True)
    assert shared.get(1) is shared.get(2) is shared.get(GLOBAL_KEY)


async def test_unknown_campaign_takes_no_writer_lock(tmp_path):
    store = LedgerStore(f"sqlite+aiosqlite:///{tmp_path / 'locks.db'}", serialize_writes=False)
    await store.open()
    try:
        with pytest.raises(CampaignNotFound):
            await LifecycleEngine(store).record_donation(DONOR, 999, "10.00")
        with pytest.raises(CampaignNotFound):
            await LedgerQueries(store).campaign_balance(999)
        assert 999 not in store._locks._locks
    finally:
        await store.close()
