"""
Unit tests for the expiry manager: idempotent deletion, sweeps and timers.
"""
import asyncio
import logging
from datetime import timedelta

import pytest

from dropzone.services.expiry import ExpiryManager
from dropzone.services.file_store import StoredFile, utcnow


async def _seed(store, storage, share_id, expires_in=timedelta(hours=24), write_blob=True):
    now = utcnow()
    record = StoredFile(
        share_id=share_id,
        original_name=f"{share_id}.txt",
        size=3,
        mime_type="text/plain",
        storage_name=storage.new_storage_name(),
        uploaded_at=now - timedelta(hours=24) + expires_in,
        expires_at=now + expires_in,
        iv="00" * 16,
    )
    if write_blob:
        with open(storage.blob_path(record.storage_name), "wb") as f:
            f.write(b"enc")
    await store.insert(record)
    return record


@pytest.fixture
def expiry(store, storage):
    manager = ExpiryManager(store, storage)
    yield manager
    manager.cancel_all()


class TestDelete:

    async def test_removes_blob_then_record(self, expiry, store, storage):
        record = await _seed(store, storage, "aaa")

        assert await expiry.delete("aaa") is True

        assert await store.find("aaa") is None
        assert not await storage.exists(record.storage_name)

    async def test_idempotent(self, expiry, store, storage):
        await _seed(store, storage, "aaa")

        assert await expiry.delete("aaa") is True
        assert await expiry.delete("aaa") is False
        assert await expiry.delete("never-existed") is False

    async def test_missing_blob_still_removes_record(self, expiry, store, storage, caplog):
        await _seed(store, storage, "aaa", write_blob=False)

        with caplog.at_level(logging.WARNING, logger="dropzone.services.expiry"):
            assert await expiry.delete("aaa") is True

        assert await store.find("aaa") is None
        assert "not found on disk" in caplog.text


class TestSweep:

    async def test_deletes_only_expired(self, expiry, store, storage):
        await _seed(store, storage, "old1", expires_in=timedelta(minutes=-5))
        await _seed(store, storage, "old2", expires_in=timedelta(hours=-3))
        await _seed(store, storage, "live", expires_in=timedelta(hours=1))

        assert await expiry.sweep() == 2

        assert await store.find("old1") is None
        assert await store.find("old2") is None
        assert await store.find("live") is not None

    async def test_sweep_with_nothing_expired(self, expiry, store, storage):
        await _seed(store, storage, "live")
        assert await expiry.sweep() == 0

    async def test_delete_if_expired(self, expiry, store, storage):
        await _seed(store, storage, "old", expires_in=timedelta(seconds=-1))
        await _seed(store, storage, "live")

        assert await expiry.delete_if_expired("live") is False
        assert await expiry.delete_if_expired("old") is True
        assert await expiry.delete_if_expired("old") is False


class TestTimers:

    async def test_timer_in_the_past_fires_immediately(self, expiry, store, storage):
        record = await _seed(store, storage, "aaa")

        expiry.schedule_deletion("aaa", utcnow() - timedelta(seconds=1))
        await asyncio.sleep(0.05)

        assert await store.find("aaa") is None
        assert not await storage.exists(record.storage_name)
        assert len(expiry._timers) == 0

    async def test_rescheduling_replaces_timer(self, expiry, store, storage):
        await _seed(store, storage, "aaa")

        expiry.schedule_deletion("aaa", utcnow() + timedelta(hours=1))
        expiry.schedule_deletion("aaa", utcnow() + timedelta(hours=2))

        assert len(expiry._timers) == 1

    async def test_restore_schedule_covers_pending_records(self, expiry, store, storage):
        await _seed(store, storage, "a")
        await _seed(store, storage, "b")
        await _seed(store, storage, "old", expires_in=timedelta(hours=-1))

        assert await expiry.restore_schedule() == 2
        assert len(expiry._timers) == 2

    async def test_manual_delete_cancels_timer(self, expiry, store, storage):
        await _seed(store, storage, "aaa")
        expiry.schedule_deletion("aaa", utcnow() + timedelta(hours=1))

        await expiry.delete("aaa")

        assert len(expiry._timers) == 0


class TestSweepLoop:

    async def test_loop_sweeps_periodically(self, expiry, store, storage):
        await _seed(store, storage, "old", expires_in=timedelta(hours=-1))

        task = asyncio.create_task(expiry.sweep_loop(0.01))
        await asyncio.sleep(0.1)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

        assert await store.find("old") is None
