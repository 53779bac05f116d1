"""Expiry manager: deletes shares once they pass expires_at.

Three paths lead here:
- lazily, from any read path that sees an expired record;
- the periodic sweep (startup + every SWEEP_INTERVAL_SECONDS), which is the
  durable backstop;
- one-shot timers per upload. Timers are an optimisation only: they vanish on
  restart and ``restore_schedule`` rebuilds them from expires_at.

Deletion removes the blob first, then the record, and is idempotent.
"""
import asyncio
import logging
import traceback
from datetime import datetime

from dropzone.services.file_storage import FileStorageService
from dropzone.services.file_store import FileStore, utcnow

logger = logging.getLogger(__name__)


class ExpiryManager:

    def __init__(self, store: FileStore, storage: FileStorageService):
        self.store = store
        self.storage = storage
        self._timers: dict[str, asyncio.Task] = {}

    async def delete(self, share_id: str) -> bool:
        """Remove blob + record. Returns False if the record was already gone."""
        record = await self.store.find(share_id)
        if not record:
            return False

        if await self.storage.delete(record.storage_name):
            logger.info(f"Deleted file: {record.storage_name}")
        else:
            logger.warning(f"File not found on disk, removing from DB: {record.storage_name}")

        removed = await self.store.delete(share_id)
        self._cancel_timer(share_id)
        return removed

    async def delete_if_expired(self, share_id: str, now: datetime | None = None) -> bool:
        record = await self.store.find(share_id)
        if not record or not record.is_expired(now):
            return False
        return await self.delete(share_id)

    async def sweep(self, now: datetime | None = None) -> int:
        """Delete every record with expires_at < now. Returns the count removed."""
        expired = await self.store.find_expired(now or utcnow())
        deleted = 0
        for record in expired:
            try:
                if await self.delete(record.share_id):
                    deleted += 1
            except Exception as e:
                logger.error(f"Error deleting file {record.share_id}: {e}")
        if deleted:
            logger.info(f"Cleaned up {deleted} expired file(s)")
        return deleted

    def schedule_deletion(self, share_id: str, at: datetime) -> None:
        """Fire a one-shot delete at ``at``. Replaces any existing timer."""
        self._cancel_timer(share_id)
        delay = max(0.0, (at - utcnow()).total_seconds())
        task = asyncio.create_task(self._delete_later(share_id, delay))
        self._timers[share_id] = task
        task.add_done_callback(lambda t, sid=share_id: self._forget(sid, t))

    async def restore_schedule(self) -> int:
        """Recreate timers for every pending record (after a restart)."""
        pending = await self.store.find_pending(utcnow())
        for record in pending:
            self.schedule_deletion(record.share_id, record.expires_at)
        if pending:
            logger.info(f"Restored deletion timers for {len(pending)} file(s)")
        return len(pending)

    async def _delete_later(self, share_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        try:
            await self.delete(share_id)
        except Exception as e:
            logger.error(f"Scheduled deletion of {share_id} failed: {e}")

    def _forget(self, share_id: str, task: asyncio.Task) -> None:
        if self._timers.get(share_id) is task:
            del self._timers[share_id]

    def _cancel_timer(self, share_id: str) -> None:
        task = self._timers.pop(share_id, None)
        if task and task is not asyncio.current_task():
            task.cancel()

    def cancel_all(self) -> None:
        for task in list(self._timers.values()):
            task.cancel()
        self._timers.clear()

    async def sweep_loop(self, interval_seconds: float) -> None:
        """Run ``sweep`` forever, every ``interval_seconds``."""
        logger.info("Expiry sweeper started")
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Cleanup error: {e}")
                logger.error(traceback.format_exc())
