"""Metadata store for share records.

The pipelines only talk to the ``FileStore`` interface. ``SqlFileStore`` is
the production backing (async SQLAlchemy); ``InMemoryFileStore`` keeps the
crypto, expiry and gating logic testable without a database.
"""
import copy
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, func, select, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dropzone.models.file_record import FileRecord


class DuplicateIdError(Exception):
    """Raised by ``insert`` when the share_id is already taken."""
    pass


@dataclass
class StoredFile:
    share_id: str
    original_name: str
    size: int
    mime_type: str
    storage_name: str
    uploaded_at: datetime
    expires_at: datetime
    batch_id: Optional[str] = None
    download_count: int = 0
    password_hash: Optional[str] = None
    iv: Optional[str] = None

    @property
    def is_protected(self) -> bool:
        return bool(self.password_hash)

    def is_expired(self, now: datetime | None = None) -> bool:
        """Servable iff now <= expires_at."""
        return (now or utcnow()) > self.expires_at

    @property
    def iv_bytes(self) -> bytes | None:
        return bytes.fromhex(self.iv) if self.iv else None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything we write is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class FileStore(ABC):
    """find / insert / update / delete / count-by-batch over share records."""

    @abstractmethod
    async def find(self, share_id: str) -> Optional[StoredFile]: ...

    @abstractmethod
    async def find_batch(self, batch_id: str) -> list[StoredFile]: ...

    @abstractmethod
    async def insert(self, record: StoredFile) -> None: ...

    @abstractmethod
    async def increment_downloads(self, share_id: str) -> int:
        """Bump download_count; returns the new value (0 if the record is gone)."""

    @abstractmethod
    async def delete(self, share_id: str) -> bool:
        """Remove a record. Returns False if there was nothing to remove."""

    @abstractmethod
    async def count_by_batch(self, batch_id: str) -> int: ...

    @abstractmethod
    async def find_expired(self, now: datetime) -> list[StoredFile]:
        """All records with expires_at < now."""

    @abstractmethod
    async def find_pending(self, now: datetime) -> list[StoredFile]:
        """All records that have not expired yet."""

    async def ping(self) -> None:
        """Raise if the backing store is unreachable."""
        return None


class InMemoryFileStore(FileStore):
    """Process-local store. Used by tests and for running without a database."""

    def __init__(self):
        self._records: dict[str, StoredFile] = {}

    async def find(self, share_id: str) -> Optional[StoredFile]:
        record = self._records.get(share_id)
        return copy.copy(record) if record else None

    async def find_batch(self, batch_id: str) -> list[StoredFile]:
        members = [r for r in self._records.values() if r.batch_id == batch_id]
        members.sort(key=lambda r: r.uploaded_at)
        return [copy.copy(r) for r in members]

    async def insert(self, record: StoredFile) -> None:
        if record.share_id in self._records:
            raise DuplicateIdError(record.share_id)
        self._records[record.share_id] = copy.copy(record)

    async def increment_downloads(self, share_id: str) -> int:
        record = self._records.get(share_id)
        if not record:
            return 0
        record.download_count += 1
        return record.download_count

    async def delete(self, share_id: str) -> bool:
        return self._records.pop(share_id, None) is not None

    async def count_by_batch(self, batch_id: str) -> int:
        return sum(1 for r in self._records.values() if r.batch_id == batch_id)

    async def find_expired(self, now: datetime) -> list[StoredFile]:
        return [copy.copy(r) for r in self._records.values() if r.expires_at < now]

    async def find_pending(self, now: datetime) -> list[StoredFile]:
        return [copy.copy(r) for r in self._records.values() if r.expires_at >= now]


def _to_stored(row: FileRecord) -> StoredFile:
    return StoredFile(
        share_id=row.share_id,
        batch_id=row.batch_id,
        original_name=row.original_name,
        size=row.size,
        mime_type=row.mime_type,
        storage_name=row.storage_name,
        uploaded_at=as_utc(row.uploaded_at),
        expires_at=as_utc(row.expires_at),
        download_count=row.download_count,
        password_hash=row.password_hash,
        iv=row.iv,
    )


class SqlFileStore(FileStore):
    """FileStore over the ``files`` table. Opens one session per call."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def ping(self) -> None:
        async with self.session_factory() as db:
            await db.execute(text("SELECT 1"))

    async def find(self, share_id: str) -> Optional[StoredFile]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(FileRecord).where(FileRecord.share_id == share_id)
            )
            row = result.scalar_one_or_none()
            return _to_stored(row) if row else None

    async def find_batch(self, batch_id: str) -> list[StoredFile]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(FileRecord)
                .where(FileRecord.batch_id == batch_id)
                .order_by(FileRecord.uploaded_at, FileRecord.id)
            )
            return [_to_stored(row) for row in result.scalars().all()]

    async def insert(self, record: StoredFile) -> None:
        row = FileRecord(
            share_id=record.share_id,
            batch_id=record.batch_id,
            original_name=record.original_name,
            size=record.size,
            mime_type=record.mime_type,
            storage_name=record.storage_name,
            uploaded_at=record.uploaded_at,
            expires_at=record.expires_at,
            download_count=record.download_count,
            password_hash=record.password_hash,
            iv=record.iv,
        )
        async with self.session_factory() as db:
            db.add(row)
            try:
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                raise DuplicateIdError(record.share_id) from e

    async def increment_downloads(self, share_id: str) -> int:
        async with self.session_factory() as db:
            await db.execute(
                update(FileRecord)
                .where(FileRecord.share_id == share_id)
                .values(download_count=FileRecord.download_count + 1)
            )
            await db.commit()
            result = await db.execute(
                select(FileRecord.download_count).where(FileRecord.share_id == share_id)
            )
            return result.scalar_one_or_none() or 0

    async def delete(self, share_id: str) -> bool:
        async with self.session_factory() as db:
            result = await db.execute(
                delete(FileRecord).where(FileRecord.share_id == share_id)
            )
            await db.commit()
            return result.rowcount > 0

    async def count_by_batch(self, batch_id: str) -> int:
        async with self.session_factory() as db:
            result = await db.execute(
                select(func.count()).select_from(FileRecord).where(FileRecord.batch_id == batch_id)
            )
            return result.scalar_one()

    async def find_expired(self, now: datetime) -> list[StoredFile]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(FileRecord).where(FileRecord.expires_at < now)
            )
            return [_to_stored(row) for row in result.scalars().all()]

    async def find_pending(self, now: datetime) -> list[StoredFile]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(FileRecord).where(FileRecord.expires_at >= now)
            )
            return [_to_stored(row) for row in result.scalars().all()]
