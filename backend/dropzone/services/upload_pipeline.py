"""Upload pipeline: stage -> encrypt -> persist -> schedule -> link.

Multipart parts are first streamed to plaintext temp files (``stage_uploads``).
``UploadPipeline.upload`` then encrypts each temp file into its blob, removes
the temp file, writes the metadata record and schedules deletion.

Files are processed independently. If file 3 of 5 fails, files 1-2 stay
shared (no rollback across the batch); every remaining temp file is removed.
"""
import logging
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

import aiofiles
from fastapi import UploadFile

from dropzone.errors import PayloadTooLargeError, StorageError, ValidationError
from dropzone.services import crypto
from dropzone.services.access_gate import hash_password
from dropzone.services.expiry import ExpiryManager
from dropzone.services.file_storage import FileStorageService
from dropzone.services.file_store import DuplicateIdError, FileStore, StoredFile, utcnow
from dropzone.services.ids import new_batch_id, new_share_id
from dropzone.services.urls import batch_url, share_url

logger = logging.getLogger(__name__)

INSERT_ATTEMPTS = 3


@dataclass
class IncomingFile:
    """A staged plaintext upload waiting to be encrypted."""
    temp_path: str
    original_name: str
    size: int
    mime_type: str


@dataclass
class ShareResult:
    share_id: str
    share_url: str
    original_name: str
    size: int
    mime_type: str
    expires_at: datetime


@dataclass
class UploadResult:
    files: list[ShareResult] = field(default_factory=list)
    batch_id: Optional[str] = None
    batch_url: Optional[str] = None


async def _discard(storage: FileStorageService, paths) -> None:
    for path in paths:
        try:
            await storage.remove_path(path)
        except OSError as e:
            logger.error(f"Could not remove temp file {path}: {e}")


async def stage_uploads(
    uploads: list[UploadFile],
    storage: FileStorageService,
    max_bytes: int,
) -> list[IncomingFile]:
    """Stream multipart parts to temp files, enforcing the total size cap.

    On any failure (cap exceeded, I/O error, client abort) every temp file
    written so far is removed before the error propagates.
    """
    staged: list[IncomingFile] = []
    total = 0
    current_path = None
    try:
        for upload in uploads:
            current_path = storage.new_temp_path()
            size = 0
            async with aiofiles.open(current_path, "wb") as out:
                while True:
                    chunk = await upload.read(crypto.CHUNK_SIZE)
                    if not chunk:
                        break
                    size += len(chunk)
                    total += len(chunk)
                    if total > max_bytes:
                        raise PayloadTooLargeError()
                    await out.write(chunk)
            staged.append(IncomingFile(
                temp_path=current_path,
                original_name=upload.filename or "unnamed",
                size=size,
                mime_type=upload.content_type or "application/octet-stream",
            ))
            current_path = None
    except BaseException:
        leftovers = [f.temp_path for f in staged]
        if current_path:
            leftovers.append(current_path)
        await _discard(storage, leftovers)
        raise
    return staged


class UploadPipeline:
    """Turns staged uploads into encrypted, expiring shares."""

    def __init__(
        self,
        store: FileStore,
        storage: FileStorageService,
        expiry: ExpiryManager,
        key: bytes,
        ttl_hours: int = 24,
        max_bytes: int = 100 * 1024 * 1024,
    ):
        self.store = store
        self.storage = storage
        self.expiry = expiry
        self.key = key
        self.ttl = timedelta(hours=ttl_hours)
        self.max_bytes = max_bytes

    async def upload(
        self,
        files: list[IncomingFile],
        password: Optional[str] = None,
        base_url: str = "",
    ) -> UploadResult:
        if not files:
            raise ValidationError("No files uploaded")
        if sum(f.size for f in files) > self.max_bytes:
            await _discard(self.storage, [f.temp_path for f in files])
            raise PayloadTooLargeError()

        batch_id = new_batch_id() if len(files) > 1 else None
        # One password for the whole request
        password_hash = hash_password(password) if password else None

        result = UploadResult(batch_id=batch_id)
        if batch_id:
            result.batch_url = batch_url(base_url, batch_id)

        for index, incoming in enumerate(files):
            try:
                shared = await self._store_one(incoming, batch_id, password_hash, base_url)
            except BaseException as e:
                await _discard(self.storage, [f.temp_path for f in files[index:]])
                if isinstance(e, Exception) and not isinstance(e, StorageError):
                    logger.error(f"Upload error on {incoming.original_name!r}: {e}")
                    logger.error(traceback.format_exc())
                    raise StorageError() from e
                raise
            result.files.append(shared)

        logger.info(
            f"Uploaded {len(result.files)} file(s)"
            + (f" as batch {batch_id}" if batch_id else "")
        )
        return result

    async def _store_one(
        self,
        incoming: IncomingFile,
        batch_id: Optional[str],
        password_hash: Optional[str],
        base_url: str,
    ) -> ShareResult:
        iv = crypto.new_iv()
        storage_name = self.storage.new_storage_name()
        blob_path = self.storage.blob_path(storage_name)

        try:
            await crypto.encrypt_file(incoming.temp_path, blob_path, iv, self.key)
        except BaseException:
            await self.storage.remove_path(blob_path)
            raise
        finally:
            await self.storage.remove_path(incoming.temp_path)

        uploaded_at = utcnow()
        record = StoredFile(
            share_id="",
            batch_id=batch_id,
            original_name=incoming.original_name,
            size=incoming.size,
            mime_type=incoming.mime_type,
            storage_name=storage_name,
            uploaded_at=uploaded_at,
            expires_at=uploaded_at + self.ttl,
            password_hash=password_hash,
            iv=iv.hex(),
        )
        try:
            await self._insert_with_fresh_id(record)
        except BaseException:
            await self.storage.remove_path(blob_path)
            raise

        self.expiry.schedule_deletion(record.share_id, record.expires_at)

        return ShareResult(
            share_id=record.share_id,
            share_url=share_url(base_url, record.share_id),
            original_name=record.original_name,
            size=record.size,
            mime_type=record.mime_type,
            expires_at=record.expires_at,
        )

    async def _insert_with_fresh_id(self, record: StoredFile) -> None:
        for attempt in range(INSERT_ATTEMPTS):
            record.share_id = new_share_id()
            try:
                await self.store.insert(record)
                return
            except DuplicateIdError:
                logger.warning(
                    f"Share id collision on {record.share_id} "
                    f"(attempt {attempt + 1}/{INSERT_ATTEMPTS})"
                )
        raise StorageError("Could not allocate a unique share id")
