"""Retrieval pipeline: gated decryption for previews, landing pages and downloads.

Preview (``/content``) is token gated and never counts as a download.
Landing pages and downloads re-check the password on every request, since
there is no session; a verified landing page hands out view tokens for its
preview links and echoes the password into the download form.

Every entry point resolves the record first. An expired record is deleted on
the spot and reported as expired, never served.
"""
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional

from dropzone.errors import ExpiredError, ForbiddenError, NotFoundError
from dropzone.services import crypto
from dropzone.services.access_gate import derive_view_token, verify_password, verify_view_token
from dropzone.services.expiry import ExpiryManager
from dropzone.services.file_storage import FileStorageService
from dropzone.services.file_store import FileStore, StoredFile, utcnow
from dropzone.services.urls import preview_path

logger = logging.getLogger(__name__)

INCORRECT_PASSWORD = "Incorrect Password"


def is_previewable(mime_type: str) -> bool:
    return (
        mime_type.startswith(("image/", "video/", "audio/"))
        or mime_type == "application/pdf"
    )


def file_kind(mime_type: str) -> str:
    """Coarse type used by templates to pick an icon."""
    if mime_type.startswith("image/"):
        return "image"
    if mime_type.startswith("video/"):
        return "video"
    if mime_type.startswith("audio/"):
        return "audio"
    if mime_type == "application/pdf":
        return "pdf"
    return "file"


@dataclass
class LandingEntry:
    share_id: str
    original_name: str
    size: int
    mime_type: str
    kind: str
    preview_url: Optional[str] = None

    @property
    def size_mb(self) -> str:
        return f"{self.size / 1024 / 1024:.2f}"


@dataclass
class LandingView:
    """Structured data for the landing / password templates."""
    title: str
    submit_url: str
    show_password_form: bool = False
    error: Optional[str] = None
    status_code: int = 200
    entries: list[LandingEntry] = field(default_factory=list)
    # Echoed into hidden download form fields after a successful check
    password: Optional[str] = None
    is_batch: bool = False


@dataclass
class FileStream:
    record: StoredFile
    body: AsyncIterator[bytes]


class RetrievalPipeline:

    def __init__(
        self,
        store: FileStore,
        storage: FileStorageService,
        expiry: ExpiryManager,
        key: bytes,
    ):
        self.store = store
        self.storage = storage
        self.expiry = expiry
        self.key = key

    async def resolve(self, share_id: str) -> StoredFile:
        """Fetch a servable record, deleting it if it has expired."""
        record = await self.store.find(share_id)
        if not record:
            raise NotFoundError()
        if record.is_expired(utcnow()):
            await self.expiry.delete(share_id)
            raise ExpiredError()
        return record

    async def _open(self, record: StoredFile) -> AsyncIterator[bytes]:
        if not await self.storage.exists(record.storage_name):
            logger.warning(f"Blob missing for share {record.share_id}: {record.storage_name}")
            raise NotFoundError("File content missing")
        return crypto.decrypt_file(
            self.storage.blob_path(record.storage_name), record.iv_bytes, self.key
        )

    async def open_preview(self, share_id: str, token: Optional[str] = None) -> FileStream:
        """Inline content. Protected files need a valid view token."""
        record = await self.resolve(share_id)
        if record.is_protected:
            if not token:
                raise ForbiddenError("Protected Content")
            if not verify_view_token(token, share_id, record.password_hash, self.key):
                raise ForbiddenError("Invalid Token")
        return FileStream(record=record, body=await self._open(record))

    async def download(self, share_id: str, password: Optional[str] = None) -> FileStream:
        """Attachment download. Counts towards download_count."""
        record = await self.resolve(share_id)
        if record.is_protected and not verify_password(password, record.password_hash):
            raise ForbiddenError(INCORRECT_PASSWORD)
        body = await self._open(record)
        count = await self.store.increment_downloads(share_id)
        record.download_count = count
        logger.info(f"Download of {share_id} (count={count})")
        return FileStream(record=record, body=body)

    def _entry(self, record: StoredFile, verified: bool) -> LandingEntry:
        token = None
        if record.is_protected and verified:
            token = derive_view_token(record.share_id, record.password_hash, self.key)
        can_preview = (not record.is_protected or verified) and is_previewable(record.mime_type)
        return LandingEntry(
            share_id=record.share_id,
            original_name=record.original_name,
            size=record.size,
            mime_type=record.mime_type,
            kind=file_kind(record.mime_type),
            preview_url=preview_path(record.share_id, token) if can_preview else None,
        )

    def _gate(self, view: LandingView, password_hash: Optional[str], password: Optional[str]) -> bool:
        """Apply the password check to ``view``. Returns True if access is granted."""
        if not password_hash:
            return True
        if not password:
            view.show_password_form = True
            return False
        if not verify_password(password, password_hash):
            view.show_password_form = True
            view.error = INCORRECT_PASSWORD
            view.status_code = 403
            return False
        view.password = password
        return True

    async def landing(self, share_id: str, password: Optional[str] = None) -> LandingView:
        record = await self.resolve(share_id)
        view = LandingView(title=record.original_name, submit_url=f"/download/{share_id}")
        if self._gate(view, record.password_hash, password):
            view.entries = [self._entry(record, verified=True)]
        return view

    async def batch_landing(self, batch_id: str, password: Optional[str] = None) -> LandingView:
        """Landing page for every live file in a batch.

        The batch password is checked against the first member only; uploads
        always apply one hash to the whole batch.
        """
        live = await self.resolve_batch(batch_id)
        batch_hash = live[0].password_hash
        mismatched = [m.share_id for m in live if m.password_hash != batch_hash]
        if mismatched:
            # Not reachable through uploads; only hand-edited metadata gets here.
            logger.warning(
                f"Batch {batch_id} has members with a different password: {mismatched}; hiding them"
            )
            live = [m for m in live if m.password_hash == batch_hash]

        view = LandingView(
            title=f"{len(live)} Files",
            submit_url=f"/download/batch/{batch_id}",
            is_batch=True,
        )
        if self._gate(view, batch_hash, password):
            view.entries = [self._entry(member, verified=True) for member in live]
        return view

    async def file_info(self, share_id: str) -> StoredFile:
        return await self.resolve(share_id)

    async def resolve_batch(self, batch_id: str) -> list[StoredFile]:
        """Live members of a batch. Expired members are deleted on the way.

        Raises NotFoundError for an unknown batch and ExpiredError when no
        member is left.
        """
        members = await self.store.find_batch(batch_id)
        if not members:
            raise NotFoundError("Batch not found or expired")

        now = utcnow()
        live = []
        for member in members:
            if member.is_expired(now):
                await self.expiry.delete(member.share_id)
            else:
                live.append(member)
        if not live:
            raise ExpiredError("Batch has expired")
        return live
