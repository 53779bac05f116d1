"""Blob storage on local disk.

Encrypted blobs live under FILE_STORAGE_PATH with random names; plaintext
staging files for in-flight uploads live under UPLOAD_TMP_PATH and are removed
as soon as encryption finishes.
"""
import uuid
from pathlib import Path

import aiofiles.os

from dropzone.config import settings


class FileStorageService:
    """Resolves blob / temp paths and deletes them idempotently."""

    def __init__(self, base_path: str | None = None, tmp_path: str | None = None):
        self.base_path = Path(base_path or settings.FILE_STORAGE_PATH)
        self.tmp_path = Path(tmp_path or settings.UPLOAD_TMP_PATH)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.tmp_path.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def new_storage_name() -> str:
        """Random at-rest name; never derived from the original filename."""
        return f"{uuid.uuid4().hex}.enc"

    def blob_path(self, storage_name: str) -> str:
        # Only the final path component is honoured so a crafted record
        # cannot point outside the storage directory.
        return str(self.base_path / Path(storage_name).name)

    def new_temp_path(self) -> str:
        return str(self.tmp_path / f"{uuid.uuid4().hex}.part")

    async def exists(self, storage_name: str) -> bool:
        return await aiofiles.os.path.exists(self.blob_path(storage_name))

    async def delete(self, storage_name: str) -> bool:
        """Delete a blob. Returns False if it was already gone."""
        return await self.remove_path(self.blob_path(storage_name))

    async def remove_path(self, path: str) -> bool:
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            return False
        return True
