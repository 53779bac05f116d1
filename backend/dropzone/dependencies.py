"""Service wiring shared by the routes.

``build_services`` assembles the pipelines around one store and one blob
directory. The app keeps the result on ``app.state.services``; routes get it
through the ``get_services`` dependency.
"""
from dataclasses import dataclass

from fastapi import Request

from dropzone.config import Settings, settings as default_settings
from dropzone.services.crypto import load_master_key
from dropzone.services.expiry import ExpiryManager
from dropzone.services.file_storage import FileStorageService
from dropzone.services.file_store import FileStore
from dropzone.services.notifier import Notifier, build_notifier
from dropzone.services.retrieval import RetrievalPipeline
from dropzone.services.upload_pipeline import UploadPipeline
from dropzone.services.urls import resolve_base_url


@dataclass
class ShareServices:
    settings: Settings
    store: FileStore
    storage: FileStorageService
    expiry: ExpiryManager
    uploads: UploadPipeline
    retrieval: RetrievalPipeline
    notifier: Notifier

    def base_url(self, request: Request) -> str:
        return resolve_base_url(str(request.base_url), self.settings.HOST_URL)


def build_services(
    store: FileStore,
    settings: Settings | None = None,
    storage: FileStorageService | None = None,
    notifier: Notifier | None = None,
) -> ShareServices:
    settings = settings or default_settings
    key = load_master_key(settings.ENCRYPTION_KEY, strict=settings.STRICT_KEY)
    storage = storage or FileStorageService(settings.FILE_STORAGE_PATH, settings.UPLOAD_TMP_PATH)
    expiry = ExpiryManager(store, storage)
    return ShareServices(
        settings=settings,
        store=store,
        storage=storage,
        expiry=expiry,
        uploads=UploadPipeline(
            store,
            storage,
            expiry,
            key,
            ttl_hours=settings.FILE_TTL_HOURS,
            max_bytes=settings.MAX_UPLOAD_BYTES,
        ),
        retrieval=RetrievalPipeline(store, storage, expiry, key),
        notifier=notifier or build_notifier(settings),
    )


def get_services(request: Request) -> ShareServices:
    """FastAPI dependency returning the app's ShareServices."""
    return request.app.state.services
