"""
Shared pytest fixtures for the DropZone backend test suite.

Core tests run against InMemoryFileStore and a tmp_path blob directory;
API tests drive the FastAPI app through httpx's ASGI transport.
"""
import pytest
import httpx

from dropzone.config import Settings
from dropzone.dependencies import build_services
from dropzone.main import create_app
from dropzone.services.file_storage import FileStorageService
from dropzone.services.file_store import InMemoryFileStore
from dropzone.services.notifier import LoggingNotifier, ShareEmail
from dropzone.services.upload_pipeline import IncomingFile

TEST_KEY = bytes(range(32))


@pytest.fixture
def key() -> bytes:
    """A valid 32-byte master key."""
    return TEST_KEY


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        ENCRYPTION_KEY=TEST_KEY.hex(),
        FILE_STORAGE_PATH=str(tmp_path / "blobs"),
        UPLOAD_TMP_PATH=str(tmp_path / "tmp"),
        HOST_URL="",
        SMTP_USER="",
        SMTP_PASS="",
    )


@pytest.fixture
def store() -> InMemoryFileStore:
    return InMemoryFileStore()


@pytest.fixture
def storage(settings) -> FileStorageService:
    return FileStorageService(settings.FILE_STORAGE_PATH, settings.UPLOAD_TMP_PATH)


class RecordingNotifier(LoggingNotifier):
    """LoggingNotifier that also keeps every (email, html) it was handed."""

    def __init__(self):
        self.sent: list[tuple[ShareEmail, str]] = []

    async def send(self, email: ShareEmail, html: str) -> str:
        self.sent.append((email, html))
        return await super().send(email, html)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def services(store, settings, storage, notifier):
    """Fully wired pipelines; pending deletion timers are cancelled on teardown."""
    built = build_services(store, settings=settings, storage=storage, notifier=notifier)
    yield built
    built.expiry.cancel_all()


@pytest.fixture
async def client(services):
    app = create_app(services)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c


@pytest.fixture
def make_incoming(storage):
    """Write ``data`` to a staging temp file and describe it as an upload."""
    def _make(data: bytes, name: str = "note.txt", mime_type: str = "text/plain") -> IncomingFile:
        path = storage.new_temp_path()
        with open(path, "wb") as f:
            f.write(data)
        return IncomingFile(temp_path=path, original_name=name, size=len(data), mime_type=mime_type)
    return _make
