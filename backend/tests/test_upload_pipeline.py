"""
Unit tests for the upload pipeline and multipart staging.

Requirements covered: batch-vs-single data model, batch-wide password,
IV / share id uniqueness, 24h expiry, temp-file cleanup on success and failure.
"""
import os
from datetime import timedelta
from io import BytesIO

import pytest
from starlette.datastructures import Headers, UploadFile

from dropzone.errors import PayloadTooLargeError, StorageError, ValidationError
from dropzone.services import crypto, upload_pipeline
from dropzone.services.access_gate import hash_password
from dropzone.services.file_store import StoredFile
from dropzone.services.upload_pipeline import stage_uploads


def _temp_files(storage):
    return os.listdir(storage.tmp_path)


def _blobs(storage):
    return [p for p in os.listdir(storage.base_path) if p.endswith(".enc")]


class TestSingleAndBatch:

    async def test_single_file_has_no_batch(self, services, store, make_incoming):
        result = await services.uploads.upload(
            [make_incoming(b"0123456789")], base_url="http://host"
        )

        assert result.batch_id is None
        assert result.batch_url is None
        assert len(result.files) == 1
        shared = result.files[0]
        assert shared.share_url == f"http://host/download/{shared.share_id}"
        record = await store.find(shared.share_id)
        assert record.batch_id is None
        assert record.size == 10
        assert record.password_hash is None

    async def test_multiple_files_share_batch_id(self, services, store, make_incoming):
        result = await services.uploads.upload(
            [make_incoming(b"a", "a.txt"), make_incoming(b"b", "b.txt")],
            base_url="http://host",
        )

        assert result.batch_id
        assert result.batch_url == f"http://host/download/batch/{result.batch_id}"
        members = await store.find_batch(result.batch_id)
        assert sorted(m.original_name for m in members) == ["a.txt", "b.txt"]

    async def test_password_applied_to_every_file(self, services, store, make_incoming):
        result = await services.uploads.upload(
            [make_incoming(b"1"), make_incoming(b"2"), make_incoming(b"3")],
            password="secret",
        )

        members = await store.find_batch(result.batch_id)
        assert len(members) == 3
        assert {m.password_hash for m in members} == {hash_password("secret")}

    async def test_empty_list_rejected(self, services):
        with pytest.raises(ValidationError):
            await services.uploads.upload([])


class TestRecordInvariants:

    async def test_identical_uploads_get_distinct_iv_and_id(self, services, store, make_incoming):
        first = await services.uploads.upload([make_incoming(b"same bytes")])
        second = await services.uploads.upload([make_incoming(b"same bytes")])

        a = await store.find(first.files[0].share_id)
        b = await store.find(second.files[0].share_id)
        assert a.share_id != b.share_id
        assert a.iv != b.iv
        assert a.storage_name != b.storage_name

    async def test_expires_exactly_24h_after_upload(self, services, store, make_incoming):
        result = await services.uploads.upload([make_incoming(b"x")])

        record = await store.find(result.files[0].share_id)
        assert record.expires_at - record.uploaded_at == timedelta(hours=24)
        assert result.files[0].expires_at == record.expires_at

    async def test_blob_is_encrypted_and_decryptable(self, services, store, storage, key, make_incoming):
        data = b"top secret contents"
        result = await services.uploads.upload([make_incoming(data)])

        record = await store.find(result.files[0].share_id)
        path = storage.blob_path(record.storage_name)
        with open(path, "rb") as f:
            assert data not in f.read()
        plain = b"".join([c async for c in crypto.decrypt_file(path, record.iv_bytes, key)])
        assert plain == data

    async def test_storage_name_does_not_leak_original_name(self, services, store, make_incoming):
        result = await services.uploads.upload([make_incoming(b"x", "passport-scan.pdf", "application/pdf")])

        record = await store.find(result.files[0].share_id)
        assert "passport" not in record.storage_name
        assert record.storage_name.endswith(".enc")

    async def test_deletion_timer_scheduled_per_file(self, services, make_incoming):
        await services.uploads.upload([make_incoming(b"1"), make_incoming(b"2")])
        assert len(services.expiry._timers) == 2


class TestCleanup:

    async def test_temp_files_removed_after_success(self, services, storage, make_incoming):
        await services.uploads.upload([make_incoming(b"1"), make_incoming(b"2")])
        assert _temp_files(storage) == []

    async def test_failure_mid_batch_keeps_earlier_files_and_removes_temps(
        self, services, store, storage, make_incoming, monkeypatch
    ):
        real_encrypt = crypto.encrypt_file
        calls = {"n": 0}

        async def flaky_encrypt(src, dst, iv, key):
            calls["n"] += 1
            if calls["n"] == 2:
                with open(dst, "wb") as f:
                    f.write(b"partial")
                raise OSError("disk full")
            return await real_encrypt(src, dst, iv, key)

        monkeypatch.setattr(crypto, "encrypt_file", flaky_encrypt)
        files = [make_incoming(b"1", "one"), make_incoming(b"2", "two"), make_incoming(b"3", "three")]

        with pytest.raises(StorageError):
            await services.uploads.upload(files)

        assert _temp_files(storage) == []
        assert len(_blobs(storage)) == 1
        kept = [r for r in store._records.values()]
        assert [r.original_name for r in kept] == ["one"]

    async def test_oversize_total_rejected_before_encryption(self, services, storage, make_incoming):
        services.uploads.max_bytes = 5
        files = [make_incoming(b"abc"), make_incoming(b"def")]

        with pytest.raises(PayloadTooLargeError):
            await services.uploads.upload(files)

        assert _temp_files(storage) == []
        assert _blobs(storage) == []


class TestShareIdCollisions:

    async def test_collision_retries_with_fresh_id(self, services, store, make_incoming, monkeypatch):
        existing = StoredFile(
            share_id="taken",
            original_name="x",
            size=1,
            mime_type="text/plain",
            storage_name="x.enc",
            uploaded_at=upload_pipeline.utcnow(),
            expires_at=upload_pipeline.utcnow() + timedelta(hours=1),
        )
        await store.insert(existing)
        ids = iter(["taken", "taken", "fresh"])
        monkeypatch.setattr(upload_pipeline, "new_share_id", lambda: next(ids))

        result = await services.uploads.upload([make_incoming(b"x")])

        assert result.files[0].share_id == "fresh"

    async def test_gives_up_after_repeated_collisions(self, services, store, storage, make_incoming, monkeypatch):
        existing = StoredFile(
            share_id="taken",
            original_name="x",
            size=1,
            mime_type="text/plain",
            storage_name="x.enc",
            uploaded_at=upload_pipeline.utcnow(),
            expires_at=upload_pipeline.utcnow() + timedelta(hours=1),
        )
        await store.insert(existing)
        monkeypatch.setattr(upload_pipeline, "new_share_id", lambda: "taken")

        with pytest.raises(StorageError):
            await services.uploads.upload([make_incoming(b"x")])

        assert _blobs(storage) == []


class TestStageUploads:

    def _upload(self, data: bytes, name: str, mime: str = "text/plain") -> UploadFile:
        return UploadFile(BytesIO(data), filename=name, headers=Headers({"content-type": mime}))

    async def test_stages_parts_to_temp_files(self, storage):
        staged = await stage_uploads(
            [self._upload(b"hello", "a.txt"), self._upload(b"\x89PNG", "b.png", "image/png")],
            storage,
            max_bytes=1024,
        )

        assert [(s.original_name, s.size, s.mime_type) for s in staged] == [
            ("a.txt", 5, "text/plain"),
            ("b.png", 4, "image/png"),
        ]
        with open(staged[0].temp_path, "rb") as f:
            assert f.read() == b"hello"

    async def test_cap_exceeded_removes_everything(self, storage):
        with pytest.raises(PayloadTooLargeError):
            await stage_uploads(
                [self._upload(b"12345", "a"), self._upload(b"67890", "b")],
                storage,
                max_bytes=7,
            )

        assert _temp_files(storage) == []
