"""Streaming AES-256-CBC encryption for stored blobs.

Every file gets its own random 16-byte IV, stored in cleartext next to the
metadata record. Only the server-held master key is secret. Data flows
through the cipher in fixed-size chunks so memory use does not depend on
file size.
"""
import logging
import os
from typing import AsyncIterable, AsyncIterator

import aiofiles
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from dropzone.errors import ConfigError

logger = logging.getLogger(__name__)

KEY_BYTES = 32
IV_BYTES = 16
CHUNK_SIZE = 64 * 1024

# Used only when ENCRYPTION_KEY is missing or malformed. NOT SECURE.
_PLACEHOLDER_KEY = b"dropzone-insecure-placeholder-k!"


def load_master_key(hex_key: str, strict: bool = False) -> bytes:
    """Decode the hex master key.

    A malformed key logs a warning and falls back to a fixed placeholder
    so the service still starts; with ``strict`` it raises ConfigError.
    """
    try:
        key = bytes.fromhex(hex_key or "")
    except ValueError:
        key = b""
    if len(key) == KEY_BYTES:
        return key
    if strict:
        raise ConfigError("ENCRYPTION_KEY must be 32 bytes hex encoded (64 characters)")
    logger.warning(
        "ENCRYPTION_KEY is not set or invalid (must be 32 bytes hex). "
        "Using fallback key (NOT SECURE)"
    )
    return _PLACEHOLDER_KEY


def new_iv() -> bytes:
    return os.urandom(IV_BYTES)


def _cipher(key: bytes, iv: bytes) -> Cipher:
    return Cipher(algorithms.AES(key), modes.CBC(iv))


async def encrypt_stream(
    chunks: AsyncIterable[bytes], iv: bytes, key: bytes
) -> AsyncIterator[bytes]:
    """Encrypt an async stream of plaintext chunks, yielding ciphertext."""
    encryptor = _cipher(key, iv).encryptor()
    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    async for chunk in chunks:
        out = encryptor.update(padder.update(chunk))
        if out:
            yield out
    yield encryptor.update(padder.finalize()) + encryptor.finalize()


async def decrypt_stream(
    chunks: AsyncIterable[bytes], iv: bytes | None, key: bytes
) -> AsyncIterator[bytes]:
    """Decrypt an async stream of ciphertext chunks.

    ``iv=None`` marks a legacy unencrypted blob: bytes pass through as-is.
    """
    if iv is None:
        async for chunk in chunks:
            yield chunk
        return

    decryptor = _cipher(key, iv).decryptor()
    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    async for chunk in chunks:
        out = unpadder.update(decryptor.update(chunk))
        if out:
            yield out
    tail = unpadder.update(decryptor.finalize()) + unpadder.finalize()
    if tail:
        yield tail


async def read_chunks(path: str, chunk_size: int = CHUNK_SIZE) -> AsyncIterator[bytes]:
    """Yield a file's bytes in fixed-size chunks."""
    async with aiofiles.open(path, "rb") as f:
        while True:
            chunk = await f.read(chunk_size)
            if not chunk:
                break
            yield chunk


async def encrypt_file(src_path: str, dst_path: str, iv: bytes, key: bytes) -> int:
    """Encrypt ``src_path`` into ``dst_path``. Returns ciphertext size."""
    written = 0
    async with aiofiles.open(dst_path, "wb") as out:
        async for block in encrypt_stream(read_chunks(src_path), iv, key):
            await out.write(block)
            written += len(block)
    return written


def decrypt_file(path: str, iv: bytes | None, key: bytes) -> AsyncIterator[bytes]:
    """Plaintext stream of a stored blob, suitable for a StreamingResponse."""
    return decrypt_stream(read_chunks(path), iv, key)
