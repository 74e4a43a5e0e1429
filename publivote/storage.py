"""
Object store port and the local filesystem adapter.

The relational transaction never covers the object store: each call is
atomic per key, and nothing spans more than one key.  Services depend on
the ``ObjectStore`` protocol only, so tests can pass in-memory fakes.
"""
from __future__ import annotations

import asyncio
import hashlib
import hmac
import logging
import time
from pathlib import Path
from typing import AsyncIterator, Protocol
from urllib.parse import quote

from publivote.exceptions import NotFound, ObjectStoreFailure

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024


class ObjectStore(Protocol):
    """Key-addressed binary storage."""

    async def upload(self, key: str, data: bytes, content_type: str) -> None: ...

    def get_stream(self, key: str) -> AsyncIterator[bytes]: ...

    async def exists(self, key: str) -> bool: ...

    async def get_signed_url(self, key: str, expires_in: int) -> str: ...

    async def delete(self, key: str) -> None: ...


def sign_key(secret: str, key: str, expires_at: int) -> str:
    """HMAC-SHA256 signature over ``key`` and its expiry timestamp."""
    payload = f"{key}:{expires_at}".encode()
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def verify_signature(secret: str, key: str, expires_at: int, signature: str, now: float | None = None) -> bool:
    if (now if now is not None else time.time()) > expires_at:
        return False
    return hmac.compare_digest(sign_key(secret, key, expires_at), signature)


class LocalObjectStore:
    """
    Filesystem implementation of ``ObjectStore``.

    Objects live at ``{base_path}/{key}``; blocking file I/O runs in a
    worker thread so the event loop is never stalled.
    """

    def __init__(self, base_path: str | Path, secret_key: str, base_url: str = "/files") -> None:
        self.base_path = Path(base_path)
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _path_for(self, key: str) -> Path:
        # Strip traversal segments so keys cannot escape the base path.
        safe_key = key.replace("..", "").lstrip("/")
        if not safe_key:
            raise ObjectStoreFailure(f"Invalid object key: {key!r}", [key])
        return self.base_path / safe_key

    async def upload(self, key: str, data: bytes, content_type: str) -> None:
        path = self._path_for(key)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        try:
            await asyncio.to_thread(_write)
        except OSError as exc:
            raise ObjectStoreFailure(f"Upload failed for {key}: {exc}", [key]) from exc
        logger.debug("Stored object %s (%d bytes, %s)", key, len(data), content_type)

    async def get_stream(self, key: str) -> AsyncIterator[bytes]:
        path = self._path_for(key)
        if not await asyncio.to_thread(path.exists):
            raise NotFound(f"Object {key} not found")

        handle = await asyncio.to_thread(open, path, "rb")
        try:
            while True:
                chunk = await asyncio.to_thread(handle.read, _CHUNK_SIZE)
                if not chunk:
                    break
                yield chunk
        finally:
            await asyncio.to_thread(handle.close)

    async def exists(self, key: str) -> bool:
        return await asyncio.to_thread(self._path_for(key).is_file)

    async def get_signed_url(self, key: str, expires_in: int) -> str:
        expires_at = int(time.time()) + expires_in
        signature = sign_key(self.secret_key, key, expires_at)
        return f"{self.base_url}/{quote(key)}?expires={expires_at}&signature={signature}"

    async def delete(self, key: str) -> None:
        """Remove *key*; deleting a key that is already gone is not an error."""
        path = self._path_for(key)
        try:
            await asyncio.to_thread(path.unlink, missing_ok=True)
        except OSError as exc:
            raise ObjectStoreFailure(f"Delete failed for {key}: {exc}", [key]) from exc
        logger.debug("Deleted object %s", key)
