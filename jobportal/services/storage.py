from __future__ import annotations

import hashlib
import hmac
import logging
import mimetypes
import time
from pathlib import Path
from typing import Iterable, Protocol
from urllib.parse import quote, urlencode

import anyio

from jobportal.core.config import settings
from jobportal.core.paths import resolve_repo_path

logger = logging.getLogger("jp.storage")


class BlobStorage(Protocol):
    async def upload(self, path: str, data: bytes, *, content_type: str) -> str: ...

    async def remove(self, paths: Iterable[str]) -> None: ...

    async def download(self, path: str) -> tuple[bytes, str]: ...

    def signed_url(self, path: str, ttl_seconds: int) -> str: ...


def _public_link(path: str) -> str:
    base_path = (settings.public_app_base_path or "").strip().rstrip("/")
    if base_path and not base_path.startswith("/"):
        base_path = f"/{base_path}"
    origin = (settings.public_app_origin or "").rstrip("/")
    return f"{origin}{base_path}{path}"


def _signature(path: str, expires: int, key: str) -> str:
    message = f"{path}\n{expires}".encode("utf-8")
    return hmac.new(key.encode("utf-8"), message, hashlib.sha256).hexdigest()


def sign_path(path: str, ttl_seconds: int, *, key: str | None = None, now: float | None = None) -> str:
    """Time-limited link served by the /files route. Blobs have no public URL."""
    signing_key = key or settings.link_signing_key
    expires = int((now if now is not None else time.time()) + max(int(ttl_seconds), 1))
    query = urlencode({"expires": expires, "signature": _signature(path, expires, signing_key)})
    return _public_link(f"/files/{quote(path)}?{query}")


def verify_signed_path(
    path: str,
    expires: int,
    signature: str,
    *,
    key: str | None = None,
    now: float | None = None,
) -> bool:
    signing_key = key or settings.link_signing_key
    current = now if now is not None else time.time()
    if int(expires) < current:
        return False
    return hmac.compare_digest(_signature(path, int(expires), signing_key), signature or "")


class LocalBlobStorage:
    """Filesystem-backed blob store for development and single-host deployments."""

    def __init__(self, root: str | Path | None = None) -> None:
        self._root = Path(root) if root is not None else resolve_repo_path(settings.local_storage_root)

    def _target(self, path: str) -> Path:
        target = (self._root / path).resolve()
        if self._root.resolve() not in target.parents:
            raise ValueError(f"Blob path escapes storage root: {path}")
        return target

    def _write(self, path: str, data: bytes) -> None:
        target = self._target(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

    def _unlink(self, path: str) -> None:
        self._target(path).unlink(missing_ok=True)

    async def upload(self, path: str, data: bytes, *, content_type: str) -> str:
        await anyio.to_thread.run_sync(self._write, path, data)
        logger.debug("blob_written", extra={"path": path, "bytes": len(data)})
        return path

    async def remove(self, paths: Iterable[str]) -> None:
        for path in paths:
            await anyio.to_thread.run_sync(self._unlink, path)
            logger.debug("blob_removed", extra={"path": path})

    async def download(self, path: str) -> tuple[bytes, str]:
        target = self._target(path)
        data = await anyio.to_thread.run_sync(target.read_bytes)
        content_type, _ = mimetypes.guess_type(target.name)
        return data, content_type or "application/octet-stream"

    def signed_url(self, path: str, ttl_seconds: int) -> str:
        return sign_path(path, ttl_seconds)


def build_storage() -> BlobStorage:
    if settings.storage_backend == "drive":
        from jobportal.services.drive import DriveBlobStorage

        return DriveBlobStorage()
    return LocalBlobStorage()
