"""Attachment storage collaborator.

Usage::

    from app.services.storage import storage

    url = storage.put("messages/41/photo.jpg", data, "image/jpeg")
    storage.delete("messages/41/photo.jpg")
"""

from __future__ import annotations

import logging
from pathlib import Path
from threading import Lock

from app.config import settings

logger = logging.getLogger(__name__)


class StorageBackend:
    """Base interface for storage backends."""

    def put(self, key: str, data: bytes, content_type: str = "") -> str:
        """Store *data* under *key* and return its public URL."""
        raise NotImplementedError

    def delete(self, key: str) -> None:
        """Remove *key*. Missing keys are ignored."""
        raise NotImplementedError

    def url(self, key: str) -> str:
        raise NotImplementedError


class LocalBackend(StorageBackend):
    """Files under a local directory, served by the static mount."""

    def __init__(self, root: str | None = None, url_prefix: str | None = None) -> None:
        self._root = Path(root or settings.storage_local_root).resolve()
        self._url_prefix = (url_prefix or settings.storage_local_url_prefix).rstrip("/")

    def _safe_path(self, key: str) -> Path:
        dest = (self._root / key).resolve()
        try:
            dest.relative_to(self._root)
        except ValueError:
            raise ValueError(f"Invalid storage key (path traversal): {key}")
        return dest

    def put(self, key: str, data: bytes, content_type: str = "") -> str:
        dest = self._safe_path(key)
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(data)
        return self.url(key)

    def delete(self, key: str) -> None:
        dest = self._safe_path(key)
        if dest.exists():
            dest.unlink()

    def url(self, key: str) -> str:
        return f"{self._url_prefix}/{key}"


class MemoryBackend(StorageBackend):
    """Keeps blobs in a dict. Used by tests and local demos."""

    def __init__(self, url_prefix: str = "/memory") -> None:
        self._blobs: dict[str, tuple[bytes, str]] = {}
        self._url_prefix = url_prefix.rstrip("/")

    def put(self, key: str, data: bytes, content_type: str = "") -> str:
        self._blobs[key] = (data, content_type)
        return self.url(key)

    def delete(self, key: str) -> None:
        self._blobs.pop(key, None)

    def url(self, key: str) -> str:
        return f"{self._url_prefix}/{key}"

    def keys(self) -> list[str]:
        return list(self._blobs)


def _build_backend() -> StorageBackend:
    backend = settings.storage_backend
    if backend == "memory":
        logger.info("Using in-memory storage backend")
        return MemoryBackend()
    if backend != "local":
        logger.warning("Unknown storage backend %r; falling back to local storage.", backend)
    logger.info("Using local storage backend (root=%s)", settings.storage_local_root)
    return LocalBackend()


class LazyStorage(StorageBackend):
    """Builds the configured backend on first use."""

    def __init__(self) -> None:
        self._backend: StorageBackend | None = None
        self._lock = Lock()

    def _get_backend(self) -> StorageBackend:
        if self._backend is not None:
            return self._backend
        with self._lock:
            if self._backend is None:
                self._backend = _build_backend()
        return self._backend

    def use(self, backend: StorageBackend | None) -> StorageBackend | None:
        """Swap in *backend*; returns the one it replaced."""
        with self._lock:
            previous, self._backend = self._backend, backend
        return previous

    def put(self, key: str, data: bytes, content_type: str = "") -> str:
        return self._get_backend().put(key, data, content_type)

    def delete(self, key: str) -> None:
        self._get_backend().delete(key)

    def url(self, key: str) -> str:
        return self._get_backend().url(key)


storage: LazyStorage = LazyStorage()
