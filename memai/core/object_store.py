"""Durable object storage for downloaded audio.

Keys are deterministic and bookmark-scoped (`audio-{bookmark_id}-{identifier}`).
"""

from __future__ import annotations

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path

from google.cloud import storage

from memai.core.settings import Settings

logger = logging.getLogger(__name__)


class ObjectStoreError(Exception):
    def __init__(self, message: str, retriable: bool = False):
        super().__init__(message)
        self.retriable = retriable


def audio_object_key(bookmark_id: int, identifier: str) -> str:
    return f"audio-{bookmark_id}-{identifier}"


class ObjectStore(ABC):
    @abstractmethod
    async def put(self, key: str, data: bytes, content_type: str) -> None: ...

    @abstractmethod
    async def get(self, key: str) -> bytes: ...

    @abstractmethod
    async def remove(self, key: str) -> None: ...

    @abstractmethod
    async def exists(self, key: str) -> bool: ...


class LocalObjectStore(ObjectStore):
    """Filesystem-backed store for development and tests."""

    def __init__(self, root: str):
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        if "/" in key or key in ("", ".", ".."):
            raise ObjectStoreError(f"Invalid object key: {key!r}")
        return self.root / key

    async def put(self, key: str, data: bytes, content_type: str) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(path.write_bytes, data)
        logger.debug(f"Stored {key} ({len(data)} bytes, {content_type})")

    async def get(self, key: str) -> bytes:
        path = self._path(key)
        if not path.exists():
            raise ObjectStoreError(f"Object not found: {key}")
        return await asyncio.to_thread(path.read_bytes)

    async def remove(self, key: str) -> None:
        path = self._path(key)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            pass

    async def exists(self, key: str) -> bool:
        return self._path(key).exists()


class GCSObjectStore(ObjectStore):
    """Google Cloud Storage bucket. The blocking client runs in worker threads."""

    def __init__(self, bucket_name: str, client: storage.Client | None = None):
        self.bucket_name = bucket_name
        self._client = client

    def _bucket(self) -> storage.Bucket:
        if self._client is None:
            self._client = storage.Client()
        return self._client.bucket(self.bucket_name)

    async def put(self, key: str, data: bytes, content_type: str) -> None:
        blob = self._bucket().blob(key)
        try:
            await asyncio.to_thread(blob.upload_from_string, data, content_type=content_type)
        except Exception as e:
            raise ObjectStoreError(f"Upload of {key} failed: {e}", retriable=True) from e

    async def get(self, key: str) -> bytes:
        blob = self._bucket().blob(key)
        try:
            return await asyncio.to_thread(blob.download_as_bytes)
        except Exception as e:
            raise ObjectStoreError(f"Download of {key} failed: {e}", retriable=True) from e

    async def remove(self, key: str) -> None:
        blob = self._bucket().blob(key)
        try:
            await asyncio.to_thread(blob.delete)
        except Exception as e:
            raise ObjectStoreError(f"Delete of {key} failed: {e}", retriable=True) from e

    async def exists(self, key: str) -> bool:
        return await asyncio.to_thread(self._bucket().blob(key).exists)


def get_object_store(settings: Settings | None = None) -> ObjectStore:
    s = settings or Settings.from_env()
    if s.object_store == "gcs":
        return GCSObjectStore(s.gcs_bucket)
    if s.object_store == "local":
        os.makedirs(s.local_object_dir, exist_ok=True)
        return LocalObjectStore(s.local_object_dir)
    raise ValueError(f"Unknown object store: {s.object_store}. Available: local, gcs")
