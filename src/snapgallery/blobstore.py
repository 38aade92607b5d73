"""
Object storage for original images and thumbnails.

Two backends share the ``BlobStore`` interface: a local filesystem store
and Supabase Storage over its REST API.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional
from urllib.parse import quote

import httpx

from .config import Settings

logger = logging.getLogger(__name__)


class BlobStoreError(Exception):
    """Object storage errors."""


class BlobStore(ABC):
    """Abstract object store."""

    @abstractmethod
    async def upload(self, key: str, data: bytes, content_type: str) -> str:
        """Store ``data`` under ``key`` and return the stored path."""

    @abstractmethod
    async def download(self, key: str) -> bytes:
        """Return the bytes stored under ``key``."""


class LocalBlobStore(BlobStore):
    """Filesystem-backed object store rooted at ``blob_storage_path``."""

    def __init__(self, root: Path):
        self.root = Path(root)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            logger.info(f"Blob storage path: {self.root}")
        except Exception as e:
            raise BlobStoreError(f"Failed to setup blob storage: {e}") from e

    def _resolve(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise BlobStoreError(f"Invalid storage key: {key}")
        return path

    def _write(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "xb") as f:
            f.write(data)

    async def upload(self, key: str, data: bytes, content_type: str) -> str:
        path = self._resolve(key)
        try:
            await asyncio.to_thread(self._write, path, data)
        except FileExistsError as e:
            raise BlobStoreError(f"The resource already exists: {key}") from e
        except OSError as e:
            raise BlobStoreError(f"Failed to write {key}: {e}") from e
        return key

    async def download(self, key: str) -> bytes:
        path = self._resolve(key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise BlobStoreError(f"Failed to read {key}: {e}") from e


class SupabaseBlobStore(BlobStore):
    """Supabase Storage over HTTP."""

    def __init__(
        self,
        base_url: str,
        service_key: str,
        bucket: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not base_url or not service_key:
            raise BlobStoreError("Supabase URL and service role key are required")

        self.base_url = base_url.rstrip("/")
        self.bucket = bucket
        self.timeout = timeout
        self.transport = transport
        self.headers = {
            "apikey": service_key,
            "Authorization": f"Bearer {service_key}",
        }

    def _object_url(self, key: str) -> str:
        return f"{self.base_url}/storage/v1/object/{self.bucket}/{quote(key)}"

    async def upload(self, key: str, data: bytes, content_type: str) -> str:
        headers = {**self.headers, "Content-Type": content_type, "x-upsert": "false"}
        try:
            async with httpx.AsyncClient(transport=self.transport) as client:
                response = await client.post(
                    self._object_url(key),
                    headers=headers,
                    content=data,
                    timeout=self.timeout,
                )
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Supabase upload failed for {key}: {e}")
            raise BlobStoreError(f"Upload failed: {e}") from e

        # Storage echoes "<bucket>/<key>"; the stored path is the key itself.
        return key

    async def download(self, key: str) -> bytes:
        try:
            async with httpx.AsyncClient(transport=self.transport) as client:
                response = await client.get(
                    self._object_url(key), headers=self.headers, timeout=self.timeout
                )
                response.raise_for_status()
                return response.content
        except httpx.HTTPError as e:
            logger.error(f"Supabase download failed for {key}: {e}")
            raise BlobStoreError(f"Download failed: {e}") from e


def build_blob_store(settings: Settings) -> BlobStore:
    """Create the blob store selected by ``settings.blob_backend``."""
    if settings.blob_backend == "supabase":
        return SupabaseBlobStore(
            base_url=settings.supabase_url or "",
            service_key=settings.supabase_service_role_key or "",
            bucket=settings.supabase_bucket,
        )
    return LocalBlobStore(settings.blob_storage_path)
