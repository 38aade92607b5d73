"""
Tests for the local and Supabase blob stores.
"""

import httpx
import pytest

from snapgallery.blobstore import (
    BlobStoreError,
    LocalBlobStore,
    SupabaseBlobStore,
    build_blob_store,
)


class TestLocalBlobStore:
    """Test the filesystem store."""

    async def test_round_trip(self, tmp_path):
        store = LocalBlobStore(tmp_path / "blobs")

        path = await store.upload("originals/alice/a.png", b"data", "image/png")

        assert path == "originals/alice/a.png"
        assert await store.download(path) == b"data"

    async def test_no_overwrite(self, tmp_path):
        store = LocalBlobStore(tmp_path)
        await store.upload("a.png", b"one", "image/png")

        with pytest.raises(BlobStoreError):
            await store.upload("a.png", b"two", "image/png")

    async def test_rejects_escaping_keys(self, tmp_path):
        store = LocalBlobStore(tmp_path / "blobs")

        with pytest.raises(BlobStoreError):
            await store.upload("../outside.png", b"x", "image/png")

    async def test_missing_object(self, tmp_path):
        store = LocalBlobStore(tmp_path)

        with pytest.raises(BlobStoreError):
            await store.download("nope.png")


class TestSupabaseBlobStore:
    """Test the Supabase Storage REST adapter."""

    async def test_upload_and_download(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if request.method == "POST":
                return httpx.Response(200, json={"Key": "images/originals/u/a b.png"})
            return httpx.Response(200, content=b"payload")

        store = SupabaseBlobStore(
            "https://project.supabase.co/",
            "service-key",
            "images",
            transport=httpx.MockTransport(handler),
        )

        path = await store.upload("originals/u/a b.png", b"payload", "image/png")
        data = await store.download(path)

        assert path == "originals/u/a b.png"
        assert data == b"payload"
        upload = requests[0]
        assert upload.url.path == "/storage/v1/object/images/originals/u/a b.png"
        assert upload.headers["Authorization"] == "Bearer service-key"
        assert upload.headers["Content-Type"] == "image/png"
        assert upload.content == b"payload"

    async def test_upload_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": "Duplicate"})

        store = SupabaseBlobStore(
            "https://project.supabase.co",
            "service-key",
            "images",
            transport=httpx.MockTransport(handler),
        )

        with pytest.raises(BlobStoreError):
            await store.upload("a.png", b"x", "image/png")

    def test_requires_credentials(self):
        with pytest.raises(BlobStoreError):
            SupabaseBlobStore("", "", "images")


def test_build_blob_store(settings):
    assert isinstance(build_blob_store(settings), LocalBlobStore)

    settings.blob_backend = "supabase"
    settings.supabase_url = "https://project.supabase.co"
    settings.supabase_service_role_key = "key"
    assert isinstance(build_blob_store(settings), SupabaseBlobStore)
