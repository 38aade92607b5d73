"""
Mock implementations for SnapGallery testing.

Lightweight in-memory stand-ins for the external collaborators: the object
store, the vision/embedding API and the identity provider. Each records its
calls so tests can assert on call counts.
"""

import io
from typing import Dict, List, Optional, Tuple

from PIL import Image

from snapgallery.blobstore import BlobStore, BlobStoreError
from snapgallery.errors import AuthError, ValidationError
from snapgallery.models.schemas import (
    AuthenticatedUser,
    ImageRecord,
    SessionResponse,
    VisionAnalysis,
)
from snapgallery.storage import MetadataStore
from snapgallery.vision import BaseVisionProvider

ALICE = AuthenticatedUser(user_id="alice", email="alice@example.com")
BOB = AuthenticatedUser(user_id="bob", email="bob@example.com")


def seed_image(
    store: MetadataStore,
    user_id: str = "alice",
    filename: str = "photo.jpg",
    colors: Optional[List[str]] = None,
    tags: Optional[List[str]] = None,
    description: Optional[str] = None,
    status: str = "pending",
) -> ImageRecord:
    """Insert an image and drive its metadata to ``status``."""
    colors = colors or []
    image = store.create_image(
        user_id=user_id,
        filename=filename,
        original_path=f"originals/{user_id}/original-1-{filename}",
        thumbnail_path=f"thumbnails/{user_id}/thumb-1-{filename}",
        file_size=1024,
        mime_type="image/jpeg",
        colors=colors,
        dominant_color=colors[0] if colors else None,
    )
    if status == "completed":
        store.mark_completed(
            image.id, user_id, description=description or "", tags=tags or []
        )
    elif status == "failed":
        store.mark_failed(image.id, user_id)
    return image


def make_image_bytes(
    color: Tuple[int, int, int] = (255, 0, 0),
    size: Tuple[int, int] = (64, 48),
    fmt: str = "PNG",
) -> bytes:
    """Encode a solid-color image."""
    image = Image.new("RGB", size, color=color)
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


class MockBlobStore(BlobStore):
    """Dictionary-backed object store."""

    def __init__(self, fail_uploads_matching: Optional[str] = None):
        self.objects: Dict[str, bytes] = {}
        self.content_types: Dict[str, str] = {}
        self.fail_uploads_matching = fail_uploads_matching
        self.fail_downloads = False
        self.upload_calls: List[str] = []
        self.download_calls: List[str] = []

    async def upload(self, key: str, data: bytes, content_type: str) -> str:
        self.upload_calls.append(key)
        if self.fail_uploads_matching and self.fail_uploads_matching in key:
            raise BlobStoreError(f"Mock upload failure for {key}")
        if key in self.objects:
            raise BlobStoreError(f"The resource already exists: {key}")
        self.objects[key] = data
        self.content_types[key] = content_type
        return key

    async def download(self, key: str) -> bytes:
        self.download_calls.append(key)
        if self.fail_downloads:
            raise BlobStoreError(f"Mock download failure for {key}")
        if key not in self.objects:
            raise BlobStoreError(f"Object not found: {key}")
        return self.objects[key]


class MockVisionClient(BaseVisionProvider):
    """Vision provider returning a fixed analysis or a fixed error."""

    def __init__(
        self,
        description: str = "A red square on a plain background",
        tags: Optional[List[str]] = None,
        error: Optional[Exception] = None,
        embedding: Optional[List[float]] = None,
        embed_error: Optional[Exception] = None,
    ):
        self.description = description
        self.tags = tags if tags is not None else ["red", "square", "minimal"]
        self.error = error
        self.embedding = embedding if embedding is not None else [0.1, 0.2, 0.3]
        self.embed_error = embed_error
        self.analyze_calls = 0
        self.embed_calls: List[str] = []

    async def analyze(self, image_data: bytes) -> VisionAnalysis:
        assert image_data, "Image data cannot be empty"
        self.analyze_calls += 1
        if self.error is not None:
            raise self.error
        return VisionAnalysis(description=self.description, tags=self.tags)

    async def embed(self, text: str) -> List[float]:
        self.embed_calls.append(text)
        if self.embed_error is not None:
            raise self.embed_error
        return list(self.embedding)


class MockIdentityProvider:
    """Identity provider with a fixed token table."""

    def __init__(self, users: Optional[Dict[str, AuthenticatedUser]] = None):
        self.users = users or {}
        self.get_user_calls = 0

    async def get_user(self, token: str) -> AuthenticatedUser:
        self.get_user_calls += 1
        if token not in self.users:
            raise AuthError()
        return self.users[token]

    async def sign_up(self, email: Optional[str], password: Optional[str]) -> dict:
        if not email or not password:
            raise ValidationError("Invalid email")
        return {"id": f"user-{email}", "email": email}

    async def sign_in(
        self, email: Optional[str], password: Optional[str]
    ) -> SessionResponse:
        if not email or not password:
            raise ValidationError("Email and password are required")
        return SessionResponse(
            access_token="access", refresh_token="refresh", user={"email": email}
        )
