"""
Test configuration and shared fixtures for SnapGallery test suite.

Fixtures build settings bound to a temporary directory, a real metadata
store on a temporary SQLite file, and in-memory fakes for the external
collaborators.
"""

from typing import Generator

import pytest
from fastapi.testclient import TestClient

from snapgallery.api import create_app
from snapgallery.config import Settings
from snapgallery.services import TaskDispatcher
from snapgallery.storage import MetadataStore
from tests.mocks import (
    ALICE,
    BOB,
    MockBlobStore,
    MockIdentityProvider,
    MockVisionClient,
    make_image_bytes,
)


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Test-specific settings configuration."""
    return Settings(
        _env_file=None,
        database_path=tmp_path / "test.db",
        blob_storage_path=tmp_path / "blobs",
        openai_api_key=None,
        enable_embeddings=False,
        log_level="DEBUG",
    )


@pytest.fixture
def store(settings) -> MetadataStore:
    """Metadata store on a temporary SQLite file."""
    return MetadataStore(settings)


@pytest.fixture
def blob_store() -> MockBlobStore:
    return MockBlobStore()


@pytest.fixture
def vision() -> MockVisionClient:
    return MockVisionClient()


@pytest.fixture
def identity() -> MockIdentityProvider:
    return MockIdentityProvider({"token-alice": ALICE, "token-bob": BOB})


@pytest.fixture
def dispatcher() -> TaskDispatcher:
    return TaskDispatcher()


@pytest.fixture
def png_bytes() -> bytes:
    """Small solid red PNG."""
    return make_image_bytes(color=(255, 0, 0), size=(64, 48), fmt="PNG")


@pytest.fixture
def jpeg_bytes() -> bytes:
    """Landscape solid blue JPEG larger than the thumbnail bound."""
    return make_image_bytes(color=(0, 0, 255), size=(800, 400), fmt="JPEG")


@pytest.fixture
def app(settings, store, blob_store, vision, identity, dispatcher):
    """Application wired to the fakes."""
    return create_app(
        settings,
        store=store,
        blob_store=blob_store,
        vision=vision,
        identity=identity,
        dispatcher=dispatcher,
    )


@pytest.fixture
def client(app) -> Generator[TestClient, None, None]:
    """Test client; background tasks are drained on exit."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def alice_headers() -> dict:
    return {"Authorization": "Bearer token-alice"}


@pytest.fixture
def bob_headers() -> dict:
    return {"Authorization": "Bearer token-bob"}
