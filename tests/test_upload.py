"""
Tests for the upload orchestrator.
"""

import io
from unittest.mock import patch

import pytest
from PIL import Image

from snapgallery.errors import (
    FileTooLarge,
    InvalidMediaType,
    MissingFile,
    OriginalUploadFailed,
    RecordSaveFailed,
    ThumbnailGenerationFailed,
    ThumbnailUploadFailed,
)
from snapgallery.imaging import ColorExtractionError
from snapgallery.services import (
    AIProcessingPipeline,
    IncomingFile,
    UploadOrchestrator,
    sanitize_filename,
)
from snapgallery.storage import StorageError
from tests.mocks import MockBlobStore, MockVisionClient


@pytest.fixture
def orchestrator(store, blob_store, vision, dispatcher, settings):
    pipeline = AIProcessingPipeline(store, vision)
    return UploadOrchestrator(store, blob_store, pipeline, dispatcher, settings)


def _file(data, name="holiday photo.png", content_type="image/png"):
    return IncomingFile(filename=name, content_type=content_type, data=data)


class TestValidation:
    """Test ingress validation."""

    @pytest.mark.parametrize(
        "content_type", ["image/gif", "text/plain", None, "image/jpg"]
    )
    async def test_rejects_media_type(
        self, orchestrator, blob_store, png_bytes, content_type
    ):
        incoming = _file(png_bytes, content_type=content_type)

        with pytest.raises(InvalidMediaType):
            await orchestrator.upload_image(incoming, "alice")

        assert blob_store.upload_calls == []

    @pytest.mark.parametrize("content_type", ["image/JPEG", "IMAGE/webp", "image/png"])
    async def test_media_type_case_insensitive(self, orchestrator, content_type):
        orchestrator.validate(_file(b"x", content_type=content_type))

    async def test_rejects_large_file(self, orchestrator, settings, png_bytes):
        settings.max_upload_bytes = len(png_bytes) - 1

        with pytest.raises(FileTooLarge):
            await orchestrator.upload_image(_file(png_bytes), "alice")

    async def test_media_type_checked_before_size(
        self, orchestrator, settings, png_bytes
    ):
        settings.max_upload_bytes = 1

        with pytest.raises(InvalidMediaType):
            await orchestrator.upload_image(
                _file(png_bytes, content_type="image/gif"), "alice"
            )

    @pytest.mark.parametrize("data, name", [(b"", "a.png"), (None, "a.png"), (b"x", "")])
    async def test_rejects_missing_file(self, orchestrator, data, name):
        with pytest.raises(MissingFile):
            await orchestrator.upload_image(_file(data, name=name), "alice")


class TestUploadImage:
    """Test the upload sequence."""

    async def test_returns_pending_record(
        self, orchestrator, store, blob_store, dispatcher, jpeg_bytes
    ):
        uploaded = await orchestrator.upload_image(
            _file(jpeg_bytes, name="beach day.jpg", content_type="image/jpeg"), "alice"
        )

        assert uploaded.ai_processing_status == "pending"
        assert uploaded.colors
        assert uploaded.dominant_color == uploaded.colors[0]
        assert uploaded.file_size == len(jpeg_bytes)
        assert uploaded.filename == "beach day.jpg"
        assert uploaded.original_path.startswith("originals/alice/original-")
        assert uploaded.original_path.endswith("-beach_day.jpg")
        assert uploaded.thumbnail_path.startswith("thumbnails/alice/thumb-")
        assert blob_store.objects[uploaded.original_path] == jpeg_bytes
        assert blob_store.content_types[uploaded.thumbnail_path] == "image/jpeg"

        await dispatcher.drain()

        metadata = store.get_metadata(uploaded.id)
        assert metadata.ai_processing_status == "completed"
        assert metadata.description

    async def test_jpeg_thumbnail_is_bounded_and_ai_completes(
        self, orchestrator, store, blob_store, vision, dispatcher, settings, jpeg_bytes
    ):
        uploaded = await orchestrator.upload_image(
            _file(jpeg_bytes, name="wide.jpg", content_type="image/jpeg"), "alice"
        )

        assert store.get_metadata(uploaded.id).ai_processing_status == "pending"
        thumbnail = blob_store.objects[uploaded.thumbnail_path]
        with Image.open(io.BytesIO(thumbnail)) as thumb:
            assert thumb.format == "JPEG"
            assert max(thumb.size) <= settings.thumbnail_max_size
            assert thumb.size == (300, 150)

        await dispatcher.drain()

        metadata = store.get_metadata(uploaded.id)
        assert metadata.ai_processing_status == "completed"
        assert metadata.description == vision.description
        assert metadata.tags == vision.tags

    async def test_pipeline_is_not_awaited(
        self, orchestrator, store, dispatcher, png_bytes
    ):
        uploaded = await orchestrator.upload_image(_file(png_bytes), "alice")

        assert dispatcher.pending == 1
        assert store.get_metadata(uploaded.id).ai_processing_status == "pending"

        await dispatcher.drain()

    async def test_ai_failure_does_not_reach_caller(
        self, store, blob_store, dispatcher, settings, png_bytes
    ):
        pipeline = AIProcessingPipeline(
            store, MockVisionClient(error=RuntimeError("quota"))
        )
        orchestrator = UploadOrchestrator(
            store, blob_store, pipeline, dispatcher, settings
        )

        uploaded = await orchestrator.upload_image(_file(png_bytes), "alice")
        await dispatcher.drain()

        assert uploaded.ai_processing_status == "pending"
        assert store.get_metadata(uploaded.id).ai_processing_status == "failed"

    async def test_color_failure_is_not_fatal(self, orchestrator, dispatcher, png_bytes):
        with patch(
            "snapgallery.services.upload.extract_dominant_colors",
            side_effect=ColorExtractionError("palette failed"),
        ):
            uploaded = await orchestrator.upload_image(_file(png_bytes), "alice")
        await dispatcher.drain()

        assert uploaded.colors == []
        assert uploaded.dominant_color is None

    async def test_thumbnail_failure_aborts(self, orchestrator, store, blob_store):
        with pytest.raises(ThumbnailGenerationFailed):
            await orchestrator.upload_image(_file(b"not really a png"), "alice")

        assert blob_store.upload_calls == []
        assert store.count_items("alice") == 0

    async def test_original_upload_failure(self, store, dispatcher, settings, png_bytes):
        blobs = MockBlobStore(fail_uploads_matching="originals/")
        pipeline = AIProcessingPipeline(store, MockVisionClient())
        orchestrator = UploadOrchestrator(store, blobs, pipeline, dispatcher, settings)

        with pytest.raises(OriginalUploadFailed):
            await orchestrator.upload_image(_file(png_bytes), "alice")

        assert store.count_items("alice") == 0
        assert dispatcher.pending == 0

    async def test_thumbnail_upload_failure_leaves_orphan(
        self, store, dispatcher, settings, png_bytes
    ):
        blobs = MockBlobStore(fail_uploads_matching="thumbnails/")
        pipeline = AIProcessingPipeline(store, MockVisionClient())
        orchestrator = UploadOrchestrator(store, blobs, pipeline, dispatcher, settings)

        with pytest.raises(ThumbnailUploadFailed):
            await orchestrator.upload_image(_file(png_bytes), "alice")

        assert len(blobs.objects) == 1
        assert store.count_items("alice") == 0

    async def test_record_failure(self, orchestrator, store, dispatcher, png_bytes):
        with patch.object(store, "create_image", side_effect=StorageError("db down")):
            with pytest.raises(RecordSaveFailed):
                await orchestrator.upload_image(_file(png_bytes), "alice")

        assert dispatcher.pending == 0


@pytest.mark.parametrize(
    "name, expected",
    [
        ("photo.jpg", "photo.jpg"),
        ("my photo (1).png", "my_photo__1_.png"),
        ("../../etc/passwd", ".._.._etc_passwd"),
        ("café.webp", "caf_.webp"),
    ],
)
def test_sanitize_filename(name, expected):
    assert sanitize_filename(name) == expected
