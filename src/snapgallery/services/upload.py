"""
Single-image upload: validation, colors, thumbnail, blobs, rows, then AI.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Optional

from ..blobstore import BlobStore, BlobStoreError
from ..config import Settings
from ..errors import (
    FileTooLarge,
    InvalidMediaType,
    MissingFile,
    OriginalUploadFailed,
    RecordSaveFailed,
    ThumbnailGenerationFailed,
    ThumbnailUploadFailed,
)
from ..imaging import (
    ColorExtractionError,
    ThumbnailError,
    extract_dominant_colors,
    generate_thumbnail,
)
from ..models.schemas import ProcessingStatus, UploadedImage
from ..storage import MetadataStore, StorageError
from .pipeline import AIProcessingPipeline, TaskDispatcher

logger = logging.getLogger(__name__)

ALLOWED_MIME_RE = re.compile(r"^image/(jpeg|png|webp)$", re.IGNORECASE)

_UNSAFE_NAME_CHARS_RE = re.compile(r"[^A-Za-z0-9.-]")


@dataclass
class IncomingFile:
    """One file of a multipart upload, already read into memory."""

    filename: Optional[str]
    content_type: Optional[str]
    data: Optional[bytes]

    @property
    def size(self) -> int:
        return len(self.data) if self.data else 0


def sanitize_filename(filename: str) -> str:
    """Replace characters outside ``[A-Za-z0-9.-]`` for use in storage keys."""
    return _UNSAFE_NAME_CHARS_RE.sub("_", filename)


class UploadOrchestrator:
    """Runs one upload end to end and hands the image to the AI pipeline."""

    def __init__(
        self,
        store: MetadataStore,
        blobs: BlobStore,
        pipeline: AIProcessingPipeline,
        dispatcher: TaskDispatcher,
        settings: Settings,
    ):
        self.store = store
        self.blobs = blobs
        self.pipeline = pipeline
        self.dispatcher = dispatcher
        self.settings = settings

    def validate(self, file: IncomingFile) -> None:
        """
        Check type, size and presence, in that order.

        Raises:
            InvalidMediaType: If the content type is not JPEG, PNG or WebP
            FileTooLarge: If the file exceeds ``max_upload_bytes``
            MissingFile: If the payload or the filename is missing
        """
        if not file.content_type or not ALLOWED_MIME_RE.match(file.content_type):
            raise InvalidMediaType()
        if file.size > self.settings.max_upload_bytes:
            raise FileTooLarge()
        if not file.data or not file.filename:
            raise MissingFile()

    async def upload_image(self, file: IncomingFile, user_id: str) -> UploadedImage:
        """
        Store one image and start its AI processing.

        Args:
            file: Uploaded file
            user_id: Owner identifier

        Returns:
            Stored image with its colors and ``pending`` status

        Raises:
            ValidationError: If the file is rejected (see ``validate``)
            UpstreamFailure: If the thumbnail, a blob or the record fails
        """
        assert user_id, "User ID is required"
        self.validate(file)

        try:
            colors = await asyncio.to_thread(
                extract_dominant_colors, file.data, self.settings.color_count
            )
        except (ColorExtractionError, TypeError) as e:
            logger.warning(f"Color extraction failed for {file.filename}: {e}")
            colors = []
        dominant_color = colors[0] if colors else None

        try:
            thumbnail, width, height = await asyncio.to_thread(
                generate_thumbnail, file.data, self.settings.thumbnail_max_size
            )
        except ThumbnailError as e:
            logger.error(f"Thumbnail generation failed for {file.filename}: {e}")
            raise ThumbnailGenerationFailed() from e

        timestamp = int(time.time() * 1000)
        safe_name = sanitize_filename(file.filename)

        try:
            original_path = await self.blobs.upload(
                f"originals/{user_id}/original-{timestamp}-{safe_name}",
                file.data,
                file.content_type,
            )
        except BlobStoreError as e:
            logger.error(f"Original upload failed for {file.filename}: {e}")
            raise OriginalUploadFailed() from e

        # The original stays in the store if anything below fails.
        try:
            thumbnail_path = await self.blobs.upload(
                f"thumbnails/{user_id}/thumb-{timestamp}-{safe_name}",
                thumbnail,
                "image/jpeg",
            )
        except BlobStoreError as e:
            logger.error(f"Thumbnail upload failed for {file.filename}: {e}")
            raise ThumbnailUploadFailed() from e

        try:
            image = self.store.create_image(
                user_id=user_id,
                filename=file.filename,
                original_path=original_path,
                thumbnail_path=thumbnail_path,
                file_size=file.size,
                mime_type=file.content_type,
                colors=colors,
                dominant_color=dominant_color,
            )
        except StorageError as e:
            logger.error(f"Record save failed for {file.filename}: {e}")
            raise RecordSaveFailed() from e

        self.dispatcher.fire(
            self.pipeline.process(image.id, user_id, file.data),
            name=f"ai-{image.id}",
        )

        logger.info(
            f"Uploaded image {image.id} ({file.size} bytes, "
            f"thumbnail {width}x{height}, {len(colors)} colors)"
        )
        return UploadedImage(
            **image.model_dump(),
            colors=colors,
            dominant_color=dominant_color,
            ai_processing_status=ProcessingStatus.PENDING.value,
        )
