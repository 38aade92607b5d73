"""
Manual re-run of AI processing for an image that has not completed.
"""

import logging

from ..blobstore import BlobStore, BlobStoreError
from ..errors import (
    AlreadyCompleted,
    ImageNotFound,
    MetadataNotFound,
    StorageDownloadFailed,
)
from ..models.schemas import ProcessingStatus, RetryResponse
from ..storage import MetadataStore
from .pipeline import AIProcessingPipeline, TaskDispatcher

logger = logging.getLogger(__name__)


class RetryController:
    """Re-downloads an original and fires the AI pipeline on it again."""

    def __init__(
        self,
        store: MetadataStore,
        blobs: BlobStore,
        pipeline: AIProcessingPipeline,
        dispatcher: TaskDispatcher,
    ):
        self.store = store
        self.blobs = blobs
        self.pipeline = pipeline
        self.dispatcher = dispatcher

    async def retry(self, image_id: int, user_id: str) -> RetryResponse:
        """
        Re-trigger AI processing.

        The status check and the pipeline run are not atomic; a retry racing
        an in-flight run is accepted and the last write wins.

        Raises:
            ImageNotFound: If the image is missing or owned by someone else
            MetadataNotFound: If the image has no metadata row
            AlreadyCompleted: If processing already completed
            StorageDownloadFailed: If the original cannot be downloaded
        """
        image = self.store.get_image(image_id, user_id)
        if image is None:
            raise ImageNotFound()

        metadata = self.store.get_metadata(image_id)
        if metadata is None:
            raise MetadataNotFound()
        if metadata.ai_processing_status == ProcessingStatus.COMPLETED.value:
            raise AlreadyCompleted()

        try:
            data = await self.blobs.download(image.original_path)
        except BlobStoreError as e:
            logger.error(f"Download failed for image {image_id}: {e}")
            raise StorageDownloadFailed() from e
        if not data:
            logger.error(f"Empty download for image {image_id}")
            raise StorageDownloadFailed()

        logger.info(f"AI processing retry initiated for image {image_id}")
        self.dispatcher.fire(
            self.pipeline.process(image_id, user_id, bytes(data)),
            name=f"ai-retry-{image_id}",
        )

        return RetryResponse(
            success=True, message="AI processing retry initiated", image_id=image_id
        )
