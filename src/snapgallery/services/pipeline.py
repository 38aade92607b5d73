"""
AI metadata pipeline and the dispatcher that runs it in the background.
"""

import asyncio
import logging
import time
from typing import Coroutine, Optional, Set

from ..storage import MetadataStore, StorageError
from ..vision import BaseVisionProvider, classify_failure

logger = logging.getLogger(__name__)


class TaskDispatcher:
    """
    Fire-and-forget task runner.

    Tasks are referenced until they finish so they are not garbage
    collected mid-flight. Exceptions escaping a task are logged, never
    re-raised to whoever fired it.
    """

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        """Number of tasks still running."""
        return len(self._tasks)

    def fire(self, coro: Coroutine, name: Optional[str] = None) -> None:
        """Schedule ``coro`` on the running loop without awaiting it."""
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning(f"Background task {task.get_name()} was cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Background task {task.get_name()} failed: {error!r}")

    async def drain(self) -> None:
        """Wait for every in-flight task, including ones fired meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class AIProcessingPipeline:
    """
    Vision analysis followed by a single status write.

    ``process`` moves an image's metadata from ``pending`` (or ``failed``)
    to ``completed`` or ``failed`` and never raises.
    """

    def __init__(
        self,
        store: MetadataStore,
        vision: BaseVisionProvider,
        enable_embeddings: bool = False,
    ):
        assert store is not None, "Metadata store is required"
        assert vision is not None, "Vision provider is required"

        self.store = store
        self.vision = vision
        self.enable_embeddings = enable_embeddings

    async def process(self, image_id: int, user_id: str, image_data: bytes) -> None:
        """Analyze an image and record the outcome on its metadata row."""
        start_time = time.time()
        logger.info(f"AI processing started for image {image_id}")

        try:
            analysis = await self.vision.analyze(image_data)
            embedding = None
            if self.enable_embeddings and analysis.description:
                embedding = await self.vision.embed(analysis.description)
        except Exception as e:
            reason = classify_failure(e)
            logger.warning(
                f"AI processing failed for image {image_id} "
                f"(failure_reason={reason.value}): {e}"
            )
            self._record_failure(image_id, user_id)
            return

        try:
            updated = self.store.mark_completed(
                image_id,
                user_id,
                description=analysis.description,
                tags=analysis.tags,
                embedding=embedding,
            )
        except StorageError as e:
            logger.error(f"Failed to store AI results for image {image_id}: {e}")
            return

        if not updated:
            logger.warning(f"No metadata row updated for image {image_id}")
            return

        processing_time = int((time.time() - start_time) * 1000)
        logger.info(
            f"AI processing completed for image {image_id} "
            f"({len(analysis.tags)} tags, {processing_time}ms)"
        )

    def _record_failure(self, image_id: int, user_id: str) -> None:
        try:
            self.store.mark_failed(image_id, user_id)
        except StorageError as e:
            logger.error(f"Failed to mark image {image_id} failed: {e}")
