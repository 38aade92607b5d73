"""
Write-side services: upload, AI processing and retry.
"""

from .pipeline import AIProcessingPipeline, TaskDispatcher
from .retry import RetryController
from .upload import IncomingFile, UploadOrchestrator, sanitize_filename

__all__ = [
    "AIProcessingPipeline",
    "IncomingFile",
    "RetryController",
    "TaskDispatcher",
    "UploadOrchestrator",
    "sanitize_filename",
]
