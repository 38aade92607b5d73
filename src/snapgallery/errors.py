"""
Error taxonomy for SnapGallery.

Every error that can reach a client carries an HTTP status code and a
message that is safe to show. Routes render them as ``{"error": message}``.
"""

from typing import Optional


class GalleryError(Exception):
    """Base class for client-visible errors."""

    status_code: int = 500
    default_message: str = "Internal Server Error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(GalleryError):
    """Bad input shape or format."""

    status_code = 400
    default_message = "Invalid request"


class NotFoundError(GalleryError):
    """Missing or not-owned resource."""

    status_code = 404
    default_message = "Not found"


class ConflictError(GalleryError):
    """Request conflicts with the current resource state."""

    status_code = 400
    default_message = "Conflict"


class UpstreamFailure(GalleryError):
    """Blob store, database or AI provider failure."""

    status_code = 500
    default_message = "Upstream failure"


class AuthError(GalleryError):
    """Missing, invalid or expired credential."""

    status_code = 401
    default_message = "Unauthorized"


# Upload validation


class InvalidMediaType(ValidationError):
    default_message = "Only JPEG, PNG, and WebP images are allowed"


class FileTooLarge(ValidationError):
    default_message = "File size must be under 10MB"


class MissingFile(ValidationError):
    default_message = "Only image files are allowed"


class InvalidColorFormat(ValidationError):
    default_message = "Invalid color format"


# Upload pipeline


class ThumbnailGenerationFailed(UpstreamFailure):
    default_message = "Failed to generate thumbnail"


class OriginalUploadFailed(UpstreamFailure):
    default_message = "Failed to upload original image"


class ThumbnailUploadFailed(UpstreamFailure):
    default_message = "Failed to upload thumbnail"


class RecordSaveFailed(UpstreamFailure):
    default_message = "Failed to save image record"


class InvalidAIResponse(UpstreamFailure):
    default_message = "AI response was not valid JSON"


# Retry


class ImageNotFound(NotFoundError):
    default_message = "Image not found"


class MetadataNotFound(NotFoundError):
    default_message = "Image metadata not found"


class AlreadyCompleted(ConflictError):
    default_message = "AI processing already completed"


class StorageDownloadFailed(UpstreamFailure):
    default_message = "Failed to download image from storage"
