"""
SnapGallery API schemas.

Request/response models for:
- Images: upload, listing, search, detail, similar
- Metadata: AI processing status and analysis results
- Auth: sign-up / sign-in passthrough
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ProcessingStatus(str, Enum):
    """AI processing state of an image."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# ========================================
# IMAGE SCHEMAS
# ========================================


class ImageRecord(BaseModel):
    """One stored image row."""

    id: int = Field(..., description="Image identifier")
    user_id: str = Field(..., description="Owner identifier")
    filename: str = Field(..., description="Original client filename")
    original_path: str = Field(..., description="Storage key of the original")
    thumbnail_path: str = Field(..., description="Storage key of the thumbnail")
    file_size: int = Field(..., description="File size in bytes")
    mime_type: str = Field(..., description="MIME type")
    uploaded_at: datetime = Field(..., description="Upload timestamp")


class MetadataView(BaseModel):
    """AI-derived metadata as exposed to clients."""

    description: Optional[str] = Field(None, description="Image description")
    tags: List[str] = Field(default_factory=list, description="Image tags")
    colors: List[str] = Field(default_factory=list, description="Hex colors")
    dominant_color: Optional[str] = Field(None, description="Most dominant color")
    ai_processing_status: str = Field(..., description="AI processing status")


class MetadataRecord(MetadataView):
    """Full metadata row, including ownership and timestamps."""

    id: int = Field(..., description="Metadata identifier")
    image_id: int = Field(..., description="Image identifier")
    user_id: str = Field(..., description="Owner identifier")
    embedding: Optional[List[float]] = Field(None, description="Description embedding")
    updated_at: Optional[datetime] = Field(None, description="Last update timestamp")


class ImageItem(ImageRecord):
    """Image with its metadata, as returned by listing and search."""

    metadata: Optional[MetadataView] = Field(None, description="Image metadata")


class UploadedImage(ImageRecord):
    """Image record returned right after upload."""

    colors: List[str] = Field(default_factory=list, description="Hex colors")
    dominant_color: Optional[str] = Field(None, description="Most dominant color")
    ai_processing_status: str = Field(..., description="AI processing status")


class UploadFailure(BaseModel):
    """Per-file failure in a batch upload."""

    filename: str = Field(..., description="Original filename")
    error: str = Field(..., description="Error message")


class UploadBatchResponse(BaseModel):
    """Response for a batch upload where at least one file succeeded."""

    success: bool = Field(True, description="At least one upload succeeded")
    images: List[UploadedImage] = Field(..., description="Uploaded images")
    errors: Optional[List[UploadFailure]] = Field(None, description="Failed files")


class UploadFailedResponse(BaseModel):
    """Response when every file in a batch failed."""

    error: str = Field(..., description="Error message")
    errors: List[UploadFailure] = Field(..., description="Failed files")


# ========================================
# PAGINATION SCHEMAS
# ========================================


class PageResult(BaseModel):
    """Page of images plus pagination arithmetic."""

    items: List[ImageItem] = Field(..., description="Page items")
    total: int = Field(..., description="Total matching images")
    limit: int = Field(..., description="Normalized limit")
    offset: int = Field(..., description="Normalized offset")
    has_next: bool = Field(..., description="A next page exists")
    has_prev: bool = Field(..., description="A previous page exists")
    next_offset: Optional[int] = Field(None, description="Offset of the next page")
    prev_offset: Optional[int] = Field(None, description="Offset of the previous page")


class PaginationInfo(BaseModel):
    """Pagination block of a listing response."""

    model_config = ConfigDict(populate_by_name=True)

    total: int = Field(..., description="Total matching images")
    limit: int = Field(..., description="Normalized limit")
    offset: int = Field(..., description="Normalized offset")
    has_next: bool = Field(..., alias="hasNext", description="A next page exists")
    has_prev: bool = Field(..., alias="hasPrev", description="A previous page exists")
    links: Dict[str, str] = Field(..., description="HATEOAS links")


class PaginatedResponse(BaseModel):
    """Listing/search envelope."""

    items: List[ImageItem] = Field(..., description="Page items")
    pagination: PaginationInfo = Field(..., description="Pagination details")


# ========================================
# AI SCHEMAS
# ========================================


class VisionAnalysis(BaseModel):
    """Sanitized vision model output."""

    description: str = Field("", description="Generated description")
    tags: List[str] = Field(default_factory=list, description="Generated tags")

    @field_validator("description", mode="before")
    @classmethod
    def validate_description(cls, v: Any) -> str:
        """Coerce to a trimmed string."""
        return v.strip() if isinstance(v, str) else ""

    @field_validator("tags", mode="before")
    @classmethod
    def validate_tags(cls, v: Any) -> List[str]:
        """Keep non-empty string tags, trimmed, at most 10."""
        if not isinstance(v, list):
            return []
        tags = [t.strip() for t in v if isinstance(t, str) and t.strip()]
        return tags[:10]


class RetryResponse(BaseModel):
    """Response for AI processing retry."""

    success: bool = Field(..., description="Retry accepted")
    message: str = Field(..., description="Status message")
    image_id: int = Field(..., description="Image identifier")


# ========================================
# BROWSE SCHEMAS
# ========================================


class ColorsResponse(BaseModel):
    """Distinct colors across the user's analyzed images."""

    colors: List[str] = Field(..., description="Distinct hex colors")
    total: int = Field(..., description="Number of colors returned")


class SimilarResponse(BaseModel):
    """Images similar to a source image."""

    items: List[ImageItem] = Field(..., description="Similar images")
    total: int = Field(..., description="Number of similar images returned")


# ========================================
# AUTH SCHEMAS
# ========================================


class AuthenticatedUser(BaseModel):
    """Identity resolved from a bearer token."""

    user_id: str = Field(..., description="User identifier")
    email: Optional[str] = Field(None, description="User email")


class CredentialsRequest(BaseModel):
    """Email/password body for sign-up and sign-in."""

    email: Optional[str] = Field(None, description="Email address")
    password: Optional[str] = Field(None, description="Password")


class SessionResponse(BaseModel):
    """Tokens issued on sign-in."""

    access_token: Optional[str] = Field(None, description="Access token")
    refresh_token: Optional[str] = Field(None, description="Refresh token")
    user: Optional[Dict[str, Any]] = Field(None, description="User object")


# ========================================
# SYSTEM SCHEMAS
# ========================================


class HealthResponse(BaseModel):
    """System health check response."""

    status: str = Field(..., description="Overall system status")
    uptime: float = Field(..., description="Seconds since startup")
