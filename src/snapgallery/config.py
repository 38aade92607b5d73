"""
Configuration management for SnapGallery application.

This module handles loading and validation of configuration settings
from environment variables and provides type-safe configuration objects.
"""

from pathlib import Path
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration settings."""

    # Storage settings
    database_path: Path = Field(
        default=Path("./data/snapgallery.db"), description="SQLite database path"
    )
    blob_backend: Literal["local", "supabase"] = Field(
        default="local", description="Object store backend"
    )
    blob_storage_path: Path = Field(
        default=Path("./data/blobs"), description="Root directory for local blobs"
    )

    # Supabase settings (identity provider and object store)
    supabase_url: Optional[str] = Field(default=None, description="Supabase URL")
    supabase_service_role_key: Optional[str] = Field(
        default=None, description="Supabase service role key"
    )
    supabase_bucket: str = Field(default="images", description="Storage bucket")

    # OpenAI settings
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API key")
    openai_base_url: str = Field(
        default="https://api.openai.com/v1", description="OpenAI base URL"
    )
    openai_vision_model: str = Field(
        default="gpt-4o", description="Vision model used for descriptions and tags"
    )
    openai_embedding_model: str = Field(
        default="text-embedding-3-small", description="Embedding model name"
    )
    enable_embeddings: bool = Field(
        default=False, description="Store description embeddings after analysis"
    )
    ai_timeout_seconds: float = Field(
        default=30.0, description="Timeout for AI API calls"
    )

    # Upload settings
    max_upload_bytes: int = Field(
        default=10485760, description="Maximum image size in bytes (10MB)"
    )
    max_files_per_upload: int = Field(
        default=5, description="Maximum files accepted per upload request"
    )
    thumbnail_max_size: int = Field(
        default=300, description="Thumbnail bound on the long edge in pixels"
    )
    color_count: int = Field(default=5, description="Dominant colors to extract")

    # Listing settings
    default_page_size: int = Field(default=20, description="Default page size")
    max_page_size: int = Field(default=50, description="Maximum page size")

    # Server settings
    cors_origin: str = Field(default="*", description="Allowed CORS origin")
    server_host: str = Field(default="0.0.0.0", description="Server host")
    server_port: int = Field(default=8000, description="Server port")
    log_level: str = Field(default="INFO", description="Log level")
    debug: bool = Field(default=False, description="Debug mode")

    class Config:
        """Pydantic configuration."""

        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


def get_settings() -> Settings:
    """Get application settings instance."""
    return Settings()
