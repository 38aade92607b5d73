"""Data models for SnapGallery."""
