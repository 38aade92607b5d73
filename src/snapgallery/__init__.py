"""
SnapGallery: personal image gallery API with AI-derived metadata.

This package provides image upload with thumbnailing and dominant-color
extraction, background AI tagging, and paginated listing and search.
"""

__version__ = "0.1.0"
__author__ = "Development Team"
__email__ = "dev@example.com"
