"""
Main entry point for SnapGallery application.

This module provides the main function and CLI interface
for running the SnapGallery server.
"""

import logging

import uvicorn

from .api import create_app
from .config import Settings

logger = logging.getLogger(__name__)


def main():
    """Main application entry point."""
    settings = Settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        app = create_app(settings)

        logger.info("Starting SnapGallery server...")
        uvicorn.run(
            app,
            host=settings.server_host,
            port=settings.server_port,
            log_level=settings.log_level.lower(),
        )

    except Exception as e:
        logger.error(f"Failed to start server: {e}")
        raise


if __name__ == "__main__":
    main()
