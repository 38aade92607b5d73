"""
Pixel-level helpers: thumbnails and dominant colors.

Both functions take the raw upload bytes and never touch storage.
"""

import io
import logging
from typing import List, Sequence, Tuple

from PIL import Image, ImageOps

logger = logging.getLogger(__name__)

# Working size for palette extraction; large inputs are downsampled first.
_PALETTE_SAMPLE_SIZE = (200, 200)


class ThumbnailError(Exception):
    """Thumbnail generation errors."""


class ColorExtractionError(Exception):
    """Color extraction errors."""


def rgb_to_hex(rgb: Sequence[float]) -> str:
    """Convert an RGB triple to a lowercase ``#rrggbb`` string."""
    r, g, b = (max(0, min(255, int(round(c)))) for c in rgb[:3])
    return f"#{r:02x}{g:02x}{b:02x}"


def generate_thumbnail(data: bytes, max_size: int = 300) -> Tuple[bytes, int, int]:
    """
    Generate a JPEG thumbnail bounded to ``max_size`` on the long edge.

    EXIF orientation is applied before resizing so the thumbnail is upright.
    Smaller images are not enlarged.

    Args:
        data: Raw image bytes
        max_size: Long-edge bound in pixels

    Returns:
        Tuple of (thumbnail bytes, width, height)

    Raises:
        ThumbnailError: If the image cannot be decoded or encoded
    """
    assert max_size > 0, f"Invalid thumbnail size: {max_size}"

    try:
        with Image.open(io.BytesIO(data)) as image:
            oriented = ImageOps.exif_transpose(image)
            oriented.thumbnail((max_size, max_size), Image.Resampling.LANCZOS)
            if oriented.mode not in ("RGB", "L"):
                oriented = oriented.convert("RGB")

            output = io.BytesIO()
            oriented.save(output, format="JPEG", quality=80)
            width, height = oriented.size
            return output.getvalue(), width, height

    except Exception as e:
        raise ThumbnailError(f"Failed to generate thumbnail: {e}") from e


def extract_dominant_colors(data: bytes, color_count: int = 5) -> List[str]:
    """
    Extract the dominant colors of an image, most populous first.

    Args:
        data: Raw image bytes
        color_count: Maximum number of colors returned

    Returns:
        Up to ``color_count`` distinct lowercase hex strings; empty when the
        image has no distinguishable swatches

    Raises:
        TypeError: If ``data`` is not a bytes-like buffer
        ColorExtractionError: If the palette cannot be computed
    """
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise TypeError("Invalid buffer provided")
    assert color_count > 0, f"Invalid color count: {color_count}"

    try:
        with Image.open(io.BytesIO(data)) as image:
            sample = image.convert("RGB")
            sample.thumbnail(_PALETTE_SAMPLE_SIZE)

            quantized = sample.quantize(
                colors=max(color_count * 2, 8), method=Image.Quantize.MEDIANCUT
            )
            palette = quantized.getpalette() or []
            counts = quantized.getcolors() or []

    except Exception as e:
        raise ColorExtractionError(f"Failed to extract colors: {e}") from e

    colors: List[str] = []
    for _, index in sorted(counts, key=lambda c: (-c[0], c[1])):
        hex_color = rgb_to_hex(palette[index * 3 : index * 3 + 3])
        if hex_color not in colors:
            colors.append(hex_color)
        if len(colors) == color_count:
            break
    return colors
