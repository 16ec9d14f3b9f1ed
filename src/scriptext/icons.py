# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""Icon rasters for the bundle: resized upload, or transparent blanks."""

import logging
from io import BytesIO
from typing import Dict, Optional, Sequence

from PIL import Image, UnidentifiedImageError


logger = logging.getLogger(__name__)

# Formats Pillow is asked to try first, by upload file extension
FORMAT_HINTS = {
    "ico": ["ICO"],
    "png": ["PNG"],
    "jpg": ["JPEG"],
    "jpeg": ["JPEG"],
    "gif": ["GIF"],
    "webp": ["WEBP"],
    "bmp": ["BMP"],
}


def _png_bytes(img: "Image.Image") -> bytes:
    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def blank_icon(size: int) -> bytes:
    """A fully transparent square PNG."""
    return _png_bytes(Image.new("RGBA", (size, size), (0, 0, 0, 0)))


def resize_icon(data: bytes, size: int, ext: Optional[str] = None) -> bytes:
    """Resize image bytes to a size x size PNG.

    Raises:
        ValueError: If the bytes are not an image Pillow can read.
    """
    hints = FORMAT_HINTS.get((ext or "").lower().lstrip("."))
    # Try the extension's format first; uploads are often misnamed
    attempts = [hints, None] if hints else [None]
    error: Optional[Exception] = None
    for formats in attempts:
        try:
            with Image.open(BytesIO(data), formats=formats) as img:
                img.load()
                resized = img.convert("RGBA").resize((size, size), Image.LANCZOS)
            return _png_bytes(resized)
        except (UnidentifiedImageError, OSError) as e:
            error = e
    raise ValueError(f"Unreadable icon image: {error}")


def generate_icons(
    data: Optional[bytes] = None,
    ext: Optional[str] = None,
    sizes: Sequence[int] = (48, 128),
) -> Dict[int, bytes]:
    """
    Produce one PNG per size.

    Falls back to blank icons for every size when no image is given or the
    image cannot be read.
    """
    if data:
        try:
            return {size: resize_icon(data, size, ext) for size in sizes}
        except ValueError as e:
            logger.warning(f"{e}; using blank icons")
    return {size: blank_icon(size) for size in sizes}
