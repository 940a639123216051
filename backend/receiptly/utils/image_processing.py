"""Image preprocessing utilities.

Preprocessing receipt images can improve model performance and keeps
the request payload small.  The function in this module applies the
EXIF orientation, converts to grayscale and resizes the image so it
fits within a reasonable size.  Pillow is used as the imaging backend.
"""

from __future__ import annotations

import logging
from io import BytesIO

from PIL import Image, ImageOps, UnidentifiedImageError

logger = logging.getLogger(__name__)


def preprocess_image(image_data: bytes, max_size: int = 1024) -> bytes:
    """Preprocess an image for receipt extraction.

    This function attempts to open the image, convert it to
    grayscale and resize the longest edge to ``max_size`` pixels while
    maintaining aspect ratio.  Bytes Pillow cannot decode are returned
    unchanged.

    :param image_data: Raw image bytes
    :param max_size: Maximum size of the longest edge in pixels
    :returns: Processed image bytes in JPEG format
    """
    try:
        with Image.open(BytesIO(image_data)) as img:
            # Apply EXIF orientation (e.g., phone photos taken upright)
            img = ImageOps.exif_transpose(img)
            # Convert to grayscale for OCR consistency
            img = img.convert("L")
            width, height = img.size
            max_dim = max(width, height)
            if max_dim > max_size:
                scale = max_size / float(max_dim)
                new_size = (max(1, int(width * scale)), max(1, int(height * scale)))
                img = img.resize(new_size)
            buf = BytesIO()
            img.save(buf, format="JPEG")
            return buf.getvalue()
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        logger.debug("[image] preprocessing skipped: %s", exc)
        return image_data
