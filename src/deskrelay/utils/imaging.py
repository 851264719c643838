"""Image processing utilities for deskrelay.

Shared encoding and sizing helpers used by the capture module and by
the vision providers.
"""

from __future__ import annotations

import base64
import binascii
import io
import logging

import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError

from deskrelay.domain.models import DEFAULT_IMAGE_SIZE, Size

logger = logging.getLogger(__name__)


def bgra_to_bgr(image: np.ndarray) -> np.ndarray:
    """Drop the alpha channel of a raw screen grab."""
    if image.ndim == 3 and image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)
    return image


def resize_to_fit(image: np.ndarray, max_dimension: int = 1024) -> np.ndarray:
    """Downscale so both sides fit in a ``max_dimension`` square.

    Preserves aspect ratio and never upscales.
    """
    h, w = image.shape[:2]
    largest = max(h, w)
    if largest <= max_dimension:
        return image
    scale = max_dimension / largest
    new_w = max(1, int(round(w * scale)))
    new_h = max(1, int(round(h * scale)))
    return cv2.resize(image, (new_w, new_h), interpolation=cv2.INTER_LANCZOS4)


def numpy_to_base64_jpeg(image: np.ndarray, quality: int = 75) -> str:
    """Convert a numpy image array (BGR, OpenCV format) to base64 JPEG."""
    success, buffer = cv2.imencode(".jpg", image, [int(cv2.IMWRITE_JPEG_QUALITY), quality])
    if not success:
        raise ValueError("Failed to encode image to JPEG")
    return base64.b64encode(buffer.tobytes()).decode("utf-8")


def image_size_from_base64(data: str | None, default: Size = DEFAULT_IMAGE_SIZE) -> Size:
    """Read the pixel dimensions of a base64-encoded image.

    Falls back to ``default`` when there is no image or it cannot be
    decoded.
    """
    if not data:
        return default
    try:
        with Image.open(io.BytesIO(base64.b64decode(data))) as img:
            w, h = img.size
    except (binascii.Error, UnidentifiedImageError, OSError, ValueError) as e:
        logger.warning("Could not read screenshot dimensions, using %dx%d: %s", default.w, default.h, e)
        return default
    return Size(w=w, h=h)
