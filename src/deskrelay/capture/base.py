"""Abstract base class for screen capture sources.

A capture source grabs the raw framebuffer of one display. The base
class turns that grab into what the controller receives: a resized
base64 JPEG plus the geometry needed to map model coordinates back onto
the display.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod

import numpy as np
from pydantic import BaseModel, ConfigDict, Field

from deskrelay.domain.models import Point, ScreenshotMetadata, Size
from deskrelay.utils.imaging import bgra_to_bgr, numpy_to_base64_jpeg, resize_to_fit

logger = logging.getLogger(__name__)


class RawScreen(BaseModel):
    """One unprocessed grab of a display."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    image: np.ndarray = Field(description="BGR or BGRA framebuffer, physical pixels")
    scale_factor: float = Field(default=1.0, gt=0)
    offset: Point = Field(default_factory=lambda: Point(x=0, y=0))


class ScreenCapture(ABC):
    """Abstract interface for grabbing the agent's screen.

    Example usage::

        async with MssScreenCapture(monitor=1) as capture:
            image_b64, metadata = await capture.capture()
    """

    def __init__(self, max_dimension: int = 1024, jpeg_quality: int = 75) -> None:
        self._max_dimension = max_dimension
        self._jpeg_quality = jpeg_quality
        self._is_open = False

    @property
    def is_open(self) -> bool:
        return self._is_open

    async def open(self) -> None:
        self._is_open = True

    async def close(self) -> None:
        self._is_open = False

    @abstractmethod
    async def grab(self) -> RawScreen:
        """Grab the display at full resolution.

        Raises:
            CaptureError: If the display cannot be read.
        """
        ...

    async def capture(self) -> tuple[str, ScreenshotMetadata]:
        """Grab, downscale and encode the display.

        Returns:
            The base64 JPEG and the metadata describing its geometry.
        """
        raw = await self.grab()
        loop = asyncio.get_running_loop()
        try:
            encoded, scaled = await loop.run_in_executor(None, self._encode, raw.image)
        except (ValueError, TypeError) as e:
            raise CaptureError(f"Failed to encode screenshot: {e}") from e

        h, w = raw.image.shape[:2]
        metadata = ScreenshotMetadata(
            original=Size(w=w, h=h),
            logical=Size(
                w=max(1, round(w / raw.scale_factor)),
                h=max(1, round(h / raw.scale_factor)),
            ),
            scaled=scaled,
            scale_factor=raw.scale_factor,
            offset=raw.offset,
        )
        logger.debug(
            "Captured %dx%d screen (logical %dx%d, sent %dx%d)",
            w, h, metadata.logical.w, metadata.logical.h, scaled.w, scaled.h,
        )
        return encoded, metadata

    def _encode(self, image: np.ndarray) -> tuple[str, Size]:
        resized = resize_to_fit(bgra_to_bgr(image), self._max_dimension)
        h, w = resized.shape[:2]
        return numpy_to_base64_jpeg(resized, self._jpeg_quality), Size(w=w, h=h)

    async def __aenter__(self) -> ScreenCapture:
        await self.open()
        return self

    async def __aexit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        await self.close()


class CaptureError(Exception):
    """Raised when screen capture fails."""

    def __init__(self, message: str, monitor: int | None = None) -> None:
        super().__init__(message)
        self.monitor = monitor
