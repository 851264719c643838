"""Screen capture using mss.

mss reads the framebuffer in physical pixels while its monitor table is
in OS (logical) units, so the ratio of the two is the display's scale
factor.
"""

from __future__ import annotations

import asyncio
import logging

import mss
import mss.exception
import numpy as np

from deskrelay.capture.base import CaptureError, RawScreen, ScreenCapture
from deskrelay.domain.models import Point

logger = logging.getLogger(__name__)


class MssScreenCapture(ScreenCapture):
    """Grabs one monitor with mss in a worker thread.

    Monitor 1 is the primary display; 0 is the union of all displays.
    """

    def __init__(
        self,
        monitor: int = 1,
        max_dimension: int = 1024,
        jpeg_quality: int = 75,
    ) -> None:
        super().__init__(max_dimension=max_dimension, jpeg_quality=jpeg_quality)
        self._monitor = monitor

    async def open(self) -> None:
        loop = asyncio.get_running_loop()
        count = await loop.run_in_executor(None, self._monitor_count)
        if self._monitor >= count:
            raise CaptureError(
                f"Monitor {self._monitor} not found ({count - 1} available)",
                monitor=self._monitor,
            )
        self._is_open = True
        logger.info("Opened screen capture on monitor %d", self._monitor)

    async def grab(self) -> RawScreen:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._grab_sync)

    def _monitor_count(self) -> int:
        with mss.mss() as sct:
            return len(sct.monitors)

    def _grab_sync(self) -> RawScreen:
        try:
            # mss handles are not shareable across threads; open one per grab.
            with mss.mss() as sct:
                monitor = sct.monitors[self._monitor]
                shot = sct.grab(monitor)
        except (mss.exception.ScreenShotError, IndexError) as e:
            raise CaptureError(f"Screen grab failed: {e}", monitor=self._monitor) from e

        image = np.array(shot)
        scale_factor = image.shape[1] / monitor["width"] if monitor["width"] else 1.0
        return RawScreen(
            image=image,
            scale_factor=scale_factor,
            offset=Point(x=monitor["left"], y=monitor["top"]),
        )
