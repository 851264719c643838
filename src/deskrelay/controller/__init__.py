"""Controller module for deskrelay.

Public API:
    ControllerClient -- Claim, join and drive one agent
    ControlLoop -- Screenshot -> provider -> commands loop
    ScreenshotCorrelator -- Request/response table for screenshots
"""

from deskrelay.controller.client import ControllerClient
from deskrelay.controller.correlation import (
    PendingScreenshot,
    ScreenshotCorrelator,
    ScreenshotSuperseded,
    ScreenshotTimeout,
)
from deskrelay.controller.loop import ControlLoop

__all__ = [
    "ControlLoop",
    "ControllerClient",
    "PendingScreenshot",
    "ScreenshotCorrelator",
    "ScreenshotSuperseded",
    "ScreenshotTimeout",
]
