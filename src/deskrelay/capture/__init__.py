"""Screen capture module for deskrelay.

Public API:
    ScreenCapture -- Abstract base class
    MssScreenCapture -- mss-based implementation
"""

from deskrelay.capture.base import CaptureError, RawScreen, ScreenCapture

__all__ = ["CaptureError", "MssScreenCapture", "RawScreen", "ScreenCapture"]


def __getattr__(name: str) -> type:
    """Lazy import for concrete implementations that require external deps."""
    if name == "MssScreenCapture":
        from deskrelay.capture.screen import MssScreenCapture
        return MssScreenCapture
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
