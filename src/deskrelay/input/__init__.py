"""Input Host module for deskrelay.

Public API:
    InputHost -- Abstract base class
    HttpInputHost -- Client of a remote input service
    PyAutoGuiInputHost -- Local pointer/keyboard backend
"""

from deskrelay.input.base import InputHost, InputHostError

__all__ = ["HttpInputHost", "InputHost", "InputHostError", "PyAutoGuiInputHost"]


def __getattr__(name: str) -> type:
    """Lazy import for concrete implementations that require external deps."""
    if name == "HttpInputHost":
        from deskrelay.input.http_host import HttpInputHost
        return HttpInputHost
    if name == "PyAutoGuiInputHost":
        from deskrelay.input.pyautogui_host import PyAutoGuiInputHost
        return PyAutoGuiInputHost
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
