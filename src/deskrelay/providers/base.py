"""Abstract base classes for vision providers and their adapters.

A VisionProvider sends the prompt, the conversation history and the
latest screenshot to a model and returns its text, its native tool
calls and the updated history. A ProviderAdapter translates those
native tool calls into canonical commands in model space, so nothing
downstream depends on which vendor produced them.
"""

from __future__ import annotations

import importlib
import logging
from abc import ABC, abstractmethod
from typing import Callable, Iterable, TypeVar

from deskrelay.domain.models import (
    DEFAULT_IMAGE_SIZE,
    CanonicalCommand,
    CommandKind,
    FunctionCall,
    ProviderRequest,
    ProviderResponse,
    ScrollDirection,
    Size,
)

logger = logging.getLogger(__name__)


DEFAULT_SYSTEM_PROMPT = (
    "You are a computer use agent. Your goal is to help the user control their "
    "computer to accomplish tasks. Critical: When the user's task is complete, you "
    'MUST include the word "DONE" in your response to terminate the session.'
)

# Modules that register the built-in adapters on import.
BUILTIN_PROVIDER_MODULES = {
    "gemini": "deskrelay.providers.gemini",
    "anthropic": "deskrelay.providers.anthropic",
    "openai": "deskrelay.providers.openai",
}


def scroll_command(
    direction: str | ScrollDirection,
    clicks: int,
    x: float | None = None,
    y: float | None = None,
) -> CanonicalCommand:
    """Build a scroll command; positive dy scrolls down, positive dx right."""
    direction = ScrollDirection(direction)
    clicks = max(1, abs(int(clicks)))
    dx, dy = {
        ScrollDirection.UP: (0, -clicks),
        ScrollDirection.DOWN: (0, clicks),
        ScrollDirection.LEFT: (-clicks, 0),
        ScrollDirection.RIGHT: (clicks, 0),
    }[direction]
    return CanonicalCommand(type=CommandKind.SCROLL, x=x, y=y, direction=direction, dx=dx, dy=dy)


class ProviderAdapter(ABC):
    """Translates one vendor's tool calls into canonical commands.

    Adapters are pure: no I/O, no state between calls.
    """

    provider_id: str = ""

    @abstractmethod
    def _translate(self, call: FunctionCall, image_size: Size) -> list[CanonicalCommand]:
        """Vendor-specific mapping.

        May raise UnrecognizedProviderAction, or KeyError/TypeError/
        ValueError for malformed arguments; translate() normalizes these.
        """
        ...

    def translate(self, call: FunctionCall, image_size: Size | None = None) -> list[CanonicalCommand]:
        """Translate one native call; an empty list means "nothing to do".

        Raises:
            UnrecognizedProviderAction: If the call cannot be mapped.
        """
        try:
            return self._translate(call, image_size or DEFAULT_IMAGE_SIZE)
        except UnrecognizedProviderAction:
            raise
        except (KeyError, TypeError, ValueError, IndexError) as e:
            raise UnrecognizedProviderAction(
                f"Malformed arguments for {call.name!r}: {e}",
                provider=self.provider_id,
                action=call.name,
            ) from e

    def translate_all(
        self,
        calls: Iterable[FunctionCall],
        image_size: Size | None = None,
    ) -> list[CanonicalCommand]:
        """Translate calls in order, dropping the ones that cannot be mapped."""
        commands: list[CanonicalCommand] = []
        for call in calls:
            try:
                commands.extend(self.translate(call, image_size))
            except UnrecognizedProviderAction as e:
                logger.warning("Dropping %s action %r: %s", self.provider_id, call.name, e)
        return commands


_ADAPTERS: dict[str, type[ProviderAdapter]] = {}

A = TypeVar("A", bound=type[ProviderAdapter])


def register_adapter(provider_id: str) -> Callable[[A], A]:
    """Class decorator adding an adapter to the provider table."""

    def decorator(cls: A) -> A:
        cls.provider_id = provider_id
        _ADAPTERS[provider_id] = cls
        return cls

    return decorator


def get_adapter(provider_id: str) -> ProviderAdapter:
    """Instantiate the adapter registered for ``provider_id``."""
    key = provider_id.lower()
    if key not in _ADAPTERS and key in BUILTIN_PROVIDER_MODULES:
        importlib.import_module(BUILTIN_PROVIDER_MODULES[key])
    try:
        return _ADAPTERS[key]()
    except KeyError:
        known = sorted(set(_ADAPTERS) | set(BUILTIN_PROVIDER_MODULES))
        raise ValueError(f"Unknown provider {provider_id!r}; known: {known}") from None


class VisionProvider(ABC):
    """Abstract interface for computer-use capable models.

    Example usage::

        provider = GeminiProvider(api_key="...")
        response = await provider.infer(
            ProviderRequest(prompt="Open the settings", screenshot=b64)
        )
        commands = get_adapter("gemini").translate_all(response.function_calls)
    """

    provider_id: str = ""

    def __init__(self, model: str, system_prompt: str | None = None) -> None:
        self._model = model
        self._system_prompt = system_prompt or DEFAULT_SYSTEM_PROMPT

    @property
    def model(self) -> str:
        return self._model

    @abstractmethod
    async def infer(self, request: ProviderRequest) -> ProviderResponse:
        """Run one inference turn.

        The returned history is authoritative; callers replace their
        copy with it.

        Raises:
            ProviderFailure: If the vendor call fails for any reason.
        """
        ...


class ProviderFailure(Exception):
    """Raised when a vision provider call fails."""

    def __init__(self, message: str, provider: str = "", raw_response: str = "") -> None:
        super().__init__(message)
        self.provider = provider
        self.raw_response = raw_response


class UnrecognizedProviderAction(Exception):
    """Raised when a native tool call has no canonical equivalent."""

    def __init__(self, message: str, provider: str = "", action: str = "") -> None:
        super().__init__(message)
        self.provider = provider
        self.action = action
