"""Provider Adapter module for deskrelay.

Sends screenshots to computer-use models and translates their native
tool calls into canonical commands.

Public API:
    VisionProvider -- Abstract base class for model clients
    ProviderAdapter -- Abstract base class for call translators
    get_adapter -- Look up the adapter for a provider id
    GeminiProvider -- Google Gemini implementation
    AnthropicProvider -- Claude implementation
    OpenAIProvider -- OpenAI Responses API implementation
"""

from deskrelay.providers.base import (
    DEFAULT_SYSTEM_PROMPT,
    ProviderAdapter,
    ProviderFailure,
    UnrecognizedProviderAction,
    VisionProvider,
    get_adapter,
    register_adapter,
    scroll_command,
)

__all__ = [
    "DEFAULT_SYSTEM_PROMPT",
    "AnthropicProvider",
    "GeminiProvider",
    "OpenAIProvider",
    "ProviderAdapter",
    "ProviderFailure",
    "UnrecognizedProviderAction",
    "VisionProvider",
    "get_adapter",
    "register_adapter",
    "scroll_command",
]


def __getattr__(name: str) -> type:
    """Lazy import for concrete implementations that require external deps."""
    if name == "GeminiProvider":
        from deskrelay.providers.gemini import GeminiProvider
        return GeminiProvider
    if name == "AnthropicProvider":
        from deskrelay.providers.anthropic import AnthropicProvider
        return AnthropicProvider
    if name == "OpenAIProvider":
        from deskrelay.providers.openai import OpenAIProvider
        return OpenAIProvider
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
