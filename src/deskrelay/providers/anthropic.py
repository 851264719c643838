"""Anthropic Claude computer-use provider.

Uses the Anthropic Python SDK with the ``computer_20250124`` tool. The
tool is sized to the screenshot, so Claude answers in screenshot pixels
and the adapter rescales them to model space.
"""

from __future__ import annotations

import logging
from typing import Any

from deskrelay.coords.normalizer import pixels_to_model
from deskrelay.domain.models import (
    CanonicalCommand,
    CommandKind,
    FunctionCall,
    MouseButton,
    Point,
    ProviderRequest,
    ProviderResponse,
    Size,
    Turn,
)
from deskrelay.providers.base import (
    ProviderAdapter,
    ProviderFailure,
    UnrecognizedProviderAction,
    VisionProvider,
    register_adapter,
    scroll_command,
)
from deskrelay.utils.imaging import image_size_from_base64

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-5-20250929"
COMPUTER_TOOL_TYPE = "computer_20250124"
COMPUTER_USE_BETA = "computer-use-2025-01-24"

_CLICK_BUTTONS = {
    "left_click": MouseButton.LEFT,
    "right_click": MouseButton.RIGHT,
    "middle_click": MouseButton.MIDDLE,
}


def _model_point(coordinate: Any, image_size: Size) -> Point:
    x, y = coordinate
    return Point(x=pixels_to_model(x, image_size.w), y=pixels_to_model(y, image_size.h))


@register_adapter("anthropic")
class AnthropicAdapter(ProviderAdapter):
    """Maps actions of Claude's ``computer`` tool.

    The call name is the tool's ``action``; the remaining tool input is
    the call's args.
    """

    def _translate(self, call: FunctionCall, image_size: Size) -> list[CanonicalCommand]:
        action, args = call.name, call.args

        def at(kind: CommandKind, **fields: Any) -> CanonicalCommand:
            if args.get("coordinate") is not None:
                p = _model_point(args["coordinate"], image_size)
                fields.update(x=p.x, y=p.y)
            return CanonicalCommand(type=kind, **fields)

        if action == "mouse_move":
            p = _model_point(args["coordinate"], image_size)
            return [CanonicalCommand(type=CommandKind.MOVE, x=p.x, y=p.y)]
        if action in _CLICK_BUTTONS:
            return [at(CommandKind.CLICK, button=_CLICK_BUTTONS[action])]
        if action == "double_click":
            return [at(CommandKind.DOUBLE_CLICK, button=MouseButton.LEFT)]
        if action == "left_mouse_down":
            return [CanonicalCommand(type=CommandKind.MOUSE_DOWN, button=MouseButton.LEFT)]
        if action == "left_mouse_up":
            return [CanonicalCommand(type=CommandKind.MOUSE_UP, button=MouseButton.LEFT)]
        if action == "type":
            return [CanonicalCommand(type=CommandKind.TYPE, text=args["text"])]
        if action == "key":
            return [CanonicalCommand(type=CommandKind.KEY_COMBINATION, keys=args["text"])]
        if action == "screenshot":
            return [CanonicalCommand(type=CommandKind.CAPTURE_SCREENSHOT)]
        if action == "cursor_position":
            # Nothing to execute; the next screenshot shows the pointer.
            return []
        if action == "left_click_drag":
            destination = _model_point(args["coordinate"], image_size)
            if args.get("start_coordinate") is not None:
                source = _model_point(args["start_coordinate"], image_size)
                return [CanonicalCommand(type=CommandKind.DRAG, source=source, destination=destination)]
            return [
                CanonicalCommand(type=CommandKind.MOUSE_DOWN, button=MouseButton.LEFT),
                CanonicalCommand(type=CommandKind.MOVE, x=destination.x, y=destination.y),
                CanonicalCommand(type=CommandKind.MOUSE_UP, button=MouseButton.LEFT),
            ]
        if action == "scroll":
            p = _model_point(args["coordinate"], image_size) if args.get("coordinate") else None
            return [
                scroll_command(
                    args["scroll_direction"],
                    args.get("scroll_amount", 3),
                    x=p.x if p else None,
                    y=p.y if p else None,
                )
            ]
        if action == "wait":
            return [CanonicalCommand(type=CommandKind.WAIT, ms=int(float(args.get("duration", 1)) * 1000))]
        raise UnrecognizedProviderAction(
            f"No canonical mapping for {action!r}", provider=self.provider_id, action=action
        )


class AnthropicProvider(VisionProvider):
    """Vision provider using Claude's computer-use beta.

    History is kept as plain text turns ``{"role", "parts": [{"text"}]}``
    and replayed as alternating user/assistant messages.

    Example usage::

        provider = AnthropicProvider(api_key="sk-ant-...")
        response = await provider.infer(ProviderRequest(prompt="...", screenshot=b64))
    """

    provider_id = "anthropic"

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        system_prompt: str | None = None,
        max_tokens: int = 1024,
    ) -> None:
        super().__init__(model=model, system_prompt=system_prompt)
        self._api_key = api_key
        self._max_tokens = max_tokens
        self._client = None

    async def _ensure_client(self) -> None:
        """Lazily initialize the Anthropic async client."""
        if self._client is not None:
            return
        import anthropic

        self._client = anthropic.AsyncAnthropic(api_key=self._api_key)
        logger.info("Initialized Anthropic client (model=%s)", self._model)

    async def infer(self, request: ProviderRequest) -> ProviderResponse:
        await self._ensure_client()
        size = image_size_from_base64(request.screenshot)

        messages = [self._to_message(turn) for turn in request.history]
        content: list[dict[str, Any]] = [{"type": "text", "text": request.prompt}]
        if request.screenshot:
            content.append(
                {
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": "image/jpeg",
                        "data": request.screenshot,
                    },
                }
            )
        messages.append({"role": "user", "content": content})

        try:
            msg = await self._client.beta.messages.create(
                model=self._model,
                max_tokens=self._max_tokens,
                system=self._system_prompt,
                messages=messages,
                tools=[
                    {
                        "type": COMPUTER_TOOL_TYPE,
                        "name": "computer",
                        "display_width_px": size.w,
                        "display_height_px": size.h,
                    }
                ],
                betas=[COMPUTER_USE_BETA],
            )
        except Exception as e:
            raise ProviderFailure(f"Anthropic API call failed: {e}", provider="anthropic") from e

        text = "\n".join(block.text for block in msg.content if block.type == "text")
        calls = []
        for block in msg.content:
            if block.type != "tool_use" or block.name != "computer":
                continue
            tool_input = dict(block.input or {})
            action = tool_input.pop("action", "")
            calls.append(FunctionCall(name=action, args=tool_input))
        logger.debug("Claude returned %d call(s): %s", len(calls), text[:200])

        history = list(request.history)
        history.append({"role": "user", "parts": [{"text": request.prompt}]})
        history.append({"role": "model", "parts": [{"text": text}]})
        return ProviderResponse(text=text, function_calls=calls, history=history)

    @staticmethod
    def _to_message(turn: Turn) -> dict[str, Any]:
        role = "assistant" if turn.get("role") == "model" else "user"
        parts = turn.get("parts") or []
        text = " ".join(p["text"] for p in parts if isinstance(p, dict) and p.get("text"))
        if not text and isinstance(turn.get("content"), str):
            text = turn["content"]
        # Empty content blocks are rejected by the API.
        return {"role": role, "content": text or " "}
