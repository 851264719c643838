"""OpenAI computer-use provider.

Uses the Responses API with the ``computer_use_preview`` tool. Actions
come back in screenshot pixels and are rescaled to model space by the
adapter.
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

DEFAULT_MODEL = "computer-use-preview"
SCROLL_PIXELS_PER_CLICK = 100
DEFAULT_WAIT_MS = 1000

# Stands in for screenshots already seen by the model.
PLACEHOLDER_IMAGE_URL = (
    "data:image/png;base64,"
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="
)

_BUTTONS = {
    "left": MouseButton.LEFT,
    "right": MouseButton.RIGHT,
    "wheel": MouseButton.MIDDLE,
    "middle": MouseButton.MIDDLE,
}

_NAVIGATION_BUTTONS = {"back": ("alt", "left"), "forward": ("alt", "right")}


@register_adapter("openai")
class OpenAIAdapter(ProviderAdapter):
    """Maps ``computer_call`` actions; the call name is the action type."""

    def _translate(self, call: FunctionCall, image_size: Size) -> list[CanonicalCommand]:
        action, args = call.name, call.args

        def point(x: float, y: float) -> Point:
            return Point(x=pixels_to_model(x, image_size.w), y=pixels_to_model(y, image_size.h))

        if action == "click":
            button = args.get("button", "left")
            if button in _NAVIGATION_BUTTONS:
                return [
                    CanonicalCommand(type=CommandKind.KEY_COMBINATION, keys=_NAVIGATION_BUTTONS[button])
                ]
            p = point(args["x"], args["y"])
            return [CanonicalCommand(type=CommandKind.CLICK, x=p.x, y=p.y, button=_BUTTONS[button])]
        if action == "double_click":
            p = point(args["x"], args["y"])
            return [CanonicalCommand(type=CommandKind.DOUBLE_CLICK, x=p.x, y=p.y, button=MouseButton.LEFT)]
        if action == "move":
            p = point(args["x"], args["y"])
            return [CanonicalCommand(type=CommandKind.MOVE, x=p.x, y=p.y)]
        if action == "scroll":
            p = point(args["x"], args["y"])
            commands = []
            scroll_y = int(args.get("scroll_y") or 0)
            scroll_x = int(args.get("scroll_x") or 0)
            if scroll_y:
                clicks = round(abs(scroll_y) / SCROLL_PIXELS_PER_CLICK)
                commands.append(scroll_command("down" if scroll_y > 0 else "up", clicks, x=p.x, y=p.y))
            if scroll_x:
                clicks = round(abs(scroll_x) / SCROLL_PIXELS_PER_CLICK)
                commands.append(scroll_command("right" if scroll_x > 0 else "left", clicks, x=p.x, y=p.y))
            return commands
        if action == "type":
            return [CanonicalCommand(type=CommandKind.TYPE, text=args["text"])]
        if action == "keypress":
            return [CanonicalCommand(type=CommandKind.KEY_COMBINATION, keys=tuple(args["keys"]))]
        if action == "wait":
            return [CanonicalCommand(type=CommandKind.WAIT, ms=DEFAULT_WAIT_MS)]
        if action == "screenshot":
            return [CanonicalCommand(type=CommandKind.CAPTURE_SCREENSHOT)]
        if action == "drag":
            path = args["path"]
            if len(path) < 2:
                raise UnrecognizedProviderAction(
                    "Drag path needs at least two points", provider=self.provider_id, action=action
                )
            return [
                CanonicalCommand(
                    type=CommandKind.DRAG,
                    source=point(path[0]["x"], path[0]["y"]),
                    destination=point(path[-1]["x"], path[-1]["y"]),
                )
            ]
        raise UnrecognizedProviderAction(
            f"No canonical mapping for {action!r}", provider=self.provider_id, action=action
        )


class OpenAIProvider(VisionProvider):
    """Vision provider using OpenAI's computer-use model.

    History holds Responses API input/output items as dicts. When the
    previous turn ended with ``computer_call`` items, the new screenshot
    is returned to the model as their ``computer_call_output``.
    """

    provider_id = "openai"

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        base_url: str | None = None,
        system_prompt: str | None = None,
        environment: str = "browser",
    ) -> None:
        super().__init__(model=model, system_prompt=system_prompt)
        self._api_key = api_key
        self._base_url = base_url
        self._environment = environment
        self._client = None

    async def _ensure_client(self) -> None:
        """Lazily initialize the OpenAI async client."""
        if self._client is not None:
            return
        from openai import AsyncOpenAI
        kwargs = {"api_key": self._api_key}
        if self._base_url:
            kwargs["base_url"] = self._base_url
        self._client = AsyncOpenAI(**kwargs)
        logger.info("Initialized OpenAI client (model=%s, base_url=%s)", self._model, self._base_url)

    async def infer(self, request: ProviderRequest) -> ProviderResponse:
        await self._ensure_client()
        size = image_size_from_base64(request.screenshot)
        image_url = f"data:image/jpeg;base64,{request.screenshot}" if request.screenshot else None

        items: list[Turn] = list(request.history)
        outputs = self._call_outputs(items, image_url)
        items.extend(outputs)
        content: list[dict[str, Any]] = [{"type": "input_text", "text": request.prompt}]
        if image_url and not outputs:
            content.append({"type": "input_image", "image_url": image_url})
        items.append({"role": "user", "content": content})

        try:
            response = await self._client.responses.create(
                model=self._model,
                instructions=self._system_prompt,
                input=items,
                tools=[
                    {
                        "type": "computer_use_preview",
                        "display_width": size.w,
                        "display_height": size.h,
                        "environment": self._environment,
                    }
                ],
                truncation="auto",
            )
        except Exception as e:
            raise ProviderFailure(f"OpenAI API call failed: {e}", provider="openai") from e

        calls = []
        history = [self._strip_images(item) for item in items]
        for item in response.output:
            history.append(item.model_dump(mode="json", exclude_none=True))
            if item.type == "computer_call":
                args = item.action.model_dump(mode="json", exclude_none=True)
                calls.append(FunctionCall(name=args.pop("type"), args=args))
        text = response.output_text or ""
        logger.debug("OpenAI returned %d call(s): %s", len(calls), text[:200])
        return ProviderResponse(text=text, function_calls=calls, history=history)

    @staticmethod
    def _call_outputs(items: list[Turn], image_url: str | None) -> list[Turn]:
        if not image_url:
            return []
        answered = {i.get("call_id") for i in items if i.get("type") == "computer_call_output"}
        return [
            {
                "type": "computer_call_output",
                "call_id": item["call_id"],
                "acknowledged_safety_checks": item.get("pending_safety_checks", []),
                "output": {"type": "input_image", "image_url": image_url},
            }
            for item in items
            if item.get("type") == "computer_call" and item.get("call_id") not in answered
        ]

    @staticmethod
    def _strip_images(item: Turn) -> Turn:
        """Drop screenshot payloads from replayed history.

        Call outputs must still carry an image, so theirs is swapped for
        a 1x1 placeholder.
        """
        if item.get("type") == "computer_call_output":
            item = dict(item)
            item["output"] = {"type": "input_image", "image_url": PLACEHOLDER_IMAGE_URL}
            return item
        content = item.get("content")
        if isinstance(content, list):
            item = dict(item)
            item["content"] = [c for c in content if c.get("type") != "input_image"]
        return item
