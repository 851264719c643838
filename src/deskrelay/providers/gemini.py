"""Google Gemini computer-use provider.

Uses the google-genai SDK with the native computer-use tool. Gemini
already reports coordinates on a 0-999 grid, so its calls translate
straight into model-space commands.
"""

from __future__ import annotations

import base64
import json
import logging
from typing import Any

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

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-computer-use-preview-10-2025"

# scroll_at magnitude is in model units; one wheel click per 100.
SCROLL_UNITS_PER_CLICK = 100
DEFAULT_SCROLL_MAGNITUDE = 800
DOCUMENT_SCROLL_CLICKS = 5


@register_adapter("gemini")
class GeminiAdapter(ProviderAdapter):
    """Maps Gemini's predefined computer-use functions."""

    def _translate(self, call: FunctionCall, image_size: Size) -> list[CanonicalCommand]:
        name, args = call.name, call.args

        if name == "open_web_browser":
            return [CanonicalCommand(type=CommandKind.OPEN_BROWSER, url=args.get("url"))]
        if name == "wait_5_seconds":
            return [CanonicalCommand(type=CommandKind.WAIT, ms=5000)]
        if name == "go_back":
            return [CanonicalCommand(type=CommandKind.KEY_COMBINATION, keys=("alt", "left"))]
        if name == "go_forward":
            return [CanonicalCommand(type=CommandKind.KEY_COMBINATION, keys=("alt", "right"))]
        if name == "search":
            return [CanonicalCommand(type=CommandKind.SEARCH, query=args.get("query"))]
        if name == "navigate":
            return [CanonicalCommand(type=CommandKind.NAVIGATE, url=args["url"])]
        if name == "click_at":
            return [
                CanonicalCommand(
                    type=CommandKind.CLICK, x=args["x"], y=args["y"], button=MouseButton.LEFT
                )
            ]
        if name == "hover_at":
            return [CanonicalCommand(type=CommandKind.MOVE, x=args["x"], y=args["y"])]
        if name == "type_text_at":
            commands = [
                CanonicalCommand(
                    type=CommandKind.CLICK, x=args["x"], y=args["y"], button=MouseButton.LEFT
                )
            ]
            if args.get("clear_before_typing", True):
                commands.append(CanonicalCommand(type=CommandKind.KEY_COMBINATION, keys=("ctrl", "a")))
                commands.append(CanonicalCommand(type=CommandKind.KEY_COMBINATION, keys=("backspace",)))
            commands.append(CanonicalCommand(type=CommandKind.TYPE, text=str(args["text"])))
            if args.get("press_enter", True):
                commands.append(CanonicalCommand(type=CommandKind.KEY_COMBINATION, keys=("enter",)))
            return commands
        if name == "key_combination":
            return [CanonicalCommand(type=CommandKind.KEY_COMBINATION, keys=args["keys"])]
        if name == "scroll_document":
            return [scroll_command(args["direction"], DOCUMENT_SCROLL_CLICKS)]
        if name == "scroll_at":
            magnitude = args.get("magnitude", DEFAULT_SCROLL_MAGNITUDE)
            clicks = round(magnitude / SCROLL_UNITS_PER_CLICK)
            return [scroll_command(args["direction"], clicks, x=args["x"], y=args["y"])]
        if name == "drag_and_drop":
            return [
                CanonicalCommand(
                    type=CommandKind.DRAG,
                    source=Point(x=args["x"], y=args["y"]),
                    destination=Point(x=args["destination_x"], y=args["destination_y"]),
                )
            ]
        raise UnrecognizedProviderAction(
            f"No canonical mapping for {name!r}", provider=self.provider_id, action=name
        )


class GeminiProvider(VisionProvider):
    """Vision provider using Gemini's computer-use model.

    History turns are ``types.Content`` objects serialized to JSON-safe
    dicts. Screenshots are not kept in history; only the newest one is
    sent with each request.
    """

    provider_id = "gemini"

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        system_prompt: str | None = None,
    ) -> None:
        super().__init__(model=model, system_prompt=system_prompt)
        self._api_key = api_key
        self._client = None

    async def _ensure_client(self) -> None:
        """Lazily initialize the google-genai client."""
        if self._client is not None:
            return
        from google import genai

        self._client = genai.Client(api_key=self._api_key)
        logger.info("Initialized Gemini client (model=%s)", self._model)

    async def infer(self, request: ProviderRequest) -> ProviderResponse:
        await self._ensure_client()
        from google.genai import types

        try:
            contents = [types.Content.model_validate_json(json.dumps(turn)) for turn in request.history]
        except ValueError as e:
            raise ProviderFailure(f"Invalid Gemini history: {e}", provider="gemini") from e

        parts = self._pending_function_responses(contents, types)
        parts.append(types.Part(text=request.prompt))
        if request.screenshot:
            parts.append(
                types.Part.from_bytes(
                    data=base64.b64decode(request.screenshot), mime_type="image/jpeg"
                )
            )
        contents.append(types.Content(role="user", parts=parts))

        config = types.GenerateContentConfig(
            system_instruction=self._system_prompt,
            tools=[
                types.Tool(
                    computer_use=types.ComputerUse(
                        environment=types.Environment.ENVIRONMENT_BROWSER
                    )
                )
            ],
        )

        try:
            response = await self._client.aio.models.generate_content(
                model=self._model,
                contents=contents,
                config=config,
            )
        except Exception as e:
            raise ProviderFailure(f"Gemini API call failed: {e}", provider="gemini") from e

        if not response.candidates or response.candidates[0].content is None:
            raise ProviderFailure("Gemini returned no candidates", provider="gemini")
        content = response.candidates[0].content
        contents.append(content)

        response_parts = content.parts or []
        text = " ".join(p.text for p in response_parts if p.text)
        calls = [
            FunctionCall(name=p.function_call.name, args=dict(p.function_call.args or {}))
            for p in response_parts
            if p.function_call is not None and p.function_call.name
        ]
        logger.debug("Gemini returned %d call(s): %s", len(calls), text[:200])

        return ProviderResponse(
            text=text,
            function_calls=calls,
            history=[self._to_turn(c) for c in contents],
        )

    @staticmethod
    def _pending_function_responses(contents: list[Any], types: Any) -> list[Any]:
        """Acknowledge the previous turn's function calls, if any.

        The API expects each function call to be answered before the
        conversation continues; the fresh screenshot carries the result.
        """
        if not contents or contents[-1].role != "model":
            return []
        return [
            types.Part(
                function_response=types.FunctionResponse(
                    name=p.function_call.name, response={"status": "executed"}
                )
            )
            for p in contents[-1].parts or []
            if p.function_call is not None
        ]

    @staticmethod
    def _to_turn(content: Any) -> Turn:
        turn = content.model_dump(mode="json", exclude_none=True)
        turn["parts"] = [p for p in turn.get("parts", []) if "inline_data" not in p]
        return turn
