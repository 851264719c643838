"""Tests for the vision providers with their SDK clients mocked."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from deskrelay.domain.models import ProviderRequest
from deskrelay.providers.anthropic import COMPUTER_USE_BETA, AnthropicProvider
from deskrelay.providers.base import DEFAULT_SYSTEM_PROMPT, ProviderFailure
from deskrelay.providers.openai import PLACEHOLDER_IMAGE_URL, OpenAIProvider


class TestAnthropicProvider:
    @pytest.fixture
    def provider(self) -> AnthropicProvider:
        provider = AnthropicProvider(api_key="test-key")
        provider._client = MagicMock()
        provider._client.beta.messages.create = AsyncMock(
            return_value=SimpleNamespace(
                content=[
                    SimpleNamespace(type="text", text="Clicking the button"),
                    SimpleNamespace(
                        type="tool_use",
                        name="computer",
                        input={"action": "left_click", "coordinate": [10, 20]},
                    ),
                ]
            )
        )
        return provider

    def test_defaults(self) -> None:
        provider = AnthropicProvider(api_key="k")
        assert provider.model.startswith("claude")
        assert provider._system_prompt == DEFAULT_SYSTEM_PROMPT

    @pytest.mark.asyncio
    async def test_infer_extracts_calls(self, provider: AnthropicProvider, sample_image_b64: str) -> None:
        response = await provider.infer(ProviderRequest(prompt="Click OK", screenshot=sample_image_b64))

        assert response.text == "Clicking the button"
        assert [c.name for c in response.function_calls] == ["left_click"]
        assert response.function_calls[0].args == {"coordinate": [10, 20]}
        assert [turn["role"] for turn in response.history] == ["user", "model"]

        kwargs = provider._client.beta.messages.create.call_args.kwargs
        assert kwargs["betas"] == [COMPUTER_USE_BETA]
        assert kwargs["tools"][0]["display_width_px"] == 200
        assert kwargs["tools"][0]["display_height_px"] == 100
        assert kwargs["messages"][-1]["content"][1]["type"] == "image"

    @pytest.mark.asyncio
    async def test_history_replayed_as_messages(self, provider: AnthropicProvider) -> None:
        history = [
            {"role": "user", "parts": [{"text": "Open the browser"}]},
            {"role": "model", "parts": [{"text": ""}]},
        ]
        await provider.infer(ProviderRequest(prompt="Continue", history=history))
        messages = provider._client.beta.messages.create.call_args.kwargs["messages"]
        assert [m["role"] for m in messages] == ["user", "assistant", "user"]
        assert messages[1]["content"] == " "

    @pytest.mark.asyncio
    async def test_api_error_becomes_provider_failure(self, provider: AnthropicProvider) -> None:
        provider._client.beta.messages.create.side_effect = RuntimeError("overloaded")
        with pytest.raises(ProviderFailure):
            await provider.infer(ProviderRequest(prompt="x"))


def computer_call_item(call_id: str = "call_1") -> MagicMock:
    item = MagicMock()
    item.type = "computer_call"
    item.action.model_dump.return_value = {"type": "click", "x": 1, "y": 2, "button": "left"}
    item.model_dump.return_value = {
        "type": "computer_call",
        "call_id": call_id,
        "action": {"type": "click", "x": 1, "y": 2, "button": "left"},
        "pending_safety_checks": [],
    }
    return item


class TestOpenAIProvider:
    @pytest.fixture
    def provider(self) -> OpenAIProvider:
        provider = OpenAIProvider(api_key="test-key")
        provider._client = MagicMock()
        provider._client.responses.create = AsyncMock(
            return_value=SimpleNamespace(output=[computer_call_item()], output_text="")
        )
        return provider

    @pytest.mark.asyncio
    async def test_infer_maps_computer_calls(self, provider: OpenAIProvider, sample_image_b64: str) -> None:
        response = await provider.infer(ProviderRequest(prompt="Click", screenshot=sample_image_b64))

        assert [c.name for c in response.function_calls] == ["click"]
        assert response.function_calls[0].args == {"x": 1, "y": 2, "button": "left"}
        user_turn = response.history[0]
        assert all(c["type"] != "input_image" for c in user_turn["content"])

        kwargs = provider._client.responses.create.call_args.kwargs
        assert kwargs["truncation"] == "auto"
        assert kwargs["tools"][0]["display_width"] == 200
        sent_content = kwargs["input"][-1]["content"]
        assert sent_content[-1]["type"] == "input_image"

    @pytest.mark.asyncio
    async def test_next_screenshot_answers_pending_call(
        self, provider: OpenAIProvider, sample_image_b64: str
    ) -> None:
        first = await provider.infer(ProviderRequest(prompt="Click", screenshot=sample_image_b64))
        await provider.infer(
            ProviderRequest(prompt="Continue", history=first.history, screenshot=sample_image_b64)
        )

        items = provider._client.responses.create.call_args.kwargs["input"]
        outputs = [i for i in items if i.get("type") == "computer_call_output"]
        assert len(outputs) == 1
        assert outputs[0]["call_id"] == "call_1"
        assert outputs[0]["output"]["image_url"].startswith("data:image/jpeg;base64,")
        assert [c["type"] for c in items[-1]["content"]] == ["input_text"]

    @pytest.mark.asyncio
    async def test_returned_history_drops_call_output_images(
        self, provider: OpenAIProvider, sample_image_b64: str
    ) -> None:
        first = await provider.infer(ProviderRequest(prompt="Click", screenshot=sample_image_b64))
        second = await provider.infer(
            ProviderRequest(prompt="Continue", history=first.history, screenshot=sample_image_b64)
        )

        outputs = [i for i in second.history if i.get("type") == "computer_call_output"]
        assert len(outputs) == 1
        assert outputs[0]["call_id"] == "call_1"
        assert outputs[0]["output"] == {"type": "input_image", "image_url": PLACEHOLDER_IMAGE_URL}
        assert sample_image_b64 not in str(second.history)

    @pytest.mark.asyncio
    async def test_api_error_becomes_provider_failure(self, provider: OpenAIProvider) -> None:
        provider._client.responses.create.side_effect = RuntimeError("rate limited")
        with pytest.raises(ProviderFailure):
            await provider.infer(ProviderRequest(prompt="x"))


class TestGeminiProvider:
    @pytest.mark.asyncio
    async def test_infer_and_history_round(self, sample_image_b64: str) -> None:
        types = pytest.importorskip("google.genai.types")
        from deskrelay.providers.gemini import GeminiProvider

        provider = GeminiProvider(api_key="test-key")
        provider._client = MagicMock()
        provider._client.aio.models.generate_content = AsyncMock(
            return_value=types.GenerateContentResponse(
                candidates=[
                    types.Candidate(
                        content=types.Content(
                            role="model",
                            parts=[
                                types.Part(text="Clicking"),
                                types.Part(
                                    function_call=types.FunctionCall(
                                        name="click_at", args={"x": 500, "y": 300}
                                    )
                                ),
                            ],
                        )
                    )
                ]
            )
        )

        response = await provider.infer(ProviderRequest(prompt="Click", screenshot=sample_image_b64))
        assert response.text == "Clicking"
        assert response.function_calls[0].name == "click_at"
        assert response.function_calls[0].args == {"x": 500, "y": 300}
        assert [turn["role"] for turn in response.history] == ["user", "model"]
        assert all("inline_data" not in part for part in response.history[0]["parts"])

        second = await provider.infer(
            ProviderRequest(prompt="Continue", history=response.history, screenshot=sample_image_b64)
        )
        user_turn = second.history[-2]
        assert user_turn["role"] == "user"
        assert user_turn["parts"][0]["function_response"]["name"] == "click_at"
        assert user_turn["parts"][1]["text"] == "Continue"

    @pytest.mark.asyncio
    async def test_no_candidates(self) -> None:
        types = pytest.importorskip("google.genai.types")
        from deskrelay.providers.gemini import GeminiProvider

        provider = GeminiProvider(api_key="test-key")
        provider._client = MagicMock()
        provider._client.aio.models.generate_content = AsyncMock(
            return_value=types.GenerateContentResponse(candidates=[])
        )
        with pytest.raises(ProviderFailure):
            await provider.infer(ProviderRequest(prompt="x"))
