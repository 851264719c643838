"""Tests for the closed control loop."""

from __future__ import annotations

import pytest

from deskrelay.bus.base import BusDisconnected
from deskrelay.controller.correlation import ScreenshotTimeout
from deskrelay.controller.loop import DEFAULT_CONTINUATION_PROMPT, ControlLoop
from deskrelay.domain.models import (
    CommandKind,
    FunctionCall,
    LoopOutcome,
    ProviderResponse,
    ScreenshotMetadata,
    ScreenshotResponse,
)
from deskrelay.providers.base import ProviderFailure, get_adapter


class StubController:
    """Stands in for ControllerClient: canned screenshots, recorded sends."""

    def __init__(self, metadata: ScreenshotMetadata | None = None, error: Exception | None = None) -> None:
        self.metadata = metadata
        self.error = error
        self.sent = []
        self.requests = 0

    async def request_screenshot(self, timeout: float | None = None) -> ScreenshotResponse:
        self.requests += 1
        if self.error is not None:
            raise self.error
        return ScreenshotResponse(image="aGk=", metadata=self.metadata)

    async def send(self, command) -> None:
        self.sent.append(command)


def make_loop(controller, provider, max_iterations: int = 20) -> ControlLoop:
    return ControlLoop(
        controller,
        provider,
        get_adapter("gemini"),
        max_iterations=max_iterations,
        settle_delay=0,
        pacing_delay=0,
    )


def reply(text: str = "", *calls: FunctionCall) -> ProviderResponse:
    return ProviderResponse(text=text, function_calls=list(calls), history=[{"role": "model"}])


class TestControlLoop:
    @pytest.mark.asyncio
    async def test_runs_until_done(self, mock_provider, sample_metadata) -> None:
        controller = StubController(sample_metadata)
        mock_provider.infer.side_effect = [
            reply("Clicking search", FunctionCall(name="click_at", args={"x": 500, "y": 500})),
            reply("The task is DONE"),
        ]
        result = await make_loop(controller, mock_provider).run("Search for cats")

        assert result.outcome == LoopOutcome.COMPLETED
        assert result.iterations == 2
        assert result.commands_sent == 1
        assert result.text == "The task is DONE"
        assert [c.type for c in controller.sent] == [CommandKind.CLICK]

        first, second = (c.args[0] for c in mock_provider.infer.call_args_list)
        assert first.prompt == "Search for cats"
        assert first.history == []
        assert second.prompt == DEFAULT_CONTINUATION_PROMPT
        assert second.history == [{"role": "model"}]

    @pytest.mark.asyncio
    async def test_iteration_limit(self, mock_provider) -> None:
        controller = StubController()
        mock_provider.infer.return_value = reply("still working")
        result = await make_loop(controller, mock_provider).run("never ends")

        assert result.outcome == LoopOutcome.MAX_ITERATIONS
        assert result.iterations == 20
        assert controller.requests == 20
        assert mock_provider.infer.await_count == 20

    @pytest.mark.asyncio
    async def test_commands_sent_in_order(self, mock_provider, sample_metadata) -> None:
        controller = StubController(sample_metadata)
        mock_provider.infer.side_effect = [
            reply(
                "typing",
                FunctionCall(name="type_text_at", args={"x": 1, "y": 2, "text": "cats"}),
                FunctionCall(name="teleport"),
            ),
            reply("done"),
        ]
        result = await make_loop(controller, mock_provider).run("x")
        assert [c.type for c in controller.sent] == [
            CommandKind.CLICK,
            CommandKind.KEY_COMBINATION,
            CommandKind.KEY_COMBINATION,
            CommandKind.TYPE,
            CommandKind.KEY_COMBINATION,
        ]
        assert result.commands_sent == 5

    @pytest.mark.asyncio
    async def test_screenshot_commands_not_forwarded(self, mock_provider) -> None:
        controller = StubController()
        provider_adapter = get_adapter("anthropic")
        mock_provider.infer.side_effect = [
            reply("looking", FunctionCall(name="screenshot")),
            reply("DONE"),
        ]
        loop = ControlLoop(controller, mock_provider, provider_adapter, settle_delay=0, pacing_delay=0)
        result = await loop.run("x")
        assert result.outcome == LoopOutcome.COMPLETED
        assert controller.sent == []

    @pytest.mark.parametrize(
        "error",
        [ScreenshotTimeout("r1", 15.0), BusDisconnected("gone")],
    )
    @pytest.mark.asyncio
    async def test_screenshot_failure_ends_run(self, mock_provider, error) -> None:
        result = await make_loop(StubController(error=error), mock_provider).run("x")
        assert result.outcome == LoopOutcome.FAILED
        assert result.error == str(error)
        mock_provider.infer.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_provider_failure_ends_run(self, mock_provider) -> None:
        mock_provider.infer.side_effect = ProviderFailure("quota exceeded", provider="gemini")
        result = await make_loop(StubController(), mock_provider).run("x")
        assert result.outcome == LoopOutcome.FAILED
        assert "quota" in result.error

    @pytest.mark.asyncio
    async def test_stop_cancels_between_steps(self, mock_provider) -> None:
        controller = StubController()
        loop = make_loop(controller, mock_provider)

        async def infer(request):
            loop.stop()
            return reply("working", FunctionCall(name="click_at", args={"x": 1, "y": 1}))

        mock_provider.infer.side_effect = infer
        result = await loop.run("x")
        assert result.outcome == LoopOutcome.CANCELLED
        assert controller.sent == []
        assert not loop.is_running

    @pytest.mark.asyncio
    async def test_stop_before_run_is_honoured(self, mock_provider) -> None:
        controller = StubController()
        mock_provider.infer.return_value = reply("DONE")
        loop = make_loop(controller, mock_provider)

        loop.stop()
        result = await loop.run("x")
        assert result.outcome == LoopOutcome.CANCELLED
        assert result.iterations == 0
        assert controller.requests == 0

        # The pending stop was consumed; the next run proceeds.
        result = await loop.run("x")
        assert result.outcome == LoopOutcome.COMPLETED

    @pytest.mark.asyncio
    async def test_completion_marker_is_case_insensitive(self, mock_provider) -> None:
        mock_provider.infer.return_value = reply("Done.")
        result = await make_loop(StubController(), mock_provider).run("x")
        assert result.outcome == LoopOutcome.COMPLETED
        assert result.iterations == 1
