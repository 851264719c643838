"""The closed-loop control driver.

Repeats: capture a screenshot -> ask the vision provider -> publish the
translated commands -> continue or stop. Everything runs in one task;
commands are published strictly in order with a settle delay between
them so the agent finishes each before the next arrives.
"""

from __future__ import annotations

import asyncio
import logging

from deskrelay.bus.base import BusDisconnected
from deskrelay.controller.client import ControllerClient
from deskrelay.controller.correlation import ScreenshotSuperseded, ScreenshotTimeout
from deskrelay.domain.models import (
    CommandKind,
    LoopOutcome,
    LoopResult,
    LoopState,
    ProviderRequest,
)
from deskrelay.providers.base import ProviderAdapter, ProviderFailure, VisionProvider
from deskrelay.utils.imaging import image_size_from_base64

logger = logging.getLogger(__name__)

DEFAULT_CONTINUATION_PROMPT = (
    "Here is the current screen after your last actions. Continue with the task, "
    'and reply with "DONE" once it is complete.'
)


class ControlLoop:
    """Runs one prompt to completion against a connected controller.

    Example usage::

        loop = ControlLoop(client, GeminiProvider(api_key=...), get_adapter("gemini"))
        result = await loop.run("Open the calculator and compute 2+2")
    """

    def __init__(
        self,
        controller: ControllerClient,
        provider: VisionProvider,
        adapter: ProviderAdapter,
        max_iterations: int = 20,
        screenshot_timeout: float = 15.0,
        settle_delay: float = 1.0,
        pacing_delay: float = 2.0,
        completion_marker: str = "done",
        continuation_prompt: str = DEFAULT_CONTINUATION_PROMPT,
    ) -> None:
        self._controller = controller
        self._provider = provider
        self._adapter = adapter
        self._max_iterations = max_iterations
        self._screenshot_timeout = screenshot_timeout
        self._settle_delay = settle_delay
        self._pacing_delay = pacing_delay
        self._completion_marker = completion_marker.lower()
        self._continuation_prompt = continuation_prompt
        self._stop = asyncio.Event()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def stop(self) -> None:
        """Cancel the current run at the next step boundary.

        Calling it before run() makes that run return CANCELLED at once.
        """
        if self._running:
            logger.info("Control loop stop requested")
        self._stop.set()

    async def run(self, prompt: str) -> LoopResult:
        """Drive the agent until the model reports completion.

        Every failure ends the run with a result instead of raising.
        """
        self._running = True
        state = LoopState(max_iterations=self._max_iterations)
        text = ""
        sent = 0
        logger.info("Control loop starting: %s", prompt[:100])

        def result(outcome: LoopOutcome, error: str | None = None) -> LoopResult:
            logger.info(
                "Control loop finished: outcome=%s, iterations=%d, commands=%d",
                outcome.value, state.iteration, sent,
            )
            return LoopResult(
                outcome=outcome, iterations=state.iteration, text=text, error=error, commands_sent=sent
            )

        try:
            while True:
                if self._stop.is_set():
                    return result(LoopOutcome.CANCELLED)
                state.iteration += 1

                shot = await self._controller.request_screenshot(self._screenshot_timeout)
                response = await self._provider.infer(
                    ProviderRequest(
                        prompt=prompt if state.iteration == 1 else self._continuation_prompt,
                        history=state.history,
                        screenshot=shot.image,
                    )
                )
                state.history = list(response.history)
                text = response.text

                image_size = shot.metadata.scaled if shot.metadata else image_size_from_base64(shot.image)
                commands = self._adapter.translate_all(response.function_calls, image_size)
                logger.info(
                    "Iteration %d/%d: %d command(s) | %s",
                    state.iteration, state.max_iterations, len(commands), text[:100],
                )

                for command in commands:
                    if self._stop.is_set():
                        return result(LoopOutcome.CANCELLED)
                    if command.type == CommandKind.CAPTURE_SCREENSHOT:
                        # The next iteration captures anyway.
                        continue
                    await self._controller.send(command)
                    sent += 1
                    await self._sleep(self._settle_delay)

                if self._completion_marker in text.lower():
                    state.done = True
                    return result(LoopOutcome.COMPLETED)
                if state.is_over_limit:
                    logger.warning("Iteration limit reached (%d)", state.max_iterations)
                    return result(LoopOutcome.MAX_ITERATIONS)

                await self._sleep(self._pacing_delay)

        except (ScreenshotTimeout, ScreenshotSuperseded, ProviderFailure, BusDisconnected) as e:
            logger.error("Control loop aborted: %s", e)
            return result(LoopOutcome.FAILED, error=str(e))
        finally:
            self._running = False
            self._stop.clear()

    async def _sleep(self, delay: float) -> None:
        """Sleep, waking early if stop() is called."""
        if delay <= 0:
            return
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass
