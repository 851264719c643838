"""Command-line interface for deskrelay.

Provides entry points for the relay server, the agent on a controlled
machine, the local input service, and controller-side commands for
claiming a machine and driving it with a vision model.
"""

from __future__ import annotations

import argparse
import asyncio
import base64
import json
import logging
import sys
from pathlib import Path

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="deskrelay",
        description="Remote desktop control through a vision model and a relay",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to YAML configuration file (default: config/deskrelay.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("relay", help="Start the relay server (registry + command bus)")
    subparsers.add_parser("agent", help="Run the agent on this machine")

    input_parser = subparsers.add_parser("input-service", help="Serve this machine's mouse and keyboard over HTTP")
    input_parser.add_argument("--host", type=str, default="127.0.0.1")
    input_parser.add_argument("--port", type=int, default=8766)

    claim_parser = subparsers.add_parser("claim", help="Claim a machine by its pairing code")
    claim_parser.add_argument("--code", type=str, required=True, help="Six-digit pairing code")
    claim_parser.add_argument("--owner", type=str, required=True, help="Owner identifier")
    claim_parser.add_argument("--name", type=str, default="Desktop App", help="Display name for the machine")

    send_parser = subparsers.add_parser("send", help="Send one command to a claimed machine")
    send_parser.add_argument("machine_id", type=str)
    send_parser.add_argument("payload", type=str, help='Command JSON, e.g. \'{"type": "click"}\'')
    send_parser.add_argument("--owner", type=str, required=True)

    shot_parser = subparsers.add_parser("screenshot", help="Fetch a screenshot from a claimed machine")
    shot_parser.add_argument("machine_id", type=str)
    shot_parser.add_argument("--owner", type=str, required=True)
    shot_parser.add_argument("--out", type=Path, default=Path("screenshot.jpg"))

    run_parser = subparsers.add_parser("run", help="Drive a claimed machine towards a goal")
    run_parser.add_argument("machine_id", type=str)
    run_parser.add_argument("--prompt", type=str, required=True, help="Task for the vision model")
    run_parser.add_argument("--owner", type=str, required=True)
    run_parser.add_argument(
        "--provider", type=str, default=None, choices=["gemini", "anthropic", "openai"],
        help="Override the configured provider",
    )
    run_parser.add_argument(
        "--max-iterations", type=int, default=None,
        help="Override the configured iteration limit",
    )

    return parser.parse_args(argv)


def _build_registry(settings):
    from deskrelay.registry.http_client import HttpSessionRegistry

    return HttpSessionRegistry(
        base_url=settings.relay.url,
        timeout=settings.relay.timeout,
        poll_interval=settings.relay.poll_interval,
    )


def _build_bus(settings):
    from deskrelay.bus.websocket import WebSocketBus

    return WebSocketBus(url=settings.relay.websocket_url, open_timeout=settings.relay.timeout)


def _build_input_host(settings):
    if settings.input.backend == "http":
        from deskrelay.input.http_host import HttpInputHost

        return HttpInputHost(
            base_url=settings.input.http_base_url,
            timeout=settings.input.http_timeout,
        )
    from deskrelay.input.pyautogui_host import PyAutoGuiInputHost

    return PyAutoGuiInputHost()


def _build_provider(settings, name: str):
    """Create the vision provider configured for ``name``."""
    cfg = settings.provider
    api_key = settings.api_key_for(name)
    if not api_key:
        logger.warning("No API key configured for provider %s", name)
    kwargs = {"api_key": api_key, "system_prompt": cfg.system_prompt_override}
    if cfg.model:
        kwargs["model"] = cfg.model

    if name == "gemini":
        from deskrelay.providers.gemini import GeminiProvider

        return GeminiProvider(**kwargs)
    if name == "anthropic":
        from deskrelay.providers.anthropic import AnthropicProvider

        return AnthropicProvider(max_tokens=cfg.max_tokens, **kwargs)
    from deskrelay.providers.openai import OpenAIProvider

    return OpenAIProvider(base_url=cfg.base_url, **kwargs)


async def _run_agent(settings) -> None:
    """Register this machine and serve commands, rejoining after drops."""
    from deskrelay.agent.executor import CommandExecutor
    from deskrelay.agent.process import AgentProcess
    from deskrelay.agent.state import LocalStateStore
    from deskrelay.capture.screen import MssScreenCapture

    registry = _build_registry(settings)
    capture = MssScreenCapture(
        monitor=settings.capture.monitor,
        max_dimension=settings.capture.max_dimension,
        jpeg_quality=settings.capture.jpeg_quality,
    )
    host = _build_input_host(settings)
    executor = CommandExecutor(
        host,
        home_url=settings.agent.home_url,
        search_url=settings.agent.search_url,
    )
    agent = AgentProcess(
        registry,
        _build_bus(settings),
        capture,
        executor,
        LocalStateStore(settings.agent.state_file),
    )

    try:
        async with capture, host:
            code = await agent.start()
            if agent.state and not agent.state.owner_id:
                print(f"Pairing code: {code}")
            while True:
                status = await agent.serve()
                logger.info(
                    "Agent is %s, rejoining in %.0fs", status.value, settings.agent.reconnect_delay
                )
                await asyncio.sleep(settings.agent.reconnect_delay)
    finally:
        await registry.aclose()


async def _claim(settings, args) -> None:
    from deskrelay.registry.base import AlreadyClaimed, PairingNotFound

    registry = _build_registry(settings)
    try:
        await registry.claim(args.code, args.owner, args.name)
        session = await registry.lookup(args.code)
    except PairingNotFound:
        print(f"No machine is showing pairing code {args.code}")
        sys.exit(1)
    except AlreadyClaimed as e:
        print(f"Machine is already claimed by {e.owner_id}")
        sys.exit(1)
    finally:
        await registry.aclose()
    print(f"Claimed machine {session.machine_id} ({session.display_name})")


async def _send(settings, args) -> None:
    from deskrelay.controller.client import ControllerClient
    from deskrelay.domain.models import CanonicalCommand

    command = CanonicalCommand.from_wire(json.loads(args.payload))
    registry = _build_registry(settings)
    client = ControllerClient(_build_bus(settings), registry, owner_id=args.owner)
    try:
        async with client.connect(args.machine_id):
            await client.send(command)
    finally:
        await registry.aclose()
    print(f"Sent {command.type.value} to {args.machine_id}")


async def _screenshot(settings, args) -> None:
    from deskrelay.controller.client import ControllerClient

    registry = _build_registry(settings)
    client = ControllerClient(
        _build_bus(settings), registry, owner_id=args.owner,
        screenshot_timeout=settings.loop.screenshot_timeout,
    )
    try:
        async with client.connect(args.machine_id):
            shot = await client.request_screenshot()
    finally:
        await registry.aclose()
    args.out.write_bytes(base64.b64decode(shot.image))
    size = f" ({shot.metadata.scaled.w}x{shot.metadata.scaled.h})" if shot.metadata else ""
    print(f"Saved screenshot to {args.out}{size}")


async def _run_loop(settings, args) -> None:
    from deskrelay.controller.client import ControllerClient
    from deskrelay.controller.loop import ControlLoop
    from deskrelay.providers.base import get_adapter

    name = args.provider or settings.provider.name
    loop_cfg = settings.loop
    registry = _build_registry(settings)
    client = ControllerClient(
        _build_bus(settings), registry, owner_id=args.owner,
        screenshot_timeout=loop_cfg.screenshot_timeout,
    )
    control = ControlLoop(
        client,
        _build_provider(settings, name),
        get_adapter(name),
        max_iterations=args.max_iterations or loop_cfg.max_iterations,
        screenshot_timeout=loop_cfg.screenshot_timeout,
        settle_delay=loop_cfg.settle_delay,
        pacing_delay=loop_cfg.pacing_delay,
        completion_marker=loop_cfg.completion_marker,
    )
    try:
        async with client.connect(args.machine_id):
            result = await control.run(args.prompt)
    finally:
        await registry.aclose()

    print(f"\nResult: {result.outcome.value}")
    print(f"Iterations: {result.iterations}")
    print(f"Commands sent: {result.commands_sent}")
    if result.text:
        print(f"\nModel: {result.text[:500]}")
    if result.error:
        print(f"\nError: {result.error}")


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the deskrelay CLI."""
    args = parse_args(argv)

    if args.command is None:
        parse_args(["--help"])
        return

    from deskrelay.config.settings import load_settings
    from deskrelay.utils.logging import setup_logging

    settings = load_settings(args.config)

    if args.verbose:
        settings.logging.level = "DEBUG"

    setup_logging(settings.logging)

    if args.command == "relay":
        logger.info("Starting relay server")
        from deskrelay.relay.server import create_app
        import uvicorn

        uvicorn.run(create_app(), host=settings.relay.host, port=settings.relay.port)

    elif args.command == "input-service":
        logger.info("Starting input service")
        from deskrelay.input.service import create_app
        import uvicorn

        uvicorn.run(create_app(), host=args.host, port=args.port)

    elif args.command == "agent":
        logger.info("Starting agent")
        try:
            asyncio.run(_run_agent(settings))
        except KeyboardInterrupt:
            logger.info("Agent stopped")

    elif args.command == "claim":
        asyncio.run(_claim(settings, args))

    elif args.command == "send":
        asyncio.run(_send(settings, args))

    elif args.command == "screenshot":
        asyncio.run(_screenshot(settings, args))

    elif args.command == "run":
        logger.info("Starting control loop on %s", args.machine_id)
        asyncio.run(_run_loop(settings, args))


if __name__ == "__main__":
    main()
