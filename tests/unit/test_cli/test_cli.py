"""Tests for CLI argument parsing and component wiring."""

from __future__ import annotations

from pathlib import Path

import pytest

from deskrelay.cli import _build_bus, _build_input_host, _build_provider, parse_args
from deskrelay.config.settings import Settings


class TestParseArgs:
    def test_run_command(self) -> None:
        args = parse_args(
            ["-v", "-c", "custom.yaml", "run", "m-1", "--prompt", "open mail", "--owner", "u1",
             "--provider", "anthropic", "--max-iterations", "3"]
        )
        assert args.verbose is True
        assert args.config == Path("custom.yaml")
        assert args.command == "run"
        assert args.machine_id == "m-1"
        assert args.provider == "anthropic"
        assert args.max_iterations == 3

    def test_claim_defaults_display_name(self) -> None:
        args = parse_args(["claim", "--code", "482913", "--owner", "u1"])
        assert args.name == "Desktop App"

    def test_unknown_provider_rejected(self) -> None:
        with pytest.raises(SystemExit):
            parse_args(["run", "m-1", "--prompt", "x", "--owner", "u1", "--provider", "mystery"])


class TestBuilders:
    def test_bus_uses_websocket_url(self) -> None:
        settings = Settings(relay={"url": "https://relay.example.com"})
        assert _build_bus(settings)._url == "wss://relay.example.com"

    def test_http_input_backend(self) -> None:
        from deskrelay.input.http_host import HttpInputHost

        settings = Settings(input={"backend": "http", "http_base_url": "http://pi.local:8766"})
        assert isinstance(_build_input_host(settings), HttpInputHost)

    def test_anthropic_provider_gets_limits(self) -> None:
        settings = Settings(anthropic_api_key="sk-test", provider={"max_tokens": 2048})
        provider = _build_provider(settings, "anthropic")
        assert provider._max_tokens == 2048

    def test_missing_key_warns(self, caplog: pytest.LogCaptureFixture) -> None:
        settings = Settings(openai_api_key="")
        with caplog.at_level("WARNING"):
            _build_provider(settings, "openai")
        assert "No API key" in caplog.text
