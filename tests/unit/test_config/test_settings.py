"""Tests for configuration loading and validation."""

from __future__ import annotations

import os

import pytest
from pydantic import ValidationError

from deskrelay.config.settings import (
    API_KEY_ENV_VARS,
    LoopConfig,
    RelayConfig,
    Settings,
    load_settings,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    """Run each test in an empty directory with no deskrelay or key variables."""
    monkeypatch.chdir(tmp_path)
    for name in list(os.environ):
        if name.startswith("DESKRELAY_"):
            monkeypatch.delenv(name)
    for names in API_KEY_ENV_VARS.values():
        for name in names:
            monkeypatch.delenv(name, raising=False)


class TestSettings:
    def test_default_settings(self) -> None:
        """Default Settings should be valid."""
        settings = Settings()
        assert settings.relay.port == 8765
        assert settings.provider.name == "gemini"
        assert settings.loop.max_iterations == 20
        assert settings.input.backend == "pyautogui"
        assert settings.api_key_for("gemini") == ""

    def test_loop_config_defaults(self) -> None:
        config = LoopConfig()
        assert config.screenshot_timeout == 15.0
        assert config.completion_marker == "done"

    @pytest.mark.parametrize(
        "url, expected",
        [
            ("http://relay.local:8765", "ws://relay.local:8765"),
            ("https://relay.example.com", "wss://relay.example.com"),
            ("ws://already", "ws://already"),
        ],
    )
    def test_websocket_url(self, url: str, expected: str) -> None:
        assert RelayConfig(url=url).websocket_url == expected

    def test_invalid_values_rejected(self) -> None:
        with pytest.raises(ValidationError):
            LoopConfig(max_iterations=0)
        with pytest.raises(ValidationError):
            Settings(provider={"name": "mystery"})

    def test_load_settings_missing_file(self, tmp_path) -> None:
        """load_settings with missing file should return defaults."""
        settings = load_settings(tmp_path / "nonexistent.yaml")
        assert settings.relay.url == "http://localhost:8765"

    def test_load_settings_from_yaml(self, tmp_path) -> None:
        config_file = tmp_path / "deskrelay.yaml"
        config_file.write_text(
            "relay:\n"
            "  url: https://relay.example.com\n"
            "provider:\n"
            "  name: anthropic\n"
            "  max_tokens: 2048\n"
            "loop:\n"
            "  max_iterations: 5\n"
        )
        settings = load_settings(config_file)
        assert settings.relay.websocket_url == "wss://relay.example.com"
        assert settings.provider.name == "anthropic"
        assert settings.provider.max_tokens == 2048
        assert settings.loop.max_iterations == 5
        # Untouched sections keep their defaults.
        assert settings.capture.max_dimension == 1024

    def test_prefixed_env_overrides_yaml(self, tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
        config_file = tmp_path / "deskrelay.yaml"
        config_file.write_text("loop:\n  max_iterations: 5\n")
        monkeypatch.setenv("DESKRELAY_LOOP__MAX_ITERATIONS", "7")
        settings = load_settings(config_file)
        assert settings.loop.max_iterations == 7

    def test_unprefixed_api_keys(self, tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GOOGLE_API_KEY", "g-key")
        monkeypatch.setenv("CLAUDE_API_KEY", "c-key")
        settings = load_settings(tmp_path / "nonexistent.yaml")
        assert settings.api_key_for("gemini") == "g-key"
        assert settings.api_key_for("anthropic") == "c-key"
        assert settings.api_key_for("openai") == ""
        assert "g-key" not in repr(settings)

    def test_yaml_key_wins_over_unprefixed_env(self, tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
        config_file = tmp_path / "deskrelay.yaml"
        config_file.write_text("openai_api_key: from-yaml\n")
        monkeypatch.setenv("OPENAI_API_KEY", "from-env")
        settings = load_settings(config_file)
        assert settings.api_key_for("openai") == "from-yaml"

    def test_dotenv_file_supplies_keys(self, tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
        # _load_dotenv writes into os.environ; an empty entry lets monkeypatch restore it.
        monkeypatch.setenv("GEMINI_API_KEY", "")
        (tmp_path / ".env").write_text('# keys\nGEMINI_API_KEY="dotenv-key"\n')
        settings = load_settings(tmp_path / "nonexistent.yaml")
        assert settings.api_key_for("gemini") == "dotenv-key"
