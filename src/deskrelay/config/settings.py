"""Configuration management for deskrelay.

Loads settings from a YAML configuration file with environment variable
overrides for sensitive values (API keys). Supports .env files.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, SecretStr
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/deskrelay.yaml")

ProviderName = Literal["gemini", "anthropic", "openai"]

# Unprefixed variables accepted for API keys, first match wins.
API_KEY_ENV_VARS = {
    "gemini_api_key": ("GEMINI_API_KEY", "GOOGLE_API_KEY"),
    "anthropic_api_key": ("CLAUDE_API_KEY", "ANTHROPIC_API_KEY"),
    "openai_api_key": ("OPENAI_API_KEY",),
}


class RelayConfig(BaseModel):
    host: str = Field(default="0.0.0.0", description="Bind address when serving the relay")
    port: int = Field(default=8765, ge=1, le=65535)
    url: str = Field(default="http://localhost:8765", description="Relay base URL for clients")
    timeout: float = Field(default=10.0, gt=0)
    poll_interval: float = Field(default=2.0, gt=0)

    @property
    def websocket_url(self) -> str:
        if self.url.startswith("https://"):
            return "wss://" + self.url[len("https://"):]
        if self.url.startswith("http://"):
            return "ws://" + self.url[len("http://"):]
        return self.url


class AgentConfig(BaseModel):
    state_file: str = Field(default="~/.deskrelay/state.yaml")
    reconnect_delay: float = Field(default=5.0, gt=0)
    home_url: str = Field(default="https://www.google.com")
    search_url: str = Field(default="https://www.google.com/search?q={query}")


class CaptureConfig(BaseModel):
    monitor: int = Field(default=1, ge=0, description="mss monitor index, 1 = primary")
    max_dimension: int = Field(default=1024, gt=0)
    jpeg_quality: int = Field(default=75, ge=1, le=100)


class InputConfig(BaseModel):
    backend: Literal["pyautogui", "http"] = Field(default="pyautogui")
    http_base_url: str = Field(default="http://localhost:8766")
    http_timeout: float = Field(default=10.0, gt=0)


class ProviderConfig(BaseModel):
    name: ProviderName = Field(default="gemini")
    model: str | None = Field(default=None, description="Provider default when unset")
    base_url: str | None = Field(default=None)
    max_tokens: int = Field(default=1024, gt=0)
    system_prompt_override: str | None = Field(default=None)


class LoopConfig(BaseModel):
    max_iterations: int = Field(default=20, gt=0)
    screenshot_timeout: float = Field(default=15.0, gt=0)
    settle_delay: float = Field(default=1.0, ge=0)
    pacing_delay: float = Field(default=2.0, ge=0)
    completion_marker: str = Field(default="done", min_length=1)


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO")
    format: str = Field(
        default="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    file: str | None = Field(default=None)


class Settings(BaseSettings):
    """Root configuration for the deskrelay system.

    Loads from YAML file and supports environment variable overrides.
    Reads .env files automatically.
    """

    model_config = {
        "env_prefix": "DESKRELAY_",
        "env_nested_delimiter": "__",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    # API Keys
    gemini_api_key: SecretStr = Field(default=SecretStr(""))
    anthropic_api_key: SecretStr = Field(default=SecretStr(""))
    openai_api_key: SecretStr = Field(default=SecretStr(""))

    # Configuration sections
    relay: RelayConfig = Field(default_factory=RelayConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    capture: CaptureConfig = Field(default_factory=CaptureConfig)
    input: InputConfig = Field(default_factory=InputConfig)
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    loop: LoopConfig = Field(default_factory=LoopConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # YAML arrives as init kwargs; prefixed env vars override it.
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    def api_key_for(self, provider: str) -> str:
        key = {
            "gemini": self.gemini_api_key,
            "anthropic": self.anthropic_api_key,
            "openai": self.openai_api_key,
        }.get(provider)
        return key.get_secret_value() if key is not None else ""


def load_settings(config_path: Path | str | None = None) -> Settings:
    """Load settings from YAML + .env + environment variables.

    Priority: DESKRELAY_* env vars > .env file > YAML file > unprefixed
    API key variables > defaults
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    # Load .env file manually for non-prefixed vars
    _load_dotenv()

    yaml_data = {}
    if path.exists():
        with open(path) as f:
            yaml_data = yaml.safe_load(f) or {}
        logger.info("Loaded configuration from %s", path)
    else:
        logger.warning("Config file %s not found, using defaults + env vars", path)

    _apply_env_overrides(yaml_data)

    return Settings(**yaml_data)


def _load_dotenv() -> None:
    """Load .env file into os.environ if it exists."""
    env_path = Path(".env")
    if not env_path.exists():
        return
    with open(env_path) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" in line:
                key, _, value = line.partition("=")
                key = key.strip()
                value = value.strip().strip('"').strip("'")
                if not os.environ.get(key):
                    os.environ[key] = value


def _apply_env_overrides(yaml_data: dict) -> None:
    """Fill API keys from the unprefixed variables when YAML leaves them unset."""
    for field, names in API_KEY_ENV_VARS.items():
        if yaml_data.get(field):
            continue
        for name in names:
            value = os.environ.get(name, "")
            if value:
                yaml_data[field] = value
                break
