"""Courier configuration: loads from courier.yaml + .env."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Annotated, Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _load_yaml_config() -> dict[str, Any]:
    """Load courier.yaml from COURIER_CONFIG_PATH or default locations."""
    config_path = os.getenv("COURIER_CONFIG_PATH")
    search_paths = (
        [Path(config_path)]
        if config_path
        else [
            Path("/etc/courier/courier.yaml"),
            Path("courier.yaml"),
        ]
    )
    for path in search_paths:
        if path.exists():
            with open(path) as f:
                return yaml.safe_load(f) or {}
    return {}


def _parse_string_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return []
        if text.startswith("["):
            try:
                parsed = json.loads(text)
            except ValueError:
                parsed = None
            if isinstance(parsed, list):
                return [str(item).strip() for item in parsed if str(item).strip()]
        return [item.strip() for item in text.split(",") if item.strip()]
    if isinstance(value, (list, tuple, set)):
        return [str(item).strip() for item in value if str(item).strip()]
    return [str(value).strip()] if str(value).strip() else []


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


class AcpDispatchConfig(BaseSettings):
    """Dispatch-level gate for ACP turns in the reply pipeline."""

    enabled: bool = True

    model_config = SettingsConfigDict(env_prefix="COURIER_ACP_DISPATCH_")


class AcpStreamConfig(BaseSettings):
    """How streamed ACP events are projected into chat replies."""

    delivery_mode: Literal["live", "final_only"] = "live"
    repeat_suppression: bool = True
    hidden_boundary_separator: Literal["none", "space", "newline", "paragraph"] = "paragraph"
    max_output_chars: int = Field(default=24_000, ge=1)
    max_session_update_chars: int = Field(default=240, ge=16)
    tag_visibility: Annotated[dict[str, bool], NoDecode] = Field(
        default_factory=dict,
        description="Per-sessionUpdate visibility overrides; unlisted tags use defaults",
    )

    @field_validator("tag_visibility", mode="before")
    @classmethod
    def _parse_tag_visibility(cls, value: Any) -> dict[str, bool]:
        if value is None:
            return {}
        if isinstance(value, dict):
            return {str(k).strip(): _parse_bool(v) for k, v in value.items() if str(k).strip()}
        if isinstance(value, str):
            text = value.strip()
            if not text:
                return {}
            if text.startswith("{"):
                try:
                    parsed = json.loads(text)
                except ValueError:
                    parsed = None
                if isinstance(parsed, dict):
                    return {str(k).strip(): _parse_bool(v) for k, v in parsed.items()}
            result: dict[str, bool] = {}
            for item in text.split(","):
                key, sep, raw = item.partition("=")
                if key.strip():
                    result[key.strip()] = _parse_bool(raw) if sep else True
            return result
        return {}

    model_config = SettingsConfigDict(env_prefix="COURIER_ACP_STREAM_")


class AcpRuntimeConfig(BaseSettings):
    """Backend runtime process settings."""

    command: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["acpx", "--format", "json", "--agent", "{agent}", "prompt", "--session", "{session}"],
        description="Command spawned per turn; {agent} and {session} are substituted",
    )
    cwd: str | None = None
    turn_timeout_s: int = Field(default=600, gt=0)
    ttl_minutes: int = Field(default=60, ge=0, description="Idle session TTL; 0 disables eviction")

    @field_validator("command", mode="before")
    @classmethod
    def _parse_command(cls, value: Any) -> list[str]:
        if isinstance(value, str) and not value.strip().startswith("["):
            return value.split()
        return _parse_string_list(value)

    model_config = SettingsConfigDict(env_prefix="COURIER_ACP_RUNTIME_")


class AcpConfig(BaseSettings):
    """ACP runtime and dispatch configuration."""

    enabled: bool = True
    backend: str = "acpx"
    default_agent: str = "codex"
    allowed_agents: Annotated[list[str], NoDecode] = Field(default_factory=list)
    max_concurrent_sessions: int = Field(default=16, gt=0)

    dispatch: AcpDispatchConfig = Field(default_factory=AcpDispatchConfig)
    stream: AcpStreamConfig = Field(default_factory=AcpStreamConfig)
    runtime: AcpRuntimeConfig = Field(default_factory=AcpRuntimeConfig)

    @field_validator("allowed_agents", mode="before")
    @classmethod
    def _parse_allowed_agents(cls, value: Any) -> list[str]:
        return _parse_string_list(value)

    model_config = SettingsConfigDict(env_prefix="COURIER_ACP_")


class TelegramChannelConfig(BaseSettings):
    """Telegram channel configuration."""

    enabled: bool = False
    bot_token: str = Field(default="", description="Telegram bot token")
    mode: Literal["polling"] = "polling"
    api_base: str = "https://api.telegram.org"

    groups_enabled: bool = False
    require_mention: bool = True
    send_tool_summaries: bool = True

    poll_timeout_s: int = Field(default=25, ge=1, le=60)
    retry_delay_s: int = Field(default=3, ge=1, le=30)
    max_message_chars: int = Field(default=3500, ge=200, le=4096)

    model_config = SettingsConfigDict(env_prefix="COURIER_TELEGRAM_")


class ChannelsConfig(BaseModel):
    """Top-level channels configuration."""

    telegram: TelegramChannelConfig = Field(default_factory=TelegramChannelConfig)
    thread_cache_ttl_hours: int = Field(default=24, gt=0)
    thread_cache_max_entries: int = Field(default=5000, gt=0)


class TtsConfig(BaseSettings):
    """Text-to-speech post-processing of replies."""

    auto: Literal["off", "always", "inbound"] = "off"
    mode: Literal["final", "all"] = "final"
    endpoint: str | None = Field(default=None, description="HTTP synthesis endpoint")
    voice: str | None = None
    timeout_s: int = Field(default=30, gt=0)

    model_config = SettingsConfigDict(env_prefix="COURIER_TTS_")


class WebhookConfig(BaseSettings):
    """Outbound webhook settings."""

    outbound_timeout_s: int = Field(default=10, ge=1, le=120)

    model_config = SettingsConfigDict(env_prefix="COURIER_WEBHOOKS_")


class CourierConfig(BaseSettings):
    """Root Courier configuration."""

    # Server
    host: str = Field(default="0.0.0.0", description="Server bind host")
    port: int = Field(default=8000, description="Server bind port")

    # Auth
    api_key: str = Field(default="", description="API key for authentication. Empty = no auth")

    # Sub-configs
    acp: AcpConfig = Field(default_factory=AcpConfig)
    channels: ChannelsConfig = Field(default_factory=ChannelsConfig)
    tts: TtsConfig = Field(default_factory=TtsConfig)
    webhooks: WebhookConfig = Field(default_factory=WebhookConfig)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json", description="'json' or 'console'")

    model_config = SettingsConfigDict(
        env_prefix="COURIER_",
        env_nested_delimiter="__",
    )

    @classmethod
    def load(cls) -> CourierConfig:
        """Load config from YAML + env vars.

        Sections present in YAML are passed as init kwargs and win over env;
        env fills only what YAML leaves unset.
        """
        yaml_cfg = _load_yaml_config()

        acp_data = yaml_cfg.pop("acp", {}) or {}
        channels_data = yaml_cfg.pop("channels", {}) or {}
        tts_data = yaml_cfg.pop("tts", {}) or {}
        webhooks_data = yaml_cfg.pop("webhooks", {}) or {}

        # Only pass YAML sub-configs if they have data;
        # otherwise let pydantic-settings pick up env vars
        kwargs: dict[str, Any] = {**yaml_cfg}
        if acp_data:
            kwargs["acp"] = _build_acp_config(acp_data)
        if channels_data:
            kwargs["channels"] = ChannelsConfig(**channels_data)
        if tts_data:
            kwargs["tts"] = TtsConfig(**tts_data)
        if webhooks_data:
            kwargs["webhooks"] = WebhookConfig(**webhooks_data)

        return cls(**kwargs)


def _build_acp_config(data: dict[str, Any]) -> AcpConfig:
    data = dict(data)
    nested: dict[str, Any] = {}
    if data.get("dispatch"):
        nested["dispatch"] = AcpDispatchConfig(**data.pop("dispatch"))
    if data.get("stream"):
        nested["stream"] = AcpStreamConfig(**data.pop("stream"))
    if data.get("runtime"):
        nested["runtime"] = AcpRuntimeConfig(**data.pop("runtime"))
    return AcpConfig(**data, **nested)


# Singleton
_config: CourierConfig | None = None


def get_config() -> CourierConfig:
    """Get or create the global config."""
    global _config
    if _config is None:
        _config = CourierConfig.load()
    return _config
