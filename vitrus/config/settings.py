"""Client configuration loading and validation."""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, ClassVar, Dict, Iterable, Literal

import yaml
from pydantic import AnyUrl, Field, PositiveFloat
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONFIG_LOCATIONS: tuple[Path, ...] = (
    Path("./config/vitrus.yaml"),
    Path("./config/vitrus.yml"),
    Path("~/.config/vitrus/config.yaml"),
)


class VitrusSettings(BaseSettings):
    """Validated settings for a Vitrus session."""

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_prefix="VITRUS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Connection + identity
    api_key: str | None = Field(
        default=None,
        description="API key presented in the connection query and the handshake.",
        repr=False,
    )
    world_id: str | None = Field(
        default=None,
        description="World scoping which actors and agents can address each other.",
    )
    base_url: AnyUrl = Field(
        default="ws://localhost:3001",
        description="Orchestration service WebSocket endpoint.",
    )
    transport: Literal["dummy", "websocket"] = Field(
        default="websocket",
        description="Transport implementation to use.",
    )
    open_timeout_seconds: PositiveFloat = Field(
        default=10.0,
        description="Seconds allowed for the transport to open.",
    )
    handshake_timeout_seconds: PositiveFloat = Field(
        default=30.0,
        description="Seconds to wait for HANDSHAKE_RESPONSE after the handshake is sent.",
    )
    request_timeout_seconds: PositiveFloat | None = Field(
        default=None,
        description="Optional bound on outstanding requests; unset means wait until answered or disconnected.",
    )

    # Inbound command execution
    handler_exec_mode: Literal["auto", "inline", "thread"] = Field(
        default="auto",
        description="How command handlers run: auto (coroutines inline, callables in a thread), inline or thread.",
    )
    reply_unknown_commands: bool = Field(
        default=False,
        description="Answer COMMAND frames for unregistered handlers with an error RESPONSE instead of dropping them.",
    )

    # Diagnostics
    debug: bool = Field(
        default=False,
        description="Emit debug logging for the vitrus logger.",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Minimum log level used by the command line entry point.",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        if isinstance(value, str):
            return value.upper()
        return value

    config_path: Path | None = Field(
        default=None,
        description="Resolved path to the on-disk config that seeded the settings.",
        exclude=True,
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[VitrusSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            cls._file_settings_source,
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    @staticmethod
    def _file_settings_source(settings_cls: type[VitrusSettings] | None = None) -> Dict[str, Any]:
        for path in VitrusSettings._resolve_candidate_paths():
            data = VitrusSettings._load_file(path)
            if data is not None:
                data.setdefault("config_path", path)
                return data
        return {}

    @staticmethod
    def _resolve_candidate_paths() -> Iterable[Path]:
        explicit = os.getenv("VITRUS_CONFIG_FILE")
        if explicit:
            yield Path(explicit).expanduser()
        for path in DEFAULT_CONFIG_LOCATIONS:
            yield path.expanduser()

    @staticmethod
    def _load_file(path: Path) -> Dict[str, Any] | None:
        if not path.is_file():
            return None
        suffix = path.suffix.lower()
        try:
            with path.open("r", encoding="utf-8") as handle:
                if suffix in {".yaml", ".yml"}:
                    raw = yaml.safe_load(handle)
                elif suffix == ".json":
                    raw = json.load(handle)
                else:
                    return None
        except OSError as exc:
            raise RuntimeError(f"Failed to read vitrus config file {path}") from exc
        except (yaml.YAMLError, json.JSONDecodeError) as exc:
            raise ValueError(f"Invalid vitrus config file {path}") from exc

        if raw is None:
            return {}
        if not isinstance(raw, dict):
            raise ValueError(f"Vitrus config file {path} must contain a mapping at top level.")
        return raw


@lru_cache()
def get_settings() -> VitrusSettings:
    """Return memoized client settings."""

    return VitrusSettings()
