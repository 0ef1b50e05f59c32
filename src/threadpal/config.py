"""Configuration management for threadpal."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from threadpal.agents.generic import GenericAgentConfig
from threadpal.runtimes.types import RuntimeMode, parse_bool, parse_positive_number, parse_runtime_mode

DEFAULT_HOME = Path.home() / ".threadpal"


def _split_csv(value: Any) -> Any:
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="THREADPAL_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    home: Path = Field(default=DEFAULT_HOME, description="Directory for sessions, config and memory")
    default_agent: str = Field(default="codex", description="Backend used when a topic has no override")

    codex_runtime: RuntimeMode = Field(default=RuntimeMode.AUTO, description="auto, cli or sdk")
    codex_sdk_fallback: bool = Field(default=True, description="Retry through the CLI when the SDK fails")
    codex_sdk_timeout_seconds: float | None = Field(default=None, description="Defaults to agent_timeout_seconds")
    codex_sdk_module: str = Field(default="codex_sdk", description="Python module exporting the Codex client")

    agent_timeout_seconds: float = Field(default=600.0, description="Timeout for one backend call")
    agent_max_buffer: int = Field(default=10 * 1024 * 1024, description="Output ceiling per stream in bytes")

    memory_enabled: bool = True
    memory_limit: int = 8
    memory_max_files: int = 200

    silent_tokens: Annotated[list[str], NoDecode] = Field(
        default_factory=list, description="Replies equal to one of these are not delivered"
    )

    telegram_token: str | None = None
    telegram_allow_from: Annotated[set[str], NoDecode] = Field(default_factory=set)

    generic_agents: dict[str, GenericAgentConfig] = Field(default_factory=dict)

    @field_validator("codex_runtime", mode="before")
    @classmethod
    def _parse_runtime(cls, value: Any) -> RuntimeMode:
        return parse_runtime_mode(value)

    @field_validator("codex_sdk_fallback", "memory_enabled", mode="before")
    @classmethod
    def _parse_flag(cls, value: Any, info: ValidationInfo) -> bool:
        default = cls.model_fields[info.field_name].default
        return parse_bool(value, default)

    @field_validator("agent_timeout_seconds", "agent_max_buffer", "memory_limit", "memory_max_files", mode="before")
    @classmethod
    def _parse_positive(cls, value: Any, info: ValidationInfo) -> float:
        default = cls.model_fields[info.field_name].default
        parsed = parse_positive_number(value, default)
        if isinstance(default, int):
            return max(1, int(parsed))
        return parsed

    @field_validator("codex_sdk_timeout_seconds", mode="before")
    @classmethod
    def _parse_optional_positive(cls, value: Any) -> float | None:
        if value is None or value == "":
            return None
        parsed = parse_positive_number(value, 0)
        return parsed or None

    @field_validator("silent_tokens", "telegram_allow_from", mode="before")
    @classmethod
    def _parse_csv(cls, value: Any) -> Any:
        return _split_csv(value)

    @field_validator("default_agent", mode="before")
    @classmethod
    def _normalize_agent(cls, value: Any) -> str:
        return str(value or "codex").strip().lower() or "codex"

    @property
    def sdk_timeout_seconds(self) -> float:
        return self.codex_sdk_timeout_seconds or self.agent_timeout_seconds

    def resolve_home(self) -> Path:
        home = self.home.expanduser().resolve()
        home.mkdir(parents=True, exist_ok=True)
        return home

    def is_silent(self, text: str) -> bool:
        stripped = text.strip()
        return bool(stripped) and stripped in self.silent_tokens


def load_settings(**overrides: Any) -> Settings:
    """Load settings from the environment and ``.env``, applying explicit overrides."""
    return Settings(**{key: value for key, value in overrides.items() if value is not None})
