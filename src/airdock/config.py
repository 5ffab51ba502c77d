"""Centralized configuration: Pydantic BaseSettings with TOML + dotenv sources.

Settings live in config.toml. Environment variables override it using
``__`` as the nested delimiter (e.g. ``RUNTIME__WORKSPACE_VOLUME``).

Priority (highest wins): init args > env vars > .env > config.toml

The Runner never reads settings itself: callers build an image runtime and
runner limits from them and inject both.

Usage::

    from airdock.config import get_settings
    from airdock.runtime import DockerImageRuntime

    s = get_settings()
    runtime = DockerImageRuntime(s.runtime)
"""

from __future__ import annotations

from pydantic import BaseModel, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

# ---------------------------------------------------------------------------
# Sub-models (each maps to a [section] in config.toml)
# ---------------------------------------------------------------------------


class _StrictModel(BaseModel):
    """Base for all config sub-models. Reject unknown keys so typos fail loudly."""

    model_config = {"extra": "forbid"}


class RuntimeConfig(_StrictModel):
    cli: str = "docker"
    image_namespace: str = "airbyte"  # prefix added to bare connector image names
    workspace_volume: str = "airdock_workspace"  # docker volume or host dir
    mount_alias: str = "/tmp/airbyte"  # where the volume appears inside containers
    config_dir: str = "/tmp/airbyte/config"  # host path of generated configs, inside the volume


class RunnerConfig(_StrictModel):
    spec_timeout: float = 60.0  # seconds
    check_timeout: float = 60.0
    discover_timeout: float = 600.0
    read_timeout: float = 86400.0  # 24 hours
    max_output_size: int = 10485760  # 10MB of captured stderr
    stream_limit: int = 64 * 1024 * 1024  # longest accepted stdout line (catalogs can be big)

    @field_validator("spec_timeout", "check_timeout", "discover_timeout", "read_timeout")
    @classmethod
    def positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeouts must be positive")
        return v


class LoggingConfig(_StrictModel):
    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        return v.upper()


# ---------------------------------------------------------------------------
# Root settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        toml_file="config.toml",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    runtime: RuntimeConfig = RuntimeConfig()
    runner: RunnerConfig = RunnerConfig()
    logging: LoggingConfig = LoggingConfig()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
        )


_settings: Settings | None = None


def get_settings() -> Settings:
    """Lazy cached singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Clear the cached singleton (for tests)."""
    global _settings
    _settings = None
