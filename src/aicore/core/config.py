"""Application configuration management.

Handles loading and validating configuration from multiple sources:
    - TOML/JSON config files
    - Environment variables (AICORE_* prefix)
    - Default values

Key components:
    - AppConfig: Main configuration model
    - load_config(): Safe config loading with fallback
    - ConfigLoadResult: Metadata about config source
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Mapping
from contextlib import nullcontext
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any
from unittest.mock import patch

from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from aicore.core.context import DEFAULT_MAX_CONTEXT_TOKENS, DEFAULT_RESERVED_OUTPUT_TOKENS

CONFIG_ENV_VAR = "AICORE_CONFIG"
DEFAULT_CONFIG_PATH = Path.home() / ".aicore.toml"


class ConfigError(RuntimeError):
    """Raised when configuration cannot be loaded or validated."""


# -----------------------------------------------------------------------------
# Sub-configuration Models
# -----------------------------------------------------------------------------


class ContextConfig(BaseModel):
    """Context window budget."""

    max_context_tokens: int = Field(
        default=DEFAULT_MAX_CONTEXT_TOKENS,
        gt=0,
        description="Upper bound on tokens sent in a single request.",
    )
    reserved_output_tokens: int = Field(
        default=DEFAULT_RESERVED_OUTPUT_TOKENS,
        ge=0,
        description="Tokens held back from the model window for the response.",
    )


class BudgetLimits(BaseModel):
    """Spend ceilings for one period; unset means unlimited."""

    max_cost_usd: Decimal | None = Field(default=None, ge=0)
    max_operations: int | None = Field(default=None, ge=0)


class BudgetConfig(BaseModel):
    daily: BudgetLimits = Field(default_factory=BudgetLimits)
    monthly: BudgetLimits = Field(default_factory=BudgetLimits)


class RouteConfig(BaseModel):
    provider_id: str
    model_id: str


class RoutingConfig(BaseModel):
    """Task routing and fallback chains keyed by task type."""

    routes: dict[str, RouteConfig] = Field(default_factory=dict)
    fallbacks: dict[str, list[RouteConfig]] = Field(default_factory=dict)
    default_provider: str | None = Field(
        default=None, description="Provider made default once registered."
    )


@dataclass
class ConfigLoadResult:
    path: Path
    file_loaded: bool
    env_overrides: set[str]
    error: str | None = None


class AppConfig(BaseSettings):
    """Application-wide configuration with nested sub-configs."""

    model_config = SettingsConfigDict(
        env_prefix="AICORE_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    context: ContextConfig = Field(default_factory=ContextConfig)
    budget: BudgetConfig = Field(default_factory=BudgetConfig)
    routing: RoutingConfig = Field(default_factory=RoutingConfig)
    log_level: str = Field(default="INFO", description="Log level for aicore output.")

    @field_validator("log_level", mode="after")
    @classmethod
    def normalise_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[
        PydanticBaseSettingsSource,
        PydanticBaseSettingsSource,
        PydanticBaseSettingsSource,
        PydanticBaseSettingsSource,
    ]:
        # Environment variables override config file entries.
        return (env_settings, init_settings, dotenv_settings, file_secret_settings)


def _resolve_config_path(config_path: Path | None, env_vars: Mapping[str, str]) -> Path:
    candidate = config_path or env_vars.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH
    return Path(candidate).expanduser()


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Cannot read {path}: {exc}") from exc

    parser = json.loads if path.suffix.lower() == ".json" else tomllib.loads

    try:
        data = parser(raw)
    except (json.JSONDecodeError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError(f"Syntax error in {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"Config root in {path} must be a mapping.")

    return data


def _detect_env_overrides(env_vars: Mapping[str, str]) -> set[str]:
    """Detect which fields are overridden by environment variables.

    Nested fields use the `__` delimiter, e.g. AICORE_CONTEXT__MAX_CONTEXT_TOKENS.
    """
    prefix = AppConfig.model_config.get("env_prefix", "")
    delimiter = AppConfig.model_config.get("env_nested_delimiter", "__")
    overrides: set[str] = set()

    for name, info in AppConfig.model_fields.items():
        top_key = f"{prefix}{name}".upper()
        if top_key in env_vars:
            overrides.add(name)
        annotation = info.annotation
        if isinstance(annotation, type) and issubclass(annotation, BaseModel):
            for field in annotation.model_fields:
                env_key = f"{prefix}{name}{delimiter}{field}".upper()
                if env_key in env_vars:
                    overrides.add(f"{name}.{field}")

    return overrides


def load_config(
    config_path: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> tuple[AppConfig, ConfigLoadResult]:
    """
    Load configuration with Safe Mode fallback.
    If the file is invalid, returns default config + error message.
    """
    env_vars: Mapping[str, str] = os.environ if env is None else {**os.environ, **env}
    resolved_path = _resolve_config_path(config_path, env_vars)
    env_overrides = _detect_env_overrides(env_vars)

    error: str | None = None
    file_loaded = False
    file_data: dict[str, Any] = {}

    try:
        file_data = _read_config_file(resolved_path)
        file_loaded = resolved_path.exists()
    except ConfigError as exc:
        error = str(exc)

    context_manager = (
        patch.dict(os.environ, env_vars, clear=False) if env is not None else nullcontext()
    )

    try:
        with context_manager:
            config = AppConfig(**file_data)
    except ValidationError as exc:
        error = str(exc)
        config = AppConfig.model_construct()

    load_result = ConfigLoadResult(
        path=resolved_path,
        file_loaded=file_loaded,
        env_overrides=env_overrides,
        error=error,
    )

    return config, load_result


__all__ = [
    "CONFIG_ENV_VAR",
    "AppConfig",
    "BudgetConfig",
    "BudgetLimits",
    "ConfigError",
    "ConfigLoadResult",
    "ContextConfig",
    "RouteConfig",
    "RoutingConfig",
    "load_config",
]
