"""Pydantic settings loaded from YAML configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError, model_validator

from vigil.core.exceptions import ConfigurationError

_settings: Settings | None = None

_DEFAULT_CONFIG_PATH = Path("config/vigil.yaml")

Scalar = str | int | float


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(extra="forbid")

    level: str = "INFO"
    format: str = "json"
    audit_file: Path | None = None


class StateConfig(BaseModel):
    """Where durable monitor state (unique values, cooldowns, counters) lives."""

    model_config = ConfigDict(extra="forbid")

    directory: Path = Path("state")
    persist: bool = True
    # Seconds between background saves of cooldowns and window counters.
    flush_interval: float = Field(default=5.0, gt=0)


class NotifyConfigModel(BaseModel):
    """A named notification channel group with aggregation and rate limits."""

    model_config = ConfigDict(extra="forbid")

    limit: str | None = None
    aggregate: Scalar | None = None
    aggregate_timeout: Scalar | None = None
    aggregate_title: str = "Aggregated notification"
    pushbullet: SecretStr | None = None
    webhook: SecretStr | None = None


class NotifyActionConfig(BaseModel):
    """The ``notify`` key of a monitor."""

    model_config = ConfigDict(extra="forbid")

    title: str | None = None
    body: str = ""
    id: str | None = None
    type: str = "default"


class MonitorConfig(BaseModel):
    """Raw monitor definition as it appears in the YAML file."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    # Events
    service: str | None = None
    log: str | None = None
    watch: str | list[str] | None = None
    every: Scalar | None = None
    at: str | None = None
    on: str | list[str] | None = None

    # Conditions
    cooldown: Scalar | None = None
    match_log: str | list[str] | None = None
    match_log_mode: Literal["all", "any"] = "all"
    ignore_log: str | list[str] | None = None
    unique: str | None = None
    if_: str | None = Field(default=None, alias="if")
    threshold: str | None = None

    # Actions
    exec_: str | list[Scalar] | None = Field(default=None, alias="exec")
    notify: NotifyActionConfig | str | None = None
    set_: dict[str, Any] = Field(default_factory=dict, alias="set")
    push: dict[str, Any] = Field(default_factory=dict)

    vars: dict[str, Any] = Field(default_factory=dict)

    # Key order as written, used to order actions.
    declared_keys: list[str] = Field(default_factory=list, exclude=True)

    @model_validator(mode="before")
    @classmethod
    def _record_key_order(cls, data: Any) -> Any:
        if isinstance(data, dict) and "declared_keys" not in data:
            data = {**data, "declared_keys": list(data)}
        return data


class Settings(BaseModel):
    """Root settings container."""

    model_config = ConfigDict(extra="forbid")

    logging: LoggingConfig = LoggingConfig()
    state: StateConfig = StateConfig()
    variables: dict[str, Any] = Field(default_factory=dict)
    notify: dict[str, NotifyConfigModel] = Field(default_factory=dict)
    monitors: dict[str, MonitorConfig] = Field(default_factory=dict)


def load_settings(path: str | Path | None = None) -> Settings:
    """Load settings from a YAML file and cache globally.

    Args:
        path: Path to YAML config. Defaults to config/vigil.yaml.

    Returns:
        Parsed Settings instance.

    Raises:
        ConfigurationError: The file is not valid YAML or fails validation.
    """
    global _settings  # noqa: PLW0603

    config_path = Path(path) if path else _DEFAULT_CONFIG_PATH

    data: dict[str, Any] = {}
    if config_path.exists():
        with open(config_path) as f:
            try:
                raw = yaml.safe_load(f)
            except yaml.YAMLError as exc:
                raise ConfigurationError(f"Failed to parse {config_path}: {exc}") from exc
            if isinstance(raw, dict):
                data = raw

    _settings = parse_settings(data)
    return _settings


def parse_settings(data: dict[str, Any]) -> Settings:
    """Validate an already-decoded config mapping."""
    try:
        return Settings(**data)
    except ValidationError as exc:
        raise ConfigurationError(str(exc)) from exc


def get_settings() -> Settings:
    """Return the cached settings, loading defaults if not yet loaded."""
    global _settings  # noqa: PLW0603
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Reset the cached settings (useful for testing)."""
    global _settings  # noqa: PLW0603
    _settings = None
