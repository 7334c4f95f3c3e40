"""Configuration layers and their per-field merge.

Each field of :class:`EffectiveConfig` is resolved independently from four
layers, highest priority first: command-line overrides, ``DEEPSEEK_OCR_*``
environment variables, the per-user ``config.toml`` and built-in defaults.
A layer that does not supply a usable value for a field simply falls through
to the next one, so resolution itself never fails.
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Callable, Mapping

import tomli_w
import typer
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import (
    APP_NAME,
    CONFIG_FILE_NAME,
    DEFAULT_API_KEY,
    DEFAULT_BASE_URL,
    DEFAULT_DPI,
    DEFAULT_MAX_PAGES,
    DEFAULT_MODE,
    DEFAULT_RESOLUTION,
    DEFAULT_TIMEOUT_S,
    DEFAULT_WORKERS,
    ENV_PREFIX,
    INITIAL_POLL_DELAY_S,
    POLL_TIMEOUT_S,
)
from .errors import ConfigurationError, ValidationError
from .utils import atomic_write
from .validation import (
    validate_dpi,
    validate_max_pages,
    validate_mode,
    validate_resolution,
    validate_workers,
)


log = logging.getLogger(__name__)

CONFIG_DIR_ENV = f"{ENV_PREFIX}CONFIG_DIR"


@dataclass(frozen=True, slots=True)
class ConfigOverrides:
    """Values taken from command-line flags; ``None`` means not supplied."""

    api_key: str | None = None
    base_url: str | None = None
    timeout: float | None = None
    mode: str | None = None
    resolution: str | None = None
    dpi: int | None = None
    max_pages: int | None = None
    workers: int | None = None
    poll_interval: float | None = None
    poll_timeout: float | None = None


@dataclass(frozen=True, slots=True)
class EffectiveConfig:
    api_key: str = DEFAULT_API_KEY
    base_url: str = DEFAULT_BASE_URL
    timeout: float = DEFAULT_TIMEOUT_S
    mode: str = DEFAULT_MODE
    resolution: str = DEFAULT_RESOLUTION
    dpi: int = DEFAULT_DPI
    max_pages: int = DEFAULT_MAX_PAGES
    workers: int = DEFAULT_WORKERS
    poll_interval: float = INITIAL_POLL_DELAY_S
    poll_timeout: float = POLL_TIMEOUT_S

    def as_dict(self) -> dict[str, Any]:
        return {item.name: getattr(self, item.name) for item in fields(self)}


class EnvSettings(BaseSettings):
    """Raw ``DEEPSEEK_OCR_*`` environment values.

    Everything is read as text; typing happens in the field table so that a
    malformed variable is skipped instead of aborting the command.
    """

    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX, extra="ignore")

    api_key: str | None = None
    base_url: str | None = None
    timeout: str | None = None
    mode: str | None = None
    resolution: str | None = None
    dpi: str | None = None
    max_pages: str | None = None
    workers: str | None = None
    poll_interval: str | None = None
    poll_timeout: str | None = None


def _parse_str(value: Any) -> str | None:
    if not isinstance(value, str):
        raise ValueError(f"expected text, got {type(value).__name__}")
    stripped = value.strip()
    return stripped or None


def _parse_int(value: Any) -> int | None:
    if isinstance(value, bool):
        raise ValueError("expected an integer")
    if isinstance(value, int):
        return value
    text = str(value).strip()
    return int(text) if text else None


def _parse_float(value: Any) -> float | None:
    if isinstance(value, bool):
        raise ValueError("expected a number")
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    return float(text) if text else None


@dataclass(frozen=True, slots=True)
class FieldSpec:
    name: str
    section: str
    key: str
    parse: Callable[[Any], Any]
    default: Any
    check: Callable[[Any], Any] | None = None

    @property
    def dotted_key(self) -> str:
        return f"{self.section}.{self.key}"

    @property
    def env_var(self) -> str:
        return f"{ENV_PREFIX}{self.name.upper()}"


FIELD_SPECS: tuple[FieldSpec, ...] = (
    FieldSpec("api_key", "api", "key", _parse_str, DEFAULT_API_KEY),
    FieldSpec("base_url", "api", "base_url", _parse_str, DEFAULT_BASE_URL),
    FieldSpec("timeout", "api", "timeout", _parse_float, DEFAULT_TIMEOUT_S),
    FieldSpec("mode", "defaults", "mode", _parse_str, DEFAULT_MODE, validate_mode),
    FieldSpec("resolution", "defaults", "resolution", _parse_str, DEFAULT_RESOLUTION, validate_resolution),
    FieldSpec("dpi", "defaults", "dpi", _parse_int, DEFAULT_DPI, validate_dpi),
    FieldSpec("max_pages", "defaults", "max_pages", _parse_int, DEFAULT_MAX_PAGES, validate_max_pages),
    FieldSpec("workers", "defaults", "workers", _parse_int, DEFAULT_WORKERS, validate_workers),
    FieldSpec("poll_interval", "defaults", "poll_interval", _parse_float, INITIAL_POLL_DELAY_S),
    FieldSpec("poll_timeout", "defaults", "poll_timeout", _parse_float, POLL_TIMEOUT_S),
)

FIELDS_BY_KEY: dict[str, FieldSpec] = {spec.dotted_key: spec for spec in FIELD_SPECS}


def default_config_dir() -> Path:
    override = os.getenv(CONFIG_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return Path(typer.get_app_dir(APP_NAME))


class ConfigStore:
    """The persisted per-user ``config.toml`` document, addressed by dotted keys."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or default_config_dir() / CONFIG_FILE_NAME

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            with self._path.open("rb") as handle:
                return tomllib.load(handle)
        except (OSError, tomllib.TOMLDecodeError) as exc:
            log.warning("Ignoring unreadable config file %s: %s", self._path, exc)
            return {}

    def save(self, data: Mapping[str, Any]) -> None:
        atomic_write(self._path, tomli_w.dumps(dict(data)))
        log.debug("Wrote config file %s", self._path)

    def get(self, key: str) -> Any | None:
        node: Any = self.load()
        for part in key.split("."):
            if not isinstance(node, Mapping) or part not in node:
                return None
            node = node[part]
        return node

    def set(self, key: str, value: Any) -> None:
        data = self.load()
        *parents, leaf = key.split(".")
        node = data
        for part in parents:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[leaf] = value
        self.save(data)

    def delete(self, key: str) -> bool:
        data = self.load()
        *parents, leaf = key.split(".")
        node: Any = data
        for part in parents:
            node = node.get(part) if isinstance(node, dict) else None
        if not isinstance(node, dict) or leaf not in node:
            return False
        del node[leaf]
        self.save(data)
        return True

    def clear(self) -> None:
        if self._path.exists():
            self._path.unlink()

    def field_values(self) -> dict[str, Any]:
        data = self.load()
        values: dict[str, Any] = {}
        for spec in FIELD_SPECS:
            section = data.get(spec.section)
            if isinstance(section, Mapping) and spec.key in section:
                values[spec.name] = section[spec.key]
        return values


def coerce_config_value(key: str, raw: str) -> Any:
    """Turn a ``config set`` argument into the typed value stored on disk."""
    spec = FIELDS_BY_KEY.get(key)
    if spec is None:
        raise ValidationError(
            f"Unknown configuration key: {key}",
            hints=(f"Known keys: {', '.join(FIELDS_BY_KEY)}",),
        )
    try:
        value = spec.parse(raw)
    except ValueError as exc:
        raise ValidationError(f"Invalid value for {key}: {raw}") from exc
    if value is None:
        raise ValidationError(f"Empty value for {key}; use 'config delete {key}' to unset it")
    if spec.check is not None:
        spec.check(value)
    return value


def _layer_value(spec: FieldSpec, raw: Any, source: str) -> Any | None:
    if raw is None:
        return None
    try:
        return spec.parse(raw)
    except (TypeError, ValueError):
        log.warning("Ignoring invalid %s value for %s: %r", source, spec.name, raw)
        return None


def resolve_config(
    overrides: ConfigOverrides | None = None,
    *,
    env: EnvSettings | None = None,
    store: ConfigStore | None = None,
    file_values: Mapping[str, Any] | None = None,
) -> EffectiveConfig:
    overrides = overrides or ConfigOverrides()
    env = env if env is not None else EnvSettings()
    if file_values is None:
        file_values = (store or ConfigStore()).field_values()

    resolved: dict[str, Any] = {}
    for spec in FIELD_SPECS:
        layers = (
            ("command-line", getattr(overrides, spec.name)),
            (f"environment ({spec.env_var})", getattr(env, spec.name)),
            (f"config file ({spec.dotted_key})", file_values.get(spec.name)),
        )
        value = spec.default
        for source, raw in layers:
            parsed = _layer_value(spec, raw, source)
            if parsed is not None:
                value = parsed
                break
        resolved[spec.name] = value
    return EffectiveConfig(**resolved)


def validate_config(config: EffectiveConfig) -> EffectiveConfig:
    missing: list[str] = []
    hints: list[str] = []
    if not config.api_key:
        missing.append("API key")
        hints.extend(
            [
                "CLI flag: --api-key YOUR_KEY",
                f"Environment variable: {ENV_PREFIX}API_KEY=YOUR_KEY",
                "Config file: deepseek-ocr config set api.key YOUR_KEY",
                "Interactive setup: deepseek-ocr config init",
            ]
        )
    if not config.base_url:
        missing.append("API base URL")
        hints.extend(
            [
                "CLI flag: --base-url URL",
                f"Environment variable: {ENV_PREFIX}BASE_URL=URL",
                "Config file: deepseek-ocr config set api.base_url URL",
            ]
        )
    if missing:
        verb = "is" if len(missing) == 1 else "are"
        raise ConfigurationError(f"{' and '.join(missing)} {verb} required. Set it via:", hints=hints)
    return config


__all__ = [
    "CONFIG_DIR_ENV",
    "ConfigOverrides",
    "ConfigStore",
    "EffectiveConfig",
    "EnvSettings",
    "FIELD_SPECS",
    "FIELDS_BY_KEY",
    "FieldSpec",
    "coerce_config_value",
    "default_config_dir",
    "resolve_config",
    "validate_config",
]
