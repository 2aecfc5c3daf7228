"""XDG config loading/saving."""

from __future__ import annotations

import os
import sys
from contextlib import suppress
from pathlib import Path
from typing import Literal, cast

from pydantic import BaseModel, ConfigDict, Field, field_validator

if sys.version_info >= (3, 11):
    import tomllib
else:  # pragma: no cover
    import tomli as tomllib

DEFAULT_CONFIG_PATH = Path("~/.config/microtermi/config.toml").expanduser()
DEFAULT_ENVIRONMENT: Literal["dev", "staging", "prod"] = "dev"
DEFAULT_LOG_LEVEL: Literal["DEBUG", "INFO", "WARN", "ERROR"] = "INFO"
DEFAULT_MAX_SESSION_LINES = 10000
DEFAULT_TICK_INTERVAL_MS = 50
ENVIRONMENT_ENV = "MICROTERMI_ENV"

_VALID_ENVIRONMENTS = {"dev", "staging", "prod"}
_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARN", "ERROR"}
_MIN_SESSION_LINES, _MAX_SESSION_LINES = 100, 100000
_MIN_TICK_MS, _MAX_TICK_MS = 16, 1000


class AppConfig(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    project_paths: list[str] = Field(default_factory=list)
    environment: Literal["dev", "staging", "prod"] = DEFAULT_ENVIRONMENT
    multi_run_script: str = ""
    multi_run_selected: list[int] = Field(default_factory=list)
    max_session_lines: int = Field(
        default=DEFAULT_MAX_SESSION_LINES,
        ge=_MIN_SESSION_LINES,
        le=_MAX_SESSION_LINES,
    )
    tick_interval_ms: int = Field(default=DEFAULT_TICK_INTERVAL_MS, ge=_MIN_TICK_MS, le=_MAX_TICK_MS)
    log_level: Literal["DEBUG", "INFO", "WARN", "ERROR"] = DEFAULT_LOG_LEVEL

    @field_validator("environment")
    @classmethod
    def _validate_environment(cls, value: str) -> str:
        if value not in _VALID_ENVIRONMENTS:
            raise ValueError(f"Invalid environment: {value}")
        return value


def get_config_path(path: str | Path | None = None) -> Path:
    if path is None:
        return DEFAULT_CONFIG_PATH
    return Path(path).expanduser()


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _toml_scalar(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return f'"{_escape(value)}"'
    if isinstance(value, list):
        return "[" + ", ".join(_toml_scalar(item) for item in value) + "]"
    raise TypeError(f"Unsupported TOML scalar type: {type(value)!r}")


def _normalize_paths(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    normalized: list[str] = []
    seen: set[str] = set()
    for item in value:
        if not isinstance(item, str):
            continue
        path = item.strip()
        if not path or path in seen:
            continue
        seen.add(path)
        normalized.append(path)
    return normalized


def _normalize_selection(value: object, project_count: int) -> list[int]:
    if not isinstance(value, list):
        return []
    selected = {
        item
        for item in value
        if isinstance(item, int) and not isinstance(item, bool) and 0 <= item < project_count
    }
    return sorted(selected)


def _sanitize(raw: dict[str, object]) -> AppConfig:
    cfg = AppConfig()

    cfg.project_paths = _normalize_paths(raw.get("project_paths", []))
    cfg.multi_run_selected = _normalize_selection(raw.get("multi_run_selected", []), len(cfg.project_paths))

    environment = raw.get("environment", cfg.environment)
    if isinstance(environment, str) and environment in _VALID_ENVIRONMENTS:
        cfg.environment = cast(Literal["dev", "staging", "prod"], environment)
    env_override = os.getenv(ENVIRONMENT_ENV, "").strip().lower()
    if env_override in _VALID_ENVIRONMENTS:
        cfg.environment = cast(Literal["dev", "staging", "prod"], env_override)

    multi_run_script = raw.get("multi_run_script", cfg.multi_run_script)
    if isinstance(multi_run_script, str):
        cfg.multi_run_script = multi_run_script.strip()

    max_session_lines = raw.get("max_session_lines", cfg.max_session_lines)
    if (
        isinstance(max_session_lines, int)
        and not isinstance(max_session_lines, bool)
        and _MIN_SESSION_LINES <= max_session_lines <= _MAX_SESSION_LINES
    ):
        cfg.max_session_lines = max_session_lines

    tick_interval_ms = raw.get("tick_interval_ms", cfg.tick_interval_ms)
    if (
        isinstance(tick_interval_ms, int)
        and not isinstance(tick_interval_ms, bool)
        and _MIN_TICK_MS <= tick_interval_ms <= _MAX_TICK_MS
    ):
        cfg.tick_interval_ms = tick_interval_ms

    log_level = raw.get("log_level", cfg.log_level)
    if isinstance(log_level, str):
        normalized_level = log_level.strip().upper()
        if normalized_level == "WARNING":
            normalized_level = "WARN"
        if normalized_level in _VALID_LOG_LEVELS:
            cfg.log_level = cast(Literal["DEBUG", "INFO", "WARN", "ERROR"], normalized_level)

    return cfg


def load_config(path: str | Path | None = None) -> AppConfig:
    resolved = get_config_path(path)
    if not resolved.exists():
        return _sanitize({})
    try:
        with resolved.open("rb") as handle:
            raw = tomllib.load(handle)
    except (tomllib.TOMLDecodeError, OSError):
        return _sanitize({})
    if not isinstance(raw, dict):
        return _sanitize({})
    return _sanitize(raw)


def save_config(config: AppConfig, path: str | Path | None = None) -> Path:
    resolved = get_config_path(path)
    resolved.parent.mkdir(parents=True, exist_ok=True)
    project_paths = _normalize_paths(config.project_paths)
    selected = _normalize_selection(config.multi_run_selected, len(project_paths))

    lines = [
        f"project_paths = {_toml_scalar(project_paths)}",
        f"environment = {_toml_scalar(config.environment)}",
        f"multi_run_script = {_toml_scalar(config.multi_run_script)}",
        f"multi_run_selected = {_toml_scalar(selected)}",
        f"max_session_lines = {_toml_scalar(config.max_session_lines)}",
        f"tick_interval_ms = {_toml_scalar(config.tick_interval_ms)}",
        f"log_level = {_toml_scalar(config.log_level)}",
    ]

    resolved.write_text("\n".join(lines) + "\n", encoding="utf-8")
    with suppress(OSError):
        resolved.chmod(0o600)
    return resolved
