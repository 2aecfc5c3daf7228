"""Per-environment .env files for script runs."""

from __future__ import annotations

import logging as py_logging
from collections.abc import Mapping
from enum import Enum
from pathlib import Path

from dotenv import dotenv_values, set_key

from microtermi.errors import ExitCode, MicrotermiError

logger = py_logging.getLogger(__name__)

FALLBACK_ENV_FILE = ".env"


class Environment(str, Enum):
    DEV = "dev"
    STAGING = "staging"
    PROD = "prod"

    @property
    def env_file_name(self) -> str:
        return f".env.{self.value}"


def _read_env_file(path: Path) -> dict[str, str]:
    if not path.is_file():
        return {}
    values = dotenv_values(path, interpolate=False, encoding="utf-8")
    return {key: value for key, value in values.items() if key and value is not None}


def load_env(root: str | Path, environment: Environment | str = Environment.DEV) -> dict[str, str]:
    """Load ``.env.<environment>``; fall back to ``.env`` when that yields nothing."""
    resolved_env = Environment(environment)
    base = Path(root).expanduser()
    try:
        values = _read_env_file(base / resolved_env.env_file_name)
        if not values:
            values = _read_env_file(base / FALLBACK_ENV_FILE)
    except OSError as exc:
        raise MicrotermiError(
            f"Could not read environment files in {base}",
            code=ExitCode.CONFIG_ERROR,
            hint=str(exc) or "Check file permissions.",
        ) from exc
    logger.debug("env-load root=%s environment=%s keys=%s", base, resolved_env.value, len(values))
    return values


def save_env(
    root: str | Path,
    environment: Environment | str,
    values: Mapping[str, str],
) -> Path:
    """Replace ``.env.<environment>`` with ``values``, quoted so ``load_env`` reads them back unchanged."""
    resolved_env = Environment(environment)
    path = Path(root).expanduser() / resolved_env.env_file_name
    keys = sorted(key for key in values if key.strip())
    try:
        path.write_text("", encoding="utf-8")
        for key in keys:
            set_key(path, key, values[key], quote_mode="always", encoding="utf-8")
    except OSError as exc:
        raise MicrotermiError(
            f"Could not write {path}",
            code=ExitCode.CONFIG_ERROR,
            hint=str(exc) or "Check file permissions.",
        ) from exc
    logger.debug("env-save path=%s keys=%s", path, len(keys))
    return path
