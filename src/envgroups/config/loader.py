"""YAML settings file loader."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from dotenv import dotenv_values
from pydantic import ValidationError
from ruamel.yaml import YAML

from envgroups.config.schema import Settings

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("~/.config/envgroups/config.yaml")

_ENV_PREFIX = "ENVGROUPS_"


class ConfigError(Exception):
    """Raised for settings loading / validation errors."""


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        raw = YAML(typ="safe").load(path)
    except Exception as exc:
        raise ConfigError(f"Failed to read {path}: {exc}") from exc

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")
    return dict(raw)


def _apply_dotenv(raw: dict[str, Any], config_dir: Path) -> dict[str, Any]:
    """Fill fields missing from YAML and the environment from a sibling ``.env``.

    Priority (highest wins): YAML value > env var > ``.env`` file.
    """
    env_file = config_dir / ".env"
    if not env_file.is_file():
        return raw
    dotenv_vals = dotenv_values(env_file, encoding="utf-8-sig")

    resolved = dict(raw)
    for field in Settings.model_fields:
        env_key = f"{_ENV_PREFIX}{field.upper()}"
        if field in resolved or env_key in os.environ:
            continue
        val = dotenv_vals.get(env_key)
        if val is not None:
            resolved[field] = val
    return resolved


def load_settings(path: Path | str | None = None) -> Settings:
    """Load settings from an optional YAML file plus ``ENVGROUPS_*`` env vars.

    Without *path*, ``~/.config/envgroups/config.yaml`` is used if it exists.

    Raises:
        ConfigError: On YAML parse errors or validation failures.
    """
    if path is None:
        default = DEFAULT_CONFIG_PATH.expanduser()
        path = default if default.is_file() else None

    raw: dict[str, Any] = {}
    if path is not None:
        path = Path(path)
        if not path.is_file():
            raise ConfigError(f"Config file not found: {path}")
        raw = _apply_dotenv(_read_yaml(path), path.parent)

    try:
        settings = Settings(**raw)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc

    logger.debug("Settings loaded (config=%s, backend=%s)", path, settings.backend)
    return settings
