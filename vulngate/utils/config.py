#!/usr/bin/env python3
"""
Runtime settings.

Resolution order, later wins: built-in defaults, the YAML config file
(``VULNGATE_CONFIG`` or ``~/.vulngate/config.yaml``), then ``VULNGATE_*``
environment variables. A ``.env`` file is loaded into the environment first
without overriding variables that are already set.
"""

from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml
from dotenv import find_dotenv, load_dotenv

from vulngate.constants import (
    CONFIG_DIR_NAME,
    CONFIG_FILE_NAME,
    DB_FILE_NAME,
    DEFAULT_MATCH_CONCURRENCY,
    ENV_PREFIX,
)
from vulngate.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def default_db_path() -> Path:
    """``~/.vulngate/vulngate.db``, or the temp dir when there is no home."""
    try:
        home = Path.home()
    except (RuntimeError, KeyError):
        return Path(tempfile.gettempdir()) / CONFIG_DIR_NAME / DB_FILE_NAME
    return home / CONFIG_DIR_NAME / DB_FILE_NAME


def default_config_path() -> Path | None:
    try:
        return Path.home() / CONFIG_DIR_NAME / CONFIG_FILE_NAME
    except (RuntimeError, KeyError):
        return None


@dataclass(frozen=True)
class Settings:
    api_key: str = field(default="", repr=False)
    db_path: Path = field(default_factory=default_db_path)
    offline: bool = False
    enable_ai_score: bool = False
    fail_on: str = ""
    ignore_ids: tuple[str, ...] = ()
    vex_path: str = ""
    match_concurrency: int = DEFAULT_MATCH_CONCURRENCY


def parse_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigurationError(f"{name}: expected a boolean, got {value!r}")


def parse_positive_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(f"{name}: expected a positive integer, got {value!r}")
    try:
        number = int(str(value).strip())
    except ValueError as e:
        raise ConfigurationError(f"{name}: expected a positive integer, got {value!r}") from e
    if number < 1:
        raise ConfigurationError(f"{name}: must be at least 1, got {number}")
    return number


def _split_ids(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = [str(v) for v in value]
    else:
        raise ConfigurationError("ignore_ids: expected a list or comma-separated string")
    return tuple(i.strip() for i in items if i.strip())


def _coerce(name: str, value: Any) -> Any:
    if name in ("offline", "enable_ai_score"):
        return parse_bool(value, name)
    if name == "match_concurrency":
        return parse_positive_int(value, name)
    if name == "ignore_ids":
        return _split_ids(value)
    if name == "db_path":
        return Path(str(value)).expanduser()
    return str(value)


def apply_overrides(settings: Settings, values: Mapping[str, Any], source: str) -> Settings:
    """Overlay known keys from ``values``; unknown keys are logged and skipped."""
    known = {f.name for f in fields(Settings)}
    changes: dict[str, Any] = {}
    for key, value in values.items():
        name = str(key).strip().lower()
        if name not in known:
            logger.warning(f"Ignoring unknown setting {key!r} from {source}")
            continue
        if value is None or value == "":
            continue
        changes[name] = _coerce(name, value)
    return replace(settings, **changes) if changes else settings


def read_config_file(path: Path) -> dict[str, Any]:
    """Load a YAML mapping; a missing file is empty, a broken one is a warning."""
    if not path.is_file():
        return {}
    try:
        with path.open(encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"⚠️  Could not read config file {path}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.warning(f"⚠️  Config file {path} is not a mapping; ignoring it")
        return {}
    return data


def env_overrides(environ: Mapping[str, str] | None = None) -> dict[str, str]:
    """``VULNGATE_FAIL_ON=high`` → ``{"fail_on": "high"}``; empty values are dropped."""
    environ = os.environ if environ is None else environ
    out: dict[str, str] = {}
    for key, value in environ.items():
        if key.startswith(ENV_PREFIX) and value.strip():
            name = key[len(ENV_PREFIX) :].lower()
            if name == "config":
                continue
            out[name] = value
    return out


def load_settings(
    config_path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
    use_dotenv: bool = True,
) -> Settings:
    if use_dotenv and environ is None:
        try:
            env_path = find_dotenv(usecwd=True) or find_dotenv()
        except Exception:
            env_path = ""
        load_dotenv(dotenv_path=env_path if env_path else None, override=False)

    env = os.environ if environ is None else environ
    settings = Settings()

    if config_path is None:
        explicit = env.get(f"{ENV_PREFIX}CONFIG", "").strip()
        path = Path(explicit).expanduser() if explicit else default_config_path()
    else:
        path = Path(config_path).expanduser()
    if path is not None:
        settings = apply_overrides(settings, read_config_file(path), str(path))

    return apply_overrides(settings, env_overrides(env), "environment")
