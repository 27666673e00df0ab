"""YAML configuration: load, validate, cache, hot-reload.

The file path comes from INBOX_TRIAGE_CONFIG_PATH, else config/config.yaml.
get_config() caches the parsed AppConfig; the watch loop calls
reload_config_if_changed() on every tick and pushes a new config into the
running engine.
"""

import os
import threading
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from inbox_triage.config_schema import CURRENT_SCHEMA_VERSION, AppConfig
from inbox_triage.core.errors import ConfigLoadError, ConfigValidationError
from inbox_triage.core.logging import get_logger, truncate_address

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path("config/config.yaml")
CONFIG_PATH_ENV = "INBOX_TRIAGE_CONFIG_PATH"

# Pydantic error type -> short description of the expected value
_EXPECTED = {
    "string_type": "a string",
    "int_type": "an integer",
    "int_parsing": "an integer",
    "float_type": "a number",
    "float_parsing": "a number",
    "bool_type": "true or false",
    "bool_parsing": "true or false",
}

_lock = threading.Lock()
_cached: AppConfig | None = None
_watched_path: Path | None = None
_watched_mtime = 0.0


def config_path_from_env() -> Path:
    return Path(os.environ.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH)


def _describe_errors(error: ValidationError) -> str:
    lines = []
    for err in error.errors():
        where = ".".join(str(part) for part in err["loc"])
        if err["type"] == "missing":
            lines.append(f"  - Missing required field '{where}'")
        elif err["type"] in _EXPECTED:
            lines.append(f"  - Field '{where}' must be {_EXPECTED[err['type']]}")
        else:
            lines.append(f"  - Field '{where}': {err['msg']}")
    return "\n".join(lines)


def _read_mapping(path: Path) -> dict[str, Any]:
    if not path.is_file():
        raise ConfigLoadError(
            f"Configuration file not found: {path}\n"
            f"Copy config/config.yaml.example to {path} and set the actor email."
        )
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigLoadError(f"Failed to parse YAML in {path}:\n{e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigLoadError(f"{path} must hold a YAML mapping, not {type(data).__name__}")
    return data


def load_config(path: Path | None = None) -> AppConfig:
    """Read and validate a config file, bypassing the cache.

    Raises:
        ConfigLoadError: The file is missing or is not a YAML mapping
        ConfigValidationError: A field is invalid or the schema version is too new
    """
    path = path or config_path_from_env()
    logger.debug("config_loading", path=str(path))

    try:
        config = AppConfig(**_read_mapping(path))
    except ValidationError as e:
        raise ConfigValidationError(
            f"Configuration validation failed for {path}:\n{_describe_errors(e)}"
        ) from e

    if config.schema_version > CURRENT_SCHEMA_VERSION:
        raise ConfigValidationError(
            f"Config schema version {config.schema_version} is newer than supported "
            f"version {CURRENT_SCHEMA_VERSION}; upgrade inbox-triage."
        )

    logger.info(
        "config_loaded",
        path=str(path),
        schema_version=config.schema_version,
        actor=truncate_address(config.actor.email),
        team_count=len(config.team),
    )
    return config


def get_config() -> AppConfig:
    """Cached config, loaded on first use. Safe to call from scheduler jobs."""
    global _cached, _watched_path, _watched_mtime

    with _lock:
        if _cached is None:
            _watched_path = config_path_from_env()
            _cached = load_config(_watched_path)
            _watched_mtime = _watched_path.stat().st_mtime
        return _cached


def reload_config_if_changed() -> bool:
    """Reload the cached config when its file's mtime moved forward.

    An invalid new file is logged and skipped: the previous config stays
    active and the same mtime is not retried.

    Returns:
        True only when a new config replaced the cached one
    """
    global _cached, _watched_mtime

    with _lock:
        if _watched_path is None:
            return False

        try:
            mtime = _watched_path.stat().st_mtime
        except OSError as e:
            logger.warning("config_mtime_check_failed", path=str(_watched_path), error=str(e))
            return False
        if mtime <= _watched_mtime:
            return False

        _watched_mtime = mtime
        logger.info("config_changed", path=str(_watched_path))
        try:
            _cached = load_config(_watched_path)
        except (ConfigLoadError, ConfigValidationError) as e:
            logger.warning("config_reload_failed", path=str(_watched_path), error=str(e))
            return False

        logger.info("config_reloaded", path=str(_watched_path))
        return True


def validate_config_file(path: Path | None = None) -> tuple[bool, str]:
    """Check a config file for the validate-config command.

    Returns:
        (is_valid, message) where message is a summary or the error text
    """
    try:
        config = load_config(path)
    except ConfigLoadError as e:
        return False, f"Load error: {e}"
    except ConfigValidationError as e:
        return False, f"Validation error: {e}"

    summary = [
        f"Configuration valid (schema version {config.schema_version})",
        f"  - actor: {config.actor.email}",
        f"  - {len(config.team)} team members",
        f"  - remote: {config.remote.base_url}",
        f"  - sync throttle: {config.sync.throttle_seconds:g}s, "
        f"bulk chunk size: {config.bulk.chunk_size}",
    ]
    return True, "\n".join(summary)


def reset_config() -> None:
    """Forget the cached config (tests)."""
    global _cached, _watched_path, _watched_mtime
    with _lock:
        _cached = None
        _watched_path = None
        _watched_mtime = 0.0
