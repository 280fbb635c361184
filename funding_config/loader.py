"""
Settings loader (``funding_config.loader``).

Reads YAML with ``yaml.safe_load``, merges an optional override file over
the packaged defaults, applies environment overrides and converts the
result into a frozen ``LedgerSettings``.

Failure modes
-------------
* Missing override file, malformed YAML, a non-mapping document, or a value
  of the wrong type -> ``ConfigurationError`` naming the source.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping

import yaml

from funding_config.settings import LedgerSettings
from funding_kernel.exceptions import ConfigurationError

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

CONFIG_PATH_ENV = "FUNDING_LEDGER_CONFIG"

# environment variable -> (section, key)
ENV_OVERRIDES = {
    "DATABASE_URL": ("database", "url"),
    "SCHEDULER_SECRET": ("scheduler", "secret"),
    "FUNDING_LOG_LEVEL": ("logging", "level"),
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load one YAML document as a dict (empty file -> empty dict).

    Raises:
        ConfigurationError: Unreadable file, invalid YAML, or not a mapping.
    """
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        raise ConfigurationError(str(path), "file not found") from None
    except yaml.YAMLError as exc:
        raise ConfigurationError(str(path), f"invalid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(str(path), "top level must be a mapping")
    return data


def merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Recursive dict merge; ``override`` wins."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def apply_env(data: Mapping[str, Any], env: Mapping[str, str]) -> dict[str, Any]:
    result = dict(data)
    for var, (section, key) in ENV_OVERRIDES.items():
        value = env.get(var)
        if value:
            result[section] = {**(result.get(section) or {}), key: value}
    return result


def _section(data: Mapping[str, Any], name: str, source: str) -> Mapping[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, Mapping):
        raise ConfigurationError(source, f"'{name}' must be a mapping")
    return section


def _positive_int(value: Any, field: str, source: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigurationError(source, f"{field} must be a positive integer, got {value!r}")
    return value


def _positive_number(value: Any, field: str, source: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigurationError(source, f"{field} must be a positive number, got {value!r}")
    return float(value)


def build_settings(data: Mapping[str, Any], source: str) -> LedgerSettings:
    """Convert a merged settings mapping into ``LedgerSettings``."""
    from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

    database = _section(data, "database", source)
    scheduler = _section(data, "scheduler", source)
    ledger = _section(data, "ledger", source)
    logging_section = _section(data, "logging", source)

    url = database.get("url")
    if not isinstance(url, str) or not url:
        raise ConfigurationError(source, "database.url is required")

    secret = scheduler.get("secret")
    if secret is not None and not isinstance(secret, str):
        raise ConfigurationError(source, "scheduler.secret must be a string")

    timezone = scheduler.get("default_timezone", "UTC")
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError, TypeError):
        raise ConfigurationError(source, f"unknown timezone: {timezone!r}") from None

    level = str(logging_section.get("level", "INFO")).upper()
    if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        raise ConfigurationError(source, f"unknown log level: {level!r}")

    return LedgerSettings(
        database_url=url,
        scheduler_secret=secret or None,
        scheduler_actor=str(scheduler.get("actor", "system:scheduler")),
        default_timezone=timezone,
        max_catch_up_periods=_positive_int(
            scheduler.get("max_catch_up_periods", 50), "scheduler.max_catch_up_periods", source,
        ),
        renewal_lookahead_days=_positive_int(
            ledger.get("renewal_lookahead_days", 30), "ledger.renewal_lookahead_days", source,
        ),
        lock_timeout_seconds=_positive_number(
            ledger.get("lock_timeout_seconds", 30), "ledger.lock_timeout_seconds", source,
        ),
        log_level=level,
        source=source,
    )
