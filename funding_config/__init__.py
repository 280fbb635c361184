"""
funding_config -- single public entrypoint for runtime settings.

Responsibility:
    ``get_settings()`` is how the API surface, the scheduler CLI and the
    engine bootstrap obtain configuration.  It loads the packaged
    ``defaults.yaml``, merges the file named by ``FUNDING_LEDGER_CONFIG``
    (if any) over it, then applies ``DATABASE_URL``, ``SCHEDULER_SECRET``
    and ``FUNDING_LOG_LEVEL`` from the environment.

Architecture position:
    Configuration.  Sits above ``funding_kernel``; the kernel never imports
    from ``funding_config``.

Failure modes:
    - ``ConfigurationError`` -- missing override file, invalid YAML, or a
      value of the wrong type.

Audit relevance:
    Every load emits a ``funding_config_loaded`` log entry naming the source
    file and whether a scheduler secret is configured (never the secret).
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Mapping

from funding_config.loader import (
    CONFIG_PATH_ENV,
    DEFAULTS_PATH,
    apply_env,
    build_settings,
    load_yaml_file,
    merge,
)
from funding_config.settings import LedgerSettings

_logger = logging.getLogger("funding_kernel.config")

__all__ = ["LedgerSettings", "get_settings", "load_settings"]


def load_settings(
    path: Path | str | None = None,
    env: Mapping[str, str] | None = None,
) -> LedgerSettings:
    """Load settings without caching.

    Args:
        path: Override file; defaults to ``$FUNDING_LEDGER_CONFIG`` if set.
        env: Environment mapping; defaults to ``os.environ``.
    """
    env = os.environ if env is None else env
    data = load_yaml_file(DEFAULTS_PATH)
    source = str(DEFAULTS_PATH)

    override = path or env.get(CONFIG_PATH_ENV)
    if override:
        data = merge(data, load_yaml_file(Path(override)))
        source = str(override)

    settings = build_settings(apply_env(data, env), source)
    _logger.info(
        "funding_config_loaded",
        extra={
            "source": source,
            "scheduler_secret_configured": settings.requires_scheduler_secret,
            "default_timezone": settings.default_timezone,
        },
    )
    return settings


@lru_cache(maxsize=1)
def get_settings() -> LedgerSettings:
    """Process-wide settings (cached; ``get_settings.cache_clear()`` in tests)."""
    return load_settings()
