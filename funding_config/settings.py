"""Typed runtime settings for the funding ledger and scheduler."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class LedgerSettings:
    """Validated, immutable settings.  Built only by ``funding_config.loader``."""

    database_url: str
    scheduler_secret: str | None = None
    scheduler_actor: str = "system:scheduler"
    default_timezone: str = "UTC"
    max_catch_up_periods: int = 50
    renewal_lookahead_days: int = 30
    lock_timeout_seconds: float = 30.0
    log_level: str = "INFO"
    source: str = "defaults"

    @property
    def requires_scheduler_secret(self) -> bool:
        return bool(self.scheduler_secret)

    def __repr__(self) -> str:
        # never print the secret
        secret = "***" if self.scheduler_secret else None
        return (
            f"LedgerSettings(database_url={self.database_url!r}, scheduler_secret={secret!r}, "
            f"default_timezone={self.default_timezone!r}, source={self.source!r})"
        )
