"""DriveConfig: tunables for a DriveAsync instance."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

DEFAULT_BIN_RETENTION = timedelta(days=3)
"""How long an entry stays in the bin before the expiry sweep purges it."""

DEFAULT_CREDENTIAL_EXPIRES_IN = 1800
"""Lifetime of an upload credential, in seconds."""


@dataclass
class DriveConfig:
    """Configuration for a single drive store."""

    bin_retention: timedelta = DEFAULT_BIN_RETENTION
    """Grace period between binning an entry and purging it."""

    credential_expires_in: int = DEFAULT_CREDENTIAL_EXPIRES_IN
    """Seconds an upload credential stays valid."""

    isolation_level: str | None = None
    """Engine isolation level, e.g. ``"SERIALIZABLE"`` on PostgreSQL.

    ``None`` keeps the driver default. Concurrent re-share and move of
    overlapping subtrees is only safe under serializable isolation.
    """

    create_tables: bool = False
    """If True, create missing tables on first use."""

    def __post_init__(self) -> None:
        if self.bin_retention <= timedelta(0):
            raise ValueError(f"bin_retention must be positive, got {self.bin_retention}")
        if self.credential_expires_in <= 0:
            raise ValueError(
                f"credential_expires_in must be positive, got {self.credential_expires_in}"
            )
