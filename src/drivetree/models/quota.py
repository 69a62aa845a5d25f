"""QuotaAdjustment model: ledger of quota deltas owed to the quota service."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import BigInteger, DateTime
from sqlmodel import Field, SQLModel


class QuotaAdjustmentBase(SQLModel):
    """Base fields for a quota adjustment. Subclass with ``table=True`` for a concrete table.

    A positive ``delta`` increases the user's used space, a negative one
    decreases it. ``applied_at`` stays ``None`` until the quota service
    has acknowledged the call.
    """

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    delta: int = Field(default=0, sa_type=BigInteger)
    reason: str = Field(default="")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )
    applied_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
        index=True,
    )


class QuotaAdjustment(QuotaAdjustmentBase, table=True):
    """Default quota ledger table: ``drive_quota_adjustments``."""

    __tablename__ = "drive_quota_adjustments"
