"""BinEntry model: soft-delete marker for an entry."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


class BinEntryBase(SQLModel):
    """Base fields for a bin marker. Subclass with ``table=True`` for a concrete table.

    ``id`` is the id of the binned entry. The entry row itself is kept
    until the marker expires or the entry is purged.
    """

    id: int = Field(primary_key=True)
    prev_parent_id: int | None = Field(default=None)
    prev_share_id: int | None = Field(default=None)
    put_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
        index=True,
    )


class BinEntry(BinEntryBase, table=True):
    """Default bin table: ``drive_bin``."""

    __tablename__ = "drive_bin"
