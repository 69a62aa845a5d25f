"""Entry model: files and folders of every drive in one tree table.

Provides ``EntryBase`` (non-table) and ``Entry`` (concrete table).
Subclass ``EntryBase`` with ``table=True`` and a custom ``__tablename__``
to use a different table name per deployment.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import BigInteger, DateTime, Index
from sqlmodel import Field, SQLModel

NAME_MAX_LENGTH: int = 255
"""Longest name accepted for a file or folder."""


class EntryBase(SQLModel):
    """Base fields for a file or folder. Subclass with ``table=True`` for a concrete table."""

    id: int | None = Field(default=None, primary_key=True)
    owner_id: int = Field(index=True)
    parent_id: int | None = Field(default=None, index=True)
    share_id: int | None = Field(default=None, index=True)
    is_directory: bool = Field(default=False)
    size: int = Field(default=0, sa_type=BigInteger)
    name: str = Field(default="", max_length=NAME_MAX_LENGTH)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )


class Entry(EntryBase, table=True):
    """Default entry table: ``drive_entries``.

    Live sibling names are unique per entry type, so a folder and a file
    may share a name under the same parent. A binned entry keeps its row
    and name, which rules out a table constraint: ``EntryService`` checks
    names against the live siblings only.
    """

    __tablename__ = "drive_entries"
    __table_args__ = (Index("ix_drive_entries_sibling", "parent_id", "is_directory", "name"),)
