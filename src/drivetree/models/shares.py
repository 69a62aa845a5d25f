"""SharePolicy and ShareMember models.

A policy is the unit referenced by ``Entry.share_id``; its members are
the users who can read the subtree, with ``can_edit`` marking the ones
who can also write. Every editor is a member, so the read set is always
a superset of the edit set.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


class SharePolicyBase(SQLModel):
    """Base fields for a share policy. Subclass with ``table=True`` for a concrete table."""

    id: int | None = Field(default=None, primary_key=True)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )


class SharePolicy(SharePolicyBase, table=True):
    """Default share policy table: ``drive_share_policies``."""

    __tablename__ = "drive_share_policies"


class ShareMemberBase(SQLModel):
    """One user granted access through a share policy."""

    share_id: int = Field(primary_key=True)
    user_id: int = Field(primary_key=True, index=True)
    can_edit: bool = Field(default=False)


class ShareMember(ShareMemberBase, table=True):
    """Default share member table: ``drive_share_members``."""

    __tablename__ = "drive_share_members"
