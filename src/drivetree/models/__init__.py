"""SQLModel database models for drivetree."""

from drivetree.models.bin import BinEntry, BinEntryBase
from drivetree.models.entries import NAME_MAX_LENGTH, Entry, EntryBase
from drivetree.models.quota import QuotaAdjustment, QuotaAdjustmentBase
from drivetree.models.shares import (
    ShareMember,
    ShareMemberBase,
    SharePolicy,
    SharePolicyBase,
)

__all__ = [
    "NAME_MAX_LENGTH",
    "BinEntry",
    "BinEntryBase",
    "Entry",
    "EntryBase",
    "QuotaAdjustment",
    "QuotaAdjustmentBase",
    "ShareMember",
    "ShareMemberBase",
    "SharePolicy",
    "SharePolicyBase",
]
