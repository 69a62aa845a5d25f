"""AccessLevel enum: effective permission of a user on an entry."""

from __future__ import annotations

from enum import Enum


class AccessLevel(str, Enum):
    """Effective permission level resolved for a (user, entry) pair."""

    NONE = "none"
    READ = "read"
    EDIT = "edit"

    @property
    def can_read(self) -> bool:
        return self is not AccessLevel.NONE

    @property
    def can_edit(self) -> bool:
        return self is AccessLevel.EDIT
