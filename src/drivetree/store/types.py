"""Value and result types: EntryInfo, SharePolicies, IngestEntry, results."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .utils import join_entry_path

if TYPE_CHECKING:
    from datetime import datetime


# ---------------------------------------------------------------------------
# Entries and policies
# ---------------------------------------------------------------------------


@dataclass
class EntryInfo:
    """File/folder metadata as seen by one requester."""

    id: int
    owner_id: int
    parent_id: int | None
    name: str
    is_directory: bool
    size: int = 0
    share_id: int | None = None
    can_edit: bool = False
    in_bin: bool = False
    put_at: datetime | None = None
    prev_parent_id: int | None = None
    prev_share_id: int | None = None
    created_at: datetime | None = None


@dataclass
class SharePolicies:
    """Users that can read and edit a shared subtree."""

    can_read_users: list[int] = field(default_factory=list)
    can_edit_users: list[int] = field(default_factory=list)

    def normalized(self) -> SharePolicies:
        """Return a copy where every editor is also a reader, without duplicates."""
        readers = list(dict.fromkeys(self.can_read_users))
        editors = list(dict.fromkeys(self.can_edit_users))
        for user_id in editors:
            if user_id not in readers:
                readers.append(user_id)
        return SharePolicies(can_read_users=readers, can_edit_users=editors)


@dataclass
class MoveItem:
    """One entry of a batch move: matched on ``(id, parent_id)``, renamed to ``name``."""

    id: int
    parent_id: int
    name: str


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------


@dataclass
class IngestEntry:
    """One row of a batch upload.

    ``path`` is the relative path of the containing folder inside the
    batch (``""`` for top level). ``new_name`` renames the stored row
    while ``key`` keeps the original name, so children can keep
    addressing the folder by the name they were uploaded under.
    """

    name: str
    size: int = 0
    path: str = ""
    new_name: str | None = None
    is_directory: bool = False

    @property
    def stored_name(self) -> str:
        return self.new_name or self.name

    @property
    def key(self) -> str:
        return join_entry_path(self.path, self.name)


@dataclass
class UploadCredential:
    """Time-limited credential for uploading one object."""

    url: str
    fields: dict[str, Any] = field(default_factory=dict)


@dataclass
class UploadedEntry:
    """One committed upload row with its credential (``None`` if issuing failed)."""

    path: str
    id: int
    parent_id: int
    credential: UploadCredential | None = None


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class UploadResult:
    """Result of a batch upload."""

    success: bool
    message: str
    entries: list[UploadedEntry] = field(default_factory=list)


@dataclass
class CreateFolderResult:
    """Result of a folder creation."""

    success: bool
    message: str
    entry_id: int | None = None


@dataclass
class ShareResult:
    """Result of a share operation."""

    success: bool
    message: str
    share_id: int | None = None


@dataclass
class MoveResult:
    """Result of a batch move."""

    success: bool
    message: str
    moved: int = 0


@dataclass
class RenameResult:
    """Result of a rename."""

    success: bool
    message: str
    entry_id: int | None = None
    name: str | None = None


@dataclass
class OwnershipResult:
    """Result of a recursive ownership change."""

    success: bool
    message: str
    transferred_bytes: int = 0
    released: dict[int, int] = field(default_factory=dict)
    quota_pending: bool = False


@dataclass
class BinResult:
    """Result of a bin insertion, restoration or purge."""

    success: bool
    message: str
    entry_ids: list[int] = field(default_factory=list)


@dataclass
class SweepResult:
    """Result of a bin expiry sweep."""

    success: bool
    message: str
    purged_ids: list[int] = field(default_factory=list)
    reclaimed: dict[int, int] = field(default_factory=dict)
    policies_deleted: int = 0


@dataclass
class ReconcileResult:
    """Result of re-dispatching pending quota adjustments."""

    success: bool
    message: str
    applied: int = 0
    pending: int = 0
