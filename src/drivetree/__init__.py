"""drivetree: a multi-tenant file and folder tree.

Shared folders, batch uploads, a recoverable bin and quota accounting
on top of SQLModel.
"""

__version__ = "0.1.0"

from drivetree._drive_async import DriveAsync
from drivetree.config import DriveConfig
from drivetree.store.exceptions import DriveError
from drivetree.store.permissions import AccessLevel
from drivetree.store.protocol import QuotaService, UploadCredentialIssuer
from drivetree.store.types import (
    BinResult,
    CreateFolderResult,
    EntryInfo,
    IngestEntry,
    MoveItem,
    MoveResult,
    OwnershipResult,
    ReconcileResult,
    RenameResult,
    SharePolicies,
    ShareResult,
    SweepResult,
    UploadCredential,
    UploadedEntry,
    UploadResult,
)

__all__ = [
    "AccessLevel",
    "BinResult",
    "CreateFolderResult",
    "DriveAsync",
    "DriveConfig",
    "DriveError",
    "EntryInfo",
    "IngestEntry",
    "MoveItem",
    "MoveResult",
    "OwnershipResult",
    "QuotaService",
    "ReconcileResult",
    "RenameResult",
    "SharePolicies",
    "ShareResult",
    "SweepResult",
    "UploadCredential",
    "UploadCredentialIssuer",
    "UploadResult",
    "UploadedEntry",
    "__version__",
]
