"""Store layer: entry tree, sharing, access, ingestion, bin and quota ledger."""

from drivetree.store.access import AccessResolver
from drivetree.store.bin import BinService
from drivetree.store.credentials import S3CredentialIssuer
from drivetree.store.entries import EntryService
from drivetree.store.exceptions import (
    AccessDeniedError,
    DriveError,
    EntryNotFoundError,
    IngestionOrderError,
    InvalidEntryError,
    InvalidMoveError,
    InvalidNameError,
    NameCollisionError,
    QuotaConsistencyError,
    QuotaExceededError,
    TransactionFailureError,
)
from drivetree.store.ingestion import IngestionService, PathMap
from drivetree.store.permissions import AccessLevel
from drivetree.store.protocol import QuotaService, UploadCredentialIssuer
from drivetree.store.quota import QuotaLedger
from drivetree.store.sharing import SharingService
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
    "AccessDeniedError",
    "AccessLevel",
    "AccessResolver",
    "BinResult",
    "BinService",
    "CreateFolderResult",
    "DriveError",
    "EntryInfo",
    "EntryNotFoundError",
    "EntryService",
    "IngestEntry",
    "IngestionOrderError",
    "IngestionService",
    "InvalidEntryError",
    "InvalidMoveError",
    "InvalidNameError",
    "MoveItem",
    "MoveResult",
    "NameCollisionError",
    "OwnershipResult",
    "PathMap",
    "QuotaConsistencyError",
    "QuotaExceededError",
    "QuotaLedger",
    "QuotaService",
    "ReconcileResult",
    "RenameResult",
    "S3CredentialIssuer",
    "SharePolicies",
    "ShareResult",
    "SharingService",
    "SweepResult",
    "TransactionFailureError",
    "UploadCredential",
    "UploadCredentialIssuer",
    "UploadResult",
    "UploadedEntry",
]
