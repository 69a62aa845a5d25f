"""Custom exception hierarchy for the drivetree store layer."""


class DriveError(Exception):
    """Base exception for all drivetree errors."""


class EntryNotFoundError(DriveError):
    """Raised when an entry id does not exist."""


class AccessDeniedError(DriveError):
    """Raised when the requester lacks the permission an operation needs."""


class NameCollisionError(DriveError):
    """Raised when a sibling of the same type already carries a name."""


class InvalidNameError(DriveError):
    """Raised when a file or folder name cannot be stored."""


class QuotaExceededError(DriveError):
    """Raised when a request needs more space than the owner has left."""

    def __init__(self, required: int, available: int) -> None:
        super().__init__(
            f"Quota exceeded: {required} bytes requested, {available} bytes available"
        )
        self.required = required
        self.available = available


class IngestionOrderError(DriveError):
    """Raised when a batch entry refers to a folder path the batch never creates."""


class TransactionFailureError(DriveError):
    """Raised when a storage error aborts a multi-statement unit."""


class QuotaConsistencyError(DriveError):
    """Raised when quota adjustments could not be applied after commit."""


class InvalidMoveError(DriveError):
    """Raised when a move would place a folder inside its own subtree."""


class InvalidEntryError(DriveError):
    """Raised when a batch entry carries an impossible value, such as a negative size."""
