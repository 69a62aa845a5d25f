"""Name validation and ingestion path helpers."""

from __future__ import annotations

from drivetree.models.entries import NAME_MAX_LENGTH

from .exceptions import InvalidNameError


def validate_name(name: str) -> tuple[bool, str]:
    """Validate an entry name for storage.

    Returns:
        (is_valid, error_message) - error_message is empty if valid
    """
    if not name or not name.strip():
        return False, "Name is empty"

    if "\x00" in name:
        return False, "Name contains null bytes"

    # Reject ASCII control characters (0x01-0x1f)
    for ch in name:
        code = ord(ch)
        if 0x01 <= code <= 0x1F:
            return False, f"Name contains control character: 0x{code:02x}"

    if "/" in name:
        return False, "Name contains a path separator"

    if name in (".", ".."):
        return False, f"Reserved name: {name}"

    if len(name) > NAME_MAX_LENGTH:
        return False, f"Name too long (max {NAME_MAX_LENGTH} characters)"

    return True, ""


def require_valid_name(name: str) -> str:
    """Return *name* unchanged or raise ``InvalidNameError``."""
    valid, error = validate_name(name)
    if not valid:
        raise InvalidNameError(f"{error}: {name!r}")
    return name


def join_entry_path(path: str, name: str) -> str:
    """Build the ingestion key for *name* inside the folder at *path*.

    >>> join_entry_path("", "docs")
    'docs'
    >>> join_entry_path("docs", "a.txt")
    'docs/a.txt'
    """
    path = path.strip("/")
    return f"{path}/{name}" if path else name


def path_depth(path: str) -> int:
    """Number of folder segments in a relative ingestion path (``""`` is 0)."""
    path = path.strip("/")
    return len(path.split("/")) if path else 0
