"""Collaborator protocols: runtime-checkable interfaces.

The store never owns quota balances or object storage. It talks to
both through the narrow async protocols below, so any service (an HTTP
client, a table in another database, an in-memory fake) can be plugged
into ``DriveAsync``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .types import UploadCredential


@runtime_checkable
class QuotaService(Protocol):
    """Per-user storage accounting.

    Calls are not assumed to be idempotent. ``DriveAsync`` routes them
    through the quota ledger so each recorded delta is applied once.
    """

    async def increase_used_space(self, user_id: int, size: int) -> None: ...

    async def decrease_used_space(self, user_id: int, size: int) -> None: ...

    async def get_free_space(self, user_id: int) -> int: ...


@runtime_checkable
class UploadCredentialIssuer(Protocol):
    """Issues time-limited credentials for uploading an object's content."""

    async def issue_upload_credential(
        self,
        owner_id: int,
        object_id: int,
        size: int,
    ) -> UploadCredential | None:
        """Return a credential, or ``None`` when the issuer failed."""
        ...
