"""AccessResolver: effective permission of a user on an entry."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .permissions import AccessLevel

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from drivetree.models.entries import EntryBase

    from .sharing import SharingService


class AccessResolver:
    """Combines ownership with the entry's own share policy.

    Share ids are propagated eagerly at share time, so resolution reads
    one entry row and at most one member row; ancestors are never walked.
    """

    def __init__(self, entry_model: type[EntryBase], sharing: SharingService) -> None:
        self._entry_model = entry_model
        self._sharing = sharing

    async def has_access(
        self,
        session: AsyncSession,
        user_id: int,
        entry_id: int,
    ) -> AccessLevel:
        """Resolve *user_id*'s access on *entry_id*.

        - Missing entry: ``NONE``.
        - Owner: ``EDIT``, whatever the share policy says.
        - Otherwise the entry's share policy decides; no policy means ``NONE``.
        """
        entry = await session.get(self._entry_model, entry_id)
        if entry is None:
            return AccessLevel.NONE
        if entry.owner_id == user_id:
            return AccessLevel.EDIT
        if entry.share_id is None:
            return AccessLevel.NONE
        return await self._sharing.get_share_policy_for_user(session, entry_id, user_id)

    async def can_read(self, session: AsyncSession, user_id: int, entry_id: int) -> bool:
        return (await self.has_access(session, user_id, entry_id)).can_read

    async def can_edit(self, session: AsyncSession, user_id: int, entry_id: int) -> bool:
        return (await self.has_access(session, user_id, entry_id)).can_edit
