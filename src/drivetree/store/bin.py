"""BinService: soft delete, restore markers, expiry sweep and purge."""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import delete, exists
from sqlmodel import select

from drivetree.config import DEFAULT_BIN_RETENTION

from .types import EntryInfo, SweepResult

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import timedelta

    from sqlalchemy.ext.asyncio import AsyncSession

    from drivetree.models.bin import BinEntryBase

    from .entries import EntryService
    from .sharing import SharingService

logger = logging.getLogger(__name__)


class BinService:
    """Bin management: insert, restore, sweep and purge.

    A bin marker hides an entry from normal listings but leaves the
    entry row untouched until the marker expires. The sweep is the only
    place orphaned share policies are collected.
    """

    def __init__(
        self,
        entries: EntryService,
        sharing: SharingService,
        bin_model: type[BinEntryBase] | None = None,
        retention: timedelta = DEFAULT_BIN_RETENTION,
    ) -> None:
        from drivetree.models import BinEntry

        self._entries = entries
        self._sharing = sharing
        self._bin_model: type[BinEntryBase] = bin_model or BinEntry  # type: ignore[assignment]
        self._retention = retention

    @property
    def retention(self) -> timedelta:
        return self._retention

    async def add_entry_to_bin(
        self,
        session: AsyncSession,
        entry_id: int,
        parent_id: int | None,
        share_id: int | None,
        *,
        put_at: datetime | None = None,
    ) -> bool:
        """Mark *entry_id* as binned, remembering where it came from.

        Returns False if the entry already is in the bin.
        """
        if await session.get(self._bin_model, entry_id) is not None:
            return False
        session.add(
            self._bin_model(
                id=entry_id,
                prev_parent_id=parent_id,
                prev_share_id=share_id,
                put_at=put_at or datetime.now(UTC),
            )
        )
        await session.flush()
        return True

    async def get_marker(self, session: AsyncSession, entry_id: int) -> BinEntryBase | None:
        return await session.get(self._bin_model, entry_id)

    async def is_in_bin(self, session: AsyncSession, entry_id: int) -> bool:
        return await self.get_marker(session, entry_id) is not None

    async def remove_entries_from_bin(self, session: AsyncSession, entry_ids: Sequence[int]) -> int:
        """Drop the bin markers of *entry_ids*. The entry rows are not touched."""
        if not entry_ids:
            return 0
        marker = self._bin_model
        result = await session.execute(
            delete(marker).where(marker.id.in_(list(entry_ids)))  # type: ignore[union-attr]
        )
        await session.flush()
        return result.rowcount or 0  # type: ignore[attr-defined]

    async def list_bin(self, session: AsyncSession, owner_id: int) -> list[EntryInfo]:
        """List binned entries owned by *owner_id*, most recent first."""
        model = self._entries.entry_model
        marker = self._bin_model
        result = await session.execute(
            select(model, marker)
            .join(marker, marker.id == model.id)  # type: ignore[arg-type]
            .where(model.owner_id == owner_id)
            .order_by(marker.put_at.desc())  # type: ignore[attr-defined]
        )
        return [self._entries.to_info(entry, m, True) for entry, m in result.all()]

    async def expired_marker_ids(
        self,
        session: AsyncSession,
        *,
        now: datetime | None = None,
    ) -> list[int]:
        """Ids of binned entries the sweep at *now* can purge, oldest first.

        A marker counts once it is older than the retention. An expired
        folder still waits while anything beneath it carries a marker
        that has not expired, so that entry keeps a parent to be
        restored into.
        """
        cutoff = (now or datetime.now(UTC)) - self._retention
        model = self._entries.entry_model
        marker = self._bin_model
        result = await session.execute(
            select(marker.id)
            .where(marker.put_at < cutoff)  # type: ignore[arg-type]
            .order_by(marker.put_at)
        )
        expired = list(result.scalars().all())
        if not expired:
            return []

        # (root, descendant) pairs below every expired marker
        pairs = (
            select(model.id.label("root_id"), model.id.label("entry_id"))
            .where(model.id.in_(expired))  # type: ignore[union-attr]
            .cte("expired_pairs", recursive=True)
        )
        pairs = pairs.union(
            select(pairs.c.root_id, model.id)
            .select_from(model)
            .join(pairs, model.parent_id == pairs.c.entry_id)  # type: ignore[arg-type]
        )
        result = await session.execute(
            select(pairs.c.root_id)
            .distinct()
            .join(marker, marker.id == pairs.c.entry_id)  # type: ignore[arg-type]
            .where(marker.put_at >= cutoff)  # type: ignore[arg-type]
        )
        waiting = set(result.scalars().all())
        if waiting:
            logger.debug("Bin sweep defers %d folders with recent markers", len(waiting))
        return [entry_id for entry_id in expired if entry_id not in waiting]

    async def delete_expired_entries(
        self,
        session: AsyncSession,
        *,
        now: datetime | None = None,
    ) -> SweepResult:
        """Purge every entry whose bin marker is older than the retention.

        Descendants of an expired folder go with it. A descendant with a
        marker of its own keeps the folder in the bin until that marker
        expires too (see ``expired_marker_ids``).
        Returns the purged ids and the bytes reclaimed per owner; the
        caller turns ``reclaimed`` into quota decreases.
        """
        now = now or datetime.now(UTC)
        cutoff = now - self._retention
        model = self._entries.entry_model
        marker = self._bin_model

        expired_markers = await self.expired_marker_ids(session, now=now)
        if not expired_markers:
            policies_deleted = await self._sharing.delete_orphaned_policies(session)
            return SweepResult(
                success=True,
                message="No expired entries in bin",
                policies_deleted=policies_deleted,
            )

        has_marker = exists().where(marker.id == model.id)  # type: ignore[arg-type]
        tree = (
            select(model.id)
            .where(model.id.in_(expired_markers))  # type: ignore[union-attr]
            .cte("expired_tree", recursive=True)
        )
        tree = tree.union(
            select(model.id)
            .join(tree, model.parent_id == tree.c.id)  # type: ignore[arg-type]
            .where(~has_marker)
        )
        result = await session.execute(
            select(model.id, model.owner_id, model.size).where(
                model.id.in_(select(tree.c.id))  # type: ignore[union-attr]
            )
        )
        rows = result.all()

        reclaimed: dict[int, int] = defaultdict(int)
        for _, owner_id, size in rows:
            reclaimed[owner_id] += size
        purged_ids = sorted(row[0] for row in rows)

        await session.execute(
            delete(marker).where(marker.id.in_(expired_markers))  # type: ignore[union-attr]
        )
        if purged_ids:
            await session.execute(
                delete(model).where(model.id.in_(purged_ids))  # type: ignore[union-attr]
            )
        await session.flush()

        policies_deleted = await self._sharing.delete_orphaned_policies(session)
        logger.info(
            "Bin sweep purged %d entries for %d owners (cutoff %s)",
            len(purged_ids),
            len(reclaimed),
            cutoff.isoformat(),
        )
        return SweepResult(
            success=True,
            message=f"Purged {len(purged_ids)} entries from bin",
            purged_ids=purged_ids,
            reclaimed=dict(reclaimed),
            policies_deleted=policies_deleted,
        )

    async def fully_delete_entries(self, session: AsyncSession, entry_ids: Sequence[int]) -> int:
        """Delete the markers and rows of exactly *entry_ids*.

        No descendants are removed and no quota is adjusted.
        """
        if not entry_ids:
            return 0
        ids = list(entry_ids)
        model = self._entries.entry_model
        marker = self._bin_model
        await session.execute(
            delete(marker).where(marker.id.in_(ids))  # type: ignore[union-attr]
        )
        result = await session.execute(
            delete(model).where(model.id.in_(ids))  # type: ignore[union-attr]
        )
        await session.flush()
        return result.rowcount or 0  # type: ignore[attr-defined]
