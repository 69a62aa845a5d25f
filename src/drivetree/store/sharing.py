"""SharingService: share policy CRUD, propagation and garbage collection.

Stateless service that receives its models at construction and a
session at call time, following the EntryService pattern.

Share ids are stored eagerly on every entry of a shared subtree, so
access checks never walk ancestors. The price is paid here: sharing a
subtree rewrites the share id of every descendant that still inherits
the prior share, stopping at nested subtrees shared on their own.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import delete, exists, update
from sqlmodel import select

from .exceptions import EntryNotFoundError
from .permissions import AccessLevel
from .types import SharePolicies

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from drivetree.models.entries import EntryBase
    from drivetree.models.shares import ShareMemberBase, SharePolicyBase

logger = logging.getLogger(__name__)


class SharingService:
    """Manages share policies and their propagation through the entry tree.

    Constructor receives the concrete models so callers can use custom
    SQLModel subclasses with different table names.
    """

    def __init__(
        self,
        entry_model: type[EntryBase] | None = None,
        policy_model: type[SharePolicyBase] | None = None,
        member_model: type[ShareMemberBase] | None = None,
    ) -> None:
        from drivetree.models import Entry, ShareMember, SharePolicy

        self._entry_model: type[EntryBase] = entry_model or Entry  # type: ignore[assignment]
        self._policy_model: type[SharePolicyBase] = policy_model or SharePolicy  # type: ignore[assignment]
        self._member_model: type[ShareMemberBase] = member_model or ShareMember  # type: ignore[assignment]

    # ------------------------------------------------------------------
    # Members
    # ------------------------------------------------------------------

    async def _replace_members(
        self,
        session: AsyncSession,
        share_id: int,
        policies: SharePolicies,
    ) -> None:
        member = self._member_model
        result = await session.execute(
            select(member).where(member.share_id == share_id)  # type: ignore[arg-type]
        )
        current = {m.user_id: m for m in result.scalars().all()}
        editors = set(policies.can_edit_users)
        readers = set(policies.can_read_users)

        for user_id, existing in current.items():
            if user_id not in readers:
                await session.delete(existing)
            else:
                existing.can_edit = user_id in editors
        for user_id in policies.can_read_users:
            if user_id not in current:
                session.add(
                    member(share_id=share_id, user_id=user_id, can_edit=user_id in editors)
                )
        await session.flush()

    async def _create_policy(self, session: AsyncSession, policies: SharePolicies) -> int:
        policy = self._policy_model()
        session.add(policy)
        await session.flush()
        assert policy.id is not None
        await self._replace_members(session, policy.id, policies)
        return policy.id

    # ------------------------------------------------------------------
    # Sharing
    # ------------------------------------------------------------------

    async def share_entries(
        self,
        session: AsyncSession,
        entry_id: int,
        policies: SharePolicies,
    ) -> int:
        """Share *entry_id* and its subtree. Returns the policy id now in effect.

        If the entry already carries a share of its own (one its parent
        does not carry), that policy is updated in place, which changes
        access for every entry referencing it. Otherwise a new policy is
        created and propagated to the entry and to every descendant that
        still carries the entry's prior share id.

        Flushes but does not commit.
        """
        policies = policies.normalized()
        model = self._entry_model

        entry = await session.get(model, entry_id)
        if entry is None:
            raise EntryNotFoundError(f"Entry not found: {entry_id}")
        parent_share_id: int | None = None
        if entry.parent_id is not None:
            parent = await session.get(model, entry.parent_id)
            parent_share_id = parent.share_id if parent is not None else None

        prior_share_id = entry.share_id
        if prior_share_id is not None and prior_share_id != parent_share_id:
            await self._replace_members(session, prior_share_id, policies)
            policy = await session.get(self._policy_model, prior_share_id)
            if policy is not None:
                policy.updated_at = datetime.now(UTC)
                await session.flush()
            logger.info("Updated share policy %d in place from entry %d", prior_share_id, entry_id)
            return prior_share_id

        share_id = await self._create_policy(session, policies)
        ids = await self._propagation_ids(session, entry_id, prior_share_id)
        await session.execute(
            update(model)
            .where(model.id.in_(ids))  # type: ignore[union-attr]
            .values(share_id=share_id)
        )
        await session.flush()
        logger.info(
            "Created share policy %d on entry %d (%d entries)", share_id, entry_id, len(ids)
        )
        return share_id

    async def _propagation_ids(
        self,
        session: AsyncSession,
        entry_id: int,
        prior_share_id: int | None,
    ) -> list[int]:
        """*entry_id* plus descendants reachable through rows still on *prior_share_id*."""
        model = self._entry_model
        if prior_share_id is None:
            inherits = model.share_id.is_(None)  # type: ignore[union-attr]
        else:
            inherits = model.share_id == prior_share_id

        tree = (
            select(model.id)
            .where(model.id == entry_id)  # type: ignore[arg-type]
            .cte("share_tree", recursive=True)
        )
        tree = tree.union(
            select(model.id)
            .join(tree, model.parent_id == tree.c.id)  # type: ignore[arg-type]
            .where(inherits)
        )
        result = await session.execute(select(tree.c.id))
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def get_share_policy(
        self, session: AsyncSession, entry_id: int
    ) -> SharePolicies | None:
        """Return the policy referenced by *entry_id*, or ``None`` if unshared."""
        entry = await session.get(self._entry_model, entry_id)
        if entry is None or entry.share_id is None:
            return None
        return await self.get_policy(session, entry.share_id)

    async def get_policy(self, session: AsyncSession, share_id: int) -> SharePolicies | None:
        """Return the readers and editors of policy *share_id*."""
        policy = await session.get(self._policy_model, share_id)
        if policy is None:
            return None
        member = self._member_model
        result = await session.execute(
            select(member.user_id, member.can_edit)
            .where(member.share_id == share_id)  # type: ignore[arg-type]
            .order_by(member.user_id)
        )
        rows = result.all()
        return SharePolicies(
            can_read_users=[user_id for user_id, _ in rows],
            can_edit_users=[user_id for user_id, can_edit in rows if can_edit],
        )

    async def get_share_policy_for_user(
        self,
        session: AsyncSession,
        entry_id: int,
        user_id: int,
    ) -> AccessLevel:
        """Resolve *user_id*'s access through the share policy of *entry_id* alone."""
        model = self._entry_model
        member = self._member_model
        result = await session.execute(
            select(member.can_edit)
            .join(model, model.share_id == member.share_id)  # type: ignore[arg-type]
            .where(
                model.id == entry_id,  # type: ignore[arg-type]
                member.user_id == user_id,
            )
        )
        can_edit = result.scalar_one_or_none()
        if can_edit is None:
            return AccessLevel.NONE
        return AccessLevel.EDIT if can_edit else AccessLevel.READ

    # ------------------------------------------------------------------
    # Garbage collection
    # ------------------------------------------------------------------

    async def delete_orphaned_policies(self, session: AsyncSession) -> int:
        """Delete every policy no entry references. Returns the number deleted."""
        model = self._entry_model
        policy = self._policy_model
        member = self._member_model

        referenced = exists().where(model.share_id == policy.id)  # type: ignore[arg-type]
        result = await session.execute(select(policy.id).where(~referenced))
        orphaned = list(result.scalars().all())
        if not orphaned:
            return 0

        await session.execute(
            delete(member).where(member.share_id.in_(orphaned))  # type: ignore[union-attr]
        )
        await session.execute(
            delete(policy).where(policy.id.in_(orphaned))  # type: ignore[union-attr]
        )
        await session.flush()
        logger.info("Deleted %d orphaned share policies", len(orphaned))
        return len(orphaned)
