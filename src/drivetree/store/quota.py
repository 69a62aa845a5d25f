"""QuotaLedger: quota deltas recorded with the entry transaction, applied after commit.

Quota balances live in an external service that cannot join our
transactions. Each mutation records the deltas it owes in the same
transaction as the entry rows; once committed, ``dispatch`` applies
them and stamps ``applied_at``. A delta whose call fails stays pending
and is retried by the next ``dispatch`` without ids (reconciliation).
A rolled-back mutation never records anything, so it never reaches
the quota service.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import func
from sqlmodel import select

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from drivetree.models.quota import QuotaAdjustmentBase

    from .protocol import QuotaService

logger = logging.getLogger(__name__)


class QuotaLedger:
    """Records and dispatches quota adjustments."""

    def __init__(self, adjustment_model: type[QuotaAdjustmentBase] | None = None) -> None:
        from drivetree.models import QuotaAdjustment

        self._model: type[QuotaAdjustmentBase] = adjustment_model or QuotaAdjustment  # type: ignore[assignment]

    async def record(
        self,
        session: AsyncSession,
        user_id: int,
        delta: int,
        reason: str,
    ) -> int | None:
        """Record a pending delta for *user_id*. Zero deltas are skipped.

        Returns the adjustment id, or ``None`` when nothing was recorded.
        """
        if delta == 0:
            return None
        adjustment = self._model(user_id=user_id, delta=delta, reason=reason)
        session.add(adjustment)
        await session.flush()
        return adjustment.id

    async def pending(
        self,
        session: AsyncSession,
        ids: Sequence[int] | None = None,
    ) -> list[QuotaAdjustmentBase]:
        """Unapplied adjustments, oldest first, optionally limited to *ids*."""
        model = self._model
        query = select(model).where(model.applied_at.is_(None))  # type: ignore[union-attr]
        if ids is not None:
            query = query.where(model.id.in_(list(ids)))  # type: ignore[union-attr]
        result = await session.execute(query.order_by(model.id))
        return list(result.scalars().all())

    async def pending_increase(self, session: AsyncSession, user_id: int) -> int:
        """Bytes recorded for *user_id* but not yet charged by the quota service."""
        model = self._model
        result = await session.execute(
            select(func.coalesce(func.sum(model.delta), 0)).where(
                model.user_id == user_id,
                model.delta > 0,
                model.applied_at.is_(None),  # type: ignore[union-attr]
            )
        )
        return int(result.scalar_one())

    async def dispatch(
        self,
        session: AsyncSession,
        quota: QuotaService,
        ids: Sequence[int] | None = None,
    ) -> list[QuotaAdjustmentBase]:
        """Apply pending adjustments through *quota*. Flushes but does not commit.

        Returns the adjustments that failed and remain pending.
        """
        failed: list[QuotaAdjustmentBase] = []
        for adjustment in await self.pending(session, ids):
            try:
                if adjustment.delta > 0:
                    await quota.increase_used_space(adjustment.user_id, adjustment.delta)
                else:
                    await quota.decrease_used_space(adjustment.user_id, -adjustment.delta)
            except Exception:
                logger.warning(
                    "Quota adjustment %s (%+d bytes for user %s) failed; left pending",
                    adjustment.id,
                    adjustment.delta,
                    adjustment.user_id,
                    exc_info=True,
                )
                failed.append(adjustment)
                continue
            adjustment.applied_at = datetime.now(UTC)
            logger.debug(
                "Applied quota adjustment %s: %+d bytes for user %s (%s)",
                adjustment.id,
                adjustment.delta,
                adjustment.user_id,
                adjustment.reason,
            )
        await session.flush()
        return failed
