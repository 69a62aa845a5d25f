"""Tests for QuotaLedger: recording, dispatch and reconciliation."""

from __future__ import annotations

from typing import TYPE_CHECKING

from drivetree.store.protocol import QuotaService

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from drivetree.store.quota import QuotaLedger

    from conftest import FakeQuotaService


class TestRecord:
    async def test_record_returns_id(self, ledger: QuotaLedger, async_session: AsyncSession):
        adjustment_id = await ledger.record(async_session, 1, 100, "upload")
        assert adjustment_id is not None
        pending = await ledger.pending(async_session)
        assert [(a.user_id, a.delta, a.reason) for a in pending] == [(1, 100, "upload")]

    async def test_zero_delta_skipped(self, ledger: QuotaLedger, async_session: AsyncSession):
        assert await ledger.record(async_session, 1, 0, "noop") is None
        assert await ledger.pending(async_session) == []

    async def test_pending_increase_counts_only_unapplied_increases(
        self, ledger: QuotaLedger, quota: FakeQuotaService, async_session: AsyncSession
    ):
        applied = await ledger.record(async_session, 1, 40, "upload")
        await ledger.dispatch(async_session, quota, [applied])  # type: ignore[list-item]
        await ledger.record(async_session, 1, 25, "upload")
        await ledger.record(async_session, 1, -10, "bin expiry")
        await ledger.record(async_session, 2, 99, "upload")
        assert await ledger.pending_increase(async_session, 1) == 25


class TestDispatch:
    async def test_applies_and_stamps(
        self, ledger: QuotaLedger, quota: FakeQuotaService, async_session: AsyncSession
    ):
        await ledger.record(async_session, 1, 100, "upload")
        await ledger.record(async_session, 1, -30, "bin expiry")
        failed = await ledger.dispatch(async_session, quota)
        assert failed == []
        assert quota.used == {1: 70}
        assert quota.calls == [("increase", 1, 100), ("decrease", 1, 30)]
        assert await ledger.pending(async_session) == []

    async def test_only_given_ids(
        self, ledger: QuotaLedger, quota: FakeQuotaService, async_session: AsyncSession
    ):
        first = await ledger.record(async_session, 1, 5, "upload")
        await ledger.record(async_session, 2, 7, "upload")
        await ledger.dispatch(async_session, quota, [first])  # type: ignore[list-item]
        assert quota.used == {1: 5}
        assert len(await ledger.pending(async_session)) == 1

    async def test_failure_left_pending_then_reconciled(
        self, ledger: QuotaLedger, quota: FakeQuotaService, async_session: AsyncSession
    ):
        await ledger.record(async_session, 1, -50, "ownership to 2")
        await ledger.record(async_session, 2, 50, "ownership from 1")
        quota.failing.add(2)

        failed = await ledger.dispatch(async_session, quota)
        assert [a.user_id for a in failed] == [2]
        assert quota.used == {1: -50}

        quota.failing.clear()
        assert await ledger.dispatch(async_session, quota) == []
        assert quota.used == {1: -50, 2: 50}
        assert sum(quota.used.values()) == 0

    def test_fake_satisfies_protocol(self, quota: FakeQuotaService):
        assert isinstance(quota, QuotaService)
