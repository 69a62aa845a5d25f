"""Shared fixtures for drivetree tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from drivetree import DriveAsync
from drivetree.store.access import AccessResolver
from drivetree.store.bin import BinService
from drivetree.store.entries import EntryService
from drivetree.store.ingestion import IngestionService
from drivetree.store.quota import QuotaLedger
from drivetree.store.sharing import SharingService
from drivetree.store.types import UploadCredential

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from sqlalchemy.ext.asyncio import AsyncEngine


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------


class FakeQuotaService:
    """In-memory quota service. Users in ``failing`` make every call raise."""

    def __init__(self, limit: int = 1_000_000) -> None:
        self.limit = limit
        self.used: dict[int, int] = {}
        self.failing: set[int] = set()
        self.calls: list[tuple[str, int, int]] = []

    def _check(self, user_id: int) -> None:
        if user_id in self.failing:
            raise RuntimeError(f"quota service unavailable for user {user_id}")

    async def increase_used_space(self, user_id: int, size: int) -> None:
        self._check(user_id)
        self.calls.append(("increase", user_id, size))
        self.used[user_id] = self.used.get(user_id, 0) + size

    async def decrease_used_space(self, user_id: int, size: int) -> None:
        self._check(user_id)
        self.calls.append(("decrease", user_id, size))
        self.used[user_id] = self.used.get(user_id, 0) - size

    async def get_free_space(self, user_id: int) -> int:
        return self.limit - self.used.get(user_id, 0)


class FakeCredentialIssuer:
    """Issues fake URLs. Object ids in ``failing`` get ``None``."""

    def __init__(self) -> None:
        self.failing: set[int] = set()
        self.issued: list[tuple[int, int, int]] = []

    async def issue_upload_credential(
        self, owner_id: int, object_id: int, size: int
    ) -> UploadCredential | None:
        if object_id in self.failing:
            return None
        self.issued.append((owner_id, object_id, size))
        key = f"{owner_id}/{object_id}"
        return UploadCredential(url="https://uploads.test/bucket", fields={"key": key})


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
async def async_engine() -> AsyncIterator[AsyncEngine]:
    """Async in-memory SQLite engine with all tables created."""
    eng = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
async def async_session(async_engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    """Async SQLModel session, rolled back after each test."""
    factory = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


@pytest.fixture
def entries() -> EntryService:
    return EntryService()


@pytest.fixture
def sharing() -> SharingService:
    return SharingService()


@pytest.fixture
def access(entries: EntryService, sharing: SharingService) -> AccessResolver:
    return AccessResolver(entries.entry_model, sharing)


@pytest.fixture
def ingestion(entries: EntryService, access: AccessResolver) -> IngestionService:
    return IngestionService(entries, access)


@pytest.fixture
def bin_service(entries: EntryService, sharing: SharingService) -> BinService:
    return BinService(entries, sharing)


@pytest.fixture
def ledger() -> QuotaLedger:
    return QuotaLedger()


@pytest.fixture
def quota() -> FakeQuotaService:
    return FakeQuotaService()


@pytest.fixture
def issuer() -> FakeCredentialIssuer:
    return FakeCredentialIssuer()


@pytest.fixture
async def drive(
    async_engine: AsyncEngine,
    quota: FakeQuotaService,
    issuer: FakeCredentialIssuer,
) -> AsyncIterator[DriveAsync]:
    """DriveAsync over the in-memory engine with fake collaborators."""
    d = DriveAsync(engine=async_engine, quota=quota, credentials=issuer)
    yield d
    await d.close()
