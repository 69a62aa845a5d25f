"""DriveAsync: primary async class and reference access boundary."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import SQLModel

from drivetree.config import DriveConfig
from drivetree.models import BinEntry, Entry, QuotaAdjustment, ShareMember, SharePolicy
from drivetree.store.access import AccessResolver
from drivetree.store.bin import BinService
from drivetree.store.entries import EntryService
from drivetree.store.exceptions import (
    AccessDeniedError,
    DriveError,
    EntryNotFoundError,
    NameCollisionError,
    QuotaConsistencyError,
    TransactionFailureError,
)
from drivetree.store.ingestion import IngestionService, total_size
from drivetree.store.permissions import AccessLevel
from drivetree.store.quota import QuotaLedger
from drivetree.store.sharing import SharingService
from drivetree.store.types import (
    BinResult,
    CreateFolderResult,
    MoveResult,
    OwnershipResult,
    ReconcileResult,
    RenameResult,
    ShareResult,
    SweepResult,
    UploadedEntry,
    UploadResult,
)

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Callable, Sequence
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncEngine

    from drivetree.models.bin import BinEntryBase
    from drivetree.models.entries import EntryBase
    from drivetree.models.quota import QuotaAdjustmentBase
    from drivetree.models.shares import ShareMemberBase, SharePolicyBase
    from drivetree.store.protocol import QuotaService, UploadCredentialIssuer
    from drivetree.store.types import (
        EntryInfo,
        IngestEntry,
        MoveItem,
        SharePolicies,
        UploadCredential,
    )

logger = logging.getLogger(__name__)

_NOT_FOUND = "Entry not found"


class DriveAsync:
    """Async facade wiring the entry store, sharing, ingestion, bin and quota ledger.

    Every operation runs in its own session: committed on success,
    rolled back on any error. Access is resolved before every read and
    mutation. A missing entry and a denied one look the same to the
    caller: ``None`` for reads, ``"Entry not found"`` for mutations.

    Usage::

        engine = create_async_engine("postgresql+asyncpg://...")
        drive = DriveAsync(engine=engine, quota=quota_client)
        await drive.create_tables()

        root = await drive.create_drive(owner_id=1)
        result = await drive.upload_files_and_folders(1, root.entry_id, entries)
    """

    def __init__(
        self,
        *,
        quota: QuotaService,
        engine: AsyncEngine | None = None,
        session_factory: Callable[..., AsyncSession] | None = None,
        credentials: UploadCredentialIssuer | None = None,
        config: DriveConfig | None = None,
        entry_model: type[EntryBase] | None = None,
        policy_model: type[SharePolicyBase] | None = None,
        member_model: type[ShareMemberBase] | None = None,
        bin_model: type[BinEntryBase] | None = None,
        adjustment_model: type[QuotaAdjustmentBase] | None = None,
    ) -> None:
        if (engine is None) == (session_factory is None):
            raise ValueError("Provide exactly one of engine or session_factory")

        self._config = config or DriveConfig()
        self._quota = quota
        self._credentials = credentials

        self._engine = engine
        if engine is not None:
            if self._config.isolation_level is not None:
                engine = engine.execution_options(isolation_level=self._config.isolation_level)
            session_factory = async_sessionmaker(
                engine, class_=AsyncSession, expire_on_commit=False
            )
        assert session_factory is not None
        self._session_factory = session_factory
        self._tables_ready = not self._config.create_tables

        em: type[EntryBase] = entry_model or Entry  # type: ignore[assignment]
        pm: type[SharePolicyBase] = policy_model or SharePolicy  # type: ignore[assignment]
        mm: type[ShareMemberBase] = member_model or ShareMember  # type: ignore[assignment]
        bm: type[BinEntryBase] = bin_model or BinEntry  # type: ignore[assignment]
        am: type[QuotaAdjustmentBase] = adjustment_model or QuotaAdjustment  # type: ignore[assignment]
        self._models: list[Any] = [em, pm, mm, bm, am]

        # Composed services
        self._store = EntryService(em, bm, mm)
        self._sharing = SharingService(em, pm, mm)
        self._access = AccessResolver(em, self._sharing)
        self._ingestion = IngestionService(self._store, self._access)
        self._bin = BinService(self._store, self._sharing, bm, self._config.bin_retention)
        self._ledger = QuotaLedger(am)

    @property
    def config(self) -> DriveConfig:
        return self._config

    # ------------------------------------------------------------------
    # Session management (per-operation only)
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession]:
        """Yield a session that commits on success and rolls back on error."""
        if not self._tables_ready:
            await self.create_tables()
        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def create_tables(self) -> None:
        """Create the drive tables if they do not exist."""
        tables = [model.__table__ for model in self._models]
        session = self._session_factory()
        try:
            conn = await session.connection()
            await conn.run_sync(
                lambda c: SQLModel.metadata.create_all(c, tables=tables, checkfirst=True)
            )
            await session.commit()
        finally:
            await session.close()
        self._tables_ready = True

    async def close(self) -> None:
        """Dispose the engine this instance was constructed with, if any."""
        if self._engine is not None:
            await self._engine.dispose()

    async def __aenter__(self) -> DriveAsync:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _require(
        self,
        session: AsyncSession,
        user_id: int,
        entry_id: int,
        *,
        edit: bool = True,
    ) -> AccessLevel:
        level = await self._access.has_access(session, user_id, entry_id)
        if not (level.can_edit if edit else level.can_read):
            raise AccessDeniedError(f"{_NOT_FOUND}: {entry_id}")
        return level

    @staticmethod
    def _failure_message(operation: str, error: Exception) -> str:
        """Log *error* and turn it into a caller-facing message."""
        if isinstance(error, (AccessDeniedError, EntryNotFoundError)):
            logger.warning("%s rejected: %s", operation, error)
            return _NOT_FOUND
        if isinstance(error, TransactionFailureError):
            return f"{operation} failed: {error}"
        if isinstance(error, DriveError):
            logger.warning("%s rejected: %s", operation, error)
            return str(error)
        logger.error("%s failed: %s", operation, error, exc_info=True)
        return f"{operation} failed"

    async def _apply_quota(self, adjustment_ids: Sequence[int | None]) -> None:
        """Dispatch freshly committed adjustments; raise if any stay pending."""
        ids = [i for i in adjustment_ids if i is not None]
        if not ids:
            return
        async with self._session() as session:
            failed = await self._ledger.dispatch(session, self._quota, ids)
        if failed:
            raise QuotaConsistencyError(
                f"{len(failed)} quota adjustment(s) left pending: "
                + ", ".join(str(a.id) for a in failed)
            )

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    async def has_access(self, user_id: int, entry_id: int) -> AccessLevel:
        async with self._session() as session:
            return await self._access.has_access(session, user_id, entry_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def entry(self, user_id: int, entry_id: int) -> EntryInfo | None:
        """Get one entry, or ``None`` if it is missing or hidden from *user_id*."""
        async with self._session() as session:
            level = await self._access.has_access(session, user_id, entry_id)
            if not level.can_read:
                return None
            return await self._store.get_entry(session, entry_id, user_id)

    async def entries(
        self,
        user_id: int,
        parent_id: int,
        *,
        is_directory: bool | None = None,
        include_binned: bool = False,
    ) -> list[EntryInfo] | None:
        """Children of *parent_id*; ``None`` when *user_id* cannot read it."""
        async with self._session() as session:
            level = await self._access.has_access(session, user_id, parent_id)
            if not level.can_read:
                return None
            children = await self._store.get_entries(
                session, parent_id, user_id, is_directory=is_directory
            )
        if include_binned:
            return children
        return [e for e in children if not e.in_bin]

    async def files(self, user_id: int, parent_id: int) -> list[EntryInfo] | None:
        return await self.entries(user_id, parent_id, is_directory=False)

    async def folders(
        self,
        user_id: int,
        parent_id: int,
        *,
        recursively: bool = False,
    ) -> list[EntryInfo] | None:
        """Folders under *parent_id*, direct children or the whole subtree."""
        if not recursively:
            return await self.entries(user_id, parent_id, is_directory=True)
        async with self._session() as session:
            level = await self._access.has_access(session, user_id, parent_id)
            if not level.can_read:
                return None
            folders = await self._store.get_folders_recursively(session, parent_id)
        return [f for f in folders if not f.in_bin]

    async def shared_folders(self, user_id: int) -> list[EntryInfo]:
        """Folders other users share with *user_id*."""
        async with self._session() as session:
            folders = await self._store.get_shared_folders(session, user_id)
        return [f for f in folders if not f.in_bin]

    async def sharing_owners(self, user_id: int) -> list[int]:
        async with self._session() as session:
            return await self._store.get_sharing_owners(session, user_id)

    async def shared_entries(self, user_id: int, owner_id: int) -> list[EntryInfo]:
        """Top-level entries *owner_id* shares with *user_id*."""
        async with self._session() as session:
            roots = await self._store.get_shared_roots(session, user_id, owner_id)
        return [r for r in roots if not r.in_bin]

    async def share_policy(self, user_id: int, entry_id: int) -> SharePolicies | None:
        async with self._session() as session:
            level = await self._access.has_access(session, user_id, entry_id)
            if not level.can_read:
                return None
            return await self._sharing.get_share_policy(session, entry_id)

    async def list_bin(self, user_id: int) -> list[EntryInfo]:
        async with self._session() as session:
            return await self._bin.list_bin(session, user_id)

    # ------------------------------------------------------------------
    # Tree mutations
    # ------------------------------------------------------------------

    async def create_drive(self, owner_id: int, name: str = "drive") -> CreateFolderResult:
        """Create a drive root. Called by the account layer, not by end users."""
        try:
            async with self._session() as session:
                entry_id = await self._store.create_drive(session, owner_id, name)
        except (DriveError, SQLAlchemyError) as e:
            return CreateFolderResult(
                success=False, message=self._failure_message("Create drive", e)
            )
        return CreateFolderResult(
            success=True, message=f"Created drive for user {owner_id}", entry_id=entry_id
        )

    async def create_folder(
        self, user_id: int, parent_id: int, name: str
    ) -> CreateFolderResult:
        try:
            async with self._session() as session:
                await self._require(session, user_id, parent_id)
                entry_id = await self._store.create_folder(session, parent_id, user_id, name)
        except (DriveError, SQLAlchemyError) as e:
            return CreateFolderResult(
                success=False, message=self._failure_message("Create folder", e)
            )
        return CreateFolderResult(
            success=True, message=f"Created folder: {name}", entry_id=entry_id
        )

    async def rename(self, user_id: int, entry_id: int, new_name: str) -> RenameResult:
        try:
            async with self._session() as session:
                await self._require(session, user_id, entry_id)
                await self._store.rename_entry(session, entry_id, new_name)
        except (DriveError, SQLAlchemyError) as e:
            return RenameResult(success=False, message=self._failure_message("Rename", e))
        return RenameResult(
            success=True, message=f"Renamed to {new_name}", entry_id=entry_id, name=new_name
        )

    async def move_entries(
        self,
        user_id: int,
        items: Sequence[MoveItem],
        new_parent_id: int,
        *,
        reset_share: bool = False,
    ) -> MoveResult:
        """Move *items* under *new_parent_id* in one transaction."""
        try:
            async with self._session() as session:
                await self._require(session, user_id, new_parent_id)
                for item in items:
                    await self._require(session, user_id, item.id)
                moved = await self._store.move_entries(
                    session, items, new_parent_id, reset_share
                )
        except (DriveError, SQLAlchemyError) as e:
            return MoveResult(success=False, message=self._failure_message("Move", e))
        return MoveResult(success=True, message=f"Moved {moved} entries", moved=moved)

    async def change_owner(
        self,
        user_id: int,
        root_ids: Sequence[int],
        new_owner_id: int,
    ) -> OwnershipResult:
        """Hand *root_ids* and their subtrees from *user_id* to *new_owner_id*.

        Only the owner may give entries away. The subtree may hold rows
        other users uploaded into a shared folder: each previous owner is
        released from their own bytes, and *new_owner_id* is charged the
        total, all recorded in the same transaction as the ownership change.
        """
        try:
            async with self._session() as session:
                for entry_id in root_ids:
                    record = await self._store.get_record(session, entry_id)
                    if record is None or record.owner_id != user_id:
                        raise AccessDeniedError(f"{_NOT_FOUND}: {entry_id}")
                released = await self._store.change_owner_recursively(
                    session, root_ids, new_owner_id, user_id
                )
                transferred = sum(released.values())
                adjustment_ids = [
                    await self._ledger.record(
                        session, prev_owner_id, -size, f"ownership to {new_owner_id}"
                    )
                    for prev_owner_id, size in released.items()
                    if size
                ]
                if transferred:
                    adjustment_ids.append(
                        await self._ledger.record(
                            session, new_owner_id, transferred, f"ownership from {user_id}"
                        )
                    )
        except (DriveError, SQLAlchemyError) as e:
            return OwnershipResult(
                success=False, message=self._failure_message("Change owner", e)
            )

        try:
            await self._apply_quota(adjustment_ids)
        except QuotaConsistencyError as e:
            logger.error("Quota inconsistency after ownership change: %s", e)
            return OwnershipResult(
                success=True,
                message=f"Ownership changed; quota update pending: {e}",
                transferred_bytes=transferred,
                released=released,
                quota_pending=True,
            )
        return OwnershipResult(
            success=True,
            message=f"Transferred {transferred} bytes to user {new_owner_id}",
            transferred_bytes=transferred,
            released=released,
        )

    async def share_entries(
        self,
        user_id: int,
        entry_id: int,
        policies: SharePolicies,
    ) -> ShareResult:
        try:
            async with self._session() as session:
                await self._require(session, user_id, entry_id)
                share_id = await self._sharing.share_entries(session, entry_id, policies)
        except (DriveError, SQLAlchemyError) as e:
            return ShareResult(success=False, message=self._failure_message("Share", e))
        return ShareResult(success=True, message=f"Shared entry {entry_id}", share_id=share_id)

    # ------------------------------------------------------------------
    # Uploads
    # ------------------------------------------------------------------

    async def _free_space(self, session: AsyncSession, user_id: int) -> int:
        free = await self._quota.get_free_space(user_id)
        return free - await self._ledger.pending_increase(session, user_id)

    async def _issue(
        self, owner_id: int, object_id: int, size: int
    ) -> UploadCredential | None:
        if self._credentials is None:
            return None
        try:
            return await self._credentials.issue_upload_credential(owner_id, object_id, size)
        except Exception:
            logger.warning(
                "Upload credential for %s/%s failed", owner_id, object_id, exc_info=True
            )
            return None

    async def _finish_upload(
        self,
        owner_id: int,
        entries: Sequence[IngestEntry],
        keys: Sequence[str],
        path_map: dict[str, tuple[int, int]],
        adjustment_id: int | None,
    ) -> UploadResult:
        try:
            await self._apply_quota([adjustment_id])
        except QuotaConsistencyError as e:
            logger.error("Quota increase for user %s left pending: %s", owner_id, e)

        async def _uploaded(entry: IngestEntry, key: str) -> UploadedEntry:
            entry_id, parent_id = path_map[key]
            credential = None
            if not entry.is_directory:
                credential = await self._issue(owner_id, entry_id, entry.size)
            return UploadedEntry(
                path=key, id=entry_id, parent_id=parent_id, credential=credential
            )

        uploaded = await asyncio.gather(
            *(_uploaded(entry, key) for entry, key in zip(entries, keys, strict=True))
        )
        return UploadResult(
            success=True, message=f"Uploaded {len(uploaded)} entries", entries=list(uploaded)
        )

    async def upload_files_and_folders(
        self,
        user_id: int,
        parent_id: int,
        entries: Sequence[IngestEntry],
    ) -> UploadResult:
        """Create a batch of files and folders under *parent_id*, all or nothing.

        Each file gets an upload credential once the rows are committed.
        """
        if not entries:
            return UploadResult(success=False, message="No entries to upload")
        size = total_size(entries)
        top_level = [e for e in entries if not e.path.strip("/")]
        try:
            async with self._session() as session:
                free = await self._free_space(session, user_id)
                await self._ingestion.check_upload(
                    session, user_id, parent_id, top_level, size, free
                )
                path_map = await self._ingestion.upload_files_and_folders(
                    session, entries, user_id, parent_id
                )
                adjustment_id = await self._ledger.record(session, user_id, size, "upload")
        except (DriveError, SQLAlchemyError) as e:
            return UploadResult(success=False, message=self._failure_message("Upload", e))

        return await self._finish_upload(
            user_id, entries, [e.key for e in entries], path_map, adjustment_id
        )

    async def upload_files(
        self,
        user_id: int,
        parent_id: int,
        entries: Sequence[IngestEntry],
    ) -> UploadResult:
        """Create a batch of plain files directly under *parent_id*, all or nothing."""
        if not entries:
            return UploadResult(success=False, message="No entries to upload")
        files = [replace(e, path="", is_directory=False) for e in entries]
        size = total_size(files)
        try:
            async with self._session() as session:
                free = await self._free_space(session, user_id)
                await self._ingestion.check_upload(
                    session, user_id, parent_id, files, size, free, folders_capable=False
                )
                path_map = await self._ingestion.upload_files(session, files, user_id, parent_id)
                adjustment_id = await self._ledger.record(session, user_id, size, "upload")
        except (DriveError, SQLAlchemyError) as e:
            return UploadResult(success=False, message=self._failure_message("Upload", e))

        return await self._finish_upload(
            user_id, files, [e.stored_name for e in files], path_map, adjustment_id
        )

    # ------------------------------------------------------------------
    # Bin
    # ------------------------------------------------------------------

    async def move_to_bin(self, user_id: int, entry_id: int) -> BinResult:
        try:
            async with self._session() as session:
                await self._require(session, user_id, entry_id)
                record = await self._store.get_record(session, entry_id)
                assert record is not None
                if record.parent_id is None:
                    raise DriveError("A drive root cannot be moved to the bin")
                added = await self._bin.add_entry_to_bin(
                    session, entry_id, record.parent_id, record.share_id
                )
                if not added:
                    raise DriveError(f"Entry already in bin: {entry_id}")
        except (DriveError, SQLAlchemyError) as e:
            return BinResult(success=False, message=self._failure_message("Move to bin", e))
        return BinResult(success=True, message="Moved to bin", entry_ids=[entry_id])

    async def restore_from_bin(self, user_id: int, entry_ids: Sequence[int]) -> BinResult:
        """Put binned entries back where they were, all or nothing."""
        try:
            async with self._session() as session:
                restored: set[tuple[int, bool, str]] = set()
                for entry_id in entry_ids:
                    await self._require(session, user_id, entry_id)
                    marker = await self._bin.get_marker(session, entry_id)
                    record = await self._store.get_record(session, entry_id)
                    if marker is None or record is None:
                        raise EntryNotFoundError(f"Entry not in bin: {entry_id}")
                    if marker.prev_parent_id is not None:
                        parent = await self._store.get_record(session, marker.prev_parent_id)
                        if parent is None:
                            raise EntryNotFoundError(
                                f"Original folder no longer exists: {marker.prev_parent_id}"
                            )
                        slot = (marker.prev_parent_id, record.is_directory, record.name)
                        if slot in restored or await self._store.names_collide(
                            session,
                            [record.name],
                            marker.prev_parent_id,
                            record.is_directory,
                            exclude_ids=[entry_id],
                        ):
                            raise NameCollisionError(
                                f"Name already taken in original folder: {record.name}"
                            )
                        restored.add(slot)
                    await self._store.set_parent_id(session, entry_id, marker.prev_parent_id)
                    await self._store.set_share_id(session, entry_id, marker.prev_share_id)
                await self._bin.remove_entries_from_bin(session, entry_ids)
        except (DriveError, SQLAlchemyError) as e:
            return BinResult(success=False, message=self._failure_message("Restore", e))
        return BinResult(
            success=True,
            message=f"Restored {len(entry_ids)} entries",
            entry_ids=list(entry_ids),
        )

    async def expired_entries(self, *, now: datetime | None = None) -> list[int]:
        """Ids the next sweep at *now* would start from, oldest first."""
        async with self._session() as session:
            return await self._bin.expired_marker_ids(session, now=now)

    async def delete_expired_entries(self, *, now: datetime | None = None) -> SweepResult:
        """Run the bin expiry sweep and release the reclaimed quota.

        Meant to be run periodically by an external scheduler.
        """
        try:
            async with self._session() as session:
                result = await self._bin.delete_expired_entries(session, now=now)
                adjustment_ids = [
                    await self._ledger.record(session, owner_id, -size, "bin expiry")
                    for owner_id, size in result.reclaimed.items()
                ]
        except (DriveError, SQLAlchemyError) as e:
            return SweepResult(success=False, message=self._failure_message("Bin sweep", e))

        try:
            await self._apply_quota(adjustment_ids)
        except QuotaConsistencyError as e:
            logger.error("Quota decrease after bin sweep left pending: %s", e)
        return result

    async def fully_delete_entries(
        self,
        entry_ids: Sequence[int],
        *,
        user_id: int | None = None,
    ) -> BinResult:
        """Permanently delete exactly *entry_ids*, bypassing the grace period.

        Without *user_id* this is an administrative purge; with one, edit
        access is required on every entry. Quota is left to the caller.
        """
        try:
            async with self._session() as session:
                if user_id is not None:
                    for entry_id in entry_ids:
                        await self._require(session, user_id, entry_id)
                deleted = await self._bin.fully_delete_entries(session, entry_ids)
        except (DriveError, SQLAlchemyError) as e:
            return BinResult(success=False, message=self._failure_message("Delete", e))
        return BinResult(
            success=True, message=f"Deleted {deleted} entries", entry_ids=list(entry_ids)
        )

    # ------------------------------------------------------------------
    # Quota
    # ------------------------------------------------------------------

    async def reconcile_quota(self) -> ReconcileResult:
        """Retry every pending quota adjustment."""
        async with self._session() as session:
            pending = len(await self._ledger.pending(session))
            failed = await self._ledger.dispatch(session, self._quota)
        applied = pending - len(failed)
        return ReconcileResult(
            success=not failed,
            message=f"Applied {applied} of {pending} pending quota adjustments",
            applied=applied,
            pending=len(failed),
        )
