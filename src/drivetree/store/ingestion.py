"""IngestionService: atomic creation of many files and folders from one flat list.

Rows in a batch reference each other through relative folder paths
because their ids are only known once inserted. Entries are processed
parent-before-child; each inserted folder is recorded under its path
key so later entries can resolve their parent id.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from .exceptions import (
    AccessDeniedError,
    EntryNotFoundError,
    IngestionOrderError,
    InvalidEntryError,
    NameCollisionError,
    QuotaExceededError,
    TransactionFailureError,
)
from .utils import path_depth, require_valid_name

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from .access import AccessResolver
    from .entries import EntryService
    from .types import IngestEntry

logger = logging.getLogger(__name__)

PathMap = dict[str, tuple[int, int]]


def total_size(entries: Sequence[IngestEntry]) -> int:
    """Bytes a batch will occupy; folders take no space."""
    return sum(entry.size for entry in entries if not entry.is_directory)


class IngestionService:
    """Validates and inserts upload batches.

    Inserts flush but never commit. On ``TransactionFailureError`` the
    caller must roll back its session, which discards every row of the
    batch inserted so far.
    """

    def __init__(self, entries: EntryService, access: AccessResolver) -> None:
        self._entries = entries
        self._access = access

    # ------------------------------------------------------------------
    # Preconditions
    # ------------------------------------------------------------------

    async def check_upload(
        self,
        session: AsyncSession,
        owner_id: int,
        parent_id: int,
        top_level: Sequence[IngestEntry],
        size: int,
        free_space: int,
        *,
        folders_capable: bool = True,
    ) -> None:
        """Reject an upload before anything is written.

        Raises ``AccessDeniedError`` without edit access to *parent_id*,
        ``QuotaExceededError`` when *size* exceeds *free_space* and
        ``NameCollisionError`` when a top-level name is taken, checked
        separately for files and folders.
        """
        access = await self._access.has_access(session, owner_id, parent_id)
        if not access.can_edit:
            raise AccessDeniedError(f"Entry not found: {parent_id}")

        if size > free_space:
            raise QuotaExceededError(required=size, available=free_space)

        if folders_capable:
            groups = [
                ([e.stored_name for e in top_level if not e.is_directory], False),
                ([e.stored_name for e in top_level if e.is_directory], True),
            ]
        else:
            groups = [([e.stored_name for e in top_level], False)]

        for names, is_directory in groups:
            if len(names) != len(set(names)):
                raise NameCollisionError("Duplicate names in upload batch")
            if await self._entries.names_collide(session, names, parent_id, is_directory):
                kind = "folder" if is_directory else "file"
                raise NameCollisionError(f"A {kind} with the same name already exists")

    @staticmethod
    def order_entries(entries: Sequence[IngestEntry]) -> list[IngestEntry]:
        """Return *entries* ordered parent-before-child, validating every path.

        Sorting is stable on path depth, so a caller-supplied order that
        already respects dependencies is kept. Raises
        ``IngestionOrderError`` for a path the batch never creates as a
        folder and ``NameCollisionError`` for duplicate keys.
        """
        ordered = sorted(entries, key=lambda e: path_depth(e.path))
        folders: set[str] = set()
        keys: set[str] = set()
        stored: set[tuple[str, bool, str]] = set()

        for entry in ordered:
            require_valid_name(entry.name)
            require_valid_name(entry.stored_name)
            if entry.size < 0:
                raise InvalidEntryError(f"Negative size for {entry.key}: {entry.size}")

            path = entry.path.strip("/")
            if path and path not in folders:
                raise IngestionOrderError(
                    f"Folder {path!r} is not created by this batch (needed by {entry.name!r})"
                )
            if entry.key in keys:
                raise NameCollisionError(f"Duplicate entry in upload batch: {entry.key}")
            slot = (path, entry.is_directory, entry.stored_name)
            if slot in stored:
                raise NameCollisionError(f"Duplicate name in upload batch: {entry.key}")

            keys.add(entry.key)
            stored.add(slot)
            if entry.is_directory:
                folders.add(entry.key)

        return ordered

    # ------------------------------------------------------------------
    # Inserts
    # ------------------------------------------------------------------

    async def _insert_entry(
        self,
        session: AsyncSession,
        entry: IngestEntry,
        owner_id: int,
        parent_id: int,
        share_id: int | None,
        *,
        files_only: bool = False,
    ) -> int:
        is_directory = entry.is_directory and not files_only
        row = self._entries.entry_model(
            owner_id=owner_id,
            parent_id=parent_id,
            share_id=share_id,
            is_directory=is_directory,
            size=0 if is_directory else entry.size,
            name=entry.stored_name,
        )
        session.add(row)
        await session.flush()
        assert row.id is not None
        return row.id

    async def _destination_share_id(self, session: AsyncSession, parent_id: int) -> int | None:
        parent = await self._entries.get_record(session, parent_id)
        if parent is None or not parent.is_directory:
            raise EntryNotFoundError(f"Folder not found: {parent_id}")
        return parent.share_id

    async def upload_files_and_folders(
        self,
        session: AsyncSession,
        entries: Sequence[IngestEntry],
        owner_id: int,
        parent_id: int,
    ) -> PathMap:
        """Insert files and folders under *parent_id* as one unit.

        Returns ``key -> (id, parent_id)`` for every entry, keyed by
        ``path/name`` (or bare ``name`` at top level).
        """
        ordered = self.order_entries(entries)
        share_id = await self._destination_share_id(session, parent_id)

        path_to_id: PathMap = {"": (parent_id, parent_id)}
        try:
            for entry in ordered:
                entry_parent_id = path_to_id[entry.path.strip("/")][0]
                new_id = await self._insert_entry(
                    session, entry, owner_id, entry_parent_id, share_id
                )
                path_to_id[entry.key] = (new_id, entry_parent_id)
        except SQLAlchemyError as e:
            logger.error("Upload into %s failed: %s", parent_id, e, exc_info=True)
            raise TransactionFailureError(f"Upload into {parent_id} failed") from e

        del path_to_id[""]
        logger.info("Inserted %d entries under %s for user %s", len(ordered), parent_id, owner_id)
        return path_to_id

    async def upload_files(
        self,
        session: AsyncSession,
        entries: Sequence[IngestEntry],
        owner_id: int,
        parent_id: int,
    ) -> PathMap:
        """Insert plain files directly under *parent_id* as one unit.

        Returns ``stored name -> (id, parent_id)``.
        """
        names: set[str] = set()
        for entry in entries:
            require_valid_name(entry.stored_name)
            if entry.size < 0:
                raise InvalidEntryError(f"Negative size for {entry.stored_name}: {entry.size}")
            if entry.stored_name in names:
                raise NameCollisionError(f"Duplicate name in upload batch: {entry.stored_name}")
            names.add(entry.stored_name)

        share_id = await self._destination_share_id(session, parent_id)

        name_to_id: PathMap = {}
        try:
            for entry in entries:
                new_id = await self._insert_entry(
                    session, entry, owner_id, parent_id, share_id, files_only=True
                )
                name_to_id[entry.stored_name] = (new_id, parent_id)
        except SQLAlchemyError as e:
            logger.error("Upload into %s failed: %s", parent_id, e, exc_info=True)
            raise TransactionFailureError(f"Upload into {parent_id} failed") from e

        logger.info("Inserted %d files under %s for user %s", len(entries), parent_id, owner_id)
        return name_to_id
