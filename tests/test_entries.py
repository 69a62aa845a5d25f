"""Tests for EntryService: lookups, listings, recursive descent and mutations."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from drivetree.models import BinEntry
from drivetree.store.exceptions import (
    EntryNotFoundError,
    InvalidMoveError,
    InvalidNameError,
    NameCollisionError,
)
from drivetree.store.types import MoveItem, SharePolicies

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from drivetree.store.entries import EntryService
    from drivetree.store.sharing import SharingService


async def _put_in_bin(session: AsyncSession, entry_id: int, parent_id: int) -> None:
    session.add(BinEntry(id=entry_id, prev_parent_id=parent_id))
    await session.flush()


async def _add_file(
    entries: EntryService,
    session: AsyncSession,
    parent_id: int,
    owner_id: int,
    name: str,
    size: int,
) -> int:
    parent = await entries.get_record(session, parent_id)
    assert parent is not None
    row = entries.entry_model(
        owner_id=owner_id,
        parent_id=parent_id,
        share_id=parent.share_id,
        is_directory=False,
        size=size,
        name=name,
    )
    session.add(row)
    await session.flush()
    assert row.id is not None
    return row.id


# ---------------------------------------------------------------------------
# create_drive / create_folder
# ---------------------------------------------------------------------------


class TestCreate:
    async def test_create_drive(self, entries: EntryService, async_session: AsyncSession):
        root_id = await entries.create_drive(async_session, owner_id=1)
        root = await entries.get_entry(async_session, root_id, 1)
        assert root is not None
        assert root.parent_id is None
        assert root.is_directory
        assert root.owner_id == 1
        assert root.can_edit

    async def test_two_users_get_separate_drives(
        self, entries: EntryService, async_session: AsyncSession
    ):
        a = await entries.create_drive(async_session, owner_id=1)
        b = await entries.create_drive(async_session, owner_id=2)
        assert a != b

    async def test_create_folder(self, entries: EntryService, async_session: AsyncSession):
        root_id = await entries.create_drive(async_session, owner_id=1)
        folder_id = await entries.create_folder(async_session, root_id, 1, "docs")
        folder = await entries.get_entry(async_session, folder_id)
        assert folder is not None
        assert folder.parent_id == root_id
        assert folder.name == "docs"
        assert folder.size == 0

    async def test_create_folder_collision(
        self, entries: EntryService, async_session: AsyncSession
    ):
        root_id = await entries.create_drive(async_session, owner_id=1)
        await entries.create_folder(async_session, root_id, 1, "docs")
        with pytest.raises(NameCollisionError):
            await entries.create_folder(async_session, root_id, 1, "docs")

    async def test_binned_folder_frees_its_name(
        self, entries: EntryService, async_session: AsyncSession
    ):
        root_id = await entries.create_drive(async_session, owner_id=1)
        old = await entries.create_folder(async_session, root_id, 1, "docs")
        await _put_in_bin(async_session, old, root_id)
        new = await entries.create_folder(async_session, root_id, 1, "docs")
        assert new != old
        assert await entries.names_collide(async_session, ["docs"], root_id, True)
        assert not await entries.names_collide(
            async_session, ["docs"], root_id, True, exclude_ids=[new]
        )

    async def test_folder_and_file_may_share_a_name(
        self, entries: EntryService, async_session: AsyncSession
    ):
        root_id = await entries.create_drive(async_session, owner_id=1)
        await _add_file(entries, async_session, root_id, 1, "docs", 10)
        folder_id = await entries.create_folder(async_session, root_id, 1, "docs")
        assert folder_id

    async def test_create_folder_missing_parent(
        self, entries: EntryService, async_session: AsyncSession
    ):
        with pytest.raises(EntryNotFoundError):
            await entries.create_folder(async_session, 999, 1, "docs")

    async def test_create_folder_under_file(
        self, entries: EntryService, async_session: AsyncSession
    ):
        root_id = await entries.create_drive(async_session, owner_id=1)
        file_id = await _add_file(entries, async_session, root_id, 1, "a.txt", 10)
        with pytest.raises(EntryNotFoundError):
            await entries.create_folder(async_session, file_id, 1, "docs")

    @pytest.mark.parametrize("name", ["", "a/b", "..", "x" * 256, "bad\x00name"])
    async def test_create_folder_invalid_name(
        self, entries: EntryService, async_session: AsyncSession, name: str
    ):
        root_id = await entries.create_drive(async_session, owner_id=1)
        with pytest.raises(InvalidNameError):
            await entries.create_folder(async_session, root_id, 1, name)

    async def test_create_folder_inherits_share(
        self,
        entries: EntryService,
        sharing: SharingService,
        async_session: AsyncSession,
    ):
        root_id = await entries.create_drive(async_session, owner_id=1)
        docs = await entries.create_folder(async_session, root_id, 1, "docs")
        share_id = await sharing.share_entries(
            async_session, docs, SharePolicies(can_read_users=[2])
        )
        child = await entries.create_folder(async_session, docs, 1, "inner")
        info = await entries.get_entry(async_session, child)
        assert info is not None
        assert info.share_id == share_id


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------


class TestListings:
    async def test_get_entry_missing(self, entries: EntryService, async_session: AsyncSession):
        assert await entries.get_entry(async_session, 12345) is None

    async def test_get_entries_folders_first(
        self, entries: EntryService, async_session: AsyncSession
    ):
        root_id = await entries.create_drive(async_session, owner_id=1)
        await _add_file(entries, async_session, root_id, 1, "a.txt", 5)
        await entries.create_folder(async_session, root_id, 1, "zeta")
        await entries.create_folder(async_session, root_id, 1, "alpha")
        names = [e.name for e in await entries.get_entries(async_session, root_id)]
        assert names == ["alpha", "zeta", "a.txt"]

    async def test_get_files_and_folders(
        self, entries: EntryService, async_session: AsyncSession
    ):
        root_id = await entries.create_drive(async_session, owner_id=1)
        await _add_file(entries, async_session, root_id, 1, "a.txt", 5)
        await entries.create_folder(async_session, root_id, 1, "docs")
        files = await entries.get_files(async_session, root_id)
        folders = await entries.get_folders(async_session, root_id)
        assert [f.name for f in files] == ["a.txt"]
        assert [f.name for f in folders] == ["docs"]

    async def test_can_edit_annotation(
        self,
        entries: EntryService,
        sharing: SharingService,
        async_session: AsyncSession,
    ):
        root_id = await entries.create_drive(async_session, owner_id=1)
        docs = await entries.create_folder(async_session, root_id, 1, "docs")
        await sharing.share_entries(
            async_session, docs, SharePolicies(can_read_users=[2], can_edit_users=[3])
        )
        assert (await entries.get_entry(async_session, docs, 1)).can_edit  # type: ignore[union-attr]
        assert not (await entries.get_entry(async_session, docs, 2)).can_edit  # type: ignore[union-attr]
        assert (await entries.get_entry(async_session, docs, 3)).can_edit  # type: ignore[union-attr]
        assert not (await entries.get_entry(async_session, docs)).can_edit  # type: ignore[union-attr]

    async def test_folders_recursively(
        self, entries: EntryService, async_session: AsyncSession
    ):
        root_id = await entries.create_drive(async_session, owner_id=1)
        a = await entries.create_folder(async_session, root_id, 1, "a")
        b = await entries.create_folder(async_session, a, 1, "b")
        c = await entries.create_folder(async_session, b, 1, "c")
        await _add_file(entries, async_session, c, 1, "deep.txt", 1)
        folders = await entries.get_folders_recursively(async_session, root_id)
        assert {f.id for f in folders} == {a, b, c}

    async def test_folders_recursively_skips_binned_subtree(
        self, entries: EntryService, async_session: AsyncSession
    ):
        root_id = await entries.create_drive(async_session, owner_id=1)
        d = await entries.create_folder(async_session, root_id, 1, "d")
        await entries.create_folder(async_session, d, 1, "inner")
        kept = await entries.create_folder(async_session, root_id, 1, "kept")
        await _put_in_bin(async_session, d, root_id)

        folders = await entries.get_folders_recursively(async_session, root_id)
        assert [f.id for f in folders] == [kept]

    async def test_entries_recursively(
        self, entries: EntryService, async_session: AsyncSession
    ):
        root_id = await entries.create_drive(async_session, owner_id=1)
        a = await entries.create_folder(async_session, root_id, 1, "a")
        f = await _add_file(entries, async_session, a, 1, "x.txt", 3)
        other = await entries.create_folder(async_session, root_id, 1, "other")
        found = await entries.get_entries_recursively(async_session, a)
        assert {e.id for e in found} == {a, f}
        assert other not in {e.id for e in found}

    async def test_entries_recursively_on_file_is_empty(
        self, entries: EntryService, async_session: AsyncSession
    ):
        root_id = await entries.create_drive(async_session, owner_id=1)
        f = await _add_file(entries, async_session, root_id, 1, "x.txt", 3)
        assert await entries.get_entries_recursively(async_session, f) == []


# ---------------------------------------------------------------------------
# Shared views
# ---------------------------------------------------------------------------


class TestSharedViews:
    async def test_shared_folders_and_owners(
        self,
        entries: EntryService,
        sharing: SharingService,
        async_session: AsyncSession,
    ):
        root_1 = await entries.create_drive(async_session, owner_id=1)
        root_4 = await entries.create_drive(async_session, owner_id=4)
        docs = await entries.create_folder(async_session, root_1, 1, "docs")
        music = await entries.create_folder(async_session, root_4, 4, "music")
        await sharing.share_entries(async_session, docs, SharePolicies(can_read_users=[2]))
        await sharing.share_entries(async_session, music, SharePolicies(can_edit_users=[2]))

        shared = await entries.get_shared_folders(async_session, 2)
        by_id = {f.id: f for f in shared}
        assert set(by_id) == {docs, music}
        assert not by_id[docs].can_edit
        assert by_id[music].can_edit
        assert by_id[music].owner_id == 4

        assert await entries.get_sharing_owners(async_session, 2) == [1, 4]
        assert await entries.get_sharing_owners(async_session, 3) == []

    async def test_shared_roots_skip_inheriting_children(
        self,
        entries: EntryService,
        sharing: SharingService,
        async_session: AsyncSession,
    ):
        root_id = await entries.create_drive(async_session, owner_id=1)
        docs = await entries.create_folder(async_session, root_id, 1, "docs")
        await entries.create_folder(async_session, docs, 1, "inner")
        await sharing.share_entries(async_session, docs, SharePolicies(can_read_users=[2]))

        roots = await entries.get_shared_roots(async_session, 2, 1)
        assert [r.id for r in roots] == [docs]


# ---------------------------------------------------------------------------
# rename_entry
# ---------------------------------------------------------------------------


class TestRename:
    async def test_rename(self, entries: EntryService, async_session: AsyncSession):
        root_id = await entries.create_drive(async_session, owner_id=1)
        f = await _add_file(entries, async_session, root_id, 1, "a.txt", 1)
        await entries.rename_entry(async_session, f, "b.txt")
        assert (await entries.get_entry(async_session, f)).name == "b.txt"  # type: ignore[union-attr]

    async def test_rename_collision(self, entries: EntryService, async_session: AsyncSession):
        root_id = await entries.create_drive(async_session, owner_id=1)
        f = await _add_file(entries, async_session, root_id, 1, "a.txt", 1)
        await _add_file(entries, async_session, root_id, 1, "b.txt", 1)
        with pytest.raises(NameCollisionError):
            await entries.rename_entry(async_session, f, "b.txt")

    async def test_rename_file_to_folder_name(
        self, entries: EntryService, async_session: AsyncSession
    ):
        root_id = await entries.create_drive(async_session, owner_id=1)
        f = await _add_file(entries, async_session, root_id, 1, "a.txt", 1)
        await entries.create_folder(async_session, root_id, 1, "docs")
        await entries.rename_entry(async_session, f, "docs")

    async def test_rename_missing(self, entries: EntryService, async_session: AsyncSession):
        with pytest.raises(EntryNotFoundError):
            await entries.rename_entry(async_session, 999, "x")


# ---------------------------------------------------------------------------
# move_entries
# ---------------------------------------------------------------------------


class TestMove:
    async def test_move_and_rename(self, entries: EntryService, async_session: AsyncSession):
        root_id = await entries.create_drive(async_session, owner_id=1)
        dest = await entries.create_folder(async_session, root_id, 1, "dest")
        f = await _add_file(entries, async_session, root_id, 1, "a.txt", 1)
        g = await _add_file(entries, async_session, root_id, 1, "b.txt", 1)

        moved = await entries.move_entries(
            async_session,
            [MoveItem(f, root_id, "a.txt"), MoveItem(g, root_id, "renamed.txt")],
            dest,
        )
        assert moved == 2
        names = sorted(e.name for e in await entries.get_entries(async_session, dest))
        assert names == ["a.txt", "renamed.txt"]

    async def test_stale_parent_is_skipped(
        self, entries: EntryService, async_session: AsyncSession
    ):
        root_id = await entries.create_drive(async_session, owner_id=1)
        dest = await entries.create_folder(async_session, root_id, 1, "dest")
        other = await entries.create_folder(async_session, root_id, 1, "other")
        f = await _add_file(entries, async_session, root_id, 1, "a.txt", 1)

        moved = await entries.move_entries(async_session, [MoveItem(f, other, "a.txt")], dest)
        assert moved == 0
        assert (await entries.get_entry(async_session, f)).parent_id == root_id  # type: ignore[union-attr]

    async def test_move_collision(self, entries: EntryService, async_session: AsyncSession):
        root_id = await entries.create_drive(async_session, owner_id=1)
        dest = await entries.create_folder(async_session, root_id, 1, "dest")
        await _add_file(entries, async_session, dest, 1, "a.txt", 1)
        f = await _add_file(entries, async_session, root_id, 1, "a.txt", 1)
        with pytest.raises(NameCollisionError):
            await entries.move_entries(async_session, [MoveItem(f, root_id, "a.txt")], dest)

    async def test_move_into_own_subtree(
        self, entries: EntryService, async_session: AsyncSession
    ):
        root_id = await entries.create_drive(async_session, owner_id=1)
        a = await entries.create_folder(async_session, root_id, 1, "a")
        b = await entries.create_folder(async_session, a, 1, "b")
        with pytest.raises(InvalidMoveError):
            await entries.move_entries(async_session, [MoveItem(a, root_id, "a")], b)

    async def test_move_reset_share(
        self,
        entries: EntryService,
        sharing: SharingService,
        async_session: AsyncSession,
    ):
        root_id = await entries.create_drive(async_session, owner_id=1)
        docs = await entries.create_folder(async_session, root_id, 1, "docs")
        await sharing.share_entries(async_session, docs, SharePolicies(can_read_users=[2]))
        f = await _add_file(entries, async_session, docs, 1, "a.txt", 1)

        await entries.move_entries(
            async_session, [MoveItem(f, docs, "a.txt")], root_id, reset_share=True
        )
        info = await entries.get_entry(async_session, f)
        assert info is not None
        assert info.share_id is None
        assert info.parent_id == root_id


# ---------------------------------------------------------------------------
# change_owner_recursively
# ---------------------------------------------------------------------------


class TestChangeOwner:
    async def test_subtree_reassigned(self, entries: EntryService, async_session: AsyncSession):
        root_id = await entries.create_drive(async_session, owner_id=1)
        docs = await entries.create_folder(async_session, root_id, 1, "docs")
        inner = await entries.create_folder(async_session, docs, 1, "inner")
        a = await _add_file(entries, async_session, docs, 1, "a.txt", 100)
        b = await _add_file(entries, async_session, inner, 1, "b.txt", 50)
        untouched = await _add_file(entries, async_session, root_id, 1, "c.txt", 7)

        released = await entries.change_owner_recursively(async_session, [docs], 2, 1)
        assert released == {1: 150}
        for entry_id in (docs, inner, a, b):
            assert (await entries.get_entry(async_session, entry_id)).owner_id == 2  # type: ignore[union-attr]
        assert (await entries.get_entry(async_session, untouched)).owner_id == 1  # type: ignore[union-attr]

    async def test_rows_already_owned_do_not_count(
        self, entries: EntryService, async_session: AsyncSession
    ):
        root_id = await entries.create_drive(async_session, owner_id=1)
        docs = await entries.create_folder(async_session, root_id, 1, "docs")
        await _add_file(entries, async_session, docs, 1, "a.txt", 100)
        await _add_file(entries, async_session, docs, 2, "theirs.txt", 30)

        released = await entries.change_owner_recursively(async_session, [docs], 2, 1)
        assert released == {1: 100}

    async def test_bytes_grouped_by_previous_owner(
        self, entries: EntryService, async_session: AsyncSession
    ):
        root_id = await entries.create_drive(async_session, owner_id=1)
        docs = await entries.create_folder(async_session, root_id, 1, "docs")
        await _add_file(entries, async_session, docs, 1, "mine.txt", 40)
        editor_file = await _add_file(entries, async_session, docs, 2, "theirs.txt", 100)

        released = await entries.change_owner_recursively(async_session, [docs], 3, 1)
        assert released == {1: 40, 2: 100}
        assert (await entries.get_entry(async_session, editor_file)).owner_id == 3  # type: ignore[union-attr]

    async def test_empty_roots(self, entries: EntryService, async_session: AsyncSession):
        assert await entries.change_owner_recursively(async_session, [], 2, 1) == {}
