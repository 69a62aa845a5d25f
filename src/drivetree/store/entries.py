"""EntryService: entry lookup, listings, recursive descent and tree mutations."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import TYPE_CHECKING, Any

from sqlalchemy import exists, func, or_, update
from sqlalchemy.orm import aliased
from sqlmodel import select

from .exceptions import EntryNotFoundError, InvalidMoveError, NameCollisionError
from .types import EntryInfo
from .utils import require_valid_name

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from drivetree.models.bin import BinEntryBase
    from drivetree.models.entries import EntryBase
    from drivetree.models.shares import ShareMemberBase

    from .types import MoveItem

logger = logging.getLogger(__name__)


class EntryService:
    """Stateless queries and mutations over the entry tree.

    Receives the concrete models at construction so callers can use
    custom SQLModel subclasses with different table names. Listings
    never check access: callers resolve access on the parent first.
    """

    def __init__(
        self,
        entry_model: type[EntryBase] | None = None,
        bin_model: type[BinEntryBase] | None = None,
        member_model: type[ShareMemberBase] | None = None,
    ) -> None:
        from drivetree.models import BinEntry, Entry, ShareMember

        self._entry_model: type[EntryBase] = entry_model or Entry  # type: ignore[assignment]
        self._bin_model: type[BinEntryBase] = bin_model or BinEntry  # type: ignore[assignment]
        self._member_model: type[ShareMemberBase] = member_model or ShareMember  # type: ignore[assignment]

    @property
    def entry_model(self) -> type[EntryBase]:
        return self._entry_model

    # ------------------------------------------------------------------
    # Conversion helpers
    # ------------------------------------------------------------------

    def _in_bin(self) -> Any:
        """Correlated EXISTS: the entry row carries a bin marker."""
        marker = self._bin_model
        return exists().where(marker.id == self._entry_model.id)  # type: ignore[arg-type]

    def _select_with_bin(self) -> Any:
        model = self._entry_model
        marker = self._bin_model
        return select(model, marker).outerjoin(
            marker,
            marker.id == model.id,  # type: ignore[arg-type]
        )

    @staticmethod
    def to_info(
        entry: EntryBase,
        marker: BinEntryBase | None = None,
        can_edit: bool = False,
    ) -> EntryInfo:
        """Convert an entry row (and its optional bin marker) to EntryInfo."""
        assert entry.id is not None
        return EntryInfo(
            id=entry.id,
            owner_id=entry.owner_id,
            parent_id=entry.parent_id,
            name=entry.name,
            is_directory=entry.is_directory,
            size=entry.size,
            share_id=entry.share_id,
            can_edit=can_edit,
            in_bin=marker is not None,
            put_at=marker.put_at if marker is not None else None,
            prev_parent_id=marker.prev_parent_id if marker is not None else None,
            prev_share_id=marker.prev_share_id if marker is not None else None,
            created_at=entry.created_at,
        )

    async def editable_share_ids(
        self,
        session: AsyncSession,
        user_id: int,
        share_ids: Iterable[int | None],
    ) -> set[int]:
        """Return the subset of *share_ids* whose policy lets *user_id* edit."""
        wanted = {sid for sid in share_ids if sid is not None}
        if not wanted:
            return set()
        member = self._member_model
        result = await session.execute(
            select(member.share_id).where(
                member.user_id == user_id,
                member.can_edit.is_(True),  # type: ignore[union-attr]
                member.share_id.in_(wanted),  # type: ignore[union-attr]
            )
        )
        return set(result.scalars().all())

    async def _rows_to_infos(
        self,
        session: AsyncSession,
        rows: Sequence[Any],
        user_id: int | None,
    ) -> list[EntryInfo]:
        editable: set[int] = set()
        if user_id is not None:
            editable = await self.editable_share_ids(
                session, user_id, (entry.share_id for entry, _ in rows)
            )
        infos = []
        for entry, marker in rows:
            can_edit = user_id is not None and (
                entry.owner_id == user_id or entry.share_id in editable
            )
            infos.append(self.to_info(entry, marker, can_edit))
        return infos

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def get_record(self, session: AsyncSession, entry_id: int) -> EntryBase | None:
        """Get the raw entry row by id."""
        return await session.get(self._entry_model, entry_id)

    async def get_entry(
        self,
        session: AsyncSession,
        entry_id: int,
        user_id: int | None = None,
    ) -> EntryInfo | None:
        """Get an entry by id, annotated with *user_id*'s edit capability."""
        model = self._entry_model
        result = await session.execute(
            self._select_with_bin().where(model.id == entry_id)  # type: ignore[arg-type]
        )
        row = result.first()
        if row is None:
            return None
        infos = await self._rows_to_infos(session, [row], user_id)
        return infos[0]

    async def get_entries(
        self,
        session: AsyncSession,
        parent_id: int,
        user_id: int | None = None,
        *,
        is_directory: bool | None = None,
    ) -> list[EntryInfo]:
        """List direct children of *parent_id*, optionally only files or only folders."""
        model = self._entry_model
        query = self._select_with_bin().where(model.parent_id == parent_id)  # type: ignore[arg-type]
        if is_directory is not None:
            query = query.where(model.is_directory.is_(is_directory))  # type: ignore[union-attr]
        query = query.order_by(model.is_directory.desc(), model.name)  # type: ignore[union-attr]
        result = await session.execute(query)
        return await self._rows_to_infos(session, result.all(), user_id)

    async def get_files(
        self, session: AsyncSession, parent_id: int, user_id: int | None = None
    ) -> list[EntryInfo]:
        return await self.get_entries(session, parent_id, user_id, is_directory=False)

    async def get_folders(
        self, session: AsyncSession, parent_id: int, user_id: int | None = None
    ) -> list[EntryInfo]:
        return await self.get_entries(session, parent_id, user_id, is_directory=True)

    # ------------------------------------------------------------------
    # Recursive descent
    # ------------------------------------------------------------------

    def subtree(self, root_ids: Iterable[int], name: str = "subtree") -> Any:
        """Recursive CTE of *root_ids* and all of their descendants.

        Uses UNION (not UNION ALL) so the walk terminates even on a
        corrupted tree.
        """
        model = self._entry_model
        tree = (
            select(model.id, model.owner_id, model.size)
            .where(model.id.in_(list(root_ids)))  # type: ignore[union-attr]
            .cte(name, recursive=True)
        )
        return tree.union(
            select(model.id, model.owner_id, model.size).join(
                tree,
                model.parent_id == tree.c.id,  # type: ignore[arg-type]
            )
        )

    async def subtree_ids(self, session: AsyncSession, root_ids: Iterable[int]) -> list[int]:
        """Return *root_ids* plus every descendant id."""
        tree = self.subtree(root_ids)
        result = await session.execute(select(tree.c.id))
        return list(result.scalars().all())

    async def get_folders_recursively(
        self, session: AsyncSession, parent_id: int
    ) -> list[EntryInfo]:
        """Every directory beneath *parent_id*, at any depth.

        The walk stops at binned folders, so nothing inside the bin shows up.
        """
        model = self._entry_model
        folders = (
            select(model.id)
            .where(
                model.parent_id == parent_id,  # type: ignore[arg-type]
                model.is_directory.is_(True),  # type: ignore[union-attr]
                ~self._in_bin(),
            )
            .cte("folder_tree", recursive=True)
        )
        folders = folders.union(
            select(model.id)
            .join(folders, model.parent_id == folders.c.id)  # type: ignore[arg-type]
            .where(model.is_directory.is_(True), ~self._in_bin())  # type: ignore[union-attr]
        )
        result = await session.execute(
            self._select_with_bin().where(
                model.id.in_(select(folders.c.id))  # type: ignore[union-attr]
            )
        )
        return await self._rows_to_infos(session, result.all(), None)

    async def get_entries_recursively(
        self,
        session: AsyncSession,
        entry_id: int,
        user_id: int | None = None,
    ) -> list[EntryInfo]:
        """The directory *entry_id* itself plus every descendant, files included."""
        model = self._entry_model
        root = await session.get(model, entry_id)
        if root is None or not root.is_directory:
            return []
        tree = self.subtree([entry_id], "entry_tree")
        result = await session.execute(
            self._select_with_bin().where(
                model.id.in_(select(tree.c.id))  # type: ignore[union-attr]
            )
        )
        return await self._rows_to_infos(session, result.all(), user_id)

    # ------------------------------------------------------------------
    # Shared views
    # ------------------------------------------------------------------

    async def get_shared_folders(self, session: AsyncSession, user_id: int) -> list[EntryInfo]:
        """Directories whose share policy lists *user_id*, with owner and edit flag."""
        model = self._entry_model
        member = self._member_model
        marker = self._bin_model
        result = await session.execute(
            select(model, marker, member.can_edit)
            .join(member, member.share_id == model.share_id)  # type: ignore[arg-type]
            .outerjoin(marker, marker.id == model.id)  # type: ignore[arg-type]
            .where(
                member.user_id == user_id,
                model.is_directory.is_(True),  # type: ignore[union-attr]
            )
            .order_by(model.owner_id, model.name)
        )
        return [
            self.to_info(entry, bin_marker, can_edit or entry.owner_id == user_id)
            for entry, bin_marker, can_edit in result.all()
        ]

    async def get_sharing_owners(self, session: AsyncSession, user_id: int) -> list[int]:
        """Distinct owners that share at least one directory with *user_id*."""
        model = self._entry_model
        member = self._member_model
        result = await session.execute(
            select(model.owner_id)
            .distinct()
            .join(member, member.share_id == model.share_id)  # type: ignore[arg-type]
            .where(
                member.user_id == user_id,
                model.owner_id != user_id,
                model.is_directory.is_(True),  # type: ignore[union-attr]
            )
            .order_by(model.owner_id)
        )
        return list(result.scalars().all())

    async def get_shared_roots(
        self,
        session: AsyncSession,
        user_id: int,
        owner_id: int,
    ) -> list[EntryInfo]:
        """Top of every subtree of *owner_id* shared with *user_id*.

        An entry is a shared root when its parent does not carry the
        same share id.
        """
        model = self._entry_model
        member = self._member_model
        marker = self._bin_model
        parent = aliased(model)
        result = await session.execute(
            select(model, marker, member.can_edit)
            .join(member, member.share_id == model.share_id)  # type: ignore[arg-type]
            .outerjoin(parent, parent.id == model.parent_id)  # type: ignore[arg-type]
            .outerjoin(marker, marker.id == model.id)  # type: ignore[arg-type]
            .where(
                member.user_id == user_id,
                model.owner_id == owner_id,
                or_(
                    parent.id.is_(None),  # type: ignore[union-attr]
                    parent.share_id.is_(None),  # type: ignore[union-attr]
                    parent.share_id != model.share_id,
                ),
            )
            .order_by(model.is_directory.desc(), model.name)  # type: ignore[union-attr]
        )
        return [
            self.to_info(entry, bin_marker, can_edit)
            for entry, bin_marker, can_edit in result.all()
        ]

    # ------------------------------------------------------------------
    # Collisions
    # ------------------------------------------------------------------

    async def names_collide(
        self,
        session: AsyncSession,
        names: Sequence[str],
        parent_id: int,
        is_directory: bool,
        *,
        exclude_ids: Iterable[int] = (),
    ) -> bool:
        """True if any of *names* is taken by a same-type child of *parent_id*.

        Binned children do not hold on to their names.
        """
        if not names:
            return False
        model = self._entry_model
        query = select(func.count()).select_from(model).where(
            model.parent_id == parent_id,  # type: ignore[arg-type]
            model.is_directory.is_(is_directory),  # type: ignore[union-attr]
            model.name.in_(list(names)),  # type: ignore[union-attr]
            ~self._in_bin(),
        )
        excluded = list(exclude_ids)
        if excluded:
            query = query.where(model.id.notin_(excluded))  # type: ignore[union-attr]
        result = await session.execute(query)
        return (result.scalar_one() or 0) > 0

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create_drive(self, session: AsyncSession, owner_id: int, name: str = "drive") -> int:
        """Create a drive root for *owner_id*. Flushes but does not commit."""
        require_valid_name(name)
        root = self._entry_model(
            owner_id=owner_id,
            parent_id=None,
            is_directory=True,
            size=0,
            name=name,
        )
        session.add(root)
        await session.flush()
        assert root.id is not None
        return root.id

    async def create_folder(
        self,
        session: AsyncSession,
        parent_id: int,
        owner_id: int,
        name: str,
    ) -> int:
        """Create a folder under *parent_id*, inheriting its share id."""
        require_valid_name(name)
        parent = await session.get(self._entry_model, parent_id)
        if parent is None or not parent.is_directory:
            raise EntryNotFoundError(f"Folder not found: {parent_id}")
        if await self.names_collide(session, [name], parent_id, True):
            raise NameCollisionError(f"Folder already exists: {name}")

        folder = self._entry_model(
            owner_id=owner_id,
            parent_id=parent_id,
            share_id=parent.share_id,
            is_directory=True,
            size=0,
            name=name,
        )
        session.add(folder)
        await session.flush()
        assert folder.id is not None
        return folder.id

    async def rename_entry(self, session: AsyncSession, entry_id: int, new_name: str) -> None:
        """Rename an entry, rejecting a clash with a same-type sibling."""
        require_valid_name(new_name)
        entry = await session.get(self._entry_model, entry_id)
        if entry is None:
            raise EntryNotFoundError(f"Entry not found: {entry_id}")
        if entry.name == new_name:
            return
        if entry.parent_id is not None and await self.names_collide(
            session, [new_name], entry.parent_id, entry.is_directory, exclude_ids=[entry_id]
        ):
            raise NameCollisionError(f"Name already taken: {new_name}")
        entry.name = new_name
        await session.flush()

    async def move_entries(
        self,
        session: AsyncSession,
        items: Sequence[MoveItem],
        new_parent_id: int,
        reset_share: bool = False,
    ) -> int:
        """Move a batch of entries under *new_parent_id*, renaming each.

        Each item matches only when both its id and its old parent id
        still agree with the stored row. ``reset_share`` clears share ids
        (used when moving out of a shared subtree). Returns the number of
        rows changed.
        """
        if not items:
            return 0
        for item in items:
            require_valid_name(item.name)

        model = self._entry_model
        parent = await session.get(model, new_parent_id)
        if parent is None or not parent.is_directory:
            raise EntryNotFoundError(f"Folder not found: {new_parent_id}")

        ids = [item.id for item in items]
        if new_parent_id in await self.subtree_ids(session, ids):
            raise InvalidMoveError(f"Cannot move a folder into itself: {new_parent_id}")

        result = await session.execute(
            select(model.id, model.is_directory).where(model.id.in_(ids))  # type: ignore[union-attr]
        )
        kinds = dict(result.all())
        for is_directory in (False, True):
            names = [item.name for item in items if kinds.get(item.id) is is_directory]
            if len(names) != len(set(names)) or await self.names_collide(
                session, names, new_parent_id, is_directory, exclude_ids=ids
            ):
                raise NameCollisionError(
                    f"Name collision in destination folder: {new_parent_id}"
                )

        moved = 0
        for item in items:
            values: dict[str, Any] = {"parent_id": new_parent_id, "name": item.name}
            if reset_share:
                values["share_id"] = None
            res = await session.execute(
                update(model)
                .where(
                    model.id == item.id,  # type: ignore[arg-type]
                    model.parent_id == item.parent_id,  # type: ignore[arg-type]
                )
                .values(**values)
            )
            moved += res.rowcount or 0  # type: ignore[attr-defined]
        await session.flush()
        return moved

    async def change_owner_recursively(
        self,
        session: AsyncSession,
        root_ids: Sequence[int],
        new_owner_id: int,
        prev_owner_id: int,
    ) -> dict[int, int]:
        """Reassign *root_ids* and all their descendants to *new_owner_id*.

        Returns the bytes moved away from each previous owner. A subtree
        may hold rows of several owners (editors upload into shared
        folders), so the caller records one decrease per key and a
        single increase of the total for *new_owner_id*. Rows already
        owned by *new_owner_id* are not counted.
        """
        if not root_ids:
            return {}
        model = self._entry_model
        tree = self.subtree(root_ids, "owner_tree")
        result = await session.execute(select(tree.c.id, tree.c.owner_id, tree.c.size))
        rows = result.all()
        if not rows:
            return {}

        released: dict[int, int] = defaultdict(int)
        for _, owner_id, size in rows:
            if owner_id != new_owner_id:
                released[owner_id] += size
        await session.execute(
            update(model)
            .where(model.id.in_([row[0] for row in rows]))  # type: ignore[union-attr]
            .values(owner_id=new_owner_id)
        )
        await session.flush()
        logger.info(
            "Reassigned %d entries under user %s to user %s (%d bytes from %d owners)",
            len(rows),
            prev_owner_id,
            new_owner_id,
            sum(released.values()),
            len(released),
        )
        return dict(released)

    async def set_share_id(
        self, session: AsyncSession, entry_id: int, share_id: int | None
    ) -> None:
        """Set the share id of a single entry."""
        model = self._entry_model
        await session.execute(
            update(model)
            .where(model.id == entry_id)  # type: ignore[arg-type]
            .values(share_id=share_id)
        )
        await session.flush()

    async def set_parent_id(
        self, session: AsyncSession, entry_id: int, parent_id: int | None
    ) -> None:
        """Set the parent id of a single entry."""
        model = self._entry_model
        await session.execute(
            update(model)
            .where(model.id == entry_id)  # type: ignore[arg-type]
            .values(parent_id=parent_id)
        )
        await session.flush()
