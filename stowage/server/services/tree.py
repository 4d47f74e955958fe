import logging
from typing import Sequence

from sqlalchemy import case, func, literal, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased
from sqlalchemy.sql import Select

from stowage.models.base import ItemType, SortKey

from ..db.models.item import ItemDO

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 10000

# Folders sort before files at every level.
_FOLDER_FIRST = case((ItemDO.type == ItemType.FOLDER.value, 0), else_=1)


def _parent_filter(parent_id: int | None):
    if parent_id is None:
        return ItemDO.parent_id.is_(None)
    return ItemDO.parent_id == parent_id


class ItemTree:
    """Read side of a user's item hierarchy.

    Every query is scoped to one owner and skips soft-deleted items unless
    asked otherwise. Absence is reported as None or an empty list, never as
    an exception.
    """

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def direct_children(
        self,
        user_id: int,
        parent_id: int | None,
        item_type: ItemType | None = None,
        include_deleted: bool = False,
    ) -> list[ItemDO]:
        """List one directory level, folders first then by name."""
        stmt = select(ItemDO).where(
            ItemDO.user_id == user_id,
            _parent_filter(parent_id),
        )
        if item_type is not None:
            stmt = stmt.where(ItemDO.type == item_type.value)
        if not include_deleted:
            stmt = stmt.where(ItemDO.is_deleted.is_(False))
        stmt = stmt.order_by(_FOLDER_FIRST, ItemDO.name, ItemDO.id)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def all_descendants_with_level(
        self,
        user_id: int,
        root_id: int,
        max_depth: int = DEFAULT_MAX_DEPTH,
        include_deleted: bool = False,
    ) -> list[tuple[ItemDO, int]]:
        """Return every item below ``root_id`` with its depth (children are 1).

        The whole subtree is fetched with a single recursive query. Rows are
        ordered by level, then folders first, then name. Recursion only
        continues through folders and stops at ``max_depth``.
        """
        base = select(
            ItemDO.id.label("id"),
            ItemDO.type.label("type"),
            literal(1).label("level"),
        ).where(
            ItemDO.user_id == user_id,
            ItemDO.parent_id == root_id,
        )
        if not include_deleted:
            base = base.where(ItemDO.is_deleted.is_(False))
        hierarchy = base.cte(name="hierarchy", recursive=True)

        child = aliased(ItemDO, name="child")
        step = select(
            child.id,
            child.type,
            (hierarchy.c.level + 1).label("level"),
        ).where(
            child.parent_id == hierarchy.c.id,
            child.user_id == user_id,
            hierarchy.c.type == ItemType.FOLDER.value,
            hierarchy.c.level < max_depth,
        )
        if not include_deleted:
            step = step.where(child.is_deleted.is_(False))
        hierarchy = hierarchy.union_all(step)

        stmt = (
            select(ItemDO, hierarchy.c.level)
            .join(hierarchy, ItemDO.id == hierarchy.c.id)
            .order_by(hierarchy.c.level, _FOLDER_FIRST, ItemDO.name, ItemDO.id)
        )
        result = await self.db.execute(stmt)
        return [(row[0], int(row[1])) for row in result.all()]

    async def all_descendants(
        self,
        user_id: int,
        root_id: int,
        max_depth: int = DEFAULT_MAX_DEPTH,
        include_deleted: bool = False,
    ) -> list[ItemDO]:
        """Return every item below ``root_id`` in level order."""
        rows = await self.all_descendants_with_level(
            user_id, root_id, max_depth=max_depth, include_deleted=include_deleted
        )
        return [item for item, _ in rows]

    async def get_item(
        self,
        user_id: int,
        item_id: int,
        item_type: ItemType | None = None,
        include_deleted: bool = False,
    ) -> ItemDO | None:
        """Point lookup scoped by owner and optional type."""
        stmt = select(ItemDO).where(ItemDO.user_id == user_id, ItemDO.id == item_id)
        if item_type is not None:
            stmt = stmt.where(ItemDO.type == item_type.value)
        if not include_deleted:
            stmt = stmt.where(ItemDO.is_deleted.is_(False))
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_deleted_item(self, user_id: int, item_id: int) -> ItemDO | None:
        """Look up an item that is currently in the trash."""
        stmt = select(ItemDO).where(
            ItemDO.user_id == user_id,
            ItemDO.id == item_id,
            ItemDO.is_deleted.is_(True),
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_item_by_name(
        self,
        user_id: int,
        name: str,
        parent_id: int | None,
        include_deleted: bool = False,
    ) -> ItemDO | None:
        """Case-insensitive name lookup within one directory level."""
        stmt = select(ItemDO).where(
            ItemDO.user_id == user_id,
            _parent_filter(parent_id),
            func.lower(ItemDO.name) == name.lower(),
        )
        if not include_deleted:
            stmt = stmt.where(ItemDO.is_deleted.is_(False))
        stmt = stmt.order_by(ItemDO.is_deleted, _FOLDER_FIRST, ItemDO.id).limit(1)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_items_by_ids(self, user_id: int, item_ids: Sequence[int]) -> list[ItemDO]:
        """Fetch the live items among ``item_ids`` that belong to the user."""
        if not item_ids:
            return []
        stmt = (
            select(ItemDO)
            .where(
                ItemDO.user_id == user_id,
                ItemDO.id.in_(list(item_ids)),
                ItemDO.is_deleted.is_(False),
            )
            .order_by(_FOLDER_FIRST, ItemDO.name, ItemDO.id)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def name_exists(
        self,
        name: str,
        item_type: ItemType,
        user_id: int,
        parent_id: int | None,
        exclude_id: int | None = None,
        include_deleted: bool = False,
    ) -> bool:
        """Check whether a sibling of the same type already uses ``name``."""
        stmt = select(ItemDO.id).where(
            ItemDO.user_id == user_id,
            _parent_filter(parent_id),
            ItemDO.type == item_type.value,
            func.lower(ItemDO.name) == name.lower(),
        )
        if exclude_id is not None:
            stmt = stmt.where(ItemDO.id != exclude_id)
        if not include_deleted:
            stmt = stmt.where(ItemDO.is_deleted.is_(False))
        result = await self.db.execute(stmt.limit(1))
        return result.first() is not None

    def _listing_query(
        self, user_id: int, parent_id: int | None, trash_view: bool
    ) -> Select:
        if not trash_view:
            return select(ItemDO).where(
                ItemDO.user_id == user_id,
                _parent_filter(parent_id),
                ItemDO.is_deleted.is_(False),
            )
        # Only the top of each deleted subtree is shown in the trash.
        parent = aliased(ItemDO, name="parent")
        return (
            select(ItemDO)
            .outerjoin(parent, ItemDO.parent_id == parent.id)
            .where(
                ItemDO.user_id == user_id,
                ItemDO.is_deleted.is_(True),
                or_(parent.id.is_(None), parent.is_deleted.is_(False)),
            )
        )

    async def paged_listing(
        self,
        user_id: int,
        parent_id: int | None,
        page: int = 1,
        page_size: int = 20,
        sort_by: str | None = None,
        sort_dir: str | None = None,
        trash_view: bool = False,
    ) -> tuple[list[ItemDO], int]:
        """One page of a directory (or of the trash) plus the total count.

        Folders always come before files whatever the sort key. The parent
        filter does not apply to the trash view.
        """
        page = max(page, 1)
        page_size = max(page_size, 1)
        query = self._listing_query(user_id, parent_id, trash_view)

        count_stmt = select(func.count()).select_from(query.subquery())
        total = int((await self.db.execute(count_stmt)).scalar_one())

        try:
            key = SortKey.from_value((sort_by or SortKey.NAME.value).lower())
        except ValueError:
            key = SortKey.NAME
        descending = (sort_dir or "asc").lower() == "desc"

        if key == SortKey.SIZE:
            column = func.coalesce(ItemDO.file_size, 0)
        elif key == SortKey.MODIFIED:
            column = ItemDO.updated_at
        else:
            column = ItemDO.name
        ordering = column.desc() if descending else column.asc()

        stmt = (
            query.order_by(_FOLDER_FIRST, ordering, ItemDO.id)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all()), total

    async def subtree_usage(
        self, user_id: int, root_id: int, max_depth: int = DEFAULT_MAX_DEPTH
    ) -> tuple[int, int]:
        """Total bytes and file count of the live files below a folder."""
        descendants = await self.all_descendants(user_id, root_id, max_depth=max_depth)
        files = [item for item in descendants if item.is_file]
        return sum(item.file_size or 0 for item in files), len(files)

    async def usage(self, user_id: int) -> int:
        """Total bytes of all live files owned by the user."""
        stmt = select(func.coalesce(func.sum(ItemDO.file_size), 0)).where(
            ItemDO.user_id == user_id,
            ItemDO.type == ItemType.FILE.value,
            ItemDO.is_deleted.is_(False),
        )
        result = await self.db.execute(stmt)
        return int(result.scalar_one())
