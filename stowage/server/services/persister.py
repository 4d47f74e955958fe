"""Write planned batches to the database and keep the disk in step.

Each public method runs exactly one transaction. Operations that touch
both the database and the filesystem follow a fixed order:

* relocations (rename, move, parking a trashed folder and restoring it):
  physical move, then commit. A failed commit is compensated by moving
  the content back.
* folder creation: insert, then ``mkdir``. A failed ``mkdir`` deletes the
  row again.
* upload: file written, then insert. A failed insert deletes the file.
* permanent deletion: rows deleted, then the disk. Disk failures are
  logged and reported but the database state stands.
"""

import logging
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..db.models.item import ItemDO
from ..db.session import DatabaseSessionManager
from ..errors import PersistenceException, StorageIOException
from .paths import PathResolver, join
from .storage import LocalItemStorage
from .tree import DEFAULT_MAX_DEPTH, ItemTree

logger = logging.getLogger(__name__)

__all__ = [
    "ItemPersister",
    "DeletionReport",
]


@dataclass
class DeletionReport:
    """Outcome of a permanent deletion."""

    deleted_rows: int = 0
    removed_files: int = 0
    disk_errors: list[str] = field(default_factory=list)


class ItemPersister:
    """Transactional writer for item batches."""

    def __init__(
        self,
        session_manager: DatabaseSessionManager,
        storage: LocalItemStorage,
        paths: PathResolver,
    ) -> None:
        self.session_manager = session_manager
        self.storage = storage
        self.paths = paths

    async def apply_batch(self, session: AsyncSession, items: Sequence[ItemDO]) -> None:
        """Commit every modified row of ``items`` in a single transaction."""
        try:
            session.add_all(items)
            await session.commit()
        except SQLAlchemyError as err:
            await session.rollback()
            logger.exception(f"Batch of {len(items)} items rolled back")
            raise PersistenceException(f"Failed to save changes: {err}") from err
        logger.debug(f"Committed batch of {len(items)} items")

    async def add_item(self, session: AsyncSession, item: ItemDO) -> ItemDO:
        """Insert a new row and return it with its generated id."""
        try:
            session.add(item)
            await session.commit()
        except SQLAlchemyError as err:
            await session.rollback()
            logger.exception(f"Insert of '{item.name}' rolled back")
            raise PersistenceException(f"Failed to save '{item.name}': {err}") from err
        return item

    async def relocate(
        self,
        session: AsyncSession,
        items: Sequence[ItemDO],
        src: Path,
        dst: Path,
    ) -> None:
        """Move ``src`` to ``dst`` on disk, then commit ``items``.

        If the commit fails the move is undone and the original error is
        raised. When the source does not exist on disk only the rows change.
        """
        moved = False
        if src != dst:
            if await self.storage.exists(src):
                await self.storage.move(src, dst)
                moved = True
            else:
                logger.warning(f"Nothing on disk at {src}, updating records only")

        try:
            await self.apply_batch(session, items)
        except PersistenceException:
            if moved:
                await self._compensate_move(dst, src)
            raise

    async def _compensate_move(self, moved_to: Path, original: Path) -> None:
        try:
            await self.storage.move(moved_to, original)
        except StorageIOException:
            logger.exception(
                f"Compensation failed, content left at {moved_to} instead of {original}"
            )
        else:
            logger.error(f"Compensated failed commit by moving {moved_to} back to {original}")

    async def create_folder(
        self, session: AsyncSession, item: ItemDO, directory: Path
    ) -> ItemDO:
        """Insert a folder row, then create its directory."""
        await self.add_item(session, item)
        try:
            await self.storage.make_directory(directory)
        except StorageIOException:
            logger.exception(f"mkdir failed for folder {item.id}, removing its record")
            await self._delete_rows([item.id])
            raise
        return item

    async def store_upload(
        self,
        session: AsyncSession,
        item: ItemDO,
        dest: Path,
        stream: AsyncIterator[bytes],
    ) -> ItemDO:
        """Write the uploaded content to ``dest``, then insert its row."""
        item.file_size = await self.storage.save_stream(dest, stream)
        try:
            await self.add_item(session, item)
        except PersistenceException:
            logger.error(f"Removing orphaned upload {dest}")
            await self.storage.remove_file(dest)
            raise
        return item

    async def _delete_rows(self, item_ids: Sequence[int]) -> int:
        async with self.session_manager.session() as session:
            result = await session.execute(delete(ItemDO).where(ItemDO.id.in_(item_ids)))
            await session.commit()
            return result.rowcount or 0

    async def permanently_delete(
        self,
        session: AsyncSession,
        user_id: int,
        items: Sequence[ItemDO],
        directories: Sequence[str] = (),
    ) -> DeletionReport:
        """Delete the rows of ``items``, then their content on disk.

        Files are removed by their own stored path. ``directories`` are
        logical folder paths, deepest first, and are only removed when
        empty so a live folder of the same name is never touched.
        """
        report = DeletionReport()
        ids = [item.id for item in items]
        if not ids:
            return report
        files = [item.file_path for item in items if item.is_file and item.file_path]

        try:
            result = await session.execute(
                delete(ItemDO).where(ItemDO.user_id == user_id, ItemDO.id.in_(ids))
            )
            await session.commit()
        except SQLAlchemyError as err:
            await session.rollback()
            logger.exception(f"Permanent deletion of {len(ids)} items rolled back")
            raise PersistenceException(f"Failed to delete items: {err}") from err
        report.deleted_rows = result.rowcount or 0

        for file_path in files:
            try:
                await self.storage.remove_file(self.paths.physical_path(user_id, file_path))
                report.removed_files += 1
            except StorageIOException as err:
                logger.error(f"Row deleted but file kept on disk: {err.message}")
                report.disk_errors.append(file_path)

        for directory in directories:
            path = self.paths.physical_path(user_id, directory)
            if not await self.storage.remove_empty_directory(path):
                logger.warning(f"Directory {directory} not empty, leaving it on disk")
        return report

    async def purge(
        self, session: AsyncSession, item: ItemDO, max_depth: int = DEFAULT_MAX_DEPTH
    ) -> DeletionReport:
        """Permanently delete ``item`` and everything below it, trashed or not."""
        tree = ItemTree(session)
        items = [item]
        directories: list[str] = []
        if item.is_folder:
            root_path = await self.paths.logical_path(tree, item)
            folder_paths: dict[int, str] = {item.id: root_path}
            levels: list[tuple[int, str]] = [(0, root_path)]
            rows = await tree.all_descendants_with_level(
                item.user_id, item.id, max_depth=max_depth, include_deleted=True
            )
            for node, level in rows:
                items.append(node)
                if node.is_folder and node.parent_id in folder_paths:
                    folder_paths[node.id] = node.trash_path or join(
                        folder_paths[node.parent_id], node.name
                    )
                    levels.append((level, folder_paths[node.id]))
            directories = [path for _, path in sorted(levels, key=lambda x: -x[0])]
        return await self.permanently_delete(session, item.user_id, items, directories)
