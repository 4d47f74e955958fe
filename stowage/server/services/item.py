"""Item application service.

Entry point for every operation on a user's files and folders. Each call
validates its input, reads the hierarchy, plans the row changes and hands
them to the persister. Structural mutations of one user are serialized.
Every public method returns a result object and never raises.
"""

import logging
import math
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar

from stowage.models.base import BaseResponse, ItemType
from stowage.models.item import (
    BatchResult,
    FolderSizesVO,
    FolderSizeVO,
    ItemListVO,
    ItemResult,
    ItemVO,
    StorageUsageVO,
)

from ..config import LimitsConfig
from ..db.models.item import ItemDO
from ..db.session import DatabaseSessionManager
from ..errors import (
    ErrorCode,
    InvalidMoveException,
    ItemNotFoundException,
    ItemServiceException,
    NameConflictException,
    ParentFolderDeletedException,
)
from ..utils.mime import guess_mime_type
from .archive import ArchiveStreamer
from .coordination import UserLocks
from .paths import PathResolver, join, sibling_path, trash_location
from .persister import ItemPersister
from .planner import (
    plan_move,
    plan_rename,
    plan_restore,
    plan_soft_delete,
    would_create_cycle,
)
from .storage import DownloadStream, LocalItemStorage
from .tree import ItemTree
from .validation import format_file_size, validate_item_name, validate_upload

logger = logging.getLogger(__name__)

__all__ = [
    "ItemService",
    "UploadSource",
    "DownloadResult",
    "to_item_vo",
]

_R = TypeVar("_R", bound=BaseResponse)


@dataclass
class UploadSource:
    """An uploaded file as handed over by the transport."""

    filename: str
    content_length: int
    content_type: str | None
    stream: AsyncIterator[bytes]


@dataclass
class DownloadResult:
    """Result of a download request. ``stream`` is set on success only."""

    response: BaseResponse
    stream: DownloadStream | None = None


def to_item_vo(item: ItemDO) -> ItemVO:
    """Convert an ItemDO to its public view."""
    return ItemVO(
        id=item.id,
        name=item.name,
        type=item.type,
        parent_id=item.parent_id,
        file_path=item.file_path,
        file_size=item.file_size,
        mime_type=item.mime_type,
        is_deleted=item.is_deleted,
        deleted_at=item.deleted_at,
        created_at=item.created_at,
        updated_at=item.updated_at,
    )


def _failure(result_cls: type[_R], err: Exception, action: str) -> _R:
    if isinstance(err, ItemServiceException):
        logger.warning(f"{action} failed: {err.message}")
        return result_cls(success=False, error_code=err.code.value, error_msg=err.message)
    logger.exception(f"{action} failed unexpectedly")
    return result_cls(
        success=False,
        error_code=ErrorCode.UNEXPECTED_ERROR.value,
        error_msg="An unexpected error occurred",
    )


class ItemService:
    """Files and folders of every user."""

    def __init__(
        self,
        session_manager: DatabaseSessionManager,
        paths: PathResolver,
        storage: LocalItemStorage,
        persister: ItemPersister,
        archive: ArchiveStreamer,
        limits: LimitsConfig,
        locks: UserLocks | None = None,
    ) -> None:
        self.session_manager = session_manager
        self.paths = paths
        self.storage = storage
        self.persister = persister
        self.archive = archive
        self.limits = limits
        self.locks = locks or UserLocks()

    async def _require_item(
        self, tree: ItemTree, user_id: int, item_id: int, item_type: ItemType | None = None
    ) -> ItemDO:
        item = await tree.get_item(user_id, item_id, item_type)
        if item is None:
            kind = item_type.value.capitalize() if item_type else "Item"
            raise ItemNotFoundException(f"{kind} {item_id} not found")
        return item

    async def _require_parent(
        self, tree: ItemTree, user_id: int, parent_id: int | None
    ) -> None:
        if parent_id is None:
            return
        if await tree.get_item(user_id, parent_id, ItemType.FOLDER) is None:
            raise ItemNotFoundException(f"The destination folder {parent_id} does not exist")

    async def _check_unique(
        self,
        tree: ItemTree,
        name: str,
        item_type: ItemType,
        user_id: int,
        parent_id: int | None,
        exclude_id: int | None = None,
    ) -> None:
        if await tree.name_exists(name, item_type, user_id, parent_id, exclude_id=exclude_id):
            raise NameConflictException(
                f"A {item_type.value} named '{name}' already exists in this location"
            )

    # Queries

    async def list_items(
        self,
        user_id: int,
        parent_id: int | None = None,
        page: int = 1,
        page_size: int = 20,
        sort_by: str | None = None,
        sort_dir: str | None = None,
        trash_view: bool = False,
    ) -> ItemListVO:
        """One page of a folder (or of the trash) with pagination metadata."""
        page = max(page, 1)
        page_size = max(page_size, 1)
        try:
            async with self.session_manager.session() as session:
                tree = ItemTree(session)
                if not trash_view:
                    await self._require_parent(tree, user_id, parent_id)
                items, total = await tree.paged_listing(
                    user_id,
                    parent_id,
                    page=page,
                    page_size=page_size,
                    sort_by=sort_by,
                    sort_dir=sort_dir,
                    trash_view=trash_view,
                )
        except Exception as err:
            return _failure(ItemListVO, err, f"List of folder {parent_id}")

        total_pages = math.ceil(total / page_size) if total else 0
        return ItemListVO(
            items=[to_item_vo(item) for item in items],
            total_count=total,
            total_pages=total_pages,
            current_page=page,
            page_size=page_size,
            has_next=page < total_pages,
            has_previous=page > 1,
        )

    async def get_item(self, user_id: int, item_id: int) -> ItemResult:
        try:
            async with self.session_manager.session() as session:
                item = await self._require_item(ItemTree(session), user_id, item_id)
        except Exception as err:
            return _failure(ItemResult, err, f"Lookup of item {item_id}")
        return ItemResult(item=to_item_vo(item))

    async def folder_size(self, user_id: int, folder_id: int) -> FolderSizeVO:
        """Total size and file count of the live files below a folder."""
        try:
            async with self.session_manager.session() as session:
                tree = ItemTree(session)
                await self._require_item(tree, user_id, folder_id, ItemType.FOLDER)
                total, count = await tree.subtree_usage(
                    user_id, folder_id, max_depth=self.limits.max_tree_depth
                )
        except Exception as err:
            return _failure(FolderSizeVO, err, f"Size of folder {folder_id}")
        return FolderSizeVO(
            folder_id=folder_id,
            total_size=total,
            file_count=count,
            formatted_size=format_file_size(total),
        )

    async def folder_sizes(self, user_id: int, folder_ids: Sequence[int]) -> FolderSizesVO:
        """Sizes of several folders. Unknown folders are left out."""
        sizes: dict[int, FolderSizeVO] = {}
        for folder_id in dict.fromkeys(folder_ids):
            result = await self.folder_size(user_id, folder_id)
            if result.success:
                sizes[folder_id] = result
            elif result.error_code != ErrorCode.ITEM_NOT_FOUND.value:
                return FolderSizesVO(
                    success=False, error_code=result.error_code, error_msg=result.error_msg
                )
        return FolderSizesVO(sizes=sizes)

    # Creation

    async def create_folder(
        self, user_id: int, name: str, parent_id: int | None = None
    ) -> ItemResult:
        """Create a folder row and its directory."""
        logger.info(f"Creating folder '{name}' under {parent_id} for user {user_id}")
        try:
            validate_item_name(name)
            async with self.locks.lock(user_id):
                async with self.session_manager.session() as session:
                    tree = ItemTree(session)
                    await self._require_parent(tree, user_id, parent_id)
                    await self._check_unique(tree, name, ItemType.FOLDER, user_id, parent_id)
                    parent_path = await self.paths.parent_logical_path(tree, user_id, parent_id)
                    directory = self.paths.physical_path(user_id, join(parent_path, name))
                    await self._check_disk_target(directory, name)
                    item = ItemDO(
                        user_id=user_id,
                        name=name,
                        type=ItemType.FOLDER.value,
                        parent_id=parent_id,
                    )
                    await self.persister.create_folder(session, item, directory)
        except Exception as err:
            return _failure(ItemResult, err, f"Create folder '{name}'")
        logger.info(f"Created folder {item.id} '{name}' for user {user_id}")
        return ItemResult(item=to_item_vo(item))

    async def upload_file(
        self, user_id: int, source: UploadSource, parent_id: int | None = None
    ) -> ItemResult:
        """Store an uploaded file.

        The display name must be unique among live siblings. On disk the
        file gets the first free ``name(N).ext`` so that trashed content
        left in the directory is never overwritten.
        """
        logger.info(f"Uploading '{source.filename}' under {parent_id} for user {user_id}")
        try:
            name = validate_upload(
                source.filename, source.content_length, self.limits.max_upload_bytes
            )
            async with self.locks.lock(user_id):
                async with self.session_manager.session() as session:
                    tree = ItemTree(session)
                    await self._require_parent(tree, user_id, parent_id)
                    await self._check_unique(tree, name, ItemType.FILE, user_id, parent_id)
                    parent_path = await self.paths.parent_logical_path(tree, user_id, parent_id)
                    directory = self.paths.physical_path(user_id, parent_path)
                    disk_name = await self.storage.available_name(directory, name)
                    file_path = join(parent_path, disk_name)
                    item = ItemDO(
                        user_id=user_id,
                        name=name,
                        type=ItemType.FILE.value,
                        parent_id=parent_id,
                        file_path=file_path,
                        mime_type=guess_mime_type(name, source.content_type),
                    )
                    await self.persister.store_upload(
                        session,
                        item,
                        self.paths.physical_path(user_id, file_path),
                        source.stream,
                    )
        except Exception as err:
            return _failure(ItemResult, err, f"Upload of '{source.filename}'")
        logger.info(f"Uploaded file {item.id} '{name}' ({item.file_size} bytes)")
        return ItemResult(item=to_item_vo(item))

    # Structural mutations

    async def rename_item(self, user_id: int, item_id: int, new_name: str) -> BatchResult:
        """Rename a file or folder and remap every stored path below it."""
        logger.info(f"Renaming item {item_id} to '{new_name}' for user {user_id}")
        try:
            validate_item_name(new_name)
            async with self.locks.lock(user_id):
                async with self.session_manager.session() as session:
                    tree = ItemTree(session)
                    item = await self._require_item(tree, user_id, item_id)
                    if item.name == new_name:
                        return BatchResult(item_id=item.id, new_name=new_name)
                    item_type = ItemType.from_value(item.type)
                    await self._check_unique(
                        tree, new_name, item_type, user_id, item.parent_id, exclude_id=item.id
                    )

                    if item.is_file:
                        src = self.paths.physical_path(user_id, item.file_path or item.name)
                        disk_name = new_name
                        if (src.parent / new_name) != src:
                            disk_name = await self.storage.available_name(src.parent, new_name)
                        batch = plan_rename(item, new_name, disk_name=disk_name)
                        dst = self.paths.physical_path(user_id, item.file_path or new_name)
                    else:
                        old_path = await self.paths.logical_path(tree, item)
                        new_path = sibling_path(old_path, new_name)
                        src = self.paths.physical_path(user_id, old_path)
                        dst = self.paths.physical_path(user_id, new_path)
                        await self._check_disk_target(dst, new_name, src)
                        descendants = await tree.all_descendants(
                            user_id,
                            item.id,
                            max_depth=self.limits.max_tree_depth,
                            include_deleted=True,
                        )
                        batch = plan_rename(
                            item, new_name, descendants, old_folder_path=old_path
                        )
                    await self.persister.relocate(session, batch, src, dst)
        except Exception as err:
            return _failure(BatchResult, err, f"Rename of item {item_id}")
        logger.info(f"Renamed item {item_id} to '{new_name}' ({len(batch)} rows)")
        return BatchResult(item_id=item_id, affected_count=len(batch), new_name=new_name)

    async def _check_disk_target(self, dst: Path, name: str, src: Path | None = None) -> None:
        # Trashed folders are parked elsewhere, so only a file of the same
        # name can be in the way here.
        if src != dst and await self.storage.exists(dst):
            raise NameConflictException(
                f"'{name}' is already taken on disk at this location"
            )

    async def move_item(
        self, user_id: int, item_id: int, new_parent_id: int | None
    ) -> BatchResult:
        """Reparent a file or folder.

        A folder can not be moved into itself or one of its descendants.
        """
        logger.info(f"Moving item {item_id} to {new_parent_id} for user {user_id}")
        try:
            async with self.locks.lock(user_id):
                async with self.session_manager.session() as session:
                    tree = ItemTree(session)
                    item = await self._require_item(tree, user_id, item_id)
                    if item.parent_id == new_parent_id:
                        return BatchResult(item_id=item.id, new_name=item.name)

                    descendants: list[ItemDO] = []
                    if item.is_folder:
                        descendants = await tree.all_descendants(
                            user_id,
                            item.id,
                            max_depth=self.limits.max_tree_depth,
                            include_deleted=True,
                        )
                        if would_create_cycle(item, new_parent_id, descendants):
                            raise InvalidMoveException(
                                "A folder can not be moved into itself or its subfolders"
                            )
                    await self._require_parent(tree, user_id, new_parent_id)
                    item_type = ItemType.from_value(item.type)
                    await self._check_unique(
                        tree, item.name, item_type, user_id, new_parent_id, exclude_id=item.id
                    )

                    parent_path = await self.paths.parent_logical_path(
                        tree, user_id, new_parent_id
                    )
                    if item.is_file:
                        old_path = item.file_path or item.name
                        src = self.paths.physical_path(user_id, old_path)
                        disk_name = await self.storage.available_name(
                            self.paths.physical_path(user_id, parent_path), item.name
                        )
                        batch = plan_move(
                            item, new_parent_id, [], old_path, parent_path, disk_name=disk_name
                        )
                        dst = self.paths.physical_path(user_id, item.file_path or disk_name)
                    else:
                        old_path = await self.paths.logical_path(tree, item)
                        src = self.paths.physical_path(user_id, old_path)
                        dst = self.paths.physical_path(user_id, join(parent_path, item.name))
                        await self._check_disk_target(dst, item.name, src)
                        batch = plan_move(item, new_parent_id, descendants, old_path, parent_path)
                    await self.persister.relocate(session, batch, src, dst)
        except Exception as err:
            return _failure(BatchResult, err, f"Move of item {item_id}")
        logger.info(f"Moved item {item_id} to {new_parent_id} ({len(batch)} rows)")
        return BatchResult(item_id=item_id, affected_count=len(batch), new_name=item.name)

    async def soft_delete_item(self, user_id: int, item_id: int) -> BatchResult:
        """Move an item and its live subtree to the trash in one batch.

        A file stays where it is since its disk name is unique. A folder's
        directory is parked in the user's trash area so the name is free
        for live content again.
        """
        logger.info(f"Deleting item {item_id} for user {user_id}")
        try:
            async with self.locks.lock(user_id):
                async with self.session_manager.session() as session:
                    tree = ItemTree(session)
                    item = await self._require_item(tree, user_id, item_id)
                    if item.is_file:
                        batch = plan_soft_delete(item)
                        affected = len(batch)
                        await self.persister.apply_batch(session, batch)
                    else:
                        old_path = await self.paths.logical_path(tree, item)
                        parked_path = trash_location(item.id)
                        descendants = await tree.all_descendants(
                            user_id,
                            item.id,
                            max_depth=self.limits.max_tree_depth,
                            include_deleted=True,
                        )
                        affected = 1 + sum(1 for node in descendants if not node.is_deleted)
                        batch = plan_soft_delete(
                            item, descendants, old_folder_path=old_path, trash_path=parked_path
                        )
                        await self.persister.relocate(
                            session,
                            batch,
                            self.paths.physical_path(user_id, old_path),
                            self.paths.physical_path(user_id, parked_path),
                        )
        except Exception as err:
            return _failure(BatchResult, err, f"Delete of item {item_id}")
        logger.info(f"Moved item {item_id} to the trash ({affected} items, {len(batch)} rows)")
        return BatchResult(item_id=item_id, affected_count=affected)

    async def restore_item(self, user_id: int, item_id: int) -> BatchResult:
        """Bring an item back from the trash.

        Restoring a live item is a no-op. A folder comes back with the
        descendants that were deleted in the same cascade; anything trashed
        earlier stays in the trash.
        """
        logger.info(f"Restoring item {item_id} for user {user_id}")
        try:
            async with self.locks.lock(user_id):
                async with self.session_manager.session() as session:
                    tree = ItemTree(session)
                    item = await tree.get_item(user_id, item_id, include_deleted=True)
                    if item is None:
                        raise ItemNotFoundException(f"Item {item_id} not found")
                    if not item.is_deleted:
                        return BatchResult(item_id=item.id)

                    if item.parent_id is not None:
                        parent = await tree.get_item(
                            user_id, item.parent_id, include_deleted=True
                        )
                        if parent is None or parent.is_deleted:
                            raise ParentFolderDeletedException(
                                "The parent folder is deleted, restore it first"
                            )
                    item_type = ItemType.from_value(item.type)
                    await self._check_unique(
                        tree, item.name, item_type, user_id, item.parent_id, exclude_id=item.id
                    )

                    items = [item]
                    descendants: list[ItemDO] = []
                    if item.is_folder:
                        descendants = await tree.all_descendants(
                            user_id,
                            item.id,
                            max_depth=self.limits.max_tree_depth,
                            include_deleted=True,
                        )
                        items.extend(
                            node
                            for node in descendants
                            if node.is_deleted and node.deleted_at == item.deleted_at
                        )

                    if item.trash_path:
                        parent_path = await self.paths.parent_logical_path(
                            tree, user_id, item.parent_id
                        )
                        restored_path = join(parent_path, item.name)
                        src = self.paths.physical_path(user_id, item.trash_path)
                        dst = self.paths.physical_path(user_id, restored_path)
                        await self._check_disk_target(dst, item.name, src)
                        batch = plan_restore(items, descendants, restored_path)
                        await self.persister.relocate(session, batch, src, dst)
                    else:
                        batch = plan_restore(items)
                        await self.persister.apply_batch(session, batch)
        except Exception as err:
            return _failure(BatchResult, err, f"Restore of item {item_id}")
        logger.info(f"Restored item {item_id} ({len(items)} items, {len(batch)} rows)")
        return BatchResult(item_id=item_id, affected_count=len(items))

    async def permanently_delete_item(self, user_id: int, item_id: int) -> BatchResult:
        """Remove a trashed item and its subtree from the database and disk."""
        logger.info(f"Permanently deleting item {item_id} for user {user_id}")
        try:
            async with self.locks.lock(user_id):
                async with self.session_manager.session() as session:
                    item = await ItemTree(session).get_deleted_item(user_id, item_id)
                    if item is None:
                        raise ItemNotFoundException(f"Item {item_id} not found in the trash")
                    report = await self.persister.purge(
                        session, item, max_depth=self.limits.max_tree_depth
                    )
        except Exception as err:
            return _failure(BatchResult, err, f"Permanent delete of item {item_id}")

        result = BatchResult(item_id=item_id, affected_count=report.deleted_rows)
        if report.disk_errors:
            result.error_code = ErrorCode.IO_ERROR.value
            result.error_msg = (
                f"{len(report.disk_errors)} files could not be removed from disk"
            )
        return result

    # Downloads

    async def download_file(self, user_id: int, file_id: int) -> DownloadResult:
        try:
            async with self.session_manager.session() as session:
                item = await self._require_item(
                    ItemTree(session), user_id, file_id, ItemType.FILE
                )
            path = self.paths.physical_path(user_id, item.file_path or item.name)
            stream = await self.storage.open_stream(
                path, item.name, item.mime_type or guess_mime_type(item.name)
            )
        except Exception as err:
            return DownloadResult(_failure(BaseResponse, err, f"Download of file {file_id}"))
        return DownloadResult(BaseResponse(), stream)

    async def download_folder(self, user_id: int, folder_id: int) -> DownloadResult:
        try:
            stream = await self.archive.stream_folder(user_id, folder_id)
        except Exception as err:
            return DownloadResult(_failure(BaseResponse, err, f"Archive of folder {folder_id}"))
        return DownloadResult(BaseResponse(), stream)

    async def download_selection(
        self, user_id: int, item_ids: Sequence[int]
    ) -> DownloadResult:
        try:
            stream = await self.archive.stream_selection(user_id, item_ids)
        except Exception as err:
            return DownloadResult(_failure(BaseResponse, err, "Archive of selection"))
        return DownloadResult(BaseResponse(), stream)

    async def usage(self, user_id: int) -> StorageUsageVO:
        """Bytes used by the live files of a user."""
        try:
            async with self.session_manager.session() as session:
                used = await ItemTree(session).usage(user_id)
        except Exception as err:
            return _failure(StorageUsageVO, err, f"Usage of user {user_id}")
        return StorageUsageVO(used_bytes=used, formatted_size=format_file_size(used))
