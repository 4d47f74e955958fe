"""Zip archives of folders and selections."""

import asyncio
import logging
import os
import shutil
import tempfile
import zipfile
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from stowage.models.base import ItemType

from ..config import LimitsConfig
from ..db.models.item import ItemDO
from ..db.session import DatabaseSessionManager
from ..errors import (
    ArchiveTooLargeException,
    ItemNotFoundException,
    StorageIOException,
    TooManyFilesException,
)
from .paths import PathResolver
from .storage import CHUNK_SIZE, DownloadStream
from .tree import ItemTree
from .validation import format_file_size, validate_selection

logger = logging.getLogger(__name__)

ZIP_CONTENT_TYPE = "application/zip"


@dataclass
class ArchiveEntry:
    """One member of the archive. ``source`` is None for directory entries."""

    arcname: str
    source: Path | None = None
    size: int = 0

    @property
    def is_dir(self) -> bool:
        return self.source is None


def _unique_name(name: str, used: set[str]) -> str:
    if name not in used:
        used.add(name)
        return name
    stem, dot, suffix = name.rpartition(".")
    if not dot or not stem:
        stem, suffix = name, ""
    else:
        suffix = f".{suffix}"
    counter = 1
    while f"{stem}({counter}){suffix}" in used:
        counter += 1
    candidate = f"{stem}({counter}){suffix}"
    used.add(candidate)
    return candidate


def _write_directory(zf: zipfile.ZipFile, arcname: str) -> None:
    zf.mkdir(arcname)


def _write_file(zf: zipfile.ZipFile, source: Path, arcname: str) -> bool:
    """Copy one file into the archive. Returns False if it vanished from disk."""
    if not source.is_file():
        return False
    info = zipfile.ZipInfo.from_file(source, arcname)
    info.compress_type = zipfile.ZIP_DEFLATED
    with open(source, "rb") as src, zf.open(info, "w") as dest:
        shutil.copyfileobj(src, dest, CHUNK_SIZE)
    return True


class ArchiveStreamer:
    """Builds zip archives from a user's hierarchy.

    The subtree is loaded with one query per selected folder and checked
    against the size and file-count limits before anything is written. The
    archive is assembled in a temporary file which is deleted when the
    returned stream is closed.
    """

    def __init__(
        self,
        session_manager: DatabaseSessionManager,
        paths: PathResolver,
        limits: LimitsConfig,
        temp_dir: Path,
    ) -> None:
        self.session_manager = session_manager
        self.paths = paths
        self.limits = limits
        self.temp_dir = temp_dir

    def _folder_entries(
        self, user_id: int, folder: ItemDO, descendants: Sequence[ItemDO], prefix: str
    ) -> list[ArchiveEntry]:
        """Depth-first entries of a folder, rooted at ``prefix``."""
        by_parent: dict[int | None, list[ItemDO]] = defaultdict(list)
        for node in descendants:
            by_parent[node.parent_id].append(node)

        entries = [ArchiveEntry(f"{prefix}/")]
        stack = [(node, prefix) for node in reversed(by_parent[folder.id])]
        while stack:
            node, base = stack.pop()
            arcname = f"{base}/{node.name}"
            if node.is_folder:
                entries.append(ArchiveEntry(f"{arcname}/"))
                stack.extend((child, arcname) for child in reversed(by_parent[node.id]))
            else:
                entries.append(self._file_entry(user_id, node, arcname))
        return entries

    def _file_entry(self, user_id: int, item: ItemDO, arcname: str) -> ArchiveEntry:
        return ArchiveEntry(
            arcname,
            source=self.paths.physical_path(user_id, item.file_path or item.name),
            size=item.file_size or 0,
        )

    def _check_limits(self, entries: Sequence[ArchiveEntry]) -> None:
        files = [entry for entry in entries if not entry.is_dir]
        total_size = sum(entry.size for entry in files)
        if total_size > self.limits.max_archive_bytes:
            raise ArchiveTooLargeException(
                "Archive size exceeds maximum allowed size of "
                f"{format_file_size(self.limits.max_archive_bytes)}"
            )
        if len(files) > self.limits.max_archive_files:
            raise TooManyFilesException(
                f"Too many files in archive (max {self.limits.max_archive_files})"
            )

    async def stream_folder(self, user_id: int, folder_id: int) -> DownloadStream:
        """Archive a folder and everything live below it."""
        async with self.session_manager.session() as session:
            tree = ItemTree(session)
            folder = await tree.get_item(user_id, folder_id, ItemType.FOLDER)
            if folder is None:
                raise ItemNotFoundException(f"Folder {folder_id} not found")
            descendants = await tree.all_descendants(
                user_id, folder.id, max_depth=self.limits.max_tree_depth
            )
        entries = self._folder_entries(user_id, folder, descendants, folder.name)
        self._check_limits(entries)
        logger.info(
            f"Archiving folder {folder_id} for user {user_id} ({len(entries)} entries)"
        )
        return await self._build(entries, f"{folder.name}.zip")

    async def stream_selection(self, user_id: int, item_ids: Sequence[int]) -> DownloadStream:
        """Archive several items.

        Files sit at the archive root and folders expand under their own
        name. Duplicate ids are collapsed.
        """
        unique_ids = validate_selection(item_ids, self.limits.max_selection_items)
        entries: list[ArchiveEntry] = []
        used_names: set[str] = set()
        async with self.session_manager.session() as session:
            tree = ItemTree(session)
            items = await tree.get_items_by_ids(user_id, unique_ids)
            if len(items) != len(unique_ids):
                missing = set(unique_ids) - {item.id for item in items}
                raise ItemNotFoundException(
                    f"Some items not found or don't belong to you: {sorted(missing)}"
                )
            for item in items:
                name = _unique_name(item.name, used_names)
                if item.is_folder:
                    descendants = await tree.all_descendants(
                        user_id, item.id, max_depth=self.limits.max_tree_depth
                    )
                    entries.extend(self._folder_entries(user_id, item, descendants, name))
                else:
                    entries.append(self._file_entry(user_id, item, name))
        self._check_limits(entries)

        stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        logger.info(
            f"Archiving {len(unique_ids)} selected items for user {user_id} "
            f"({len(entries)} entries)"
        )
        return await self._build(entries, f"selected_items_{stamp}.zip")

    async def _build(self, entries: Sequence[ArchiveEntry], filename: str) -> DownloadStream:
        await asyncio.to_thread(self.temp_dir.mkdir, parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(suffix=".zip", dir=self.temp_dir)
        os.close(fd)
        temp_path = Path(temp_name)
        try:
            zf = await asyncio.to_thread(
                zipfile.ZipFile, temp_path, "w", zipfile.ZIP_DEFLATED
            )
            try:
                for entry in entries:
                    if entry.source is None:
                        await asyncio.to_thread(_write_directory, zf, entry.arcname)
                    elif not await asyncio.to_thread(
                        _write_file, zf, entry.source, entry.arcname
                    ):
                        logger.warning(
                            f"File not found on disk, skipping: {entry.source}"
                        )
            finally:
                await asyncio.to_thread(zf.close)
            size = (await asyncio.to_thread(temp_path.stat)).st_size
        except OSError as err:
            await asyncio.to_thread(temp_path.unlink, missing_ok=True)
            logger.exception(f"Failed to build archive {filename}")
            raise StorageIOException(f"Failed to build archive: {err}") from err
        except BaseException:
            await asyncio.to_thread(temp_path.unlink, missing_ok=True)
            raise

        return DownloadStream(
            path=temp_path,
            filename=filename,
            content_type=ZIP_CONTENT_TYPE,
            size=size,
            delete_on_close=True,
        )
