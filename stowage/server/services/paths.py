"""Translate item identity into storage locations.

Two representations are used and never mixed:

* a *logical* path is relative to the user's storage root, uses forward
  slashes and has no leading or trailing slash (``"Docs/Sub/b.txt"``).
  This is what ``ItemDO.file_path`` stores.
* a *physical* path is an absolute ``Path`` on disk, produced only by
  ``full_path``/``physical_path`` after the sandbox check.

A trashed folder is parked below ``TRASH_DIR`` in the user root so that
its directory never shares a name with live content.
"""

import logging
import os
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

from ..db.models.item import ItemDO
from ..errors import PathEscapeException

if TYPE_CHECKING:
    from .tree import ItemTree

logger = logging.getLogger(__name__)

TRASH_DIR = ".trash"

__all__ = [
    "TRASH_DIR",
    "PathResolver",
    "is_below",
    "trash_location",
    "join",
    "split",
    "remap_child_path",
    "sibling_path",
]


def split(logical_path: str) -> list[str]:
    """Split a logical path into its non-empty segments."""
    return [part for part in logical_path.replace("\\", "/").split("/") if part]


def join(*parts: str) -> str:
    """Join logical path segments with forward slashes."""
    segments: list[str] = []
    for part in parts:
        if part:
            segments.extend(split(part))
    return "/".join(segments)


def is_below(path: str, folder_path: str) -> bool:
    """True when ``path`` lies strictly below ``folder_path``."""
    parts = split(path)
    folder_parts = split(folder_path)
    return len(parts) > len(folder_parts) and parts[: len(folder_parts)] == folder_parts


def trash_location(item_id: int) -> str:
    """Logical path a trashed folder is parked at."""
    return f"{TRASH_DIR}/{item_id}"


def remap_child_path(old_child_path: str, old_folder_path: str, new_folder_path: str) -> str:
    """Rewrite a descendant path after an ancestor folder moved or was renamed.

    The leading ``old_folder_path`` segments are replaced by the
    ``new_folder_path`` segments and everything below the folder is kept.
    """
    if not is_below(old_child_path, old_folder_path):
        raise ValueError(f"Path '{old_child_path}' is not below '{old_folder_path}'")
    tail = split(old_child_path)[len(split(old_folder_path)) :]
    return "/".join(split(new_folder_path) + tail)


def sibling_path(file_path: str, new_name: str) -> str:
    """Return the path of ``new_name`` in the same directory as ``file_path``."""
    parent = PurePosixPath(join(file_path)).parent
    if str(parent) == ".":
        return new_name
    return f"{parent.as_posix()}/{new_name}"


class PathResolver:
    """Computes and sandboxes per-user storage locations."""

    def __init__(self, storage_root: Path, max_depth: int = 10000) -> None:
        """Create a path resolver rooted at ``storage_root``."""
        self.base = Path(os.path.abspath(storage_root))
        self.max_depth = max_depth

    def user_root(self, user_id: int) -> Path:
        """Absolute storage root for a user, e.g. ``<base>/users/user1``."""
        return self.base / "users" / f"user{user_id}"

    def full_path(self, user_id: int, relative_path: str) -> Path:
        """Resolve a logical path against the user root.

        Raises PathEscapeException when the result is not inside the user
        root. No filesystem call is made before the check passes.
        """
        root = self.user_root(user_id)
        if os.path.isabs(relative_path) or relative_path.startswith(("/", "\\")):
            raise PathEscapeException(f"Absolute path not allowed: {relative_path}")
        resolved = Path(os.path.normpath(root / relative_path.replace("\\", "/")))
        if resolved != root and root not in resolved.parents:
            logger.warning(
                f"Rejected path escape for user {user_id}: {relative_path!r}"
            )
            raise PathEscapeException(f"Path escapes the user storage: {relative_path}")
        return resolved

    def physical_path(self, user_id: int, logical_path: str) -> Path:
        """Disk location for a logical path (with the user root prefix)."""
        return self.full_path(user_id, logical_path)

    async def logical_path(self, tree: "ItemTree", item: ItemDO) -> str:
        """Walk the ancestor chain of ``item`` and join the names.

        The walk stops at a parked folder, whose trash location replaces
        its name and everything above it.
        """
        names: list[str] = []
        seen: set[int] = set()
        current: ItemDO | None = item
        while current is not None:
            if current.id in seen or len(names) >= self.max_depth:
                raise ValueError(f"Cycle or excessive depth above item {item.id}")
            seen.add(current.id)
            if current.trash_path:
                names.append(current.trash_path)
                break
            names.append(current.name)
            if current.parent_id is None:
                break
            parent_id = current.parent_id
            current = await tree.get_item(
                item.user_id, parent_id, include_deleted=True
            )
            if current is None:
                logger.warning(
                    f"Item {item.id} has a dangling ancestor {parent_id}"
                )
        names.reverse()
        return "/".join(names)

    async def parent_logical_path(
        self, tree: "ItemTree", user_id: int, parent_id: int | None
    ) -> str:
        """Logical path of a parent folder, ``""`` for the root level."""
        if parent_id is None:
            return ""
        parent = await tree.get_item(user_id, parent_id, include_deleted=True)
        if parent is None:
            return ""
        return await self.logical_path(tree, parent)
