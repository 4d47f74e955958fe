"""Compute the row changes for structural mutations.

The functions here only modify the ``ItemDO`` objects they are given and
return the batch that has to be written. They do no I/O, so the caller
decides when the batch reaches the database and what happens on disk.
"""

import logging
from collections.abc import Sequence

from ..db.models.item import ItemDO, now_ms
from .paths import is_below, join, remap_child_path, sibling_path

logger = logging.getLogger(__name__)

__all__ = [
    "plan_rename",
    "plan_move",
    "plan_soft_delete",
    "plan_restore",
    "would_create_cycle",
]


def _remap_descendants(
    descendants: Sequence[ItemDO], old_folder_path: str, new_folder_path: str, now: int
) -> list[ItemDO]:
    changed: list[ItemDO] = []
    for child in descendants:
        if not child.is_file or not child.file_path:
            continue
        # Parked in the trash area, not inside this folder.
        if not is_below(child.file_path, old_folder_path):
            continue
        child.file_path = remap_child_path(child.file_path, old_folder_path, new_folder_path)
        child.updated_at = now
        changed.append(child)
    return changed


def plan_rename(
    item: ItemDO,
    new_name: str,
    descendants: Sequence[ItemDO] = (),
    old_folder_path: str | None = None,
    disk_name: str | None = None,
    now: int | None = None,
) -> list[ItemDO]:
    """Rename ``item`` and rewrite the stored paths that depend on its name.

    For a file the sibling path is recomputed from ``disk_name`` (defaults
    to ``new_name``). For a folder ``old_folder_path`` is its logical path
    before the rename and every descendant file path is remapped.
    """
    now = now if now is not None else now_ms()
    item.name = new_name
    item.updated_at = now
    batch = [item]

    if item.is_file:
        if item.file_path:
            item.file_path = sibling_path(item.file_path, disk_name or new_name)
        return batch

    if old_folder_path is None:
        raise ValueError("old_folder_path is required to rename a folder")
    new_folder_path = sibling_path(old_folder_path, new_name)
    batch.extend(_remap_descendants(descendants, old_folder_path, new_folder_path, now))
    return batch


def plan_move(
    item: ItemDO,
    new_parent_id: int | None,
    descendants: Sequence[ItemDO],
    old_logical_path: str,
    new_parent_logical_path: str,
    disk_name: str | None = None,
    now: int | None = None,
) -> list[ItemDO]:
    """Reparent ``item`` and rewrite the stored paths below its new location."""
    now = now if now is not None else now_ms()
    item.parent_id = new_parent_id
    item.updated_at = now
    batch = [item]

    if item.is_file:
        item.file_path = join(new_parent_logical_path, disk_name or item.name)
        return batch

    new_folder_path = join(new_parent_logical_path, item.name)
    batch.extend(_remap_descendants(descendants, old_logical_path, new_folder_path, now))
    return batch


def plan_soft_delete(
    item: ItemDO,
    descendants: Sequence[ItemDO] = (),
    old_folder_path: str | None = None,
    trash_path: str | None = None,
    now: int | None = None,
) -> list[ItemDO]:
    """Mark ``item`` and its live descendants as deleted.

    Every row of the batch shares the same ``deleted_at`` so that a later
    restore can tell this cascade apart from earlier deletions. When
    ``trash_path`` is given the folder is parked there: it records the
    location and every file below ``old_folder_path``, trashed earlier or
    not, is remapped into it.
    """
    now = now if now is not None else now_ms()
    batch: list[ItemDO] = []
    for node in [item, *descendants]:
        if node.is_deleted:
            continue
        node.is_deleted = True
        node.deleted_at = now
        node.updated_at = now
        batch.append(node)

    if trash_path is None:
        return batch
    if not item.is_folder or old_folder_path is None:
        raise ValueError("Only a folder with a known path can be parked")
    item.trash_path = trash_path
    return _merge(batch, _remap_descendants(descendants, old_folder_path, trash_path, now))


def plan_restore(
    items: Sequence[ItemDO],
    descendants: Sequence[ItemDO] = (),
    restored_path: str | None = None,
    now: int | None = None,
) -> list[ItemDO]:
    """Clear the deletion flags on ``items``.

    If the first item is a parked folder, ``restored_path`` is where its
    directory goes back to and every file below the trash location is
    remapped there.
    """
    now = now if now is not None else now_ms()
    for node in items:
        node.is_deleted = False
        node.deleted_at = None
        node.updated_at = now
    batch = list(items)

    folder = batch[0] if batch else None
    if folder is None or not folder.trash_path:
        return batch
    if restored_path is None:
        raise ValueError("restored_path is required to restore a parked folder")
    parked_path = folder.trash_path
    folder.trash_path = None
    return _merge(batch, _remap_descendants(descendants, parked_path, restored_path, now))


def _merge(batch: list[ItemDO], extra: Sequence[ItemDO]) -> list[ItemDO]:
    seen = {id(node) for node in batch}
    batch.extend(node for node in extra if id(node) not in seen)
    return batch


def would_create_cycle(
    item: ItemDO, target_parent_id: int | None, descendants: Sequence[ItemDO]
) -> bool:
    """True when moving ``item`` under ``target_parent_id`` would form a loop."""
    if target_parent_id is None:
        return False
    if target_parent_id == item.id:
        return True
    return any(node.id == target_parent_id for node in descendants)
