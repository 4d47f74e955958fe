import pytest

from stowage.models.base import ItemType
from stowage.server.db.models.item import ItemDO
from stowage.server.services.planner import (
    plan_move,
    plan_rename,
    plan_restore,
    plan_soft_delete,
    would_create_cycle,
)

NOW = 1_700_000_000_000


def _folder(item_id: int, name: str, parent_id: int | None = None) -> ItemDO:
    return ItemDO(
        id=item_id,
        user_id=1,
        name=name,
        type=ItemType.FOLDER.value,
        parent_id=parent_id,
        is_deleted=False,
    )


def _file(item_id: int, name: str, parent_id: int | None, file_path: str) -> ItemDO:
    return ItemDO(
        id=item_id,
        user_id=1,
        name=name,
        type=ItemType.FILE.value,
        parent_id=parent_id,
        file_path=file_path,
        file_size=1,
        is_deleted=False,
    )


@pytest.fixture
def docs() -> tuple[ItemDO, list[ItemDO]]:
    docs = _folder(10, "Docs")
    descendants = [
        _folder(12, "Sub", 10),
        _file(11, "a.txt", 10, "Docs/a.txt"),
        _file(13, "b.txt", 12, "Docs/Sub/b.txt"),
    ]
    return docs, descendants


def test_plan_rename_folder_remaps_descendants(docs: tuple[ItemDO, list[ItemDO]]) -> None:
    folder, descendants = docs
    batch = plan_rename(
        folder, "Documents", descendants, old_folder_path="Docs", now=NOW
    )

    assert folder.name == "Documents"
    assert [item.id for item in batch] == [10, 11, 13]
    paths = {item.id: item.file_path for item in descendants if item.file_path}
    assert paths == {11: "Documents/a.txt", 13: "Documents/Sub/b.txt"}
    assert all(item.updated_at == NOW for item in batch)


def test_plan_rename_nested_folder() -> None:
    folder = _folder(3, "C", 2)
    descendants = [_folder(4, "F", 3), _file(5, "x.txt", 4, "A/B/C/F/x.txt")]

    plan_rename(folder, "C2", descendants, old_folder_path="A/B/C", now=NOW)

    assert descendants[1].file_path == "A/B/C2/F/x.txt"


def test_plan_rename_folder_requires_old_path(docs: tuple[ItemDO, list[ItemDO]]) -> None:
    folder, descendants = docs
    with pytest.raises(ValueError):
        plan_rename(folder, "Documents", descendants)


def test_plan_rename_file() -> None:
    item = _file(13, "b.txt", 12, "Docs/Sub/b.txt")
    batch = plan_rename(item, "c.txt", now=NOW)

    assert batch == [item]
    assert item.name == "c.txt"
    assert item.file_path == "Docs/Sub/c.txt"


def test_plan_rename_file_with_disk_name() -> None:
    item = _file(13, "b.txt", 12, "Docs/Sub/b.txt")
    plan_rename(item, "c.txt", disk_name="c(1).txt", now=NOW)

    assert item.name == "c.txt"
    assert item.file_path == "Docs/Sub/c(1).txt"


def test_plan_soft_delete_shares_timestamp(docs: tuple[ItemDO, list[ItemDO]]) -> None:
    folder, descendants = docs
    batch = plan_soft_delete(folder, descendants, now=NOW)

    assert len(batch) == 4
    assert all(item.is_deleted for item in batch)
    assert {item.deleted_at for item in batch} == {NOW}


def test_plan_soft_delete_file_is_singleton() -> None:
    item = _file(11, "a.txt", 10, "Docs/a.txt")
    assert plan_soft_delete(item, now=NOW) == [item]
    assert item.is_deleted


def test_plan_restore_clears_flags(docs: tuple[ItemDO, list[ItemDO]]) -> None:
    folder, descendants = docs
    plan_soft_delete(folder, descendants, now=NOW)

    batch = plan_restore([folder, *descendants], now=NOW + 1)

    assert len(batch) == 4
    assert not any(item.is_deleted for item in batch)
    assert all(item.deleted_at is None for item in batch)


def test_plan_soft_delete_parks_folder(docs: tuple[ItemDO, list[ItemDO]]) -> None:
    folder, descendants = docs
    earlier = descendants[2]
    plan_soft_delete(earlier, now=NOW - 1)

    batch = plan_soft_delete(
        folder, descendants, old_folder_path="Docs", trash_path=".trash/10", now=NOW
    )

    assert folder.trash_path == ".trash/10"
    assert [item.id for item in batch] == [10, 12, 11, 13]
    paths = {item.id: item.file_path for item in descendants if item.file_path}
    assert paths == {11: ".trash/10/a.txt", 13: ".trash/10/Sub/b.txt"}
    # Trashed earlier on its own, so it keeps its own deletion time
    assert earlier.deleted_at == NOW - 1


def test_plan_soft_delete_park_requires_folder_path() -> None:
    with pytest.raises(ValueError):
        plan_soft_delete(_folder(10, "Docs"), trash_path=".trash/10", now=NOW)


def test_plan_restore_unparks_folder(docs: tuple[ItemDO, list[ItemDO]]) -> None:
    folder, descendants = docs
    plan_soft_delete(
        folder, descendants, old_folder_path="Docs", trash_path=".trash/10", now=NOW
    )

    batch = plan_restore([folder, *descendants], descendants, "Archive/Docs", now=NOW + 1)

    assert folder.trash_path is None
    assert len(batch) == 4
    paths = {item.id: item.file_path for item in descendants if item.file_path}
    assert paths == {11: "Archive/Docs/a.txt", 13: "Archive/Docs/Sub/b.txt"}


def test_remap_skips_content_parked_elsewhere(docs: tuple[ItemDO, list[ItemDO]]) -> None:
    folder, descendants = docs
    parked = _file(14, "c.txt", 12, ".trash/12/c.txt")

    batch = plan_rename(
        folder, "Documents", [*descendants, parked], old_folder_path="Docs", now=NOW
    )

    assert parked not in batch
    assert parked.file_path == ".trash/12/c.txt"


def test_plan_restore_is_idempotent() -> None:
    item = _file(11, "a.txt", 10, "Docs/a.txt")
    plan_restore([item], now=NOW)
    plan_restore([item], now=NOW)
    assert not item.is_deleted
    assert item.deleted_at is None


def test_plan_move_folder(docs: tuple[ItemDO, list[ItemDO]]) -> None:
    folder, descendants = docs
    batch = plan_move(folder, 20, descendants, "Docs", "Archive/2024", now=NOW)

    assert folder.parent_id == 20
    assert len(batch) == 3
    assert descendants[1].file_path == "Archive/2024/Docs/a.txt"
    assert descendants[2].file_path == "Archive/2024/Docs/Sub/b.txt"


def test_plan_move_file_to_root() -> None:
    item = _file(13, "b.txt", 12, "Docs/Sub/b.txt")
    plan_move(item, None, [], "Docs/Sub/b.txt", "", disk_name="b(1).txt", now=NOW)

    assert item.parent_id is None
    assert item.file_path == "b(1).txt"


def test_would_create_cycle(docs: tuple[ItemDO, list[ItemDO]]) -> None:
    folder, descendants = docs
    assert would_create_cycle(folder, 10, descendants)
    assert would_create_cycle(folder, 12, descendants)
    assert not would_create_cycle(folder, 99, descendants)
    assert not would_create_cycle(folder, None, descendants)
