import zipfile
from pathlib import Path

import pytest
from freezegun import freeze_time

from stowage.server.config import LimitsConfig
from stowage.server.db.session import DatabaseSessionManager
from stowage.server.errors import (
    ArchiveTooLargeException,
    ErrorCode,
    ItemNotFoundException,
    TooManyFilesException,
    ValidationException,
)
from stowage.server.services.archive import ArchiveStreamer
from stowage.server.services.item import ItemService
from stowage.server.services.paths import PathResolver
from stowage.server.services.storage import DownloadStream
from tests.conftest import UploadFn


def _read_zip(stream: DownloadStream) -> dict[str, bytes]:
    with zipfile.ZipFile(stream.path) as zf:
        return {name: zf.read(name) for name in zf.namelist()}


@pytest.fixture
def small_archive(
    session_manager: DatabaseSessionManager, paths: PathResolver, tmp_path: Path
) -> ArchiveStreamer:
    limits = LimitsConfig(max_archive_bytes=8, max_archive_files=1, max_selection_items=2)
    return ArchiveStreamer(session_manager, paths, limits, tmp_path / "small-temp")


async def test_stream_folder(
    archive: ArchiveStreamer, user_id: int, docs_tree: dict[str, int]
) -> None:
    stream = await archive.stream_folder(user_id, docs_tree["Docs"])
    try:
        assert stream.filename == "Docs.zip"
        assert stream.content_type == "application/zip"
        assert stream.size == stream.path.stat().st_size
        with zipfile.ZipFile(stream.path) as zf:
            assert zf.namelist() == ["Docs/", "Docs/Sub/", "Docs/Sub/b.txt", "Docs/a.txt"]
            assert zf.read("Docs/a.txt") == b"aaaa"
            assert zf.read("Docs/Sub/b.txt") == b"bbbbbb"
            assert zf.getinfo("Docs/a.txt").compress_type == zipfile.ZIP_DEFLATED
    finally:
        await stream.close()
    assert not stream.path.exists()


async def test_stream_folder_skips_trashed_items(
    archive: ArchiveStreamer,
    item_service: ItemService,
    user_id: int,
    docs_tree: dict[str, int],
) -> None:
    await item_service.soft_delete_item(user_id, docs_tree["Sub"])

    stream = await archive.stream_folder(user_id, docs_tree["Docs"])
    try:
        assert set(_read_zip(stream)) == {"Docs/", "Docs/a.txt"}
    finally:
        await stream.close()


async def test_stream_folder_skips_missing_files(
    archive: ArchiveStreamer,
    paths: PathResolver,
    user_id: int,
    docs_tree: dict[str, int],
) -> None:
    paths.physical_path(user_id, "Docs/a.txt").unlink()

    stream = await archive.stream_folder(user_id, docs_tree["Docs"])
    try:
        assert "Docs/a.txt" not in _read_zip(stream)
        assert "Docs/Sub/b.txt" in _read_zip(stream)
    finally:
        await stream.close()


async def test_stream_folder_not_found(
    archive: ArchiveStreamer,
    user_id: int,
    other_user_id: int,
    docs_tree: dict[str, int],
) -> None:
    with pytest.raises(ItemNotFoundException):
        await archive.stream_folder(other_user_id, docs_tree["Docs"])
    with pytest.raises(ItemNotFoundException):
        await archive.stream_folder(user_id, docs_tree["a.txt"])


async def test_stream_selection(
    archive: ArchiveStreamer,
    user_id: int,
    upload: UploadFn,
    docs_tree: dict[str, int],
) -> None:
    loose = await upload(user_id, "loose.txt", b"loose")

    with freeze_time("2024-05-06 07:08:09", real_asyncio=True):
        stream = await archive.stream_selection(
            user_id, [loose.id, docs_tree["Sub"], loose.id]
        )
    try:
        assert stream.filename == "selected_items_20240506_070809.zip"
        assert _read_zip(stream) == {
            "Sub/": b"",
            "Sub/b.txt": b"bbbbbb",
            "loose.txt": b"loose",
        }
    finally:
        await stream.close()
    assert not stream.path.exists()


async def test_stream_selection_renames_duplicates(
    archive: ArchiveStreamer,
    user_id: int,
    upload: UploadFn,
    docs_tree: dict[str, int],
) -> None:
    root_copy = await upload(user_id, "a.txt", b"root")

    stream = await archive.stream_selection(user_id, [docs_tree["a.txt"], root_copy.id])
    try:
        contents = _read_zip(stream)
    finally:
        await stream.close()
    assert set(contents) == {"a.txt", "a(1).txt"}
    assert sorted(contents.values()) == [b"aaaa", b"root"]


async def test_stream_selection_validation(
    archive: ArchiveStreamer,
    small_archive: ArchiveStreamer,
    user_id: int,
    other_user_id: int,
    docs_tree: dict[str, int],
) -> None:
    with pytest.raises(ValidationException) as exc_info:
        await archive.stream_selection(user_id, [])
    assert exc_info.value.code == ErrorCode.NO_ITEMS

    with pytest.raises(ValidationException) as exc_info:
        await small_archive.stream_selection(user_id, [1, 2, 3])
    assert exc_info.value.code == ErrorCode.TOO_MANY_ITEMS

    with pytest.raises(ItemNotFoundException):
        await archive.stream_selection(other_user_id, [docs_tree["a.txt"]])


async def test_limits_checked_before_writing(
    small_archive: ArchiveStreamer,
    user_id: int,
    upload: UploadFn,
    docs_tree: dict[str, int],
) -> None:
    x = await upload(user_id, "x.txt", b"x")
    y = await upload(user_id, "y.txt", b"y")

    with pytest.raises(ArchiveTooLargeException):
        await small_archive.stream_folder(user_id, docs_tree["Docs"])
    with pytest.raises(TooManyFilesException):
        await small_archive.stream_selection(user_id, [x.id, y.id])
    assert not small_archive.temp_dir.exists()


async def test_download_folder_reports_limit_code(
    item_service: ItemService,
    small_archive: ArchiveStreamer,
    user_id: int,
    docs_tree: dict[str, int],
) -> None:
    item_service.archive = small_archive

    result = await item_service.download_folder(user_id, docs_tree["Docs"])

    assert result.stream is None
    assert result.response.error_code == ErrorCode.ARCHIVE_TOO_LARGE.value
