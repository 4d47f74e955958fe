"""Root conftest for all tests."""

from collections.abc import AsyncGenerator, AsyncIterator, Awaitable, Callable
from pathlib import Path

import pytest
from aiohttp.test_utils import TestClient
from aiohttp.web import Application

from stowage.models.item import ItemVO
from stowage.server.config import LimitsConfig, ServerConfig, TrashConfig
from stowage.server.db.session import DatabaseSessionManager
from stowage.server.services.archive import ArchiveStreamer
from stowage.server.services.coordination import UserLocks
from stowage.server.services.item import ItemService, UploadSource
from stowage.server.services.paths import PathResolver
from stowage.server.services.persister import ItemPersister
from stowage.server.services.storage import LocalItemStorage
from stowage.server.services.trash import TrashCleanupService
from stowage.server.services.user import UserService

# Type alias for the aiohttp_client fixture - shared across all tests
AiohttpClient = Callable[[Application], Awaitable[TestClient]]

UploadFn = Callable[..., Awaitable[ItemVO]]
FolderFn = Callable[..., Awaitable[ItemVO]]


async def byte_stream(data: bytes, chunk_size: int = 4) -> AsyncIterator[bytes]:
    """Yield ``data`` in small chunks like a network body would."""
    for i in range(0, len(data), chunk_size):
        yield data[i : i + chunk_size]


@pytest.fixture
def storage_root(tmp_path: Path) -> Path:
    """Storage directory for all tests."""
    root = tmp_path / "storage"
    root.mkdir(parents=True)
    return root


@pytest.fixture
def server_config(tmp_path: Path, storage_root: Path) -> ServerConfig:
    return ServerConfig(
        storage_dir=str(storage_root),
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        trash=TrashConfig(sweep_interval_seconds=0),
        limits=LimitsConfig(),
    )


@pytest.fixture
async def session_manager(
    server_config: ServerConfig,
) -> AsyncGenerator[DatabaseSessionManager, None]:
    manager = DatabaseSessionManager(server_config.db_url)
    await manager.create_all()
    yield manager
    await manager.close()


@pytest.fixture
def paths(storage_root: Path) -> PathResolver:
    return PathResolver(storage_root)


@pytest.fixture
def storage(storage_root: Path) -> LocalItemStorage:
    return LocalItemStorage(storage_root)


@pytest.fixture
def locks() -> UserLocks:
    return UserLocks()


@pytest.fixture
def persister(
    session_manager: DatabaseSessionManager,
    storage: LocalItemStorage,
    paths: PathResolver,
) -> ItemPersister:
    return ItemPersister(session_manager, storage, paths)


@pytest.fixture
def archive(
    session_manager: DatabaseSessionManager,
    paths: PathResolver,
    server_config: ServerConfig,
    storage_root: Path,
) -> ArchiveStreamer:
    return ArchiveStreamer(
        session_manager, paths, server_config.limits, storage_root / "temp"
    )


@pytest.fixture
def item_service(
    session_manager: DatabaseSessionManager,
    paths: PathResolver,
    storage: LocalItemStorage,
    persister: ItemPersister,
    archive: ArchiveStreamer,
    server_config: ServerConfig,
    locks: UserLocks,
) -> ItemService:
    return ItemService(
        session_manager, paths, storage, persister, archive, server_config.limits, locks
    )


@pytest.fixture
def user_service(
    session_manager: DatabaseSessionManager,
    storage: LocalItemStorage,
    paths: PathResolver,
) -> UserService:
    return UserService(session_manager, storage, paths)


@pytest.fixture
def trash_service(
    session_manager: DatabaseSessionManager,
    persister: ItemPersister,
    server_config: ServerConfig,
    locks: UserLocks,
) -> TrashCleanupService:
    return TrashCleanupService(session_manager, persister, server_config.trash, locks)


@pytest.fixture
async def user_id(user_service: UserService) -> int:
    user = await user_service.create_user("alice", "alice@example.com")
    return user.id


@pytest.fixture
async def other_user_id(user_service: UserService) -> int:
    user = await user_service.create_user("bob", "bob@example.com")
    return user.id


@pytest.fixture
def upload(item_service: ItemService) -> UploadFn:
    """Upload helper that fails the test if the upload is rejected."""

    async def _upload(
        user_id: int, name: str, data: bytes = b"hello", parent_id: int | None = None
    ) -> ItemVO:
        source = UploadSource(
            filename=name,
            content_length=len(data),
            content_type=None,
            stream=byte_stream(data),
        )
        result = await item_service.upload_file(user_id, source, parent_id)
        assert result.success, result.error_msg
        assert result.item is not None
        return result.item

    return _upload


@pytest.fixture
def make_folder(item_service: ItemService) -> FolderFn:
    async def _make_folder(user_id: int, name: str, parent_id: int | None = None) -> ItemVO:
        result = await item_service.create_folder(user_id, name, parent_id)
        assert result.success, result.error_msg
        assert result.item is not None
        return result.item

    return _make_folder


@pytest.fixture
async def docs_tree(user_id: int, upload: UploadFn, make_folder: FolderFn) -> dict[str, int]:
    """Docs/a.txt, Docs/Sub/b.txt for ``user_id``."""
    docs = await make_folder(user_id, "Docs")
    a_txt = await upload(user_id, "a.txt", b"aaaa", parent_id=docs.id)
    sub = await make_folder(user_id, "Sub", parent_id=docs.id)
    b_txt = await upload(user_id, "b.txt", b"bbbbbb", parent_id=sub.id)
    return {"Docs": docs.id, "a.txt": a_txt.id, "Sub": sub.id, "b.txt": b_txt.id}
