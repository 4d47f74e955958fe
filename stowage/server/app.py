import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

from aiohttp import web

from stowage.models.base import create_error_response

from .config import ServerConfig
from .db.session import DatabaseSessionManager
from .routes import item
from .services.archive import ArchiveStreamer
from .services.coordination import UserLocks
from .services.item import ItemService
from .services.paths import PathResolver
from .services.persister import ItemPersister
from .services.storage import LocalItemStorage
from .services.subscription import SubscriptionService
from .services.trash import TrashCleanupService
from .services.user import UserService

logger = logging.getLogger(__name__)

USER_ID_HEADER = "X-User-Id"


@web.middleware
async def user_identity_middleware(
    request: web.Request,
    handler: Callable[[web.Request], Awaitable[web.StreamResponse]],
) -> web.StreamResponse:
    # Identity is established upstream; the header is trusted as is.
    raw_user_id = request.headers.get(USER_ID_HEADER)
    if not raw_user_id:
        return web.json_response(
            create_error_response("Missing user identity", "UNAUTHORIZED").to_dict(),
            status=401,
        )
    try:
        request["user_id"] = int(raw_user_id)
    except ValueError:
        return web.json_response(
            create_error_response("Invalid user identity", "UNAUTHORIZED").to_dict(),
            status=401,
        )
    return await handler(request)


def create_app(config: ServerConfig) -> web.Application:
    """Wire the services and routes for ``config``."""
    app = web.Application(middlewares=[user_identity_middleware])

    storage_root = config.storage_root
    storage = LocalItemStorage(storage_root)
    paths = PathResolver(storage_root, max_depth=config.limits.max_tree_depth)
    session_manager = DatabaseSessionManager(config.db_url)
    locks = UserLocks()
    persister = ItemPersister(session_manager, storage, paths)
    archive = ArchiveStreamer(session_manager, paths, config.limits, storage_root / "temp")
    user_service = UserService(session_manager, storage, paths)

    app["config"] = config
    app["session_manager"] = session_manager
    app["user_service"] = user_service
    app["subscription_service"] = SubscriptionService(user_service)
    app["item_service"] = ItemService(
        session_manager, paths, storage, persister, archive, config.limits, locks
    )
    app["trash_service"] = TrashCleanupService(
        session_manager,
        persister,
        config.trash,
        locks=locks,
        max_depth=config.limits.max_tree_depth,
    )

    app.add_routes(item.routes)

    async def lifecycle(app: web.Application):
        await session_manager.create_all()
        sweep: asyncio.Task | None = None
        if config.trash.sweep_interval_seconds > 0:
            sweep = asyncio.create_task(app["trash_service"].run_forever())
        yield
        if sweep is not None:
            sweep.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweep
        await session_manager.close()

    app.cleanup_ctx.append(lifecycle)
    return app


def run(config: ServerConfig) -> None:
    app = create_app(config)
    logger.info(f"Serving {config.storage_root} on {config.host}:{config.port}")
    web.run_app(app, host=config.host, port=config.port)
