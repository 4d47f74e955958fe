"""Storage server and its command line entry points."""

import argparse
import asyncio
import logging
import sys

from .config import ServerConfig

logger = logging.getLogger(__name__)


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stdout,
    )


def _load_config(args: argparse.Namespace) -> ServerConfig:
    config = ServerConfig.load(args.config_dir)
    if getattr(args, "verbose", False):
        config.log_level = "DEBUG"
    setup_logging(config.log_level)
    return config


def subcommand_serve(args: argparse.Namespace) -> None:
    """Handler for the serve subcommand."""
    from .app import run

    config = _load_config(args)
    if args.port:
        config.port = args.port
    run(config)


async def async_init_db(config: ServerConfig) -> None:
    from .db.session import DatabaseSessionManager

    config.storage_root.mkdir(parents=True, exist_ok=True)
    session_manager = DatabaseSessionManager(config.db_url)
    try:
        await session_manager.create_all()
    finally:
        await session_manager.close()
    print(f"Database ready at {config.db_url}")


def subcommand_init_db(args: argparse.Namespace) -> None:
    """Handler for the init-db subcommand."""
    asyncio.run(async_init_db(_load_config(args)))


async def async_cleanup_trash(
    config: ServerConfig, dry_run: bool, batch_size: int | None
) -> int:
    from .db.session import DatabaseSessionManager
    from .services.paths import PathResolver
    from .services.persister import ItemPersister
    from .services.storage import LocalItemStorage
    from .services.trash import TrashCleanupService

    session_manager = DatabaseSessionManager(config.db_url)
    storage = LocalItemStorage(config.storage_root)
    paths = PathResolver(config.storage_root, max_depth=config.limits.max_tree_depth)
    trash_service = TrashCleanupService(
        session_manager,
        ItemPersister(session_manager, storage, paths),
        config.trash,
        max_depth=config.limits.max_tree_depth,
    )
    try:
        await session_manager.create_all()
        result = await trash_service.cleanup_expired_items(
            dry_run=dry_run, batch_size=batch_size
        )
    finally:
        await session_manager.close()

    if dry_run:
        print(f"Would purge {len(result.candidates)} items from trash")
        for item_id in result.candidates:
            print(f"Would delete: item {item_id}")
    else:
        print(f"Purged {result.deleted} items from trash, {result.failed} failed")
    return result.failed


def subcommand_cleanup_trash(args: argparse.Namespace) -> None:
    """Handler for the cleanup-trash subcommand."""
    config = _load_config(args)
    failed = asyncio.run(async_cleanup_trash(config, args.dry_run, args.batch_size))
    if failed:
        sys.exit(1)


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config-dir",
        type=str,
        default=None,
        help="Directory containing config.yaml",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable verbose logging"
    )


def add_parser(subparsers):
    # 'serve' subcommand
    parser_serve = subparsers.add_parser("serve", help="run the storage server")
    _add_common_arguments(parser_serve)
    parser_serve.add_argument("--port", type=int, default=None, help="Port to listen on")
    parser_serve.set_defaults(func=subcommand_serve)

    # 'init-db' subcommand
    parser_init_db = subparsers.add_parser("init-db", help="create the database tables")
    _add_common_arguments(parser_init_db)
    parser_init_db.set_defaults(func=subcommand_init_db)

    # 'cleanup-trash' subcommand
    parser_cleanup = subparsers.add_parser(
        "cleanup-trash", help="permanently delete items past the trash retention"
    )
    _add_common_arguments(parser_cleanup)
    parser_cleanup.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be deleted without deleting",
    )
    parser_cleanup.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Max items to process (default: trash.batch_size)",
    )
    parser_cleanup.set_defaults(func=subcommand_cleanup_trash)
