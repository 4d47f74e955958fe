"""Permanent removal of items that stayed in the trash too long."""

import asyncio
import logging
from dataclasses import dataclass, field

from sqlalchemy import case, select

from stowage.models.base import ItemType

from ..config import TrashConfig
from ..db.models.item import ItemDO, now_ms
from ..db.session import DatabaseSessionManager
from ..errors import ItemServiceException
from .coordination import UserLocks
from .persister import ItemPersister
from .tree import DEFAULT_MAX_DEPTH

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000


@dataclass
class TrashSweepResult:
    """Summary of one sweep."""

    cutoff: int
    candidates: list[int] = field(default_factory=list)
    deleted: int = 0
    failed: int = 0
    dry_run: bool = False


class TrashCleanupService:
    """Deletes items whose ``deleted_at`` is older than the retention window.

    Expired files are handled before folders. Each expired item is purged
    in its own transaction together with whatever is still below it, so one
    failure does not stop the sweep.
    """

    def __init__(
        self,
        session_manager: DatabaseSessionManager,
        persister: ItemPersister,
        config: TrashConfig,
        locks: UserLocks | None = None,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ) -> None:
        self.session_manager = session_manager
        self.persister = persister
        self.config = config
        self.locks = locks or UserLocks()
        self.max_depth = max_depth

    def cutoff(self) -> int:
        return now_ms() - self.config.retention_days * DAY_MS

    async def _expired_ids(self, cutoff: int, batch_size: int) -> list[tuple[int, int]]:
        stmt = (
            select(ItemDO.id, ItemDO.user_id)
            .where(ItemDO.is_deleted.is_(True), ItemDO.deleted_at <= cutoff)
            .order_by(
                case((ItemDO.type == ItemType.FOLDER.value, 1), else_=0),
                ItemDO.deleted_at,
                ItemDO.id,
            )
            .limit(batch_size)
        )
        async with self.session_manager.session() as session:
            result = await session.execute(stmt)
            return [(row[0], row[1]) for row in result.all()]

    async def cleanup_expired_items(
        self, dry_run: bool = False, batch_size: int | None = None
    ) -> TrashSweepResult:
        """Run one sweep and return what was (or would be) deleted."""
        cutoff = self.cutoff()
        expired = await self._expired_ids(cutoff, batch_size or self.config.batch_size)
        result = TrashSweepResult(
            cutoff=cutoff, candidates=[item_id for item_id, _ in expired], dry_run=dry_run
        )
        if not expired:
            logger.info("No expired items to clean up")
            return result
        logger.info(f"Found {len(expired)} expired items in the trash")
        if dry_run:
            return result

        for item_id, user_id in expired:
            async with self.locks.lock(user_id):
                try:
                    async with self.session_manager.session() as session:
                        item = await session.get(ItemDO, item_id)
                        if item is None or not item.is_deleted:
                            # Already removed together with an expired folder.
                            continue
                        report = await self.persister.purge(
                            session, item, max_depth=self.max_depth
                        )
                except ItemServiceException:
                    logger.exception(f"Failed to purge item {item_id}, skipping")
                    result.failed += 1
                    continue
            result.deleted += report.deleted_rows
            logger.info(f"Purged item {item_id} ({report.deleted_rows} rows)")

        logger.info(f"Trash sweep deleted {result.deleted} items, {result.failed} failed")
        return result

    async def run_forever(self) -> None:
        """Sweep periodically until cancelled."""
        while True:
            try:
                await self.cleanup_expired_items()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Trash sweep failed")
            await asyncio.sleep(self.config.sweep_interval_seconds)
