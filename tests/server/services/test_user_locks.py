import asyncio

from stowage.server.services.coordination import UserLocks
from stowage.server.services.item import ItemService
from tests.conftest import UploadFn


async def test_same_user_is_serialized() -> None:
    locks = UserLocks()
    order: list[str] = []
    started = asyncio.Event()

    async def first() -> None:
        async with locks.lock(1):
            started.set()
            await asyncio.sleep(0.05)
            order.append("first")

    async def second() -> None:
        await started.wait()
        async with locks.lock(1):
            order.append("second")

    await asyncio.gather(first(), second())
    assert order == ["first", "second"]


async def test_users_do_not_block_each_other() -> None:
    locks = UserLocks()
    async with locks.lock(1):
        assert locks.locked(1)
        assert not locks.locked(2)
        async with locks.lock(2):
            assert locks.locked(2)
    assert not locks.locked(1)


async def test_concurrent_renames_keep_names_unique(
    item_service: ItemService, user_id: int, upload: UploadFn
) -> None:
    first = await upload(user_id, "one.txt")
    second = await upload(user_id, "two.txt")

    results = await asyncio.gather(
        item_service.rename_item(user_id, first.id, "final.txt"),
        item_service.rename_item(user_id, second.id, "final.txt"),
    )

    assert sorted(result.success for result in results) == [False, True]
    names = [item.name for item in (await item_service.list_items(user_id)).items]
    assert len(names) == 2
    assert names.count("final.txt") == 1


async def test_released_locks_are_dropped() -> None:
    locks = UserLocks()
    async with locks.lock(1):
        async with locks.lock(2):
            assert len(locks) == 2
        assert len(locks) == 1
    assert len(locks) == 0
    assert not locks.locked(1)


async def test_lock_kept_while_waiters_remain() -> None:
    locks = UserLocks()
    started = asyncio.Event()
    release = asyncio.Event()

    async def holder() -> None:
        async with locks.lock(1):
            started.set()
            await release.wait()

    async def waiter() -> None:
        await started.wait()
        async with locks.lock(1):
            assert locks.locked(1)
            assert len(locks) == 1

    tasks = [asyncio.create_task(holder()), asyncio.create_task(waiter())]
    await started.wait()
    await asyncio.sleep(0)
    assert len(locks) == 1
    release.set()
    await asyncio.gather(*tasks)
    assert len(locks) == 0
