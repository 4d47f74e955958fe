import pytest

from stowage.models.base import SubscriptionPlan
from stowage.server.errors import ErrorCode, ItemServiceException
from stowage.server.services.subscription import (
    UNLIMITED,
    SubscriptionService,
    limits_for_plan,
)
from stowage.server.services.user import UserService


@pytest.mark.parametrize(
    ("plan", "expected"),
    [
        ("free", (5120, 5, 2)),
        ("PREMIUM", (51200, 25, 10)),
        ("Enterprise", (512000, 100, UNLIMITED)),
    ],
)
def test_limits_for_plan(plan: str, expected: tuple[int, int, int]) -> None:
    limits = limits_for_plan(plan)
    assert (limits.storage_limit_mb, limits.member_limit, limits.max_teamspaces) == expected


def test_limits_for_unknown_plan() -> None:
    with pytest.raises(ItemServiceException) as exc_info:
        limits_for_plan("platinum")
    assert exc_info.value.code == ErrorCode.INVALID_PLAN


async def test_get_teamspace_limits(user_service: UserService) -> None:
    user = await user_service.create_user(
        "carol", "carol@example.com", subscription_plan=SubscriptionPlan.PREMIUM
    )
    service = SubscriptionService(user_service)

    limits = await service.get_teamspace_limits(user.id)

    assert limits.success
    assert limits.storage_limit_mb == 51200
    assert limits.to_dict() == {
        "success": True,
        "storageLimitMb": 51200,
        "memberLimit": 25,
        "maxTeamspaces": 10,
    }


async def test_get_teamspace_limits_unknown_user(user_service: UserService) -> None:
    with pytest.raises(ItemServiceException) as exc_info:
        await SubscriptionService(user_service).get_teamspace_limits(404)
    assert exc_info.value.code == ErrorCode.USER_NOT_FOUND
