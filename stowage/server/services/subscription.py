import logging
from dataclasses import dataclass

from stowage.models.base import SubscriptionPlan
from stowage.models.item import TeamspaceLimitsVO

from ..errors import ErrorCode, ItemServiceException
from .user import UserService

logger = logging.getLogger(__name__)

UNLIMITED = -1


@dataclass(frozen=True)
class TeamspaceLimits:
    storage_limit_mb: int
    member_limit: int
    max_teamspaces: int


PLAN_LIMITS: dict[SubscriptionPlan, TeamspaceLimits] = {
    SubscriptionPlan.FREE: TeamspaceLimits(5120, 5, 2),
    SubscriptionPlan.PREMIUM: TeamspaceLimits(51200, 25, 10),
    SubscriptionPlan.ENTERPRISE: TeamspaceLimits(512000, 100, UNLIMITED),
}


def limits_for_plan(plan: str) -> TeamspaceLimits:
    """Look up the limits of a plan name (case-insensitive)."""
    try:
        return PLAN_LIMITS[SubscriptionPlan.from_value((plan or "").lower())]
    except ValueError as err:
        raise ItemServiceException(
            f"Invalid subscription plan: {plan}", ErrorCode.INVALID_PLAN
        ) from err


class SubscriptionService:
    """Plan-derived limits for a user."""

    def __init__(self, user_service: UserService) -> None:
        self.user_service = user_service

    async def get_teamspace_limits(self, user_id: int) -> TeamspaceLimitsVO:
        user = await self.user_service.get_user(user_id)
        limits = limits_for_plan(user.subscription_plan)
        return TeamspaceLimitsVO(
            storage_limit_mb=limits.storage_limit_mb,
            member_limit=limits.member_limit,
            max_teamspaces=limits.max_teamspaces,
        )
