import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from stowage.models.base import SubscriptionPlan

from ..db.models.user import UserDO
from ..db.session import DatabaseSessionManager
from ..errors import ErrorCode, UserNotFoundException, ValidationException
from .paths import PathResolver
from .storage import LocalItemStorage

logger = logging.getLogger(__name__)


class UserService:
    """Owners of item hierarchies.

    Authentication is handled upstream. This service only records the
    accounts that own storage and their subscription plan.
    """

    def __init__(
        self,
        session_manager: DatabaseSessionManager,
        storage: LocalItemStorage,
        paths: PathResolver,
    ) -> None:
        self.session_manager = session_manager
        self.storage = storage
        self.paths = paths

    async def create_user(
        self,
        username: str,
        email: str,
        subscription_plan: SubscriptionPlan = SubscriptionPlan.FREE,
        password_hash: str | None = None,
    ) -> UserDO:
        """Create a user and its storage root."""
        user = UserDO(
            username=username,
            email=email,
            password_hash=password_hash,
            subscription_plan=subscription_plan.value,
        )
        async with self.session_manager.session() as session:
            session.add(user)
            try:
                await session.commit()
            except IntegrityError as err:
                await session.rollback()
                raise ValidationException(
                    f"User {username} already exists", ErrorCode.NAME_ALREADY_EXISTS
                ) from err
        await self.storage.make_directory(self.paths.user_root(user.id))
        logger.info(f"Created user {username} with id {user.id}")
        return user

    async def get_user(self, user_id: int) -> UserDO:
        async with self.session_manager.session() as session:
            result = await session.execute(select(UserDO).where(UserDO.id == user_id))
            user = result.scalar_one_or_none()
        if user is None:
            raise UserNotFoundException(f"User {user_id} not found")
        return user

    async def get_user_by_name(self, username: str) -> UserDO | None:
        async with self.session_manager.session() as session:
            result = await session.execute(
                select(UserDO).where(UserDO.username == username)
            )
            return result.scalar_one_or_none()
