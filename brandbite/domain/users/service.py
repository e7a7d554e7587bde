from sqlalchemy.ext.asyncio import AsyncSession

from brandbite.domain.errors import NotFoundError
from brandbite.domain.users.db_models import UserAccount


async def get_user(session: AsyncSession, user_id: str) -> UserAccount:
    user = await session.get(UserAccount, user_id)
    if user is None:
        raise NotFoundError(detail="User not found")
    return user
