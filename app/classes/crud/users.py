from typing import Iterable, Dict

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.core.database import db_operation
from app.core.exceptions import BusinessLogicError, NotFoundError
from app.core.validations import validate_id
from app.classes.models.users import User, UserRole


@db_operation
async def get_user_by_id(session: AsyncSession, user_id: int) -> User:
    validate_id(user_id, "User ID")

    result = await session.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise NotFoundError("User", str(user_id))
    return user


@db_operation
async def get_user_with_role(
    session: AsyncSession, user_id: int, role: UserRole
) -> User:
    """Пользователь с ожидаемой ролью (например, студент при записи в класс)"""
    user = await get_user_by_id(session, user_id)
    if user.role != role.value:
        raise BusinessLogicError(
            f"User {user_id} is not a {role.value}",
            {"user_id": user_id, "role": user.role},
        )
    return user


@db_operation
async def get_users_map(session: AsyncSession, user_ids: Iterable[int]) -> Dict[int, User]:
    user_ids = set(user_ids)
    if not user_ids:
        return {}

    result = await session.execute(select(User).where(User.id.in_(user_ids)))
    return {user.id: user for user in result.scalars().all()}
