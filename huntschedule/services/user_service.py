"""
User service for account lookups and creation.
"""

from typing import Dict, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.orm import selectinload
from huntschedule.database.models import Role, RoleName, User
from huntschedule.utils.datetime_utils import isoformat_or_none


def _user_to_dict(user: User) -> Dict:
    role_name = user.role.name if user.role else None
    return {
        "id": user.id,
        "username": user.username,
        "role": role_name,
        "is_admin": role_name == RoleName.ADMIN.value,
        "points": user.points,
        "created_at": isoformat_or_none(user.created_at),
    }


async def create_user(session: AsyncSession, username: str, role: RoleName = RoleName.USER) -> Dict:
    """
    Create a user with a zero balance.

    Args:
        session: Database session
        username: Unique username
        role: Role to assign; the role row is created if it does not exist yet

    Returns:
        User dictionary
    """
    result = await session.execute(select(Role).where(Role.name == role.value))
    role_row = result.scalar_one_or_none()
    if role_row is None:
        role_row = Role(name=role.value)
        session.add(role_row)
        await session.flush()

    user = User(username=username, role_id=role_row.id, points=0)
    session.add(user)
    await session.flush()
    return await get_user_by_id(session, user.id)


async def get_user_by_id(session: AsyncSession, user_id: int) -> Optional[Dict]:
    """
    Get user by ID.

    Returns:
        User dictionary or None if not found
    """
    result = await session.execute(
        select(User)
        .options(selectinload(User.role))
        .where(User.id == user_id)
        .execution_options(populate_existing=True)
    )
    user = result.scalar_one_or_none()
    return _user_to_dict(user) if user else None


async def get_user_by_username(session: AsyncSession, username: str) -> Optional[Dict]:
    result = await session.execute(
        select(User).options(selectinload(User.role)).where(User.username == username)
    )
    user = result.scalar_one_or_none()
    return _user_to_dict(user) if user else None
