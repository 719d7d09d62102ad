import logging
import secrets
import string
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import Forbidden
from app.models.community import Community, CommunityMember

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 6
CODE_ATTEMPTS = 10


def is_platform_admin(user) -> bool:
    return user.role == "platform_admin"


def generate_code() -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


async def unique_code(db: AsyncSession) -> str:
    for _ in range(CODE_ATTEMPTS):
        code = generate_code()
        taken = await db.execute(select(Community.id).where(Community.code == code))
        if taken.scalar_one_or_none() is None:
            return code
    # Fall through to a random code and let the unique index decide
    logger.warning("Could not find a free community code after %s attempts", CODE_ATTEMPTS)
    return generate_code()


async def get_membership(
    db: AsyncSession, user_id: int, community_id: int, active_only: bool = True
) -> Optional[CommunityMember]:
    query = (
        select(CommunityMember)
        .where(CommunityMember.user_id == user_id)
        .where(CommunityMember.community_id == community_id)
    )
    if active_only:
        query = query.where(CommunityMember.is_active.is_(True))
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def require_member(db: AsyncSession, user, community_id: int, message: str) -> None:
    if is_platform_admin(user):
        return
    if await get_membership(db, user.id, community_id) is None:
        raise Forbidden(message)


async def require_community_admin(db: AsyncSession, user, community_id: int, message: str) -> None:
    if is_platform_admin(user):
        return
    membership = await get_membership(db, user.id, community_id)
    if membership is None or membership.role != "community_admin":
        raise Forbidden(message)
