import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.database import get_db
from app.core.auth import get_current_user, get_current_platform_admin
from app.models.community import Community, CommunityMember
from app.schemas.community import (
    CommunityCreate,
    CommunityResponse,
    JoinCommunity,
    MemberRoleUpdate,
    MembershipResponse,
    MyCommunityResponse,
)
from app.services.communities import get_membership, require_community_admin, require_member, unique_code

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/communities", tags=["communities"])


async def _membership_detail(db: AsyncSession, membership_id: int) -> CommunityMember:
    result = await db.execute(
        select(CommunityMember)
        .where(CommunityMember.id == membership_id)
        .options(selectinload(CommunityMember.user))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


@router.post("", response_model=CommunityResponse, status_code=status.HTTP_201_CREATED)
async def create_community(
    community_in: CommunityCreate,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user)
):
    community = Community(
        name=community_in.name.strip(),
        description=community_in.description,
        code=await unique_code(db),
        created_by=current_user.id,
    )
    db.add(community)
    await db.flush()

    # Creator administers the new community
    db.add(CommunityMember(user_id=current_user.id, community_id=community.id, role="community_admin"))
    await db.commit()
    await db.refresh(community)
    logger.info("community %s created by user %s", community.id, current_user.id)
    return community


@router.get("", response_model=List[CommunityResponse])
async def list_all_communities(
    db: AsyncSession = Depends(get_db),
    admin = Depends(get_current_platform_admin)
):
    result = await db.execute(select(Community).order_by(Community.created_at.desc(), Community.id.desc()))
    return result.scalars().all()


@router.post("/join", response_model=MembershipResponse)
async def join_community(
    body: JoinCommunity,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user)
):
    result = await db.execute(
        select(Community)
        .where(Community.code == body.code.upper())
        .where(Community.is_active.is_(True))
    )
    community = result.scalar_one_or_none()
    if not community:
        raise HTTPException(404, "Invalid community code")

    membership = await get_membership(db, current_user.id, community.id, active_only=False)
    if membership and membership.is_active:
        raise HTTPException(400, "You are already a member of this community")
    if membership:
        membership.is_active = True
    else:
        membership = CommunityMember(user_id=current_user.id, community_id=community.id, role="member")
        db.add(membership)
    await db.commit()
    logger.info("user %s joined community %s", current_user.id, community.id)
    return await _membership_detail(db, membership.id)


@router.post("/{community_id}/leave")
async def leave_community(
    community_id: int,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user)
):
    membership = await get_membership(db, current_user.id, community_id)
    if not membership:
        raise HTTPException(404, "You are not a member of this community")
    membership.is_active = False
    await db.commit()
    return {"message": "Left community successfully"}


@router.get("/mine", response_model=List[MyCommunityResponse])
async def my_communities(
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user)
):
    result = await db.execute(
        select(CommunityMember)
        .where(CommunityMember.user_id == current_user.id)
        .where(CommunityMember.is_active.is_(True))
        .options(selectinload(CommunityMember.community))
        .order_by(CommunityMember.joined_at.desc())
    )
    return result.scalars().all()


@router.get("/{community_id}/members", response_model=List[MembershipResponse])
async def list_members(
    community_id: int,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user)
):
    await require_member(db, current_user, community_id, "Access denied to this community")
    result = await db.execute(
        select(CommunityMember)
        .where(CommunityMember.community_id == community_id)
        .where(CommunityMember.is_active.is_(True))
        .options(selectinload(CommunityMember.user))
        .order_by(CommunityMember.id)
    )
    return result.scalars().all()


@router.put("/{community_id}/members/{user_id}/role", response_model=MembershipResponse)
async def change_member_role(
    community_id: int,
    user_id: int,
    body: MemberRoleUpdate,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user)
):
    await require_community_admin(db, current_user, community_id, "Only community administrators can change roles")
    membership = await get_membership(db, user_id, community_id)
    if not membership:
        raise HTTPException(404, "Member not found")

    membership.role = body.role
    await db.commit()
    logger.info("user %s set role of user %s in community %s to %s", current_user.id, user_id, community_id, body.role)
    return await _membership_detail(db, membership.id)
