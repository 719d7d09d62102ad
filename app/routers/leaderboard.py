from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, func, case
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.core.auth import get_current_user
from app.models.community import CommunityMember
from app.models.contribution import Contribution
from app.models.user import User
from app.schemas.contribution import ContributionResponse, LeaderboardEntry
from app.services.communities import require_member

router = APIRouter(prefix="/leaderboard", tags=["leaderboard"])


@router.get("/me/contributions", response_model=List[ContributionResponse])
async def my_contributions(
    community_id: int | None = None,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user)
):
    query = select(Contribution).where(Contribution.user_id == current_user.id)
    if community_id:
        query = query.where(Contribution.community_id == community_id)
    result = await db.execute(query.order_by(Contribution.created_at.desc(), Contribution.id.desc()))
    return result.scalars().all()


@router.get("/{community_id}", response_model=List[LeaderboardEntry])
async def community_leaderboard(
    community_id: int,
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user)
):
    await require_member(db, current_user, community_id, "Access denied to this community")

    points = func.coalesce(func.sum(Contribution.points), 0)
    completed = func.count(case((Contribution.type == "task_completion", Contribution.id)))
    result = await db.execute(
        select(User.id, User.name, User.email, points.label("points"), completed.label("tasks_completed"))
        .join(CommunityMember, CommunityMember.user_id == User.id)
        .outerjoin(
            Contribution,
            (Contribution.user_id == User.id) & (Contribution.community_id == community_id),
        )
        .where(CommunityMember.community_id == community_id)
        .where(CommunityMember.is_active.is_(True))
        .group_by(User.id, User.name, User.email)
        .order_by(points.desc(), User.id)
        .limit(limit)
    )

    return [
        LeaderboardEntry(
            rank=rank,
            user_id=row.id,
            name=row.name,
            email=row.email,
            points=row.points,
            tasks_completed=row.tasks_completed,
        )
        for rank, row in enumerate(result.all(), start=1)
    ]
