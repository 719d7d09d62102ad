"""Community task tags.

Tags belong to one community and can only label tasks of that community.
Any member may create a tag or label a task; renaming and deleting a tag is
left to community administrators.
"""

import logging
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.exceptions import Conflict, NotFound, ValidationFailed
from app.models.community import Community, CommunityMember
from app.models.tag import TaskTag, TaskTagAssignment
from app.models.task import Task
from app.services.communities import require_community_admin, require_member

logger = logging.getLogger(__name__)

DEFAULT_COLOR = "#3B82F6"


async def _load_tag(db: AsyncSession, tag_id: int) -> TaskTag:
    result = await db.execute(
        select(TaskTag)
        .where(TaskTag.id == tag_id)
        .options(selectinload(TaskTag.creator))
        .execution_options(populate_existing=True)
    )
    tag = result.scalar_one_or_none()
    if tag is None:
        raise NotFound("Tag not found")
    return tag


async def _name_taken(db: AsyncSession, community_id: int, name: str, exclude_id: Optional[int] = None) -> bool:
    query = select(TaskTag.id).where(TaskTag.community_id == community_id).where(TaskTag.name == name)
    if exclude_id is not None:
        query = query.where(TaskTag.id != exclude_id)
    return (await db.execute(query)).first() is not None


async def _first_community_id(db: AsyncSession, user_id: int) -> Optional[int]:
    result = await db.execute(
        select(CommunityMember.community_id)
        .where(CommunityMember.user_id == user_id)
        .where(CommunityMember.is_active.is_(True))
        .order_by(CommunityMember.joined_at, CommunityMember.id)
        .limit(1)
    )
    return result.scalar_one_or_none()


def _clean_name(name: Optional[str]) -> str:
    name = (name or "").strip()
    if len(name) < 2:
        raise ValidationFailed("Tag name must be at least 2 characters")
    return name


async def _commit_unique(db: AsyncSession) -> None:
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise Conflict("A tag with this name already exists in this community")


async def list_tags(db: AsyncSession, actor, community_id: Optional[int] = None) -> List[TaskTag]:
    """Tags of ``community_id``, or of the actor's first community when omitted."""
    if community_id is None:
        community_id = await _first_community_id(db, actor.id)
        if community_id is None:
            raise ValidationFailed("Community ID is required")
    await require_member(db, actor, community_id, "Access denied to this community")

    result = await db.execute(
        select(TaskTag)
        .where(TaskTag.community_id == community_id)
        .options(selectinload(TaskTag.creator))
        .order_by(TaskTag.name)
    )
    return list(result.scalars().all())


async def create_tag(
    db: AsyncSession, actor, community_id: int, name: str, color: Optional[str] = None
) -> TaskTag:
    community = await db.get(Community, community_id)
    if community is None or not community.is_active:
        raise NotFound("Community not found")
    await require_member(db, actor, community.id, "Access denied to this community")

    name = _clean_name(name)
    if await _name_taken(db, community.id, name):
        raise Conflict("A tag with this name already exists in this community")

    tag = TaskTag(community_id=community.id, name=name, color=color or DEFAULT_COLOR, created_by=actor.id)
    db.add(tag)
    await db.flush()
    tag_id = tag.id
    await _commit_unique(db)
    logger.info("tag %s (%s) created in community %s", tag_id, name, community_id)
    return await _load_tag(db, tag_id)


async def update_tag(db: AsyncSession, tag_id: int, actor, changes: dict) -> TaskTag:
    tag = await _load_tag(db, tag_id)
    await require_community_admin(db, actor, tag.community_id, "Only community administrators can edit tags")

    if changes.get("name") is not None:
        name = _clean_name(changes["name"])
        if await _name_taken(db, tag.community_id, name, exclude_id=tag.id):
            raise Conflict("A tag with this name already exists in this community")
        tag.name = name
    if changes.get("color") is not None:
        tag.color = changes["color"]
    await _commit_unique(db)
    return await _load_tag(db, tag_id)


async def delete_tag(db: AsyncSession, tag_id: int, actor) -> None:
    tag = await _load_tag(db, tag_id)
    await require_community_admin(db, actor, tag.community_id, "Only community administrators can delete tags")
    await db.delete(tag)
    await db.commit()
    logger.info("tag %s deleted by user %s", tag_id, actor.id)


async def tags_for_task(db: AsyncSession, task_id: int, actor) -> List[TaskTag]:
    task = await db.get(Task, task_id)
    if task is None:
        raise NotFound("Task not found")
    await require_member(db, actor, task.community_id, "Access denied to this community")
    return await _task_tags(db, task.id)


async def _task_tags(db: AsyncSession, task_id: int) -> List[TaskTag]:
    result = await db.execute(
        select(TaskTag)
        .join(TaskTagAssignment, TaskTagAssignment.tag_id == TaskTag.id)
        .where(TaskTagAssignment.task_id == task_id)
        .order_by(TaskTag.name)
    )
    return list(result.scalars().all())


async def assign_tags_to_task(db: AsyncSession, task_id: int, tag_ids: Sequence[int], actor) -> List[TaskTag]:
    """Replace the task's tags with ``tag_ids``; an empty list clears them."""
    task = await db.get(Task, task_id, with_for_update=True)
    if task is None:
        raise NotFound("Task not found")
    await require_member(db, actor, task.community_id, "Access denied to this community")

    tag_ids = list(dict.fromkeys(tag_ids))
    if tag_ids:
        result = await db.execute(select(TaskTag.id, TaskTag.community_id).where(TaskTag.id.in_(tag_ids)))
        found = dict(result.all())
        missing = [tag_id for tag_id in tag_ids if tag_id not in found]
        if missing:
            raise NotFound(f"Tags not found: {missing}")
        if any(community_id != task.community_id for community_id in found.values()):
            raise ValidationFailed("Tags must belong to the task's community")

    await db.execute(delete(TaskTagAssignment).where(TaskTagAssignment.task_id == task.id))
    for tag_id in tag_ids:
        db.add(TaskTagAssignment(task_id=task.id, tag_id=tag_id))
    await db.commit()
    logger.info("task %s tagged with %s by user %s", task.id, tag_ids, actor.id)
    return await _task_tags(db, task.id)


async def tasks_by_tag(
    db: AsyncSession, tag_id: int, actor, limit: int = 50, offset: int = 0
) -> Tuple[TaskTag, List[Task], int]:
    tag = await _load_tag(db, tag_id)
    await require_member(db, actor, tag.community_id, "Access denied to this community")

    tagged = select(TaskTagAssignment.task_id).where(TaskTagAssignment.tag_id == tag.id)
    total = (await db.execute(select(func.count()).select_from(tagged.subquery()))).scalar_one()
    result = await db.execute(
        select(Task)
        .where(Task.id.in_(tagged))
        .options(selectinload(Task.community))
        .order_by(Task.created_at.desc(), Task.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return tag, list(result.scalars().all()), total
