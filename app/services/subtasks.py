"""Subtasks and the progress counters cached on their parent task.

``Task.subtask_count`` and ``Task.completed_subtask_count`` must always equal
the live counts of subtask rows. Every mutation here adjusts them in the same
transaction as the row change, and only on a real edge into or out of
``completed``.
"""

import logging
from typing import List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFound, ValidationFailed
from app.models.subtask import Subtask
from app.models.task import Task
from app.models.user import User
from app.services.communities import require_member
from app.services.lifecycle import SubtaskStatus
from app.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

COMPLETED = SubtaskStatus.COMPLETED.value


def progress(total: int, completed: int) -> dict:
    percentage = round(completed / total * 100) if total > 0 else 0
    return {"total": total, "completed": completed, "percentage": percentage}


async def _get_parent(db: AsyncSession, task_id: int, actor) -> Task:
    task = await db.get(Task, task_id, with_for_update=True)
    if task is None:
        raise NotFound("Task not found")
    await require_member(db, actor, task.community_id, "Access denied to this community")
    return task


async def _get_subtask(db: AsyncSession, subtask_id: int) -> Subtask:
    subtask = await db.get(Subtask, subtask_id)
    if subtask is None:
        raise NotFound("Subtask not found")
    return subtask


async def _require_assignee(db: AsyncSession, user_id: int) -> None:
    if await db.get(User, user_id) is None:
        raise NotFound("Assigned user not found")


async def _ordered(db: AsyncSession, task_id: int) -> List[Subtask]:
    result = await db.execute(
        select(Subtask)
        .where(Subtask.parent_task_id == task_id)
        .order_by(Subtask.position, Subtask.created_at, Subtask.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def list_subtasks(db: AsyncSession, task_id: int, actor):
    task = await _get_parent(db, task_id, actor)
    subtasks = await _ordered(db, task.id)
    done = sum(1 for subtask in subtasks if subtask.status == COMPLETED)
    return subtasks, progress(len(subtasks), done)


async def create_subtask(
    db: AsyncSession,
    task_id: int,
    actor,
    title: str,
    description: Optional[str] = None,
    assigned_to: Optional[int] = None,
    position: Optional[int] = None,
) -> Subtask:
    if not title or not title.strip():
        raise ValidationFailed("Title is required")
    task = await _get_parent(db, task_id, actor)
    if assigned_to is not None:
        await _require_assignee(db, assigned_to)

    if position is None:
        result = await db.execute(
            select(func.max(Subtask.position)).where(Subtask.parent_task_id == task.id)
        )
        highest = result.scalar_one_or_none()
        position = highest + 1 if highest is not None else 1

    subtask = Subtask(
        parent_task_id=task.id,
        title=title.strip(),
        description=description,
        assigned_to=assigned_to,
        created_by=actor.id,
        position=position,
        status=SubtaskStatus.NOT_STARTED.value,
    )
    db.add(subtask)
    task.subtask_count = (task.subtask_count or 0) + 1
    await db.commit()
    await db.refresh(subtask)
    logger.info("subtask %s created on task %s at position %s", subtask.id, task.id, position)
    return subtask


async def update_subtask(db: AsyncSession, subtask_id: int, actor, changes: dict) -> Subtask:
    subtask = await _get_subtask(db, subtask_id)
    task = await _get_parent(db, subtask.parent_task_id, actor)

    if "title" in changes:
        if not (changes["title"] or "").strip():
            raise ValidationFailed("Title cannot be empty")
        changes["title"] = changes["title"].strip()
    for required in ("status", "position"):
        if required in changes and changes[required] is None:
            del changes[required]
    if changes.get("assigned_to") is not None:
        await _require_assignee(db, changes["assigned_to"])

    was_completed = subtask.status == COMPLETED
    for field, value in changes.items():
        setattr(subtask, field, value)
    is_completed = subtask.status == COMPLETED

    if is_completed and not was_completed:
        subtask.completed_at = utcnow()
        subtask.completed_by = actor.id
        task.completed_subtask_count = (task.completed_subtask_count or 0) + 1
    elif was_completed and not is_completed:
        subtask.completed_at = None
        subtask.completed_by = None
        task.completed_subtask_count = max((task.completed_subtask_count or 0) - 1, 0)

    await db.commit()
    await db.refresh(subtask)
    return subtask


async def delete_subtask(db: AsyncSession, subtask_id: int, actor) -> None:
    subtask = await _get_subtask(db, subtask_id)
    task = await _get_parent(db, subtask.parent_task_id, actor)

    task.subtask_count = max((task.subtask_count or 0) - 1, 0)
    if subtask.status == COMPLETED:
        task.completed_subtask_count = max((task.completed_subtask_count or 0) - 1, 0)
    await db.delete(subtask)
    await db.commit()
    logger.info("subtask %s deleted from task %s", subtask_id, task.id)


async def reorder_subtasks(db: AsyncSession, task_id: int, subtask_ids: Sequence[int], actor) -> List[Subtask]:
    """Reindex the task's subtasks so each gets its index in ``subtask_ids``.

    Ids that belong to another task are ignored.
    """
    task = await _get_parent(db, task_id, actor)
    owned = {subtask.id: subtask for subtask in await _ordered(db, task.id)}
    for index, subtask_id in enumerate(subtask_ids):
        subtask = owned.get(subtask_id)
        if subtask is not None:
            subtask.position = index
    await db.commit()
    return await _ordered(db, task.id)
