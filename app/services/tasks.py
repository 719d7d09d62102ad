"""Task lifecycle engine.

Every public coroutine here is one logical transition: it loads the rows it
needs, checks the rules in ``app.services.lifecycle``, writes task,
assignment, contribution and point changes, and commits once. Events are
published to the outbox only after that commit, so a delivery failure can
never undo a transition.
"""

import logging
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.exceptions import (
    CapacityExceeded,
    Conflict,
    DeadlinePassed,
    DuplicateAssignment,
    Forbidden,
    NotFound,
    ValidationFailed,
)
from app.models.community import Community, CommunityMember
from app.models.contribution import Contribution
from app.models.task import Task, TaskAssignment
from app.models.user import User
from app.schemas.task import TaskCreate, TaskUpdate
from app.services import notifications as events
from app.services.communities import is_platform_admin, require_community_admin, require_member, get_membership
from app.services.lifecycle import (
    SUBMITTABLE,
    TASK_CLOSED,
    TASK_COMPLETION_POINTS,
    AssignmentEvent,
    AssignmentStatus,
    TaskStatus,
    TaskType,
    aggregate_review_outcome,
    can_revoke,
    is_assignable,
    next_assignment_status,
    normalize_max_assignees,
    open_slots,
    review_event,
    submission_advances_task,
)
from app.services.notifications import NotificationOutbox, TaskEvent
from app.utils.timeutils import as_utc, utcnow

logger = logging.getLogger(__name__)


def _detail_options():
    return (
        selectinload(Task.creator),
        selectinload(Task.community),
        selectinload(Task.assignments).selectinload(TaskAssignment.user),
    )


async def load_task(db: AsyncSession, task_id: int) -> Task:
    """Task with creator, community and assignees, refreshed from the database."""
    result = await db.execute(
        select(Task).options(*_detail_options()).where(Task.id == task_id).execution_options(populate_existing=True)
    )
    task = result.scalar_one_or_none()
    if task is None:
        raise NotFound("Task not found")
    return task


async def _get_task(db: AsyncSession, task_id: int, lock: bool = False) -> Task:
    query = select(Task).where(Task.id == task_id).options(selectinload(Task.community))
    if lock:
        query = query.with_for_update(of=Task)
    result = await db.execute(query)
    task = result.scalar_one_or_none()
    if task is None:
        raise NotFound("Task not found")
    return task


async def _get_assignment(db: AsyncSession, task_id: int, user_id: int) -> Optional[TaskAssignment]:
    result = await db.execute(
        select(TaskAssignment)
        .where(TaskAssignment.task_id == task_id)
        .where(TaskAssignment.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def _assignments(db: AsyncSession, task_id: int) -> List[TaskAssignment]:
    result = await db.execute(
        select(TaskAssignment).where(TaskAssignment.task_id == task_id).order_by(TaskAssignment.id)
    )
    return list(result.scalars().all())


async def assignee_count(db: AsyncSession, task_id: int) -> int:
    result = await db.execute(
        select(func.count(TaskAssignment.id)).where(TaskAssignment.task_id == task_id)
    )
    return result.scalar_one()


async def _assignments_with_users(db: AsyncSession, assignment_ids: Sequence[int]) -> List[TaskAssignment]:
    if not assignment_ids:
        return []
    result = await db.execute(
        select(TaskAssignment)
        .where(TaskAssignment.id.in_(assignment_ids))
        .options(selectinload(TaskAssignment.user))
        .order_by(TaskAssignment.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def _require_users_exist(db: AsyncSession, user_ids: Sequence[int]) -> None:
    result = await db.execute(select(User.id).where(User.id.in_(user_ids)))
    found = set(result.scalars().all())
    missing = [user_id for user_id in user_ids if user_id not in found]
    if missing:
        raise NotFound(f"Users not found: {missing}")


def _event(event_type: str, task: Task, actor: User, recipients, **extra) -> TaskEvent:
    return TaskEvent(
        type=event_type,
        task_id=task.id,
        task_title=task.title,
        actor_name=actor.display_name,
        community_id=task.community_id,
        community_name=task.community.name if task.community else "Community",
        recipient_ids=list(recipients),
        **extra,
    )


def _headline_priority(task: Task) -> str:
    return "high" if task.priority in ("high", "urgent") else "medium"


async def award_completion(db: AsyncSession, task: Task, user_id: int) -> Contribution:
    """Credit one completed assignment: bump the cached total and append the ledger row."""
    await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(points=User.points + TASK_COMPLETION_POINTS)
    )
    contribution = Contribution(
        user_id=user_id,
        task_id=task.id,
        community_id=task.community_id,
        type="task_completion",
        points=TASK_COMPLETION_POINTS,
        description=f"Completed task: {task.title}",
    )
    db.add(contribution)
    return contribution


# ---------------------------------------------------------------------------
# Task CRUD
# ---------------------------------------------------------------------------

async def create_task(db: AsyncSession, task_in: TaskCreate, actor: User, outbox: NotificationOutbox) -> Task:
    community = await db.get(Community, task_in.community_id)
    if community is None or not community.is_active:
        raise NotFound("Community not found")
    await require_community_admin(db, actor, community.id, "Only community administrators can create tasks")

    if task_in.deadline is not None and as_utc(task_in.deadline) <= utcnow():
        raise ValidationFailed("Deadline must be in the future")

    max_assignees = normalize_max_assignees(task_in.task_type, task_in.max_assignees)
    assignee_ids = list(dict.fromkeys(task_in.assignee_ids))
    if len(assignee_ids) > max_assignees:
        raise CapacityExceeded(
            f"Cannot assign {len(assignee_ids)} users. Only {max_assignees} slots available."
        )
    if assignee_ids:
        await _require_users_exist(db, assignee_ids)

    task = Task(
        title=task_in.title.strip(),
        description=task_in.description,
        community=community,
        assigned_by=actor.id,
        deadline=task_in.deadline,
        priority=task_in.priority,
        estimated_hours=task_in.estimated_hours,
        task_type=task_in.task_type,
        max_assignees=max_assignees,
        status=TaskStatus.NOT_STARTED.value,
        subtask_count=0,
        completed_subtask_count=0,
    )
    db.add(task)
    await db.flush()

    now = utcnow()
    for user_id in assignee_ids:
        db.add(TaskAssignment(
            task_id=task.id,
            user_id=user_id,
            status=AssignmentStatus.ASSIGNED.value,
            assigned_at=now,
        ))
    await db.commit()
    logger.info("task %s created in community %s by user %s", task.id, community.id, actor.id)

    members = await events.community_member_ids(db, community.id, exclude=[actor.id])
    outbox.publish(_event(events.TASK_CREATED, task, actor, members, priority=_headline_priority(task)))
    outbox.publish(_event(events.TASK_ASSIGNED, task, actor, assignee_ids, priority=_headline_priority(task)))
    return await load_task(db, task.id)


async def get_task(db: AsyncSession, task_id: int, actor: User) -> Task:
    task = await load_task(db, task_id)
    await require_member(db, actor, task.community_id, "Insufficient permissions")
    return task


async def list_tasks(
    db: AsyncSession,
    actor: User,
    community_id: Optional[int] = None,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    assigned_to: Optional[int] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
) -> Tuple[List[Task], int]:
    query = select(Task)

    if not is_platform_admin(actor):
        member_of = select(CommunityMember.community_id).where(
            CommunityMember.user_id == actor.id,
            CommunityMember.is_active.is_(True),
        )
        query = query.where(Task.community_id.in_(member_of))
    if community_id:
        query = query.where(Task.community_id == community_id)
    if status:
        query = query.where(Task.status == status)
    if priority:
        query = query.where(Task.priority == priority)
    if assigned_to:
        query = query.where(
            Task.id.in_(select(TaskAssignment.task_id).where(TaskAssignment.user_id == assigned_to))
        )
    if search:
        pattern = f"%{search}%"
        query = query.where(or_(Task.title.ilike(pattern), Task.description.ilike(pattern)))

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()

    result = await db.execute(
        query.options(*_detail_options())
        .order_by(Task.created_at.desc(), Task.id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    )
    return list(result.scalars().all()), total


async def list_user_assignments(
    db: AsyncSession, user_id: int, status: Optional[str] = None
) -> List[TaskAssignment]:
    query = (
        select(TaskAssignment)
        .where(TaskAssignment.user_id == user_id)
        .options(
            selectinload(TaskAssignment.user),
            selectinload(TaskAssignment.task).selectinload(Task.community),
        )
        .order_by(TaskAssignment.assigned_at.desc(), TaskAssignment.id.desc())
    )
    if status:
        query = query.where(TaskAssignment.status == status)
    result = await db.execute(query)
    return list(result.scalars().all())


async def update_task(
    db: AsyncSession, task_id: int, task_in: TaskUpdate, actor: User, outbox: NotificationOutbox
) -> Task:
    task = await _get_task(db, task_id, lock=True)
    await require_community_admin(db, actor, task.community_id, "Only community administrators can update tasks")

    changes = task_in.model_dump(exclude_unset=True)
    if "title" in changes:
        if changes["title"] is None or not changes["title"].strip():
            raise ValidationFailed("Title cannot be empty")
        changes["title"] = changes["title"].strip()
    if "priority" in changes and changes["priority"] is None:
        del changes["priority"]
    if changes.get("deadline") is not None and as_utc(changes["deadline"]) <= utcnow():
        raise ValidationFailed("Deadline must be in the future")

    if "max_assignees" in changes and changes["max_assignees"] is not None:
        if task.task_type != TaskType.GROUP.value:
            raise ValidationFailed("Only group tasks can change max_assignees")
        current = await assignee_count(db, task.id)
        if changes["max_assignees"] < current:
            raise CapacityExceeded(
                f"Task already has {current} assignees; max_assignees cannot go below that"
            )
    else:
        changes.pop("max_assignees", None)

    for field, value in changes.items():
        setattr(task, field, value)
    await db.commit()
    logger.info("task %s updated by user %s: %s", task.id, actor.id, sorted(changes))

    assignees = [a.user_id for a in await _assignments(db, task.id)]
    outbox.publish(_event(events.TASK_UPDATED, task, actor, assignees))
    return await load_task(db, task.id)


async def delete_task(db: AsyncSession, task_id: int, actor: User, outbox: NotificationOutbox) -> None:
    task = await _get_task(db, task_id, lock=True)
    await require_community_admin(db, actor, task.community_id, "Only community administrators can delete tasks")

    assignees = [a.user_id for a in await _assignments(db, task.id)]
    event = _event(events.TASK_DELETED, task, actor, assignees)
    event.task_id = None

    await db.delete(task)
    await db.commit()
    logger.info("task %s deleted by user %s", task_id, actor.id)
    outbox.publish(event)


# ---------------------------------------------------------------------------
# Assignment lifecycle
# ---------------------------------------------------------------------------

async def assign_users(
    db: AsyncSession, task_id: int, user_ids: Sequence[int], actor: User, outbox: NotificationOutbox
) -> List[TaskAssignment]:
    """Attach users to a task at ``assigned``. Already-assigned users are skipped."""
    user_ids = list(dict.fromkeys(user_ids))
    if not user_ids:
        raise ValidationFailed("User IDs array is required")

    task = await _get_task(db, task_id, lock=True)
    await require_community_admin(db, actor, task.community_id, "Only community administrators can assign tasks")

    if not is_assignable(task.task_type, task.status):
        if task.task_type == TaskType.GROUP.value:
            raise Conflict("Task is no longer available for assignment")
        raise Conflict("Task is not available for assignment")

    current = await assignee_count(db, task.id)
    if current + len(user_ids) > task.max_assignees:
        raise CapacityExceeded(
            f"Cannot assign {len(user_ids)} users. "
            f"Only {open_slots(task.max_assignees, current)} slots available."
        )
    await _require_users_exist(db, user_ids)

    existing = {a.user_id for a in await _assignments(db, task.id)}
    now = utcnow()
    created: List[TaskAssignment] = []
    for user_id in user_ids:
        if user_id in existing:
            logger.info("user %s already assigned to task %s, skipping", user_id, task.id)
            continue
        assignment = TaskAssignment(
            task_id=task.id,
            user_id=user_id,
            status=AssignmentStatus.ASSIGNED.value,
            assigned_at=now,
        )
        try:
            async with db.begin_nested():
                db.add(assignment)
        except IntegrityError:
            # Lost a race with a concurrent assignment for the same pair
            logger.warning("duplicate assignment of user %s to task %s skipped", user_id, task.id)
            continue
        created.append(assignment)

    await db.commit()
    new_ids = [a.user_id for a in created]
    logger.info("task %s assigned to users %s by user %s", task.id, new_ids, actor.id)

    outbox.publish(_event(events.TASK_ASSIGNED, task, actor, new_ids, priority=_headline_priority(task)))
    return await _assignments_with_users(db, [a.id for a in created])


async def self_assign(db: AsyncSession, task_id: int, actor: User, outbox: NotificationOutbox) -> TaskAssignment:
    task = await _get_task(db, task_id, lock=True)

    if await get_membership(db, actor.id, task.community_id) is None:
        raise Forbidden("You must be a member of this community to self-assign tasks")

    group = task.task_type == TaskType.GROUP.value
    if not is_assignable(task.task_type, task.status):
        if group:
            raise Conflict("Task is no longer available for self-assignment")
        raise Conflict("Task is not available for self-assignment")

    if await _get_assignment(db, task.id, actor.id) is not None:
        raise DuplicateAssignment("You are already assigned to this task")

    current = await assignee_count(db, task.id)
    if group and current >= task.max_assignees:
        raise CapacityExceeded("Maximum number of assignees reached for this task")
    if not group and current > 0:
        raise CapacityExceeded("This individual task is already assigned to someone")

    now = utcnow()
    assignment = TaskAssignment(
        task_id=task.id,
        user_id=actor.id,
        status=AssignmentStatus.ACCEPTED.value,
        assigned_at=now,
        accepted_at=now,
    )
    try:
        async with db.begin_nested():
            db.add(assignment)
    except IntegrityError:
        logger.warning("concurrent self-assignment of user %s to task %s rejected", actor.id, task_id)
        raise DuplicateAssignment("You are already assigned to this task")

    if task.status == TaskStatus.NOT_STARTED.value:
        task.status = TaskStatus.IN_PROGRESS.value
    await db.commit()
    logger.info("user %s self-assigned to task %s", actor.id, task.id)

    admins = [user_id for user_id in await events.community_admin_ids(db, task.community_id) if user_id != actor.id]
    outbox.publish(_event(events.TASK_SELF_ASSIGNED, task, actor, admins))
    return (await _assignments_with_users(db, [assignment.id]))[0]


_ASSIGNEE_MOVES = {
    AssignmentStatus.ACCEPTED.value: AssignmentEvent.ACCEPT,
    AssignmentStatus.IN_PROGRESS.value: AssignmentEvent.START,
}


async def update_assignment_status(
    db: AsyncSession, task_id: int, actor: User, status: str, notes: Optional[str] = None
) -> TaskAssignment:
    """Let an assignee accept or start their own assignment."""
    move = _ASSIGNEE_MOVES.get(status)
    if move is None:
        raise ValidationFailed("Status must be 'accepted' or 'in_progress'")

    task = await _get_task(db, task_id, lock=True)
    assignment = await _get_assignment(db, task.id, actor.id)
    if assignment is None:
        raise NotFound("Task assignment not found")

    target = next_assignment_status(assignment.status, move)
    now = utcnow()
    assignment.status = target.value
    if assignment.accepted_at is None:
        assignment.accepted_at = now
    if notes is not None:
        assignment.notes = notes
    if task.status == TaskStatus.NOT_STARTED.value:
        task.status = TaskStatus.IN_PROGRESS.value
    await db.commit()
    logger.info("assignment %s of task %s moved to %s", assignment.id, task.id, target.value)
    return (await _assignments_with_users(db, [assignment.id]))[0]


async def submit(
    db: AsyncSession,
    task_id: int,
    actor: User,
    submission_link: Optional[str],
    submission_notes: Optional[str],
    outbox: NotificationOutbox,
) -> Task:
    task = await _get_task(db, task_id, lock=True)
    assignment = await _get_assignment(db, task.id, actor.id)
    if assignment is None:
        raise Forbidden("You are not assigned to this task")
    if assignment.status not in SUBMITTABLE:
        raise Forbidden("Task cannot be submitted in current status")

    now = utcnow()
    deadline = as_utc(task.deadline)
    if deadline is not None and now > deadline:
        raise DeadlinePassed("Task cannot be submitted after the deadline has passed")

    assignment.status = next_assignment_status(assignment.status, AssignmentEvent.SUBMIT).value
    assignment.submission_link = submission_link or None
    assignment.submission_notes = submission_notes or None
    assignment.submitted_at = now
    await db.flush()

    # A task that is already settled keeps its outcome
    statuses = [a.status for a in await _assignments(db, task.id)]
    if task.status not in TASK_CLOSED and submission_advances_task(task.task_type, statuses):
        task.status = TaskStatus.SUBMITTED.value
        task.submitted_at = now
    await db.commit()
    logger.info("task %s submitted by user %s (task status %s)", task.id, actor.id, task.status)

    admins = await events.community_admin_ids(db, task.community_id)
    outbox.publish(_event(events.TASK_SUBMITTED, task, actor, admins, priority="high"))
    return await load_task(db, task.id)


async def review(
    db: AsyncSession,
    task_id: int,
    action: str,
    review_notes: Optional[str],
    actor: User,
    outbox: NotificationOutbox,
) -> Task:
    """Approve or reject a submitted task and every assignment on it."""
    event = review_event(action)
    task = await _get_task(db, task_id, lock=True)
    await require_community_admin(
        db, actor, task.community_id, "Only community administrators can review task submissions"
    )
    if task.status != TaskStatus.SUBMITTED.value:
        raise Conflict("Task is not in submitted status")

    approved = event is AssignmentEvent.APPROVE
    now = utcnow()
    new_status = TaskStatus.COMPLETED if approved else TaskStatus.REJECTED

    task.status = new_status.value
    task.reviewed_by = actor.id
    task.reviewed_at = now
    task.review_notes = review_notes or None
    task.completion_date = now if approved else None

    assignments = await _assignments(db, task.id)
    for assignment in assignments:
        already_completed = assignment.status == AssignmentStatus.COMPLETED.value
        if already_completed and not approved:
            continue
        assignment.status = AssignmentStatus.COMPLETED.value if approved else AssignmentStatus.REJECTED.value
        assignment.reviewed_by = actor.id
        assignment.reviewed_at = now
        assignment.review_notes = review_notes or None
        assignment.completed_at = now if approved else None
        if approved and not already_completed:
            await award_completion(db, task, assignment.user_id)
    await db.commit()
    logger.info("task %s %s by user %s", task.id, new_status.value, actor.id)

    assignees = [a.user_id for a in assignments if approved or a.status != AssignmentStatus.COMPLETED.value]
    if approved:
        outbox.publish(_event(events.TASK_APPROVED, task, actor, assignees, priority="high"))
    else:
        outbox.publish(_event(events.TASK_REJECTED, task, actor, assignees, priority="high", reason=review_notes))
    return await load_task(db, task.id)


async def review_individual(
    db: AsyncSession,
    task_id: int,
    user_id: int,
    action: str,
    review_notes: Optional[str],
    actor: User,
    outbox: NotificationOutbox,
) -> Tuple[TaskAssignment, Task]:
    """Review one assignee's submission, then settle the task from all outcomes."""
    event = review_event(action)
    task = await _get_task(db, task_id, lock=True)
    await require_community_admin(
        db, actor, task.community_id, "Only community administrators can review submissions"
    )
    assignment = await _get_assignment(db, task.id, user_id)
    if assignment is None:
        raise NotFound("Assignment not found")
    if assignment.status != AssignmentStatus.SUBMITTED.value:
        raise Conflict("Assignment is not in submitted status")

    approved = event is AssignmentEvent.APPROVE
    now = utcnow()
    assignment.status = next_assignment_status(assignment.status, event).value
    assignment.reviewed_by = actor.id
    assignment.reviewed_at = now
    assignment.review_notes = review_notes or None
    assignment.completed_at = now if approved else None
    if approved:
        await award_completion(db, task, user_id)
    await db.flush()

    outcome = aggregate_review_outcome(a.status for a in await _assignments(db, task.id))
    if outcome is not None and task.status != outcome.value:
        task.status = outcome.value
        task.reviewed_by = actor.id
        task.reviewed_at = now
        task.completion_date = now if outcome is TaskStatus.COMPLETED else None
    await db.commit()
    logger.info(
        "assignment of user %s on task %s %s by user %s (task status %s)",
        user_id, task.id, assignment.status, actor.id, task.status,
    )

    if approved:
        outbox.publish(_event(events.TASK_APPROVED, task, actor, [user_id], priority="high"))
    else:
        outbox.publish(_event(events.TASK_REJECTED, task, actor, [user_id], priority="high", reason=review_notes))
    return (await _assignments_with_users(db, [assignment.id]))[0], await load_task(db, task.id)


async def revoke(db: AsyncSession, task_id: int, actor: User) -> Task:
    """Withdraw the actor's own assignment before it has been submitted."""
    task = await _get_task(db, task_id, lock=True)
    assignment = await _get_assignment(db, task.id, actor.id)
    if assignment is None:
        raise NotFound("You are not assigned to this task")
    if not can_revoke(assignment.status):
        raise Conflict("Cannot revoke assignment for submitted or completed tasks")

    await db.delete(assignment)
    await db.flush()
    if await assignee_count(db, task.id) == 0:
        task.status = TaskStatus.NOT_STARTED.value
    await db.commit()
    logger.info("user %s revoked assignment on task %s", actor.id, task.id)
    return await load_task(db, task.id)
