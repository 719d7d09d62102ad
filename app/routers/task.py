from math import ceil
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.core.auth import get_current_user
from app.schemas.task import (
    AssignmentResponse,
    AssignmentStatusUpdate,
    AssignUsers,
    AssignUsersResponse,
    TaskCreate,
    TaskListResponse,
    TaskResponse,
    TaskReview,
    TaskSubmit,
    TaskUpdate,
    UserAssignmentResponse,
)
from app.services import tasks as engine
from app.services.notifications import NotificationOutbox, dispatch_events

router = APIRouter(prefix="/tasks", tags=["tasks"])


def get_outbox() -> NotificationOutbox:
    return NotificationOutbox()


def _dispatch(outbox: NotificationOutbox, background_tasks: BackgroundTasks) -> None:
    # Runs after the response is sent; delivery failures never reach the caller
    events = outbox.drain()
    if events:
        background_tasks.add_task(dispatch_events, events)


@router.post("", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task(
    task_in: TaskCreate,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
    outbox: NotificationOutbox = Depends(get_outbox),
):
    task = await engine.create_task(db, task_in, current_user, outbox)
    _dispatch(outbox, background_tasks)
    return task


@router.get("", response_model=TaskListResponse)
async def list_tasks(
    community_id: Optional[int] = None,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    assigned_to: Optional[int] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
):
    tasks, total = await engine.list_tasks(
        db,
        current_user,
        community_id=community_id,
        status=status,
        priority=priority,
        assigned_to=assigned_to,
        search=search,
        page=page,
        limit=limit,
    )
    return TaskListResponse(tasks=tasks, total=total, page=page, limit=limit, pages=ceil(total / limit))


@router.get("/me", response_model=list[UserAssignmentResponse])
async def get_my_assignments(
    status: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
):
    return await engine.list_user_assignments(db, current_user.id, status)


@router.get("/{task_id}", response_model=TaskResponse)
async def get_task(
    task_id: int,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
):
    return await engine.get_task(db, task_id, current_user)


@router.put("/{task_id}", response_model=TaskResponse)
async def update_task(
    task_id: int,
    task_in: TaskUpdate,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
    outbox: NotificationOutbox = Depends(get_outbox),
):
    task = await engine.update_task(db, task_id, task_in, current_user, outbox)
    _dispatch(outbox, background_tasks)
    return task


@router.delete("/{task_id}")
async def delete_task(
    task_id: int,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
    outbox: NotificationOutbox = Depends(get_outbox),
):
    await engine.delete_task(db, task_id, current_user, outbox)
    _dispatch(outbox, background_tasks)
    return {"message": "Task deleted successfully"}


@router.post("/{task_id}/assign-users", response_model=AssignUsersResponse)
async def assign_users(
    task_id: int,
    body: AssignUsers,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
    outbox: NotificationOutbox = Depends(get_outbox),
):
    assignments = await engine.assign_users(db, task_id, body.user_ids, current_user, outbox)
    _dispatch(outbox, background_tasks)
    return AssignUsersResponse(
        message=f"Task assigned to {len(assignments)} user(s) successfully",
        assignments=assignments,
    )


@router.post("/{task_id}/self-assign", response_model=AssignmentResponse, status_code=status.HTTP_201_CREATED)
async def self_assign(
    task_id: int,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
    outbox: NotificationOutbox = Depends(get_outbox),
):
    assignment = await engine.self_assign(db, task_id, current_user, outbox)
    _dispatch(outbox, background_tasks)
    return assignment


@router.put("/{task_id}/status", response_model=AssignmentResponse)
async def update_assignment_status(
    task_id: int,
    body: AssignmentStatusUpdate,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
):
    return await engine.update_assignment_status(db, task_id, current_user, body.status, body.notes)


@router.post("/{task_id}/submit", response_model=TaskResponse)
async def submit_task(
    task_id: int,
    body: TaskSubmit,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
    outbox: NotificationOutbox = Depends(get_outbox),
):
    task = await engine.submit(db, task_id, current_user, body.submission_link, body.submission_notes, outbox)
    _dispatch(outbox, background_tasks)
    return task


@router.post("/{task_id}/review", response_model=TaskResponse)
async def review_task(
    task_id: int,
    body: TaskReview,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
    outbox: NotificationOutbox = Depends(get_outbox),
):
    task = await engine.review(db, task_id, body.action, body.review_notes, current_user, outbox)
    _dispatch(outbox, background_tasks)
    return task


@router.post("/{task_id}/review/{user_id}", response_model=TaskResponse)
async def review_assignment(
    task_id: int,
    user_id: int,
    body: TaskReview,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
    outbox: NotificationOutbox = Depends(get_outbox),
):
    _, task = await engine.review_individual(
        db, task_id, user_id, body.action, body.review_notes, current_user, outbox
    )
    _dispatch(outbox, background_tasks)
    return task


@router.delete("/{task_id}/revoke", response_model=TaskResponse)
async def revoke_assignment(
    task_id: int,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
):
    return await engine.revoke(db, task_id, current_user)
