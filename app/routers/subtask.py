from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.core.auth import get_current_user
from app.schemas.subtask import (
    SubtaskCreate,
    SubtaskListResponse,
    SubtaskReorder,
    SubtaskResponse,
    SubtaskUpdate,
)
from app.services import subtasks as service

router = APIRouter(prefix="/subtasks", tags=["subtasks"])


@router.get("/task/{task_id}", response_model=SubtaskListResponse)
async def list_subtasks(
    task_id: int,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
):
    subtasks, progress = await service.list_subtasks(db, task_id, current_user)
    return SubtaskListResponse(subtasks=subtasks, progress=progress)


@router.post("/task/{task_id}", response_model=SubtaskResponse, status_code=status.HTTP_201_CREATED)
async def create_subtask(
    task_id: int,
    subtask_in: SubtaskCreate,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
):
    return await service.create_subtask(
        db,
        task_id,
        current_user,
        title=subtask_in.title,
        description=subtask_in.description,
        assigned_to=subtask_in.assigned_to,
        position=subtask_in.position,
    )


@router.put("/{subtask_id}", response_model=SubtaskResponse)
async def update_subtask(
    subtask_id: int,
    subtask_in: SubtaskUpdate,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
):
    return await service.update_subtask(db, subtask_id, current_user, subtask_in.model_dump(exclude_unset=True))


@router.delete("/{subtask_id}")
async def delete_subtask(
    subtask_id: int,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
):
    await service.delete_subtask(db, subtask_id, current_user)
    return {"message": "Subtask deleted successfully"}


@router.put("/task/{task_id}/reorder", response_model=list[SubtaskResponse])
async def reorder_subtasks(
    task_id: int,
    body: SubtaskReorder,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
):
    return await service.reorder_subtasks(db, task_id, body.subtask_ids, current_user)
