from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.core.auth import get_current_user
from app.schemas.tag import (
    TagAssign,
    TagCreate,
    TaggedTasksResponse,
    TagListResponse,
    TagResponse,
    TagUpdate,
    TaskTagsResponse,
)
from app.services import tags as service

router = APIRouter(prefix="/tags", tags=["tags"])


@router.get("", response_model=TagListResponse)
async def list_tags(
    community_id: Optional[int] = None,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
):
    tags = await service.list_tags(db, current_user, community_id)
    return TagListResponse(tags=tags, total=len(tags))


@router.post("", response_model=TagResponse, status_code=status.HTTP_201_CREATED)
async def create_tag(
    tag_in: TagCreate,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
):
    return await service.create_tag(db, current_user, tag_in.community_id, tag_in.name, tag_in.color)


@router.put("/{tag_id}", response_model=TagResponse)
async def update_tag(
    tag_id: int,
    tag_in: TagUpdate,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
):
    return await service.update_tag(db, tag_id, current_user, tag_in.model_dump(exclude_unset=True))


@router.delete("/{tag_id}")
async def delete_tag(
    tag_id: int,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
):
    await service.delete_tag(db, tag_id, current_user)
    return {"message": "Tag deleted successfully"}


@router.get("/task/{task_id}", response_model=TaskTagsResponse)
async def get_task_tags(
    task_id: int,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
):
    tags = await service.tags_for_task(db, task_id, current_user)
    return TaskTagsResponse(task_id=task_id, tags=tags)


@router.post("/task/{task_id}", response_model=TaskTagsResponse)
async def assign_tags(
    task_id: int,
    body: TagAssign,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
):
    tags = await service.assign_tags_to_task(db, task_id, body.tag_ids, current_user)
    return TaskTagsResponse(task_id=task_id, tags=tags)


@router.get("/{tag_id}/tasks", response_model=TaggedTasksResponse)
async def tasks_by_tag(
    tag_id: int,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
):
    tag, tasks, total = await service.tasks_by_tag(db, tag_id, current_user, limit=limit, offset=offset)
    return TaggedTasksResponse(tag=tag, tasks=tasks, total=total)
