from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List

from app.schemas.task import TaskBrief
from app.schemas.user import UserSummary

HEX_COLOR = r"^#[0-9A-Fa-f]{6}$"

class TagCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    color: Optional[str] = Field(None, pattern=HEX_COLOR)
    community_id: int

class TagUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=50)
    color: Optional[str] = Field(None, pattern=HEX_COLOR)

class TagAssign(BaseModel):
    tag_ids: List[int]

class TagSummary(BaseModel):
    id: int
    name: str
    color: str

    model_config = {"from_attributes": True}

class TagResponse(TagSummary):
    community_id: int
    created_by: int
    created_at: Optional[datetime]
    creator: Optional[UserSummary] = None

class TagListResponse(BaseModel):
    tags: List[TagResponse]
    total: int

class TaskTagsResponse(BaseModel):
    task_id: int
    tags: List[TagSummary]

class TaggedTasksResponse(BaseModel):
    tag: TagSummary
    tasks: List[TaskBrief]
    total: int
