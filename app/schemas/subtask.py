from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List, Literal

class SubtaskCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    assigned_to: Optional[int] = None
    position: Optional[int] = None

class SubtaskUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    status: Optional[Literal["not_started", "in_progress", "completed", "cancelled"]] = None
    assigned_to: Optional[int] = None
    position: Optional[int] = None

class SubtaskReorder(BaseModel):
    subtask_ids: List[int]

class SubtaskResponse(BaseModel):
    id: int
    parent_task_id: int
    title: str
    description: Optional[str]
    status: str
    assigned_to: Optional[int]
    created_by: int
    position: int
    completed_at: Optional[datetime]
    completed_by: Optional[int]
    created_at: Optional[datetime]

    model_config = {"from_attributes": True}

class SubtaskProgress(BaseModel):
    total: int
    completed: int
    percentage: int

class SubtaskListResponse(BaseModel):
    subtasks: List[SubtaskResponse]
    progress: SubtaskProgress
