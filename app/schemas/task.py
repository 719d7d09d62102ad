from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List, Literal

from app.schemas.user import UserSummary


class TaskCreate(BaseModel):
    title: str = Field(..., min_length=2, max_length=255)
    description: Optional[str] = None
    community_id: int
    deadline: Optional[datetime] = None
    priority: Literal["low", "medium", "high", "urgent"] = "medium"
    estimated_hours: Optional[int] = Field(None, ge=0)
    task_type: Literal["individual", "group"] = "individual"
    max_assignees: int = Field(1, ge=1, le=50)
    assignee_ids: List[int] = []

class TaskUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=2, max_length=255)
    description: Optional[str] = None
    deadline: Optional[datetime] = None
    priority: Optional[Literal["low", "medium", "high", "urgent"]] = None
    estimated_hours: Optional[int] = Field(None, ge=0)
    max_assignees: Optional[int] = Field(None, ge=1, le=50)

class AssignUsers(BaseModel):
    user_ids: List[int] = Field(..., min_length=1)

class AssignmentStatusUpdate(BaseModel):
    status: Literal["accepted", "in_progress"]
    notes: Optional[str] = None

class TaskSubmit(BaseModel):
    submission_link: Optional[str] = Field(None, max_length=500)
    submission_notes: Optional[str] = None

class TaskReview(BaseModel):
    action: Literal["approve", "reject"]
    review_notes: Optional[str] = None


class CommunitySummary(BaseModel):
    id: int
    name: str

    model_config = {"from_attributes": True}

class AssignmentResponse(BaseModel):
    id: int
    task_id: int
    user_id: int
    status: str
    notes: Optional[str]
    assigned_at: Optional[datetime]
    accepted_at: Optional[datetime]
    submitted_at: Optional[datetime]
    completed_at: Optional[datetime]
    reviewed_at: Optional[datetime]
    submission_link: Optional[str]
    submission_notes: Optional[str]
    review_notes: Optional[str]
    reviewed_by: Optional[int]
    user: Optional[UserSummary] = None

    model_config = {"from_attributes": True}

class TaskResponse(BaseModel):
    id: int
    title: str
    description: Optional[str]
    status: str
    priority: str
    task_type: str
    max_assignees: int
    deadline: Optional[datetime]
    estimated_hours: Optional[int]
    community_id: int
    assigned_by: int
    submitted_at: Optional[datetime]
    reviewed_by: Optional[int]
    reviewed_at: Optional[datetime]
    review_notes: Optional[str]
    completion_date: Optional[datetime]
    subtask_count: int
    completed_subtask_count: int
    created_at: Optional[datetime]
    creator: Optional[UserSummary] = None
    community: Optional[CommunitySummary] = None
    assignments: List[AssignmentResponse] = []

    model_config = {"from_attributes": True}

class TaskListResponse(BaseModel):
    tasks: List[TaskResponse]
    total: int
    page: int
    limit: int
    pages: int

class AssignUsersResponse(BaseModel):
    message: str
    assignments: List[AssignmentResponse]

class TaskBrief(BaseModel):
    id: int
    title: str
    status: str
    priority: str
    task_type: str
    deadline: Optional[datetime]
    community_id: int
    community: Optional[CommunitySummary] = None

    model_config = {"from_attributes": True}

class UserAssignmentResponse(AssignmentResponse):
    task: TaskBrief
