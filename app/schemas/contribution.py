from pydantic import BaseModel
from datetime import datetime
from typing import Optional

class ContributionResponse(BaseModel):
    id: int
    task_id: Optional[int]
    community_id: int
    points: int
    type: str
    description: Optional[str]
    created_at: Optional[datetime]

    model_config = {"from_attributes": True}

class LeaderboardEntry(BaseModel):
    rank: int
    user_id: int
    name: Optional[str]
    email: str
    points: int
    tasks_completed: int
