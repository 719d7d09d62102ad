from pydantic import BaseModel
from datetime import datetime
from typing import Optional, List

class NotificationResponse(BaseModel):
    id: int
    title: str
    message: str
    type: str
    related_id: Optional[int]
    priority: str
    community_id: Optional[int]
    is_read: bool
    read_at: Optional[datetime]
    created_at: Optional[datetime]

    model_config = {"from_attributes": True}

class NotificationListResponse(BaseModel):
    notifications: List[NotificationResponse]
    unread_count: int

class UnreadCount(BaseModel):
    unread_count: int
