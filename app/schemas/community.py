from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, Literal

from app.schemas.user import UserSummary

class CommunityCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=255)
    description: Optional[str] = None

class JoinCommunity(BaseModel):
    code: str = Field(..., min_length=6, max_length=6)

class MemberRoleUpdate(BaseModel):
    role: Literal["community_admin", "member"]

class CommunityResponse(BaseModel):
    id: int
    name: str
    description: Optional[str]
    code: str
    created_by: int
    is_active: bool
    created_at: Optional[datetime]

    model_config = {"from_attributes": True}

class MembershipResponse(BaseModel):
    id: int
    user_id: int
    community_id: int
    role: str
    is_active: bool
    joined_at: Optional[datetime]
    user: Optional[UserSummary] = None

    model_config = {"from_attributes": True}

class MyCommunityResponse(BaseModel):
    role: str
    joined_at: Optional[datetime]
    community: CommunityResponse

    model_config = {"from_attributes": True}
