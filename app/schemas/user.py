from pydantic import BaseModel, EmailStr, Field
from typing import Optional

class UserCreate(BaseModel):
    email: EmailStr
    name: str = Field(..., min_length=2, max_length=100)
    password: str = Field(..., min_length=8, max_length=72)

class UserLogin(BaseModel):
    email: EmailStr
    password: str

class UserSummary(BaseModel):
    id: int
    name: Optional[str]
    email: str

    model_config = {"from_attributes": True}

class UserResponse(BaseModel):
    id: int
    email: EmailStr
    is_active: bool
    name: str | None
    role: str
    points: int
    current_streak: int

    model_config = {"from_attributes": True}

class Token(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str
    user: UserResponse
