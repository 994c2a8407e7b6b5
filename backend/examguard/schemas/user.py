from pydantic import BaseModel, EmailStr, Field
from typing import Optional
from datetime import datetime

from ..models.enums import UserRole


class UserBase(BaseModel):
    full_name: str
    email: EmailStr


class UserCreate(UserBase):
    password: str = Field(..., min_length=8)
    role: UserRole = UserRole.STUDENT


class UserUpdate(BaseModel):
    full_name: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=8)


class User(UserBase):
    id: int
    role: UserRole
    is_superuser: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
