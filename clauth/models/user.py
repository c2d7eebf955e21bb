from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime, timezone
from enum import Enum

class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"

class UserBase(SQLModel):
    username: str = Field(index=True, unique=True, max_length=30)
    display_name: Optional[str] = Field(default=None, max_length=50)
    email: Optional[str] = Field(default=None, index=True, unique=True, max_length=100)
    role: UserRole = Field(default=UserRole.USER)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

class User(UserBase, table=True):
    user_id: Optional[int] = Field(default=None, primary_key=True)

class UserPublic(SQLModel):
    user_id: int
    username: str
    display_name: Optional[str]
