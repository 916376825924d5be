# backend/models.py
from enum import Enum
from typing import List, Optional
from sqlalchemy import Column, JSON
from sqlmodel import Field, SQLModel
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)

class UserRole(str, Enum):
    admin = "admin"
    user = "user"

class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    googleId: str = Field(unique=True, index=True)
    name: Optional[str] = Field(default=None)
    email: Optional[str] = Field(default=None)
    role: UserRole = Field(default=UserRole.user)
    accessToken: Optional[str] = Field(default=None, max_length=2048)
    refreshToken: Optional[str] = Field(default=None, max_length=2048)
    tokenExpiry: Optional[datetime] = Field(default=None)
    lettersFolderId: Optional[str] = Field(default=None)

class Letter(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    # Identity-provider id, not a foreign key: letters may outlive their owner record.
    userId: str = Field(index=True)
    title: str
    content: str
    googleDriveId: str
    collaborators: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    createdAt: datetime = Field(default_factory=utcnow)
    updatedAt: datetime = Field(default_factory=utcnow)
