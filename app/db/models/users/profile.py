# app/db/models/users/profile.py
from typing import Optional
from sqlmodel import SQLModel, Field
from datetime import datetime

from ....utils import utcnow


class Profile(SQLModel, table=True):
    __tablename__ = "profiles"
    id: str = Field(foreign_key="auth_users.id", primary_key=True)
    email: str = Field(max_length=255, index=True)
    full_name: Optional[str] = Field(default=None, max_length=100)
    role: str = Field(default="customer", max_length=20)
    email_verified: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
