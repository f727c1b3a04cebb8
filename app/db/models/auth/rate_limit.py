# app/db/models/auth/rate_limit.py
from sqlmodel import SQLModel, Field
from sqlalchemy import UniqueConstraint
from datetime import datetime
from typing import Optional

from ....utils import utcnow


class EmailRateLimit(SQLModel, table=True):
    __tablename__ = "email_rate_limits"
    # Conflict target for the atomic upsert-increment
    __table_args__ = (
        UniqueConstraint("identifier", "action_type", "window_start", name="uq_email_rate_limits_window"),
    )
    id: Optional[int] = Field(default=None, primary_key=True)
    identifier: str = Field(max_length=255, index=True)
    action_type: str = Field(max_length=20)
    window_start: datetime
    window_duration: int = Field(default=3600)
    attempt_count: int = Field(default=0)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
