# app/db/models/vendors/vendor.py
from typing import Optional
from sqlmodel import SQLModel, Field
from datetime import datetime
import uuid

from ....utils import utcnow


class Vendor(SQLModel, table=True):
    __tablename__ = "vendors"
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    user_id: str = Field(foreign_key="auth_users.id", index=True)
    business_name: str = Field(max_length=150)
    business_email: str = Field(max_length=255)
    subscription_status: str = Field(default="trial", max_length=20, index=True)
    trial_end_date: Optional[datetime] = Field(default=None)
    last_reminder_sent_at: Optional[datetime] = Field(default=None)
    reminder_count: int = Field(default=0)
    created_at: datetime = Field(default_factory=utcnow)
