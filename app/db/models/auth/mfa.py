# app/db/models/auth/mfa.py
from sqlmodel import SQLModel, Field
from datetime import datetime
from typing import Optional
import uuid

from ....utils import utcnow


class MfaFactor(SQLModel, table=True):
    __tablename__ = "auth_mfa_factors"
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    user_id: str = Field(foreign_key="auth_users.id", index=True)
    friendly_name: Optional[str] = Field(default=None, max_length=100)
    factor_type: str = Field(default="totp", max_length=10)
    secret: str = Field(max_length=64)
    status: str = Field(default="unverified", max_length=12)
    # TOTP time step of the last accepted code; older or equal steps are replays
    last_used_step: Optional[int] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
