# app/db/models/users/session.py
from typing import Optional
from sqlmodel import SQLModel, Field
from datetime import datetime
import uuid

from ....utils import utcnow


class AuthSession(SQLModel, table=True):
    __tablename__ = "auth_sessions"
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    user_id: str = Field(foreign_key="auth_users.id", index=True)
    refresh_token: str = Field(max_length=128, unique=True, index=True)
    # jti of the only access token currently honoured for this session
    access_token_id: str = Field(default_factory=lambda: str(uuid.uuid4()), max_length=36)
    access_expires_at: datetime
    refresh_expires_at: datetime
    revoked_at: Optional[datetime] = Field(default=None)
    # MFA continuation state lives and dies with the session
    mfa_required: bool = Field(default=False)
    mfa_factor_id: Optional[str] = Field(default=None)
    mfa_satisfied: bool = Field(default=False)
    mfa_failed_attempts: int = Field(default=0)
    created_at: datetime = Field(default_factory=utcnow)
