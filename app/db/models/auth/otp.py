# app/db/models/auth/otp.py
from sqlmodel import SQLModel, Field
from sqlalchemy import Index
from datetime import datetime
from typing import Optional
import uuid

from ....utils import utcnow


class OtpToken(SQLModel, table=True):
    """One row per issued code. `used` only ever flips false -> true."""
    __tablename__ = "email_otp_tokens"
    __table_args__ = (
        Index("idx_email_otp_tokens_email_type", "email", "type"),
    )
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    email: str = Field(max_length=255, index=True)
    token: str = Field(max_length=6)
    type: str = Field(max_length=20)
    expires_at: datetime = Field(index=True)
    used: bool = Field(default=False)
    used_at: Optional[datetime] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
