# app/schemas/auth.py
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, Union
import re

from ...application.ports.profile_repo import Role

EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')


def _clean_email(v):
    if v is None:
        return v
    v = v.strip().lower()
    if not EMAIL_RE.match(v):
        raise ValueError('Valid email address is required')
    return v


class SendEmailRequest(BaseModel):
    email: str = Field(..., description="Recipient email address")

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        return _clean_email(v)


class VerifyOtpRequest(BaseModel):
    email: str
    token: str = Field(..., description="6-digit code from the email")
    type: str = Field(..., description="verification or password_reset")

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        return _clean_email(v)

    @field_validator('token')
    @classmethod
    def validate_token(cls, v):
        return v.strip()


class RateLimitRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    identifier: str = Field(..., description="Email or other caller identifier")
    action_type: str = Field(..., alias="actionType")
    max_attempts: Optional[int] = Field(None, alias="maxAttempts")
    window_duration: Optional[Union[int, str]] = Field(None, alias="windowDuration")


class AdminLoginRequest(BaseModel):
    email: str
    password: str

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        return v.strip().lower()


class ResetPasswordRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: str
    new_password: str = Field(..., alias="newPassword")

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        return _clean_email(v)


class MfaVerifyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    code: str
    factor_id: str = Field(..., alias="factorId")

    @field_validator('code')
    @classmethod
    def validate_code(cls, v):
        return v.strip()


class MfaEnrollRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    friendly_name: Optional[str] = Field(None, alias="friendlyName", max_length=100)


class RoleUpdateRequest(BaseModel):
    role: str

    @field_validator('role')
    @classmethod
    def validate_role(cls, v):
        allowed = [r.value for r in Role]
        if v not in allowed:
            raise ValueError(f"role must be one of: {', '.join(allowed)}")
        return v
