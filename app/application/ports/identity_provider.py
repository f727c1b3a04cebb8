from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Protocol


@dataclass
class AuthUserDto:
    id: str
    email: str
    email_confirmed: bool


@dataclass
class AuthSessionDto:
    session_id: str
    user_id: str
    access_token: str
    refresh_token: str
    access_expires_at: datetime
    refresh_expires_at: datetime
    mfa_required: bool = False
    mfa_factor_id: Optional[str] = None
    mfa_satisfied: bool = False


@dataclass
class MfaFactorDto:
    id: str
    user_id: str
    friendly_name: Optional[str]
    status: str


@dataclass
class MfaEnrollmentDto:
    factor_id: str
    secret: str
    uri: str


class IdentityProvider(Protocol):
    # Sessions
    def sign_in_with_password(self, email: str, password: str) -> Optional[AuthSessionDto]:
        ...

    def get_session(self, access_token: str) -> Optional[AuthSessionDto]:
        ...

    def refresh_session(self, refresh_token: str) -> Optional[AuthSessionDto]:
        ...

    def sign_out(self, session_id: str) -> None:
        ...

    def revoke_refresh_token(self, refresh_token: str) -> None:
        ...

    def sign_out_user(self, user_id: str) -> int:
        ...

    # Second factor
    def list_factors(self, user_id: str, verified_only: bool = True) -> List[MfaFactorDto]:
        ...

    def mark_mfa_pending(self, session_id: str, factor_id: str) -> None:
        ...

    def verify_factor(self, session_id: str, factor_id: str, code: str) -> bool:
        ...

    def record_mfa_failure(self, session_id: str) -> int:
        """Count a rejected second-factor code on the session and return the running total."""
        ...

    def enroll_factor(self, user_id: str, friendly_name: Optional[str]) -> MfaEnrollmentDto:
        ...

    def verify_enrollment(self, user_id: str, factor_id: str, code: str) -> bool:
        ...

    # Service-level administration
    def get_user_by_email(self, email: str) -> Optional[AuthUserDto]:
        ...

    def create_user(self, email: str, password: str, email_confirmed: bool = False) -> AuthUserDto:
        ...

    def update_password(self, user_id: str, new_password: str) -> None:
        ...

    def confirm_email(self, email: str) -> None:
        ...
