import logging
from typing import Callable, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .application.ports.profile_repo import Role
from .application.services.authorization_service import AuthContext, AuthorizationGate
from .application.services.mfa_service import MfaGate
from .application.services.otp_service import OtpService
from .application.services.password_reset_service import PasswordResetService
from .application.services.rate_limit_service import RateLimitService
from .application.services.reminder_service import ReminderService
from .container import Container
from .core.config import Settings

logger = logging.getLogger(__name__)

# Auth scheme
oauth2_scheme = HTTPBearer(auto_error=False)


def get_container(request: Request) -> Container:
    return request.app.state.container


def get_settings_dep(container: Container = Depends(get_container)) -> Settings:
    return container.settings


def get_otp_service(container: Container = Depends(get_container)) -> OtpService:
    return container.otp


def get_rate_limiter(container: Container = Depends(get_container)) -> RateLimitService:
    return container.rate_limiter


def get_issuance_limiter(container: Container = Depends(get_container)) -> RateLimitService:
    return container.issuance_limiter


def get_authorization_gate(container: Container = Depends(get_container)) -> AuthorizationGate:
    return container.gate


def get_mfa_gate(container: Container = Depends(get_container)) -> MfaGate:
    return container.mfa


def get_password_reset_service(container: Container = Depends(get_container)) -> PasswordResetService:
    return container.password_reset


def get_reminder_service(container: Container = Depends(get_container)) -> ReminderService:
    return container.reminders


def get_access_token(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(oauth2_scheme),
    container: Container = Depends(get_container),
) -> Optional[str]:
    """Bearer header first, then the session cookie."""
    if credentials and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(container.settings.ACCESS_COOKIE_NAME)


def get_refresh_token(request: Request, container: Container = Depends(get_container)) -> Optional[str]:
    return request.cookies.get(container.settings.REFRESH_COOKIE_NAME)


def require_role(role: Role) -> Callable[..., AuthContext]:
    """Dependency factory guarding a privileged endpoint.

    Resolves the session, checks the role (revoking the session on failure)
    and refuses while a second factor is still pending.
    """

    def _guard(
        access_token: Optional[str] = Depends(get_access_token),
        gate: AuthorizationGate = Depends(get_authorization_gate),
    ) -> AuthContext:
        return gate.authorize(access_token, role)

    return _guard
