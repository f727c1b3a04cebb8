# app/routers/auth_router.py
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Response

from ..application.ports.rate_limit_store import RateLimitAction
from ..application.ports.token_store import OtpType
from ..application.services.authorization_service import AuthorizationGate
from ..application.services.mfa_service import MfaGate
from ..application.services.otp_service import OtpService
from ..application.services.password_reset_service import PasswordResetService
from ..application.services.rate_limit_service import RateLimitService
from ..core.config import Settings
from ..dependencies import (
    get_access_token,
    get_authorization_gate,
    get_issuance_limiter,
    get_mfa_gate,
    get_otp_service,
    get_password_reset_service,
    get_rate_limiter,
    get_refresh_token,
    get_settings_dep,
)
from ..schemas import (
    MfaEnrollRequest,
    MfaVerifyRequest,
    RateLimitRequest,
    ResetPasswordRequest,
    SendEmailRequest,
    VerifyOtpRequest,
)
from ..application.ports.identity_provider import AuthSessionDto

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])

PASSWORD_RESET_MESSAGE = "If an account exists, a password reset email has been sent"
ISSUANCE_THROTTLED_MESSAGE = "Too many verification emails requested. Please try again later."


def set_session_cookies(response: Response, session: AuthSessionDto, settings: Settings) -> None:
    cookie_args = {
        "httponly": True,
        "secure": settings.is_production,
        "samesite": "lax",
        "path": "/",
    }
    response.set_cookie(
        settings.ACCESS_COOKIE_NAME,
        session.access_token,
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        **cookie_args,
    )
    response.set_cookie(
        settings.REFRESH_COOKIE_NAME,
        session.refresh_token,
        max_age=settings.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60,
        **cookie_args,
    )


def clear_session_cookies(response: Response, settings: Settings) -> None:
    response.delete_cookie(settings.ACCESS_COOKIE_NAME, path="/")
    response.delete_cookie(settings.REFRESH_COOKIE_NAME, path="/")


@router.post("/send-verification-email")
def send_verification_email(
    payload: SendEmailRequest,
    otp_service: OtpService = Depends(get_otp_service),
    limiter: RateLimitService = Depends(get_issuance_limiter),
):
    """Issue a verification code unless this address has asked too often.

    A throttled request issues nothing and says so through `is_limited`,
    the same signal /auth/rate-limit uses.
    """
    throttle = limiter.check_and_record(payload.email, RateLimitAction.RESEND.value)
    if throttle.is_limited:
        return {
            "success": True,
            "message": ISSUANCE_THROTTLED_MESSAGE,
            "is_limited": True,
            "time_until_reset_ms": throttle.time_until_reset_ms,
        }

    otp_service.issue(payload.email, OtpType.VERIFICATION.value)
    return {"success": True, "message": "Verification email sent"}


@router.post("/send-password-reset")
def send_password_reset(
    payload: SendEmailRequest,
    otp_service: OtpService = Depends(get_otp_service),
    limiter: RateLimitService = Depends(get_issuance_limiter),
):
    """Same answer whether or not the account exists."""
    throttle = limiter.check_and_record(payload.email, RateLimitAction.RESEND.value)
    if throttle.is_limited:
        logger.warning("Password reset issuance throttled")
    else:
        otp_service.issue(payload.email, OtpType.PASSWORD_RESET.value)
    return {"success": True, "message": PASSWORD_RESET_MESSAGE}


@router.post("/verify-otp")
def verify_otp(payload: VerifyOtpRequest, otp_service: OtpService = Depends(get_otp_service)):
    result = otp_service.verify(payload.email, payload.token, payload.type)
    return {"success": True, "valid": True, "email": result.email, "type": result.type}


@router.post("/rate-limit")
def check_rate_limit(payload: RateLimitRequest, limiter: RateLimitService = Depends(get_rate_limiter)):
    result = limiter.check_and_record(
        payload.identifier,
        payload.action_type,
        max_attempts=payload.max_attempts,
        window_duration=payload.window_duration,
    )
    body = {
        "success": True,
        "is_limited": result.is_limited,
        "attempt_count": result.attempt_count,
        "max_attempts": result.max_attempts,
        "time_until_reset_ms": result.time_until_reset_ms,
    }
    if result.fallback:
        body["fallback"] = True
    return body


@router.post("/reset-password")
def reset_password(
    payload: ResetPasswordRequest,
    reset_service: PasswordResetService = Depends(get_password_reset_service),
):
    reset_service.reset_password(payload.email, payload.new_password)
    return {"success": True, "message": "Password updated successfully"}


@router.post("/refresh")
def refresh_session(
    response: Response,
    refresh_token: Optional[str] = Depends(get_refresh_token),
    gate: AuthorizationGate = Depends(get_authorization_gate),
    settings: Settings = Depends(get_settings_dep),
):
    session = gate.refresh(refresh_token)
    set_session_cookies(response, session, settings)
    return {"message": "Session refreshed"}


@router.post("/logout")
def logout(
    response: Response,
    access_token: Optional[str] = Depends(get_access_token),
    refresh_token: Optional[str] = Depends(get_refresh_token),
    gate: AuthorizationGate = Depends(get_authorization_gate),
    settings: Settings = Depends(get_settings_dep),
):
    gate.sign_out(access_token, refresh_token)
    clear_session_cookies(response, settings)
    return {"message": "Logged out"}


@router.post("/mfa/verify")
def verify_mfa(
    payload: MfaVerifyRequest,
    access_token: Optional[str] = Depends(get_access_token),
    gate: AuthorizationGate = Depends(get_authorization_gate),
    mfa: MfaGate = Depends(get_mfa_gate),
):
    session = gate.resolve_session(access_token)
    state = mfa.verify(session, payload.code, payload.factor_id)
    return {"success": True, "mfa": state.status.value}


@router.get("/mfa/status")
def mfa_status(
    access_token: Optional[str] = Depends(get_access_token),
    gate: AuthorizationGate = Depends(get_authorization_gate),
    mfa: MfaGate = Depends(get_mfa_gate),
):
    session = gate.resolve_session(access_token)
    state = mfa.state(session)
    return {
        "status": state.status.value,
        "factor_id": state.factor_id,
        "factors": [
            {"id": f.id, "friendly_name": f.friendly_name, "status": f.status}
            for f in mfa.list_factors(session)
        ],
    }


@router.post("/mfa/enroll")
def enroll_mfa(
    payload: MfaEnrollRequest,
    access_token: Optional[str] = Depends(get_access_token),
    gate: AuthorizationGate = Depends(get_authorization_gate),
    mfa: MfaGate = Depends(get_mfa_gate),
):
    session = gate.resolve_session(access_token)
    enrollment = mfa.enroll(session, payload.friendly_name)
    return {"factor_id": enrollment.factor_id, "secret": enrollment.secret, "uri": enrollment.uri}


@router.post("/mfa/enroll/verify")
def verify_mfa_enrollment(
    payload: MfaVerifyRequest,
    access_token: Optional[str] = Depends(get_access_token),
    gate: AuthorizationGate = Depends(get_authorization_gate),
    mfa: MfaGate = Depends(get_mfa_gate),
):
    session = gate.resolve_session(access_token)
    mfa.confirm_enrollment(session, payload.factor_id, payload.code)
    return {"success": True}
