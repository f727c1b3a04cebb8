# app/routers/admin_router.py
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from ..application.ports.profile_repo import Role, RoleRecord
from ..application.services.authorization_service import AuthContext, AuthorizationGate
from ..container import Container
from ..core.config import Settings
from ..dependencies import (
    get_access_token,
    get_authorization_gate,
    get_container,
    get_refresh_token,
    get_settings_dep,
    require_role,
)
from ..exceptions import InternalError, MfaRequiredError, NotFoundError, StoreError, create_error_response
from ..schemas import AdminLoginRequest, ErrorResponse, RoleUpdateRequest
from .auth_router import clear_session_cookies, set_session_cookies

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])


def _user_payload(profile: RoleRecord) -> dict:
    return {
        "id": profile.user_id,
        "email": profile.email,
        "name": profile.full_name,
        "role": profile.role,
    }


def _error_response(exc: HTTPException, settings: Settings, clear_cookies: bool = True, **fields) -> JSONResponse:
    content = create_error_response(str(exc.detail), getattr(exc, "extra", None))
    content.update(fields)
    response = JSONResponse(status_code=exc.status_code, content=content)
    if clear_cookies:
        clear_session_cookies(response, settings)
    return response


@router.post("/auth", responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}})
def admin_login(
    payload: AdminLoginRequest,
    gate: AuthorizationGate = Depends(get_authorization_gate),
    settings: Settings = Depends(get_settings_dep),
):
    """Password sign-in restricted to admins.

    A non-admin gets its fresh session revoked before the 403 is sent, and
    every failure clears both session cookies.
    """
    try:
        result = gate.login(payload.email, payload.password, Role.ADMIN)
    except HTTPException as e:
        logger.warning(f"Admin login failed with {e.status_code}: {e.detail}")
        return _error_response(e, settings)

    response = JSONResponse(content={
        "success": True,
        "user": _user_payload(result.profile),
        "requires_mfa": result.mfa.blocks,
        "factor_id": result.mfa.factor_id,
    })
    set_session_cookies(response, result.session, settings)
    return response


@router.get("/auth")
def admin_session(
    access_token: Optional[str] = Depends(get_access_token),
    gate: AuthorizationGate = Depends(get_authorization_gate),
    settings: Settings = Depends(get_settings_dep),
):
    try:
        ctx = gate.authorize(access_token, Role.ADMIN)
    except HTTPException as e:
        if isinstance(e, NotFoundError):
            # a missing profile is reported like any other non-admin
            e = HTTPException(status_code=403, detail=e.detail)
        # a pending second factor keeps its cookies so the challenge can be answered
        keep = isinstance(e, MfaRequiredError)
        return _error_response(e, settings, clear_cookies=not keep, authenticated=False)
    return {"authenticated": True, "user": _user_payload(ctx.profile)}


@router.delete("/auth")
def admin_logout(
    access_token: Optional[str] = Depends(get_access_token),
    refresh_token: Optional[str] = Depends(get_refresh_token),
    gate: AuthorizationGate = Depends(get_authorization_gate),
    settings: Settings = Depends(get_settings_dep),
):
    gate.sign_out(access_token, refresh_token)
    response = JSONResponse(content={"success": True})
    clear_session_cookies(response, settings)
    return response


@router.get("/users")
def list_users(
    ctx: AuthContext = Depends(require_role(Role.ADMIN)),
    container: Container = Depends(get_container),
):
    try:
        profiles = container.profiles.list_all()
    except StoreError as e:
        logger.error(f"Failed to list users: {e}")
        raise InternalError("Failed to fetch users")
    return {"users": [_user_payload(p) for p in profiles]}


@router.patch("/users/{user_id}/role")
def update_user_role(
    user_id: str,
    payload: RoleUpdateRequest,
    ctx: AuthContext = Depends(require_role(Role.ADMIN)),
    container: Container = Depends(get_container),
):
    try:
        profile = container.profiles.set_role(user_id, payload.role)
        if profile is None:
            raise NotFoundError("User profile not found")
        # Sessions minted under the old role must not outlive it
        revoked = container.identity.sign_out_user(user_id)
    except StoreError as e:
        logger.error(f"Failed to update role for {user_id}: {e}")
        raise InternalError("Failed to update role")

    container.audit.log(
        "role_changed",
        profile.email,
        user_id=ctx.session.user_id,
        details={"target": user_id, "role": payload.role, "revoked_sessions": revoked},
    )
    return {"success": True, "user": _user_payload(profile)}
