import logging
import threading
import weakref
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Optional, Union

from ..ports.audit_logger import AuditLogger
from ..ports.identity_provider import AuthSessionDto, IdentityProvider
from ..ports.profile_repo import ProfileRepository, Role, RoleRecord
from .mfa_service import MfaGate, MfaState
from ...exceptions import (
    AuthenticationError,
    AuthorizationError,
    InternalError,
    NotFoundError,
    StoreError,
    ValidationError,
)

logger = logging.getLogger(__name__)


@dataclass
class LoginResult:
    session: AuthSessionDto
    profile: RoleRecord
    mfa: MfaState


@dataclass
class AuthContext:
    session: AuthSessionDto
    profile: RoleRecord


def _role_value(role: Union[Role, str]) -> str:
    return role.value if isinstance(role, Role) else str(role)


def access_denied_message(role: str) -> str:
    return f"Access denied. {role.capitalize()} privileges required."


@dataclass
class AuthorizationGate:
    """Turns credentials into sessions and enforces roles on protected calls.

    Every failed role check signs the session out at the identity provider
    before the error leaves this class.
    """
    identity: IdentityProvider
    profiles: ProfileRepository
    mfa: MfaGate
    audit: AuditLogger
    _locks: "weakref.WeakValueDictionary[str, threading.Lock]" = field(default_factory=weakref.WeakValueDictionary, repr=False)
    _locks_guard: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @contextmanager
    def _session_critical_section(self, session_id: str):
        with self._locks_guard:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[session_id] = lock
        with lock:
            yield

    def authenticate(self, email: str, password: str) -> AuthSessionDto:
        if not email or not password:
            raise ValidationError("Email and password are required")
        try:
            session = self.identity.sign_in_with_password(email, password)
        except StoreError as e:
            logger.error(f"Identity provider sign-in failed: {e}")
            raise InternalError()
        if session is None:
            self.audit.log("sign_in", email, success=False)
            raise AuthenticationError("Invalid credentials")
        self.audit.log("sign_in", email, user_id=session.user_id)
        return session

    def _revoke(self, session: AuthSessionDto) -> None:
        for attempt in (1, 2):
            try:
                self.identity.sign_out(session.session_id)
                return
            except StoreError as e:
                logger.error(f"Sign-out attempt {attempt} failed for session {session.session_id}: {e}")
        # Never hand back a role error while the session may still be live
        raise InternalError()

    def require_role(self, session: AuthSessionDto, role: Union[Role, str]) -> RoleRecord:
        required = _role_value(role)
        with self._session_critical_section(session.session_id):
            try:
                # Privileged read: the caller is not yet trusted to read its own role
                profile = self.profiles.get_role_record(session.user_id)
            except StoreError as e:
                logger.error(f"Role lookup failed for user {session.user_id}: {e}")
                self._revoke(session)
                raise InternalError()
            self.audit.log(
                "privileged_role_lookup",
                session.user_id,
                user_id=session.user_id,
                details={"required": required, "found": profile.role if profile else None},
            )

            if profile is None:
                self._revoke(session)
                raise NotFoundError("User profile not found")

            if profile.role != required:
                self._revoke(session)
                self.audit.log("role_gate_denied", profile.email, user_id=session.user_id, success=False,
                               details={"required": required, "role": profile.role})
                raise AuthorizationError(access_denied_message(required))

            return profile

    def login(self, email: str, password: str, role: Union[Role, str]) -> LoginResult:
        session = self.authenticate(email, password)
        profile = self.require_role(session, role)
        try:
            mfa_state = self.mfa.begin(session)
        except StoreError as e:
            logger.error(f"MFA lookup failed for user {session.user_id}: {e}")
            self._revoke(session)
            raise InternalError()
        return LoginResult(session=session, profile=profile, mfa=mfa_state)

    def resolve_session(self, access_token: Optional[str]) -> AuthSessionDto:
        if not access_token:
            raise AuthenticationError("Not authenticated")
        try:
            session = self.identity.get_session(access_token)
        except StoreError as e:
            logger.error(f"Session lookup failed: {e}")
            raise InternalError()
        if session is None:
            raise AuthenticationError("Invalid or expired session")
        return session

    def authorize(self, access_token: Optional[str], role: Union[Role, str]) -> AuthContext:
        """The guard every privileged endpoint goes through first."""
        session = self.resolve_session(access_token)
        profile = self.require_role(session, role)
        self.mfa.ensure_satisfied(session)
        return AuthContext(session=session, profile=profile)

    def refresh(self, refresh_token: Optional[str]) -> AuthSessionDto:
        if not refresh_token:
            raise AuthenticationError("No refresh token found")
        try:
            session = self.identity.refresh_session(refresh_token)
        except StoreError as e:
            logger.error(f"Session refresh failed: {e}")
            raise InternalError()
        if session is None:
            raise AuthenticationError("Invalid or expired refresh token")
        return session

    def sign_out(self, access_token: Optional[str], refresh_token: Optional[str] = None) -> None:
        try:
            session = self.identity.get_session(access_token) if access_token else None
            if session is not None:
                self.identity.sign_out(session.session_id)
                self.audit.log("sign_out", session.user_id, user_id=session.user_id)
            elif refresh_token:
                # Access token already expired; the refresh token still names the session
                self.identity.revoke_refresh_token(refresh_token)
        except StoreError as e:
            logger.error(f"Sign-out failed: {e}")
            raise InternalError()
