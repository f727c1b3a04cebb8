import calendar
import hmac
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import jwt
import pyotp
from passlib.context import CryptContext
from sqlalchemy import or_, select as sa_select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from ...application.ports.identity_provider import (
    IdentityProvider,
    AuthSessionDto,
    AuthUserDto,
    MfaEnrollmentDto,
    MfaFactorDto,
)
from ...core.config import Settings
from ...db.models import AuthSession, AuthUser, MfaFactor
from ...exceptions import StoreError
from ...utils import generate_refresh_token, normalize_email, utcnow

logger = logging.getLogger(__name__)
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


class SqlIdentityProvider(IdentityProvider):
    """Credential, session and second-factor authority backed by the gateway database.

    Access tokens are short-lived JWTs carrying the session id (`sid`) and a
    per-session `jti`; a token is honoured only while its session row is not
    revoked and still names that `jti`. Refresh tokens are opaque and rotate
    on every use.
    """

    def __init__(self, engine: Engine, settings: Settings, clock: Callable[[], datetime] = utcnow):
        self.engine = engine
        self.secret_key = settings.SECRET_KEY
        self.algorithm = settings.ALGORITHM
        self.access_ttl = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        self.refresh_ttl = timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)
        self.mfa_issuer = settings.MFA_ISSUER
        self.clock = clock

    # ------------------------
    # Tokens
    # ------------------------
    def _encode_access(self, rec: AuthSession) -> str:
        to_encode = {
            "sub": rec.user_id,
            "sid": rec.id,
            "jti": rec.access_token_id,
            "type": "access",
            "exp": rec.access_expires_at.replace(tzinfo=timezone.utc),
        }
        return jwt.encode(to_encode, self.secret_key, algorithm=self.algorithm)

    def _decode_access(self, token: str) -> Optional[Dict[str, Any]]:
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            logger.info("Access token has expired")
            return None
        except jwt.InvalidTokenError as e:
            logger.warning(f"Invalid access token: {e}")
            return None
        if payload.get("type") != "access":
            return None
        return payload

    def _to_dto(self, rec: AuthSession, access_token: str) -> AuthSessionDto:
        return AuthSessionDto(
            session_id=rec.id,
            user_id=rec.user_id,
            access_token=access_token,
            refresh_token=rec.refresh_token,
            access_expires_at=rec.access_expires_at,
            refresh_expires_at=rec.refresh_expires_at,
            mfa_required=bool(rec.mfa_required),
            mfa_factor_id=rec.mfa_factor_id,
            mfa_satisfied=bool(rec.mfa_satisfied),
        )

    def _factor_dto(self, factor: MfaFactor) -> MfaFactorDto:
        return MfaFactorDto(id=factor.id, user_id=factor.user_id, friendly_name=factor.friendly_name, status=factor.status)

    # ------------------------
    # Sessions
    # ------------------------
    def sign_in_with_password(self, email: str, password: str) -> Optional[AuthSessionDto]:
        now = self.clock()
        try:
            with Session(self.engine) as session:
                user = session.exec(select(AuthUser).where(AuthUser.email == normalize_email(email))).first()
                if not user:
                    # Same hashing cost whether or not the account exists
                    pwd_context.dummy_verify()
                    return None
                if not pwd_context.verify(password, user.password_hash):
                    return None
                rec = AuthSession(
                    user_id=user.id,
                    refresh_token=generate_refresh_token(),
                    access_expires_at=now + self.access_ttl,
                    refresh_expires_at=now + self.refresh_ttl,
                )
                session.add(rec)
                session.commit()
                session.refresh(rec)
                return self._to_dto(rec, self._encode_access(rec))
        except SQLAlchemyError as e:
            raise StoreError(f"Sign-in failed: {e}") from e

    def get_session(self, access_token: str) -> Optional[AuthSessionDto]:
        payload = self._decode_access(access_token)
        if not payload:
            return None
        try:
            with Session(self.engine) as session:
                rec = session.get(AuthSession, payload.get("sid"))
        except SQLAlchemyError as e:
            raise StoreError(f"Session lookup failed: {e}") from e
        if rec is None or rec.revoked_at is not None:
            return None
        if rec.user_id != payload.get("sub") or rec.access_token_id != payload.get("jti"):
            return None
        if rec.access_expires_at <= self.clock():
            return None
        return self._to_dto(rec, access_token)

    def refresh_session(self, refresh_token: str) -> Optional[AuthSessionDto]:
        now = self.clock()
        table = AuthSession.__table__
        new_refresh = generate_refresh_token()
        new_jti = str(uuid.uuid4())
        # Rotation is a conditional write on the old refresh token: a replayed
        # or concurrently used token affects zero rows.
        stmt = (
            update(table)
            .where(
                table.c.refresh_token == refresh_token,
                table.c.revoked_at.is_(None),
                table.c.refresh_expires_at > now,
            )
            .values(
                refresh_token=new_refresh,
                access_token_id=new_jti,
                access_expires_at=now + self.access_ttl,
                refresh_expires_at=now + self.refresh_ttl,
            )
        )
        try:
            with Session(self.engine) as session:
                result = session.connection().execute(stmt)
                session.commit()
                if result.rowcount != 1:
                    return None
                rec = session.exec(select(AuthSession).where(AuthSession.refresh_token == new_refresh)).first()
                return self._to_dto(rec, self._encode_access(rec)) if rec else None
        except SQLAlchemyError as e:
            raise StoreError(f"Session refresh failed: {e}") from e

    def sign_out(self, session_id: str) -> None:
        table = AuthSession.__table__
        stmt = (
            update(table)
            .where(table.c.id == session_id, table.c.revoked_at.is_(None))
            .values(revoked_at=self.clock())
        )
        try:
            with Session(self.engine) as session:
                session.connection().execute(stmt)
                session.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"Sign-out failed: {e}") from e

    def revoke_refresh_token(self, refresh_token: str) -> None:
        table = AuthSession.__table__
        stmt = (
            update(table)
            .where(table.c.refresh_token == refresh_token, table.c.revoked_at.is_(None))
            .values(revoked_at=self.clock())
        )
        try:
            with Session(self.engine) as session:
                session.connection().execute(stmt)
                session.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"Sign-out failed: {e}") from e

    def sign_out_user(self, user_id: str) -> int:
        table = AuthSession.__table__
        stmt = (
            update(table)
            .where(table.c.user_id == user_id, table.c.revoked_at.is_(None))
            .values(revoked_at=self.clock())
        )
        try:
            with Session(self.engine) as session:
                result = session.connection().execute(stmt)
                session.commit()
                return result.rowcount or 0
        except SQLAlchemyError as e:
            raise StoreError(f"Sign-out failed: {e}") from e

    # ------------------------
    # Second factor (TOTP)
    # ------------------------
    def list_factors(self, user_id: str, verified_only: bool = True) -> List[MfaFactorDto]:
        query = select(MfaFactor).where(MfaFactor.user_id == user_id)
        if verified_only:
            query = query.where(MfaFactor.status == "verified")
        try:
            with Session(self.engine) as session:
                factors = session.exec(query.order_by(MfaFactor.created_at)).all()
                return [self._factor_dto(f) for f in factors]
        except SQLAlchemyError as e:
            raise StoreError(f"Factor lookup failed: {e}") from e

    def mark_mfa_pending(self, session_id: str, factor_id: str) -> None:
        table = AuthSession.__table__
        stmt = (
            update(table)
            .where(table.c.id == session_id, table.c.revoked_at.is_(None))
            .values(mfa_required=True, mfa_factor_id=factor_id, mfa_satisfied=False)
        )
        try:
            with Session(self.engine) as session:
                session.connection().execute(stmt)
                session.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to record MFA state: {e}") from e

    def _match_totp_step(self, secret: str, code: str, last_step: Optional[int]) -> Optional[int]:
        """Time step `code` was generated for, within one step of now and newer than `last_step`."""
        totp = pyotp.TOTP(secret)
        current = calendar.timegm(self.clock().utctimetuple()) // totp.interval
        for step in (current - 1, current, current + 1):
            if last_step is not None and step <= last_step:
                continue
            if hmac.compare_digest(totp.generate_otp(step), code):
                return step
        return None

    def _consume_step(self, session: Session, factor_id: str, step: int) -> bool:
        # A code is spent once its step is recorded; a replay or a concurrent
        # submission of the same code updates nothing.
        table = MfaFactor.__table__
        stmt = (
            update(table)
            .where(
                table.c.id == factor_id,
                or_(table.c.last_used_step.is_(None), table.c.last_used_step < step),
            )
            .values(last_used_step=step)
        )
        return session.connection().execute(stmt).rowcount == 1

    def verify_factor(self, session_id: str, factor_id: str, code: str) -> bool:
        try:
            with Session(self.engine) as session:
                rec = session.get(AuthSession, session_id)
                factor = session.get(MfaFactor, factor_id)
                if rec is None or rec.revoked_at is not None:
                    return False
                if factor is None or factor.user_id != rec.user_id or factor.status != "verified":
                    return False
                step = self._match_totp_step(factor.secret, code, factor.last_used_step)
                if step is None or not self._consume_step(session, factor_id, step):
                    return False
                rec.mfa_satisfied = True
                session.add(rec)
                session.commit()
                return True
        except SQLAlchemyError as e:
            raise StoreError(f"Factor verification failed: {e}") from e

    def record_mfa_failure(self, session_id: str) -> int:
        table = AuthSession.__table__
        stmt = (
            update(table)
            .where(table.c.id == session_id)
            .values(mfa_failed_attempts=table.c.mfa_failed_attempts + 1)
        )
        count_query = sa_select(table.c.mfa_failed_attempts).where(table.c.id == session_id)
        try:
            with Session(self.engine) as session:
                conn = session.connection()
                conn.execute(stmt)
                failures = conn.execute(count_query).scalar_one_or_none()
                session.commit()
                return int(failures or 0)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to record MFA failure: {e}") from e

    def enroll_factor(self, user_id: str, friendly_name: Optional[str]) -> MfaEnrollmentDto:
        secret = pyotp.random_base32()
        try:
            with Session(self.engine) as session:
                user = session.get(AuthUser, user_id)
                if user is None:
                    raise StoreError(f"Unknown user {user_id}")
                factor = MfaFactor(user_id=user_id, friendly_name=friendly_name, secret=secret, status="unverified")
                session.add(factor)
                session.commit()
                session.refresh(factor)
                uri = pyotp.TOTP(secret).provisioning_uri(name=user.email, issuer_name=self.mfa_issuer)
                return MfaEnrollmentDto(factor_id=factor.id, secret=secret, uri=uri)
        except SQLAlchemyError as e:
            raise StoreError(f"Factor enrollment failed: {e}") from e

    def verify_enrollment(self, user_id: str, factor_id: str, code: str) -> bool:
        try:
            with Session(self.engine) as session:
                factor = session.get(MfaFactor, factor_id)
                if factor is None or factor.user_id != user_id:
                    return False
                step = self._match_totp_step(factor.secret, code, factor.last_used_step)
                if step is None or not self._consume_step(session, factor_id, step):
                    return False
                factor.status = "verified"
                session.add(factor)
                session.commit()
                return True
        except SQLAlchemyError as e:
            raise StoreError(f"Factor verification failed: {e}") from e

    # ------------------------
    # Service-level administration
    # ------------------------
    def get_user_by_email(self, email: str) -> Optional[AuthUserDto]:
        try:
            with Session(self.engine) as session:
                user = session.exec(select(AuthUser).where(AuthUser.email == normalize_email(email))).first()
        except SQLAlchemyError as e:
            raise StoreError(f"User lookup failed: {e}") from e
        if not user:
            return None
        return AuthUserDto(id=user.id, email=user.email, email_confirmed=user.email_confirmed_at is not None)

    def create_user(self, email: str, password: str, email_confirmed: bool = False) -> AuthUserDto:
        now = self.clock()
        try:
            with Session(self.engine) as session:
                user = AuthUser(
                    email=normalize_email(email),
                    password_hash=pwd_context.hash(password),
                    email_confirmed_at=now if email_confirmed else None,
                )
                session.add(user)
                session.commit()
                session.refresh(user)
                return AuthUserDto(id=user.id, email=user.email, email_confirmed=email_confirmed)
        except IntegrityError as e:
            raise ValueError(f"A user with email {email} already exists") from e
        except SQLAlchemyError as e:
            raise StoreError(f"User creation failed: {e}") from e

    def update_password(self, user_id: str, new_password: str) -> None:
        try:
            with Session(self.engine) as session:
                user = session.get(AuthUser, user_id)
                if user is None:
                    raise StoreError(f"Unknown user {user_id}")
                user.password_hash = pwd_context.hash(new_password)
                user.updated_at = self.clock()
                session.add(user)
                session.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"Password update failed: {e}") from e

    def confirm_email(self, email: str) -> None:
        try:
            with Session(self.engine) as session:
                user = session.exec(select(AuthUser).where(AuthUser.email == normalize_email(email))).first()
                if not user or user.email_confirmed_at is not None:
                    return
                user.email_confirmed_at = self.clock()
                session.add(user)
                session.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"Email confirmation failed: {e}") from e
