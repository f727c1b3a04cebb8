import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

from sqlalchemy.engine import Engine

from .application.ports.email_sender import EmailSender
from .application.ports.rate_limit_store import RateLimitStore
from .application.services.authorization_service import AuthorizationGate
from .application.services.mfa_service import MfaGate
from .application.services.otp_service import OtpService
from .application.services.password_reset_service import PasswordResetService
from .application.services.rate_limit_service import RateLimitService
from .application.services.reminder_service import ReminderService
from .core.config import Settings
from .database import build_engine
from .infrastructure.audit.std_logger import StdAuditLogger
from .infrastructure.email.resend_sender import ResendEmailSender
from .infrastructure.identity.local_identity_provider import SqlIdentityProvider
from .infrastructure.persistence.sqlalchemy.repositories.otp_repository_sql import SqlTokenStore
from .infrastructure.persistence.sqlalchemy.repositories.profile_repository_sql import SqlProfileRepository
from .infrastructure.persistence.sqlalchemy.repositories.rate_limit_repository_sql import SqlRateLimitStore
from .infrastructure.persistence.sqlalchemy.repositories.vendor_repository_sql import SqlVendorRepository
from .infrastructure.rate_limit.memory_rate_limiter import InMemoryRateLimitStore
from .infrastructure.rate_limit.redis_rate_limiter import RedisRateLimitStore
from .utils import utcnow

logger = logging.getLogger(__name__)

ISSUANCE_KEY_PREFIX = "otp_issue:"


@dataclass
class Container:
    """Everything a request handler needs, built once per application."""
    settings: Settings
    engine: Engine
    email_sender: EmailSender
    identity: SqlIdentityProvider
    profiles: SqlProfileRepository
    token_store: SqlTokenStore
    otp: OtpService
    rate_limiter: RateLimitService
    issuance_limiter: RateLimitService
    mfa: MfaGate
    gate: AuthorizationGate
    password_reset: PasswordResetService
    reminders: ReminderService
    rate_limit_store: RateLimitStore
    audit: StdAuditLogger = field(default_factory=StdAuditLogger)

    def prune_expired(self) -> None:
        """Drop spent OTPs and closed rate-limit windows."""
        pruned = self.otp.prune()
        logger.info(f"Pruned {pruned} spent OTP record(s)")
        prune_windows = getattr(self.rate_limit_store, "prune_expired", None)
        if prune_windows is not None:
            # windows that opened more than a day ago
            pruned = prune_windows(utcnow() - timedelta(days=1))
            logger.info(f"Pruned {pruned} rate limit window(s)")

    def close(self) -> None:
        close = getattr(self.email_sender, "close", None)
        if close is not None:
            close()
        self.engine.dispose()


def build_rate_limit_store(settings: Settings, engine: Engine) -> RateLimitStore:
    if settings.RATE_LIMIT_BACKEND == "redis":
        return RedisRateLimitStore(url=settings.REDIS_URL, timeout=settings.STORE_TIMEOUT_SEC)
    if settings.RATE_LIMIT_BACKEND == "memory":
        return InMemoryRateLimitStore()
    return SqlRateLimitStore(engine)


def build_container(
    settings: Settings,
    engine: Optional[Engine] = None,
    email_sender: Optional[EmailSender] = None,
    rate_limit_store: Optional[RateLimitStore] = None,
) -> Container:
    engine = engine or build_engine(settings)
    audit = StdAuditLogger()
    email_sender = email_sender or ResendEmailSender(settings)
    rate_limit_store = rate_limit_store or build_rate_limit_store(settings, engine)
    logger.info(f"Rate limit backend: {type(rate_limit_store).__name__}")

    identity = SqlIdentityProvider(engine, settings)
    profiles = SqlProfileRepository(engine)
    token_store = SqlTokenStore(engine)
    mfa = MfaGate(identity=identity, audit=audit)

    return Container(
        settings=settings,
        engine=engine,
        email_sender=email_sender,
        identity=identity,
        profiles=profiles,
        token_store=token_store,
        otp=OtpService(
            token_store=token_store,
            profiles=profiles,
            email_sender=email_sender,
            audit=audit,
            identity=identity,
            verification_ttl_minutes=settings.OTP_VERIFICATION_TTL_MINUTES,
            password_reset_ttl_minutes=settings.OTP_PASSWORD_RESET_TTL_MINUTES,
        ),
        rate_limiter=RateLimitService(
            store=rate_limit_store,
            default_max_attempts=settings.RATE_LIMIT_DEFAULT_MAX_ATTEMPTS,
            default_window=settings.RATE_LIMIT_DEFAULT_WINDOW,
        ),
        issuance_limiter=RateLimitService(
            store=rate_limit_store,
            default_max_attempts=settings.OTP_ISSUANCE_MAX_ATTEMPTS,
            default_window=settings.OTP_ISSUANCE_WINDOW,
            key_prefix=ISSUANCE_KEY_PREFIX,
        ),
        mfa=mfa,
        gate=AuthorizationGate(identity=identity, profiles=profiles, mfa=mfa, audit=audit),
        password_reset=PasswordResetService(identity=identity, audit=audit),
        reminders=ReminderService(vendors=SqlVendorRepository(engine), email_sender=email_sender),
        rate_limit_store=rate_limit_store,
        audit=audit,
    )
