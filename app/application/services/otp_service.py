import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

from ..ports.audit_logger import AuditLogger
from ..ports.email_sender import EmailSender
from ..ports.identity_provider import IdentityProvider
from ..ports.profile_repo import ProfileRepository
from ..ports.token_store import TokenStore, OtpType
from ...exceptions import (
    EmailDeliveryError,
    ExpiredOrInvalidToken,
    InternalError,
    StoreError,
    ValidationError,
)
from ...utils import generate_otp, normalize_email, utcnow

logger = logging.getLogger(__name__)

OTP_TYPES = {t.value for t in OtpType}


@dataclass
class OtpVerification:
    email: str
    type: str


def validate_email(email: Optional[str]) -> str:
    if not email or "@" not in email:
        raise ValidationError("Valid email address is required")
    return normalize_email(email)


def validate_otp_type(otp_type: Optional[str]) -> str:
    if otp_type not in OTP_TYPES:
        raise ValidationError("Invalid token type")
    return otp_type


@dataclass
class OtpService:
    token_store: TokenStore
    profiles: ProfileRepository
    email_sender: EmailSender
    audit: AuditLogger
    identity: Optional[IdentityProvider] = None
    verification_ttl_minutes: int = 10
    password_reset_ttl_minutes: int = 60
    clock: Callable[[], datetime] = field(default=utcnow)

    def _ttl(self, otp_type: str) -> timedelta:
        if otp_type == OtpType.PASSWORD_RESET.value:
            return timedelta(minutes=self.password_reset_ttl_minutes)
        return timedelta(minutes=self.verification_ttl_minutes)

    def issue(self, email: str, otp_type: str) -> None:
        """Create and deliver a fresh code.

        For password resets an unknown email is a silent no-op so callers
        cannot tell whether an account exists. Delivery failures are logged
        and never undo the stored record.
        """
        email = validate_email(email)
        otp_type = validate_otp_type(otp_type)

        try:
            profile = self.profiles.get_by_email(email)
        except StoreError as e:
            if otp_type == OtpType.PASSWORD_RESET.value:
                # Surfacing this would reveal more than the success path does
                logger.error(f"Profile lookup failed during password reset issuance: {e}")
                return
            logger.warning(f"Profile lookup failed, continuing without a name: {e}")
            profile = None

        if otp_type == OtpType.PASSWORD_RESET.value and profile is None:
            self.audit.log("otp_issue_skipped", email, details={"type": otp_type, "reason": "no_account"})
            return

        token = generate_otp()
        expires_at = self.clock() + self._ttl(otp_type)
        try:
            self.token_store.insert(email, token, otp_type, expires_at)
        except StoreError as e:
            logger.error(f"Database error storing OTP: {e}")
            self.audit.log("otp_issue", email, success=False, details={"type": otp_type, "stage": "persist"})
            if otp_type == OtpType.PASSWORD_RESET.value:
                return
            raise InternalError("Failed to generate verification token")

        full_name = profile.full_name if profile else None
        try:
            if otp_type == OtpType.PASSWORD_RESET.value:
                self.email_sender.send_password_reset_email(email, token, full_name)
            else:
                self.email_sender.send_verification_email(email, token, full_name)
        except EmailDeliveryError as e:
            # The record stays; the code may still be handed over out of band
            logger.error(f"Email delivery failed for {otp_type} OTP: {e}")
            self.audit.log("otp_issue", email, success=False, details={"type": otp_type, "stage": "deliver"})
            return

        self.audit.log("otp_issue", email, details={"type": otp_type})

    def verify(self, email: str, token: str, otp_type: str) -> OtpVerification:
        if not email or not token or not otp_type:
            raise ValidationError("Email, token, and type are required")
        email = validate_email(email)
        otp_type = validate_otp_type(otp_type)
        token = token.strip()

        try:
            claimed = self.token_store.claim(email, token, otp_type, self.clock())
        except StoreError as e:
            # An outage is not the user's fault; never report it as a bad code
            logger.error(f"OTP verification error: {e}")
            raise InternalError("Failed to verify token")

        if not claimed:
            self.audit.log("otp_verify", email, success=False, details={"type": otp_type})
            raise ExpiredOrInvalidToken()

        self.audit.log("otp_verify", email, details={"type": otp_type})
        if otp_type == OtpType.VERIFICATION.value:
            self._mark_verified(email)
        return OtpVerification(email=email, type=otp_type)

    def _mark_verified(self, email: str) -> None:
        try:
            self.profiles.mark_email_verified(email)
            if self.identity is not None:
                self.identity.confirm_email(email)
        except StoreError as e:
            logger.error(f"OTP claimed but marking {otp_hint(email)} verified failed: {e}")

    def prune(self) -> int:
        """Drop codes that are both used and expired."""
        return self.token_store.prune_expired(self.clock())


def otp_hint(email: str) -> str:
    """Masked email for log lines, e.g. j***@example.com"""
    local, _, domain = email.partition("@")
    return f"{local[:1]}***@{domain}"
