import logging
from dataclasses import dataclass

from ..ports.audit_logger import AuditLogger
from ..ports.identity_provider import IdentityProvider
from ...exceptions import InternalError, NotFoundError, StoreError, ValidationError

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


@dataclass
class PasswordResetService:
    identity: IdentityProvider
    audit: AuditLogger

    def reset_password(self, email: str, new_password: str) -> None:
        if not email or not new_password:
            raise ValidationError("Email and new password are required")
        if len(new_password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        try:
            user = self.identity.get_user_by_email(email)
        except StoreError as e:
            logger.error(f"User lookup failed during password reset: {e}")
            raise InternalError("Failed to find user")
        if user is None:
            raise NotFoundError("User not found")

        try:
            self.identity.update_password(user.id, new_password)
        except StoreError as e:
            logger.error(f"Password update error: {e}")
            self.audit.log("password_reset", email, user_id=user.id, success=False)
            raise InternalError("Failed to update password")

        try:
            revoked = self.identity.sign_out_user(user.id)
            logger.info(f"Revoked {revoked} session(s) after password reset")
        except StoreError as e:
            logger.error(f"Password updated but revoking old sessions failed: {e}")

        self.audit.log("password_reset", email, user_id=user.id)
