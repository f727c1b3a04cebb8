import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from ..ports.audit_logger import AuditLogger
from ..ports.identity_provider import AuthSessionDto, IdentityProvider, MfaEnrollmentDto, MfaFactorDto
from ...exceptions import AuthenticationError, MfaRequiredError, ValidationError
from ...utils import is_otp_format

logger = logging.getLogger(__name__)

# Wrong codes a pending session may submit before it is revoked
MAX_FAILED_ATTEMPTS = 5


class MfaStatus(str, Enum):
    NO_MFA = "none"
    PENDING = "pending"
    SATISFIED = "satisfied"


@dataclass
class MfaState:
    status: MfaStatus
    factor_id: Optional[str] = None

    @property
    def blocks(self) -> bool:
        return self.status == MfaStatus.PENDING


def state_of(session: AuthSessionDto) -> MfaState:
    if not session.mfa_required:
        return MfaState(MfaStatus.NO_MFA)
    if session.mfa_satisfied:
        return MfaState(MfaStatus.SATISFIED, session.mfa_factor_id)
    return MfaState(MfaStatus.PENDING, session.mfa_factor_id)


@dataclass
class MfaGate:
    """Second-factor continuation gate.

    NoMfa and Satisfied are terminal for the session; Pending refuses every
    protected operation until verify() succeeds. Each wrong code counts against
    the session, which is revoked once the limit is reached. State is stored on
    the identity provider's session, so it is discarded with it on sign-out.
    """
    identity: IdentityProvider
    audit: AuditLogger
    max_failed_attempts: int = MAX_FAILED_ATTEMPTS

    def begin(self, session: AuthSessionDto) -> MfaState:
        factors = self.identity.list_factors(session.user_id, verified_only=True)
        if not factors:
            return MfaState(MfaStatus.NO_MFA)
        factor_id = factors[0].id
        self.identity.mark_mfa_pending(session.session_id, factor_id)
        session.mfa_required = True
        session.mfa_factor_id = factor_id
        session.mfa_satisfied = False
        self.audit.log("mfa_challenge", session.user_id, user_id=session.user_id, details={"factor_id": factor_id})
        return MfaState(MfaStatus.PENDING, factor_id)

    def state(self, session: AuthSessionDto) -> MfaState:
        return state_of(session)

    def ensure_satisfied(self, session: AuthSessionDto) -> None:
        current = state_of(session)
        if current.blocks:
            raise MfaRequiredError(current.factor_id)

    def verify(self, session: AuthSessionDto, code: str, factor_id: str) -> MfaState:
        code = (code or "").strip()
        if not is_otp_format(code) or not factor_id:
            # Rejected locally; the identity provider is never contacted
            raise ValidationError("A 6-digit verification code and factor are required")

        current = state_of(session)
        if current.status != MfaStatus.PENDING:
            return current
        if factor_id != current.factor_id:
            raise ValidationError("Unknown factor for this session. Please log in again.")

        if not self.identity.verify_factor(session.session_id, factor_id, code):
            failures = self.identity.record_mfa_failure(session.session_id)
            self.audit.log("mfa_verify", session.user_id, user_id=session.user_id, success=False,
                           details={"failures": failures})
            if failures >= self.max_failed_attempts:
                self.identity.sign_out(session.session_id)
                self.audit.log("mfa_lockout", session.user_id, user_id=session.user_id, success=False)
                raise AuthenticationError("Too many invalid verification codes. Please log in again.")
            raise AuthenticationError("Invalid verification code")

        session.mfa_satisfied = True
        self.audit.log("mfa_verify", session.user_id, user_id=session.user_id)
        return MfaState(MfaStatus.SATISFIED, factor_id)

    def list_factors(self, session: AuthSessionDto) -> List[MfaFactorDto]:
        return self.identity.list_factors(session.user_id, verified_only=False)

    def enroll(self, session: AuthSessionDto, friendly_name: Optional[str] = None) -> MfaEnrollmentDto:
        self.ensure_satisfied(session)
        enrollment = self.identity.enroll_factor(session.user_id, friendly_name)
        self.audit.log("mfa_enroll", session.user_id, user_id=session.user_id, details={"factor_id": enrollment.factor_id})
        return enrollment

    def confirm_enrollment(self, session: AuthSessionDto, factor_id: str, code: str) -> None:
        self.ensure_satisfied(session)
        code = (code or "").strip()
        if not is_otp_format(code) or not factor_id:
            raise ValidationError("A 6-digit verification code and factor are required")
        if not self.identity.verify_enrollment(session.user_id, factor_id, code):
            raise AuthenticationError("Invalid verification code")
        self.audit.log("mfa_enroll_verified", session.user_id, user_id=session.user_id, details={"factor_id": factor_id})
