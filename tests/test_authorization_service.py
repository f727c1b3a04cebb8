from datetime import datetime, timedelta
from typing import Dict, List, Optional

import pytest

from app.application.ports.identity_provider import AuthSessionDto, MfaFactorDto
from app.application.ports.profile_repo import Role, RoleRecord
from app.application.services.authorization_service import AuthorizationGate
from app.application.services.mfa_service import MAX_FAILED_ATTEMPTS, MfaGate, MfaStatus
from app.exceptions import (
    AuthenticationError,
    AuthorizationError,
    InternalError,
    MfaRequiredError,
    NotFoundError,
    StoreError,
    ValidationError,
)


class FakeIdentity:
    def __init__(self, password: str = "correct", factors: Optional[List[MfaFactorDto]] = None):
        self.password = password
        self.factors = factors or []
        self.sessions: Dict[str, AuthSessionDto] = {}
        self.revoked: List[str] = []
        self.sign_out_failures = 0
        self.verify_calls = []
        self.mfa_failures: Dict[str, int] = {}
        self.valid_code = "123456"
        self.events = []

    def sign_in_with_password(self, email, password):
        if password != self.password:
            return None
        sid = f"s-{len(self.sessions) + 1}"
        session = AuthSessionDto(
            session_id=sid,
            user_id="u-1",
            access_token=f"access-{sid}",
            refresh_token=f"refresh-{sid}",
            access_expires_at=datetime.utcnow() + timedelta(hours=1),
            refresh_expires_at=datetime.utcnow() + timedelta(days=30),
        )
        self.sessions[session.access_token] = session
        return session

    def get_session(self, access_token):
        session = self.sessions.get(access_token)
        if session is None or session.session_id in self.revoked:
            return None
        return session

    def sign_out(self, session_id):
        if self.sign_out_failures:
            self.sign_out_failures -= 1
            raise StoreError("idp timeout")
        self.events.append(("sign_out", session_id))
        self.revoked.append(session_id)

    def revoke_refresh_token(self, refresh_token):
        for s in self.sessions.values():
            if s.refresh_token == refresh_token:
                self.revoked.append(s.session_id)

    def list_factors(self, user_id, verified_only=True):
        return [f for f in self.factors if f.status == "verified" or not verified_only]

    def mark_mfa_pending(self, session_id, factor_id):
        pass

    def verify_factor(self, session_id, factor_id, code):
        self.verify_calls.append((session_id, factor_id, code))
        return code == self.valid_code

    def record_mfa_failure(self, session_id):
        self.mfa_failures[session_id] = self.mfa_failures.get(session_id, 0) + 1
        return self.mfa_failures[session_id]


class FakeProfiles:
    def __init__(self, role: Optional[str] = "admin", fail: bool = False, identity: Optional[FakeIdentity] = None):
        self.role = role
        self.fail = fail
        self.identity = identity

    def get_role_record(self, user_id):
        if self.identity is not None:
            self.identity.events.append(("role_lookup", user_id))
        if self.fail:
            raise StoreError("db down")
        if self.role is None:
            return None
        return RoleRecord(user_id=user_id, email="a@b.com", full_name="A B", role=self.role, email_verified=True)


class FakeAudit:
    def __init__(self):
        self.entries = []

    def log(self, action, identifier, user_id=None, request_id=None, ip_address=None, success=True, details=None):
        self.entries.append((action, success))


def make_gate(identity=None, profiles=None):
    identity = identity or FakeIdentity()
    profiles = profiles or FakeProfiles(identity=identity)
    audit = FakeAudit()
    mfa = MfaGate(identity=identity, audit=audit)
    return AuthorizationGate(identity=identity, profiles=profiles, mfa=mfa, audit=audit), identity


def test_admin_login_succeeds_without_mfa():
    gate, identity = make_gate()
    result = gate.login("a@b.com", "correct", Role.ADMIN)
    assert result.profile.role == "admin"
    assert result.mfa.status == MfaStatus.NO_MFA
    assert identity.revoked == []


def test_bad_credentials_are_401():
    gate, _ = make_gate()
    with pytest.raises(AuthenticationError) as exc:
        gate.login("a@b.com", "wrong", Role.ADMIN)
    assert exc.value.status_code == 401
    assert exc.value.detail == "Invalid credentials"


def test_missing_credentials_are_400():
    gate, _ = make_gate()
    with pytest.raises(ValidationError):
        gate.login("", "correct", Role.ADMIN)


def test_customer_is_refused_and_session_revoked_first():
    identity = FakeIdentity()
    gate, _ = make_gate(identity=identity, profiles=FakeProfiles(role="customer", identity=identity))

    with pytest.raises(AuthorizationError) as exc:
        gate.login("a@b.com", "correct", Role.ADMIN)

    assert exc.value.status_code == 403
    assert exc.value.detail == "Access denied. Admin privileges required."
    assert identity.revoked == ["s-1"]
    assert identity.events == [("role_lookup", "u-1"), ("sign_out", "s-1")]
    assert identity.get_session("access-s-1") is None


def test_missing_profile_is_404_and_revoked():
    identity = FakeIdentity()
    gate, _ = make_gate(identity=identity, profiles=FakeProfiles(role=None))
    with pytest.raises(NotFoundError) as exc:
        gate.login("a@b.com", "correct", Role.ADMIN)
    assert exc.value.detail == "User profile not found"
    assert identity.revoked == ["s-1"]


def test_role_lookup_failure_revokes_and_is_500():
    identity = FakeIdentity()
    gate, _ = make_gate(identity=identity, profiles=FakeProfiles(fail=True))
    with pytest.raises(InternalError):
        gate.login("a@b.com", "correct", Role.ADMIN)
    assert identity.revoked == ["s-1"]


def test_sign_out_is_retried_once():
    identity = FakeIdentity()
    identity.sign_out_failures = 1
    gate, _ = make_gate(identity=identity, profiles=FakeProfiles(role="vendor"))
    with pytest.raises(AuthorizationError):
        gate.login("a@b.com", "correct", Role.ADMIN)
    assert identity.revoked == ["s-1"]


def test_unrevocable_session_never_yields_a_plain_403():
    identity = FakeIdentity()
    identity.sign_out_failures = 2
    gate, _ = make_gate(identity=identity, profiles=FakeProfiles(role="vendor"))
    with pytest.raises(InternalError):
        gate.login("a@b.com", "correct", Role.ADMIN)


def test_authorize_rejects_missing_and_revoked_tokens():
    gate, identity = make_gate()
    with pytest.raises(AuthenticationError):
        gate.authorize(None, Role.ADMIN)

    session = identity.sign_in_with_password("a@b.com", "correct")
    assert gate.authorize(session.access_token, Role.ADMIN).profile.role == "admin"

    gate.sign_out(session.access_token)
    with pytest.raises(AuthenticationError):
        gate.authorize(session.access_token, Role.ADMIN)


def test_vendor_role_gate_uses_generic_message():
    identity = FakeIdentity()
    gate, _ = make_gate(identity=identity, profiles=FakeProfiles(role="customer"))
    session = identity.sign_in_with_password("a@b.com", "correct")
    with pytest.raises(AuthorizationError) as exc:
        gate.authorize(session.access_token, Role.VENDOR)
    assert exc.value.detail == "Access denied. Vendor privileges required."


# ------------------------
# MFA continuation
# ------------------------
FACTOR = MfaFactorDto(id="f-1", user_id="u-1", friendly_name="phone", status="verified")


def test_verified_factor_puts_session_in_pending_and_blocks_privileged_calls():
    identity = FakeIdentity(factors=[FACTOR])
    gate, _ = make_gate(identity=identity)

    result = gate.login("a@b.com", "correct", Role.ADMIN)
    assert result.mfa.status == MfaStatus.PENDING
    assert result.mfa.factor_id == "f-1"

    with pytest.raises(MfaRequiredError) as exc:
        gate.authorize(result.session.access_token, Role.ADMIN)
    assert exc.value.status_code == 403
    assert exc.value.extra == {"mfa_required": True, "factor_id": "f-1"}


def test_mfa_verify_satisfies_session():
    identity = FakeIdentity(factors=[FACTOR])
    gate, _ = make_gate(identity=identity)
    result = gate.login("a@b.com", "correct", Role.ADMIN)

    state = gate.mfa.verify(result.session, "123456", "f-1")
    assert state.status == MfaStatus.SATISFIED
    assert gate.authorize(result.session.access_token, Role.ADMIN).profile.role == "admin"


@pytest.mark.parametrize("code", ["", "12345", "1234567", "12a456"])
def test_malformed_code_rejected_without_contacting_identity_provider(code):
    identity = FakeIdentity(factors=[FACTOR])
    gate, _ = make_gate(identity=identity)
    result = gate.login("a@b.com", "correct", Role.ADMIN)

    with pytest.raises(ValidationError):
        gate.mfa.verify(result.session, code, "f-1")
    assert identity.verify_calls == []


def test_wrong_code_keeps_session_pending():
    identity = FakeIdentity(factors=[FACTOR])
    gate, _ = make_gate(identity=identity)
    result = gate.login("a@b.com", "correct", Role.ADMIN)

    with pytest.raises(AuthenticationError) as exc:
        gate.mfa.verify(result.session, "000000", "f-1")
    assert exc.value.detail == "Invalid verification code"
    with pytest.raises(MfaRequiredError):
        gate.authorize(result.session.access_token, Role.ADMIN)


def test_repeated_wrong_codes_revoke_the_pending_session():
    identity = FakeIdentity(factors=[FACTOR])
    gate, _ = make_gate(identity=identity)
    result = gate.login("a@b.com", "correct", Role.ADMIN)

    for _ in range(MAX_FAILED_ATTEMPTS - 1):
        with pytest.raises(AuthenticationError) as exc:
            gate.mfa.verify(result.session, "000000", "f-1")
        assert exc.value.detail == "Invalid verification code"
    assert result.session.session_id not in identity.revoked

    with pytest.raises(AuthenticationError) as exc:
        gate.mfa.verify(result.session, "000000", "f-1")
    assert exc.value.detail == "Too many invalid verification codes. Please log in again."
    assert result.session.session_id in identity.revoked

    # even the right code cannot revive it
    with pytest.raises(AuthenticationError):
        gate.authorize(result.session.access_token, Role.ADMIN)


def test_unknown_factor_is_rejected():
    identity = FakeIdentity(factors=[FACTOR])
    gate, _ = make_gate(identity=identity)
    result = gate.login("a@b.com", "correct", Role.ADMIN)
    with pytest.raises(ValidationError):
        gate.mfa.verify(result.session, "123456", "f-2")
    assert identity.verify_calls == []


def test_unverified_factor_does_not_trigger_challenge():
    identity = FakeIdentity(factors=[MfaFactorDto(id="f-9", user_id="u-1", friendly_name=None, status="unverified")])
    gate, _ = make_gate(identity=identity)
    assert gate.login("a@b.com", "correct", Role.ADMIN).mfa.status == MfaStatus.NO_MFA
