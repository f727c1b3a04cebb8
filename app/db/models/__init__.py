# Models package (re-export feature modules for stable imports)
from .users.user import AuthUser
from .users.session import AuthSession
from .users.profile import Profile
from .auth.otp import OtpToken
from .auth.rate_limit import EmailRateLimit
from .auth.mfa import MfaFactor
from .vendors.vendor import Vendor

__all__ = [
    "AuthUser",
    "AuthSession",
    "Profile",
    "OtpToken",
    "EmailRateLimit",
    "MfaFactor",
    "Vendor",
]
