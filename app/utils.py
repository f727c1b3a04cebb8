import hashlib
import re
import secrets
from datetime import datetime, timezone
from typing import Union

OTP_LENGTH = 6

_DURATION_UNITS = {
    "s": 1, "sec": 1, "secs": 1, "second": 1, "seconds": 1,
    "m": 60, "min": 60, "mins": 60, "minute": 60, "minutes": 60,
    "h": 3600, "hr": 3600, "hrs": 3600, "hour": 3600, "hours": 3600,
    "d": 86400, "day": 86400, "days": 86400,
}
_DURATION_RE = re.compile(r"^\s*(\d+)\s*([a-zA-Z]+)\s*$")


# =========================
# OTP Generation
# =========================
def generate_otp(length: int = OTP_LENGTH) -> str:
    """Uniformly random numeric code, zero-padded (leading zeros allowed)."""
    return str(secrets.randbelow(10 ** length)).zfill(length)


def is_otp_format(code: str, length: int = OTP_LENGTH) -> bool:
    return bool(code) and len(code) == length and code.isdigit()


# =========================
# Time
# =========================
def utcnow() -> datetime:
    """Naive UTC timestamp, matching what the database columns store."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_window_duration(value: Union[int, str]) -> int:
    """Turn "1 hour", "30 minutes", "15 min" or a bare number of seconds into seconds."""
    if isinstance(value, bool):
        raise ValueError("Invalid window duration")
    if isinstance(value, int):
        seconds = value
    else:
        text = str(value).strip()
        if text.isdigit():
            seconds = int(text)
        else:
            match = _DURATION_RE.match(text)
            if not match or match.group(2).lower() not in _DURATION_UNITS:
                raise ValueError(f"Invalid window duration: {value!r}")
            seconds = int(match.group(1)) * _DURATION_UNITS[match.group(2).lower()]
    if seconds <= 0:
        raise ValueError("Window duration must be positive")
    return seconds


# =========================
# Identifiers
# =========================
def normalize_email(email: str) -> str:
    return email.strip().lower()


def hash_identifier(value: str) -> str:
    """One-way hash for identifiers that end up in logs"""
    return hashlib.sha256(value.encode()).hexdigest()


def generate_refresh_token() -> str:
    return secrets.token_urlsafe(48)
