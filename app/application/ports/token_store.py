from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Protocol


class OtpType(str, Enum):
    VERIFICATION = "verification"
    PASSWORD_RESET = "password_reset"


@dataclass
class OtpRecordDto:
    id: str
    email: str
    token: str
    type: str
    expires_at: datetime
    used: bool
    created_at: datetime


class TokenStore(Protocol):
    def insert(self, email: str, token: str, otp_type: str, expires_at: datetime) -> OtpRecordDto:
        ...

    def claim(self, email: str, token: str, otp_type: str, now: datetime) -> bool:
        """Flip the newest eligible record to used in one conditional write.

        Returns False when zero rows were affected.
        """
        ...

    def prune_expired(self, before: datetime) -> int:
        ...
