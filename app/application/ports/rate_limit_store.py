from datetime import datetime
from enum import Enum
from typing import Protocol


class RateLimitAction(str, Enum):
    SIGNUP = "signup"
    RESEND = "resend"


class RateLimitStore(Protocol):
    def increment(self, identifier: str, action_type: str, window_start: datetime, window_seconds: int) -> int:
        """Atomically upsert the counter for the window and return the new count.

        Raises StorageDegraded when the store is unreachable or cannot do this atomically.
        """
        ...
