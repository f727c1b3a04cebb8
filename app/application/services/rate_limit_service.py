import calendar
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional, Union

from ..ports.rate_limit_store import RateLimitStore, RateLimitAction
from ...exceptions import StorageDegraded, ValidationError
from ...utils import parse_window_duration, utcnow

logger = logging.getLogger(__name__)

ACTION_TYPES = {a.value for a in RateLimitAction}
EPOCH = datetime(1970, 1, 1)


@dataclass
class RateLimitResult:
    is_limited: bool
    attempt_count: int
    max_attempts: int
    time_until_reset_ms: int
    window_start: Optional[datetime] = None
    fallback: bool = False


def window_bounds(now: datetime, window_seconds: int) -> datetime:
    """Floor `now` to the start of its fixed window (top of the hour for 3600)."""
    epoch = calendar.timegm(now.utctimetuple())
    start = epoch - (epoch % window_seconds)
    return EPOCH + timedelta(seconds=start)


@dataclass
class RateLimitService:
    store: RateLimitStore
    default_max_attempts: int = 3
    default_window: str = "1 hour"
    # Keeps internal counters apart from the ones clients drive through /auth/rate-limit
    key_prefix: str = ""
    clock: Callable[[], datetime] = field(default=utcnow)

    def check_and_record(
        self,
        identifier: str,
        action_type: str,
        max_attempts: Optional[int] = None,
        window_duration: Union[int, str, None] = None,
    ) -> RateLimitResult:
        """Count this attempt and report whether it went over the cap.

        The attempt that crosses the threshold is recorded too, and it is the
        one reported as limited. When the store is unavailable the request is
        allowed and the result carries `fallback=True`.
        """
        if not identifier or not identifier.strip() or not action_type:
            raise ValidationError("Identifier and actionType are required")
        if action_type not in ACTION_TYPES:
            raise ValidationError("actionType must be one of: signup, resend")
        max_attempts = self.default_max_attempts if max_attempts is None else max_attempts
        if max_attempts < 1:
            raise ValidationError("maxAttempts must be at least 1")
        try:
            window_seconds = parse_window_duration(window_duration if window_duration is not None else self.default_window)
        except ValueError as e:
            raise ValidationError(str(e))

        identifier = self.key_prefix + identifier.strip().lower()
        now = self.clock()
        window_start = window_bounds(now, window_seconds)

        try:
            attempt_count = self.store.increment(identifier, action_type, window_start, window_seconds)
        except StorageDegraded as e:
            # Availability over strict throttling: allow and flag the degraded mode
            logger.warning(f"Rate limiter degraded, allowing {action_type} request: {e}")
            return RateLimitResult(
                is_limited=False,
                attempt_count=0,
                max_attempts=max_attempts,
                time_until_reset_ms=0,
                fallback=True,
            )

        elapsed_ms = int((now - window_start).total_seconds() * 1000)
        time_until_reset_ms = max(0, window_seconds * 1000 - elapsed_ms)
        is_limited = attempt_count > max_attempts
        if is_limited:
            logger.warning(f"Rate limit exceeded for {action_type}: attempt {attempt_count}/{max_attempts}")
        return RateLimitResult(
            is_limited=is_limited,
            attempt_count=attempt_count,
            max_attempts=max_attempts,
            time_until_reset_ms=time_until_reset_ms,
            window_start=window_start,
        )
