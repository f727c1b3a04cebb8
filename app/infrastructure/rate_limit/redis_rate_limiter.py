import calendar
from datetime import datetime, timedelta
from typing import Optional

import redis

from ...application.ports.rate_limit_store import RateLimitStore
from ...exceptions import StorageDegraded


def _epoch(value: datetime) -> int:
    return calendar.timegm(value.utctimetuple())


class RedisRateLimitStore(RateLimitStore):
    def __init__(self, url: Optional[str] = None, prefix: str = "rl:", timeout: float = 5.0, client: Optional["redis.Redis"] = None) -> None:
        if client is None:
            if not url:
                raise RuntimeError("REDIS_URL is not configured")
            client = redis.Redis.from_url(url, socket_timeout=timeout, socket_connect_timeout=timeout)
        self.client = client
        self.prefix = prefix

    def increment(self, identifier: str, action_type: str, window_start: datetime, window_seconds: int) -> int:
        rk = f"{self.prefix}{action_type}:{identifier}:{_epoch(window_start)}"
        window_end = window_start + timedelta(seconds=window_seconds)
        try:
            # MULTI/EXEC so the increment and its expiry land together
            pipe = self.client.pipeline(transaction=True)
            pipe.incr(rk, 1)
            pipe.expireat(rk, _epoch(window_end))
            count, _ = pipe.execute()
        except redis.RedisError as e:
            raise StorageDegraded(f"Redis rate limit store unavailable: {e}") from e
        return int(count)
