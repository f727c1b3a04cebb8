import threading
from datetime import datetime, timedelta
from typing import Dict, Tuple

from ...application.ports.rate_limit_store import RateLimitStore


class InMemoryRateLimitStore(RateLimitStore):
    """Per-process counters. Only correct for single-worker deployments."""

    def __init__(self) -> None:
        self._store: Dict[Tuple[str, str, datetime], Tuple[int, datetime]] = {}
        self._lock = threading.Lock()

    def increment(self, identifier: str, action_type: str, window_start: datetime, window_seconds: int) -> int:
        key = (identifier, action_type, window_start)
        window_end = window_start + timedelta(seconds=window_seconds)
        with self._lock:
            # prune
            self._store = {k: v for k, v in self._store.items() if v[1] > window_start}
            count, _ = self._store.get(key, (0, window_end))
            count += 1
            self._store[key] = (count, window_end)
            return count
