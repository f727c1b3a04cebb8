import threading
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest
from sqlmodel import create_engine

from app.application.services.rate_limit_service import RateLimitService, window_bounds
from app.core.config import Settings
from app.database import build_engine, create_db_and_tables
from app.exceptions import StorageDegraded, ValidationError
from app.infrastructure.persistence.sqlalchemy.repositories.rate_limit_repository_sql import SqlRateLimitStore
from app.infrastructure.rate_limit.memory_rate_limiter import InMemoryRateLimitStore


class Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class BrokenStore:
    def __init__(self):
        self.calls = 0

    def increment(self, identifier, action_type, window_start, window_seconds):
        self.calls += 1
        raise StorageDegraded("connection refused")


def test_window_bounds_floor_to_top_of_hour():
    assert window_bounds(datetime(2024, 5, 1, 10, 42, 7), 3600) == datetime(2024, 5, 1, 10, 0, 0)
    assert window_bounds(datetime(2024, 5, 1, 10, 42, 7), 900) == datetime(2024, 5, 1, 10, 30, 0)


def test_three_allowed_then_limited_then_next_window_resets():
    clock = Clock(datetime(2024, 5, 1, 10, 15, 0))
    svc = RateLimitService(store=InMemoryRateLimitStore(), clock=clock)

    results = [svc.check_and_record("user@example.com", "signup", 3, "1 hour") for _ in range(4)]
    assert [r.attempt_count for r in results] == [1, 2, 3, 4]
    assert [r.is_limited for r in results] == [False, False, False, True]
    assert results[3].time_until_reset_ms == 45 * 60 * 1000

    clock.now = datetime(2024, 5, 1, 11, 0, 1)
    fresh = svc.check_and_record("user@example.com", "signup", 3, "1 hour")
    assert fresh.attempt_count == 1
    assert fresh.is_limited is False


def test_counters_are_per_identifier_and_action():
    svc = RateLimitService(store=InMemoryRateLimitStore(), clock=Clock(datetime(2024, 5, 1, 10, 0, 0)))
    svc.check_and_record("a@example.com", "signup", 1)
    assert svc.check_and_record("A@Example.com ", "signup", 1).is_limited is True
    assert svc.check_and_record("a@example.com", "resend", 1).is_limited is False
    assert svc.check_and_record("b@example.com", "signup", 1).is_limited is False


def test_prefixed_limiter_keeps_its_own_counter():
    store = InMemoryRateLimitStore()
    clock = Clock(datetime(2024, 5, 1, 10, 0, 0))
    client_limits = RateLimitService(store=store, clock=clock)
    issuance = RateLimitService(store=store, key_prefix="otp_issue:", clock=clock)

    counts = []
    for _ in range(3):
        counts.append(client_limits.check_and_record("user@example.com", "resend", 3).attempt_count)
        issuance.check_and_record("user@example.com", "resend", 5)
    assert counts == [1, 2, 3]
    assert issuance.check_and_record("user@example.com", "resend", 5).attempt_count == 4


def test_degraded_store_fails_open():
    store = BrokenStore()
    svc = RateLimitService(store=store)
    result = svc.check_and_record("user@example.com", "resend")
    assert store.calls == 1
    assert result.is_limited is False
    assert result.fallback is True
    assert result.attempt_count == 0


@pytest.mark.parametrize("identifier, action, window", [
    ("", "signup", "1 hour"),
    ("user@example.com", "", "1 hour"),
    ("user@example.com", "login", "1 hour"),
    ("user@example.com", "signup", "fortnight"),
    ("user@example.com", "signup", 0),
])
def test_invalid_input_is_rejected_before_store_access(identifier, action, window):
    store = BrokenStore()
    svc = RateLimitService(store=store)
    with pytest.raises(ValidationError):
        svc.check_and_record(identifier, action, 3, window)
    assert store.calls == 0


def test_sql_store_upsert_increments_same_window(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'rl.db'}")
    create_db_and_tables(engine)
    clock = Clock(datetime(2024, 5, 1, 10, 5, 0))
    svc = RateLimitService(store=SqlRateLimitStore(engine), clock=clock)

    counts = [svc.check_and_record("user@example.com", "signup", 3, "1 hour").attempt_count for _ in range(4)]
    assert counts == [1, 2, 3, 4]

    clock.now = clock.now + timedelta(hours=1)
    assert svc.check_and_record("user@example.com", "signup", 3, "1 hour").attempt_count == 1
    engine.dispose()


def test_sql_store_counts_concurrent_attempts_exactly(tmp_path):
    settings = Settings(_env_file=None, DATABASE_URL=f"sqlite:///{tmp_path / 'rl-race.db'}", STORE_TIMEOUT_SEC=30)
    engine = build_engine(settings)
    create_db_and_tables(engine)
    svc = RateLimitService(store=SqlRateLimitStore(engine), clock=Clock(datetime(2024, 5, 1, 10, 5, 0)))

    results = []
    results_lock = threading.Lock()
    barrier = threading.Barrier(8)

    def worker():
        barrier.wait()
        for _ in range(10):
            result = svc.check_and_record("user@example.com", "signup", 100, "1 hour")
            with results_lock:
                results.append(result)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    engine.dispose()

    assert not any(r.fallback for r in results)
    assert sorted(r.attempt_count for r in results) == list(range(1, 81))


def test_sql_store_without_upsert_support_degrades():
    engine = SimpleNamespace(dialect=SimpleNamespace(name="mssql"))
    store = SqlRateLimitStore(engine)
    with pytest.raises(StorageDegraded):
        store.increment("user@example.com", "signup", datetime(2024, 5, 1, 10), 3600)


def test_redis_store_with_fake(monkeypatch):
    redis = pytest.importorskip("redis")

    class FakePipe:
        def __init__(self, client):
            self.client = client
            self.ops = []

        def incr(self, k, n):
            self.ops.append(("incr", k, n))
            return self

        def expireat(self, k, when):
            self.ops.append(("expireat", k, when))
            return self

        def execute(self):
            results = []
            for op in self.ops:
                if op[0] == "incr":
                    self.client.store[op[1]] = self.client.store.get(op[1], 0) + op[2]
                    results.append(self.client.store[op[1]])
                else:
                    self.client.expiry[op[1]] = op[2]
                    results.append(True)
            return results

    class FakeRedis:
        def __init__(self):
            self.store = {}
            self.expiry = {}

        @classmethod
        def from_url(cls, url, **kwargs):
            return cls()

        def pipeline(self, transaction=True):
            return FakePipe(self)

    from app.infrastructure.rate_limit import redis_rate_limiter as mod
    monkeypatch.setattr(mod.redis, "Redis", FakeRedis)

    store = mod.RedisRateLimitStore(url="redis://fake")
    svc = RateLimitService(store=store, clock=Clock(datetime(2024, 5, 1, 10, 30, 0)))

    assert svc.check_and_record("k1@example.com", "resend", 2).is_limited is False
    assert svc.check_and_record("k1@example.com", "resend", 2).is_limited is False
    assert svc.check_and_record("k1@example.com", "resend", 2).is_limited is True

    key = next(iter(store.client.store))
    assert key.startswith("rl:resend:k1@example.com:")
    # the key expires when its window closes
    assert store.client.expiry[key] - int(key.rsplit(":", 1)[1]) == 3600


def test_redis_store_errors_fail_open():
    redis = pytest.importorskip("redis")

    class DownRedis:
        def pipeline(self, transaction=True):
            raise redis.ConnectionError("down")

    from app.infrastructure.rate_limit.redis_rate_limiter import RedisRateLimitStore

    svc = RateLimitService(store=RedisRateLimitStore(client=DownRedis()))
    result = svc.check_and_record("user@example.com", "signup")
    assert result.fallback is True
    assert result.is_limited is False
