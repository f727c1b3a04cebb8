import pytest
from pydantic import ValidationError

from app.container import build_rate_limit_store
from app.core.config import Settings, split_csv
from app.database import build_engine
from app.infrastructure.persistence.sqlalchemy.repositories.rate_limit_repository_sql import SqlRateLimitStore
from app.infrastructure.rate_limit.memory_rate_limiter import InMemoryRateLimitStore


def make_settings(**overrides):
    return Settings(_env_file=None, **overrides)


def test_defaults():
    settings = make_settings()
    assert settings.RATE_LIMIT_BACKEND == "database"
    assert settings.OTP_VERIFICATION_TTL_MINUTES == 10
    assert settings.OTP_PASSWORD_RESET_TTL_MINUTES == 60
    assert settings.is_production is False


def test_backend_is_normalised_and_checked():
    assert make_settings(RATE_LIMIT_BACKEND=" Memory ").RATE_LIMIT_BACKEND == "memory"
    with pytest.raises(ValidationError):
        make_settings(RATE_LIMIT_BACKEND="memcached")


def test_redis_backend_needs_url():
    with pytest.raises(ValidationError):
        make_settings(RATE_LIMIT_BACKEND="redis")
    assert make_settings(RATE_LIMIT_BACKEND="redis", REDIS_URL="redis://localhost:6379/0").REDIS_URL


def test_production_refuses_default_secret():
    with pytest.raises(ValidationError):
        make_settings(ENV="production")
    settings = make_settings(ENV="production", JWT_SECRET_KEY="a-real-secret")
    assert settings.is_production is True
    assert settings.SECRET_KEY == "a-real-secret"


@pytest.mark.parametrize("raw, expected", [
    ("*", ["*"]),
    ("https://a.ng, https://b.ng", ["https://a.ng", "https://b.ng"]),
    ("", []),
    (None, []),
    ("GET,,POST,", ["GET", "POST"]),
])
def test_split_csv(raw, expected):
    assert split_csv(raw) == expected


def test_store_selection(tmp_path):
    settings = make_settings(DATABASE_URL=f"sqlite:///{tmp_path / 'cfg.db'}")
    engine = build_engine(settings)
    try:
        assert isinstance(build_rate_limit_store(settings, engine), SqlRateLimitStore)
        memory = make_settings(RATE_LIMIT_BACKEND="memory")
        assert isinstance(build_rate_limit_store(memory, engine), InMemoryRateLimitStore)
    finally:
        engine.dispose()
