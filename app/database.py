from sqlmodel import SQLModel, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from .core.config import Settings


def build_engine(settings: Settings) -> Engine:
    """Create the process-wide engine. Owned by the container, disposed on shutdown."""
    db_url = settings.DATABASE_URL
    engine_kwargs = {}

    if db_url.startswith("sqlite"):
        # SQLite specific connect args; `timeout` bounds waits on the write lock
        engine_kwargs["connect_args"] = {
            "check_same_thread": False,
            "timeout": settings.STORE_TIMEOUT_SEC,
        }
        if db_url in ("sqlite://", "sqlite:///:memory:"):
            engine_kwargs["poolclass"] = StaticPool
    else:
        # Better resiliency for managed Postgres
        engine_kwargs.update({
            "pool_pre_ping": True,
            "pool_recycle": 300,
            "pool_size": 5,
            "max_overflow": 10,
            "pool_timeout": settings.STORE_TIMEOUT_SEC,
        })
        if db_url.startswith("postgresql"):
            timeout_ms = int(settings.STORE_TIMEOUT_SEC * 1000)
            engine_kwargs["connect_args"] = {
                "connect_timeout": max(1, int(settings.STORE_TIMEOUT_SEC)),
                "options": f"-c statement_timeout={timeout_ms}",
            }

    return create_engine(db_url, echo=settings.DEBUG, **engine_kwargs)


def create_db_and_tables(engine: Engine) -> None:
    # Importing the models registers them on SQLModel.metadata
    from . import db  # noqa: F401
    from .db import models  # noqa: F401

    SQLModel.metadata.create_all(engine)
