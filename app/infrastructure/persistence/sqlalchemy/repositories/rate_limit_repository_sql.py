from datetime import datetime
from sqlalchemy import delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from .....db.models import EmailRateLimit
from .....application.ports.rate_limit_store import RateLimitStore
from .....exceptions import StorageDegraded
from .....utils import utcnow


def _upsert_insert(dialect_name: str):
    if dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
        return insert
    if dialect_name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
        return insert
    return None


class SqlRateLimitStore(RateLimitStore):
    def __init__(self, engine: Engine):
        self.engine = engine

    def increment(self, identifier: str, action_type: str, window_start: datetime, window_seconds: int) -> int:
        insert = _upsert_insert(self.engine.dialect.name)
        if insert is None:
            raise StorageDegraded(f"No atomic upsert for dialect {self.engine.dialect.name}")

        table = EmailRateLimit.__table__
        now = utcnow()
        stmt = insert(table).values(
            identifier=identifier,
            action_type=action_type,
            window_start=window_start,
            window_duration=window_seconds,
            attempt_count=1,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["identifier", "action_type", "window_start"],
            set_={"attempt_count": table.c.attempt_count + 1, "updated_at": now},
        )
        count_query = select(table.c.attempt_count).where(
            table.c.identifier == identifier,
            table.c.action_type == action_type,
            table.c.window_start == window_start,
        )
        try:
            with Session(self.engine) as session:
                conn = session.connection()
                conn.execute(stmt)
                # Still inside the upsert's transaction, so the row lock is held
                count = conn.execute(count_query).scalar_one()
                session.commit()
                return int(count)
        except SQLAlchemyError as e:
            raise StorageDegraded(f"Rate limit store unavailable: {e}") from e

    def prune_expired(self, before: datetime) -> int:
        table = EmailRateLimit.__table__
        stmt = delete(table).where(table.c.window_start < before)
        try:
            with Session(self.engine) as session:
                result = session.connection().execute(stmt)
                session.commit()
                return result.rowcount or 0
        except SQLAlchemyError as e:
            raise StorageDegraded(f"Rate limit store unavailable: {e}") from e
