from datetime import datetime
from sqlalchemy import delete, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from .....db.models import OtpToken
from .....application.ports.token_store import TokenStore, OtpRecordDto
from .....exceptions import StoreError


class SqlTokenStore(TokenStore):
    def __init__(self, engine: Engine):
        self.engine = engine

    def _to_dto(self, rec: OtpToken) -> OtpRecordDto:
        return OtpRecordDto(
            id=rec.id,
            email=rec.email,
            token=rec.token,
            type=rec.type,
            expires_at=rec.expires_at,
            used=rec.used,
            created_at=rec.created_at,
        )

    def insert(self, email: str, token: str, otp_type: str, expires_at: datetime) -> OtpRecordDto:
        try:
            with Session(self.engine) as session:
                rec = OtpToken(email=email, token=token, type=otp_type, expires_at=expires_at, used=False)
                session.add(rec)
                session.commit()
                session.refresh(rec)
                return self._to_dto(rec)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to store OTP: {e}") from e

    def claim(self, email: str, token: str, otp_type: str, now: datetime) -> bool:
        # The candidate lookup and the used-flip are one UPDATE statement, so two
        # concurrent submissions of the same code cannot both affect a row.
        table = OtpToken.__table__
        candidate = table.alias("candidate")
        newest_eligible = (
            select(candidate.c.id)
            .where(
                candidate.c.email == email,
                candidate.c.token == token,
                candidate.c.type == otp_type,
                candidate.c.used == False,  # noqa: E712
                candidate.c.expires_at > now,
            )
            .order_by(candidate.c.created_at.desc())
            .limit(1)
            .scalar_subquery()
        )
        stmt = (
            update(table)
            .where(
                table.c.id == newest_eligible,
                table.c.used == False,  # noqa: E712
                table.c.expires_at > now,
            )
            .values(used=True, used_at=now)
        )
        try:
            with Session(self.engine) as session:
                result = session.connection().execute(stmt)
                session.commit()
                return result.rowcount == 1
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to claim OTP: {e}") from e

    def prune_expired(self, before: datetime) -> int:
        table = OtpToken.__table__
        stmt = delete(table).where(table.c.used == True, table.c.expires_at < before)  # noqa: E712
        try:
            with Session(self.engine) as session:
                result = session.connection().execute(stmt)
                session.commit()
                return result.rowcount or 0
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to prune OTPs: {e}") from e
