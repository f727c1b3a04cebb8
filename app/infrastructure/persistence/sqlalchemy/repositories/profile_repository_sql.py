from typing import List, Optional
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from .....db.models import Profile
from .....application.ports.profile_repo import ProfileRepository, RoleRecord
from .....exceptions import StoreError
from .....utils import normalize_email, utcnow


class SqlProfileRepository(ProfileRepository):
    """Reads with the service engine, outside any per-user scoping."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def _to_record(self, profile: Profile) -> RoleRecord:
        return RoleRecord(
            user_id=profile.id,
            email=profile.email,
            full_name=profile.full_name,
            role=profile.role,
            email_verified=bool(profile.email_verified),
        )

    def get_role_record(self, user_id: str) -> Optional[RoleRecord]:
        try:
            with Session(self.engine) as session:
                profile = session.get(Profile, user_id)
                return self._to_record(profile) if profile else None
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to read profile: {e}") from e

    def get_by_email(self, email: str) -> Optional[RoleRecord]:
        try:
            with Session(self.engine) as session:
                profile = session.exec(select(Profile).where(Profile.email == normalize_email(email))).first()
                return self._to_record(profile) if profile else None
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to read profile: {e}") from e

    def create(self, user_id: str, email: str, full_name: Optional[str], role: str) -> RoleRecord:
        try:
            with Session(self.engine) as session:
                profile = Profile(id=user_id, email=normalize_email(email), full_name=full_name, role=role)
                session.add(profile)
                session.commit()
                session.refresh(profile)
                return self._to_record(profile)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to create profile: {e}") from e

    def mark_email_verified(self, email: str) -> None:
        try:
            with Session(self.engine) as session:
                profile = session.exec(select(Profile).where(Profile.email == normalize_email(email))).first()
                if not profile:
                    return
                profile.email_verified = True
                profile.updated_at = utcnow()
                session.add(profile)
                session.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to update profile: {e}") from e

    def list_all(self) -> List[RoleRecord]:
        try:
            with Session(self.engine) as session:
                profiles = session.exec(select(Profile).order_by(Profile.created_at)).all()
                return [self._to_record(p) for p in profiles]
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to list profiles: {e}") from e

    def set_role(self, user_id: str, role: str) -> Optional[RoleRecord]:
        try:
            with Session(self.engine) as session:
                profile = session.get(Profile, user_id)
                if not profile:
                    return None
                profile.role = role
                profile.updated_at = utcnow()
                session.add(profile)
                session.commit()
                session.refresh(profile)
                return self._to_record(profile)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to update profile: {e}") from e
