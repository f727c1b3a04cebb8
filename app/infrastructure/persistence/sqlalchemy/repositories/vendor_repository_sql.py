from datetime import datetime
from typing import List
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from .....db.models import Vendor
from .....application.ports.vendor_repo import VendorRepository, VendorDto
from .....exceptions import StoreError


class SqlVendorRepository(VendorRepository):
    def __init__(self, engine: Engine):
        self.engine = engine

    def _to_dto(self, vendor: Vendor) -> VendorDto:
        return VendorDto(
            id=vendor.id,
            user_id=vendor.user_id,
            business_name=vendor.business_name,
            business_email=vendor.business_email,
            trial_end_date=vendor.trial_end_date,
            last_reminder_sent_at=vendor.last_reminder_sent_at,
            reminder_count=vendor.reminder_count or 0,
        )

    def list_trials_ending_between(self, start: datetime, end: datetime) -> List[VendorDto]:
        try:
            with Session(self.engine) as session:
                vendors = session.exec(
                    select(Vendor).where(
                        Vendor.subscription_status == "trial",
                        Vendor.trial_end_date > start,
                        Vendor.trial_end_date <= end,
                    )
                ).all()
                return [self._to_dto(v) for v in vendors]
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to fetch vendors: {e}") from e

    def record_reminder(self, vendor_id: str, sent_at: datetime) -> None:
        try:
            with Session(self.engine) as session:
                vendor = session.get(Vendor, vendor_id)
                if not vendor:
                    return
                vendor.last_reminder_sent_at = sent_at
                vendor.reminder_count = (vendor.reminder_count or 0) + 1
                session.add(vendor)
                session.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to update vendor: {e}") from e
