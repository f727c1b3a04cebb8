from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Protocol


@dataclass
class VendorDto:
    id: str
    user_id: str
    business_name: str
    business_email: str
    trial_end_date: Optional[datetime]
    last_reminder_sent_at: Optional[datetime]
    reminder_count: int


class VendorRepository(Protocol):
    def list_trials_ending_between(self, start: datetime, end: datetime) -> List[VendorDto]:
        ...

    def record_reminder(self, vendor_id: str, sent_at: datetime) -> None:
        ...
