from datetime import datetime
from typing import Optional, Protocol


class EmailSender(Protocol):
    def send_verification_email(self, email: str, token: str, full_name: Optional[str] = None) -> None:
        ...

    def send_password_reset_email(self, email: str, token: str, full_name: Optional[str] = None) -> None:
        ...

    def send_trial_reminder(self, email: str, business_name: str, trial_end_date: Optional[datetime]) -> None:
        ...
