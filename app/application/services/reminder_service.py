import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List

from ..ports.email_sender import EmailSender
from ..ports.vendor_repo import VendorRepository, VendorDto
from ...exceptions import EmailDeliveryError, InternalError, StoreError
from ...utils import utcnow

logger = logging.getLogger(__name__)

TRIAL_LOOKAHEAD_DAYS = 30
REMINDER_INTERVAL_DAYS = 7


@dataclass
class ReminderService:
    vendors: VendorRepository
    email_sender: EmailSender
    clock: Callable[[], datetime] = field(default=utcnow)

    def _due(self, vendor: VendorDto, now: datetime) -> bool:
        if vendor.last_reminder_sent_at is None:
            return True
        return now - vendor.last_reminder_sent_at >= timedelta(days=REMINDER_INTERVAL_DAYS)

    def send_trial_reminders(self) -> List[VendorDto]:
        """Remind trial vendors whose trial ends within 30 days, at most weekly."""
        now = self.clock()
        try:
            candidates = self.vendors.list_trials_ending_between(now, now + timedelta(days=TRIAL_LOOKAHEAD_DAYS))
        except StoreError as e:
            logger.error(f"Error fetching vendors for reminders: {e}")
            raise InternalError("Failed to fetch vendors")

        reminded = []
        for vendor in candidates:
            if not self._due(vendor, now):
                continue
            try:
                self.vendors.record_reminder(vendor.id, now)
            except StoreError as e:
                logger.error(f"Failed to record reminder for vendor {vendor.id}: {e}")
                continue
            try:
                self.email_sender.send_trial_reminder(vendor.business_email, vendor.business_name, vendor.trial_end_date)
            except EmailDeliveryError as e:
                logger.error(f"Reminder email to vendor {vendor.id} failed: {e}")
            else:
                logger.info(f"Reminder sent to vendor {vendor.business_name}")
            reminded.append(vendor)
        return reminded
