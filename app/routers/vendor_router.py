# app/routers/vendor_router.py
import logging
import secrets

from fastapi import APIRouter, Depends, Request

from ..application.services.reminder_service import ReminderService
from ..core.config import Settings
from ..dependencies import get_reminder_service, get_settings_dep
from ..exceptions import AuthenticationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/vendor", tags=["Vendor"])


def verify_cron_secret(request: Request, settings: Settings = Depends(get_settings_dep)) -> None:
    if not settings.CRON_SECRET:
        logger.error("CRON_SECRET is not configured; refusing cron trigger")
        raise AuthenticationError("Unauthorized")
    provided = request.headers.get("authorization", "")
    expected = f"Bearer {settings.CRON_SECRET}"
    if not secrets.compare_digest(provided.encode(), expected.encode()):
        raise AuthenticationError("Unauthorized")


@router.post("/subscription/reminder", dependencies=[Depends(verify_cron_secret)])
def send_subscription_reminders(reminders: ReminderService = Depends(get_reminder_service)):
    reminded = reminders.send_trial_reminders()
    return {
        "success": True,
        "remindersSent": len(reminded),
        "vendors": [{"id": v.id, "business_name": v.business_name} for v in reminded],
    }
