# app/infrastructure/email/resend_sender.py
import html
import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from datetime import datetime
from typing import Any, Dict, Optional
from urllib.parse import quote

import resend

from ...application.ports.email_sender import EmailSender
from ...core.config import Settings
from ...exceptions import EmailDeliveryError

logger = logging.getLogger(__name__)


class ResendEmailSender(EmailSender):
    def __init__(self, settings: Settings):
        self.api_key = settings.RESEND_API_KEY
        self.sender = f"{settings.RESEND_FROM_NAME} <{settings.RESEND_FROM_EMAIL}>"
        self.brand = settings.RESEND_FROM_NAME
        self.app_url = settings.APP_URL.rstrip("/")
        self.timeout = settings.EMAIL_TIMEOUT_SEC
        self.verification_ttl = settings.OTP_VERIFICATION_TTL_MINUTES
        self.reset_ttl = settings.OTP_PASSWORD_RESET_TTL_MINUTES
        # Emails.send is SYNC; a pool lets us bound it with a timeout
        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="resend")

    def _send(self, params: Dict[str, Any]) -> None:
        if not self.api_key:
            raise EmailDeliveryError("RESEND_API_KEY is not configured")
        resend.api_key = self.api_key
        future = self._executor.submit(resend.Emails.send, params)
        try:
            result = future.result(timeout=self.timeout)
        except FutureTimeout as e:
            raise EmailDeliveryError(f"Email delivery timed out after {self.timeout}s") from e
        except Exception as e:
            raise EmailDeliveryError(str(e)) from e
        logger.info(f"Email '{params['subject']}' accepted by Resend: {result}")

    def _greeting(self, full_name: Optional[str]) -> str:
        return f"Hello {html.escape(full_name)}," if full_name else "Hello,"

    def send_verification_email(self, email: str, token: str, full_name: Optional[str] = None) -> None:
        link = f"{self.app_url}/verify-email?email={quote(email)}&token={token}"
        self._send({
            "from": self.sender,
            "to": [email],
            "subject": f"Verify your {self.brand} account",
            "html": (
                f"<p>{self._greeting(full_name)}</p>"
                f"<p>Your verification code is <strong>{token}</strong>. "
                f"It expires in {self.verification_ttl} minutes.</p>"
                f"<p>Or verify directly: <a href=\"{html.escape(link)}\">{html.escape(link)}</a></p>"
            ),
            "text": f"Your verification code is {token}. It expires in {self.verification_ttl} minutes.",
        })

    def send_password_reset_email(self, email: str, token: str, full_name: Optional[str] = None) -> None:
        link = f"{self.app_url}/reset-password?email={quote(email)}&token={token}"
        self._send({
            "from": self.sender,
            "to": [email],
            "subject": f"Reset your {self.brand} password",
            "html": (
                f"<p>{self._greeting(full_name)}</p>"
                f"<p>Your password reset code is <strong>{token}</strong>. "
                f"It expires in {self.reset_ttl} minutes.</p>"
                f"<p>Reset here: <a href=\"{html.escape(link)}\">{html.escape(link)}</a></p>"
                "<p>If you did not request this, you can ignore this email.</p>"
            ),
            "text": f"Your password reset code is {token}. It expires in {self.reset_ttl} minutes.",
        })

    def send_trial_reminder(self, email: str, business_name: str, trial_end_date: Optional[datetime]) -> None:
        ends = trial_end_date.strftime("%B %d, %Y") if trial_end_date else "soon"
        self._send({
            "from": self.sender,
            "to": [email],
            "subject": f"Your {self.brand} vendor trial ends {ends}",
            "html": (
                f"<p>Hello {html.escape(business_name)},</p>"
                f"<p>Your free vendor trial ends on <strong>{ends}</strong>. "
                f"Subscribe from your dashboard to keep selling: "
                f"<a href=\"{self.app_url}/vendor/dashboard\">{self.app_url}/vendor/dashboard</a></p>"
            ),
        })

    def close(self) -> None:
        self._executor.shutdown(wait=False)
