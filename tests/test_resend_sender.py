from datetime import datetime

import pytest

from app.core.config import Settings
from app.exceptions import EmailDeliveryError
from app.infrastructure.email import resend_sender as mod


@pytest.fixture()
def sent(monkeypatch):
    messages = []
    monkeypatch.setattr(mod.resend.Emails, "send", lambda params: messages.append(params) or {"id": "email-1"})
    return messages


@pytest.fixture()
def sender():
    settings = Settings(_env_file=None, RESEND_API_KEY="re_test", APP_URL="https://shop.example.com/")
    sender = mod.ResendEmailSender(settings)
    yield sender
    sender.close()


def test_verification_email_escapes_recipient_name(sender, sent):
    sender.send_verification_email("user@example.com", "123456", full_name="<script>alert(1)</script>")

    body = sent[0]["html"]
    assert "<script>" not in body
    assert "&lt;script&gt;alert(1)&lt;/script&gt;" in body
    assert "https://shop.example.com/verify-email?email=user%40example.com&amp;token=123456" in body
    assert sent[0]["to"] == ["user@example.com"]


def test_trial_reminder_escapes_business_name(sender, sent):
    sender.send_trial_reminder("shop@example.com", 'Ada & Co <b>"Best"</b>', datetime(2024, 5, 20))

    body = sent[0]["html"]
    assert "<b>" not in body
    assert "Ada &amp; Co &lt;b&gt;&quot;Best&quot;&lt;/b&gt;" in body
    assert "May 20, 2024" in sent[0]["subject"]


def test_missing_api_key_is_a_delivery_error(sent):
    sender = mod.ResendEmailSender(Settings(_env_file=None, RESEND_API_KEY=""))
    try:
        with pytest.raises(EmailDeliveryError):
            sender.send_password_reset_email("user@example.com", "123456")
    finally:
        sender.close()
    assert sent == []
