from __future__ import annotations

import os

from kiosk.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from kiosk.integrations.email.base import EmailProvider
from kiosk.integrations.email.mock_provider import MockEmailProvider
from kiosk.integrations.email.smtp_provider import SmtpEmailProvider
from kiosk.utils.settings import env_int, integrations_mode


def build_email_provider() -> EmailProvider:
    mode = integrations_mode()
    if mode == "disabled":
        raise IntegrationDisabledError("INTEGRATION_DISABLED:email")
    if mode == "sandbox":
        return MockEmailProvider()

    smtp_host = (os.getenv("SMTP_HOST") or "").strip()
    smtp_user = (os.getenv("SMTP_USER") or "").strip()
    smtp_from = (os.getenv("SMTP_FROM") or smtp_user).strip()
    missing = []
    if not smtp_host:
        missing.append("SMTP_HOST")
    if not smtp_from:
        missing.append("SMTP_FROM")
    if missing:
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:missing {', '.join(missing)}")
    return SmtpEmailProvider(
        host=smtp_host,
        port=env_int("SMTP_PORT", 587, minimum=1, maximum=65535),
        username=smtp_user,
        password=(os.getenv("SMTP_PASS") or "").strip(),
        sender=smtp_from,
        reply_to=(os.getenv("SMTP_REPLY_TO") or "").strip(),
    )
