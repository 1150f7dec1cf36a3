from __future__ import annotations

import logging
import os

from kiosk.integrations.email.base import EmailProvider
from kiosk.integrations.messaging.base import MessageResult

logger = logging.getLogger(__name__)


class MockEmailProvider(EmailProvider):
    name = "mock"

    def send_email(self, *, to: str, subject: str, body: str) -> MessageResult:
        if (os.getenv("MOCK_NOTIFY_FORCE_FAIL") or "").strip() == "1":
            return MessageResult(ok=False, code="EMAIL_SEND_FAILED", message="mock forced failure")
        logger.info("mock_email_sent to=%s subject=%s", to, subject)
        return MessageResult(ok=True, code="OK", message="mock_sent")
