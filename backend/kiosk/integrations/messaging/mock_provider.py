from __future__ import annotations

import logging
import os
import uuid

from kiosk.integrations.messaging.base import MessagingProvider, MessageResult

logger = logging.getLogger(__name__)


class MockMessagingProvider(MessagingProvider):
    """Sandbox gateway. A message containing ``[fail]`` or ``MOCK_NOTIFY_FORCE_FAIL=1`` simulates an outage."""

    name = "mock"

    def send_sms(self, *, to: str, message: str, reference: str = "") -> MessageResult:
        outage = "[fail]" in (message or "").lower() or (os.getenv("MOCK_NOTIFY_FORCE_FAIL") or "").strip() == "1"
        if outage:
            return MessageResult(ok=False, code="SMS_PROVIDER_DOWN", message="mock forced failure")
        message_id = f"mock-{uuid.uuid4().hex[:12]}"
        logger.info("mock_sms_sent to=%s reference=%s message_id=%s", to, reference, message_id)
        return MessageResult(ok=True, code="OK", message="mock_sent", message_id=message_id)
