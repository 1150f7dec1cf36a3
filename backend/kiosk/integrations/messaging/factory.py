from __future__ import annotations

import os

from kiosk.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from kiosk.integrations.messaging.arkesel_provider import ArkeselMessagingProvider, arkesel_health
from kiosk.integrations.messaging.base import MessagingProvider
from kiosk.integrations.messaging.mock_provider import MockMessagingProvider
from kiosk.utils.settings import integrations_mode


def build_messaging_provider() -> MessagingProvider:
    mode = integrations_mode()
    if mode == "disabled":
        raise IntegrationDisabledError("INTEGRATION_DISABLED:sms")
    if mode == "sandbox":
        return MockMessagingProvider()

    missing = arkesel_health().get("missing", [])
    if missing:
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:missing {', '.join(missing)}")
    return ArkeselMessagingProvider(
        api_key=(os.getenv("ARKESEL_API_KEY") or "").strip(),
        sender_id=(os.getenv("ARKESEL_SENDER_ID") or "").strip(),
    )
