from __future__ import annotations

from kiosk.integrations.messaging.base import MessageResult


class EmailProvider:
    name = "unknown"

    def send_email(self, *, to: str, subject: str, body: str) -> MessageResult:
        raise NotImplementedError
