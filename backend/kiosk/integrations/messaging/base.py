from __future__ import annotations

from dataclasses import dataclass

# Failures that a later attempt cannot fix: the outbox stops retrying these.
PERMANENT_CODES = frozenset(
    {
        "NO_PHONE",
        "UNKNOWN_CHANNEL",
        "SMS_AUTH_FAILED",
        "SMS_INVALID_SENDER",
        "SMS_INVALID_RECIPIENT",
    }
)


@dataclass
class MessageResult:
    ok: bool
    code: str = ""
    message: str = ""
    message_id: str = ""
    raw: dict | None = None

    @property
    def permanent_failure(self) -> bool:
        return not self.ok and self.code in PERMANENT_CODES


class MessagingProvider:
    """SMS gateway used for OTP codes and the sms notification channel."""

    name = "unknown"

    def send_sms(self, *, to: str, message: str, reference: str = "") -> MessageResult:
        raise NotImplementedError
