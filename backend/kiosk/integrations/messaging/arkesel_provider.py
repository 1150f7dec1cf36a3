from __future__ import annotations

import os
import re

import requests

from kiosk.integrations.messaging.base import MessagingProvider, MessageResult


ARKESEL_BASE = "https://sms.arkesel.com/api/v2"


def format_phone(phone: str, *, country_code: str = "233") -> str:
    digits = re.sub(r"\D", "", phone or "")
    if digits.startswith("0") and len(digits) == 10:
        return f"{country_code}{digits[1:]}"
    return digits


def _map_arkesel_error(status: int, message: str) -> str:
    msg = (message or "").lower()
    if status in (401, 403):
        return "SMS_AUTH_FAILED"
    if status == 429:
        return "SMS_RATE_LIMITED"
    if status in (400, 422):
        if "sender" in msg:
            return "SMS_INVALID_SENDER"
        if "balance" in msg:
            return "SMS_INSUFFICIENT_BALANCE"
        return "SMS_INVALID_RECIPIENT"
    return "SMS_PROVIDER_DOWN"


class ArkeselMessagingProvider(MessagingProvider):
    name = "arkesel"

    def __init__(self, *, api_key: str, sender_id: str):
        self.api_key = api_key
        self.sender_id = sender_id

    def send_sms(self, *, to: str, message: str, reference: str = "") -> MessageResult:
        payload = {
            "sender": self.sender_id,
            "message": message,
            "recipients": [format_phone(to)],
        }
        headers = {"api-key": self.api_key, "Content-Type": "application/json"}
        try:
            r = requests.post(f"{ARKESEL_BASE}/sms/send", json=payload, headers=headers, timeout=12)
            data = r.json() if r.content else {}
        except requests.Timeout:
            return MessageResult(ok=False, code="SMS_PROVIDER_DOWN", message="timeout")
        except (requests.RequestException, ValueError) as e:
            return MessageResult(ok=False, code="SMS_PROVIDER_DOWN", message=str(e)[:200])
        raw = data if isinstance(data, dict) else {"payload": data}
        if 200 <= r.status_code < 300 and str(raw.get("status") or "success").lower() == "success":
            sent = raw.get("data") or []
            first = sent[0] if isinstance(sent, list) and sent else {}
            message_id = str(first.get("id") or "") if isinstance(first, dict) else ""
            return MessageResult(ok=True, code="OK", message="sent", message_id=message_id, raw=raw)
        detail = str(raw.get("message") or raw.get("error") or "")
        return MessageResult(
            ok=False,
            code=_map_arkesel_error(r.status_code, detail),
            message=(detail or f"http_{r.status_code}")[:200],
            raw=raw,
        )


def arkesel_health() -> dict:
    missing = []
    if not (os.getenv("ARKESEL_API_KEY") or "").strip():
        missing.append("ARKESEL_API_KEY")
    if not (os.getenv("ARKESEL_SENDER_ID") or "").strip():
        missing.append("ARKESEL_SENDER_ID")
    return {"missing": missing}
