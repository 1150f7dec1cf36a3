from __future__ import annotations

import hashlib
import hmac
import os

import requests

from kiosk.integrations.common import ProviderError
from kiosk.integrations.payments.base import (
    BankInfo,
    PaymentInitializeResult,
    PaymentsProvider,
    PaymentVerifyResult,
    RefundResult,
    TransferRecipientResult,
    TransferResult,
)

PAYSTACK_BASE = "https://api.paystack.co"


class PaystackPaymentsProvider(PaymentsProvider):
    name = "paystack"

    def __init__(self, secret_key: str, *, country: str = "ghana"):
        self.secret_key = secret_key
        self.country = country

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    def _call(self, method: str, path: str, *, code: str, payload: dict | None = None, params: dict | None = None, timeout: int = 25) -> dict:
        try:
            r = requests.request(
                method,
                f"{PAYSTACK_BASE}{path}",
                headers=self._headers(),
                json=payload,
                params=params,
                timeout=timeout,
            )
        except requests.Timeout:
            raise ProviderError(code, "timeout")
        except requests.RequestException as e:
            raise ProviderError(code, str(e)[:200])
        try:
            j = r.json() if r.content else {}
        except ValueError:
            j = {}
        if r.status_code < 200 or r.status_code >= 300 or j.get("status") is not True:
            msg = (j.get("message") or f"HTTP {r.status_code}").strip()
            raise ProviderError(code, msg)
        return j if isinstance(j, dict) else {"payload": j}

    def initialize(self, *, order_id: int | None, amount: float, email: str, reference: str, metadata: dict | None = None) -> PaymentInitializeResult:
        payload = {
            "email": email,
            "amount": int(round(float(amount) * 100)),
            "reference": reference,
            "metadata": {**(metadata or {}), "order_id": order_id},
        }
        callback_url = (os.getenv("PAYSTACK_CALLBACK_URL") or "").strip()
        if callback_url:
            payload["callback_url"] = callback_url
        j = self._call("POST", "/transaction/initialize", code="PAYSTACK_INIT_FAILED", payload=payload)
        data = j.get("data") or {}
        return PaymentInitializeResult(
            authorization_url=(data.get("authorization_url") or "").strip(),
            reference=(data.get("reference") or reference).strip(),
            provider=self.name,
            raw=j,
        )

    def verify(self, reference: str) -> PaymentVerifyResult:
        ref = (reference or "").strip()
        j = self._call("GET", f"/transaction/verify/{ref}", code="PAYSTACK_VERIFY_FAILED")
        data = j.get("data") or {}
        try:
            amount = float(data.get("amount") or 0) / 100.0
        except (TypeError, ValueError):
            amount = 0.0
        return PaymentVerifyResult(
            status=(data.get("status") or "").strip().lower(),
            amount=amount,
            currency=(data.get("currency") or "GHS").strip().upper(),
            customer=((data.get("customer") or {}).get("email") or "").strip(),
            raw=j,
        )

    def list_banks(self, *, kind: str = "bank", currency: str = "GHS") -> list[BankInfo]:
        params = {"country": self.country, "currency": currency}
        if kind == "mobile_money":
            params["type"] = "mobile_money"
        j = self._call("GET", "/bank", code="PAYSTACK_LIST_BANKS_FAILED", params=params, timeout=15)
        banks = []
        for row in j.get("data") or []:
            if not isinstance(row, dict):
                continue
            banks.append(
                BankInfo(
                    name=str(row.get("name") or ""),
                    code=str(row.get("code") or ""),
                    type=str(row.get("type") or ""),
                    currency=str(row.get("currency") or currency),
                )
            )
        return banks

    def create_transfer_recipient(
        self,
        *,
        kind: str,
        name: str,
        account_number: str,
        bank_code: str,
        currency: str = "GHS",
    ) -> TransferRecipientResult:
        payload = {
            "type": "mobile_money" if kind == "mobile_money" else "ghipss",
            "name": name,
            "account_number": account_number,
            "bank_code": bank_code,
            "currency": currency,
        }
        j = self._call("POST", "/transferrecipient", code="PAYSTACK_RECIPIENT_FAILED", payload=payload, timeout=30)
        data = j.get("data") or {}
        code = (data.get("recipient_code") or "").strip()
        if not code:
            raise ProviderError("PAYSTACK_RECIPIENT_FAILED", "missing recipient_code")
        return TransferRecipientResult(recipient_code=code, account_name=(data.get("name") or "").strip(), raw=j)

    def initiate_transfer(self, *, amount_minor: int, recipient_code: str, reference: str, reason: str = "", currency: str = "GHS") -> TransferResult:
        payload = {
            "source": "balance",
            "amount": int(amount_minor),
            "recipient": recipient_code,
            "reference": reference,
            "reason": reason or "Vendor payout",
            "currency": currency,
        }
        j = self._call("POST", "/transfer", code="PAYSTACK_TRANSFER_FAILED", payload=payload, timeout=30)
        data = j.get("data") or {}
        return TransferResult(
            reference=(data.get("reference") or reference).strip(),
            transfer_code=(data.get("transfer_code") or "").strip(),
            status=(data.get("status") or "pending").strip().lower(),
            raw=j,
        )

    def verify_transfer(self, reference: str) -> TransferResult:
        ref = (reference or "").strip()
        j = self._call("GET", f"/transfer/verify/{ref}", code="PAYSTACK_TRANSFER_VERIFY_FAILED", timeout=15)
        data = j.get("data") or {}
        return TransferResult(
            reference=(data.get("reference") or ref).strip(),
            transfer_code=(data.get("transfer_code") or "").strip(),
            status=(data.get("status") or "").strip().lower(),
            raw=j,
        )

    def refund(self, *, transaction_reference: str, amount_minor: int, currency: str = "GHS", customer_note: str = "", merchant_note: str = "") -> RefundResult:
        payload = {
            "transaction": transaction_reference,
            "amount": int(amount_minor),
            "currency": currency,
            "customer_note": customer_note,
            "merchant_note": merchant_note,
        }
        j = self._call("POST", "/refund", code="PAYSTACK_REFUND_FAILED", payload=payload, timeout=30)
        data = j.get("data") or {}
        transaction = data.get("transaction") or {}
        return RefundResult(
            status=(data.get("status") or "pending").strip().lower(),
            refund_reference=str(data.get("id") or transaction.get("reference") or ""),
            amount_minor=int(data.get("amount") or amount_minor),
            raw=j,
        )

    def verify_webhook_signature(self, raw: bytes, signature: str | None) -> bool:
        if not signature:
            return False
        expected = hmac.new(self.secret_key.encode("utf-8"), raw or b"", hashlib.sha512).hexdigest()
        return hmac.compare_digest(expected, signature.strip())
