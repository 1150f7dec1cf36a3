from __future__ import annotations

import hashlib
import hmac
import os
import secrets

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

_MOCK_BANKS = [
    BankInfo(name="GCB Bank", code="GCB", type="ghipss"),
    BankInfo(name="Ecobank Ghana", code="ECO", type="ghipss"),
    BankInfo(name="Fidelity Bank", code="FBL", type="ghipss"),
]

_MOCK_MOBILE_MONEY = [
    BankInfo(name="MTN Mobile Money", code="MTN", type="mobile_money"),
    BankInfo(name="Telecel Cash", code="VOD", type="mobile_money"),
    BankInfo(name="AirtelTigo Money", code="ATL", type="mobile_money"),
]


class MockPaymentsProvider(PaymentsProvider):
    """Deterministic provider for sandbox runs and tests.

    ``MOCK_PAYMENTS_FORCE_FAIL=1`` makes every transfer call fail.
    """

    name = "mock"

    def _force_failure(self) -> bool:
        return (os.getenv("MOCK_PAYMENTS_FORCE_FAIL") or "").strip() == "1"

    def initialize(self, *, order_id: int | None, amount: float, email: str, reference: str, metadata: dict | None = None) -> PaymentInitializeResult:
        url = f"https://example.com/mock/pay?reference={reference}&order_id={order_id}"
        return PaymentInitializeResult(
            authorization_url=url,
            reference=reference,
            provider=self.name,
            raw={"order_id": order_id, "amount": amount, "email": email, "metadata": metadata or {}},
        )

    def verify(self, reference: str) -> PaymentVerifyResult:
        return PaymentVerifyResult(
            status="success",
            amount=0.0,
            currency="GHS",
            customer="mock",
            raw={"reference": reference, "provider": self.name},
        )

    def list_banks(self, *, kind: str = "bank", currency: str = "GHS") -> list[BankInfo]:
        return list(_MOCK_MOBILE_MONEY if kind == "mobile_money" else _MOCK_BANKS)

    def create_transfer_recipient(
        self,
        *,
        kind: str,
        name: str,
        account_number: str,
        bank_code: str,
        currency: str = "GHS",
    ) -> TransferRecipientResult:
        if self._force_failure():
            raise ProviderError("MOCK_RECIPIENT_FAILED", "forced failure")
        return TransferRecipientResult(recipient_code=f"RCP_mock_{secrets.token_hex(6)}", account_name=name)

    def initiate_transfer(self, *, amount_minor: int, recipient_code: str, reference: str, reason: str = "", currency: str = "GHS") -> TransferResult:
        if self._force_failure():
            raise ProviderError("MOCK_TRANSFER_FAILED", "forced failure")
        return TransferResult(
            reference=reference,
            transfer_code=f"TRF_mock_{secrets.token_hex(6)}",
            status="pending",
            raw={"amount": int(amount_minor), "recipient": recipient_code},
        )

    def verify_transfer(self, reference: str) -> TransferResult:
        status = (os.getenv("MOCK_TRANSFER_STATUS") or "success").strip().lower()
        return TransferResult(reference=reference, transfer_code="", status=status)

    def refund(self, *, transaction_reference: str, amount_minor: int, currency: str = "GHS", customer_note: str = "", merchant_note: str = "") -> RefundResult:
        if self._force_failure():
            raise ProviderError("MOCK_REFUND_FAILED", "forced failure")
        return RefundResult(status="processed", refund_reference=f"RFD_mock_{secrets.token_hex(6)}", amount_minor=int(amount_minor))

    def verify_webhook_signature(self, raw: bytes, signature: str | None) -> bool:
        secret = (os.getenv("PAYSTACK_SECRET_KEY") or "").strip()
        if not secret:
            return True
        if not signature:
            return False
        expected = hmac.new(secret.encode("utf-8"), raw or b"", hashlib.sha512).hexdigest()
        return hmac.compare_digest(expected, signature.strip())
