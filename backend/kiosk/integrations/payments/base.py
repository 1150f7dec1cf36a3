from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class PaymentInitializeResult:
    authorization_url: str
    reference: str
    provider: str
    raw: dict | None = None


@dataclass
class PaymentVerifyResult:
    status: str
    amount: float
    currency: str
    customer: str
    raw: dict | None = None


@dataclass
class BankInfo:
    name: str
    code: str
    type: str = "ghipss"
    currency: str = "GHS"


@dataclass
class TransferRecipientResult:
    recipient_code: str
    account_name: str = ""
    raw: dict | None = None


@dataclass
class TransferResult:
    reference: str
    transfer_code: str
    status: str
    raw: dict | None = None


@dataclass
class RefundResult:
    status: str
    refund_reference: str = ""
    amount_minor: int = 0
    raw: dict | None = field(default=None, repr=False)


class PaymentsProvider:
    name = "unknown"

    def initialize(self, *, order_id: int | None, amount: float, email: str, reference: str, metadata: dict | None = None) -> PaymentInitializeResult:
        raise NotImplementedError

    def verify(self, reference: str) -> PaymentVerifyResult:
        raise NotImplementedError

    def list_banks(self, *, kind: str = "bank", currency: str = "GHS") -> list[BankInfo]:
        raise NotImplementedError

    def create_transfer_recipient(
        self,
        *,
        kind: str,
        name: str,
        account_number: str,
        bank_code: str,
        currency: str = "GHS",
    ) -> TransferRecipientResult:
        raise NotImplementedError

    def initiate_transfer(self, *, amount_minor: int, recipient_code: str, reference: str, reason: str = "", currency: str = "GHS") -> TransferResult:
        raise NotImplementedError

    def verify_transfer(self, reference: str) -> TransferResult:
        raise NotImplementedError

    def refund(self, *, transaction_reference: str, amount_minor: int, currency: str = "GHS", customer_note: str = "", merchant_note: str = "") -> RefundResult:
        raise NotImplementedError

    def verify_webhook_signature(self, raw: bytes, signature: str | None) -> bool:
        raise NotImplementedError
