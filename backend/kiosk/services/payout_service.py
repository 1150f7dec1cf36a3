from __future__ import annotations

import math
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from kiosk.extensions import db
from kiosk.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError, ProviderError
from kiosk.integrations.payments.factory import build_payments_provider
from kiosk.models import Order, OrderItem, PayoutAttempt, User, VendorBankAccount, VendorPayout
from kiosk.services.bank_account_service import ensure_recipient
from kiosk.services.order_service import OrderStatus
from kiosk.utils.audit import record_audit
from kiosk.utils.auth import Role
from kiosk.utils.commission import money_major_to_minor, money_minor_to_major
from kiosk.utils.errors import (
    BusinessRuleError,
    ConflictError,
    DatabaseError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from kiosk.utils.notify import notify_user
from kiosk.utils.settings import currency, dispute_window_hours, payout_min_amount


class PayoutStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REVERSED = "reversed"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, value) -> "PayoutStatus | None":
        if isinstance(value, cls):
            return value
        raw = str(value or "").strip().lower()
        # Provider wording for a finished transfer.
        if raw == "success":
            return cls.COMPLETED
        for member in cls:
            if member.value == raw:
                return member
        return None


PAYOUT_TRANSITIONS = {
    PayoutStatus.PENDING: {PayoutStatus.PROCESSING, PayoutStatus.FAILED, PayoutStatus.CANCELLED, PayoutStatus.COMPLETED},
    PayoutStatus.PROCESSING: {PayoutStatus.COMPLETED, PayoutStatus.FAILED, PayoutStatus.REVERSED, PayoutStatus.CANCELLED},
    PayoutStatus.FAILED: {PayoutStatus.PROCESSING},
    PayoutStatus.COMPLETED: {PayoutStatus.REVERSED},
    PayoutStatus.REVERSED: set(),
    PayoutStatus.CANCELLED: set(),
}

IN_FLIGHT = {PayoutStatus.PENDING, PayoutStatus.PROCESSING}
CANCELLABLE = IN_FLIGHT

# Provider transfer states that still wait on the provider.
_PROVIDER_WAITING = {"pending", "otp", "queued", "processing", "received"}


def provider_status(raw: str) -> PayoutStatus:
    value = (raw or "").strip().lower()
    if value in _PROVIDER_WAITING:
        return PayoutStatus.PROCESSING
    return PayoutStatus.parse(value) or PayoutStatus.PROCESSING


@dataclass
class VendorBalance:
    total_earnings_minor: int
    pending_earnings_minor: int
    withdrawn_minor: int
    pending_withdrawal_minor: int

    @property
    def available_minor(self) -> int:
        return max(
            0,
            self.total_earnings_minor
            - self.pending_earnings_minor
            - self.withdrawn_minor
            - self.pending_withdrawal_minor,
        )

    def to_dict(self) -> dict:
        return {
            "total_earnings": money_minor_to_major(self.total_earnings_minor),
            "pending_earnings": money_minor_to_major(self.pending_earnings_minor),
            "available_balance": money_minor_to_major(self.available_minor),
            "total_withdrawn": money_minor_to_major(self.withdrawn_minor),
            "pending_withdrawal": money_minor_to_major(self.pending_withdrawal_minor),
            "currency": currency(),
        }


def _earning_is_pending(order: Order, cutoff: datetime) -> bool:
    status = OrderStatus.parse(order.status)
    if status is OrderStatus.COMPLETED:
        return False
    if status is OrderStatus.DELIVERED:
        return order.delivered_at is None or order.delivered_at > cutoff
    return True


def vendor_balance(vendor_id: int, *, now: datetime | None = None) -> VendorBalance:
    cutoff = (now or datetime.utcnow()) - timedelta(hours=dispute_window_hours())
    rows = (
        db.session.query(OrderItem, Order)
        .join(Order, OrderItem.order_id == Order.id)
        .filter(OrderItem.vendor_id == int(vendor_id))
        .filter(Order.payment_status == "paid")
        .all()
    )
    total = 0
    pending = 0
    for item, order in rows:
        earned = money_major_to_minor(item.vendor_earnings)
        total += earned
        if _earning_is_pending(order, cutoff):
            pending += earned

    withdrawn = 0
    in_flight = 0
    for payout in VendorPayout.query.filter_by(vendor_id=int(vendor_id)).all():
        status = PayoutStatus.parse(payout.status)
        if status is PayoutStatus.COMPLETED:
            withdrawn += money_major_to_minor(payout.amount)
        elif status in IN_FLIGHT:
            in_flight += money_major_to_minor(payout.amount)
    return VendorBalance(
        total_earnings_minor=total,
        pending_earnings_minor=pending,
        withdrawn_minor=withdrawn,
        pending_withdrawal_minor=in_flight,
    )


def new_payout_reference(prefix: str = "PO") -> str:
    """Mint a reference no payout attempt has used yet."""
    while True:
        candidate = f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(3)}"
        if PayoutAttempt.query.filter_by(reference=candidate).first() is None:
            return candidate


def _move(payout: VendorPayout, target: PayoutStatus, *, reason: str | None = None) -> None:
    current = PayoutStatus.parse(payout.status)
    if current is None or target not in PAYOUT_TRANSITIONS.get(current, set()):
        raise ConflictError(
            f"Cannot move payout from '{payout.status}' to '{target.value}'",
            code="INVALID_TRANSITION",
        )
    now = datetime.utcnow()
    payout.status = target.value
    payout.updated_at = now
    if target is PayoutStatus.PROCESSING:
        payout.processed_at = now
        payout.failure_reason = None
    elif target is PayoutStatus.COMPLETED:
        payout.completed_at = now
    elif target is PayoutStatus.CANCELLED:
        payout.cancelled_at = now
    if reason is not None:
        payout.failure_reason = reason[:2000]
    attempt = current_attempt(payout)
    if attempt is not None:
        attempt.status = target.value
        attempt.updated_at = now
        if reason is not None and target in (PayoutStatus.FAILED, PayoutStatus.REVERSED, PayoutStatus.CANCELLED):
            attempt.failure_reason = reason[:2000]


def current_attempt(payout: VendorPayout) -> PayoutAttempt | None:
    return PayoutAttempt.query.filter_by(payout_id=int(payout.id), reference=payout.reference).first()


def _commit(event: str, **fields) -> None:
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("%s %s", event, " ".join(f"{k}={v}" for k, v in fields.items()))
        raise DatabaseError("Failed to save payout")


def _parse_amount(raw) -> float:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)) or not math.isfinite(raw) or raw <= 0:
        raise ValidationError("Invalid amount")
    return float(raw)


def notify_payout_outcome(payout: VendorPayout) -> None:
    status = PayoutStatus.parse(payout.status)
    amount = f"{payout.currency or currency()} {float(payout.amount or 0.0):.2f}"
    if status is PayoutStatus.COMPLETED:
        notify_user(
            int(payout.vendor_id),
            kind="payout_completed",
            title="Payout Completed",
            message=f"Your payout of {amount} has been sent.",
            sms=True,
            meta={"payout_id": payout.id, "reference": payout.reference},
        )
    elif status in (PayoutStatus.FAILED, PayoutStatus.REVERSED):
        notify_user(
            int(payout.vendor_id),
            kind=f"payout_{status.value}",
            title="Payout Failed" if status is PayoutStatus.FAILED else "Payout Reversed",
            message=f"Your payout of {amount} did not go through. {payout.failure_reason or ''}".strip(),
            meta={"payout_id": payout.id, "reference": payout.reference},
        )


def _dispatch_transfer(payout: VendorPayout, account: VendorBankAccount, *, reason: str) -> tuple[bool, str]:
    """Send the current attempt to the provider and record the outcome. Caller commits."""
    try:
        recipient_code = ensure_recipient(account)
        provider = build_payments_provider()
        result = provider.initiate_transfer(
            amount_minor=money_major_to_minor(payout.amount),
            recipient_code=recipient_code,
            reference=payout.reference,
            reason=reason,
            currency=payout.currency or currency(),
        )
    except (ProviderError, IntegrationDisabledError, IntegrationMisconfiguredError) as e:
        detail = getattr(e, "detail", "") or str(e)
        current_app.logger.warning(
            "payout_transfer_failed payout_id=%s reference=%s reason=%s", payout.id, payout.reference, detail
        )
        _move(payout, PayoutStatus.FAILED, reason=detail or "Transfer initiation failed")
        return False, detail or "Transfer initiation failed"

    payout.transfer_code = (result.transfer_code or "")[:80] or None
    attempt = current_attempt(payout)
    if attempt is not None:
        attempt.transfer_code = payout.transfer_code
    target = provider_status(result.status)
    if PayoutStatus.parse(payout.status) is not target:
        _move(payout, target, reason=None if target is not PayoutStatus.FAILED else "Transfer rejected by provider")
    return target is not PayoutStatus.FAILED, ""


def request_withdrawal(vendor: User, payload: dict) -> VendorPayout:
    amount = _parse_amount(payload.get("amount"))
    minimum = payout_min_amount()
    if amount < minimum:
        raise ValidationError(f"Minimum withdrawal is {currency()} {minimum:.2f}", code="BELOW_MINIMUM")
    if not (vendor.phone_verified and vendor.phone):
        raise ForbiddenError("Phone verification required", code="PHONE_NOT_VERIFIED")
    try:
        account_id = int(payload.get("bank_account_id") or payload.get("bankAccountId"))
    except (TypeError, ValueError):
        raise ValidationError("bank_account_id is required")

    account = db.session.get(VendorBankAccount, account_id)
    if account is None or int(account.vendor_id) != int(vendor.id) or not account.is_active:
        raise ValidationError("Invalid bank account", code="INVALID_BANK_ACCOUNT")

    # Balance check and pending insert share one transaction under the vendor row lock.
    User.query.filter_by(id=int(vendor.id)).with_for_update().one()
    balance = vendor_balance(vendor.id)
    if money_major_to_minor(amount) > balance.available_minor:
        db.session.rollback()
        raise BusinessRuleError(
            f"Insufficient balance. Available: {currency()} {money_minor_to_major(balance.available_minor):.2f}",
            code="INSUFFICIENT_BALANCE",
            available=money_minor_to_major(balance.available_minor),
        )
    now = datetime.utcnow()
    payout = VendorPayout(
        vendor_id=int(vendor.id),
        bank_account_id=int(account.id),
        reference=new_payout_reference(),
        amount=money_minor_to_major(money_major_to_minor(amount)),
        currency=currency(),
        status=PayoutStatus.PENDING.value,
        initiated_by=Role.VENDOR.value,
        initiated_by_id=int(vendor.id),
        created_at=now,
        updated_at=now,
    )
    db.session.add(payout)
    db.session.flush()
    db.session.add(PayoutAttempt(payout_id=int(payout.id), reference=payout.reference, status=PayoutStatus.PENDING.value))
    record_audit(
        "payout.requested",
        actor_user_id=int(vendor.id),
        actor_role=Role.VENDOR.value,
        target_type="payout",
        target_id=payout.id,
        metadata={"reference": payout.reference, "amount": payout.amount, "bank_account_id": account.id},
    )
    _commit("payout_request_failed", vendor_id=vendor.id)

    ok, detail = _dispatch_transfer(payout, account, reason="KIOSK vendor payout")
    _commit("payout_transfer_save_failed", payout_id=payout.id)
    if not ok:
        notify_payout_outcome(payout)
        raise BusinessRuleError(
            f"Failed to initiate transfer: {detail}",
            code="TRANSFER_FAILED",
            payout=payout.to_dict(),
        )
    if PayoutStatus.parse(payout.status) is PayoutStatus.COMPLETED:
        notify_payout_outcome(payout)
    return payout


def vendor_payouts(vendor_id: int, *, limit: int = 50) -> list[VendorPayout]:
    return (
        VendorPayout.query.filter_by(vendor_id=int(vendor_id))
        .order_by(VendorPayout.created_at.desc())
        .limit(max(1, min(200, int(limit))))
        .all()
    )


def get_payout(payout_id: int) -> VendorPayout:
    payout = db.session.get(VendorPayout, int(payout_id))
    if payout is None:
        raise NotFoundError("Payout not found")
    return payout


def list_payouts(*, status: str | None = None, vendor_id: int | None = None, limit: int = 50, offset: int = 0) -> tuple[list[VendorPayout], int]:
    q = VendorPayout.query
    if status:
        parsed = PayoutStatus.parse(status)
        if parsed is None:
            raise ValidationError("Invalid status filter")
        q = q.filter_by(status=parsed.value)
    if vendor_id is not None:
        q = q.filter_by(vendor_id=int(vendor_id))
    total = q.count()
    rows = q.order_by(VendorPayout.created_at.desc()).offset(max(0, int(offset))).limit(max(1, min(200, int(limit)))).all()
    return rows, total


def payout_stats() -> dict:
    sums = {s: 0 for s in PayoutStatus}
    counts = {s: 0 for s in PayoutStatus}
    for payout in VendorPayout.query.all():
        status = PayoutStatus.parse(payout.status)
        if status is None:
            continue
        sums[status] += money_major_to_minor(payout.amount)
        counts[status] += 1
    return {
        "totalPaidOut": money_minor_to_major(sums[PayoutStatus.COMPLETED]),
        "totalPending": money_minor_to_major(sums[PayoutStatus.PENDING] + sums[PayoutStatus.PROCESSING]),
        "totalFailed": money_minor_to_major(sums[PayoutStatus.FAILED]),
        "countSuccess": counts[PayoutStatus.COMPLETED],
        "countPending": counts[PayoutStatus.PENDING] + counts[PayoutStatus.PROCESSING],
        "countFailed": counts[PayoutStatus.FAILED],
        "countCancelled": counts[PayoutStatus.CANCELLED],
        "countReversed": counts[PayoutStatus.REVERSED],
    }


def cancel_payout(payout: VendorPayout, admin: User) -> VendorPayout:
    if PayoutStatus.parse(payout.status) not in CANCELLABLE:
        raise BusinessRuleError("Cannot cancel this payout", code="INVALID_STATUS")
    _move(payout, PayoutStatus.CANCELLED, reason="Cancelled by admin")
    record_audit(
        "payout.cancelled",
        actor_user_id=int(admin.id),
        actor_role=Role.ADMIN.value,
        target_type="payout",
        target_id=payout.reference,
        metadata={"payout_id": payout.id, "vendor_id": payout.vendor_id, "amount": payout.amount},
    )
    _commit("payout_cancel_failed", payout_id=payout.id)
    return payout


def retry_payout(payout: VendorPayout, admin: User) -> VendorPayout:
    """Re-send a failed payout under a brand new reference."""
    if PayoutStatus.parse(payout.status) is not PayoutStatus.FAILED:
        raise BusinessRuleError("Can only retry failed payouts", code="INVALID_STATUS")
    account = db.session.get(VendorBankAccount, int(payout.bank_account_id))
    if account is None or not account.is_active:
        raise BusinessRuleError("Bank account not properly configured", code="INVALID_BANK_ACCOUNT")

    # A failed payout no longer holds balance, so re-check under the vendor lock.
    User.query.filter_by(id=int(payout.vendor_id)).with_for_update().one()
    balance = vendor_balance(payout.vendor_id)
    if money_major_to_minor(payout.amount) > balance.available_minor:
        db.session.rollback()
        raise BusinessRuleError(
            f"Insufficient balance. Available: {currency()} {money_minor_to_major(balance.available_minor):.2f}",
            code="INSUFFICIENT_BALANCE",
        )

    old_reference = payout.reference
    new_reference = new_payout_reference("PO-RETRY")
    payout.reference = new_reference
    payout.transfer_code = None
    payout.retry_count = int(payout.retry_count or 0) + 1
    db.session.add(PayoutAttempt(payout_id=int(payout.id), reference=new_reference, status=PayoutStatus.PENDING.value))
    db.session.flush()
    _move(payout, PayoutStatus.PROCESSING)
    record_audit(
        "payout.retry",
        actor_user_id=int(admin.id),
        actor_role=Role.ADMIN.value,
        target_type="payout",
        target_id=new_reference,
        metadata={
            "payout_id": payout.id,
            "old_reference": old_reference,
            "new_reference": new_reference,
            "vendor_id": payout.vendor_id,
            "amount": payout.amount,
        },
    )
    _commit("payout_retry_failed", payout_id=payout.id)

    ok, detail = _dispatch_transfer(payout, account, reason="KIOSK vendor payout (retry)")
    _commit("payout_retry_save_failed", payout_id=payout.id)
    if not ok:
        raise BusinessRuleError(f"Transfer failed: {detail}", code="TRANSFER_FAILED", reference=new_reference)
    return payout


def apply_provider_status(payout: VendorPayout, raw_status: str, *, reason: str | None = None) -> bool:
    """Reconcile a provider-reported transfer state. Returns True when the payout moved."""
    target = provider_status(raw_status)
    current = PayoutStatus.parse(payout.status)
    if current is target:
        return False
    if current is None or target not in PAYOUT_TRANSITIONS.get(current, set()):
        current_app.logger.info(
            "payout_status_ignored payout_id=%s from=%s to=%s", payout.id, payout.status, target.value
        )
        return False
    _move(payout, target, reason=reason)
    return True


def sync_payout(payout: VendorPayout, admin: User) -> dict:
    if PayoutStatus.parse(payout.status) not in IN_FLIGHT:
        raise BusinessRuleError("Only pending or processing payouts can be synced", code="INVALID_STATUS")
    try:
        result = build_payments_provider().verify_transfer(payout.reference)
    except (ProviderError, IntegrationDisabledError, IntegrationMisconfiguredError) as e:
        current_app.logger.warning("payout_sync_failed payout_id=%s err=%s", payout.id, e)
        raise BusinessRuleError("Failed to sync status with payment provider", code="SYNC_FAILED")
    previous = payout.status
    changed = apply_provider_status(payout, result.status, reason=f"Provider status: {result.status}")
    if changed:
        record_audit(
            "payout.synced",
            actor_user_id=int(admin.id),
            actor_role=Role.ADMIN.value,
            target_type="payout",
            target_id=payout.reference,
            metadata={"payout_id": payout.id, "from": previous, "to": payout.status},
        )
    _commit("payout_sync_save_failed", payout_id=payout.id)
    if changed:
        notify_payout_outcome(payout)
    return {"changed": changed, "status": payout.status, "providerStatus": result.status}


def apply_transfer_event(reference: str, raw_status: str, *, reason: str | None = None) -> VendorPayout | None:
    """Webhook entry point. Only the payout's current attempt reference moves it."""
    attempt = PayoutAttempt.query.filter_by(reference=(reference or "").strip()).first()
    if attempt is None:
        return None
    status = provider_status(raw_status)
    if attempt.status != status.value and status is not PayoutStatus.PROCESSING:
        attempt.status = status.value
        attempt.updated_at = datetime.utcnow()
        if reason:
            attempt.failure_reason = reason[:2000]
    payout = db.session.get(VendorPayout, int(attempt.payout_id))
    if payout is None or payout.reference != attempt.reference:
        current_app.logger.info("payout_stale_attempt_event reference=%s status=%s", reference, raw_status)
        return None
    if not apply_provider_status(payout, raw_status, reason=reason):
        return None
    return payout
