from __future__ import annotations

import hashlib
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError

from kiosk.extensions import db
from kiosk.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from kiosk.integrations.payments.factory import build_payments_provider
from kiosk.models import Order, WebhookEvent
from kiosk.services.order_service import Actor, OrderStatus, can_transition, transition_order
from kiosk.services.payout_service import apply_transfer_event, notify_payout_outcome
from kiosk.utils.audit import record_audit
from kiosk.utils.commission import money_major_to_minor
from kiosk.utils.notify import notify_user
from kiosk.utils.observability import get_request_id

# One minor unit (0.01) of slack between provider and order totals.
AMOUNT_TOLERANCE_MINOR = 1

_TRANSFER_EVENTS = {
    "transfer.success": "success",
    "transfer.failed": "failed",
    "transfer.reversed": "reversed",
}


def _event_id(payload: dict, event: str, reference: str, data: dict) -> str:
    maybe_id = payload.get("id") or data.get("id") or ""
    if maybe_id and event.startswith("charge."):
        return f"{event}:{maybe_id}"[:128]
    base = f"{event}:{reference}:{data.get('amount', '')}:{data.get('status', '')}"
    return hashlib.sha256(base.encode("utf-8")).hexdigest()[:32]


def _mark_order_paid(order: Order, data: dict, reference: str) -> dict:
    if (order.payment_status or "") == "paid":
        return {"already_paid": True}
    try:
        paid_minor = int(data.get("amount") or 0)
    except (TypeError, ValueError):
        paid_minor = 0
    expected_minor = money_major_to_minor(order.total)
    if abs(paid_minor - expected_minor) > AMOUNT_TOLERANCE_MINOR:
        current_app.logger.warning(
            "order_payment_amount_mismatch order_id=%s expected=%s got=%s", order.id, expected_minor, paid_minor
        )
        return {"ok": False, "error": "AMOUNT_MISMATCH"}

    order.payment_status = "paid"
    order.paid_at = datetime.utcnow()
    order.updated_at = order.paid_at
    if can_transition(order, OrderStatus.CONFIRMED, Actor.SYSTEM):
        transition_order(order, OrderStatus.CONFIRMED, actor=Actor.SYSTEM, note=f"payment:{reference}"[:240])
    record_audit(
        "order.paid",
        target_type="order",
        target_id=order.id,
        metadata={"reference": reference, "amount_minor": paid_minor},
    )
    db.session.commit()

    notify_user(
        int(order.buyer_id),
        kind="order_paid",
        title="Payment Received",
        message=f"Payment for order #{order.id} was received.",
        meta={"order_id": order.id},
    )
    for vendor_id in order.vendor_ids():
        notify_user(
            vendor_id,
            kind="order_received",
            title="New Paid Order",
            message=f"Order #{order.id} has been paid and is ready to prepare.",
            meta={"order_id": order.id},
        )
    return {"purpose": "order"}


def process_paystack_webhook(*, payload, raw: bytes, signature: str | None) -> tuple[dict, int]:
    """Verify, de-duplicate and apply one provider event. Returns (body, status)."""
    try:
        provider = build_payments_provider()
    except (IntegrationDisabledError, IntegrationMisconfiguredError) as e:
        return {"ok": False, "error": "INTEGRATION_UNAVAILABLE", "message": str(e)}, 503
    if not provider.verify_webhook_signature(raw or b"", signature):
        current_app.logger.warning("paystack_webhook_bad_signature rid=%s", get_request_id())
        return {"ok": False, "error": "INVALID_SIGNATURE", "message": "signature mismatch"}, 401

    if not isinstance(payload, dict):
        return {"ok": False, "error": "INVALID_PAYLOAD", "message": "payload must be an object"}, 400
    event = payload.get("event")
    data = payload.get("data") if payload.get("data") is not None else {}
    if not isinstance(event, str) or not event.strip():
        return {"ok": False, "error": "INVALID_PAYLOAD", "message": "event is required"}, 400
    if not isinstance(data, dict):
        return {"ok": False, "error": "INVALID_PAYLOAD", "message": "data must be an object"}, 400
    event = event.strip()
    reference = str(data.get("reference") or "").strip()

    event_id = _event_id(payload, event, reference, data)
    if WebhookEvent.query.filter_by(event_id=event_id).first() is not None:
        return {"ok": True, "replayed": True}, 200
    row = WebhookEvent(
        provider="paystack",
        event_id=event_id,
        event_type=event[:64],
        reference=reference[:128] or None,
        request_id=get_request_id()[:64] or None,
    )
    try:
        db.session.add(row)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return {"ok": True, "replayed": True}, 200

    body = {"ok": True, "event": event}
    if event in _TRANSFER_EVENTS:
        reason = str(data.get("reason") or data.get("failures") or "").strip() or None
        if event != "transfer.success" and not reason:
            reason = f"Provider reported {_TRANSFER_EVENTS[event]}"
        payout = apply_transfer_event(reference, _TRANSFER_EVENTS[event], reason=reason)
        if payout is not None:
            record_audit(
                "payout.webhook_status",
                target_type="payout",
                target_id=payout.reference,
                metadata={"payout_id": payout.id, "event": event, "status": payout.status},
            )
        body["applied"] = payout is not None
    elif event == "charge.success":
        order = Order.query.filter_by(payment_reference=reference).first() if reference else None
        if order is None:
            body["ignored"] = True
        else:
            body.update(_mark_order_paid(order, data, reference))
            if body.get("error"):
                body["ok"] = False
    else:
        body["ignored"] = True

    row.status = "failed" if body.get("error") else "processed"
    row.error = body.get("error")
    row.processed_at = datetime.utcnow()
    db.session.commit()
    if event in _TRANSFER_EVENTS and body.get("applied"):
        notify_payout_outcome(payout)
    return body, 200
