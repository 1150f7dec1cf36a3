from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from kiosk.extensions import db
from kiosk.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError, ProviderError
from kiosk.integrations.payments.factory import build_payments_provider
from kiosk.models import Dispute, Order, User
from kiosk.services.order_service import Actor, OrderStatus, can_transition, transition_order
from kiosk.utils.audit import record_audit
from kiosk.utils.auth import Role
from kiosk.utils.commission import money_major_to_minor
from kiosk.utils.errors import (
    ApiError,
    BusinessRuleError,
    DatabaseError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from kiosk.utils.notify import notify_user
from kiosk.utils.settings import dispute_window_hours

MIN_DESCRIPTION_LENGTH = 20
MIN_MESSAGE_LENGTH = 5
MAX_MESSAGE_LENGTH = 2000


class DisputeType(str, Enum):
    REFUND = "refund"
    QUALITY = "quality"
    DELIVERY = "delivery"
    FRAUD = "fraud"
    OTHER = "other"


class DisputeStatus(str, Enum):
    OPEN = "open"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"
    ESCALATED = "escalated"
    CLOSED = "closed"


class DisputePriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ResolutionType(str, Enum):
    FULL_REFUND = "full_refund"
    PARTIAL_REFUND = "partial_refund"
    REPLACEMENT = "replacement"
    NO_ACTION = "no_action"
    OTHER = "other"


class RefundStatus:
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


REFUND_RESOLUTIONS = {ResolutionType.FULL_REFUND, ResolutionType.PARTIAL_REFUND}
FINAL_STATUSES = {DisputeStatus.RESOLVED, DisputeStatus.CLOSED}
# Statuses that still hold an order back from auto-completion.
ACTIVE_STATUSES = {DisputeStatus.OPEN, DisputeStatus.INVESTIGATING, DisputeStatus.ESCALATED}

# Legacy "fulfilled" already parses to delivered.
_DISPUTABLE_ORDER_STATUSES = {OrderStatus.DELIVERED, OrderStatus.COMPLETED}


def _parse(enum_cls, value):
    raw = str(value or "").strip().lower()
    for member in enum_cls:
        if member.value == raw:
            return member
    return None


def hours_since_delivery(order: Order, *, now: datetime | None = None) -> float:
    reference = order.delivered_at or order.updated_at or order.created_at
    current = now or datetime.utcnow()
    return (current - reference).total_seconds() / 3600.0


def within_dispute_window(order: Order, *, now: datetime | None = None) -> bool:
    return hours_since_delivery(order, now=now) <= float(dispute_window_hours())


def _commit(event: str, **fields) -> None:
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception(
            "%s %s", event, " ".join(f"{k}={v}" for k, v in fields.items())
        )
        raise DatabaseError("Failed to save dispute")


def open_dispute_for_order(order_id: int) -> Dispute | None:
    """Latest dispute on the order that is not closed."""
    return (
        Dispute.query.filter(Dispute.order_id == int(order_id))
        .filter(Dispute.status != DisputeStatus.CLOSED.value)
        .order_by(Dispute.created_at.desc())
        .first()
    )


def get_dispute(dispute_id: int) -> Dispute:
    dispute = db.session.get(Dispute, int(dispute_id))
    if dispute is None:
        raise NotFoundError("Dispute not found")
    return dispute


def create_dispute(buyer: User, payload: dict) -> Dispute:
    try:
        order_id = int(payload.get("orderId") or payload.get("order_id"))
    except (TypeError, ValueError):
        raise ValidationError("Order ID is required")
    dispute_type = _parse(DisputeType, payload.get("type"))
    if dispute_type is None:
        raise ValidationError("Valid dispute type is required")
    description = str(payload.get("description") or "").strip()
    if len(description) < MIN_DESCRIPTION_LENGTH:
        raise ValidationError(f"Please provide a detailed description (at least {MIN_DESCRIPTION_LENGTH} characters)")

    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found")
    if int(order.buyer_id) != int(buyer.id):
        raise ForbiddenError("You can only raise disputes for your own orders")

    if open_dispute_for_order(order.id) is not None:
        raise BusinessRuleError(
            "A dispute already exists for this order. Please check your disputes page.",
            code="DISPUTE_EXISTS",
        )

    status = OrderStatus.parse(order.status)
    if status not in _DISPUTABLE_ORDER_STATUSES:
        raise BusinessRuleError("Disputes can only be raised for delivered orders", code="ORDER_NOT_DELIVERED")

    hours = hours_since_delivery(order)
    window = dispute_window_hours()
    if hours > float(window):
        raise BusinessRuleError(
            f"The dispute window has closed. Disputes must be raised within {window} hours of delivery.",
            code="DISPUTE_WINDOW_CLOSED",
            hoursSinceDelivery=round(hours, 2),
        )

    items = list(order.items or [])
    if not items:
        raise BusinessRuleError("No items found for this order")
    raw_product = payload.get("productId") or payload.get("product_id")
    if len(order.vendor_ids()) > 1 and not raw_product:
        raise ValidationError(
            "This order contains items from multiple vendors. Please select the specific product you have an issue with.",
            code="PRODUCT_REQUIRED",
        )
    target = items[0]
    if raw_product:
        try:
            product_id = int(raw_product)
        except (TypeError, ValueError):
            raise ValidationError("Invalid productId")
        matched = [i for i in items if i.product_id is not None and int(i.product_id) == product_id]
        if not matched:
            raise BusinessRuleError("The specified product is not part of this order")
        target = matched[0]

    amount = payload.get("amount")
    if isinstance(amount, bool) or not isinstance(amount, (int, float)) or amount <= 0:
        amount = target.final_price or order.total

    now = datetime.utcnow()
    dispute = Dispute(
        order_id=int(order.id),
        order_item_id=int(target.id),
        product_id=target.product_id,
        buyer_id=int(buyer.id),
        vendor_id=int(target.vendor_id),
        type=dispute_type.value,
        status=DisputeStatus.OPEN.value,
        priority=(DisputePriority.URGENT if dispute_type is DisputeType.FRAUD else DisputePriority.MEDIUM).value,
        description=description,
        amount=float(amount),
        created_at=now,
        updated_at=now,
    )
    dispute.set_messages([])
    db.session.add(dispute)
    if status is OrderStatus.DELIVERED:
        transition_order(
            order,
            OrderStatus.DISPUTED,
            actor=Actor.BUYER,
            actor_user_id=int(buyer.id),
            dispute_reason=description,
        )
    db.session.flush()
    record_audit(
        "dispute.opened",
        actor_user_id=int(buyer.id),
        actor_role=Role.BUYER.value,
        target_type="dispute",
        target_id=dispute.id,
        metadata={"order_id": order.id, "type": dispute_type.value, "vendor_id": dispute.vendor_id},
    )
    _commit("dispute_create_failed", order_id=order.id, buyer_id=buyer.id)

    notify_user(
        int(dispute.vendor_id),
        kind="dispute_opened",
        title="New Dispute Raised",
        message=f"A buyer has raised a {dispute_type.value} dispute for order #{order.id}. Please review and respond.",
        meta={"dispute_id": dispute.id, "order_id": order.id, "type": dispute_type.value},
    )
    return dispute


def _append_message(dispute: Dispute, *, sender: User | None, sender_role: Role, message: str) -> dict:
    if sender_role is Role.ADMIN:
        sender_name = "Admin"
    elif sender is not None:
        sender_name = sender.display_name()
    else:
        sender_name = sender_role.value.capitalize()
    entry = {
        "id": uuid.uuid4().hex,
        "senderId": int(sender.id) if sender is not None else None,
        "senderName": sender_name,
        "senderRole": sender_role.value,
        "message": message,
        "timestamp": datetime.utcnow().isoformat(),
    }
    thread = dispute.messages()
    thread.append(entry)
    dispute.set_messages(thread)
    dispute.updated_at = datetime.utcnow()
    return entry


def _validate_party_message(raw) -> str:
    if not isinstance(raw, str) or len(raw.strip()) < MIN_MESSAGE_LENGTH:
        raise ValidationError(f"Message must be at least {MIN_MESSAGE_LENGTH} characters")
    if len(raw) > MAX_MESSAGE_LENGTH:
        raise ValidationError(f"Message cannot exceed {MAX_MESSAGE_LENGTH} characters")
    return raw.strip()


def add_party_message(dispute: Dispute, sender: User, role: Role, raw_message) -> Dispute:
    """Buyer or vendor reply; the other party is notified."""
    if role is Role.BUYER and int(dispute.buyer_id) != int(sender.id):
        raise ForbiddenError("Not authorized to message on this dispute")
    if role is Role.VENDOR and int(dispute.vendor_id or 0) != int(sender.id):
        raise ForbiddenError("Not authorized to message on this dispute")
    if _parse(DisputeStatus, dispute.status) in FINAL_STATUSES:
        raise BusinessRuleError("Cannot add messages to resolved or closed disputes", code="DISPUTE_CLOSED")
    message = _validate_party_message(raw_message)

    _append_message(dispute, sender=sender, sender_role=role, message=message)
    _commit("dispute_message_failed", dispute_id=dispute.id, sender_id=sender.id)

    if role is Role.VENDOR:
        recipient, title = dispute.buyer_id, "Store Response to Your Dispute"
        text = f"{sender.display_name()} has replied to your dispute for order #{dispute.order_id}"
    else:
        recipient, title = dispute.vendor_id, "Buyer Replied to Dispute"
        text = f"The buyer has replied to the dispute for order #{dispute.order_id}"
    if recipient:
        notify_user(
            int(recipient),
            kind="dispute_message",
            title=title,
            message=text,
            meta={"dispute_id": dispute.id, "order_id": dispute.order_id},
        )
    return dispute


def disputes_for_party(user_id: int, role: Role) -> list[Dispute]:
    q = Dispute.query
    if role is Role.VENDOR:
        q = q.filter_by(vendor_id=int(user_id))
    else:
        q = q.filter_by(buyer_id=int(user_id))
    return q.order_by(Dispute.created_at.desc()).all()


def dispute_for_party(dispute_id: int, user_id: int, role: Role) -> Dispute:
    dispute = get_dispute(dispute_id)
    owner = dispute.vendor_id if role is Role.VENDOR else dispute.buyer_id
    if owner is None or int(owner) != int(user_id):
        raise NotFoundError("Dispute not found")
    return dispute


def list_disputes(*, status: str | None = None, priority: str | None = None, limit: int = 50, offset: int = 0) -> tuple[list[Dispute], int]:
    q = Dispute.query
    if status:
        parsed = _parse(DisputeStatus, status)
        if parsed is None:
            raise ValidationError("Invalid status filter")
        q = q.filter_by(status=parsed.value)
    if priority:
        parsed = _parse(DisputePriority, priority)
        if parsed is None:
            raise ValidationError("Invalid priority filter")
        q = q.filter_by(priority=parsed.value)
    total = q.count()
    rows = q.order_by(Dispute.created_at.desc()).offset(max(0, int(offset))).limit(max(1, min(200, int(limit)))).all()
    return rows, total


def dispute_stats() -> dict:
    by_status = {s.value: 0 for s in DisputeStatus}
    by_priority = {p.value: 0 for p in DisputePriority}
    resolution_hours = []
    for row in Dispute.query.all():
        by_status[row.status] = by_status.get(row.status, 0) + 1
        if _parse(DisputeStatus, row.status) not in FINAL_STATUSES:
            by_priority[row.priority] = by_priority.get(row.priority, 0) + 1
        if row.resolved_at and row.created_at:
            resolution_hours.append((row.resolved_at - row.created_at).total_seconds() / 3600.0)
    return {
        "total": sum(by_status.values()),
        "open": by_status["open"],
        "investigating": by_status["investigating"],
        "resolved": by_status["resolved"],
        "escalated": by_status["escalated"],
        "closed": by_status["closed"],
        "byPriority": by_priority,
        "avgResolutionTimeHours": round(sum(resolution_hours) / len(resolution_hours), 2) if resolution_hours else None,
    }


def _settle_order_after_resolution(dispute: Dispute, resolution: ResolutionType, admin_id: int) -> None:
    order = db.session.get(Order, int(dispute.order_id))
    if order is None or OrderStatus.parse(order.status) is not OrderStatus.DISPUTED:
        return
    target = OrderStatus.CANCELLED if resolution in REFUND_RESOLUTIONS else OrderStatus.COMPLETED
    if can_transition(order, target, Actor.ADMIN):
        transition_order(order, target, actor=Actor.ADMIN, actor_user_id=admin_id, note=f"dispute:{dispute.id}")


def resolve_dispute(dispute: Dispute, admin: User, payload: dict) -> Dispute:
    if _parse(DisputeStatus, dispute.status) in FINAL_STATUSES:
        raise BusinessRuleError("Dispute is already resolved or closed", code="DISPUTE_CLOSED")
    resolution_type = _parse(ResolutionType, payload.get("resolutionType") or payload.get("resolution_type"))
    resolution = str(payload.get("resolution") or "").strip()
    if resolution_type is None or not resolution:
        raise ValidationError("Resolution type and description required")

    refund_amount = None
    if resolution_type in REFUND_RESOLUTIONS:
        raw = payload.get("refundAmount", payload.get("refund_amount"))
        if raw is not None:
            if isinstance(raw, bool) or not isinstance(raw, (int, float)) or raw <= 0:
                raise ValidationError("Invalid refund amount")
            refund_amount = float(raw)
        order = db.session.get(Order, int(dispute.order_id))
        if refund_amount is None:
            if resolution_type is ResolutionType.FULL_REFUND and order is not None:
                refund_amount = float(order.total or 0.0)
            else:
                refund_amount = dispute.amount
        if order is not None and refund_amount is not None and refund_amount > float(order.total or 0.0):
            raise ValidationError("Refund amount cannot exceed order total")

    now = datetime.utcnow()
    dispute.status = DisputeStatus.RESOLVED.value
    dispute.resolution_type = resolution_type.value
    dispute.resolution = resolution
    dispute.refund_amount = refund_amount
    dispute.resolved_at = now
    dispute.resolved_by = int(admin.id)
    dispute.updated_at = now
    _settle_order_after_resolution(dispute, resolution_type, int(admin.id))
    record_audit(
        "dispute.resolved",
        actor_user_id=int(admin.id),
        actor_role=Role.ADMIN.value,
        target_type="dispute",
        target_id=dispute.id,
        metadata={"resolution_type": resolution_type.value, "refund_amount": refund_amount},
    )
    _commit("dispute_resolve_failed", dispute_id=dispute.id)

    for user_id, text in (
        (dispute.buyer_id, f"Your dispute for order #{dispute.order_id} has been resolved. Resolution: {resolution_type.value}"),
        (dispute.vendor_id, f"A dispute for order #{dispute.order_id} has been resolved. Resolution: {resolution_type.value}"),
    ):
        if user_id:
            notify_user(
                int(user_id),
                kind="dispute_resolved",
                title="Dispute Resolved",
                message=text,
                meta={"dispute_id": dispute.id, "order_id": dispute.order_id, "resolution_type": resolution_type.value},
            )
    return dispute


def escalate_dispute(dispute: Dispute, admin: User, reason: str = "") -> Dispute:
    if _parse(DisputeStatus, dispute.status) in FINAL_STATUSES:
        raise BusinessRuleError("Dispute is already resolved or closed", code="DISPUTE_CLOSED")
    now = datetime.utcnow()
    dispute.status = DisputeStatus.ESCALATED.value
    dispute.priority = DisputePriority.URGENT.value
    dispute.escalated_at = now
    dispute.updated_at = now
    record_audit(
        "dispute.escalated",
        actor_user_id=int(admin.id),
        actor_role=Role.ADMIN.value,
        target_type="dispute",
        target_id=dispute.id,
        metadata={"reason": reason or ""},
    )
    _commit("dispute_escalate_failed", dispute_id=dispute.id)
    return dispute


def close_dispute(dispute: Dispute, admin: User, reason: str = "") -> Dispute:
    if _parse(DisputeStatus, dispute.status) is DisputeStatus.CLOSED:
        raise BusinessRuleError("Dispute is already closed", code="DISPUTE_CLOSED")
    now = datetime.utcnow()
    dispute.status = DisputeStatus.CLOSED.value
    dispute.closed_at = now
    dispute.updated_at = now
    record_audit(
        "dispute.closed",
        actor_user_id=int(admin.id),
        actor_role=Role.ADMIN.value,
        target_type="dispute",
        target_id=dispute.id,
        metadata={"reason": reason or ""},
    )
    _commit("dispute_close_failed", dispute_id=dispute.id)
    notify_user(
        int(dispute.buyer_id),
        kind="dispute_closed",
        title="Dispute Closed",
        message=f"Your dispute for order #{dispute.order_id} has been closed.",
        meta={"dispute_id": dispute.id, "order_id": dispute.order_id},
    )
    return dispute


def add_admin_message(dispute: Dispute, admin: User, raw_message) -> Dispute:
    if not isinstance(raw_message, str) or not raw_message.strip():
        raise ValidationError("Message is required")
    if len(raw_message) > MAX_MESSAGE_LENGTH:
        raise ValidationError(f"Message cannot exceed {MAX_MESSAGE_LENGTH} characters")
    _append_message(dispute, sender=admin, sender_role=Role.ADMIN, message=raw_message.strip())
    _commit("dispute_admin_message_failed", dispute_id=dispute.id)
    return dispute


def assign_dispute(dispute: Dispute, admin: User, assignee_id) -> Dispute:
    try:
        assignee = db.session.get(User, int(assignee_id)) if assignee_id is not None else admin
    except (TypeError, ValueError):
        raise ValidationError("Invalid assignee")
    if assignee is None or Role.parse(assignee.role) is not Role.ADMIN:
        raise ValidationError("Disputes can only be assigned to admins")
    dispute.assigned_to = int(assignee.id)
    if _parse(DisputeStatus, dispute.status) is DisputeStatus.OPEN:
        dispute.status = DisputeStatus.INVESTIGATING.value
    dispute.updated_at = datetime.utcnow()
    record_audit(
        "dispute.assigned",
        actor_user_id=int(admin.id),
        actor_role=Role.ADMIN.value,
        target_type="dispute",
        target_id=dispute.id,
        metadata={"assigned_to": int(assignee.id)},
    )
    _commit("dispute_assign_failed", dispute_id=dispute.id)
    return dispute


def update_dispute(dispute: Dispute, admin: User, payload: dict) -> Dispute:
    changes = {}
    if payload.get("status") is not None:
        status = _parse(DisputeStatus, payload.get("status"))
        if status is None:
            raise ValidationError("Invalid status")
        dispute.status = status.value
        if status is DisputeStatus.CLOSED and dispute.closed_at is None:
            dispute.closed_at = datetime.utcnow()
        changes["status"] = status.value
    if payload.get("priority") is not None:
        priority = _parse(DisputePriority, payload.get("priority"))
        if priority is None:
            raise ValidationError("Invalid priority")
        dispute.priority = priority.value
        changes["priority"] = priority.value
    notes = payload.get("adminNotes", payload.get("admin_notes"))
    if notes is not None:
        dispute.admin_notes = str(notes)[:4000]
        changes["admin_notes"] = True
    if not changes:
        raise ValidationError("Nothing to update")
    dispute.updated_at = datetime.utcnow()
    record_audit(
        "dispute.updated",
        actor_user_id=int(admin.id),
        actor_role=Role.ADMIN.value,
        target_type="dispute",
        target_id=dispute.id,
        metadata=changes,
    )
    _commit("dispute_update_failed", dispute_id=dispute.id)
    return dispute


def process_refund(dispute: Dispute, admin: User, payload: dict) -> dict:
    """Refund the buyer through the payment provider for a refund resolution."""
    if dispute.refund_status == RefundStatus.COMPLETED:
        raise BusinessRuleError("Refund already processed", code="REFUND_COMPLETED")
    if dispute.refund_status == RefundStatus.PROCESSING:
        raise BusinessRuleError(
            "Refund is already being processed. Please wait for confirmation or check the status.",
            code="REFUND_IN_PROGRESS",
        )
    if _parse(DisputeStatus, dispute.status) is not DisputeStatus.RESOLVED:
        raise BusinessRuleError("Dispute must be resolved before processing a refund. Please resolve the dispute first.")
    if _parse(ResolutionType, dispute.resolution_type) not in REFUND_RESOLUTIONS:
        raise BusinessRuleError("This dispute resolution type does not require a refund.")

    order = db.session.get(Order, int(dispute.order_id))
    if order is None:
        raise NotFoundError("Order not found")
    if not order.payment_reference:
        raise BusinessRuleError("No payment reference found for this order.")
    if order.payment_status == "refunded":
        raise BusinessRuleError("This order has already been refunded.")

    amount = payload.get("refundAmount", payload.get("refund_amount"))
    if amount is None:
        amount = dispute.refund_amount or dispute.amount or order.total
    if isinstance(amount, bool) or not isinstance(amount, (int, float)) or amount <= 0:
        raise ValidationError("Invalid refund amount")
    amount = float(amount)
    if amount > float(order.total or 0.0):
        raise BusinessRuleError(
            f"Refund amount ({order.currency} {amount:.2f}) cannot exceed order total ({order.currency} {float(order.total or 0.0):.2f})"
        )

    dispute.refund_status = RefundStatus.PROCESSING
    dispute.updated_at = datetime.utcnow()
    _commit("dispute_refund_mark_failed", dispute_id=dispute.id)

    note = str(payload.get("customerNote") or f"Refund for dispute {dispute.id}")[:240]
    try:
        provider = build_payments_provider()
        result = provider.refund(
            transaction_reference=order.payment_reference,
            amount_minor=money_major_to_minor(amount),
            currency=order.currency or "GHS",
            customer_note=note,
            merchant_note=f"Dispute {dispute.id} order {order.id}",
        )
    except (ProviderError, IntegrationDisabledError, IntegrationMisconfiguredError) as e:
        dispute.refund_status = RefundStatus.FAILED
        dispute.updated_at = datetime.utcnow()
        _commit("dispute_refund_fail_mark_failed", dispute_id=dispute.id)
        current_app.logger.warning("dispute_refund_failed dispute_id=%s reason=%s", dispute.id, e)
        raise ApiError(
            "Failed to process refund with payment provider",
            code="REFUND_FAILED",
            status=502,
            reason=str(e)[:240],
        )

    now = datetime.utcnow()
    immediate = (result.status or "").strip().lower() == "processed"
    dispute.refund_status = RefundStatus.COMPLETED if immediate else RefundStatus.PROCESSING
    dispute.refund_reference = (result.refund_reference or "")[:120] or None
    dispute.refund_amount = amount
    dispute.refunded_at = now if immediate else None
    dispute.updated_at = now
    if immediate:
        full = money_major_to_minor(amount) >= money_major_to_minor(order.total)
        order.payment_status = "refunded" if full else "partially_refunded"
        order.updated_at = now
    record_audit(
        "dispute.refund_processed",
        actor_user_id=int(admin.id),
        actor_role=Role.ADMIN.value,
        target_type="dispute",
        target_id=dispute.id,
        metadata={
            "order_id": order.id,
            "refund_amount": amount,
            "refund_reference": dispute.refund_reference,
            "payment_reference": order.payment_reference,
        },
    )
    _commit("dispute_refund_save_failed", dispute_id=dispute.id)

    if immediate:
        notify_user(
            int(dispute.buyer_id),
            kind="refund_processed",
            title="Refund Processed",
            message=f"Your refund of {order.currency} {amount:.2f} for order #{order.id} has been processed.",
            meta={"dispute_id": dispute.id, "order_id": order.id, "refund_amount": amount},
        )
        if dispute.vendor_id:
            notify_user(
                int(dispute.vendor_id),
                kind="refund_processed",
                title="Order Refunded",
                message=f"A refund of {order.currency} {amount:.2f} has been processed for order #{order.id}.",
                meta={"dispute_id": dispute.id, "order_id": order.id, "refund_amount": amount},
            )
    else:
        notify_user(
            int(dispute.buyer_id),
            kind="refund_initiated",
            title="Refund Initiated",
            message=f"Your refund of {order.currency} {amount:.2f} for order #{order.id} has been initiated.",
            meta={"dispute_id": dispute.id, "order_id": order.id, "refund_amount": amount},
        )
    return {
        "disputeId": dispute.id,
        "orderId": order.id,
        "amount": amount,
        "reference": dispute.refund_reference or "",
        "status": dispute.refund_status,
        "providerStatus": result.status,
    }
