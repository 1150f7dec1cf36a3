from __future__ import annotations

import secrets
import time
from datetime import datetime
from enum import Enum

from flask import current_app

from kiosk.extensions import db
from kiosk.models import Order, OrderEvent, OrderItem, Product, User
from kiosk.utils.audit import record_audit
from kiosk.utils.auth import Role
from kiosk.utils.commission import (
    money_major_to_minor,
    money_minor_to_major,
    resolve_commission_rate,
    split_line_minor,
)
from kiosk.utils.errors import BusinessRuleError, ConflictError, NotFoundError, ValidationError
from kiosk.utils.settings import currency

_LEGACY_ORDER_STATUS = {
    "pending_payment": "created",
    "processing": "confirmed",
    "shipped": "out_for_delivery",
    "fulfilled": "delivered",
}

_LEGACY_FULFILLMENT_STATUS = {
    "shipped": "handed_to_courier",
    "fulfilled": "delivered",
}


class OrderStatus(str, Enum):
    CREATED = "created"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY_FOR_PICKUP = "ready_for_pickup"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    DELIVERY_FAILED = "delivery_failed"
    COMPLETED = "completed"
    DISPUTED = "disputed"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, value) -> "OrderStatus | None":
        if isinstance(value, cls):
            return value
        raw = str(value or "").strip().lower()
        raw = _LEGACY_ORDER_STATUS.get(raw, raw)
        for member in cls:
            if member.value == raw:
                return member
        return None


class Actor(str, Enum):
    SYSTEM = "system"
    BUYER = "buyer"
    VENDOR = "vendor"
    ADMIN = "admin"

    @classmethod
    def for_role(cls, role: Role) -> "Actor":
        return cls(role.value)


ORDER_TRANSITIONS = {
    OrderStatus.CREATED: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.PREPARING, OrderStatus.CANCELLED},
    OrderStatus.PREPARING: {OrderStatus.READY_FOR_PICKUP, OrderStatus.CANCELLED},
    OrderStatus.READY_FOR_PICKUP: {OrderStatus.OUT_FOR_DELIVERY, OrderStatus.CANCELLED},
    OrderStatus.OUT_FOR_DELIVERY: {OrderStatus.DELIVERED, OrderStatus.DELIVERY_FAILED, OrderStatus.CANCELLED},
    OrderStatus.DELIVERED: {OrderStatus.COMPLETED, OrderStatus.DISPUTED},
    OrderStatus.DELIVERY_FAILED: {OrderStatus.OUT_FOR_DELIVERY, OrderStatus.CANCELLED},
    OrderStatus.DISPUTED: {OrderStatus.COMPLETED, OrderStatus.CANCELLED},
    OrderStatus.COMPLETED: set(),
    OrderStatus.CANCELLED: set(),
}

# Admin is not listed: any transition in ORDER_TRANSITIONS is open to it.
ACTOR_RULES = {
    Actor.SYSTEM: {
        OrderStatus.CREATED: {OrderStatus.CONFIRMED},
        OrderStatus.DELIVERED: {OrderStatus.COMPLETED},
    },
    Actor.VENDOR: {
        OrderStatus.CONFIRMED: {OrderStatus.PREPARING},
        OrderStatus.PREPARING: {OrderStatus.READY_FOR_PICKUP},
        OrderStatus.READY_FOR_PICKUP: {OrderStatus.OUT_FOR_DELIVERY},
        OrderStatus.OUT_FOR_DELIVERY: {OrderStatus.DELIVERED, OrderStatus.DELIVERY_FAILED},
        OrderStatus.DELIVERY_FAILED: {OrderStatus.OUT_FOR_DELIVERY},
    },
    Actor.BUYER: {
        OrderStatus.CREATED: {OrderStatus.CANCELLED},
        OrderStatus.DELIVERED: {OrderStatus.DISPUTED},
    },
}

# Happy path walked by the fulfilment roll-up.
_FULFILMENT_PATH = [
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
    OrderStatus.READY_FOR_PICKUP,
    OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED,
]


class FulfillmentStatus(str, Enum):
    PENDING = "pending"
    PACKED = "packed"
    HANDED_TO_COURIER = "handed_to_courier"
    DELIVERED = "delivered"

    @classmethod
    def parse(cls, value) -> "FulfillmentStatus | None":
        if isinstance(value, cls):
            return value
        raw = str(value or "").strip().lower()
        raw = _LEGACY_FULFILLMENT_STATUS.get(raw, raw)
        for member in cls:
            if member.value == raw:
                return member
        return None


FULFILLMENT_TRANSITIONS = {
    # pending -> handed_to_courier skips the pack step.
    FulfillmentStatus.PENDING: {FulfillmentStatus.PACKED, FulfillmentStatus.HANDED_TO_COURIER},
    FulfillmentStatus.PACKED: {FulfillmentStatus.HANDED_TO_COURIER},
    FulfillmentStatus.HANDED_TO_COURIER: {FulfillmentStatus.DELIVERED},
    FulfillmentStatus.DELIVERED: set(),
}

_FULFILMENT_OPEN = {
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
    OrderStatus.READY_FOR_PICKUP,
    OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERY_FAILED,
}


def transition_rejection(current: OrderStatus | None, target: OrderStatus, actor: Actor) -> str | None:
    """Reason the transition is refused, or None when it is allowed."""
    if current is None:
        return f"Unknown current status; cannot move to '{target.value}'"
    if target not in ORDER_TRANSITIONS.get(current, set()):
        return f"Invalid transition from '{current.value}' to '{target.value}'"
    if actor is Actor.ADMIN:
        return None
    allowed = ACTOR_RULES.get(actor, {}).get(current, set())
    if target not in allowed:
        return f"Actor '{actor.value}' cannot transition from '{current.value}' to '{target.value}'"
    return None


def can_transition(order: Order, target: OrderStatus, actor: Actor) -> bool:
    return transition_rejection(OrderStatus.parse(order.status), target, actor) is None


def _restore_inventory(order: Order) -> None:
    for item in order.items or []:
        if item.product_id is None:
            continue
        product = db.session.get(Product, int(item.product_id))
        if product is not None:
            product.stock = int(product.stock or 0) + int(item.quantity or 0)


def transition_order(
    order: Order,
    target,
    *,
    actor: Actor,
    actor_user_id: int | None = None,
    note: str = "",
    dispute_reason: str | None = None,
) -> OrderEvent:
    """Move an order along its lifecycle. The caller owns the commit.

    A refused transition is audited (committed on its own) and raised as
    INVALID_TRANSITION.
    """
    current = OrderStatus.parse(order.status)
    wanted = OrderStatus.parse(target)
    if wanted is None:
        raise ValidationError(f"Unknown order status: {target}")

    reason = transition_rejection(current, wanted, actor)
    if reason:
        current_app.logger.warning(
            "order_transition_rejected order_id=%s from=%s to=%s actor=%s",
            order.id,
            order.status,
            wanted.value,
            actor.value,
        )
        record_audit(
            "order.transition_rejected",
            actor_user_id=actor_user_id,
            actor_role=actor.value,
            target_type="order",
            target_id=order.id,
            metadata={"previous_status": order.status, "attempted_status": wanted.value, "reason": reason},
            commit=True,
        )
        raise ConflictError(
            reason,
            code="INVALID_TRANSITION",
            currentStatus=order.status,
            attemptedStatus=wanted.value,
        )

    now = datetime.utcnow()
    previous = current.value
    order.status = wanted.value
    order.updated_at = now
    if wanted is OrderStatus.DELIVERED and order.delivered_at is None:
        order.delivered_at = now
    elif wanted is OrderStatus.DISPUTED:
        order.disputed_at = now
        if dispute_reason:
            order.dispute_reason = dispute_reason
    elif wanted is OrderStatus.COMPLETED:
        order.completed_at = now
    elif wanted is OrderStatus.CANCELLED:
        order.cancelled_at = now
        _restore_inventory(order)

    event = OrderEvent(
        order_id=int(order.id),
        actor_user_id=actor_user_id,
        actor_role=actor.value,
        event="status_changed",
        from_status=previous,
        to_status=wanted.value,
        note=(note or "")[:240] or None,
        created_at=now,
    )
    db.session.add(event)
    record_audit(
        "order.status_changed",
        actor_user_id=actor_user_id,
        actor_role=actor.value,
        target_type="order",
        target_id=order.id,
        metadata={"previous_status": previous, "new_status": wanted.value},
    )
    return event


def _rollup_target(order: Order) -> OrderStatus | None:
    statuses = [FulfillmentStatus.parse(i.fulfillment_status) for i in (order.items or [])]
    if not statuses:
        return None
    if all(s is FulfillmentStatus.DELIVERED for s in statuses):
        return OrderStatus.DELIVERED
    if all(s in (FulfillmentStatus.HANDED_TO_COURIER, FulfillmentStatus.DELIVERED) for s in statuses):
        return OrderStatus.OUT_FOR_DELIVERY
    if all(s is not None and s is not FulfillmentStatus.PENDING for s in statuses):
        return OrderStatus.PREPARING
    return None


def _forward_steps(current: OrderStatus | None, target: OrderStatus) -> list[OrderStatus]:
    if current is OrderStatus.DELIVERY_FAILED:
        current = OrderStatus.READY_FOR_PICKUP
    if current not in _FULFILMENT_PATH:
        return []
    start = _FULFILMENT_PATH.index(current)
    end = _FULFILMENT_PATH.index(target)
    if start >= end:
        return []
    return _FULFILMENT_PATH[start + 1 : end + 1]


def update_item_fulfillment(order: Order, item: OrderItem, target, *, vendor_id: int) -> list[OrderEvent]:
    """Advance one vendor line and roll the order status up when every line agrees."""
    if int(item.order_id) != int(order.id) or int(item.vendor_id) != int(vendor_id):
        raise NotFoundError("Order item not found")
    wanted = FulfillmentStatus.parse(target)
    if wanted is None:
        raise ValidationError(f"Unknown fulfillment status: {target}")
    if OrderStatus.parse(order.status) not in _FULFILMENT_OPEN:
        raise BusinessRuleError(f"Order in status '{order.status}' cannot be fulfilled", code="ORDER_NOT_FULFILLABLE")

    current = FulfillmentStatus.parse(item.fulfillment_status)
    if current is None or wanted not in FULFILLMENT_TRANSITIONS.get(current, set()):
        raise ConflictError(
            f"Invalid fulfillment transition from '{item.fulfillment_status}' to '{wanted.value}'",
            code="INVALID_TRANSITION",
        )

    now = datetime.utcnow()
    item.fulfillment_status = wanted.value
    item.fulfillment_updated_at = now
    db.session.add(
        OrderEvent(
            order_id=int(order.id),
            actor_user_id=int(vendor_id),
            actor_role=Actor.VENDOR.value,
            event=f"item_{wanted.value}",
            note=f"item:{item.id}",
            created_at=now,
        )
    )

    events = []
    rollup = _rollup_target(order)
    if rollup is None:
        return events
    for step in _forward_steps(OrderStatus.parse(order.status), rollup):
        if not can_transition(order, step, Actor.VENDOR):
            break
        events.append(
            transition_order(order, step, actor=Actor.VENDOR, actor_user_id=int(vendor_id), note="fulfilment_rollup")
        )
    return events


def new_payment_reference() -> str:
    return f"KIOSK-ORD-{int(time.time())}-{secrets.token_hex(4).upper()}"


def create_order(buyer: User, lines: list, *, shipping_address: str = "") -> Order:
    """Price lines from the catalog, snapshot commission and reserve stock. Caller commits."""
    if not isinstance(lines, list) or not lines:
        raise ValidationError("Order must contain at least one item")

    quantities: dict[int, int] = {}
    for line in lines:
        if not isinstance(line, dict):
            raise ValidationError("Invalid order item")
        try:
            product_id = int(line.get("product_id") or line.get("productId"))
            quantity = int(line.get("quantity") or 1)
        except (TypeError, ValueError):
            raise ValidationError("Invalid order item")
        if quantity < 1 or quantity > 1000:
            raise ValidationError("Quantity must be between 1 and 1000")
        quantities[product_id] = quantities.get(product_id, 0) + quantity

    order = Order(
        buyer_id=int(buyer.id),
        status=OrderStatus.CREATED.value,
        payment_status="pending",
        payment_reference=new_payment_reference(),
        currency=currency(),
        shipping_address=(shipping_address or "").strip() or None,
    )
    subtotal_minor = 0
    for product_id, quantity in quantities.items():
        product = db.session.get(Product, product_id)
        if product is None or not product.is_active:
            raise NotFoundError(f"Product {product_id} not found")
        if int(product.vendor_id) == int(buyer.id):
            raise BusinessRuleError("You cannot buy your own product")
        if int(product.stock or 0) < quantity:
            raise BusinessRuleError(f"Insufficient stock for {product.name}", code="INSUFFICIENT_STOCK")

        vendor = db.session.get(User, int(product.vendor_id))
        rate = resolve_commission_rate(vendor)
        line_minor = money_major_to_minor(product.price) * quantity
        fee_minor, earnings_minor = split_line_minor(line_minor, rate)
        subtotal_minor += line_minor
        product.stock = int(product.stock or 0) - quantity

        order.items.append(
            OrderItem(
                product_id=int(product.id),
                vendor_id=int(product.vendor_id),
                product_name=product.name,
                quantity=quantity,
                unit_price=float(product.price or 0.0),
                final_price=money_minor_to_major(line_minor),
                commission_rate=rate,
                platform_fee=money_minor_to_major(fee_minor),
                vendor_earnings=money_minor_to_major(earnings_minor),
                fulfillment_status=FulfillmentStatus.PENDING.value,
            )
        )

    order.subtotal = money_minor_to_major(subtotal_minor)
    order.total = order.subtotal
    db.session.add(order)
    db.session.flush()
    db.session.add(
        OrderEvent(
            order_id=int(order.id),
            actor_user_id=int(buyer.id),
            actor_role=Actor.BUYER.value,
            event="order_created",
            to_status=OrderStatus.CREATED.value,
        )
    )
    return order


def user_can_view_order(order: Order, user_id: int, role: Role) -> bool:
    if role is Role.ADMIN:
        return True
    if role is Role.BUYER:
        return int(order.buyer_id) == int(user_id)
    if role is Role.VENDOR:
        return int(user_id) in order.vendor_ids()
    return False
