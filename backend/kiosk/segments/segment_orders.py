from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from kiosk.extensions import db
from kiosk.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError, ProviderError
from kiosk.integrations.payments.factory import build_payments_provider
from kiosk.jobs.auto_complete import preview_auto_complete, run_auto_complete
from kiosk.models import Order, OrderEvent, OrderItem
from kiosk.services.order_service import (
    Actor,
    OrderStatus,
    create_order,
    transition_order,
    update_item_fulfillment,
    user_can_view_order,
)
from kiosk.utils.auth import Role, current_principal, require_role, session_user
from kiosk.utils.errors import NotFoundError, ValidationError
from kiosk.utils.notify import notify_user

orders_bp = Blueprint("orders_bp", __name__, url_prefix="/api/orders")
vendor_orders_bp = Blueprint("vendor_orders_bp", __name__, url_prefix="/api/vendor/orders")
admin_orders_bp = Blueprint("admin_orders_bp", __name__, url_prefix="/api/admin/orders")


def _visible_order(order_id: int) -> Order:
    principal = current_principal()
    order = db.session.get(Order, int(order_id))
    if order is None or not user_can_view_order(order, principal.user_id, principal.role):
        raise NotFoundError("Order not found")
    return order


def _page_args() -> tuple[int, int]:
    try:
        limit = max(1, min(int(request.args.get("limit") or 50), 200))
        offset = max(0, int(request.args.get("offset") or 0))
    except ValueError:
        raise ValidationError("limit and offset must be integers")
    return limit, offset


@orders_bp.post("")
@require_role(Role.BUYER)
def checkout():
    buyer = session_user()
    data = request.get_json(silent=True) or {}
    order = create_order(buyer, data.get("items"), shipping_address=data.get("shipping_address") or data.get("shippingAddress") or "")
    db.session.commit()
    current_app.logger.info("order_created order_id=%s buyer_id=%s total=%s", order.id, buyer.id, order.total)

    payment = None
    try:
        init = build_payments_provider().initialize(
            order_id=int(order.id),
            amount=float(order.total),
            email=buyer.email,
            reference=order.payment_reference,
            metadata={"order_id": int(order.id), "buyer_id": int(buyer.id)},
        )
        payment = {"authorization_url": init.authorization_url, "reference": init.reference, "provider": init.provider}
    except (ProviderError, IntegrationDisabledError, IntegrationMisconfiguredError) as e:
        current_app.logger.warning("order_payment_init_failed order_id=%s err=%s", order.id, e)

    for vendor_id in order.vendor_ids():
        notify_user(
            vendor_id,
            kind="order_placed",
            title="New Order",
            message=f"Order #{order.id} was placed and is awaiting payment.",
            meta={"order_id": order.id},
        )
    return jsonify({"ok": True, "order": order.to_dict(), "payment": payment}), 201


@orders_bp.get("")
@require_role()
def list_orders():
    principal = current_principal()
    limit, offset = _page_args()
    query = Order.query
    if principal.role is Role.BUYER:
        query = query.filter(Order.buyer_id == principal.user_id)
    elif principal.role is Role.VENDOR:
        query = query.filter(Order.id.in_(db.session.query(OrderItem.order_id).filter(OrderItem.vendor_id == principal.user_id)))
    status = (request.args.get("status") or "").strip()
    if status:
        parsed = OrderStatus.parse(status)
        if parsed is None:
            raise ValidationError(f"Unknown order status: {status}")
        query = query.filter(Order.status == parsed.value)
    total = query.count()
    rows = query.order_by(Order.created_at.desc()).offset(offset).limit(limit).all()
    return jsonify({"ok": True, "items": [o.to_dict() for o in rows], "total": total}), 200


@orders_bp.get("/<int:order_id>")
@require_role()
def get_order(order_id: int):
    order = _visible_order(order_id)
    events = OrderEvent.query.filter_by(order_id=int(order.id)).order_by(OrderEvent.created_at.asc()).all()
    return jsonify({"ok": True, "order": order.to_dict(), "events": [e.to_dict() for e in events]}), 200


@orders_bp.post("/<int:order_id>/status")
@require_role()
def update_order_status(order_id: int):
    principal = current_principal()
    order = _visible_order(order_id)
    data = request.get_json(silent=True) or {}
    target = OrderStatus.parse(data.get("status"))
    if target is None:
        raise ValidationError("A valid status is required")
    if target is OrderStatus.DISPUTED and principal.role is not Role.ADMIN:
        raise ValidationError("Open a dispute to dispute an order")

    event = transition_order(
        order,
        target,
        actor=Actor.for_role(principal.role),
        actor_user_id=principal.user_id,
        note=(data.get("note") or "").strip(),
    )
    db.session.commit()
    if principal.role is not Role.BUYER:
        notify_user(
            int(order.buyer_id),
            kind="order_status",
            title="Order Update",
            message=f"Order #{order.id} is now {order.status.replace('_', ' ')}.",
            meta={"order_id": order.id, "status": order.status},
        )
    return jsonify({"ok": True, "order": order.to_dict(), "event": event.to_dict()}), 200


@vendor_orders_bp.get("")
@require_role(Role.VENDOR)
def vendor_orders():
    vendor = session_user()
    limit, offset = _page_args()
    query = Order.query.filter(
        Order.id.in_(db.session.query(OrderItem.order_id).filter(OrderItem.vendor_id == int(vendor.id)))
    )
    total = query.count()
    rows = query.order_by(Order.created_at.desc()).offset(offset).limit(limit).all()
    items = []
    for order in rows:
        payload = order.to_dict(include_items=False)
        payload["items"] = [i.to_dict() for i in order.items if int(i.vendor_id) == int(vendor.id)]
        items.append(payload)
    return jsonify({"ok": True, "items": items, "total": total}), 200


@vendor_orders_bp.post("/<int:order_id>/items/<int:item_id>/fulfillment")
@require_role(Role.VENDOR)
def vendor_item_fulfillment(order_id: int, item_id: int):
    vendor = session_user()
    order = db.session.get(Order, int(order_id))
    item = db.session.get(OrderItem, int(item_id))
    if order is None or item is None:
        raise NotFoundError("Order item not found")
    data = request.get_json(silent=True) or {}
    events = update_item_fulfillment(order, item, data.get("status"), vendor_id=int(vendor.id))
    db.session.commit()
    if events:
        notify_user(
            int(order.buyer_id),
            kind="order_status",
            title="Order Update",
            message=f"Order #{order.id} is now {order.status.replace('_', ' ')}.",
            meta={"order_id": order.id, "status": order.status},
        )
    return jsonify({"ok": True, "item": item.to_dict(), "order": order.to_dict(include_items=False)}), 200


@admin_orders_bp.get("/auto-complete")
@require_role(Role.ADMIN)
def auto_complete_preview():
    return jsonify({"ok": True, **preview_auto_complete()}), 200


@admin_orders_bp.post("/auto-complete")
@require_role(Role.ADMIN)
def auto_complete_run():
    admin = session_user()
    result = run_auto_complete(actor_user_id=int(admin.id))
    return jsonify({"ok": True, **result}), 200
