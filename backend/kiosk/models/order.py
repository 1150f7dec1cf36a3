from datetime import datetime

from kiosk.extensions import db


class Order(db.Model):
    __tablename__ = "orders"

    id = db.Column(db.Integer, primary_key=True)
    buyer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    status = db.Column(db.String(32), nullable=False, default="created", index=True)
    payment_status = db.Column(db.String(24), nullable=False, default="pending", index=True)  # pending | paid | failed | refunded | partially_refunded
    payment_reference = db.Column(db.String(80), nullable=True, unique=True, index=True)

    subtotal = db.Column(db.Float, nullable=False, default=0.0)
    total = db.Column(db.Float, nullable=False, default=0.0)
    currency = db.Column(db.String(8), nullable=False, default="GHS")

    shipping_address = db.Column(db.Text, nullable=True)

    paid_at = db.Column(db.DateTime, nullable=True)
    delivered_at = db.Column(db.DateTime, nullable=True, index=True)
    disputed_at = db.Column(db.DateTime, nullable=True)
    dispute_reason = db.Column(db.Text, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy="select",
        order_by="OrderItem.id",
        cascade="all, delete-orphan",
    )

    def vendor_ids(self) -> list[int]:
        seen = []
        for item in self.items or []:
            vid = int(item.vendor_id)
            if vid not in seen:
                seen.append(vid)
        return seen

    def to_dict(self, *, include_items: bool = True):
        payload = {
            "id": self.id,
            "buyer_id": self.buyer_id,
            "status": self.status,
            "payment_status": self.payment_status or "pending",
            "payment_reference": self.payment_reference or "",
            "subtotal": float(self.subtotal or 0.0),
            "total": float(self.total or 0.0),
            "currency": self.currency or "GHS",
            "shipping_address": self.shipping_address or "",
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
            "delivered_at": self.delivered_at.isoformat() if self.delivered_at else None,
            "disputed_at": self.disputed_at.isoformat() if self.disputed_at else None,
            "dispute_reason": self.dispute_reason or "",
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_items:
            payload["items"] = [i.to_dict() for i in (self.items or [])]
        return payload


class OrderItem(db.Model):
    __tablename__ = "order_items"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    product_name = db.Column(db.String(200), nullable=False, default="")
    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price = db.Column(db.Float, nullable=False, default=0.0)
    final_price = db.Column(db.Float, nullable=False, default=0.0)

    # Commission snapshot taken at checkout.
    commission_rate = db.Column(db.Float, nullable=False, default=0.0)
    platform_fee = db.Column(db.Float, nullable=False, default=0.0)
    vendor_earnings = db.Column(db.Float, nullable=False, default=0.0)

    fulfillment_status = db.Column(db.String(32), nullable=False, default="pending")
    fulfillment_updated_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "vendor_id": self.vendor_id,
            "product_name": self.product_name or "",
            "quantity": int(self.quantity or 0),
            "unit_price": float(self.unit_price or 0.0),
            "final_price": float(self.final_price or 0.0),
            "commission_rate": float(self.commission_rate or 0.0),
            "platform_fee": float(self.platform_fee or 0.0),
            "vendor_earnings": float(self.vendor_earnings or 0.0),
            "fulfillment_status": self.fulfillment_status or "pending",
            "fulfillment_updated_at": self.fulfillment_updated_at.isoformat() if self.fulfillment_updated_at else None,
        }


class OrderEvent(db.Model):
    __tablename__ = "order_events"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    actor_user_id = db.Column(db.Integer, nullable=True)
    actor_role = db.Column(db.String(16), nullable=False, default="system")

    event = db.Column(db.String(64), nullable=False)
    from_status = db.Column(db.String(32), nullable=True)
    to_status = db.Column(db.String(32), nullable=True)
    note = db.Column(db.String(240), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "order_id": self.order_id,
            "actor_user_id": self.actor_user_id,
            "actor_role": self.actor_role,
            "event": self.event,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "note": self.note or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
