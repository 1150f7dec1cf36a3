from datetime import datetime
import json

from kiosk.extensions import db


class Dispute(db.Model):
    __tablename__ = "disputes"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    order_item_id = db.Column(db.Integer, db.ForeignKey("order_items.id"), nullable=True)
    product_id = db.Column(db.Integer, nullable=True)
    buyer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    type = db.Column(db.String(24), nullable=False, default="other")
    status = db.Column(db.String(24), nullable=False, default="open", index=True)
    priority = db.Column(db.String(16), nullable=False, default="medium", index=True)
    description = db.Column(db.Text, nullable=False)
    amount = db.Column(db.Float, nullable=True)

    messages_json = db.Column(db.Text, nullable=True)

    resolution_type = db.Column(db.String(24), nullable=True)
    resolution = db.Column(db.Text, nullable=True)
    refund_amount = db.Column(db.Float, nullable=True)
    refund_status = db.Column(db.String(24), nullable=True)  # processing | completed | failed
    refund_reference = db.Column(db.String(120), nullable=True)
    refunded_at = db.Column(db.DateTime, nullable=True)

    admin_notes = db.Column(db.Text, nullable=True)
    assigned_to = db.Column(db.Integer, nullable=True)
    resolved_by = db.Column(db.Integer, nullable=True)
    resolved_at = db.Column(db.DateTime, nullable=True)
    escalated_at = db.Column(db.DateTime, nullable=True)
    closed_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def messages(self) -> list:
        raw = (self.messages_json or "").strip()
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except ValueError:
            return []
        return data if isinstance(data, list) else []

    def set_messages(self, messages: list) -> None:
        self.messages_json = json.dumps(messages or [], separators=(",", ":"), ensure_ascii=False)

    def to_dict(self):
        return {
            "id": self.id,
            "order_id": self.order_id,
            "order_item_id": self.order_item_id,
            "product_id": self.product_id,
            "buyer_id": self.buyer_id,
            "vendor_id": self.vendor_id,
            "type": self.type,
            "status": self.status,
            "priority": self.priority,
            "description": self.description or "",
            "amount": float(self.amount) if self.amount is not None else None,
            "messages": self.messages(),
            "resolution_type": self.resolution_type,
            "resolution": self.resolution or "",
            "refund_amount": float(self.refund_amount) if self.refund_amount is not None else None,
            "refund_status": self.refund_status,
            "refund_reference": self.refund_reference or "",
            "refunded_at": self.refunded_at.isoformat() if self.refunded_at else None,
            "admin_notes": self.admin_notes or "",
            "assigned_to": self.assigned_to,
            "resolved_by": self.resolved_by,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "escalated_at": self.escalated_at.isoformat() if self.escalated_at else None,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
