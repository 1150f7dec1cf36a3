from datetime import datetime
import json

from kiosk.extensions import db


class AuditLog(db.Model):
    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    actor_user_id = db.Column(db.Integer, nullable=True, index=True)
    actor_role = db.Column(db.String(16), nullable=False, default="system")
    action = db.Column(db.String(80), nullable=False, index=True)

    target_type = db.Column(db.String(40), nullable=True, index=True)
    target_id = db.Column(db.String(80), nullable=True, index=True)

    request_id = db.Column(db.String(80), nullable=True)
    metadata_json = db.Column(db.Text, nullable=True)

    def metadata_dict(self) -> dict:
        raw = self.metadata_json
        if not raw:
            return {}
        try:
            parsed = json.loads(raw)
            if isinstance(parsed, dict):
                return parsed
        except ValueError:
            pass
        return {"raw": str(raw)}

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "actor_user_id": int(self.actor_user_id) if self.actor_user_id is not None else None,
            "actor_role": self.actor_role or "system",
            "action": self.action or "",
            "target_type": self.target_type or "",
            "target_id": self.target_id or "",
            "request_id": self.request_id or "",
            "metadata": self.metadata_dict(),
        }


class WebhookEvent(db.Model):
    __tablename__ = "webhook_events"

    id = db.Column(db.Integer, primary_key=True)
    provider = db.Column(db.String(32), nullable=False, default="paystack")
    event_id = db.Column(db.String(128), nullable=False, unique=True)
    event_type = db.Column(db.String(64), nullable=True)
    reference = db.Column(db.String(128), nullable=True, index=True)
    status = db.Column(db.String(32), nullable=False, default="received")
    processed_at = db.Column(db.DateTime, nullable=True)
    request_id = db.Column(db.String(64), nullable=True)
    error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": int(self.id),
            "provider": self.provider,
            "event_id": self.event_id,
            "event_type": self.event_type or "",
            "reference": self.reference or "",
            "status": self.status or "",
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
            "error": self.error or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
