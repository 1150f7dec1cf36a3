from datetime import datetime
import json

from kiosk.extensions import db


class Notification(db.Model):
    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    channel = db.Column(db.String(32), nullable=False, default="in_app")  # in_app | sms | email
    kind = db.Column(db.String(48), nullable=False, default="system")
    title = db.Column(db.String(160), nullable=True)
    message = db.Column(db.Text, nullable=False)

    status = db.Column(db.String(24), nullable=False, default="queued", index=True)  # queued | sent | failed
    provider = db.Column(db.String(64), nullable=True)
    provider_ref = db.Column(db.String(120), nullable=True)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.String(240), nullable=True)

    is_read = db.Column(db.Boolean, nullable=False, default=False)
    read_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    sent_at = db.Column(db.DateTime, nullable=True)

    meta = db.Column(db.Text, nullable=True)  # JSON string

    def meta_dict(self) -> dict:
        raw = (self.meta or "").strip()
        if not raw:
            return {}
        try:
            data = json.loads(raw)
            return data if isinstance(data, dict) else {}
        except ValueError:
            return {}

    def mark_read(self, read_at: datetime | None = None) -> datetime:
        stamped = read_at or datetime.utcnow()
        self.is_read = True
        self.read_at = stamped
        return stamped

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "channel": self.channel or "in_app",
            "kind": self.kind or "system",
            "title": self.title or "",
            "message": self.message or "",
            "status": self.status or "queued",
            "is_read": bool(self.is_read),
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "meta": self.meta_dict(),
        }
