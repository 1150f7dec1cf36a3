from datetime import datetime

from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash

from kiosk.extensions import db


class User(db.Model, UserMixin):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(120), nullable=False, default="")
    email = db.Column(db.String(255), unique=True, index=True, nullable=False)

    phone = db.Column(db.String(32), unique=True, index=True, nullable=True)
    phone_verified = db.Column(db.Boolean, nullable=False, default=False)
    phone_verified_at = db.Column(db.DateTime, nullable=True)

    password_hash = db.Column(db.String(255), nullable=False)

    role = db.Column(db.String(32), nullable=False, default="buyer")  # buyer | vendor | admin
    is_active_account = db.Column(db.Boolean, nullable=False, default=True)

    # Vendor-specific commission override; falls back to DEFAULT_COMMISSION_RATE.
    commission_rate = db.Column(db.Float, nullable=True)
    store_name = db.Column(db.String(160), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    @property
    def is_active(self) -> bool:
        return bool(self.is_active_account)

    def set_password(self, raw_password: str) -> None:
        self.password_hash = generate_password_hash(raw_password)

    def check_password(self, raw_password: str) -> bool:
        return check_password_hash(self.password_hash, raw_password)

    def display_name(self) -> str:
        return (self.store_name or self.name or self.email.split("@")[0]).strip()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": getattr(self, "phone", None),
            "phone_verified": bool(self.phone_verified),
            "role": self.role or "buyer",
            "store_name": self.store_name or "",
            "commission_rate": float(self.commission_rate) if self.commission_rate is not None else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
