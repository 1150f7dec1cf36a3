from __future__ import annotations

from datetime import datetime

from kiosk.extensions import db


class VendorBankAccount(db.Model):
    __tablename__ = "vendor_bank_accounts"

    id = db.Column(db.Integer, primary_key=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    account_type = db.Column(db.String(16), nullable=False, default="bank")  # bank | mobile_money
    bank_code = db.Column(db.String(32), nullable=True)
    bank_name = db.Column(db.String(120), nullable=True)
    account_number = db.Column(db.String(32), nullable=False)
    account_name = db.Column(db.String(160), nullable=False)
    mobile_money_provider = db.Column(db.String(32), nullable=True)

    provider_recipient_code = db.Column(db.String(80), nullable=True)
    is_primary = db.Column(db.Boolean, nullable=False, default=False)
    is_verified = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def masked_number(self) -> str:
        raw = (self.account_number or "").strip()
        if len(raw) <= 4:
            return raw
        return f"{'*' * (len(raw) - 4)}{raw[-4:]}"

    def to_dict(self):
        return {
            "id": self.id,
            "vendor_id": self.vendor_id,
            "account_type": self.account_type,
            "bank_code": self.bank_code or "",
            "bank_name": self.bank_name or "",
            "account_number": self.masked_number(),
            "account_name": self.account_name or "",
            "mobile_money_provider": self.mobile_money_provider or "",
            "has_recipient": bool(self.provider_recipient_code),
            "is_primary": bool(self.is_primary),
            "is_verified": bool(self.is_verified),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class VendorPayout(db.Model):
    __tablename__ = "vendor_payouts"

    id = db.Column(db.Integer, primary_key=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    bank_account_id = db.Column(db.Integer, db.ForeignKey("vendor_bank_accounts.id"), nullable=False, index=True)

    # Current attempt reference; older ones live in payout_attempts.
    reference = db.Column(db.String(80), nullable=False, unique=True, index=True)
    amount = db.Column(db.Float, nullable=False)
    currency = db.Column(db.String(8), nullable=False, default="GHS")
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    transfer_code = db.Column(db.String(80), nullable=True)
    failure_reason = db.Column(db.Text, nullable=True)
    retry_count = db.Column(db.Integer, nullable=False, default=0)

    initiated_by = db.Column(db.String(16), nullable=False, default="vendor")
    initiated_by_id = db.Column(db.Integer, nullable=True)

    processed_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    bank_account = db.relationship("VendorBankAccount", lazy="joined")
    attempts = db.relationship(
        "PayoutAttempt",
        backref="payout",
        lazy="select",
        order_by="PayoutAttempt.id",
    )

    def to_dict(self, *, include_attempts: bool = False):
        payload = {
            "id": self.id,
            "vendor_id": self.vendor_id,
            "bank_account_id": self.bank_account_id,
            "bank_account": self.bank_account.to_dict() if self.bank_account else None,
            "reference": self.reference,
            "amount": float(self.amount or 0.0),
            "currency": self.currency or "GHS",
            "status": self.status,
            "transfer_code": self.transfer_code or "",
            "failure_reason": self.failure_reason or "",
            "retry_count": int(self.retry_count or 0),
            "initiated_by": self.initiated_by,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_attempts:
            payload["attempts"] = [a.to_dict() for a in (self.attempts or [])]
        return payload


class PayoutAttempt(db.Model):
    __tablename__ = "payout_attempts"

    id = db.Column(db.Integer, primary_key=True)
    payout_id = db.Column(db.Integer, db.ForeignKey("vendor_payouts.id"), nullable=False, index=True)
    reference = db.Column(db.String(80), nullable=False, unique=True, index=True)
    status = db.Column(db.String(16), nullable=False, default="pending")
    transfer_code = db.Column(db.String(80), nullable=True)
    failure_reason = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "payout_id": self.payout_id,
            "reference": self.reference,
            "status": self.status,
            "transfer_code": self.transfer_code or "",
            "failure_reason": self.failure_reason or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
