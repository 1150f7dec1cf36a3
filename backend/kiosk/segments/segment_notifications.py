from __future__ import annotations

from datetime import datetime

from flask import Blueprint, jsonify, request

from kiosk.extensions import db
from kiosk.models import Notification
from kiosk.utils.auth import require_role, session_user
from kiosk.utils.errors import ValidationError

notifications_bp = Blueprint("notifications_bp", __name__, url_prefix="/api/notifications")


def _inbox(user_id: int):
    return Notification.query.filter_by(user_id=int(user_id), channel="in_app")


@notifications_bp.get("")
@require_role()
def list_notifications():
    user = session_user()
    try:
        limit = max(1, min(int(request.args.get("limit") or 80), 200))
    except ValueError:
        raise ValidationError("limit must be an integer")
    rows = _inbox(user.id).order_by(Notification.created_at.desc()).limit(limit).all()
    return jsonify({"ok": True, "items": [n.to_dict() for n in rows]}), 200


@notifications_bp.get("/unread")
@require_role()
def unread_notifications():
    user = session_user()
    query = _inbox(user.id).filter(Notification.is_read.is_(False))
    rows = query.order_by(Notification.created_at.desc()).limit(50).all()
    return jsonify({"ok": True, "count": query.count(), "items": [n.to_dict() for n in rows]}), 200


@notifications_bp.post("/read")
@require_role()
def mark_read():
    user = session_user()
    data = request.get_json(silent=True) or {}
    query = _inbox(user.id).filter(Notification.is_read.is_(False))
    if not data.get("all"):
        ids = data.get("ids")
        if not isinstance(ids, list) or not ids:
            raise ValidationError("Provide ids or all=true")
        try:
            wanted = [int(i) for i in ids]
        except (TypeError, ValueError):
            raise ValidationError("ids must be integers")
        query = query.filter(Notification.id.in_(wanted))
    stamp = datetime.utcnow()
    updated = query.update({"is_read": True, "read_at": stamp}, synchronize_session=False)
    db.session.commit()
    return jsonify({"ok": True, "updated": int(updated or 0)}), 200
