from __future__ import annotations

from flask import Blueprint, jsonify, request

from kiosk.models import AuditLog
from kiosk.utils.auth import Role, require_role
from kiosk.utils.errors import ValidationError

audit_bp = Blueprint("audit_bp", __name__, url_prefix="/api/admin/audit-logs")


@audit_bp.get("")
@require_role(Role.ADMIN)
def list_audit_logs():
    try:
        limit = max(1, min(int(request.args.get("limit") or 100), 500))
        offset = max(0, int(request.args.get("offset") or 0))
    except ValueError:
        raise ValidationError("limit and offset must be integers")
    query = AuditLog.query
    action = (request.args.get("action") or "").strip()
    if action:
        query = query.filter(AuditLog.action == action)
    target_type = (request.args.get("target_type") or "").strip()
    if target_type:
        query = query.filter(AuditLog.target_type == target_type)
    total = query.count()
    rows = query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).offset(offset).limit(limit).all()
    return jsonify({"ok": True, "items": [r.to_dict() for r in rows], "total": total}), 200
