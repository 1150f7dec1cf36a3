from __future__ import annotations

from flask import Blueprint, jsonify, request

from kiosk.extensions import db
from kiosk.models import Order
from kiosk.services import dispute_service
from kiosk.utils.auth import Role, require_role, session_user
from kiosk.utils.errors import ValidationError

buyer_disputes_bp = Blueprint("buyer_disputes_bp", __name__, url_prefix="/api/buyer/disputes")
vendor_disputes_bp = Blueprint("vendor_disputes_bp", __name__, url_prefix="/api/vendor/disputes")
admin_disputes_bp = Blueprint("admin_disputes_bp", __name__, url_prefix="/api/admin/disputes")


def _with_order(dispute) -> dict:
    payload = dispute.to_dict()
    order = db.session.get(Order, int(dispute.order_id))
    payload["order"] = order.to_dict() if order is not None else None
    return payload


# Buyer


@buyer_disputes_bp.post("")
@buyer_disputes_bp.post("/create")
@require_role(Role.BUYER)
def buyer_create_dispute():
    buyer = session_user()
    dispute = dispute_service.create_dispute(buyer, request.get_json(silent=True) or {})
    return jsonify({"ok": True, "dispute": dispute.to_dict(), "message": "Dispute submitted successfully"}), 201


@buyer_disputes_bp.get("")
@require_role(Role.BUYER)
def buyer_list_disputes():
    buyer = session_user()
    rows = dispute_service.disputes_for_party(int(buyer.id), Role.BUYER)
    return jsonify({"ok": True, "disputes": [d.to_dict() for d in rows]}), 200


@buyer_disputes_bp.get("/<int:dispute_id>")
@require_role(Role.BUYER)
def buyer_get_dispute(dispute_id: int):
    buyer = session_user()
    dispute = dispute_service.dispute_for_party(dispute_id, int(buyer.id), Role.BUYER)
    return jsonify({"ok": True, "dispute": _with_order(dispute)}), 200


@buyer_disputes_bp.post("/<int:dispute_id>/message")
@require_role(Role.BUYER)
def buyer_dispute_message(dispute_id: int):
    buyer = session_user()
    dispute = dispute_service.dispute_for_party(dispute_id, int(buyer.id), Role.BUYER)
    data = request.get_json(silent=True) or {}
    dispute_service.add_party_message(dispute, buyer, Role.BUYER, data.get("message"))
    return jsonify({"ok": True, "dispute": dispute.to_dict()}), 200


# Vendor


@vendor_disputes_bp.get("")
@require_role(Role.VENDOR)
def vendor_list_disputes():
    vendor = session_user()
    rows = dispute_service.disputes_for_party(int(vendor.id), Role.VENDOR)
    return jsonify({"ok": True, "disputes": [d.to_dict() for d in rows]}), 200


@vendor_disputes_bp.get("/<int:dispute_id>")
@require_role(Role.VENDOR)
def vendor_get_dispute(dispute_id: int):
    vendor = session_user()
    dispute = dispute_service.dispute_for_party(dispute_id, int(vendor.id), Role.VENDOR)
    return jsonify({"ok": True, "dispute": _with_order(dispute)}), 200


@vendor_disputes_bp.post("/<int:dispute_id>/message")
@require_role(Role.VENDOR)
def vendor_dispute_message(dispute_id: int):
    vendor = session_user()
    dispute = dispute_service.dispute_for_party(dispute_id, int(vendor.id), Role.VENDOR)
    data = request.get_json(silent=True) or {}
    dispute_service.add_party_message(dispute, vendor, Role.VENDOR, data.get("message"))
    return jsonify({"ok": True, "dispute": dispute.to_dict()}), 200


# Admin


@admin_disputes_bp.get("")
@require_role(Role.ADMIN)
def admin_list_disputes():
    try:
        limit = int(request.args.get("limit") or 50)
        offset = int(request.args.get("offset") or 0)
    except ValueError:
        raise ValidationError("limit and offset must be integers")
    rows, total = dispute_service.list_disputes(
        status=(request.args.get("status") or "").strip() or None,
        priority=(request.args.get("priority") or "").strip() or None,
        limit=limit,
        offset=offset,
    )
    return jsonify({"ok": True, "disputes": [d.to_dict() for d in rows], "total": total}), 200


@admin_disputes_bp.get("/stats")
@require_role(Role.ADMIN)
def admin_dispute_stats():
    return jsonify({"ok": True, "stats": dispute_service.dispute_stats()}), 200


@admin_disputes_bp.get("/<int:dispute_id>")
@require_role(Role.ADMIN)
def admin_get_dispute(dispute_id: int):
    dispute = dispute_service.get_dispute(dispute_id)
    return jsonify({"ok": True, "dispute": _with_order(dispute)}), 200


@admin_disputes_bp.post("/<int:dispute_id>")
@require_role(Role.ADMIN)
def admin_dispute_action(dispute_id: int):
    admin = session_user()
    dispute = dispute_service.get_dispute(dispute_id)
    data = request.get_json(silent=True) or {}
    action = (data.get("action") or "").strip().lower()

    if action == "resolve":
        dispute_service.resolve_dispute(dispute, admin, data)
        message = "Dispute resolved"
    elif action == "escalate":
        dispute_service.escalate_dispute(dispute, admin, data.get("reason") or "")
        message = "Dispute escalated"
    elif action == "close":
        dispute_service.close_dispute(dispute, admin, data.get("reason") or "")
        message = "Dispute closed"
    elif action == "add_message":
        dispute_service.add_admin_message(dispute, admin, data.get("message"))
        message = "Message added"
    elif action == "assign":
        dispute_service.assign_dispute(dispute, admin, data.get("assigneeId") or data.get("assignee_id") or admin.id)
        message = "Dispute assigned"
    else:
        raise ValidationError("Invalid action")
    return jsonify({"ok": True, "message": message, "dispute": dispute.to_dict()}), 200


@admin_disputes_bp.patch("/<int:dispute_id>")
@require_role(Role.ADMIN)
def admin_update_dispute(dispute_id: int):
    admin = session_user()
    dispute = dispute_service.get_dispute(dispute_id)
    dispute_service.update_dispute(dispute, admin, request.get_json(silent=True) or {})
    return jsonify({"ok": True, "dispute": dispute.to_dict()}), 200


@admin_disputes_bp.post("/<int:dispute_id>/refund")
@require_role(Role.ADMIN)
def admin_process_refund(dispute_id: int):
    admin = session_user()
    dispute = dispute_service.get_dispute(dispute_id)
    result = dispute_service.process_refund(dispute, admin, request.get_json(silent=True) or {})
    return jsonify({"ok": True, "message": "Refund processed", "refund": result}), 200
