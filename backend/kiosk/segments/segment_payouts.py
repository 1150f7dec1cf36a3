from __future__ import annotations

from flask import Blueprint, jsonify, request

from kiosk.extensions import db
from kiosk.services import payout_service
from kiosk.services.bank_account_service import active_accounts
from kiosk.services.otp_service import PAYOUT_TOKEN_TTL_MINUTES, OtpPurpose, issue_payout_token, request_otp, verify_otp
from kiosk.utils.audit import record_audit
from kiosk.utils.auth import Role, require_role, session_user
from kiosk.utils.errors import ValidationError
from kiosk.utils.rate_limit import rate_limit

vendor_payouts_bp = Blueprint("vendor_payouts_bp", __name__, url_prefix="/api/vendor/payouts")
admin_payouts_bp = Blueprint("admin_payouts_bp", __name__, url_prefix="/api/admin/payouts")

_VIEW_TYPES = ("balance", "history", "all")


@vendor_payouts_bp.get("")
@require_role(Role.VENDOR)
def vendor_payouts():
    vendor = session_user()
    view = (request.args.get("type") or "all").strip().lower()
    if view not in _VIEW_TYPES:
        raise ValidationError("type must be balance, history or all")

    body: dict = {"ok": True}
    if view in ("balance", "all"):
        body["balance"] = payout_service.vendor_balance(vendor.id).to_dict()
    if view in ("history", "all"):
        body["payouts"] = [p.to_dict() for p in payout_service.vendor_payouts(vendor.id)]
    if view == "all":
        primary = next((a for a in active_accounts(vendor.id) if a.is_primary), None)
        body["primaryAccount"] = primary.to_dict() if primary is not None else None
        body["phoneVerified"] = bool(vendor.phone_verified)
    return jsonify(body), 200


@vendor_payouts_bp.post("")
@require_role(Role.VENDOR)
@rate_limit("payout_request", 60, 5, scope="user")
def vendor_request_payout():
    vendor = session_user()
    payout = payout_service.request_withdrawal(vendor, request.get_json(silent=True) or {})
    return jsonify({"ok": True, "message": "Withdrawal initiated", "payout": payout.to_dict()}), 201


@vendor_payouts_bp.post("/otp")
@require_role(Role.VENDOR)
def vendor_payout_otp():
    vendor = session_user()
    return jsonify({"ok": True, **request_otp(vendor, OtpPurpose.PAYOUT)}), 200


@vendor_payouts_bp.post("/otp/verify")
@require_role(Role.VENDOR)
def vendor_payout_otp_verify():
    vendor = session_user()
    data = request.get_json(silent=True) or {}
    verify_otp(vendor, OtpPurpose.PAYOUT, data.get("otp"))
    token, expires_at = issue_payout_token(vendor)
    record_audit(
        "payout.otp_verified",
        actor_user_id=int(vendor.id),
        actor_role=Role.VENDOR.value,
        target_type="user",
        target_id=vendor.id,
    )
    db.session.commit()
    return jsonify(
        {
            "ok": True,
            "message": "Verification successful",
            "payoutToken": token,
            "expiresIn": PAYOUT_TOKEN_TTL_MINUTES * 60,
            "expiresAt": expires_at.isoformat(),
        }
    ), 200


@admin_payouts_bp.get("")
@require_role(Role.ADMIN)
def admin_list_payouts():
    try:
        vendor_raw = (request.args.get("vendor_id") or request.args.get("vendorId") or "").strip()
        vendor_id = int(vendor_raw) if vendor_raw else None
        limit = int(request.args.get("limit") or 50)
        offset = int(request.args.get("offset") or 0)
    except ValueError:
        raise ValidationError("vendor_id, limit and offset must be integers")
    rows, total = payout_service.list_payouts(
        status=(request.args.get("status") or "").strip() or None,
        vendor_id=vendor_id,
        limit=limit,
        offset=offset,
    )
    return jsonify({"ok": True, "payouts": [p.to_dict() for p in rows], "total": total}), 200


@admin_payouts_bp.get("/stats")
@require_role(Role.ADMIN)
def admin_payout_stats():
    return jsonify({"ok": True, "stats": payout_service.payout_stats()}), 200


@admin_payouts_bp.get("/<int:payout_id>")
@require_role(Role.ADMIN)
def admin_get_payout(payout_id: int):
    payout = payout_service.get_payout(payout_id)
    return jsonify({"ok": True, "payout": payout.to_dict(include_attempts=True)}), 200


@admin_payouts_bp.post("/<int:payout_id>/cancel")
@require_role(Role.ADMIN)
def admin_cancel_payout(payout_id: int):
    admin = session_user()
    payout = payout_service.cancel_payout(payout_service.get_payout(payout_id), admin)
    return jsonify({"ok": True, "message": "Payout cancelled", "payout": payout.to_dict()}), 200


@admin_payouts_bp.post("/<int:payout_id>/retry")
@require_role(Role.ADMIN)
def admin_retry_payout(payout_id: int):
    admin = session_user()
    payout = payout_service.retry_payout(payout_service.get_payout(payout_id), admin)
    return jsonify(
        {
            "ok": True,
            "message": "Payout retry initiated",
            "reference": payout.reference,
            "payout": payout.to_dict(include_attempts=True),
        }
    ), 200


@admin_payouts_bp.post("/<int:payout_id>/sync")
@require_role(Role.ADMIN)
def admin_sync_payout(payout_id: int):
    admin = session_user()
    payout = payout_service.get_payout(payout_id)
    result = payout_service.sync_payout(payout, admin)
    return jsonify({"ok": True, **result, "payout": payout.to_dict()}), 200
