from __future__ import annotations

from flask import Blueprint, jsonify, request

from kiosk.services import bank_account_service
from kiosk.utils.auth import Role, require_role, session_user

bank_accounts_bp = Blueprint("bank_accounts_bp", __name__, url_prefix="/api/vendor")


@bank_accounts_bp.get("/bank-accounts")
@require_role(Role.VENDOR)
def list_bank_accounts():
    vendor = session_user()
    rows = bank_account_service.active_accounts(vendor.id)
    return jsonify({"ok": True, "accounts": [a.to_dict() for a in rows]}), 200


@bank_accounts_bp.post("/bank-accounts")
@require_role(Role.VENDOR)
def add_bank_account():
    vendor = session_user()
    account, registered = bank_account_service.add_account(vendor, request.get_json(silent=True) or {})
    message = "Account added" if registered else "Account added; provider verification pending"
    return jsonify({"ok": True, "message": message, "account": account.to_dict(), "verified": registered}), 201


@bank_accounts_bp.patch("/bank-accounts/<int:account_id>")
@require_role(Role.VENDOR)
def update_bank_account(account_id: int):
    vendor = session_user()
    data = request.get_json(silent=True) or {}
    account = bank_account_service.update_account(vendor, account_id, data.get("action") or "")
    return jsonify({"ok": True, "account": account.to_dict()}), 200


@bank_accounts_bp.delete("/bank-accounts/<int:account_id>")
@require_role(Role.VENDOR)
def delete_bank_account(account_id: int):
    vendor = session_user()
    bank_account_service.remove_account(vendor, account_id)
    return jsonify({"ok": True, "message": "Account removed"}), 200


@bank_accounts_bp.get("/banks")
@require_role(Role.VENDOR)
def list_banks():
    kind = (request.args.get("type") or "bank").strip().lower()
    return jsonify({"ok": True, "type": kind, "banks": bank_account_service.list_banks(kind)}), 200
