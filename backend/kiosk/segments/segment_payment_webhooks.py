from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from kiosk.extensions import db
from kiosk.services.webhook_service import process_paystack_webhook

webhooks_bp = Blueprint("webhooks_bp", __name__, url_prefix="/api/webhooks")


@webhooks_bp.post("/paystack")
def paystack_webhook():
    raw = request.get_data() or b""
    signature = request.headers.get("X-Paystack-Signature")
    payload = request.get_json(silent=True)
    try:
        body, status = process_paystack_webhook(payload=payload, raw=raw, signature=signature)
    except Exception:
        # The provider retries on non-2xx, so processing faults are logged and acknowledged.
        db.session.rollback()
        current_app.logger.exception("paystack_webhook_processing_failed")
        return jsonify({"ok": False, "error": "WEBHOOK_PROCESSING_FAILED"}), 200
    return jsonify(body), status
