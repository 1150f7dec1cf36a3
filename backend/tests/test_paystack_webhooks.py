from __future__ import annotations

import hashlib
import hmac
import json
import unittest

from kiosk.extensions import db
from kiosk.models import Notification, Order, PayoutAttempt, VendorPayout, WebhookEvent
from kiosk_fixtures import KioskApiTestCase

SECRET = "sk_test_kiosk_webhooks"


def _sign(raw: bytes) -> str:
    return hmac.new(SECRET.encode("utf-8"), raw, hashlib.sha512).hexdigest()


class PaystackWebhookTestCase(KioskApiTestCase):
    ENV = {"PAYSTACK_SECRET_KEY": SECRET}

    def setUp(self):
        super().setUp()
        self.vendor = self.make_user("vendor", phone_verified=True)
        self.buyer = self.make_user("buyer")

    def _post(self, payload: dict, *, signature: str | None = None):
        raw = json.dumps(payload).encode("utf-8")
        sig = _sign(raw) if signature is None else signature
        return self.app.test_client().post(
            "/api/webhooks/paystack",
            data=raw,
            content_type="application/json",
            headers={"X-Paystack-Signature": sig},
        )

    def _pending_order(self, reference: str, total: float = 80.0) -> int:
        return self.make_order(
            self.buyer["id"],
            self.vendor["id"],
            status="created",
            payment_status="pending",
            total=total,
            payment_reference=reference,
        )

    def _seed_payout(self, reference: str, *, stale_reference: str | None = None) -> int:
        account_id = self.make_bank_account(self.vendor["id"])
        with self.app.app_context():
            payout = VendorPayout(
                vendor_id=self.vendor["id"],
                bank_account_id=account_id,
                reference=reference,
                amount=120.0,
                currency="GHS",
                status="processing",
            )
            db.session.add(payout)
            db.session.flush()
            if stale_reference:
                db.session.add(PayoutAttempt(payout_id=int(payout.id), reference=stale_reference, status="failed"))
            db.session.add(PayoutAttempt(payout_id=int(payout.id), reference=reference, status="processing"))
            db.session.commit()
            return int(payout.id)

    def test_bad_signature_is_rejected_before_processing(self):
        order_id = self._pending_order("KIOSK-WH-SIG")
        res = self._post(
            {"event": "charge.success", "id": 70001, "data": {"reference": "KIOSK-WH-SIG", "amount": 8000}},
            signature="deadbeef",
        )
        self.assertEqual(res.status_code, 401)
        self.assertEqual((res.get_json() or {}).get("error"), "INVALID_SIGNATURE")
        with self.app.app_context():
            self.assertEqual(db.session.get(Order, order_id).payment_status, "pending")
            self.assertEqual(WebhookEvent.query.filter_by(reference="KIOSK-WH-SIG").count(), 0)

    def test_charge_success_marks_order_paid_once(self):
        order_id = self._pending_order("KIOSK-WH-PAID")
        payload = {"event": "charge.success", "id": 70002, "data": {"reference": "KIOSK-WH-PAID", "amount": 8000}}

        res = self._post(payload)
        self.assertEqual(res.status_code, 200, res.get_json())
        self.assertEqual((res.get_json() or {}).get("purpose"), "order")

        res = self._post(payload)
        self.assertEqual(res.status_code, 200)
        self.assertTrue((res.get_json() or {}).get("replayed"))

        with self.app.app_context():
            order = db.session.get(Order, order_id)
            self.assertEqual(order.payment_status, "paid")
            self.assertEqual(order.status, "confirmed")
            self.assertIsNotNone(order.paid_at)
            self.assertEqual(WebhookEvent.query.filter_by(reference="KIOSK-WH-PAID").count(), 1)
            self.assertEqual(Notification.query.filter_by(user_id=self.vendor["id"], kind="order_received").count(), 1)

    def test_amount_within_one_minor_unit_is_accepted(self):
        order_id = self._pending_order("KIOSK-WH-TOL")
        res = self._post({"event": "charge.success", "id": 70003, "data": {"reference": "KIOSK-WH-TOL", "amount": 8001}})
        self.assertEqual(res.status_code, 200)
        with self.app.app_context():
            self.assertEqual(db.session.get(Order, order_id).payment_status, "paid")

    def test_amount_mismatch_leaves_order_unpaid(self):
        order_id = self._pending_order("KIOSK-WH-SHORT")
        res = self._post({"event": "charge.success", "id": 70004, "data": {"reference": "KIOSK-WH-SHORT", "amount": 7000}})
        self.assertEqual(res.status_code, 200)
        body = res.get_json() or {}
        self.assertFalse(body.get("ok"))
        self.assertEqual(body.get("error"), "AMOUNT_MISMATCH")
        with self.app.app_context():
            order = db.session.get(Order, order_id)
            self.assertEqual(order.payment_status, "pending")
            self.assertEqual(order.status, "created")
            row = WebhookEvent.query.filter_by(reference="KIOSK-WH-SHORT").one()
            self.assertEqual(row.status, "failed")

    def test_unknown_reference_and_event_are_ignored(self):
        res = self._post({"event": "charge.success", "id": 70005, "data": {"reference": "NOPE", "amount": 100}})
        self.assertTrue((res.get_json() or {}).get("ignored"))
        res = self._post({"event": "subscription.create", "data": {"reference": "x"}})
        self.assertTrue((res.get_json() or {}).get("ignored"))
        res = self._post({"data": {}})
        self.assertEqual(res.status_code, 400)

    def test_transfer_success_completes_current_attempt(self):
        payout_id = self._seed_payout("PO-WH-CURRENT")
        res = self._post({"event": "transfer.success", "data": {"reference": "PO-WH-CURRENT", "amount": 12000, "status": "success"}})
        self.assertEqual(res.status_code, 200, res.get_json())
        self.assertTrue((res.get_json() or {}).get("applied"))
        with self.app.app_context():
            payout = db.session.get(VendorPayout, payout_id)
            self.assertEqual(payout.status, "completed")
            self.assertIsNotNone(payout.completed_at)
            self.assertIsNotNone(Notification.query.filter_by(user_id=self.vendor["id"], kind="payout_completed").first())

    def test_event_for_superseded_attempt_does_not_move_payout(self):
        payout_id = self._seed_payout("PO-RETRY-WH-NEW", stale_reference="PO-WH-OLD")
        res = self._post({"event": "transfer.failed", "data": {"reference": "PO-WH-OLD", "amount": 12000, "status": "failed"}})
        self.assertEqual(res.status_code, 200)
        self.assertFalse((res.get_json() or {}).get("applied"))
        with self.app.app_context():
            self.assertEqual(db.session.get(VendorPayout, payout_id).status, "processing")

    def test_transfer_failed_records_reason(self):
        payout_id = self._seed_payout("PO-WH-FAIL")
        res = self._post(
            {"event": "transfer.failed", "data": {"reference": "PO-WH-FAIL", "amount": 12000, "status": "failed", "reason": "Account closed"}}
        )
        self.assertTrue((res.get_json() or {}).get("applied"))
        with self.app.app_context():
            payout = db.session.get(VendorPayout, payout_id)
            self.assertEqual(payout.status, "failed")
            self.assertEqual(payout.failure_reason, "Account closed")


if __name__ == "__main__":
    unittest.main()
