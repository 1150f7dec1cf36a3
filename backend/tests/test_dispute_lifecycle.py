from __future__ import annotations

import os
import unittest
from datetime import datetime, timedelta
from unittest.mock import patch

from kiosk.extensions import db
from kiosk.models import Dispute, Notification, Order
from kiosk.services.dispute_service import within_dispute_window
from kiosk_fixtures import KioskApiTestCase

DESCRIPTION = "The scarf arrived torn along the seam and the colour is wrong."


class DisputeWindowTestCase(unittest.TestCase):
    def test_window_edges(self):
        now = datetime(2026, 3, 1, 12, 0, 0)
        inside = Order(delivered_at=now - timedelta(hours=47, minutes=59))
        edge = Order(delivered_at=now - timedelta(hours=48))
        outside = Order(delivered_at=now - timedelta(hours=48, minutes=1))
        with patch.dict(os.environ, {"DISPUTE_WINDOW_HOURS": "48"}):
            self.assertTrue(within_dispute_window(inside, now=now))
            self.assertTrue(within_dispute_window(edge, now=now))
            self.assertFalse(within_dispute_window(outside, now=now))


class DisputeLifecycleTestCase(KioskApiTestCase):
    def setUp(self):
        super().setUp()
        self.vendor = self.make_user("vendor", store_name="Osu Threads")
        self.buyer = self.make_user("buyer")
        self.admin = self.make_user("admin")

    def _open(self, client, headers, order_id: int, **extra):
        payload = {"orderId": order_id, "type": "quality", "description": DESCRIPTION}
        payload.update(extra)
        return client.post("/api/buyer/disputes/create", json=payload, headers=headers)

    def test_dispute_just_inside_window_is_accepted(self):
        order_id = self.make_order(self.buyer["id"], self.vendor["id"], delivered_hours_ago=47.99)
        client, headers = self.login_as(self.buyer)
        res = self._open(client, headers, order_id)
        self.assertEqual(res.status_code, 201, res.get_json())
        dispute = (res.get_json() or {}).get("dispute") or {}
        self.assertEqual(dispute.get("status"), "open")
        self.assertEqual(dispute.get("vendor_id"), self.vendor["id"])

        with self.app.app_context():
            order = db.session.get(Order, order_id)
            self.assertEqual(order.status, "disputed")
            self.assertEqual(order.dispute_reason, DESCRIPTION)
            notice = Notification.query.filter_by(user_id=self.vendor["id"], kind="dispute_opened").first()
            self.assertIsNotNone(notice)

    def test_dispute_just_outside_window_is_rejected(self):
        order_id = self.make_order(self.buyer["id"], self.vendor["id"], delivered_hours_ago=48.01)
        client, headers = self.login_as(self.buyer)
        res = self._open(client, headers, order_id)
        self.assertEqual(res.status_code, 400)
        body = res.get_json() or {}
        self.assertEqual(body.get("error"), "DISPUTE_WINDOW_CLOSED")
        self.assertGreater(float(body.get("hoursSinceDelivery") or 0), 48.0)

    def test_only_one_active_dispute_per_order(self):
        order_id = self.make_order(self.buyer["id"], self.vendor["id"], delivered_hours_ago=2)
        client, headers = self.login_as(self.buyer)
        self.assertEqual(self._open(client, headers, order_id).status_code, 201)
        res = self._open(client, headers, order_id, type="delivery")
        self.assertEqual(res.status_code, 400)
        self.assertEqual((res.get_json() or {}).get("error"), "DISPUTE_EXISTS")
        with self.app.app_context():
            self.assertEqual(Dispute.query.filter_by(order_id=order_id).count(), 1)

    def test_undelivered_and_foreign_orders_are_refused(self):
        pending = self.make_order(self.buyer["id"], self.vendor["id"], status="confirmed")
        other_buyer = self.make_user("buyer")
        foreign = self.make_order(other_buyer["id"], self.vendor["id"], delivered_hours_ago=1)
        client, headers = self.login_as(self.buyer)

        res = self._open(client, headers, pending)
        self.assertEqual((res.get_json() or {}).get("error"), "ORDER_NOT_DELIVERED")
        self.assertEqual(self._open(client, headers, foreign).status_code, 403)
        res = self._open(client, headers, pending, description="too short")
        self.assertEqual(res.status_code, 400)
        self.assertEqual((res.get_json() or {}).get("error"), "VALIDATION")

    def test_fraud_disputes_start_urgent(self):
        order_id = self.make_order(self.buyer["id"], self.vendor["id"], delivered_hours_ago=3)
        client, headers = self.login_as(self.buyer)
        res = self._open(client, headers, order_id, type="fraud")
        self.assertEqual(((res.get_json() or {}).get("dispute") or {}).get("priority"), "urgent")

    def test_vendor_reply_notifies_buyer_and_closed_thread_is_read_only(self):
        order_id = self.make_order(self.buyer["id"], self.vendor["id"], delivered_hours_ago=5)
        buyer_client, buyer_headers = self.login_as(self.buyer)
        dispute_id = ((self._open(buyer_client, buyer_headers, order_id).get_json() or {}).get("dispute") or {})["id"]

        vendor_client, vendor_headers = self.login_as(self.vendor)
        res = vendor_client.post(
            f"/api/vendor/disputes/{dispute_id}/message",
            json={"message": "Sorry about that, we can send a replacement today."},
            headers=vendor_headers,
        )
        self.assertEqual(res.status_code, 200, res.get_json())
        messages = ((res.get_json() or {}).get("dispute") or {}).get("messages") or []
        self.assertEqual(messages[-1].get("senderRole"), "vendor")
        self.assertEqual(messages[-1].get("senderName"), "Osu Threads")

        admin_client, admin_headers = self.login_as(self.admin)
        res = admin_client.post(f"/api/admin/disputes/{dispute_id}", json={"action": "close", "reason": "settled"}, headers=admin_headers)
        self.assertEqual(res.status_code, 200, res.get_json())

        res = buyer_client.post(
            f"/api/buyer/disputes/{dispute_id}/message",
            json={"message": "Any update on this?"},
            headers=buyer_headers,
        )
        self.assertEqual(res.status_code, 400)
        self.assertEqual((res.get_json() or {}).get("error"), "DISPUTE_CLOSED")

        with self.app.app_context():
            self.assertIsNotNone(Notification.query.filter_by(user_id=self.buyer["id"], kind="dispute_message").first())

    def test_full_refund_resolution_cancels_order_and_refunds_once(self):
        order_id = self.make_order(self.buyer["id"], self.vendor["id"], delivered_hours_ago=4, total=80.0)
        buyer_client, buyer_headers = self.login_as(self.buyer)
        dispute_id = ((self._open(buyer_client, buyer_headers, order_id).get_json() or {}).get("dispute") or {})["id"]

        admin_client, admin_headers = self.login_as(self.admin)
        res = admin_client.post(
            f"/api/admin/disputes/{dispute_id}",
            json={"action": "resolve", "resolutionType": "full_refund", "resolution": "Item damaged in transit"},
            headers=admin_headers,
        )
        self.assertEqual(res.status_code, 200, res.get_json())
        dispute = (res.get_json() or {}).get("dispute") or {}
        self.assertEqual(dispute.get("status"), "resolved")
        self.assertEqual(dispute.get("refund_amount"), 80.0)

        res = admin_client.post(f"/api/admin/disputes/{dispute_id}/refund", json={}, headers=admin_headers)
        self.assertEqual(res.status_code, 200, res.get_json())
        refund = (res.get_json() or {}).get("refund") or {}
        self.assertEqual(refund.get("status"), "completed")
        self.assertTrue(refund.get("reference"))

        res = admin_client.post(f"/api/admin/disputes/{dispute_id}/refund", json={}, headers=admin_headers)
        self.assertEqual(res.status_code, 400)
        self.assertEqual((res.get_json() or {}).get("error"), "REFUND_COMPLETED")

        with self.app.app_context():
            order = db.session.get(Order, order_id)
            self.assertEqual(order.status, "cancelled")
            self.assertEqual(order.payment_status, "refunded")

    def test_refund_above_order_total_is_rejected(self):
        order_id = self.make_order(self.buyer["id"], self.vendor["id"], delivered_hours_ago=4, total=30.0)
        buyer_client, buyer_headers = self.login_as(self.buyer)
        dispute_id = ((self._open(buyer_client, buyer_headers, order_id).get_json() or {}).get("dispute") or {})["id"]
        admin_client, admin_headers = self.login_as(self.admin)
        res = admin_client.post(
            f"/api/admin/disputes/{dispute_id}",
            json={
                "action": "resolve",
                "resolutionType": "partial_refund",
                "resolution": "Partial credit",
                "refundAmount": 31.0,
            },
            headers=admin_headers,
        )
        self.assertEqual(res.status_code, 400)

    def test_no_action_resolution_completes_order_and_stats_count_it(self):
        order_id = self.make_order(self.buyer["id"], self.vendor["id"], delivered_hours_ago=4)
        buyer_client, buyer_headers = self.login_as(self.buyer)
        dispute_id = ((self._open(buyer_client, buyer_headers, order_id).get_json() or {}).get("dispute") or {})["id"]
        admin_client, admin_headers = self.login_as(self.admin)
        res = admin_client.post(
            f"/api/admin/disputes/{dispute_id}",
            json={"action": "resolve", "resolutionType": "no_action", "resolution": "Item matches listing"},
            headers=admin_headers,
        )
        self.assertEqual(res.status_code, 200, res.get_json())

        res = admin_client.post(f"/api/admin/disputes/{dispute_id}/refund", json={}, headers=admin_headers)
        self.assertEqual(res.status_code, 400)

        stats = (admin_client.get("/api/admin/disputes/stats").get_json() or {}).get("stats") or {}
        self.assertGreaterEqual(int(stats.get("resolved") or 0), 1)
        with self.app.app_context():
            self.assertEqual(db.session.get(Order, order_id).status, "completed")


if __name__ == "__main__":
    unittest.main()
