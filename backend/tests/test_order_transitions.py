from __future__ import annotations

import unittest

from kiosk.extensions import db
from kiosk.models import AuditLog, Order, OrderEvent, Product
from kiosk.services.order_service import Actor, OrderStatus, transition_rejection
from kiosk_fixtures import KioskApiTestCase


class TransitionRulesTestCase(unittest.TestCase):
    def test_system_confirms_and_completes_only(self):
        self.assertIsNone(transition_rejection(OrderStatus.CREATED, OrderStatus.CONFIRMED, Actor.SYSTEM))
        self.assertIsNone(transition_rejection(OrderStatus.DELIVERED, OrderStatus.COMPLETED, Actor.SYSTEM))
        self.assertIsNotNone(transition_rejection(OrderStatus.CREATED, OrderStatus.CANCELLED, Actor.SYSTEM))

    def test_vendor_drives_fulfilment_but_cannot_confirm(self):
        self.assertIsNotNone(transition_rejection(OrderStatus.CREATED, OrderStatus.CONFIRMED, Actor.VENDOR))
        self.assertIsNone(transition_rejection(OrderStatus.CONFIRMED, OrderStatus.PREPARING, Actor.VENDOR))
        self.assertIsNone(transition_rejection(OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERY_FAILED, Actor.VENDOR))
        self.assertIsNotNone(transition_rejection(OrderStatus.DELIVERED, OrderStatus.COMPLETED, Actor.VENDOR))

    def test_buyer_cancels_early_and_disputes_after_delivery(self):
        self.assertIsNone(transition_rejection(OrderStatus.CREATED, OrderStatus.CANCELLED, Actor.BUYER))
        self.assertIsNone(transition_rejection(OrderStatus.DELIVERED, OrderStatus.DISPUTED, Actor.BUYER))
        self.assertIsNotNone(transition_rejection(OrderStatus.CONFIRMED, OrderStatus.CANCELLED, Actor.BUYER))

    def test_admin_follows_table_and_terminal_states_are_final(self):
        self.assertIsNone(transition_rejection(OrderStatus.DISPUTED, OrderStatus.CANCELLED, Actor.ADMIN))
        self.assertIsNotNone(transition_rejection(OrderStatus.CREATED, OrderStatus.DELIVERED, Actor.ADMIN))
        for target in OrderStatus:
            self.assertIsNotNone(transition_rejection(OrderStatus.COMPLETED, target, Actor.ADMIN))
            self.assertIsNotNone(transition_rejection(OrderStatus.CANCELLED, target, Actor.ADMIN))

    def test_unknown_current_status_is_refused(self):
        self.assertIsNotNone(transition_rejection(None, OrderStatus.CONFIRMED, Actor.ADMIN))

    def test_legacy_status_names_parse(self):
        self.assertIs(OrderStatus.parse("fulfilled"), OrderStatus.DELIVERED)
        self.assertIs(OrderStatus.parse("pending_payment"), OrderStatus.CREATED)
        self.assertIsNone(OrderStatus.parse("teleported"))


class OrderStatusApiTestCase(KioskApiTestCase):
    def setUp(self):
        super().setUp()
        self.vendor = self.make_user("vendor")
        self.buyer = self.make_user("buyer")

    def _checkout(self, client, headers, product_id: int, quantity: int = 1) -> dict:
        res = client.post("/api/orders", json={"items": [{"product_id": product_id, "quantity": quantity}]}, headers=headers)
        self.assertEqual(res.status_code, 201, res.get_json())
        return (res.get_json() or {}).get("order") or {}

    def test_buyer_cancel_restores_stock_and_records_event(self):
        product_id = self.make_product(self.vendor["id"], stock=4)
        client, headers = self.login_as(self.buyer)
        order = self._checkout(client, headers, product_id, quantity=3)

        res = client.post(f"/api/orders/{order['id']}/status", json={"status": "cancelled"}, headers=headers)
        self.assertEqual(res.status_code, 200, res.get_json())
        self.assertEqual(((res.get_json() or {}).get("order") or {}).get("status"), "cancelled")

        with self.app.app_context():
            self.assertEqual(int(db.session.get(Product, product_id).stock), 4)
            event = OrderEvent.query.filter_by(order_id=order["id"], to_status="cancelled").first()
            self.assertIsNotNone(event)
            self.assertEqual(event.actor_role, "buyer")
            self.assertIsNotNone(db.session.get(Order, order["id"]).cancelled_at)

    def test_rejected_transition_is_conflict_and_audited(self):
        product_id = self.make_product(self.vendor["id"])
        client, headers = self.login_as(self.buyer)
        order = self._checkout(client, headers, product_id)

        res = client.post(f"/api/orders/{order['id']}/status", json={"status": "completed"}, headers=headers)
        self.assertEqual(res.status_code, 409)
        body = res.get_json() or {}
        self.assertEqual(body.get("error"), "INVALID_TRANSITION")
        self.assertEqual(body.get("currentStatus"), "created")
        self.assertEqual(body.get("attemptedStatus"), "completed")

        with self.app.app_context():
            row = AuditLog.query.filter_by(action="order.transition_rejected", target_id=str(order["id"])).first()
            self.assertIsNotNone(row)
            self.assertEqual(db.session.get(Order, order["id"]).status, "created")

    def test_buyer_cannot_dispute_through_status_endpoint(self):
        order_id = self.make_order(self.buyer["id"], self.vendor["id"], status="delivered", delivered_hours_ago=1)
        client, headers = self.login_as(self.buyer)
        res = client.post(f"/api/orders/{order_id}/status", json={"status": "disputed"}, headers=headers)
        self.assertEqual(res.status_code, 400)

    def test_other_buyer_cannot_see_order(self):
        order_id = self.make_order(self.buyer["id"], self.vendor["id"])
        stranger = self.make_user("buyer")
        client, _headers = self.login_as(stranger)
        self.assertEqual(client.get(f"/api/orders/{order_id}").status_code, 404)

    def test_fulfilment_rolls_order_up_to_delivered(self):
        order_id = self.make_order(self.buyer["id"], self.vendor["id"], status="confirmed", delivered_hours_ago=None)
        with self.app.app_context():
            item_id = int(db.session.get(Order, order_id).items[0].id)
        client, headers = self.login_as(self.vendor)
        url = f"/api/vendor/orders/{order_id}/items/{item_id}/fulfillment"

        res = client.post(url, json={"status": "packed"}, headers=headers)
        self.assertEqual(res.status_code, 200, res.get_json())
        self.assertEqual(((res.get_json() or {}).get("order") or {}).get("status"), "preparing")

        res = client.post(url, json={"status": "handed_to_courier"}, headers=headers)
        self.assertEqual(((res.get_json() or {}).get("order") or {}).get("status"), "out_for_delivery")

        res = client.post(url, json={"status": "delivered"}, headers=headers)
        order = (res.get_json() or {}).get("order") or {}
        self.assertEqual(order.get("status"), "delivered")
        self.assertTrue(order.get("delivered_at"))

        res = client.post(url, json={"status": "packed"}, headers=headers)
        self.assertEqual(res.status_code, 400)
        self.assertEqual((res.get_json() or {}).get("error"), "ORDER_NOT_FULFILLABLE")

    def test_other_vendor_cannot_fulfil_line(self):
        order_id = self.make_order(self.buyer["id"], self.vendor["id"], status="confirmed")
        with self.app.app_context():
            item_id = int(db.session.get(Order, order_id).items[0].id)
        other = self.make_user("vendor")
        client, headers = self.login_as(other)
        res = client.post(f"/api/vendor/orders/{order_id}/items/{item_id}/fulfillment", json={"status": "packed"}, headers=headers)
        self.assertEqual(res.status_code, 404)


if __name__ == "__main__":
    unittest.main()
