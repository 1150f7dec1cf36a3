from __future__ import annotations

import os
import unittest
from types import SimpleNamespace
from unittest.mock import patch

from kiosk.extensions import db
from kiosk.models import Product
from kiosk.utils.commission import (
    default_commission_rate,
    money_major_to_minor,
    money_minor_to_major,
    rate_to_bps,
    resolve_commission_rate,
    split_line_minor,
)
from kiosk_fixtures import KioskApiTestCase


class CommissionMinorUnitsTestCase(unittest.TestCase):
    def test_major_minor_conversion_rounds_half_up(self):
        self.assertEqual(money_major_to_minor(19.99), 1999)
        self.assertEqual(money_major_to_minor("0.005"), 1)
        self.assertEqual(money_major_to_minor(None), 0)
        self.assertEqual(money_major_to_minor(-5), 0)
        self.assertEqual(money_minor_to_major(1999), 19.99)

    def test_rate_to_bps_is_clamped(self):
        self.assertEqual(rate_to_bps(0.08), 800)
        self.assertEqual(rate_to_bps(1.5), 10000)
        self.assertEqual(rate_to_bps(-0.2), 0)

    def test_split_keeps_every_minor_unit(self):
        fee, earnings = split_line_minor(10000, 0.08)
        self.assertEqual((fee, earnings), (800, 9200))
        fee, earnings = split_line_minor(1005, 0.08)
        self.assertEqual(fee, 80)
        self.assertEqual(fee + earnings, 1005)
        self.assertEqual(split_line_minor(0, 0.08), (0, 0))

    def test_vendor_override_wins_over_default(self):
        self.assertEqual(resolve_commission_rate(SimpleNamespace(commission_rate=0.05)), 0.05)
        self.assertEqual(resolve_commission_rate(SimpleNamespace(commission_rate=None)), default_commission_rate())
        self.assertEqual(resolve_commission_rate(SimpleNamespace(commission_rate=1.2)), default_commission_rate())

    def test_default_rate_from_env_falls_back_when_invalid(self):
        with patch.dict(os.environ, {"DEFAULT_COMMISSION_RATE": "0.12"}):
            self.assertEqual(default_commission_rate(), 0.12)
        with patch.dict(os.environ, {"DEFAULT_COMMISSION_RATE": "abc"}):
            self.assertEqual(default_commission_rate(), 0.08)
        with patch.dict(os.environ, {"DEFAULT_COMMISSION_RATE": "1.0"}):
            self.assertEqual(default_commission_rate(), 0.08)


class CheckoutCommissionSnapshotTestCase(KioskApiTestCase):
    def test_checkout_snapshots_commission_and_reserves_stock(self):
        vendor = self.make_user("vendor", commission_rate=0.10)
        buyer = self.make_user("buyer")
        product_id = self.make_product(vendor["id"], price=25.0, stock=5)
        client, headers = self.login_as(buyer)

        res = client.post(
            "/api/orders",
            json={"items": [{"product_id": product_id, "quantity": 2}], "shipping_address": "12 Oxford St, Osu"},
            headers=headers,
        )
        self.assertEqual(res.status_code, 201, res.get_json())
        body = res.get_json() or {}
        order = body.get("order") or {}
        self.assertEqual(order.get("status"), "created")
        self.assertEqual(order.get("payment_status"), "pending")
        self.assertEqual(order.get("total"), 50.0)
        self.assertTrue((body.get("payment") or {}).get("authorization_url"))

        item = (order.get("items") or [{}])[0]
        self.assertEqual(item.get("commission_rate"), 0.10)
        self.assertEqual(item.get("platform_fee"), 5.0)
        self.assertEqual(item.get("vendor_earnings"), 45.0)

        with self.app.app_context():
            self.assertEqual(int(db.session.get(Product, product_id).stock), 3)

    def test_checkout_rejects_insufficient_stock_and_own_products(self):
        vendor = self.make_user("vendor")
        buyer = self.make_user("buyer")
        product_id = self.make_product(vendor["id"], price=10.0, stock=1)
        client, headers = self.login_as(buyer)

        res = client.post("/api/orders", json={"items": [{"product_id": product_id, "quantity": 2}]}, headers=headers)
        self.assertEqual(res.status_code, 400)
        self.assertEqual((res.get_json() or {}).get("error"), "INSUFFICIENT_STOCK")

        res = client.post("/api/orders", json={"items": []}, headers=headers)
        self.assertEqual(res.status_code, 400)
        self.assertEqual((res.get_json() or {}).get("error"), "VALIDATION")

    def test_vendor_cannot_check_out(self):
        vendor = self.make_user("vendor")
        product_id = self.make_product(vendor["id"])
        client, headers = self.login_as(vendor)
        res = client.post("/api/orders", json={"items": [{"product_id": product_id}]}, headers=headers)
        self.assertEqual(res.status_code, 403)


if __name__ == "__main__":
    unittest.main()
