from __future__ import annotations

import unittest

from kiosk_fixtures import KioskApiTestCase


class CatalogTestCase(KioskApiTestCase):
    def setUp(self):
        super().setUp()
        self.vendor = self.make_user("vendor")

    def test_vendor_creates_and_edits_product(self):
        client, headers = self.login_as(self.vendor)
        res = client.post(
            "/api/vendor/products",
            json={"name": "Shea Butter Jar", "price": "18.5", "stock": 12, "category": "beauty"},
            headers=headers,
        )
        self.assertEqual(res.status_code, 201, res.get_json())
        product = (res.get_json() or {}).get("product") or {}
        self.assertEqual(product.get("price"), 18.5)
        self.assertTrue(product.get("is_active"))

        res = client.patch(f"/api/vendor/products/{product['id']}", json={"stock": 4}, headers=headers)
        self.assertEqual(res.status_code, 200, res.get_json())
        self.assertEqual(((res.get_json() or {}).get("product") or {}).get("stock"), 4)

        mine = (client.get("/api/vendor/products").get_json() or {}).get("items") or []
        self.assertIn(product["id"], [p["id"] for p in mine])

    def test_invalid_fields_are_rejected(self):
        client, headers = self.login_as(self.vendor)
        for payload in (
            {"name": "x", "price": 10},
            {"name": "Drum", "price": 0},
            {"name": "Drum", "price": 10, "stock": -1},
            {"name": "Drum", "price": "ten"},
        ):
            res = client.post("/api/vendor/products", json=payload, headers=headers)
            self.assertEqual(res.status_code, 400, payload)
        product_id = self.make_product(self.vendor["id"])
        res = client.patch(f"/api/vendor/products/{product_id}", json={}, headers=headers)
        self.assertEqual(res.status_code, 400)

    def test_other_vendor_cannot_edit(self):
        product_id = self.make_product(self.vendor["id"])
        other = self.make_user("vendor")
        client, headers = self.login_as(other)
        res = client.patch(f"/api/vendor/products/{product_id}", json={"stock": 1}, headers=headers)
        self.assertEqual(res.status_code, 404)

    def test_public_listing_hides_inactive_products(self):
        visible = self.make_product(self.vendor["id"], name="Adinkra Print Tote")
        hidden = self.make_product(self.vendor["id"], name="Adinkra Print Cap")
        client, headers = self.login_as(self.vendor)
        client.patch(f"/api/vendor/products/{hidden}", json={"is_active": False}, headers=headers)

        public = self.app.test_client()
        body = public.get("/api/products?q=adinkra print").get_json() or {}
        ids = [p["id"] for p in body.get("items") or []]
        self.assertIn(visible, ids)
        self.assertNotIn(hidden, ids)
        self.assertEqual(public.get(f"/api/products/{hidden}").status_code, 404)
        self.assertEqual(public.get(f"/api/products/{visible}").status_code, 200)
        self.assertEqual(public.get("/api/products?limit=abc").status_code, 400)

    def test_buyer_cannot_manage_products(self):
        buyer = self.make_user("buyer")
        client, headers = self.login_as(buyer)
        res = client.post("/api/vendor/products", json={"name": "Drum", "price": 10}, headers=headers)
        self.assertEqual(res.status_code, 403)


if __name__ == "__main__":
    unittest.main()
