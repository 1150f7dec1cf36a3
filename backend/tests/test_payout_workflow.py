from __future__ import annotations

import os
import unittest
from unittest.mock import patch

from kiosk.extensions import db
from kiosk.models import AuditLog, Notification, PayoutAttempt, VendorPayout
from kiosk.services.payout_service import PayoutStatus, VendorBalance, provider_status
from kiosk_fixtures import KioskApiTestCase


class PayoutStatusRulesTestCase(unittest.TestCase):
    def test_provider_wording_maps_onto_payout_states(self):
        self.assertIs(provider_status("pending"), PayoutStatus.PROCESSING)
        self.assertIs(provider_status("otp"), PayoutStatus.PROCESSING)
        self.assertIs(provider_status("success"), PayoutStatus.COMPLETED)
        self.assertIs(provider_status("failed"), PayoutStatus.FAILED)
        self.assertIs(provider_status("reversed"), PayoutStatus.REVERSED)

    def test_available_balance_never_goes_negative(self):
        balance = VendorBalance(
            total_earnings_minor=10000,
            pending_earnings_minor=4000,
            withdrawn_minor=5000,
            pending_withdrawal_minor=3000,
        )
        self.assertEqual(balance.available_minor, 0)
        self.assertEqual(balance.to_dict()["available_balance"], 0.0)


class PayoutWorkflowTestCase(KioskApiTestCase):
    def setUp(self):
        super().setUp()
        self.vendor = self.make_user("vendor", phone_verified=True)
        self.buyer = self.make_user("buyer")
        self.admin = self.make_user("admin")
        self.make_order(self.buyer["id"], self.vendor["id"], status="completed", vendor_earnings=500.0, total=540.0)
        self.account_id = self.make_bank_account(self.vendor["id"])

    def _balance(self, client) -> dict:
        res = client.get("/api/vendor/payouts?type=balance")
        self.assertEqual(res.status_code, 200, res.get_json())
        return (res.get_json() or {}).get("balance") or {}

    def _withdraw(self, client, headers, amount):
        return client.post(
            "/api/vendor/payouts",
            json={"amount": amount, "bank_account_id": self.account_id},
            headers=headers,
        )

    def test_withdrawal_is_bounded_by_available_balance(self):
        client, headers = self.login_as(self.vendor)
        self.assertEqual(self._balance(client).get("available_balance"), 500.0)

        res = self._withdraw(client, headers, 500.01)
        self.assertEqual(res.status_code, 400)
        body = res.get_json() or {}
        self.assertEqual(body.get("error"), "INSUFFICIENT_BALANCE")
        self.assertEqual(body.get("available"), 500.0)

        res = self._withdraw(client, headers, 500.00)
        self.assertEqual(res.status_code, 201, res.get_json())
        payout = (res.get_json() or {}).get("payout") or {}
        self.assertEqual(payout.get("status"), "processing")
        self.assertTrue(payout.get("reference", "").startswith("PO-"))

        balance = self._balance(client)
        self.assertEqual(balance.get("available_balance"), 0.0)
        self.assertEqual(balance.get("pending_withdrawal"), 500.0)

        res = self._withdraw(client, headers, 50)
        self.assertEqual((res.get_json() or {}).get("error"), "INSUFFICIENT_BALANCE")

    def test_earnings_inside_dispute_window_are_held_back(self):
        self.make_order(self.buyer["id"], self.vendor["id"], status="delivered", vendor_earnings=120.0, delivered_hours_ago=3)
        client, _headers = self.login_as(self.vendor)
        balance = self._balance(client)
        self.assertEqual(balance.get("total_earnings"), 620.0)
        self.assertEqual(balance.get("pending_earnings"), 120.0)
        self.assertEqual(balance.get("available_balance"), 500.0)

    def test_request_validation(self):
        client, headers = self.login_as(self.vendor)
        res = self._withdraw(client, headers, 49.99)
        self.assertEqual((res.get_json() or {}).get("error"), "BELOW_MINIMUM")
        res = self._withdraw(client, headers, "100")
        self.assertEqual((res.get_json() or {}).get("error"), "VALIDATION")

        other_vendor = self.make_user("vendor", phone_verified=True)
        foreign_account = self.make_bank_account(other_vendor["id"])
        res = client.post("/api/vendor/payouts", json={"amount": 100, "bank_account_id": foreign_account}, headers=headers)
        self.assertEqual((res.get_json() or {}).get("error"), "INVALID_BANK_ACCOUNT")

        unverified = self.make_user("vendor")
        client2, headers2 = self.login_as(unverified)
        res = client2.post("/api/vendor/payouts", json={"amount": 100, "bank_account_id": self.account_id}, headers=headers2)
        self.assertEqual(res.status_code, 403)
        self.assertEqual((res.get_json() or {}).get("error"), "PHONE_NOT_VERIFIED")

    def test_failed_transfer_then_admin_retry_uses_new_reference(self):
        client, headers = self.login_as(self.vendor)
        with patch.dict(os.environ, {"MOCK_PAYMENTS_FORCE_FAIL": "1"}):
            res = self._withdraw(client, headers, 200)
        self.assertEqual(res.status_code, 400)
        body = res.get_json() or {}
        self.assertEqual(body.get("error"), "TRANSFER_FAILED")
        failed = body.get("payout") or {}
        self.assertEqual(failed.get("status"), "failed")

        # A failed payout releases its hold on the balance.
        self.assertEqual(self._balance(client).get("available_balance"), 500.0)
        with self.app.app_context():
            self.assertIsNotNone(Notification.query.filter_by(user_id=self.vendor["id"], kind="payout_failed").first())

        admin_client, admin_headers = self.login_as(self.admin)
        res = admin_client.post(f"/api/admin/payouts/{failed['id']}/retry", json={}, headers=admin_headers)
        self.assertEqual(res.status_code, 200, res.get_json())
        retried = res.get_json() or {}
        self.assertNotEqual(retried.get("reference"), failed.get("reference"))
        self.assertTrue(retried.get("reference", "").startswith("PO-RETRY-"))
        payout = retried.get("payout") or {}
        self.assertEqual(payout.get("status"), "processing")
        self.assertEqual(payout.get("retry_count"), 1)
        attempts = payout.get("attempts") or []
        self.assertEqual(len(attempts), 2)
        self.assertEqual(attempts[0].get("status"), "failed")

        res = admin_client.post(f"/api/admin/payouts/{failed['id']}/retry", json={}, headers=admin_headers)
        self.assertEqual(res.status_code, 400)
        self.assertEqual((res.get_json() or {}).get("error"), "INVALID_STATUS")

        with self.app.app_context():
            self.assertEqual(AuditLog.query.filter_by(action="payout.retry", target_id=retried["reference"]).count(), 1)

    def test_every_retry_gets_a_reference_never_used_before(self):
        client, headers = self.login_as(self.vendor)
        with patch.dict(os.environ, {"MOCK_PAYMENTS_FORCE_FAIL": "1"}):
            failed = ((self._withdraw(client, headers, 150).get_json() or {}).get("payout") or {})
        self.assertEqual(failed.get("status"), "failed")

        admin_client, admin_headers = self.login_as(self.admin)
        retry_url = f"/api/admin/payouts/{failed['id']}/retry"
        with patch.dict(os.environ, {"MOCK_PAYMENTS_FORCE_FAIL": "1"}):
            res = admin_client.post(retry_url, json={}, headers=admin_headers)
        self.assertEqual((res.get_json() or {}).get("error"), "TRANSFER_FAILED")
        res = admin_client.post(retry_url, json={}, headers=admin_headers)
        self.assertEqual(res.status_code, 200, res.get_json())

        with self.app.app_context():
            payout = db.session.get(VendorPayout, failed["id"])
            self.assertEqual(payout.status, "processing")
            self.assertEqual(int(payout.retry_count), 2)
            current_reference = payout.reference
            references = [a.reference for a in PayoutAttempt.query.filter_by(payout_id=failed["id"]).all()]
        self.assertEqual(len(references), 3)
        self.assertEqual(len(set(references)), 3)
        self.assertIn(failed["reference"], references)
        self.assertEqual(sum(1 for r in references if r.startswith("PO-RETRY-")), 2)
        self.assertIn(current_reference, references)

    def test_admin_cancel_only_in_flight_payouts(self):
        client, headers = self.login_as(self.vendor)
        payout_id = ((self._withdraw(client, headers, 100).get_json() or {}).get("payout") or {})["id"]
        admin_client, admin_headers = self.login_as(self.admin)

        res = admin_client.post(f"/api/admin/payouts/{payout_id}/cancel", json={}, headers=admin_headers)
        self.assertEqual(res.status_code, 200, res.get_json())
        self.assertEqual(((res.get_json() or {}).get("payout") or {}).get("status"), "cancelled")
        self.assertEqual(self._balance(client).get("available_balance"), 500.0)

        res = admin_client.post(f"/api/admin/payouts/{payout_id}/cancel", json={}, headers=admin_headers)
        self.assertEqual(res.status_code, 400)
        self.assertEqual((res.get_json() or {}).get("error"), "INVALID_STATUS")

    def test_sync_completes_in_flight_payout(self):
        client, headers = self.login_as(self.vendor)
        payout_id = ((self._withdraw(client, headers, 150).get_json() or {}).get("payout") or {})["id"]
        admin_client, admin_headers = self.login_as(self.admin)

        res = admin_client.post(f"/api/admin/payouts/{payout_id}/sync", json={}, headers=admin_headers)
        self.assertEqual(res.status_code, 200, res.get_json())
        body = res.get_json() or {}
        self.assertTrue(body.get("changed"))
        self.assertEqual(body.get("status"), "completed")

        balance = self._balance(client)
        self.assertEqual(balance.get("total_withdrawn"), 150.0)
        self.assertEqual(balance.get("available_balance"), 350.0)

        res = admin_client.post(f"/api/admin/payouts/{payout_id}/sync", json={}, headers=admin_headers)
        self.assertEqual((res.get_json() or {}).get("error"), "INVALID_STATUS")

        with self.app.app_context():
            payout = db.session.get(VendorPayout, payout_id)
            self.assertIsNotNone(payout.completed_at)
            attempt = PayoutAttempt.query.filter_by(reference=payout.reference).one()
            self.assertEqual(attempt.status, "completed")

    def test_account_with_payout_in_flight_cannot_be_removed(self):
        client, headers = self.login_as(self.vendor)
        self.assertEqual(self._withdraw(client, headers, 100).status_code, 201)
        res = client.delete(f"/api/vendor/bank-accounts/{self.account_id}", headers=headers)
        self.assertEqual(res.status_code, 400)
        self.assertEqual((res.get_json() or {}).get("error"), "PAYOUT_IN_FLIGHT")

    def test_admin_listing_and_stats(self):
        client, headers = self.login_as(self.vendor)
        self._withdraw(client, headers, 100)

        admin_client, _admin_headers = self.login_as(self.admin)
        res = admin_client.get(f"/api/admin/payouts?status=processing&vendor_id={self.vendor['id']}")
        self.assertEqual(res.status_code, 200, res.get_json())
        self.assertEqual((res.get_json() or {}).get("total"), 1)
        self.assertEqual(admin_client.get("/api/admin/payouts?status=bogus").status_code, 400)

        stats = (admin_client.get("/api/admin/payouts/stats").get_json() or {}).get("stats") or {}
        self.assertGreaterEqual(int(stats.get("countPending") or 0), 1)
        self.assertGreaterEqual(float(stats.get("totalPending") or 0), 100.0)


if __name__ == "__main__":
    unittest.main()
