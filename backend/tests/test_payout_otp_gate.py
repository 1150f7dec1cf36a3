from __future__ import annotations

import unittest
from datetime import datetime, timedelta

from kiosk.extensions import db
from kiosk.models import Notification, OtpChallenge, User, VendorBankAccount
from kiosk.services.otp_service import MAX_OTP_ATTEMPTS, hash_otp, mask_phone
from kiosk_fixtures import KioskApiTestCase

WRONG_CODE = "000000"


class OtpHelpersTestCase(unittest.TestCase):
    def test_mask_phone_keeps_prefix_and_suffix(self):
        self.assertEqual(mask_phone("+233201234567"), "+233****567")
        self.assertEqual(mask_phone("12345"), "12345")

    def test_hash_is_peppered_and_stable(self):
        self.assertEqual(hash_otp("123456"), hash_otp("123456"))
        self.assertNotEqual(hash_otp("123456"), hash_otp("123457"))
        self.assertEqual(len(hash_otp("123456")), 64)


class PayoutOtpGateTestCase(KioskApiTestCase):
    def setUp(self):
        super().setUp()
        self.vendor = self.make_user("vendor", phone_verified=True)

    def _request_code(self, client, headers) -> str:
        res = client.post("/api/vendor/payouts/otp", json={}, headers=headers)
        self.assertEqual(res.status_code, 200, res.get_json())
        body = res.get_json() or {}
        self.assertEqual(body.get("expiresIn"), 600)
        code = str(body.get("demo_otp") or "")
        self.assertEqual(len(code), 6)
        return code

    def _backdate_cooldown(self):
        with self.app.app_context():
            challenge = OtpChallenge.query.filter_by(user_id=self.vendor["id"], purpose="payout").one()
            challenge.last_sent_at = datetime.utcnow() - timedelta(minutes=2)
            db.session.commit()

    def _verify(self, client, headers, code: str):
        return client.post("/api/vendor/payouts/otp/verify", json={"otp": code}, headers=headers)

    def test_fifth_miss_locks_out_even_the_correct_code(self):
        client, headers = self.login_as(self.vendor)
        code = self._request_code(client, headers)

        for attempt in range(1, MAX_OTP_ATTEMPTS + 1):
            res = self._verify(client, headers, WRONG_CODE)
            self.assertEqual(res.status_code, 400)
            body = res.get_json() or {}
            self.assertEqual(body.get("error"), "INVALID_OTP")
            self.assertEqual(body.get("attemptsRemaining"), MAX_OTP_ATTEMPTS - attempt)

        res = self._verify(client, headers, code)
        self.assertEqual(res.status_code, 429)
        self.assertEqual((res.get_json() or {}).get("error"), "MAX_ATTEMPTS_EXCEEDED")

        res = client.post("/api/vendor/payouts/otp", json={}, headers=headers)
        self.assertEqual(res.status_code, 429)
        self.assertEqual((res.get_json() or {}).get("error"), "OTP_COOLDOWN")

        self._backdate_cooldown()
        fresh = self._request_code(client, headers)
        res = self._verify(client, headers, fresh)
        self.assertEqual(res.status_code, 200, res.get_json())
        self.assertTrue((res.get_json() or {}).get("payoutToken"))

    def test_code_is_single_use_and_never_stored_as_notification(self):
        client, headers = self.login_as(self.vendor)
        code = self._request_code(client, headers)
        self.assertEqual(self._verify(client, headers, code).status_code, 200)

        res = self._verify(client, headers, code)
        self.assertEqual(res.status_code, 400)
        self.assertEqual((res.get_json() or {}).get("error"), "OTP_NOT_FOUND")

        with self.app.app_context():
            for n in Notification.query.filter_by(user_id=self.vendor["id"]).all():
                self.assertNotIn(code, n.message or "")

    def test_expired_code_is_rejected(self):
        client, headers = self.login_as(self.vendor)
        code = self._request_code(client, headers)
        with self.app.app_context():
            challenge = OtpChallenge.query.filter_by(user_id=self.vendor["id"], purpose="payout").one()
            challenge.expires_at = datetime.utcnow() - timedelta(seconds=1)
            db.session.commit()
        res = self._verify(client, headers, code)
        self.assertEqual(res.status_code, 400)
        self.assertEqual((res.get_json() or {}).get("error"), "OTP_EXPIRED")

    def test_malformed_code_does_not_count_as_attempt(self):
        client, headers = self.login_as(self.vendor)
        self._request_code(client, headers)
        self.assertEqual(self._verify(client, headers, "12ab").status_code, 400)
        with self.app.app_context():
            challenge = OtpChallenge.query.filter_by(user_id=self.vendor["id"], purpose="payout").one()
            self.assertEqual(int(challenge.attempts), 0)

    def test_unverified_phone_cannot_request_payout_code(self):
        unverified = self.make_user("vendor", phone_verified=False)
        client, headers = self.login_as(unverified)
        res = client.post("/api/vendor/payouts/otp", json={}, headers=headers)
        self.assertEqual(res.status_code, 403)
        self.assertEqual((res.get_json() or {}).get("error"), "PHONE_NOT_VERIFIED")

    def test_bank_account_needs_a_fresh_payout_token(self):
        client, headers = self.login_as(self.vendor)
        account = {"account_type": "bank", "bank_code": "GCB", "account_number": "1020304050", "account_name": "Ama Mensah"}

        res = client.post("/api/vendor/bank-accounts", json=account, headers=headers)
        self.assertEqual(res.status_code, 403)
        self.assertEqual((res.get_json() or {}).get("error"), "OTP_REQUIRED")

        code = self._request_code(client, headers)
        token = (self._verify(client, headers, code).get_json() or {}).get("payoutToken")
        res = client.post("/api/vendor/bank-accounts", json={**account, "payoutToken": token}, headers=headers)
        self.assertEqual(res.status_code, 201, res.get_json())
        body = res.get_json() or {}
        self.assertTrue(body.get("verified"))
        self.assertTrue((body.get("account") or {}).get("is_primary"))
        self.assertEqual((body.get("account") or {}).get("account_number"), "******4050")

        res = client.post(
            "/api/vendor/bank-accounts",
            json={**account, "account_number": "9988776655", "payoutToken": token},
            headers=headers,
        )
        self.assertEqual(res.status_code, 403)
        self.assertEqual((res.get_json() or {}).get("error"), "INVALID_TOKEN")

    def test_set_primary_keeps_a_single_primary(self):
        first = self.make_bank_account(self.vendor["id"], primary=True)
        second = self.make_bank_account(self.vendor["id"], primary=False)
        client, headers = self.login_as(self.vendor)
        res = client.patch(f"/api/vendor/bank-accounts/{second}", json={"action": "set_primary"}, headers=headers)
        self.assertEqual(res.status_code, 200, res.get_json())
        with self.app.app_context():
            self.assertFalse(db.session.get(VendorBankAccount, first).is_primary)
            self.assertTrue(db.session.get(VendorBankAccount, second).is_primary)

        res = client.delete(f"/api/vendor/bank-accounts/{second}", headers=headers)
        self.assertEqual(res.status_code, 200)
        with self.app.app_context():
            self.assertTrue(db.session.get(VendorBankAccount, first).is_primary)

    def test_bank_list_comes_from_provider(self):
        client, _headers = self.login_as(self.vendor)
        banks = (client.get("/api/vendor/banks").get_json() or {}).get("banks") or []
        self.assertIn("GCB", [b.get("code") for b in banks])
        momo = (client.get("/api/vendor/banks?type=mobile_money").get_json() or {}).get("banks") or []
        self.assertIn("MTN", [b.get("code") for b in momo])


class PhoneVerificationTestCase(KioskApiTestCase):
    def test_phone_otp_marks_user_verified(self):
        buyer = self.make_user("buyer")
        client, headers = self.login_as(buyer)
        res = client.post("/api/auth/otp/request", json={"phone": buyer["phone"]}, headers=headers)
        self.assertEqual(res.status_code, 200, res.get_json())
        code = str((res.get_json() or {}).get("demo_otp") or "")

        res = client.post("/api/auth/otp/verify", json={"otp": code}, headers=headers)
        self.assertEqual(res.status_code, 200, res.get_json())
        self.assertTrue((res.get_json() or {}).get("phone_verified"))
        with self.app.app_context():
            user = db.session.get(User, buyer["id"])
            self.assertTrue(user.phone_verified)
            self.assertIsNotNone(user.phone_verified_at)

    def test_phone_owned_by_someone_else_is_refused(self):
        owner = self.make_user("buyer")
        other = self.make_user("buyer")
        client, headers = self.login_as(other)
        res = client.post("/api/auth/otp/request", json={"phone": owner["phone"]}, headers=headers)
        self.assertEqual(res.status_code, 409)


if __name__ == "__main__":
    unittest.main()
