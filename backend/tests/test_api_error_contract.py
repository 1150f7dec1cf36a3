from __future__ import annotations

import unittest

from kiosk_fixtures import KioskApiTestCase


class ApiErrorContractTestCase(KioskApiTestCase):
    def _assert_error_shape(self, res, status: int, code: str | None = None):
        self.assertEqual(res.status_code, status)
        self.assertTrue(res.is_json)
        body = res.get_json(force=True) or {}
        self.assertFalse(bool(body.get("ok", True)))
        self.assertTrue(str(body.get("error") or "").strip())
        self.assertTrue(str(body.get("message") or "").strip())
        self.assertEqual(int(body.get("status") or 0), status)
        self.assertTrue(str(body.get("trace_id") or "").strip())
        if code is not None:
            self.assertEqual(body.get("error"), code)
        return body

    def test_unknown_api_route_returns_json_error_shape(self):
        res = self.app.test_client().get("/api/does-not-exist")
        self._assert_error_shape(res, 404, "NOT_FOUND")

    def test_anonymous_caller_gets_unauthorized(self):
        res = self.app.test_client().get("/api/auth/me")
        self._assert_error_shape(res, 401, "UNAUTHORIZED")

    def test_wrong_role_gets_forbidden(self):
        buyer = self.make_user("buyer")
        client, _headers = self.login_as(buyer)
        res = client.get("/api/admin/payouts")
        self._assert_error_shape(res, 403, "FORBIDDEN")

    def test_validation_error_carries_code_and_trace_id_from_request_header(self):
        res = self.app.test_client().post(
            "/api/auth/register",
            json={"email": "not-an-email", "password": "longenough"},
            headers={"X-Request-Id": "trace-abc-123"},
        )
        body = self._assert_error_shape(res, 400, "VALIDATION")
        self.assertEqual(body.get("trace_id"), "trace-abc-123")
        self.assertEqual(res.headers.get("X-Request-Id"), "trace-abc-123")

    def test_missing_order_is_not_found(self):
        buyer = self.make_user("buyer")
        client, _headers = self.login_as(buyer)
        res = client.get("/api/orders/999999")
        self._assert_error_shape(res, 404, "NOT_FOUND")

    def test_health_reports_db_and_payments(self):
        res = self.app.test_client().get("/api/health")
        self.assertEqual(res.status_code, 200)
        body = res.get_json() or {}
        self.assertTrue(body.get("ok"))
        self.assertEqual(body.get("db"), "ok")
        self.assertEqual((body.get("payments") or {}).get("provider"), "mock")
        self.assertTrue(str(body.get("alembic_head") or "").strip())


if __name__ == "__main__":
    unittest.main()
