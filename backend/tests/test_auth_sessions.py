from __future__ import annotations

import hashlib
import unittest
from datetime import datetime, timedelta
from unittest.mock import patch

from kiosk.extensions import db
from kiosk.models import AuditLog, PasswordResetToken, User, UserSession
from kiosk_fixtures import PASSWORD, KioskApiTestCase


class RegisterLoginTestCase(KioskApiTestCase):
    def test_register_opens_a_session(self):
        client = self.app.test_client()
        res = client.post(
            "/api/auth/register",
            json={
                "name": "Kojo Vendor",
                "email": "Kojo.Vendor@Kiosk.test",
                "password": "longenough1",
                "role": "vendor",
                "store_name": "Kojo Crafts",
            },
        )
        self.assertEqual(res.status_code, 201, res.get_json())
        body = res.get_json() or {}
        self.assertTrue(body.get("csrf_token"))
        user = body.get("user") or {}
        self.assertEqual(user.get("email"), "kojo.vendor@kiosk.test")
        self.assertEqual(user.get("role"), "vendor")

        me = client.get("/api/auth/me")
        self.assertEqual(me.status_code, 200)
        self.assertEqual(((me.get_json() or {}).get("user") or {}).get("id"), user.get("id"))

        with self.app.app_context():
            self.assertEqual(db.session.get(User, user["id"]).store_name, "Kojo Crafts")
            self.assertIsNotNone(AuditLog.query.filter_by(action="user.registered", target_id=str(user["id"])).first())

    def test_register_rejections(self):
        client = self.app.test_client()
        existing = self.make_user("buyer")

        res = client.post("/api/auth/register", json={"email": existing["email"], "password": "longenough1"})
        self.assertEqual(res.status_code, 409)
        self.assertEqual((res.get_json() or {}).get("error"), "DUPLICATE")

        res = client.post("/api/auth/register", json={"email": "new-short@kiosk.test", "password": "short"})
        self.assertEqual((res.get_json() or {}).get("error"), "VALIDATION")

        res = client.post("/api/auth/register", json={"email": "boss@kiosk.test", "password": "longenough1", "role": "admin"})
        self.assertEqual(res.status_code, 400)

        res = client.post("/api/auth/register", json={"email": "not-an-email", "password": "longenough1"})
        self.assertEqual(res.status_code, 400)

    def test_login_failure_is_generic(self):
        user = self.make_user("buyer")
        client = self.app.test_client()
        wrong = client.post("/api/auth/login", json={"email": user["email"], "password": "nope-nope"})
        unknown = client.post("/api/auth/login", json={"email": "ghost@kiosk.test", "password": "nope-nope"})
        for res in (wrong, unknown):
            self.assertEqual(res.status_code, 401)
            self.assertEqual((res.get_json() or {}).get("error"), "INVALID_CREDENTIALS")

    def test_logout_revokes_the_session(self):
        user = self.make_user("buyer")
        client, headers = self.login_as(user)
        self.assertEqual(client.get("/api/auth/me").status_code, 200)
        with self.app.app_context():
            rec = UserSession.query.filter_by(user_id=user["id"]).one()
            self.assertIsNone(rec.revoked_at)

        self.assertEqual(client.post("/api/auth/logout", headers=headers).status_code, 200)
        self.assertEqual(client.get("/api/auth/me").status_code, 401)
        with self.app.app_context():
            self.assertIsNotNone(UserSession.query.filter_by(user_id=user["id"]).one().revoked_at)


class PasswordResetTestCase(KioskApiTestCase):
    def _seed_token(self, user_id: int, raw: str, *, minutes: int = 30) -> None:
        now = datetime.utcnow()
        with self.app.app_context():
            db.session.add(
                PasswordResetToken(
                    user_id=user_id,
                    token_hash=hashlib.sha256(raw.encode("utf-8")).hexdigest(),
                    created_at=now,
                    expires_at=now + timedelta(minutes=minutes),
                )
            )
            db.session.commit()

    def test_forgot_does_not_reveal_accounts(self):
        user = self.make_user("buyer")
        client = self.app.test_client()
        known = client.post("/api/auth/password/forgot", json={"email": user["email"]})
        unknown = client.post("/api/auth/password/forgot", json={"email": "ghost@kiosk.test"})
        self.assertEqual(known.status_code, 200)
        self.assertEqual(known.get_json(), unknown.get_json())
        with self.app.app_context():
            self.assertEqual(PasswordResetToken.query.filter_by(user_id=user["id"]).count(), 1)

    def test_reset_token_never_reaches_the_logs(self):
        user = self.make_user("buyer")
        raw = "pinned-reset-token-for-log-check"
        with patch("kiosk.segments.segment_auth.secrets.token_urlsafe", return_value=raw):
            with self.assertLogs(level="INFO") as logs:
                res = self.app.test_client().post("/api/auth/password/forgot", json={"email": user["email"]})
        self.assertEqual(res.status_code, 200)
        self.assertTrue(any("password_reset_requested" in line for line in logs.output))
        self.assertFalse(any(raw in line for line in logs.output))
        with self.app.app_context():
            digest = hashlib.sha256(raw.encode("utf-8")).hexdigest()
            self.assertIsNotNone(PasswordResetToken.query.filter_by(user_id=user["id"], token_hash=digest).first())

    def test_reset_changes_password_and_revokes_sessions(self):
        user = self.make_user("buyer")
        old_client, _headers = self.login_as(user)
        self._seed_token(user["id"], "reset-me-please")

        client = self.app.test_client()
        res = client.post("/api/auth/password/reset", json={"token": "reset-me-please", "new_password": "brand-new-pass"})
        self.assertEqual(res.status_code, 200, res.get_json())

        self.assertEqual(old_client.get("/api/auth/me").status_code, 401)
        res = client.post("/api/auth/login", json={"email": user["email"], "password": PASSWORD})
        self.assertEqual(res.status_code, 401)
        self.login(user["email"], "brand-new-pass")

        res = client.post("/api/auth/password/reset", json={"token": "reset-me-please", "new_password": "another-pass"})
        self.assertEqual((res.get_json() or {}).get("error"), "INVALID_TOKEN")

    def test_expired_token_is_refused(self):
        user = self.make_user("buyer")
        self._seed_token(user["id"], "too-late", minutes=-1)
        res = self.app.test_client().post("/api/auth/password/reset", json={"token": "too-late", "new_password": "brand-new-pass"})
        self.assertEqual(res.status_code, 400)
        self.assertEqual((res.get_json() or {}).get("error"), "INVALID_TOKEN")


if __name__ == "__main__":
    unittest.main()
