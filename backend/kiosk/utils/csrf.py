from __future__ import annotations

import hmac
import os
import secrets

from flask import request

CSRF_COOKIE = "csrf_token"
CSRF_HEADER = "X-CSRF-Token"
CSRF_COOKIE_MAX_AGE = 60 * 60 * 24 * 7

STATE_CHANGING_METHODS = ("POST", "PUT", "PATCH", "DELETE")

EXEMPT_PREFIXES = (
    "/api/auth/login",
    "/api/auth/register",
    "/api/auth/logout",
    "/api/auth/otp/",
    "/api/auth/password/",
    "/api/webhooks/",
    "/api/health",
)


def generate_csrf_token() -> str:
    return secrets.token_hex(32)


def set_csrf_cookie(response, token: str) -> None:
    # Readable by the browser client so it can echo the value in the header.
    response.set_cookie(
        CSRF_COOKIE,
        token,
        max_age=CSRF_COOKIE_MAX_AGE,
        httponly=False,
        secure=(os.getenv("KIOSK_ENV") or "dev").strip().lower() in ("prod", "production"),
        samesite="Strict",
        path="/",
    )


def is_exempt(path: str) -> bool:
    return any(path.startswith(prefix) for prefix in EXEMPT_PREFIXES)


def requires_csrf(method: str, path: str) -> bool:
    if (method or "").upper() not in STATE_CHANGING_METHODS:
        return False
    if not (path or "").startswith("/api/"):
        return False
    return not is_exempt(path)


def tokens_match(cookie_token: str | None, header_token: str | None) -> bool:
    if not cookie_token or not header_token:
        return False
    return hmac.compare_digest(cookie_token.encode("utf-8"), header_token.encode("utf-8"))


def validate_request_csrf(req=None) -> bool:
    req = req or request
    return tokens_match(req.cookies.get(CSRF_COOKIE), req.headers.get(CSRF_HEADER))
