from __future__ import annotations

import os
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from functools import wraps

from flask import g, request
from flask_login import current_user

from kiosk.extensions import db, login_manager
from kiosk.models import User, UserSession
from kiosk.utils.errors import ForbiddenError, UnauthorizedError
from kiosk.utils.jwt_utils import SESSION_TTL_SECONDS, create_session_token, decode_token

SESSION_COOKIE = "session_token"


class Role(str, Enum):
    BUYER = "buyer"
    VENDOR = "vendor"
    ADMIN = "admin"

    @classmethod
    def parse(cls, value) -> "Role | None":
        raw = (str(value or "")).strip().lower()
        for member in cls:
            if member.value == raw:
                return member
        return None


@dataclass(frozen=True)
class Principal:
    """Authenticated caller resolved from a live session token."""

    user_id: int
    role: Role
    session_id: int

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


def _secure_cookies() -> bool:
    env = (os.getenv("KIOSK_ENV") or "dev").strip().lower()
    return env in ("prod", "production")


def issue_session(user: User) -> tuple[str, UserSession]:
    now = datetime.utcnow()
    rec = UserSession(
        user_id=int(user.id),
        session_key=secrets.token_hex(16),
        created_at=now,
        expires_at=now + timedelta(seconds=SESSION_TTL_SECONDS),
        user_agent=(request.headers.get("User-Agent") or "")[:180] or None,
    )
    db.session.add(rec)
    db.session.flush()
    role = Role.parse(user.role) or Role.BUYER
    token = create_session_token(int(user.id), role=role.value, session_key=rec.session_key)
    return token, rec


def revoke_sessions_for_user(user_id: int, *, when: datetime | None = None) -> int:
    stamp = when or datetime.utcnow()
    return UserSession.query.filter_by(user_id=int(user_id), revoked_at=None).update(
        {"revoked_at": stamp}, synchronize_session=False
    )


def set_session_cookie(response, token: str) -> None:
    response.set_cookie(
        SESSION_COOKIE,
        token,
        max_age=SESSION_TTL_SECONDS,
        httponly=True,
        secure=_secure_cookies(),
        samesite="Lax",
        path="/",
    )


def clear_session_cookie(response) -> None:
    response.delete_cookie(SESSION_COOKIE, path="/")


@login_manager.request_loader
def _load_user_from_session_cookie(req):
    g.principal = None
    token = (req.cookies.get(SESSION_COOKIE) or "").strip()
    if not token:
        return None
    payload = decode_token(token)
    if not payload:
        return None
    try:
        uid = int(payload.get("sub"))
    except (TypeError, ValueError):
        return None
    rec = UserSession.query.filter_by(session_key=str(payload.get("sid") or "")).first()
    if rec is None or int(rec.user_id) != uid or not rec.is_live():
        return None
    user = db.session.get(User, uid)
    if user is None or not user.is_active:
        return None
    role = Role.parse(user.role)
    if role is None:
        return None
    g.principal = Principal(user_id=uid, role=role, session_id=int(rec.id))
    g.auth_user_id = uid
    g.auth_role = role.value
    return user


def current_principal() -> Principal | None:
    if not current_user or not current_user.is_authenticated:
        return None
    return getattr(g, "principal", None)


def require_role(*roles: Role):
    allowed = set(roles)
    label = " or ".join(r.value.capitalize() for r in roles) if roles else ""

    def decorator(fn):
        @wraps(fn)
        def wrapped(*args, **kwargs):
            principal = current_principal()
            if principal is None:
                raise UnauthorizedError("Authentication required")
            if allowed and principal.role not in allowed:
                raise ForbiddenError(f"{label} access required")
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def session_user() -> User:
    """Current user for routes already guarded by require_role."""
    principal = current_principal()
    if principal is None:
        raise UnauthorizedError("Authentication required")
    return current_user._get_current_object()
