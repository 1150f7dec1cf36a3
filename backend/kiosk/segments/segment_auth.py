from __future__ import annotations

import hashlib
import re
import secrets
from datetime import datetime, timedelta

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from kiosk.extensions import db
from kiosk.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from kiosk.integrations.email.factory import build_email_provider
from kiosk.models import PasswordResetToken, User, UserSession
from kiosk.services.otp_service import OtpPurpose, request_otp, verify_otp
from kiosk.utils.audit import record_audit
from kiosk.utils.auth import (
    Role,
    clear_session_cookie,
    current_principal,
    issue_session,
    require_role,
    revoke_sessions_for_user,
    session_user,
    set_session_cookie,
)
from kiosk.utils.csrf import generate_csrf_token, set_csrf_cookie
from kiosk.utils.errors import DuplicateError, UnauthorizedError, ValidationError
from kiosk.utils.rate_limit import rate_limit
from kiosk.utils.settings import public_base_url

auth_bp = Blueprint("auth_bp", __name__, url_prefix="/api/auth")

RESET_TOKEN_TTL_MINUTES = 30
MIN_PASSWORD_LENGTH = 8
_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_FORGOT_MESSAGE = "If an account exists, a reset link has been sent."


def _hash_token(value: str) -> str:
    return hashlib.sha256((value or "").encode("utf-8")).hexdigest()


def _session_response(user: User, status: int = 200):
    token, _rec = issue_session(user)
    db.session.commit()
    csrf_token = generate_csrf_token()
    resp = jsonify({"ok": True, "user": user.to_dict(), "csrf_token": csrf_token})
    resp.status_code = status
    set_session_cookie(resp, token)
    set_csrf_cookie(resp, csrf_token)
    return resp


@auth_bp.post("/register")
@rate_limit("register", 300, 25)
def register():
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    phone = (data.get("phone") or "").strip() or None
    role = Role.parse(data.get("role") or "buyer")

    if role is None or role is Role.ADMIN:
        raise ValidationError("role must be buyer or vendor")
    if not _EMAIL.match(email):
        raise ValidationError("A valid email is required")
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if User.query.filter_by(email=email).first() is not None:
        raise DuplicateError("Email already in use")
    if phone and User.query.filter_by(phone=phone).first() is not None:
        raise DuplicateError("Phone already in use")

    user = User(name=name or email.split("@")[0], email=email, phone=phone, role=role.value)
    if role is Role.VENDOR:
        user.store_name = (data.get("store_name") or data.get("storeName") or "").strip() or None
    user.set_password(password)
    try:
        db.session.add(user)
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise DuplicateError("Email or phone already in use")
    record_audit("user.registered", actor_user_id=int(user.id), actor_role=role.value, target_type="user", target_id=user.id)
    current_app.logger.info("user_registered user_id=%s role=%s", user.id, role.value)
    return _session_response(user, status=201)


@auth_bp.post("/login")
@rate_limit("login", 300, 30)
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    if not email or not password:
        raise ValidationError("Email and password are required")

    user = User.query.filter_by(email=email).first()
    if user is None or not user.check_password(password) or not user.is_active:
        current_app.logger.info("login_failed email_hash=%s", _hash_token(email)[:12])
        raise UnauthorizedError("Invalid credentials", code="INVALID_CREDENTIALS")
    return _session_response(user)


@auth_bp.post("/logout")
def logout():
    principal = current_principal()
    if principal is not None:
        rec = db.session.get(UserSession, int(principal.session_id))
        if rec is not None and rec.revoked_at is None:
            rec.revoked_at = datetime.utcnow()
            db.session.commit()
    resp = jsonify({"ok": True})
    clear_session_cookie(resp)
    return resp


@auth_bp.get("/me")
@require_role()
def me():
    return jsonify({"ok": True, "user": session_user().to_dict()}), 200


@auth_bp.post("/otp/request")
@require_role()
@rate_limit("otp_request", 300, 5, scope="user")
def otp_request():
    user = session_user()
    data = request.get_json(silent=True) or {}
    phone = (data.get("phone") or user.phone or "").strip()
    if not phone:
        raise ValidationError("Phone number is required")
    owner = User.query.filter_by(phone=phone).first()
    if owner is not None and int(owner.id) != int(user.id):
        raise DuplicateError("Phone already in use")
    return jsonify({"ok": True, **request_otp(user, OtpPurpose.PHONE_VERIFICATION, phone=phone)}), 200


@auth_bp.post("/otp/verify")
@require_role()
def otp_verify():
    user = session_user()
    data = request.get_json(silent=True) or {}
    challenge = verify_otp(user, OtpPurpose.PHONE_VERIFICATION, data.get("otp") if "otp" in data else data.get("code"))
    now = datetime.utcnow()
    user.phone = challenge.phone or user.phone
    user.phone_verified = True
    user.phone_verified_at = now
    record_audit(
        "user.phone_verified",
        actor_user_id=int(user.id),
        actor_role=user.role,
        target_type="user",
        target_id=user.id,
    )
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise DuplicateError("Phone already in use")
    return jsonify({"ok": True, "phone_verified": True, "user": user.to_dict()}), 200


def _send_reset_email(user: User, token: str) -> None:
    link = f"{public_base_url()}/reset-password?token={token}"
    current_app.logger.info("password_reset_requested user_id=%s", user.id)
    try:
        result = build_email_provider().send_email(
            to=user.email,
            subject="Reset your KIOSK password",
            body=f"Use this link within {RESET_TOKEN_TTL_MINUTES} minutes to reset your password: {link}",
        )
    except (IntegrationDisabledError, IntegrationMisconfiguredError, OSError) as e:
        current_app.logger.warning("password_reset_email_unavailable user_id=%s err=%s", user.id, e)
        return
    if not result.ok:
        current_app.logger.warning("password_reset_email_failed user_id=%s code=%s", user.id, result.code)


@auth_bp.post("/password/forgot")
@rate_limit("password_forgot", 300, 10)
def password_forgot():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    user = User.query.filter_by(email=email).first() if email else None
    if user is None:
        return jsonify({"ok": True, "message": _FORGOT_MESSAGE}), 200

    now = datetime.utcnow()
    token = secrets.token_urlsafe(32)
    try:
        db.session.add(
            PasswordResetToken(
                user_id=int(user.id),
                token_hash=_hash_token(token),
                created_at=now,
                expires_at=now + timedelta(minutes=RESET_TOKEN_TTL_MINUTES),
            )
        )
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("password_reset_request_failed user_id=%s", user.id)
        return jsonify({"ok": True, "message": _FORGOT_MESSAGE}), 200
    _send_reset_email(user, token)
    return jsonify({"ok": True, "message": _FORGOT_MESSAGE}), 200


@auth_bp.post("/password/reset")
@rate_limit("password_reset", 300, 10)
def password_reset():
    data = request.get_json(silent=True) or {}
    token = (data.get("token") or "").strip()
    new_password = data.get("new_password") or data.get("password") or ""
    if not isinstance(new_password, str) or len(new_password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if not token:
        raise ValidationError("token is required")

    now = datetime.utcnow()
    rec = PasswordResetToken.query.filter_by(token_hash=_hash_token(token), used_at=None).first()
    if rec is None or rec.expires_at < now:
        raise ValidationError("Invalid or expired token", code="INVALID_TOKEN")
    user = db.session.get(User, int(rec.user_id))
    if user is None:
        raise ValidationError("Invalid or expired token", code="INVALID_TOKEN")

    user.set_password(new_password)
    rec.used_at = now
    revoked = revoke_sessions_for_user(int(user.id), when=now)
    record_audit(
        "user.password_reset",
        actor_user_id=int(user.id),
        actor_role=user.role,
        target_type="user",
        target_id=user.id,
        metadata={"sessions_revoked": int(revoked or 0)},
    )
    db.session.commit()
    current_app.logger.info("password_reset_completed user_id=%s", user.id)
    resp = jsonify({"ok": True})
    clear_session_cookie(resp)
    return resp
