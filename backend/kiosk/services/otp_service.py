from __future__ import annotations

import hashlib
import hmac
import math
import os
import secrets
from datetime import datetime, timedelta
from enum import Enum

from flask import current_app

from kiosk.extensions import db
from kiosk.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from kiosk.integrations.email.factory import build_email_provider
from kiosk.integrations.messaging.base import MessageResult
from kiosk.integrations.messaging.factory import build_messaging_provider
from kiosk.models import OtpChallenge, PayoutAuthToken, User
from kiosk.utils.errors import ApiError, ForbiddenError, ValidationError
from kiosk.utils.settings import integrations_mode, is_production

OTP_LENGTH = 6
OTP_EXPIRY_MINUTES = 10
OTP_COOLDOWN_SECONDS = 60
MAX_OTP_ATTEMPTS = 5
PAYOUT_TOKEN_TTL_MINUTES = 15

_DEV_PEPPER = "kiosk-otp-dev-pepper-not-for-production"


class OtpPurpose(str, Enum):
    PAYOUT = "payout"
    PHONE_VERIFICATION = "phone_verification"


def _pepper() -> str:
    pepper = (os.getenv("OTP_SECRET_PEPPER") or "").strip()
    if pepper:
        return pepper
    if is_production():
        raise RuntimeError("OTP_SECRET_PEPPER must be configured in production")
    return _DEV_PEPPER


def hash_otp(code: str) -> str:
    return hmac.new(_pepper().encode("utf-8"), (code or "").encode("utf-8"), hashlib.sha256).hexdigest()


def hash_token(raw: str) -> str:
    return hashlib.sha256((raw or "").encode("utf-8")).hexdigest()


def generate_otp() -> str:
    low = 10 ** (OTP_LENGTH - 1)
    return str(low + secrets.randbelow(9 * low))


def mask_phone(phone: str) -> str:
    raw = (phone or "").strip()
    if len(raw) < 6:
        return raw
    return f"{raw[:4]}****{raw[-3:]}"


def expose_demo_otp() -> bool:
    return not is_production() and integrations_mode() != "live"


def _send_code_sms(phone: str, code: str, purpose: OtpPurpose) -> MessageResult:
    label = "payout security" if purpose is OtpPurpose.PAYOUT else "verification"
    text = (
        f"Your KIOSK {label} code is: {code}. Valid for {OTP_EXPIRY_MINUTES} minutes. "
        "Do not share this code with anyone."
    )
    try:
        provider = build_messaging_provider()
    except (IntegrationDisabledError, IntegrationMisconfiguredError) as e:
        return MessageResult(ok=False, code="SMS_UNAVAILABLE", message=str(e))
    return provider.send_sms(to=phone, message=text, reference=f"otp-{purpose.value}")


def _send_code_email(user: User, code: str) -> None:
    # Codes never go through the notifications table.
    try:
        result = build_email_provider().send_email(
            to=user.email,
            subject="Your KIOSK security code",
            body=f"Your security code is {code}. It expires in {OTP_EXPIRY_MINUTES} minutes.",
        )
    except (IntegrationDisabledError, IntegrationMisconfiguredError, OSError) as e:
        current_app.logger.warning("otp_email_unavailable user_id=%s err=%s", user.id, e)
        return
    if not result.ok:
        current_app.logger.warning("otp_email_failed user_id=%s code=%s", user.id, result.code)


def _challenge(user_id: int, purpose: OtpPurpose) -> OtpChallenge | None:
    return OtpChallenge.query.filter_by(user_id=int(user_id), purpose=purpose.value).first()


def request_otp(user: User, purpose: OtpPurpose, *, phone: str | None = None) -> dict:
    """Send a fresh code, enforcing the resend cooldown. Resets the attempt counter."""
    target_phone = (phone or user.phone or "").strip()
    if purpose is OtpPurpose.PAYOUT and not (user.phone_verified and user.phone):
        raise ForbiddenError("Phone verification required", code="PHONE_NOT_VERIFIED")
    if not target_phone:
        raise ValidationError("Phone number is required")

    now = datetime.utcnow()
    challenge = _challenge(user.id, purpose)
    if challenge is not None and challenge.last_sent_at is not None:
        elapsed = (now - challenge.last_sent_at).total_seconds()
        if elapsed < OTP_COOLDOWN_SECONDS:
            remaining = max(1, math.ceil(OTP_COOLDOWN_SECONDS - elapsed))
            raise ApiError(
                f"Please wait {remaining} seconds before requesting a new code",
                code="OTP_COOLDOWN",
                status=429,
                cooldownRemaining=remaining,
            )

    code = generate_otp()
    sent = _send_code_sms(target_phone, code, purpose)
    if not sent.ok:
        current_app.logger.warning(
            "otp_sms_failed user_id=%s purpose=%s code=%s", user.id, purpose.value, sent.code
        )
        raise ApiError("Failed to send verification code. Please try again.", code="SMS_FAILED", status=500)

    if challenge is None:
        challenge = OtpChallenge(user_id=int(user.id), purpose=purpose.value)
        db.session.add(challenge)
    challenge.phone = target_phone
    challenge.otp_hash = hash_otp(code)
    challenge.expires_at = now + timedelta(minutes=OTP_EXPIRY_MINUTES)
    challenge.attempts = 0
    challenge.last_sent_at = now
    challenge.consumed_at = None
    db.session.commit()

    if purpose is OtpPurpose.PAYOUT:
        _send_code_email(user, code)

    payload = {
        "message": f"Verification code sent to {mask_phone(target_phone)}",
        "purpose": purpose.value,
        "expiresIn": OTP_EXPIRY_MINUTES * 60,
    }
    if expose_demo_otp():
        payload["demo_otp"] = code
    return payload


def verify_otp(user: User, purpose: OtpPurpose, code) -> OtpChallenge:
    """Check a code. Five misses lock the challenge until a new code is requested."""
    if not isinstance(code, str) or len(code) != OTP_LENGTH:
        raise ValidationError("Invalid OTP format")

    challenge = _challenge(user.id, purpose)
    if challenge is None or not challenge.otp_hash or challenge.consumed_at is not None:
        raise ValidationError("No active verification code. Please request a new code.", code="OTP_NOT_FOUND")

    attempts = int(challenge.attempts or 0)
    if attempts >= MAX_OTP_ATTEMPTS:
        raise ApiError(
            "Too many failed attempts. Please request a new code.",
            code="MAX_ATTEMPTS_EXCEEDED",
            status=429,
            attemptsRemaining=0,
        )

    if challenge.expires_at is None or challenge.expires_at < datetime.utcnow():
        raise ValidationError("Verification code has expired. Please request a new code.", code="OTP_EXPIRED")

    if not hmac.compare_digest(hash_otp(code), challenge.otp_hash):
        challenge.attempts = attempts + 1
        db.session.commit()
        current_app.logger.info(
            "otp_verify_failed user_id=%s purpose=%s attempts=%s", user.id, purpose.value, challenge.attempts
        )
        raise ValidationError(
            "Invalid verification code",
            code="INVALID_OTP",
            attemptsRemaining=max(0, MAX_OTP_ATTEMPTS - int(challenge.attempts)),
        )

    challenge.otp_hash = None
    challenge.expires_at = None
    challenge.attempts = 0
    challenge.consumed_at = datetime.utcnow()
    return challenge


def issue_payout_token(user: User) -> tuple[str, datetime]:
    raw = secrets.token_hex(32)
    expires_at = datetime.utcnow() + timedelta(minutes=PAYOUT_TOKEN_TTL_MINUTES)
    db.session.add(PayoutAuthToken(user_id=int(user.id), token_hash=hash_token(raw), expires_at=expires_at))
    return raw, expires_at


def consume_payout_token(user: User, raw) -> PayoutAuthToken:
    """Mark a payout token used. The caller commits alongside the guarded change."""
    token = (raw or "").strip() if isinstance(raw, str) else ""
    if not token:
        raise ForbiddenError("OTP verification required for this action", code="OTP_REQUIRED")
    rec = PayoutAuthToken.query.filter_by(token_hash=hash_token(token)).first()
    if rec is None or int(rec.user_id) != int(user.id) or rec.used_at is not None:
        raise ForbiddenError("Invalid authorization token", code="INVALID_TOKEN")
    now = datetime.utcnow()
    if rec.expires_at < now:
        raise ForbiddenError("Authorization token expired. Please verify again.", code="TOKEN_EXPIRED")
    rec.used_at = now
    return rec
