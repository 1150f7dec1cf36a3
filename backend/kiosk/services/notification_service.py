from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from kiosk.extensions import db
from kiosk.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from kiosk.integrations.email.factory import build_email_provider
from kiosk.integrations.messaging.base import MessageResult
from kiosk.integrations.messaging.factory import build_messaging_provider
from kiosk.models import Notification, User

MAX_DELIVERY_ATTEMPTS = 5


class NotificationStatus:
    QUEUED = "queued"
    SENT = "sent"
    FAILED = "failed"


def _send(notification: Notification, user: User) -> tuple[MessageResult, str]:
    channel = (notification.channel or "in_app").strip().lower()
    if channel == "in_app":
        return MessageResult(ok=True, code="OK", message="stored"), "in_app"
    if channel == "sms":
        if not (user.phone or "").strip():
            return MessageResult(ok=False, code="NO_PHONE", message="user has no phone"), "sms"
        provider = build_messaging_provider()
        return provider.send_sms(to=user.phone, message=notification.message, reference=f"ntf-{notification.id}"), provider.name
    if channel == "email":
        provider = build_email_provider()
        subject = notification.title or "Kiosk notification"
        return provider.send_email(to=user.email, subject=subject, body=notification.message), provider.name
    return MessageResult(ok=False, code="UNKNOWN_CHANNEL", message=channel), channel


def deliver_notification(notification_id: int) -> dict:
    """Deliver one outbox row. Safe to call more than once for the same row."""
    n = db.session.get(Notification, int(notification_id))
    if n is None:
        return {"ok": False, "detail": "not_found", "retryable": False}
    if n.status == NotificationStatus.SENT:
        return {"ok": True, "detail": "already_sent", "retryable": False}
    if n.status == NotificationStatus.FAILED:
        return {"ok": False, "detail": "gave_up", "retryable": False}
    user = db.session.get(User, int(n.user_id))
    if user is None:
        n.status = NotificationStatus.FAILED
        n.last_error = "user_missing"
        db.session.commit()
        return {"ok": False, "detail": "user_missing", "retryable": False}

    try:
        result, provider_name = _send(n, user)
    except (IntegrationDisabledError, IntegrationMisconfiguredError) as e:
        result, provider_name = MessageResult(ok=False, code="INTEGRATION_UNAVAILABLE", message=str(e)), "none"

    now = datetime.utcnow()
    n.attempts = int(n.attempts or 0) + 1
    n.provider = provider_name[:64]
    if result.ok:
        n.status = NotificationStatus.SENT
        n.sent_at = now
        n.last_error = None
    else:
        n.last_error = f"{result.code}:{result.message}"[:240]
        if result.permanent_failure or n.attempts >= MAX_DELIVERY_ATTEMPTS:
            n.status = NotificationStatus.FAILED
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("notification_delivery_commit_failed id=%s", notification_id)
        return {"ok": False, "detail": "commit_failed", "retryable": True}
    if not result.ok:
        current_app.logger.warning(
            "notification_delivery_failed id=%s channel=%s attempts=%s code=%s",
            n.id,
            n.channel,
            n.attempts,
            result.code,
        )
    return {
        "ok": bool(result.ok),
        "detail": result.code,
        "retryable": (not result.ok) and n.status == NotificationStatus.QUEUED,
    }


def pending_notification_ids(limit: int = 200, *, older_than_seconds: int = 60) -> list[int]:
    cutoff = datetime.utcnow() - timedelta(seconds=int(older_than_seconds))
    rows = (
        Notification.query.filter_by(status=NotificationStatus.QUEUED)
        .filter(Notification.created_at <= cutoff)
        .order_by(Notification.created_at.asc())
        .limit(int(limit))
        .all()
    )
    return [int(r.id) for r in rows]
