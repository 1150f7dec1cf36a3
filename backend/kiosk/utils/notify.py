from __future__ import annotations

import json

from celery.exceptions import CeleryError
from flask import current_app
from kombu.exceptions import KombuError
from sqlalchemy.exc import SQLAlchemyError

from kiosk.extensions import db
from kiosk.models import Notification
from kiosk.services.notification_service import deliver_notification
from kiosk.utils.observability import get_request_id
from kiosk.utils.settings import notify_queue_enabled


def dispatch_notification(notification_id: int) -> None:
    """Hand an outbox row to the worker, or deliver inline when the queue is off.

    Rows that cannot be dispatched stay queued for the outbox sweep.
    """
    if notify_queue_enabled():
        from kiosk.tasks.notification_tasks import deliver_notification_task

        try:
            deliver_notification_task.delay(notification_id=int(notification_id), trace_id=get_request_id())
        except (CeleryError, KombuError, OSError):
            current_app.logger.exception("notification_enqueue_failed id=%s", notification_id)
        return
    try:
        deliver_notification(int(notification_id))
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("notification_inline_delivery_failed id=%s", notification_id)


def queue_notification(
    *,
    user_id: int,
    kind: str,
    title: str,
    message: str,
    channel: str = "in_app",
    meta: dict | None = None,
) -> Notification | None:
    n = Notification(
        user_id=int(user_id),
        channel=channel,
        kind=(kind or "system")[:48],
        title=(title or "")[:160],
        message=message or "",
        status="queued",
        meta=json.dumps(meta or {}, separators=(",", ":"), default=str),
    )
    try:
        db.session.add(n)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("notification_queue_failed user_id=%s kind=%s", user_id, kind)
        return None
    dispatch_notification(int(n.id))
    return n


def notify_user(
    user_id: int,
    *,
    kind: str,
    title: str,
    message: str,
    sms: bool = False,
    email: bool = False,
    meta: dict | None = None,
) -> list[Notification]:
    """Fan a notification out to in-app plus the requested channels. Never raises."""
    channels = ["in_app"]
    if sms:
        channels.append("sms")
    if email:
        channels.append("email")
    created = []
    for channel in channels:
        n = queue_notification(user_id=user_id, kind=kind, title=title, message=message, channel=channel, meta=meta)
        if n is not None:
            created.append(n)
    return created
