from __future__ import annotations

import json
import os
from datetime import datetime

from celery import Celery
from celery.signals import task_failure, task_retry

from kiosk.utils.settings import env_int

OUTBOX_FLUSH_TASK = "kiosk.tasks.notification_tasks.flush_notification_outbox"

_observed_apps: set[str] = set()


def celery_settings() -> dict:
    broker = (os.getenv("CELERY_BROKER_URL") or os.getenv("REDIS_URL") or "redis://localhost:6379/0").strip()
    return {
        "broker_url": broker,
        "result_backend": (os.getenv("CELERY_RESULT_BACKEND") or "").strip() or broker,
        "task_serializer": "json",
        "result_serializer": "json",
        "accept_content": ["json"],
        # Delivery is idempotent per notification row, so a redelivered message is harmless.
        "task_acks_late": True,
        "worker_prefetch_multiplier": 1,
        "broker_connection_retry_on_startup": True,
        "timezone": "UTC",
        "enable_utc": True,
        "beat_schedule": {
            "notification-outbox-flush": {
                "task": OUTBOX_FLUSH_TASK,
                "schedule": float(env_int("NOTIFY_OUTBOX_FLUSH_SECONDS", 120, minimum=30, maximum=3600)),
            },
        },
    }


def _log_task_event(flask_app, level: str, event: str, *, task_name: str, task_id, kwargs, **fields) -> None:
    trace_id = kwargs.get("trace_id") if isinstance(kwargs, dict) else ""
    payload = {
        "event": event,
        "task_name": task_name,
        "task_id": str(task_id or ""),
        "trace_id": str(trace_id or ""),
        "timestamp": datetime.utcnow().isoformat(),
    }
    payload.update(fields)
    getattr(flask_app.logger, level)(json.dumps(payload, default=str))


def _observe_tasks(flask_app) -> None:
    if flask_app.import_name in _observed_apps:
        return
    _observed_apps.add(flask_app.import_name)

    @task_failure.connect(weak=False)
    def _on_failure(sender=None, task_id=None, exception=None, kwargs=None, **_):
        _log_task_event(
            flask_app,
            "error",
            "celery_task_failure",
            task_name=getattr(sender, "name", ""),
            task_id=task_id,
            kwargs=kwargs,
            exception=repr(exception),
        )

    @task_retry.connect(weak=False)
    def _on_retry(request=None, reason=None, **_):
        _log_task_event(
            flask_app,
            "warning",
            "celery_task_retry",
            task_name=getattr(request, "task", ""),
            task_id=getattr(request, "id", ""),
            kwargs=getattr(request, "kwargs", None),
            reason=str(reason or ""),
            retries=int(getattr(request, "retries", 0) or 0),
        )


def create_celery_app(flask_app) -> Celery:
    """Build the worker app; every task body runs inside ``flask_app``'s context."""
    celery = Celery(flask_app.import_name)
    celery.conf.update(celery_settings())

    class AppContextTask(celery.Task):
        def __call__(self, *args, **kwargs):
            with flask_app.app_context():
                return super().__call__(*args, **kwargs)

    celery.Task = AppContextTask
    celery.set_default()
    celery.autodiscover_tasks(["kiosk.tasks"], related_name="notification_tasks")
    _observe_tasks(flask_app)
    return celery
