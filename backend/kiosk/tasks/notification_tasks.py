from __future__ import annotations

import json
import time
from datetime import datetime

from celery import shared_task
from flask import current_app

from kiosk.services.notification_service import deliver_notification, pending_notification_ids


def _task_log(task_name: str, *, status: str, started_at: float, trace_id: str = "", **extra):
    duration_ms = int(max(0.0, (time.perf_counter() - float(started_at))) * 1000.0)
    payload = {
        "task_name": task_name,
        "status": status,
        "duration_ms": duration_ms,
        "trace_id": str(trace_id or ""),
        "timestamp": datetime.utcnow().isoformat(),
    }
    payload.update(extra or {})
    current_app.logger.info(json.dumps(payload, default=str))


def _retry_countdown(retries: int) -> int:
    # Exponential backoff with cap.
    return int(min(900, max(5, 5 * (2 ** int(max(0, retries))))))


@shared_task(
    bind=True,
    name="kiosk.tasks.notification_tasks.deliver_notification",
    max_retries=5,
)
def deliver_notification_task(self, *, notification_id: int, trace_id: str = ""):
    started = time.perf_counter()
    result = deliver_notification(int(notification_id))
    if result.get("ok"):
        _task_log(
            "deliver_notification",
            status="ok",
            started_at=started,
            trace_id=trace_id,
            notification_id=notification_id,
            detail=result.get("detail"),
        )
        return result
    if result.get("retryable") and int(self.request.retries or 0) < int(self.max_retries or 0):
        countdown = _retry_countdown(int(self.request.retries or 0))
        _task_log(
            "deliver_notification",
            status="retrying",
            started_at=started,
            trace_id=trace_id,
            notification_id=notification_id,
            detail=result.get("detail"),
            countdown=countdown,
        )
        raise self.retry(exc=RuntimeError(str(result.get("detail") or "notification_delivery_failed")), countdown=countdown)
    _task_log(
        "deliver_notification",
        status="failed",
        started_at=started,
        trace_id=trace_id,
        notification_id=notification_id,
        detail=result.get("detail"),
    )
    return result


@shared_task(name="kiosk.tasks.notification_tasks.flush_notification_outbox")
def flush_notification_outbox_task(limit: int = 200):
    """Re-dispatch rows still queued, e.g. after a broker outage or worker crash."""
    started = time.perf_counter()
    ids = pending_notification_ids(limit=int(limit))
    for notification_id in ids:
        deliver_notification_task.delay(notification_id=notification_id, trace_id="outbox_sweep")
    _task_log("flush_notification_outbox", status="ok", started_at=started, dispatched=len(ids))
    return {"ok": True, "dispatched": len(ids)}
