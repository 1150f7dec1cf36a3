from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from kiosk.extensions import db
from kiosk.models import AuditLog
from kiosk.utils.observability import get_request_id


def _safe_value(value: Any):
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _safe_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_safe_value(v) for v in value]
    return str(value)


def _safe_json(data: Any) -> str:
    normalized = _safe_value(data if isinstance(data, dict) else {"value": data})
    return json.dumps(normalized, separators=(",", ":"), ensure_ascii=False)


def record_audit(
    action: str,
    *,
    actor_user_id: int | None = None,
    actor_role: str = "system",
    target_type: str | None = None,
    target_id: int | str | None = None,
    metadata: dict | None = None,
    commit: bool = False,
) -> AuditLog | None:
    """Audit writer.

    The row joins the caller's transaction unless ``commit`` is set, in which
    case a failed write is logged and rolled back instead of raised.
    """
    entry = AuditLog(
        action=(action or "unknown").strip()[:80],
        actor_user_id=int(actor_user_id) if actor_user_id is not None else None,
        actor_role=(str(_safe_value(actor_role) or "system")).strip()[:16],
        target_type=(target_type or "").strip()[:40] or None,
        target_id=str(target_id)[:80] if target_id is not None else None,
        request_id=(get_request_id() or "")[:80] or None,
        metadata_json=_safe_json(metadata or {}),
    )
    db.session.add(entry)
    if not commit:
        return entry
    try:
        db.session.commit()
        return entry
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("audit_write_failed action=%s target=%s:%s", action, target_type, target_id)
        return None
