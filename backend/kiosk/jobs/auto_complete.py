from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from kiosk.extensions import db
from kiosk.models import Dispute, Order
from kiosk.services.dispute_service import ACTIVE_STATUSES
from kiosk.services.order_service import Actor, OrderStatus, can_transition, transition_order
from kiosk.utils.audit import record_audit
from kiosk.utils.errors import DatabaseError
from kiosk.utils.settings import auto_complete_hours


def _now():
    return datetime.utcnow()


AUTO_COMPLETE_BATCH = 200
PREVIEW_LIMIT = 500


def _eligible_query(now: datetime | None = None):
    """Delivered orders past the grace period with no dispute still in play."""
    cutoff = (now or _now()) - timedelta(hours=auto_complete_hours())
    held = (
        db.session.query(Dispute.order_id)
        .filter(Dispute.status.in_([s.value for s in ACTIVE_STATUSES]))
    )
    return Order.query.filter(
        Order.status == OrderStatus.DELIVERED.value,
        Order.delivered_at.isnot(None),
        Order.delivered_at < cutoff,
        ~Order.id.in_(held),
    )


def eligible_orders(*, now: datetime | None = None, limit: int = PREVIEW_LIMIT) -> list[Order]:
    return _eligible_query(now).order_by(Order.delivered_at.asc(), Order.id.asc()).limit(int(limit)).all()


def _eligible_batches(now: datetime | None):
    # Keyset on id so skipped rows are never fetched twice.
    last_id = 0
    while True:
        batch = (
            _eligible_query(now)
            .filter(Order.id > last_id)
            .order_by(Order.id.asc())
            .limit(AUTO_COMPLETE_BATCH)
            .all()
        )
        if not batch:
            return
        yield batch
        last_id = int(batch[-1].id)


def preview_auto_complete(*, now: datetime | None = None) -> dict:
    rows = eligible_orders(now=now)
    stamp = now or _now()
    return {
        "eligibleCount": _eligible_query(now).count(),
        "graceHours": auto_complete_hours(),
        "orders": [
            {
                "id": int(o.id),
                "buyer_id": int(o.buyer_id),
                "total": float(o.total or 0.0),
                "delivered_at": o.delivered_at.isoformat() if o.delivered_at else None,
                "hoursSinceDelivery": round((stamp - o.delivered_at).total_seconds() / 3600.0, 2),
            }
            for o in rows
        ],
    }


def run_auto_complete(*, actor_user_id: int | None = None, now: datetime | None = None) -> dict:
    """Complete every eligible order as the system actor. Safe to run repeatedly."""
    completed: list[int] = []
    for batch in _eligible_batches(now):
        for order in batch:
            if not can_transition(order, OrderStatus.COMPLETED, Actor.SYSTEM):
                continue
            transition_order(order, OrderStatus.COMPLETED, actor=Actor.SYSTEM, note="auto_complete")
            completed.append(int(order.id))

    if completed:
        record_audit(
            "ORDERS_AUTO_COMPLETED",
            actor_user_id=actor_user_id,
            actor_role="admin" if actor_user_id is not None else "system",
            target_type="order",
            metadata={"order_ids": completed, "count": len(completed), "grace_hours": auto_complete_hours()},
        )
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("auto_complete_commit_failed count=%s", len(completed))
        raise DatabaseError("Failed to auto-complete orders")

    current_app.logger.info("orders_auto_completed count=%s", len(completed))
    return {"completedCount": len(completed), "orderIds": completed}
