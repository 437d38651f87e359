from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.db.models.commerce import InventoryMovement, MOVEMENT_PRODUCTION
from app.db.models.production import Batch, BatchEvent, BATCH_ACTIVE, BATCH_COMPLETED
from services.production.batches import EVENT_ANOMALY, batch_to_dict
from services.production.inference import total_yield

SUMMARY_WINDOW = 100
WASTE_WINDOW_DAYS = 30


def _waste_quantity(events: list[BatchEvent]) -> int:
    total = 0
    for e in events:
        try:
            total += int((e.data or {}).get("quantity") or 0)
        except (TypeError, ValueError):
            continue
    return total


def efficiency_of(batches: list[Batch]) -> float | None:
    """Total yield over total inferred input across completed batches, as a percentage."""
    produced = consumed = 0
    for b in batches:
        snap = (b.context or {}).get("yields") or {}
        inp = snap.get("inferredInput") or snap.get("estimatedInput") or 0
        if not inp:
            continue
        produced += total_yield(snap.get("final"))
        consumed += int(inp)
    if not consumed:
        return None
    return round(produced * 100.0 / consumed, 1)


def get_summary(db: Session, organization_id: str, *, now: datetime | None = None) -> dict:
    now = now or datetime.utcnow()
    batches = (
        db.query(Batch)
        .filter(Batch.organization_id == organization_id)
        .order_by(Batch.started_at.desc())
        .limit(SUMMARY_WINDOW)
        .all()
    )
    active = [b for b in batches if b.status == BATCH_ACTIVE]
    completed = [b for b in batches if b.status == BATCH_COMPLETED]

    cycles = [
        (b.completed_at - b.started_at).total_seconds()
        for b in completed
        if b.started_at and b.completed_at
    ]
    avg_cycle_hours = round(sum(cycles) / len(cycles) / 3600, 1) if cycles else 0.0

    since = now - timedelta(days=WASTE_WINDOW_DAYS)
    anomalies = (
        db.query(BatchEvent)
        .join(Batch, Batch.id == BatchEvent.batch_id)
        .filter(
            Batch.organization_id == organization_id,
            BatchEvent.event_type == EVENT_ANOMALY,
            BatchEvent.timestamp > since,
        )
        .all()
    )
    produced = (
        db.query(func.coalesce(func.sum(InventoryMovement.quantity), 0))
        .filter(
            InventoryMovement.organization_id == organization_id,
            InventoryMovement.type == MOVEMENT_PRODUCTION,
            InventoryMovement.quantity > 0,
            InventoryMovement.date > since,
        )
        .scalar()
    ) or 0
    wasted = _waste_quantity(anomalies)
    waste_pct = round(wasted * 100.0 / produced, 1) if produced else 0.0

    return {
        "active_count": len(active),
        "completed_count": len(completed),
        "total_count": len(batches),
        "efficiency": efficiency_of(completed),
        "waste": waste_pct,
        "waste_quantity": wasted,
        "anomaly_count": len(anomalies),
        "avg_cycle_time_hours": avg_cycle_hours,
        "recent_batches": [batch_to_dict(b) for b in batches[:5]],
    }
