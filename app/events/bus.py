from __future__ import annotations

from datetime import datetime

from sqlalchemy.orm import Session

from app.events.outbox import OutboxEvent

# Topics consumed by the cognitive engine
COGNITIVE_PREFIX = "cognitive."


def cognitive_topic(event_type: str) -> str:
    return f"{COGNITIVE_PREFIX}{event_type}"


def publish(
    db: Session,
    topic: str,
    payload: dict,
    *,
    organization_id: str | None = None,
    reference_id: str | None = None,
    available_at: datetime | None = None,
    commit: bool = True,
) -> OutboxEvent:
    """Publish an event by writing to the transactional outbox.

    Pass ``commit=False`` to enlist the event in the caller's unit of work; it is then
    delivered only if that unit of work commits.
    """
    evt = OutboxEvent(
        organization_id=organization_id,
        topic=topic,
        reference_id=reference_id,
        payload=payload or {},
        available_at=available_at or datetime.utcnow(),
        delivered=False,
        attempt_count=0,
    )
    db.add(evt)
    if commit:
        db.commit()
        db.refresh(evt)
    else:
        db.flush()
    return evt
