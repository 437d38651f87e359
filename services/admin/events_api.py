from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.core.security import Principal, require_roles
from app.db.session import get_db
from app.events import bus
from app.events.outbox import OutboxEvent
from app.events.subscriptions import EventSubscription


router = APIRouter(prefix="/admin/events", tags=["admin_events"])

require_admin = require_roles(["ADMIN"])


def _sub_query(db: Session, principal: Principal):
    q = db.query(EventSubscription)
    if principal.organization_id:
        q = q.filter(EventSubscription.organization_id == principal.organization_id)
    return q


@router.get("/subscriptions")
def list_subscriptions(db: Session = Depends(get_db), principal: Principal = Depends(require_admin)):
    subs = _sub_query(db, principal).order_by(EventSubscription.created_at.desc()).all()
    return [
        {
            "id": s.id,
            "organization_id": s.organization_id,
            "name": s.name,
            "topic_pattern": s.topic_pattern,
            "target_url": s.target_url,
            "headers": s.headers or {},
            "is_active": bool(s.is_active),
            "failure_count": int(s.failure_count or 0),
            "last_error": s.last_error,
            "last_delivered_at": s.last_delivered_at.isoformat() if s.last_delivered_at else None,
            "created_at": s.created_at.isoformat() if s.created_at else None,
        }
        for s in subs
    ]


@router.post("/subscriptions")
def create_subscription(payload: dict, db: Session = Depends(get_db), principal: Principal = Depends(require_admin)):
    name = (payload or {}).get("name") or "subscription"
    topic_pattern = (payload or {}).get("topic_pattern")
    target_url = (payload or {}).get("target_url")
    headers = (payload or {}).get("headers") or {}

    if not topic_pattern or not target_url:
        raise HTTPException(422, "topic_pattern and target_url are required")

    s = EventSubscription(
        organization_id=principal.organization_id,
        name=name,
        topic_pattern=str(topic_pattern),
        target_url=str(target_url),
        headers=headers,
        is_active=bool((payload or {}).get("is_active", True)),
        failure_count=0,
    )
    db.add(s)
    db.commit()
    db.refresh(s)
    return {"ok": True, "id": s.id}


@router.post("/subscriptions/{sub_id}/toggle")
def toggle_subscription(sub_id: str, payload: dict | None = None, db: Session = Depends(get_db), principal: Principal = Depends(require_admin)):
    s = _sub_query(db, principal).filter(EventSubscription.id == sub_id).first()
    if not s:
        raise HTTPException(404, "Unknown subscription")
    s.is_active = bool((payload or {}).get("is_active", not bool(s.is_active)))
    db.commit()
    return {"ok": True, "id": s.id, "is_active": bool(s.is_active)}


@router.delete("/subscriptions/{sub_id}")
def delete_subscription(sub_id: str, db: Session = Depends(get_db), principal: Principal = Depends(require_admin)):
    s = _sub_query(db, principal).filter(EventSubscription.id == sub_id).first()
    if not s:
        return {"ok": True, "deleted": False}
    db.delete(s)
    db.commit()
    return {"ok": True, "deleted": True}


@router.get("/outbox")
def list_outbox(pending: bool = True, limit: int = 100, db: Session = Depends(get_db), principal: Principal = Depends(require_admin)):
    q = db.query(OutboxEvent)
    if principal.organization_id:
        q = q.filter(OutboxEvent.organization_id == principal.organization_id)
    if pending:
        q = q.filter(OutboxEvent.delivered == False)  # noqa: E712
    return [
        {
            "id": e.id,
            "topic": e.topic,
            "payload": e.payload or {},
            "attempt_count": e.attempt_count,
            "last_error": e.last_error,
            "delivered": bool(e.delivered),
            "available_at": e.available_at.isoformat() if e.available_at else None,
        }
        for e in q.order_by(OutboxEvent.created_at.asc()).limit(limit).all()
    ]


@router.post("/publish")
def publish_event(payload: dict, db: Session = Depends(get_db), principal: Principal = Depends(require_admin)):
    """Admin-only test publish endpoint.

    Services publish by calling app.events.bus.publish(db, topic, payload, commit=False)
    inside their own unit of work.
    """
    topic = (payload or {}).get("topic")
    event_payload = (payload or {}).get("payload") or {}
    if not topic:
        raise HTTPException(422, "topic is required")
    evt = bus.publish(db, str(topic), dict(event_payload), organization_id=principal.organization_id,
                      available_at=datetime.utcnow())
    return {"ok": True, "event_id": evt.id, "topic": evt.topic}
