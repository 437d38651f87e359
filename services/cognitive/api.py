from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.core.errors import ProductionError
from app.core.security import Principal, get_principal
from app.core.tenant import require_organization
from app.db.models.insights import AIInsight
from app.db.session import get_db
from app.events import bus
from services.cognitive.engine import RULES

router = APIRouter(prefix="/cognitive", tags=["cognitive"])


class BusinessEventIn(BaseModel):
    type: str
    data: dict[str, Any] = Field(default_factory=dict)


def _org(principal: Principal) -> str:
    try:
        return require_organization(principal.organization_id)
    except ProductionError as e:
        raise HTTPException(e.status_code, e.detail())


def _insight_out(i: AIInsight) -> dict:
    return {
        "id": i.id,
        "type": i.type,
        "title": i.title,
        "description": i.description,
        "impact": i.impact,
        "severity": i.severity,
        "confidence": i.confidence,
        "meta": i.meta or {},
        "acknowledged": bool(i.acknowledged),
        "created_at": i.created_at.isoformat() if i.created_at else None,
    }


@router.get("/insights")
def list_insights(
    unacknowledged: bool = False,
    type: str | None = None,
    limit: int = 50,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    q = db.query(AIInsight).filter(AIInsight.organization_id == _org(principal))
    if unacknowledged:
        q = q.filter(AIInsight.acknowledged == False)  # noqa: E712
    if type:
        q = q.filter(AIInsight.type == type)
    return [_insight_out(i) for i in q.order_by(AIInsight.created_at.desc()).limit(limit).all()]


@router.post("/insights/{insight_id}/acknowledge")
def acknowledge(insight_id: str, db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    i = db.query(AIInsight).filter(AIInsight.id == insight_id, AIInsight.organization_id == _org(principal)).first()
    if not i:
        raise HTTPException(404, "Insight not found")
    i.acknowledged = True
    db.commit()
    return {"ok": True, "id": i.id}


@router.post("/events", status_code=202)
def publish_business_event(payload: BusinessEventIn, db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    """Queue a business event (sale_created, logistics_stop_complete, ...) for the insight engine."""
    org = _org(principal)
    if payload.type not in RULES:
        raise HTTPException(400, {"error": "invalid_request", "message": f"Unknown event type {payload.type}"})
    evt = bus.publish(db, bus.cognitive_topic(payload.type), payload.data, organization_id=org)
    return {"ok": True, "event_id": evt.id, "topic": evt.topic}
