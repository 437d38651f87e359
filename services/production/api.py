from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.core.audit import audit
from app.core.errors import ProductionError, TransientStoreError
from app.core.policy import ProductionPolicy, get_policy
from app.core.security import Principal, get_principal
from app.core.tenant import require_organization
from app.db.models.production import PieceworkTicket, ProcessDefinition
from app.db.session import get_db
from services.production import batches as batch_svc
from services.production import piecework
from services.production.inference import summarize_tasks
from services.production.settlement import finish_batch, whole_quantity
from services.production.summary import get_summary

router = APIRouter(prefix="/production", tags=["production"])


class ProcessIn(BaseModel):
    name: str
    type: str = "production"
    description: str | None = None
    recipe: dict[str, Any] = Field(default_factory=dict)


class BatchStartIn(BaseModel):
    process_id: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    source_batch_id: str | None = None


class CoProductIn(BaseModel):
    product_id: str
    quantity: int
    notes: str | None = None


class FinishIn(BaseModel):
    yields: int | dict[str, int] | None = None
    estimated_input: int | None = None
    notes: str | None = None
    co_products: list[CoProductIn] = Field(default_factory=list)


class ReportIn(BaseModel):
    employee_id: str
    quantity: int
    unit: str | None = None


class EventIn(BaseModel):
    event_type: str
    step_id: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)


class AnomalyIn(BaseModel):
    product_id: str
    quantity: int
    reason: str | None = None
    merma_type: str = "waste"
    step_id: str | None = None


class TicketIdsIn(BaseModel):
    ticket_ids: list[str]


def _http(e: ProductionError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.detail())


def _org(principal: Principal) -> str:
    try:
        return require_organization(principal.organization_id)
    except ProductionError as e:
        raise _http(e)


@contextmanager
def _audited(db: Session, principal: Principal, action: str, entity_id: str | None, payload: dict) -> Iterator[None]:
    """Map domain errors to HTTP and leave an audit row either way."""
    try:
        yield
    except ProductionError as e:
        if not isinstance(e, TransientStoreError):
            audit(db, actor=principal.username, action=action, entity_type="batch", entity_id=entity_id,
                  payload={**payload, **e.detail()}, success=False, organization_id=principal.organization_id)
        raise _http(e)
    audit(db, actor=principal.username, action=action, entity_type="batch", entity_id=entity_id,
          payload=payload, organization_id=principal.organization_id)


def _process_out(p: ProcessDefinition) -> dict:
    return {"id": p.id, "name": p.name, "type": p.type, "description": p.description, "recipe": p.recipe or {}}


def _ticket_out(t: PieceworkTicket) -> dict:
    return {
        "id": t.id,
        "batch_id": t.batch_id,
        "employee_id": t.employee_id,
        "creator_id": t.creator_id,
        "task_name": t.task_name,
        "quantity": t.quantity,
        "unit_price": t.unit_price,
        "total_amount": t.total_amount,
        "status": t.status,
        "approved_by": t.approved_by,
        "paid_at": t.paid_at.isoformat() if t.paid_at else None,
        "created_at": t.created_at.isoformat() if t.created_at else None,
        "attributes": t.attributes or {},
    }


# ---- process definitions ----

@router.post("/processes", status_code=201)
def create_process(payload: ProcessIn, db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    try:
        p = batch_svc.create_process(db, organization_id=principal.organization_id, name=payload.name,
                                     recipe=payload.recipe, type=payload.type, description=payload.description)
    except ProductionError as e:
        raise _http(e)
    return _process_out(p)


@router.get("/processes")
def list_processes(type: str | None = None, db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    org = _org(principal)
    q = db.query(ProcessDefinition).filter(ProcessDefinition.organization_id == org)
    if type:
        q = q.filter(ProcessDefinition.type == type)
    return [_process_out(p) for p in q.order_by(ProcessDefinition.created_at.desc()).all()]


@router.get("/processes/{process_id}")
def get_process(process_id: str, db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    p = batch_svc.get_process(db, _org(principal), process_id)
    if not p:
        raise HTTPException(404, "Process not found")
    return _process_out(p)


# ---- batches ----

@router.post("/batches", status_code=201)
def start_batch(
    payload: BatchStartIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
    policy: ProductionPolicy = Depends(get_policy),
):
    try:
        b = batch_svc.start_batch(db, organization_id=principal.organization_id, process_id=payload.process_id,
                                  metadata=payload.metadata, source_batch_id=payload.source_batch_id, policy=policy)
    except ProductionError as e:
        raise _http(e)
    return batch_svc.batch_to_dict(b)


@router.get("/batches")
def list_batches(status: str | None = None, limit: int = 100, db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    return [batch_svc.batch_to_dict(b) for b in batch_svc.list_batches(db, _org(principal), status=status, limit=limit)]


@router.get("/batches/{batch_id}")
def get_batch(batch_id: str, db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    org = _org(principal)
    try:
        b = batch_svc.get_batch(db, org, batch_id)
    except ProductionError as e:
        raise _http(e)
    out = batch_svc.batch_to_dict(b)
    out["events"] = [batch_svc.event_to_dict(e) for e in b.events]
    out["tickets"] = [_ticket_out(t) for t in piecework.tickets_for_batch(db, org, b.id)]
    return out


@router.post("/batches/{batch_id}/finish")
def finish(
    batch_id: str,
    payload: FinishIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
    policy: ProductionPolicy = Depends(get_policy),
):
    body = payload.model_dump()
    co_products = [{"productId": cp.product_id, "quantity": cp.quantity, "notes": cp.notes} for cp in payload.co_products]
    with _audited(db, principal, "production.finish", batch_id, body):
        b = finish_batch(
            db,
            organization_id=principal.organization_id,
            batch_id=batch_id,
            yields=payload.yields,
            estimated_input=payload.estimated_input,
            notes=payload.notes,
            co_products=co_products,
            user_id=principal.user_id,
            policy=policy,
        )
    return batch_svc.batch_to_dict(b)


@router.post("/batches/{batch_id}/report", status_code=201)
def report(
    batch_id: str,
    payload: ReportIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
    policy: ProductionPolicy = Depends(get_policy),
):
    with _audited(db, principal, "production.report", batch_id, payload.model_dump()):
        t = piecework.report_production(
            db,
            organization_id=principal.organization_id,
            batch_id=batch_id,
            employee_id=payload.employee_id,
            quantity=payload.quantity,
            unit=payload.unit,
            creator_id=principal.user_id,
            policy=policy,
        )
    return _ticket_out(t)


@router.post("/batches/{batch_id}/events", status_code=201)
def log_event(batch_id: str, payload: EventIn, db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    """Free-form traceability event.

    Waste anomalies (``mermaType`` with ``productId`` and ``quantity``) also write off stock.
    """
    data = payload.data or {}
    if batch_svc.is_waste_payload(payload.event_type, data):
        with _audited(db, principal, "production.anomaly", batch_id, payload.model_dump()):
            evt = batch_svc.report_anomaly(
                db,
                organization_id=principal.organization_id,
                batch_id=batch_id,
                product_id=str(data["productId"]),
                quantity=whole_quantity(data["quantity"], "quantity"),
                reason=data.get("reason"),
                merma_type=str(data["mermaType"]),
                step_id=payload.step_id,
                user_id=principal.user_id,
                extra=data,
            )
        return batch_svc.event_to_dict(evt)

    try:
        evt = batch_svc.log_event(db, organization_id=principal.organization_id, batch_id=batch_id,
                                  event_type=payload.event_type, data=data, step_id=payload.step_id,
                                  user_id=principal.user_id)
    except ProductionError as e:
        raise _http(e)
    return batch_svc.event_to_dict(evt)


@router.post("/batches/{batch_id}/anomalies", status_code=201)
def report_anomaly(batch_id: str, payload: AnomalyIn, db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    with _audited(db, principal, "production.anomaly", batch_id, payload.model_dump()):
        evt = batch_svc.report_anomaly(
            db,
            organization_id=principal.organization_id,
            batch_id=batch_id,
            product_id=payload.product_id,
            quantity=payload.quantity,
            reason=payload.reason,
            merma_type=payload.merma_type,
            step_id=payload.step_id,
            user_id=principal.user_id,
        )
    return batch_svc.event_to_dict(evt)


@router.get("/batches/{batch_id}/task-summary")
def task_summary(batch_id: str, db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    org = _org(principal)
    try:
        b = batch_svc.get_batch(db, org, batch_id)
    except ProductionError as e:
        raise _http(e)
    return [g.as_dict() for g in summarize_tasks(piecework.tickets_for_batch(db, org, b.id))]


# ---- piecework tickets ----

@router.get("/tickets")
def list_tickets(
    batch_id: str | None = None,
    employee_id: str | None = None,
    status: str | None = None,
    limit: int = 200,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    tickets = piecework.list_tickets(db, _org(principal), batch_id=batch_id, employee_id=employee_id, status=status, limit=limit)
    return [_ticket_out(t) for t in tickets]


@router.post("/tickets/approve")
def approve_tickets(payload: TicketIdsIn, db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    try:
        changed = piecework.approve_tickets(db, organization_id=principal.organization_id,
                                            ticket_ids=payload.ticket_ids, approver_id=principal.user_id)
    except ProductionError as e:
        raise _http(e)
    return {"ok": True, "approved": [t.id for t in changed]}


@router.post("/tickets/payout")
def payout_tickets(payload: TicketIdsIn, db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    try:
        result = piecework.payout_tickets(db, organization_id=principal.organization_id, ticket_ids=payload.ticket_ids)
    except ProductionError as e:
        raise _http(e)
    audit(db, actor=principal.username, action="production.payout", entity_type="piecework_ticket",
          payload=result, organization_id=principal.organization_id)
    return {"ok": True, **result}


@router.get("/summary")
def summary(db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    return get_summary(db, _org(principal))
