from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from app.core.errors import BatchNotFoundError, ConfigurationError, InvalidRequestError
from app.core.policy import ProductionPolicy
from app.core.tenant import require_organization
from app.db.models.commerce import MOVEMENT_PRODUCTION
from app.db.models.production import Batch, BatchEvent, ProcessDefinition, BATCH_ACTIVE
from app.db.session import atomic
from app.events.bus import cognitive_topic, publish
from services.inventory import ledger

logger = logging.getLogger(__name__)

EVENT_ANOMALY = "anomaly"
EVENT_COMPLETE = "complete"


def get_process(db: Session, organization_id: str, process_id: str) -> ProcessDefinition | None:
    return (
        db.query(ProcessDefinition)
        .filter(ProcessDefinition.id == process_id, ProcessDefinition.organization_id == organization_id)
        .first()
    )


def require_process(db: Session, organization_id: str, process_id: str) -> ProcessDefinition:
    process = get_process(db, organization_id, process_id)
    if not process:
        raise ConfigurationError(f"Process {process_id} does not exist", process_id=process_id)
    return process


def get_batch(db: Session, organization_id: str, batch_id: str, *, lock: bool = False) -> Batch:
    q = db.query(Batch).filter(Batch.id == batch_id, Batch.organization_id == organization_id)
    if lock:
        q = q.with_for_update()
    batch = q.populate_existing().first()
    if not batch:
        raise BatchNotFoundError(batch_id)
    return batch


def list_batches(db: Session, organization_id: str, *, status: str | None = None, limit: int = 100) -> list[Batch]:
    q = db.query(Batch).filter(Batch.organization_id == organization_id)
    if status:
        q = q.filter(Batch.status == status)
    return q.order_by(Batch.started_at.desc()).limit(limit).all()


def create_process(
    db: Session,
    *,
    organization_id: str | None,
    name: str,
    recipe: dict | None = None,
    type: str = "production",
    description: str | None = None,
) -> ProcessDefinition:
    org = require_organization(organization_id)
    with atomic(db):
        process = ProcessDefinition(organization_id=org, name=name, type=type, description=description, recipe=recipe or {})
        db.add(process)
    db.refresh(process)
    return process


def start_batch(
    db: Session,
    *,
    organization_id: str | None,
    process_id: str,
    metadata: dict | None = None,
    source_batch_id: str | None = None,
    policy: ProductionPolicy | None = None,
) -> Batch:
    org = require_organization(organization_id)
    policy = policy or ProductionPolicy()
    if not get_process(db, org, process_id):
        if policy.require_process_on_start:
            raise ConfigurationError(f"Process {process_id} does not exist", process_id=process_id)
        logger.warning("starting batch for unknown process %s (org %s)", process_id, org)

    with atomic(db):
        batch = Batch(
            organization_id=org,
            process_id=process_id,
            status=BATCH_ACTIVE,
            source_batch_id=source_batch_id or None,
            context=dict(metadata or {}),
        )
        db.add(batch)
    db.refresh(batch)
    logger.info("batch %s started for process %s", batch.id, process_id)
    return batch


def append_event(
    db: Session,
    batch: Batch,
    event_type: str,
    data: dict | None,
    *,
    step_id: str | None = None,
    user_id: str | None = None,
) -> BatchEvent:
    evt = BatchEvent(batch_id=batch.id, step_id=step_id, event_type=event_type, data=dict(data or {}), user_id=user_id)
    db.add(evt)
    db.flush()
    return evt


def log_event(
    db: Session,
    *,
    organization_id: str | None,
    batch_id: str,
    event_type: str,
    data: dict | None = None,
    step_id: str | None = None,
    user_id: str | None = None,
) -> BatchEvent:
    """Append a traceability record. Never touches inventory."""
    org = require_organization(organization_id)
    if not event_type:
        raise InvalidRequestError("event_type is required")
    batch = get_batch(db, org, batch_id)
    with atomic(db):
        evt = append_event(db, batch, event_type, data, step_id=step_id, user_id=user_id)
    db.refresh(evt)
    return evt


def is_waste_payload(event_type: str, data: dict | None) -> bool:
    data = data or {}
    return event_type == EVENT_ANOMALY and bool(data.get("mermaType")) and bool(data.get("productId")) and bool(data.get("quantity"))


def report_anomaly(
    db: Session,
    *,
    organization_id: str | None,
    batch_id: str,
    product_id: str,
    quantity: int,
    reason: str | None = None,
    merma_type: str = "waste",
    step_id: str | None = None,
    user_id: str | None = None,
    extra: dict[str, Any] | None = None,
) -> BatchEvent:
    """Record waste on a batch: anomaly event and stock write-off in one transaction."""
    org = require_organization(organization_id)
    batch = get_batch(db, org, batch_id)
    data = {
        **(extra or {}),
        "mermaType": merma_type,
        "productId": product_id,
        "quantity": quantity,
        "reason": reason,
    }
    with atomic(db):
        evt = append_event(db, batch, EVENT_ANOMALY, data, step_id=step_id, user_id=user_id)
        ledger.debit(
            db,
            organization_id=org,
            product_id=product_id,
            quantity=quantity,
            movement_type=MOVEMENT_PRODUCTION,
            reference_id=batch.id,
            notes=f"Waste recorded: {reason or 'no reason given'}",
            user_id=user_id,
        )
        publish(
            db,
            cognitive_topic("anomaly_detected"),
            {"batchId": batch.id, "productId": product_id, "quantity": quantity, "reason": reason, "mermaType": merma_type},
            organization_id=org,
            reference_id=batch.id,
            commit=False,
        )
    db.refresh(evt)
    logger.info("anomaly on batch %s: %s x%s (%s)", batch.id, product_id, quantity, reason)
    return evt


def batch_to_dict(b: Batch) -> dict:
    return {
        "id": b.id,
        "process_id": b.process_id,
        "status": b.status,
        "started_at": b.started_at.isoformat() if b.started_at else None,
        "completed_at": b.completed_at.isoformat() if b.completed_at else None,
        "source_batch_id": b.source_batch_id,
        "context": b.context or {},
    }


def event_to_dict(e: BatchEvent) -> dict:
    return {
        "id": e.id,
        "batch_id": e.batch_id,
        "step_id": e.step_id,
        "event_type": e.event_type,
        "data": e.data or {},
        "user_id": e.user_id,
        "timestamp": e.timestamp.isoformat() if e.timestamp else None,
    }
