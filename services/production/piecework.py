"""Piecework tickets: per-report stock consumption and worker pay."""
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy.orm import Session

from app.core.errors import AlreadyCompletedError, InvalidRequestError
from app.core.policy import ProductionPolicy
from app.core.tenant import require_organization
from app.db.models.commerce import MOVEMENT_PRODUCTION_USE
from app.db.models.production import (
    BATCH_COMPLETED,
    PieceworkTicket,
    TICKET_APPROVED,
    TICKET_PAID,
    TICKET_PENDING,
)
from app.db.session import atomic
from services.inventory import ledger
from services.production.batches import get_batch, require_process
from services.production.recipe import Recipe

logger = logging.getLogger(__name__)


def _cents(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def effective_rate(recipe: Recipe, policy: ProductionPolicy) -> tuple[int, bool]:
    """Unit price in cents and whether the low-rate correction was applied.

    An enabled rate below ``policy.low_rate_threshold`` is taken to be typed in currency
    units and scaled by ``policy.rate_correction_factor``.
    """
    rate = recipe.piecework_rate
    if (
        policy.rate_correction_enabled
        and recipe.piecework_enabled
        and Decimal("0") < rate < policy.low_rate_threshold
    ):
        return _cents(rate * policy.rate_correction_factor), True
    return _cents(rate), False


def report_production(
    db: Session,
    *,
    organization_id: str | None,
    batch_id: str,
    employee_id: str,
    quantity: int,
    unit: str | None = None,
    creator_id: str | None = None,
    policy: ProductionPolicy | None = None,
) -> PieceworkTicket:
    """Record a worker's output for a batch.

    Consumes ``quantity * consumption_ratio`` of the recipe input product and creates the
    ticket in one transaction; nothing is written when stock is short.
    """
    org = require_organization(organization_id)
    policy = policy or ProductionPolicy()
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidRequestError(f"Quantity must be a positive integer, got {quantity!r}", quantity=quantity)
    if not employee_id:
        raise InvalidRequestError("employee_id is required")

    required_input = quantity * policy.consumption_ratio

    with atomic(db):
        # Same row lock as finish_batch, so a report never lands on a settled batch.
        batch = get_batch(db, org, batch_id, lock=True)
        if batch.status == BATCH_COMPLETED:
            raise AlreadyCompletedError(batch.id)
        process = require_process(db, org, batch.process_id)
        recipe = Recipe.from_json(process.recipe)

        unit_price, corrected = effective_rate(recipe, policy)
        if corrected:
            logger.warning(
                "piecework rate %s on process %s looks like currency units, using %s cents",
                recipe.piecework_rate, process.id, unit_price,
            )

        if recipe.input_product_id and required_input > 0:
            ledger.debit(
                db,
                organization_id=org,
                product_id=recipe.input_product_id,
                quantity=required_input,
                movement_type=MOVEMENT_PRODUCTION_USE,
                reference_id=batch.id,
                notes=f"Piecework consumption: {quantity} units reported",
                user_id=creator_id,
            )
        ticket = PieceworkTicket(
            organization_id=org,
            batch_id=batch.id,
            employee_id=employee_id,
            creator_id=creator_id,
            task_name=process.name,
            quantity=quantity,
            unit_price=unit_price,
            total_amount=quantity * unit_price,
            status=TICKET_PENDING,
            attributes={
                "unit": unit or "pza",
                "configuredRate": str(recipe.piecework_rate),
                "rateCorrected": corrected,
            },
        )
        db.add(ticket)
    db.refresh(ticket)
    logger.info("ticket %s: %s x%s on batch %s = %s cents", ticket.id, employee_id, quantity, batch.id, ticket.total_amount)
    return ticket


def list_tickets(
    db: Session,
    organization_id: str,
    *,
    batch_id: str | None = None,
    employee_id: str | None = None,
    status: str | None = None,
    limit: int = 200,
) -> list[PieceworkTicket]:
    q = db.query(PieceworkTicket).filter(PieceworkTicket.organization_id == organization_id)
    if batch_id:
        q = q.filter(PieceworkTicket.batch_id == batch_id)
    if employee_id:
        q = q.filter(PieceworkTicket.employee_id == employee_id)
    if status:
        q = q.filter(PieceworkTicket.status == status)
    return q.order_by(PieceworkTicket.created_at.desc()).limit(limit).all()


def tickets_for_batch(db: Session, organization_id: str, batch_id: str) -> list[PieceworkTicket]:
    return (
        db.query(PieceworkTicket)
        .filter(PieceworkTicket.organization_id == organization_id, PieceworkTicket.batch_id == batch_id)
        .order_by(PieceworkTicket.created_at.asc())
        .all()
    )


def _tickets_by_id(db: Session, organization_id: str, ticket_ids: list[str]) -> list[PieceworkTicket]:
    if not ticket_ids:
        raise InvalidRequestError("ticket_ids must not be empty")
    return (
        db.query(PieceworkTicket)
        .filter(PieceworkTicket.organization_id == organization_id, PieceworkTicket.id.in_(ticket_ids))
        .all()
    )


def approve_tickets(db: Session, *, organization_id: str | None, ticket_ids: list[str], approver_id: str | None) -> list[PieceworkTicket]:
    """Pending tickets move to approved; others are left alone."""
    org = require_organization(organization_id)
    with atomic(db):
        tickets = _tickets_by_id(db, org, ticket_ids)
        changed = []
        for t in tickets:
            if t.status == TICKET_PENDING:
                t.status = TICKET_APPROVED
                t.approved_by = approver_id
                changed.append(t)
    return changed


def payout_tickets(db: Session, *, organization_id: str | None, ticket_ids: list[str]) -> dict:
    """Mark pending or approved tickets paid. Already paid tickets are skipped."""
    org = require_organization(organization_id)
    now = datetime.utcnow()
    with atomic(db):
        tickets = _tickets_by_id(db, org, ticket_ids)
        paid, skipped = [], []
        for t in tickets:
            if t.status == TICKET_PAID:
                skipped.append(t.id)
                continue
            t.status = TICKET_PAID
            t.paid_at = now
            paid.append(t)
        total = sum(t.total_amount for t in paid)
    logger.info("payout of %s tickets, %s cents (org %s)", len(paid), total, org)
    return {"paid": [t.id for t in paid], "skipped": skipped, "total_amount": total}
