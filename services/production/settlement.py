"""Batch-finish settlement.

Input deduction, yield and co-product credits, the completion event, the status flip and
the insight notification are written in one transaction. Any failure leaves the batch
``active`` with stock untouched, and the caller may simply retry.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.errors import AlreadyCompletedError, ConfigurationError, InvalidRequestError, ProductionError
from app.core.policy import ProductionPolicy
from app.core.tenant import require_organization
from app.db.models.commerce import (
    InventoryMovement,
    MOVEMENT_PRODUCTION,
    MOVEMENT_PRODUCTION_COPRODUCT,
    MOVEMENT_PRODUCTION_USE,
)
from app.db.models.production import BATCH_COMPLETED, Batch
from app.db.session import atomic
from app.events.bus import cognitive_topic, publish
from services.inventory import ledger
from services.production.batches import EVENT_COMPLETE, append_event, get_batch, require_process
from services.production.inference import infer_input_quantity, total_yield
from services.production.piecework import tickets_for_batch
from services.production.recipe import Recipe

logger = logging.getLogger(__name__)

Yields = int | dict[str, Any] | None


def whole_quantity(value: Any, field: str) -> int:
    if value in (None, ""):
        return 0
    if isinstance(value, bool):
        raise InvalidRequestError(f"{field} must be an integer", value=value)
    if isinstance(value, float):
        if not value.is_integer():
            raise InvalidRequestError(f"{field} must be a whole number of units", value=value)
        return int(value)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidRequestError(f"{field} must be an integer", value=value) from None


def resolve_yields(yields: Yields, recipe: Recipe) -> dict[str, int]:
    """Turn the caller's yields into ``{product_id: quantity}``.

    A mapping is taken as-is. A bare number is the legacy form and goes to the recipe's
    primary output product. Non-positive entries are dropped.
    """
    if isinstance(yields, dict):
        resolved = {}
        for pid, qty in yields.items():
            q = whole_quantity(qty, f"yields[{pid}]")
            if q > 0:
                resolved[str(pid)] = q
        return resolved

    legacy = whole_quantity(yields, "yields")
    if legacy <= 0:
        return {}
    output_id = recipe.primary_output_id
    if not output_id:
        raise ConfigurationError("Process has no output product configured for a numeric yield")
    return {output_id: legacy}


def resolve_coproducts(co_products: Iterable[dict] | None) -> list[dict]:
    resolved = []
    for cp in co_products or []:
        pid = cp.get("productId") or cp.get("product_id")
        qty = whole_quantity(cp.get("quantity"), "coProducts.quantity")
        if pid and qty > 0:
            resolved.append({"productId": str(pid), "quantity": qty, "notes": cp.get("notes")})
    return resolved


def consumed_by_tickets(db: Session, organization_id: str, batch_id: str, product_id: str) -> int:
    total = (
        db.query(func.coalesce(func.sum(InventoryMovement.quantity), 0))
        .filter(
            InventoryMovement.organization_id == organization_id,
            InventoryMovement.reference_id == batch_id,
            InventoryMovement.product_id == product_id,
            InventoryMovement.type == MOVEMENT_PRODUCTION_USE,
        )
        .scalar()
    )
    return -int(total or 0)


def finish_batch(
    db: Session,
    *,
    organization_id: str | None,
    batch_id: str,
    yields: Yields = None,
    estimated_input: int | None = None,
    notes: str | None = None,
    co_products: Iterable[dict] | None = None,
    user_id: str | None = None,
    policy: ProductionPolicy | None = None,
) -> Batch:
    org = require_organization(organization_id)
    policy = policy or ProductionPolicy()
    caller_input = whole_quantity(estimated_input, "estimatedInput")

    try:
        with atomic(db):
            batch = get_batch(db, org, batch_id, lock=True)
            if batch.status == BATCH_COMPLETED:
                raise AlreadyCompletedError(batch.id)

            process = require_process(db, org, batch.process_id)
            recipe = Recipe.from_json(process.recipe)

            tickets = tickets_for_batch(db, org, batch.id)
            inferred_input = infer_input_quantity(tickets, caller_input, strategy=policy.input_inference)
            final_yields = resolve_yields(yields, recipe)
            coproducts = resolve_coproducts(co_products)
            logger.info(
                "settling batch %s: input=%s (caller %s, %s tickets) yields=%s",
                batch.id, inferred_input, caller_input, len(tickets), final_yields,
            )

            to_deduct = inferred_input
            if recipe.input_product_id and policy.net_ticket_consumption:
                already = consumed_by_tickets(db, org, batch.id, recipe.input_product_id)
                to_deduct = max(inferred_input - already, 0)

            if recipe.input_product_id and to_deduct > 0:
                ledger.debit(
                    db,
                    organization_id=org,
                    product_id=recipe.input_product_id,
                    quantity=to_deduct,
                    movement_type=MOVEMENT_PRODUCTION_USE,
                    reference_id=batch.id,
                    notes=f"Batch consumption (inferred): {to_deduct} units",
                    user_id=user_id,
                )

            for pid, qty in final_yields.items():
                ledger.credit(
                    db,
                    organization_id=org,
                    product_id=pid,
                    quantity=qty,
                    movement_type=MOVEMENT_PRODUCTION,
                    reference_id=batch.id,
                    notes="Batch output",
                    user_id=user_id,
                )

            for cp in coproducts:
                ledger.credit(
                    db,
                    organization_id=org,
                    product_id=cp["productId"],
                    quantity=cp["quantity"],
                    movement_type=MOVEMENT_PRODUCTION_COPRODUCT,
                    reference_id=batch.id,
                    notes=f"Co-product: {cp['notes'] or ''}".rstrip(),
                    user_id=user_id,
                )

            produced = total_yield(final_yields)
            append_event(
                db,
                batch,
                EVENT_COMPLETE,
                {
                    "yields": final_yields,
                    "estimatedInput": inferred_input,
                    "coProducts": coproducts,
                    "notes": notes,
                    "message": f"Batch closed. Estimated consumption: {inferred_input} units.",
                },
                user_id=user_id,
            )

            batch.status = BATCH_COMPLETED
            batch.completed_at = datetime.utcnow()
            batch.context = {
                **(batch.context or {}),
                "yields": {"final": yields, "estimatedInput": caller_input, "inferredInput": inferred_input},
            }

            publish(
                db,
                cognitive_topic("production_finish"),
                {
                    "batchId": batch.id,
                    "processName": process.name,
                    "yields": produced,
                    "estimatedInput": inferred_input,
                    "notes": notes,
                },
                organization_id=org,
                reference_id=batch.id,
                commit=False,
            )
    except ProductionError as e:
        logger.warning("settlement of batch %s refused: %s", batch_id, e.message)
        raise

    db.refresh(batch)
    logger.info("batch %s completed: %s units out of %s input", batch.id, produced, inferred_input)
    return batch
