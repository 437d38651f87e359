"""Product stock ledger.

Every stock change goes through this module and writes an InventoryMovement in the
same unit of work, so ``Product.stock`` always equals the sum of its movements.
Nothing here commits; callers wrap calls in ``app.db.session.atomic``.
"""
from __future__ import annotations

import logging

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from app.core.errors import ConfigurationError, InsufficientStockError, InvalidRequestError
from app.db.models.commerce import InventoryMovement, Product, MOVEMENT_ADJUSTMENT

logger = logging.getLogger(__name__)


def _check_quantity(quantity: int) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidRequestError(f"Quantity must be a positive integer, got {quantity!r}", quantity=quantity)
    return quantity


def get_product(db: Session, organization_id: str, product_id: str, *, lock: bool = False) -> Product | None:
    q = db.query(Product).filter(Product.id == product_id, Product.organization_id == organization_id)
    if lock:
        # Row lock held until the surrounding transaction ends (no-op on SQLite)
        q = q.with_for_update()
    return q.populate_existing().first()


def _require_product(db: Session, organization_id: str, product_id: str) -> Product:
    db.flush()
    product = get_product(db, organization_id, product_id, lock=True)
    if not product:
        raise ConfigurationError(f"Product {product_id} does not exist in inventory", product_id=product_id)
    return product


def _record(
    db: Session,
    product: Product,
    *,
    quantity: int,
    movement_type: str,
    reference_id: str | None,
    notes: str | None,
    user_id: str | None,
) -> InventoryMovement:
    db.refresh(product, ["stock"])
    mv = InventoryMovement(
        organization_id=product.organization_id,
        product_id=product.id,
        user_id=user_id,
        quantity=quantity,
        type=movement_type,
        reference_id=reference_id,
        before_stock=product.stock - quantity,
        after_stock=product.stock,
        notes=notes,
    )
    db.add(mv)
    db.flush()
    return mv


def check_available(db: Session, organization_id: str, product_id: str, quantity: int) -> Product:
    """Raise unless ``quantity`` units can be taken from the product right now."""
    product = _require_product(db, organization_id, product_id)
    if product.stock < quantity:
        raise InsufficientStockError(
            product_id=product.id, product_name=product.name, available=product.stock, required=quantity,
        )
    return product


def debit(
    db: Session,
    *,
    organization_id: str,
    product_id: str,
    quantity: int,
    movement_type: str,
    reference_id: str | None = None,
    notes: str | None = None,
    user_id: str | None = None,
) -> InventoryMovement:
    """Take stock out. The decrement is a single conditional UPDATE so it can never go negative."""
    _check_quantity(quantity)
    product = check_available(db, organization_id, product_id, quantity)

    res = db.execute(
        update(Product)
        .where(
            Product.id == product.id,
            Product.organization_id == organization_id,
            Product.stock >= quantity,
        )
        .values(stock=Product.stock - quantity)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        # A concurrent settlement got there first
        db.refresh(product, ["stock"])
        raise InsufficientStockError(
            product_id=product.id, product_name=product.name, available=product.stock, required=quantity,
        )

    logger.info("debit %s x%s (%s) ref=%s", product.id, quantity, movement_type, reference_id)
    return _record(db, product, quantity=-quantity, movement_type=movement_type,
                   reference_id=reference_id, notes=notes, user_id=user_id)


def credit(
    db: Session,
    *,
    organization_id: str,
    product_id: str,
    quantity: int,
    movement_type: str,
    reference_id: str | None = None,
    notes: str | None = None,
    user_id: str | None = None,
) -> InventoryMovement:
    _check_quantity(quantity)
    product = _require_product(db, organization_id, product_id)

    db.execute(
        update(Product)
        .where(Product.id == product.id, Product.organization_id == organization_id)
        .values(stock=Product.stock + quantity)
        .execution_options(synchronize_session=False)
    )
    logger.info("credit %s x%s (%s) ref=%s", product.id, quantity, movement_type, reference_id)
    return _record(db, product, quantity=quantity, movement_type=movement_type,
                   reference_id=reference_id, notes=notes, user_id=user_id)


def adjust(
    db: Session,
    *,
    organization_id: str,
    product_id: str,
    delta: int,
    notes: str | None = None,
    user_id: str | None = None,
) -> InventoryMovement:
    """Manual correction; the only sanctioned way to change stock outside production."""
    if delta == 0:
        raise InvalidRequestError("Adjustment delta must not be zero")
    fn = credit if delta > 0 else debit
    return fn(db, organization_id=organization_id, product_id=product_id, quantity=abs(delta),
              movement_type=MOVEMENT_ADJUSTMENT, notes=notes, user_id=user_id)


def open_product(
    db: Session,
    *,
    organization_id: str,
    name: str,
    sku: str | None = None,
    unit: str = "pza",
    opening_stock: int = 0,
    user_id: str | None = None,
) -> Product:
    product = Product(organization_id=organization_id, name=name, sku=sku, unit=unit, stock=0)
    db.add(product)
    db.flush()
    if opening_stock:
        if opening_stock < 0:
            raise InvalidRequestError("Opening stock cannot be negative", opening_stock=opening_stock)
        credit(db, organization_id=organization_id, product_id=product.id, quantity=opening_stock,
               movement_type=MOVEMENT_ADJUSTMENT, notes="Opening balance", user_id=user_id)
    return product


def ledger_balance(db: Session, organization_id: str, product_id: str) -> int:
    total = (
        db.query(func.coalesce(func.sum(InventoryMovement.quantity), 0))
        .filter(InventoryMovement.organization_id == organization_id, InventoryMovement.product_id == product_id)
        .scalar()
    )
    return int(total or 0)


def reconcile(db: Session, organization_id: str, product_id: str, *, apply: bool = False) -> dict:
    """Compare cached stock with the movement log; with ``apply`` the log wins."""
    product = _require_product(db, organization_id, product_id)
    balance = ledger_balance(db, organization_id, product_id)
    drift = product.stock - balance
    if drift and apply:
        if balance < 0:
            raise InvalidRequestError("Movement log sums to a negative balance", product_id=product_id, balance=balance)
        logger.warning("stock drift on %s: cached=%s ledger=%s, resetting", product_id, product.stock, balance)
        product.stock = balance
        db.flush()
    return {
        "product_id": product.id,
        "stock": product.stock,
        "ledger_balance": balance,
        "drift": drift,
        "corrected": bool(drift and apply),
    }
