from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.audit import audit
from app.core.errors import ProductionError
from app.core.security import Principal, get_principal
from app.core.tenant import require_organization
from app.db.models.commerce import InventoryMovement, Product
from app.db.session import atomic, get_db
from services.inventory import ledger

router = APIRouter(prefix="/inventory", tags=["inventory"])


class ProductIn(BaseModel):
    name: str
    sku: str | None = None
    unit: str = "pza"
    opening_stock: int = 0


class AdjustIn(BaseModel):
    delta: int
    notes: str | None = None


def _org(principal: Principal) -> str:
    try:
        return require_organization(principal.organization_id)
    except ProductionError as e:
        raise HTTPException(e.status_code, e.detail())


def _product_out(p: Product) -> dict:
    return {"id": p.id, "name": p.name, "sku": p.sku, "unit": p.unit, "stock": p.stock, "is_active": bool(p.is_active)}


def _movement_out(m: InventoryMovement) -> dict:
    return {
        "id": m.id,
        "product_id": m.product_id,
        "quantity": m.quantity,
        "type": m.type,
        "reference_id": m.reference_id,
        "before_stock": m.before_stock,
        "after_stock": m.after_stock,
        "notes": m.notes,
        "user_id": m.user_id,
        "date": m.date.isoformat() if m.date else None,
    }


@router.post("/products", status_code=201)
def create_product(payload: ProductIn, db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    org = _org(principal)
    try:
        with atomic(db):
            p = ledger.open_product(db, organization_id=org, name=payload.name, sku=payload.sku, unit=payload.unit,
                                    opening_stock=payload.opening_stock, user_id=principal.user_id)
    except ProductionError as e:
        raise HTTPException(e.status_code, e.detail())
    db.refresh(p)
    return _product_out(p)


@router.get("/products")
def list_products(limit: int = 200, db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    qs = (
        db.query(Product)
        .filter(Product.organization_id == _org(principal))
        .order_by(Product.created_at.desc())
        .limit(limit)
        .all()
    )
    return [_product_out(p) for p in qs]


@router.get("/products/{product_id}")
def get_product(product_id: str, db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    p = ledger.get_product(db, _org(principal), product_id)
    if not p:
        raise HTTPException(404, "Product not found")
    return _product_out(p)


@router.post("/products/{product_id}/adjust")
def adjust_stock(product_id: str, payload: AdjustIn, db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    org = _org(principal)
    try:
        with atomic(db):
            mv = ledger.adjust(db, organization_id=org, product_id=product_id, delta=payload.delta,
                               notes=payload.notes, user_id=principal.user_id)
    except ProductionError as e:
        raise HTTPException(e.status_code, e.detail())
    audit(db, actor=principal.username, action="inventory.adjust", entity_type="product", entity_id=product_id,
          payload=payload.model_dump(), organization_id=org)
    return _movement_out(mv)


@router.get("/products/{product_id}/movements")
def list_movements(product_id: str, limit: int = 200, db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    qs = (
        db.query(InventoryMovement)
        .filter(InventoryMovement.organization_id == _org(principal), InventoryMovement.product_id == product_id)
        .order_by(InventoryMovement.date.desc())
        .limit(limit)
        .all()
    )
    return [_movement_out(m) for m in qs]


@router.post("/products/{product_id}/reconcile")
def reconcile(product_id: str, apply: bool = False, db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    org = _org(principal)
    try:
        with atomic(db):
            result = ledger.reconcile(db, org, product_id, apply=apply)
    except ProductionError as e:
        raise HTTPException(e.status_code, e.detail())
    if result["corrected"]:
        audit(db, actor=principal.username, action="inventory.reconcile", entity_type="product",
              entity_id=product_id, payload=result, organization_id=org)
    return result
