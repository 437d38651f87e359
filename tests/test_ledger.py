import pytest
from sqlalchemy import update

from app.core.errors import ConfigurationError, InsufficientStockError, InvalidRequestError
from app.db.models.commerce import InventoryMovement, Product, MOVEMENT_ADJUSTMENT, MOVEMENT_PRODUCTION_USE
from app.db.session import atomic
from services.inventory import ledger

from conftest import ORG, OTHER_ORG


def _product(db, **kw):
    with atomic(db):
        p = ledger.open_product(db, organization_id=ORG, name=kw.pop("name", "Flour"), **kw)
    return p


def test_opening_stock_writes_adjustment_movement(db):
    p = _product(db, opening_stock=25)
    assert p.stock == 25
    mvs = db.query(InventoryMovement).filter(InventoryMovement.product_id == p.id).all()
    assert [(m.type, m.quantity, m.before_stock, m.after_stock) for m in mvs] == [(MOVEMENT_ADJUSTMENT, 25, 0, 25)]


def test_debit_and_credit_record_before_after(db):
    p = _product(db, opening_stock=10)
    with atomic(db):
        out = ledger.debit(db, organization_id=ORG, product_id=p.id, quantity=4,
                           movement_type=MOVEMENT_PRODUCTION_USE, reference_id="b1")
        back = ledger.credit(db, organization_id=ORG, product_id=p.id, quantity=1, movement_type="production")
    assert (out.quantity, out.before_stock, out.after_stock) == (-4, 10, 6)
    assert (back.quantity, back.before_stock, back.after_stock) == (1, 6, 7)
    db.refresh(p)
    assert p.stock == 7
    assert ledger.ledger_balance(db, ORG, p.id) == 7


def test_debit_refuses_to_go_negative(db):
    p = _product(db, name="Sugar", opening_stock=3)
    with pytest.raises(InsufficientStockError) as exc:
        with atomic(db):
            ledger.debit(db, organization_id=ORG, product_id=p.id, quantity=5, movement_type=MOVEMENT_PRODUCTION_USE)
    assert exc.value.available == 3
    assert exc.value.required == 5
    assert exc.value.detail()["product_name"] == "Sugar"
    db.refresh(p)
    assert p.stock == 3
    assert db.query(InventoryMovement).filter(InventoryMovement.product_id == p.id).count() == 1


def test_unknown_product_is_configuration_error(db):
    with pytest.raises(ConfigurationError):
        ledger.debit(db, organization_id=ORG, product_id="missing", quantity=1, movement_type="production")


def test_products_are_scoped_by_organization(db):
    p = _product(db, opening_stock=10)
    with pytest.raises(ConfigurationError):
        ledger.debit(db, organization_id=OTHER_ORG, product_id=p.id, quantity=1, movement_type="production")


@pytest.mark.parametrize("qty", [0, -1, 1.5, True, "3"])
def test_quantity_must_be_positive_integer(db, qty):
    p = _product(db, opening_stock=10)
    with pytest.raises(InvalidRequestError):
        ledger.credit(db, organization_id=ORG, product_id=p.id, quantity=qty, movement_type="production")


def test_adjust_both_directions(db):
    p = _product(db, opening_stock=10)
    with atomic(db):
        ledger.adjust(db, organization_id=ORG, product_id=p.id, delta=-4, notes="damaged")
        ledger.adjust(db, organization_id=ORG, product_id=p.id, delta=2, notes="found")
    db.refresh(p)
    assert p.stock == 8
    with pytest.raises(InvalidRequestError):
        ledger.adjust(db, organization_id=ORG, product_id=p.id, delta=0)


def test_reconcile_reports_and_corrects_drift(db):
    p = _product(db, opening_stock=10)
    # Out-of-band edit that bypasses the ledger
    db.execute(update(Product).where(Product.id == p.id).values(stock=13))
    db.commit()

    report = ledger.reconcile(db, ORG, p.id)
    assert report == {"product_id": p.id, "stock": 13, "ledger_balance": 10, "drift": 3, "corrected": False}

    with atomic(db):
        fixed = ledger.reconcile(db, ORG, p.id, apply=True)
    assert fixed["corrected"] is True
    db.refresh(p)
    assert p.stock == 10
    assert ledger.reconcile(db, ORG, p.id)["drift"] == 0
