from contextlib import contextmanager
from decimal import Decimal

import pytest

from app.core.errors import AlreadyCompletedError, BatchNotFoundError, ConfigurationError, InsufficientStockError
from app.core.policy import ProductionPolicy
from app.db.models.commerce import InventoryMovement, Product, MOVEMENT_PRODUCTION_USE
from app.db.models.production import PieceworkTicket, TICKET_APPROVED, TICKET_PAID
from services.inventory import ledger
from services.production import batches, piecework
from services.production.piecework import (
    approve_tickets,
    effective_rate,
    list_tickets,
    payout_tickets,
    report_production,
)
from services.production.recipe import Recipe
from services.production.settlement import finish_batch

from conftest import ORG, make_process


def _stock(db, pid):
    return db.get(Product, pid, populate_existing=True).stock


def _batch_for(db, **recipe_kw):
    p = make_process(db, **recipe_kw)
    return batches.start_batch(db, organization_id=ORG, process_id=p.id)


def test_report_consumes_input_and_prices_ticket(db, seeded):
    t = report_production(db, organization_id=ORG, batch_id=seeded.batch, employee_id="emp-1", quantity=10)
    assert t.task_name == "Peeling"
    assert t.unit_price == 500
    assert t.total_amount == 5000
    assert t.status == "pending"
    assert _stock(db, seeded.p1) == 90

    mv = db.query(InventoryMovement).filter(InventoryMovement.reference_id == seeded.batch).one()
    assert (mv.product_id, mv.quantity, mv.type) == (seeded.p1, -10, MOVEMENT_PRODUCTION_USE)


def test_low_rate_is_treated_as_currency_units(db, seeded):
    b = _batch_for(db, input_id=seeded.p1, rate=2)
    t = report_production(db, organization_id=ORG, batch_id=b.id, employee_id="emp-1", quantity=10)
    assert t.unit_price == 200
    assert t.total_amount == 2000
    assert t.attributes["rateCorrected"] is True


def test_low_rate_left_alone_when_piecework_disabled(db, seeded):
    b = _batch_for(db, input_id=seeded.p1, rate=2, enabled=False)
    t = report_production(db, organization_id=ORG, batch_id=b.id, employee_id="emp-1", quantity=10)
    assert t.total_amount == 20


def test_rate_correction_can_be_switched_off(db, seeded):
    b = _batch_for(db, input_id=seeded.p1, rate=2)
    policy = ProductionPolicy(rate_correction_enabled=False)
    t = report_production(db, organization_id=ORG, batch_id=b.id, employee_id="emp-1", quantity=10, policy=policy)
    assert t.total_amount == 20


@pytest.mark.parametrize(
    "rate,enabled,expected",
    [(500, True, (500, False)), (2, True, (200, True)), (2.5, True, (250, True)),
     (4.999, True, (500, True)), (5, True, (5, False)), (0, True, (0, False)), (2, False, (2, False))],
)
def test_effective_rate(rate, enabled, expected):
    recipe = Recipe(piecework_enabled=enabled, piecework_rate=Decimal(str(rate)))
    assert effective_rate(recipe, ProductionPolicy()) == expected


def test_amount_is_quantity_times_effective_price(db, seeded):
    for qty in (1, 7, 13):
        t = report_production(db, organization_id=ORG, batch_id=seeded.batch, employee_id="emp-1", quantity=qty)
        assert t.total_amount == qty * t.unit_price


def test_insufficient_stock_blocks_without_mutation(db, seeded):
    report_production(db, organization_id=ORG, batch_id=seeded.batch, employee_id="emp-1", quantity=60)
    with pytest.raises(InsufficientStockError) as exc:
        report_production(db, organization_id=ORG, batch_id=seeded.batch, employee_id="emp-2", quantity=50)
    assert (exc.value.available, exc.value.required) == (40, 50)
    assert _stock(db, seeded.p1) == 40
    assert db.query(PieceworkTicket).count() == 1


def test_missing_input_product_is_configuration_error(db, seeded):
    b = _batch_for(db, input_id="ghost", rate=500)
    with pytest.raises(ConfigurationError):
        report_production(db, organization_id=ORG, batch_id=b.id, employee_id="emp-1", quantity=1)
    assert db.query(PieceworkTicket).count() == 0


def test_no_input_product_creates_ticket_only(db, seeded):
    b = _batch_for(db, rate=300)
    t = report_production(db, organization_id=ORG, batch_id=b.id, employee_id="emp-1", quantity=4)
    assert t.total_amount == 1200
    assert _stock(db, seeded.p1) == 100


def test_consumption_ratio_from_policy(db, seeded):
    report_production(db, organization_id=ORG, batch_id=seeded.batch, employee_id="emp-1", quantity=10,
                      policy=ProductionPolicy(consumption_ratio=3))
    assert _stock(db, seeded.p1) == 70


def test_unknown_batch(db, seeded):
    with pytest.raises(BatchNotFoundError):
        report_production(db, organization_id=ORG, batch_id="nope", employee_id="emp-1", quantity=1)


def test_completed_batch_refuses_reports(db, seeded):
    finish_batch(db, organization_id=ORG, batch_id=seeded.batch, yields={seeded.p2: 5}, estimated_input=5)
    with pytest.raises(AlreadyCompletedError):
        report_production(db, organization_id=ORG, batch_id=seeded.batch, employee_id="emp-1", quantity=1)


def test_report_rechecks_status_inside_its_transaction(db, session_factory, seeded, monkeypatch):
    real_atomic = piecework.atomic

    @contextmanager
    def finish_elsewhere_first(sess):
        # Another terminal settles the batch just before the report's transaction starts.
        with session_factory() as other:
            finish_batch(other, organization_id=ORG, batch_id=seeded.batch, yields={seeded.p2: 5}, estimated_input=5)
        with real_atomic(sess) as inner:
            yield inner

    monkeypatch.setattr(piecework, "atomic", finish_elsewhere_first)
    with pytest.raises(AlreadyCompletedError):
        report_production(db, organization_id=ORG, batch_id=seeded.batch, employee_id="emp-1", quantity=3)

    assert db.query(PieceworkTicket).count() == 0
    assert _stock(db, seeded.p1) == 95


def test_approve_and_payout(db, seeded):
    t1 = report_production(db, organization_id=ORG, batch_id=seeded.batch, employee_id="emp-1", quantity=2)
    t2 = report_production(db, organization_id=ORG, batch_id=seeded.batch, employee_id="emp-2", quantity=3)

    approved = approve_tickets(db, organization_id=ORG, ticket_ids=[t1.id], approver_id="boss")
    assert [t.id for t in approved] == [t1.id]
    assert db.get(PieceworkTicket, t1.id).status == TICKET_APPROVED

    result = payout_tickets(db, organization_id=ORG, ticket_ids=[t1.id, t2.id])
    assert sorted(result["paid"]) == sorted([t1.id, t2.id])
    assert result["total_amount"] == 2500
    assert db.get(PieceworkTicket, t2.id).paid_at is not None

    again = payout_tickets(db, organization_id=ORG, ticket_ids=[t1.id])
    assert again == {"paid": [], "skipped": [t1.id], "total_amount": 0}
    assert [t.status for t in list_tickets(db, ORG, employee_id="emp-1")] == [TICKET_PAID]


def test_ledger_still_balances_after_reports(db, seeded):
    report_production(db, organization_id=ORG, batch_id=seeded.batch, employee_id="emp-1", quantity=10)
    report_production(db, organization_id=ORG, batch_id=seeded.batch, employee_id="emp-1", quantity=15)
    assert ledger.reconcile(db, ORG, seeded.p1)["drift"] == 0
