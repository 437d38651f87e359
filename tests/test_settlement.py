import pytest

from app.core.errors import AlreadyCompletedError, ConfigurationError, InsufficientStockError, InvalidRequestError
from app.core.policy import INPUT_FROM_CALLER_ONLY, ProductionPolicy
from app.db.models.commerce import (
    InventoryMovement,
    Product,
    MOVEMENT_PRODUCTION,
    MOVEMENT_PRODUCTION_COPRODUCT,
    MOVEMENT_PRODUCTION_USE,
)
from app.db.models.production import Batch, BatchEvent, PieceworkTicket
from app.events.outbox import OutboxEvent
from services.production import batches
from services.production.piecework import report_production
from services.production.settlement import finish_batch

from conftest import ORG, make_process


def _stock(db, pid):
    return db.get(Product, pid, populate_existing=True).stock


def _movements(db, batch_id):
    return (
        db.query(InventoryMovement)
        .filter(InventoryMovement.reference_id == batch_id)
        .order_by(InventoryMovement.date.asc())
        .all()
    )


def _batch(db, batch_id):
    return db.get(Batch, batch_id, populate_existing=True)


def test_finish_settles_input_and_yields(db, seeded):
    b = finish_batch(db, organization_id=ORG, batch_id=seeded.batch, yields={seeded.p2: 50}, estimated_input=30)

    assert b.status == "completed"
    assert b.completed_at is not None
    assert _stock(db, seeded.p1) == 70
    assert _stock(db, seeded.p2) == 50
    assert sorted((m.product_id, m.quantity, m.type) for m in _movements(db, seeded.batch)) == sorted([
        (seeded.p1, -30, MOVEMENT_PRODUCTION_USE),
        (seeded.p2, 50, MOVEMENT_PRODUCTION),
    ])


def test_insufficient_input_leaves_everything_untouched(db, seeded):
    with pytest.raises(InsufficientStockError) as exc:
        finish_batch(db, organization_id=ORG, batch_id=seeded.batch, yields={seeded.p2: 50}, estimated_input=200)

    assert exc.value.available == 100
    assert exc.value.required == 200
    assert _stock(db, seeded.p1) == 100
    assert _stock(db, seeded.p2) == 0
    assert _movements(db, seeded.batch) == []
    b = _batch(db, seeded.batch)
    assert b.status == "active"
    assert b.completed_at is None


def test_failure_after_input_deduction_rolls_back_everything(db, seeded):
    with pytest.raises(ConfigurationError):
        finish_batch(
            db,
            organization_id=ORG,
            batch_id=seeded.batch,
            yields={seeded.p2: 10, "ghost-product": 5},
            estimated_input=30,
        )

    assert _stock(db, seeded.p1) == 100
    assert _stock(db, seeded.p2) == 0
    assert _movements(db, seeded.batch) == []
    assert db.query(BatchEvent).filter(BatchEvent.batch_id == seeded.batch).count() == 0
    assert db.query(OutboxEvent).count() == 0
    assert _batch(db, seeded.batch).status == "active"


def test_retry_after_failure_succeeds(db, seeded):
    with pytest.raises(InsufficientStockError):
        finish_batch(db, organization_id=ORG, batch_id=seeded.batch, yields={seeded.p2: 5}, estimated_input=500)
    b = finish_batch(db, organization_id=ORG, batch_id=seeded.batch, yields={seeded.p2: 5}, estimated_input=50)
    assert b.status == "completed"
    assert _stock(db, seeded.p1) == 50


def test_second_finish_is_rejected_without_new_movements(db, seeded):
    finish_batch(db, organization_id=ORG, batch_id=seeded.batch, yields={seeded.p2: 50}, estimated_input=30)
    before = len(_movements(db, seeded.batch))

    with pytest.raises(AlreadyCompletedError):
        finish_batch(db, organization_id=ORG, batch_id=seeded.batch, yields={seeded.p2: 50}, estimated_input=30)

    assert len(_movements(db, seeded.batch)) == before
    assert _stock(db, seeded.p1) == 70
    assert _stock(db, seeded.p2) == 50


def test_input_inferred_from_largest_task(db, seeded):
    db.add_all([
        PieceworkTicket(organization_id=ORG, batch_id=seeded.batch, employee_id="e1", task_name="Topping",
                        quantity=20, unit_price=100, total_amount=2000),
        PieceworkTicket(organization_id=ORG, batch_id=seeded.batch, employee_id="e2", task_name="Peeling",
                        quantity=12, unit_price=100, total_amount=1200),
        PieceworkTicket(organization_id=ORG, batch_id=seeded.batch, employee_id="e3", task_name="Peeling",
                        quantity=5, unit_price=100, total_amount=500),
    ])
    db.commit()

    finish_batch(db, organization_id=ORG, batch_id=seeded.batch, yields={seeded.p2: 15})

    use = [m for m in _movements(db, seeded.batch) if m.type == MOVEMENT_PRODUCTION_USE]
    assert [m.quantity for m in use] == [-20]
    assert _stock(db, seeded.p1) == 80
    assert _batch(db, seeded.batch).context["yields"]["inferredInput"] == 20


def test_ticket_consumption_is_deducted_again_by_default(db, seeded):
    report_production(db, organization_id=ORG, batch_id=seeded.batch, employee_id="e1", quantity=30)
    finish_batch(db, organization_id=ORG, batch_id=seeded.batch, yields={seeded.p2: 25})
    assert _stock(db, seeded.p1) == 40


def test_net_ticket_consumption_avoids_double_deduction(db, seeded):
    report_production(db, organization_id=ORG, batch_id=seeded.batch, employee_id="e1", quantity=30)
    finish_batch(db, organization_id=ORG, batch_id=seeded.batch, yields={seeded.p2: 25},
                 policy=ProductionPolicy(net_ticket_consumption=True))
    assert _stock(db, seeded.p1) == 70


def test_caller_only_inference_skips_ticket_heuristic(db, seeded):
    report_production(db, organization_id=ORG, batch_id=seeded.batch, employee_id="e1", quantity=30)
    finish_batch(db, organization_id=ORG, batch_id=seeded.batch, yields={seeded.p2: 25},
                 policy=ProductionPolicy(input_inference=INPUT_FROM_CALLER_ONLY))
    assert _stock(db, seeded.p1) == 70


def test_legacy_numeric_yield_goes_to_primary_output(db, seeded):
    finish_batch(db, organization_id=ORG, batch_id=seeded.batch, yields=25, estimated_input=30)
    assert _stock(db, seeded.p2) == 25


def test_legacy_yield_without_output_product_is_configuration_error(db, seeded):
    p = make_process(db, input_id=seeded.p1)
    b = batches.start_batch(db, organization_id=ORG, process_id=p.id)
    with pytest.raises(ConfigurationError):
        finish_batch(db, organization_id=ORG, batch_id=b.id, yields=10, estimated_input=5)
    assert _stock(db, seeded.p1) == 100


def test_co_products_are_credited(db, seeded):
    finish_batch(
        db,
        organization_id=ORG,
        batch_id=seeded.batch,
        yields={seeded.p2: 40},
        estimated_input=50,
        co_products=[{"productId": seeded.p3, "quantity": 7, "notes": "shells"}, {"productId": seeded.p3, "quantity": 0}],
    )
    assert _stock(db, seeded.p3) == 7
    cp = [m for m in _movements(db, seeded.batch) if m.type == MOVEMENT_PRODUCTION_COPRODUCT]
    assert [(m.quantity, m.notes) for m in cp] == [(7, "Co-product: shells")]


def test_non_positive_yields_are_skipped(db, seeded):
    finish_batch(db, organization_id=ORG, batch_id=seeded.batch, yields={seeded.p2: 0, seeded.p3: -4}, estimated_input=1)
    assert _stock(db, seeded.p2) == 0
    assert _stock(db, seeded.p3) == 0


def test_fractional_quantities_rejected(db, seeded):
    with pytest.raises(InvalidRequestError):
        finish_batch(db, organization_id=ORG, batch_id=seeded.batch, yields={seeded.p2: 2.5}, estimated_input=1)
    assert _batch(db, seeded.batch).status == "active"


def test_completion_event_context_and_notification(db, seeded):
    finish_batch(db, organization_id=ORG, batch_id=seeded.batch, yields={seeded.p2: 30},
                 estimated_input=40, notes="night shift")

    evt = db.query(BatchEvent).filter(BatchEvent.batch_id == seeded.batch, BatchEvent.event_type == "complete").one()
    assert evt.data["yields"] == {seeded.p2: 30}
    assert evt.data["estimatedInput"] == 40
    assert evt.data["notes"] == "night shift"

    snap = _batch(db, seeded.batch).context["yields"]
    assert snap == {"final": {seeded.p2: 30}, "estimatedInput": 40, "inferredInput": 40}

    out = db.query(OutboxEvent).one()
    assert out.topic == "cognitive.production_finish"
    assert out.organization_id == ORG
    assert out.reference_id == seeded.batch
    assert out.payload == {
        "batchId": seeded.batch,
        "processName": "Peeling",
        "yields": 30,
        "estimatedInput": 40,
        "notes": "night shift",
    }


def test_context_keeps_start_metadata(db, seeded):
    b = batches.start_batch(db, organization_id=ORG, process_id=seeded.process, metadata={"shift": "A"})
    finish_batch(db, organization_id=ORG, batch_id=b.id, yields={seeded.p2: 1}, estimated_input=1)
    ctx = _batch(db, b.id).context
    assert ctx["shift"] == "A"
    assert "yields" in ctx


def test_finish_requires_existing_process(db, seeded):
    b = batches.start_batch(db, organization_id=ORG, process_id="dangling")
    with pytest.raises(ConfigurationError):
        finish_batch(db, organization_id=ORG, batch_id=b.id, yields={seeded.p2: 1})
    assert _batch(db, b.id).status == "active"
