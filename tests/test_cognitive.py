import pytest

from app.core.policy import ProductionPolicy
from app.db.models.insights import AIInsight
from app.events.outbox import OutboxEvent
from services.cognitive.engine import CognitiveEngine, CognitiveEvent, InsightDraft, evaluate

from conftest import ORG


def _ev(type_, **data):
    return CognitiveEvent(organization_id=ORG, type=type_, data=data)


def test_efficiency_alert_below_threshold():
    draft = evaluate(_ev("production_finish", batchId="abcdef123", yields=30, estimatedInput=40))
    assert draft.type == "efficiency_alert"
    assert draft.impact == "high"
    assert draft.confidence_pct == 90
    assert draft.meta["efficiency"] == 75.0
    assert "abcdef" in draft.description


@pytest.mark.parametrize("yields,estimated", [(35, 40), (40, 40), (10, 0), (10, None)])
def test_no_efficiency_alert(yields, estimated):
    assert evaluate(_ev("production_finish", batchId="b", yields=yields, estimatedInput=estimated)) is None


def test_efficiency_threshold_is_configurable():
    ev = _ev("production_finish", batchId="b", yields=35, estimatedInput=40)
    assert evaluate(ev, ProductionPolicy(efficiency_alert_threshold=0.9)).type == "efficiency_alert"


def test_sales_opportunity():
    draft = evaluate(_ev("sale_created", amount=1_500_000, saleId="s1"))
    assert (draft.type, draft.impact, draft.severity, draft.confidence_pct) == ("sales_opportunity", "positive", "low", 85)
    assert evaluate(_ev("sale_created", amount=1_000_000)) is None


def test_anomaly_always_produces_quality_risk():
    draft = evaluate(_ev("anomaly_detected", reason="mould", quantity=5, productId="p1"))
    assert draft.type == "quality_risk"
    assert draft.confidence_pct == 95
    assert "5" in draft.description and "mould" in draft.description


def test_logistics_cash_risk():
    draft = evaluate(_ev("logistics_stop_complete", type="delivery", isPaid=True, amount=600_000))
    assert (draft.type, draft.impact, draft.confidence_pct) == ("logistics_cash_risk", "medium", 90)
    assert evaluate(_ev("logistics_stop_complete", type="delivery", isPaid=False, amount=600_000)) is None
    assert evaluate(_ev("logistics_stop_complete", type="pickup", isPaid=True, amount=600_000)) is None


def test_cash_shortage():
    draft = evaluate(_ev("finance_cash_shortage", difference=-12_345, registerId="r1"))
    assert (draft.type, draft.confidence_pct) == ("finance_anomaly", 100)
    assert "$123.45" in draft.description


def test_employee_action_and_unknown_types_are_noops():
    assert evaluate(_ev("employee_action", employeeId="e1")) is None
    assert evaluate(_ev("inventory_low")) is None


def test_confidence_is_floored_percentage():
    assert InsightDraft("t", "t", "d", "low", 0.999).confidence_pct == 99
    assert InsightDraft("t", "t", "d", "low", 0.95).confidence_pct == 95


def test_engine_persists_insight(session_factory):
    engine = CognitiveEngine(session_factory)
    insight = engine.emit(_ev("anomaly_detected", reason="mould", quantity=5, productId="p1"))
    assert insight is not None

    with session_factory() as db:
        row = db.query(AIInsight).one()
        assert row.organization_id == ORG
        assert row.type == "quality_risk"
        assert row.confidence == 95
        assert row.severity == "high"
        assert row.acknowledged is False
        assert row.meta["impact"] == "high"


def test_engine_swallows_failures(caplog):
    def broken_factory():
        raise RuntimeError("database is down")

    engine = CognitiveEngine(broken_factory)
    assert engine.emit(_ev("anomaly_detected", reason="x", quantity=1)) is None
    assert "insight generation failed" in caplog.text


def test_engine_handles_outbox_rows(session_factory):
    engine = CognitiveEngine(session_factory)
    engine.handle_outbox_event(OutboxEvent(organization_id=ORG, topic="cognitive.sale_created", payload={"amount": 2_000_000}))
    engine.handle_outbox_event(OutboxEvent(organization_id=ORG, topic="other.sale_created", payload={"amount": 2_000_000}))
    with session_factory() as db:
        assert [i.type for i in db.query(AIInsight).all()] == ["sales_opportunity"]
