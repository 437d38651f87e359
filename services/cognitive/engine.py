"""Rule-based insight engine.

Each rule is a pure function of an event payload returning at most one InsightDraft;
``CognitiveEngine`` persists the drafts. Nothing in here is allowed to raise into the
code that produced the event.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable

from sqlalchemy.orm import sessionmaker

from app.core.policy import ProductionPolicy
from app.db.models.insights import AIInsight
from app.db.session import SessionLocal
from app.events.bus import COGNITIVE_PREFIX
from app.events.outbox import OutboxEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CognitiveEvent:
    organization_id: str | None
    type: str
    data: dict = field(default_factory=dict)


@dataclass(frozen=True)
class InsightDraft:
    type: str
    title: str
    description: str
    impact: str  # low|medium|high|positive
    confidence: float  # 0..1
    meta: dict = field(default_factory=dict)

    @property
    def severity(self) -> str:
        return "low" if self.impact == "positive" else self.impact

    @property
    def confidence_pct(self) -> int:
        return int(math.floor(Decimal(str(self.confidence)) * 100))


Rule = Callable[[CognitiveEvent, ProductionPolicy], "InsightDraft | None"]


def _num(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def production_efficiency(event: CognitiveEvent, policy: ProductionPolicy) -> InsightDraft | None:
    data = event.data
    estimated = _num(data.get("estimatedInput"))
    if estimated <= 0:
        return None
    ratio = _num(data.get("yields")) / estimated
    if ratio >= policy.efficiency_alert_threshold:
        return None
    batch_id = str(data.get("batchId") or "")
    return InsightDraft(
        type="efficiency_alert",
        title="Low batch efficiency",
        description=f"Batch {batch_id[:6]} converted {ratio * 100:.1f}% of its input, below the standard.",
        impact="high",
        confidence=0.9,
        meta={"batchId": batch_id, "efficiency": round(ratio * 100, 1), "processName": data.get("processName")},
    )


def sales_trend(event: CognitiveEvent, policy: ProductionPolicy) -> InsightDraft | None:
    if _num(event.data.get("amount")) <= policy.high_value_sale_cents:
        return None
    return InsightDraft(
        type="sales_opportunity",
        title="Wholesale sale detected",
        description="A significant sale was recorded. Consider VIP post-sale follow-up.",
        impact="positive",
        confidence=0.85,
        meta={"saleId": event.data.get("saleId")},
    )


def quality_risk(event: CognitiveEvent, policy: ProductionPolicy) -> InsightDraft:
    data = event.data
    return InsightDraft(
        type="quality_risk",
        title="Quality risk",
        description=f"Waste reported: {data.get('quantity')} units. Reason: {data.get('reason')}",
        impact="high",
        confidence=0.95,
        meta={"productId": data.get("productId"), "reason": data.get("reason"), "batchId": data.get("batchId")},
    )


def logistics_cash_risk(event: CognitiveEvent, policy: ProductionPolicy) -> InsightDraft | None:
    data = event.data
    amount = _num(data.get("amount"))
    if data.get("type") != "delivery" or not data.get("isPaid") or amount <= policy.cash_delivery_alert_cents:
        return None
    return InsightDraft(
        type="logistics_cash_risk",
        title="Cash on route",
        description=f"A significant amount (${amount / 100:.2f}) was collected in cash on route. Consider security protocols.",
        impact="medium",
        confidence=0.9,
        meta=dict(data),
    )


def cash_shortage(event: CognitiveEvent, policy: ProductionPolicy) -> InsightDraft:
    difference = abs(_num(event.data.get("difference")))
    return InsightDraft(
        type="finance_anomaly",
        title="Cash register shortage",
        description=f"A shortage of ${difference / 100:.2f} was reported during the cash count.",
        impact="high",
        confidence=1.0,
        meta=dict(event.data),
    )


def employee_action(event: CognitiveEvent, policy: ProductionPolicy) -> None:
    # Reserved for presence analytics
    return None


RULES: dict[str, Rule] = {
    "production_finish": production_efficiency,
    "sale_created": sales_trend,
    "anomaly_detected": quality_risk,
    "logistics_stop_complete": logistics_cash_risk,
    "finance_cash_shortage": cash_shortage,
    "employee_action": employee_action,
}


def evaluate(event: CognitiveEvent, policy: ProductionPolicy | None = None) -> InsightDraft | None:
    rule = RULES.get(event.type)
    if rule is None:
        return None
    return rule(event, policy or ProductionPolicy())


class CognitiveEngine:
    def __init__(self, session_factory: sessionmaker = SessionLocal, policy: ProductionPolicy | None = None) -> None:
        self.session_factory = session_factory
        self.policy = policy or ProductionPolicy()

    def emit(self, event: CognitiveEvent) -> AIInsight | None:
        """Evaluate and persist. Failures are logged and swallowed."""
        logger.debug("processing %s for org %s", event.type, event.organization_id)
        try:
            draft = evaluate(event, self.policy)
            if draft is None:
                return None
            return self._store(event, draft)
        except Exception:
            logger.exception("insight generation failed for %s", event.type)
            return None

    def _store(self, event: CognitiveEvent, draft: InsightDraft) -> AIInsight:
        db = self.session_factory()
        try:
            insight = AIInsight(
                organization_id=event.organization_id,
                type=draft.type,
                title=draft.title,
                description=draft.description,
                impact=draft.impact,
                severity=draft.severity,
                confidence=draft.confidence_pct,
                meta={**draft.meta, "impact": draft.impact, "confidence": draft.confidence_pct},
                acknowledged=False,
            )
            db.add(insight)
            db.commit()
            db.refresh(insight)
            db.expunge(insight)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
        logger.info("insight %s generated for org %s: %s", draft.type, event.organization_id, draft.title)
        return insight

    def handle_outbox_event(self, evt: OutboxEvent) -> None:
        if not evt.topic.startswith(COGNITIVE_PREFIX):
            return
        event = CognitiveEvent(
            organization_id=evt.organization_id,
            type=evt.topic[len(COGNITIVE_PREFIX):],
            data=dict(evt.payload or {}),
        )
        self.emit(event)
