from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.db.models.common import HasCreatedAt, HasId


class OutboxEvent(Base, HasId, HasCreatedAt):
    """Transactional outbox.

    Rows are inserted in the same transaction as the business change that caused them,
    so a notification exists if and only if the change committed. The dispatcher
    (see app.events.dispatcher) hands them to in-process handlers and webhooks.
    """

    __tablename__ = "outbox_event"

    organization_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    topic: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    # Batch (or other record) whose change produced the event
    reference_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    payload: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    available_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    attempt_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    delivered: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Set once in-process handlers have run; webhook retries never re-run them.
    handled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def mark_handled(self) -> None:
        self.handled_at = datetime.utcnow()

    def mark_delivered(self) -> None:
        self.delivered = True
        self.delivered_at = datetime.utcnow()
        self.last_error = None

    def defer(self, error: str, until: datetime) -> None:
        self.attempt_count = (self.attempt_count or 0) + 1
        self.last_error = error[:2000]
        self.available_at = until

    def as_message(self) -> dict:
        """Body POSTed to webhook subscribers."""
        return {
            "topic": self.topic,
            "event_id": self.id,
            "organization_id": self.organization_id,
            "reference_id": self.reference_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "payload": self.payload or {},
        }


Index("ix_outbox_topic_created", OutboxEvent.topic, OutboxEvent.created_at)
Index("ix_outbox_delivery", OutboxEvent.delivered, OutboxEvent.available_at)
