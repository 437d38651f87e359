from __future__ import annotations
from datetime import datetime
from sqlalchemy import String, Integer, DateTime, ForeignKey, JSON, Text, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.db.base import Base
from app.db.models.common import HasId, HasCreatedAt, HasOrganization

BATCH_ACTIVE = "active"
BATCH_COMPLETED = "completed"

TICKET_PENDING = "pending"
TICKET_APPROVED = "approved"
TICKET_PAID = "paid"


class ProcessDefinition(Base, HasId, HasCreatedAt, HasOrganization):
    """Production recipe.

    ``recipe`` keys (inputProductId, outputProductId, outputProductIds, piecework.enabled,
    piecework.rate) are read by the settlement engine and stored exactly as submitted.
    """
    __tablename__ = "prod_process"

    name: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[str] = mapped_column(String(32), default="production", nullable=False, index=True)
    recipe: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)


class Batch(Base, HasId, HasOrganization):
    """One production run of a process definition (a process instance)."""
    __tablename__ = "prod_batch"

    process_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(16), default=BATCH_ACTIVE, nullable=False, index=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False, index=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    source_batch_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    context: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    events: Mapped[list["BatchEvent"]] = relationship(back_populates="batch", order_by="BatchEvent.timestamp")


class BatchEvent(Base, HasId):
    __tablename__ = "prod_batch_event"

    batch_id: Mapped[str] = mapped_column(ForeignKey("prod_batch.id"), nullable=False, index=True)
    step_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    event_type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)  # complete|anomaly|note|...
    data: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    batch: Mapped[Batch] = relationship(back_populates="events")

Index("ix_prod_event_batch_time", BatchEvent.batch_id, BatchEvent.timestamp)


class PieceworkTicket(Base, HasId, HasCreatedAt, HasOrganization):
    __tablename__ = "prod_piecework_ticket"

    batch_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    employee_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    creator_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    task_name: Mapped[str] = mapped_column(String(256), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[int] = mapped_column(Integer, nullable=False)  # cents
    total_amount: Mapped[int] = mapped_column(Integer, nullable=False)  # cents
    status: Mapped[str] = mapped_column(String(16), default=TICKET_PENDING, nullable=False, index=True)
    approved_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    attributes: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
