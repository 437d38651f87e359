from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.db.models.common import HasCreatedAt, HasId


class EventSubscription(Base, HasId, HasCreatedAt):
    """Webhook subscription for production notifications.

    Patterns:
      - exact match:   "cognitive.production_finish"
      - prefix match:  "cognitive." (recommended)
      - wildcard:      "cognitive.*" (treated as prefix)

    A subscription without an organization receives events of every organization.
    """

    __tablename__ = "event_subscription"

    organization_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    topic_pattern: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    target_url: Mapped[str] = mapped_column(Text, nullable=False)
    headers: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    failure_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


Index("ix_event_sub_active", EventSubscription.is_active, EventSubscription.topic_pattern)
