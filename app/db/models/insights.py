from __future__ import annotations
from sqlalchemy import String, Integer, Boolean, JSON, Text, Index
from sqlalchemy.orm import Mapped, mapped_column
from app.db.base import Base
from app.db.models.common import HasId, HasCreatedAt, HasOrganization


class AIInsight(Base, HasId, HasCreatedAt, HasOrganization):
    """Advisory record written only by the cognitive engine."""
    __tablename__ = "ai_insight"

    type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    impact: Mapped[str] = mapped_column(String(16), nullable=False)  # low|medium|high|positive
    severity: Mapped[str] = mapped_column(String(16), nullable=False)  # low|medium|high|critical
    confidence: Mapped[int] = mapped_column(Integer, nullable=False)  # 0-100
    meta: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    acknowledged: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

Index("ix_ai_insight_org_ack", AIInsight.organization_id, AIInsight.acknowledged)
