from __future__ import annotations
from datetime import datetime
from sqlalchemy import String, Integer, DateTime, Text, Boolean, Index, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column
from app.db.base import Base
from app.db.models.common import HasId, HasCreatedAt, HasOrganization

# Movement types written by the production engine
MOVEMENT_PRODUCTION = "production"
MOVEMENT_PRODUCTION_USE = "production_use"
MOVEMENT_PRODUCTION_COPRODUCT = "production_coproduct"
MOVEMENT_ADJUSTMENT = "adjustment"


class Product(Base, HasId, HasCreatedAt, HasOrganization):
    """Stock-keeping product. ``stock`` is the cached balance of its movement log."""
    __tablename__ = "inv_product"

    name: Mapped[str] = mapped_column(String(256), nullable=False)
    sku: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    unit: Mapped[str] = mapped_column(String(16), default="pza", nullable=False)
    stock: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_inv_product_stock_non_negative"),
    )


class InventoryMovement(Base, HasId, HasOrganization):
    """Append-only stock movement. Negative quantity = consumption, positive = production."""
    __tablename__ = "inv_movement"

    product_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    reference_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    before_stock: Mapped[int | None] = mapped_column(Integer, nullable=True)
    after_stock: Mapped[int | None] = mapped_column(Integer, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

Index("ix_inv_movement_product_date", InventoryMovement.product_id, InventoryMovement.date)
