from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any


def _as_decimal(value: Any) -> Decimal:
    try:
        return Decimal(str(value)) if value not in (None, "") else Decimal("0")
    except InvalidOperation:
        return Decimal("0")


@dataclass(frozen=True)
class Recipe:
    """Read-only view over ``ProcessDefinition.recipe``.

    The stored JSON is never rewritten from this object, so unknown keys round-trip.
    Older definitions kept ``inputProductId`` under ``meta``; both places are read.
    """
    input_product_id: str | None = None
    output_product_id: str | None = None
    output_product_ids: tuple[str, ...] = field(default_factory=tuple)
    piecework_enabled: bool = False
    piecework_rate: Decimal = Decimal("0")

    @classmethod
    def from_json(cls, data: dict | None) -> "Recipe":
        data = data or {}
        meta = data.get("meta") or {}
        piecework = data.get("piecework") or {}
        outputs = data.get("outputProductIds") or []
        return cls(
            input_product_id=data.get("inputProductId") or meta.get("inputProductId") or None,
            output_product_id=data.get("outputProductId") or None,
            output_product_ids=tuple(str(p) for p in outputs if p),
            piecework_enabled=bool(piecework.get("enabled")),
            piecework_rate=_as_decimal(piecework.get("rate")),
        )

    @property
    def primary_output_id(self) -> str | None:
        if self.output_product_id:
            return self.output_product_id
        return self.output_product_ids[0] if self.output_product_ids else None
