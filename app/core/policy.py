"""Tunable production heuristics.

The defaults reproduce the historical behaviour of the shop floor terminals; every
threshold can be overridden per deployment through environment variables.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal

INPUT_FROM_LARGEST_TASK = "largest_task"
INPUT_FROM_CALLER_ONLY = "caller_only"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class ProductionPolicy:
    # Piecework rates below this magnitude are assumed to be typed in currency units, not cents.
    low_rate_threshold: Decimal = Decimal("5")
    rate_correction_factor: int = 100
    rate_correction_enabled: bool = True

    # Units of input consumed per reported unit of output.
    consumption_ratio: int = 1

    # Where finish_batch takes the input quantity from when the caller omits it.
    input_inference: str = INPUT_FROM_LARGEST_TASK
    # Deduct only what ticket reports have not already consumed for the batch.
    net_ticket_consumption: bool = False

    require_process_on_start: bool = False

    efficiency_alert_threshold: float = 0.85
    high_value_sale_cents: int = 1_000_000
    cash_delivery_alert_cents: int = 500_000


def load_policy() -> ProductionPolicy:
    return ProductionPolicy(
        low_rate_threshold=Decimal(os.getenv("PIECEWORK_LOW_RATE_THRESHOLD", "5")),
        rate_correction_factor=int(os.getenv("PIECEWORK_RATE_CORRECTION_FACTOR", "100")),
        rate_correction_enabled=_env_bool("PIECEWORK_RATE_CORRECTION", True),
        consumption_ratio=int(os.getenv("PRODUCTION_CONSUMPTION_RATIO", "1")),
        input_inference=os.getenv("PRODUCTION_INPUT_INFERENCE", INPUT_FROM_LARGEST_TASK),
        net_ticket_consumption=_env_bool("PRODUCTION_NET_TICKET_CONSUMPTION", False),
        require_process_on_start=_env_bool("PRODUCTION_REQUIRE_PROCESS_ON_START", False),
        efficiency_alert_threshold=float(os.getenv("INSIGHT_EFFICIENCY_THRESHOLD", "0.85")),
        high_value_sale_cents=int(os.getenv("INSIGHT_HIGH_VALUE_SALE_CENTS", "1000000")),
        cash_delivery_alert_cents=int(os.getenv("INSIGHT_CASH_DELIVERY_CENTS", "500000")),
    )


def get_policy() -> ProductionPolicy:
    """FastAPI dependency; re-reads the environment so overrides apply without restart."""
    return load_policy()
