"""Piecework-driven yield inference.

Pure functions over ticket-like objects (anything with ``task_name`` and ``quantity``),
so they can be exercised without a database.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Protocol

from app.core.policy import INPUT_FROM_LARGEST_TASK

DEFAULT_TASK_NAME = "General"


class TicketLike(Protocol):
    task_name: str | None
    quantity: int


@dataclass(frozen=True)
class TaskGroup:
    task_name: str
    total_quantity: int
    ticket_count: int

    def as_dict(self) -> dict:
        return {"taskName": self.task_name, "totalQuantity": self.total_quantity, "ticketCount": self.ticket_count}


def summarize_tasks(tickets: Iterable[TicketLike]) -> list[TaskGroup]:
    """Group tickets by task name, largest total quantity first.

    Ties are broken by task name so the result does not depend on ticket order.
    """
    totals: dict[str, list[int]] = {}
    for t in tickets:
        name = t.task_name or DEFAULT_TASK_NAME
        acc = totals.setdefault(name, [0, 0])
        acc[0] += int(t.quantity or 0)
        acc[1] += 1
    groups = [TaskGroup(name, qty, count) for name, (qty, count) in totals.items()]
    return sorted(groups, key=lambda g: (-g.total_quantity, g.task_name))


def infer_input_quantity(
    tickets: Iterable[TicketLike],
    estimated_input: int | None,
    *,
    strategy: str = INPUT_FROM_LARGEST_TASK,
) -> int:
    """Caller estimate wins when positive; otherwise the busiest task is taken as the
    raw-material handling step and its volume is the batch input."""
    if estimated_input and estimated_input > 0:
        return int(estimated_input)
    if strategy != INPUT_FROM_LARGEST_TASK:
        return 0
    groups = summarize_tasks(tickets)
    return groups[0].total_quantity if groups else 0


def total_yield(yields: int | dict | None) -> int:
    if isinstance(yields, dict):
        return sum(int(q) for q in yields.values() if q and int(q) > 0)
    return int(yields or 0)
