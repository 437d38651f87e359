from types import SimpleNamespace

from app.core.policy import INPUT_FROM_CALLER_ONLY
from services.production.inference import infer_input_quantity, summarize_tasks, total_yield


def _t(name, qty):
    return SimpleNamespace(task_name=name, quantity=qty)


def test_summarize_groups_and_sorts_by_quantity():
    tickets = [_t("Peeling", 10), _t("Topping", 30), _t("Peeling", 5), _t(None, 2)]
    groups = summarize_tasks(tickets)
    assert [g.as_dict() for g in groups] == [
        {"taskName": "Topping", "totalQuantity": 30, "ticketCount": 1},
        {"taskName": "Peeling", "totalQuantity": 15, "ticketCount": 2},
        {"taskName": "General", "totalQuantity": 2, "ticketCount": 1},
    ]


def test_summarize_ties_are_deterministic():
    a = summarize_tasks([_t("B", 5), _t("A", 5)])
    b = summarize_tasks([_t("A", 5), _t("B", 5)])
    assert [g.task_name for g in a] == [g.task_name for g in b] == ["A", "B"]


def test_summarize_empty():
    assert summarize_tasks([]) == []


def test_caller_estimate_wins():
    assert infer_input_quantity([_t("Topping", 300)], 40) == 40


def test_largest_task_used_when_estimate_missing():
    tickets = [_t("Topping", 120), _t("Peeling", 80), _t("Peeling", 30)]
    assert infer_input_quantity(tickets, None) == 120
    assert infer_input_quantity(tickets, 0) == 120


def test_no_tickets_no_input():
    assert infer_input_quantity([], None) == 0


def test_caller_only_strategy_ignores_tickets():
    assert infer_input_quantity([_t("Topping", 120)], None, strategy=INPUT_FROM_CALLER_ONLY) == 0


def test_total_yield():
    assert total_yield({"a": 10, "b": 5, "c": 0}) == 15
    assert total_yield(30) == 30
    assert total_yield(None) == 0
