from __future__ import annotations

from grantwright.export.budget import (
    category_total,
    detail_lines,
    format_currency,
    format_quantity,
    grand_total,
)
from grantwright.models import BudgetBreakdown, BudgetItem


def _budget() -> list[BudgetItem]:
    return [
        BudgetItem.model_validate(
            {
                "item": "Personnel",
                "cost": 999,
                "breakdown": [
                    {"subItem": "Developer", "quantity": 2, "unitCost": "€1,500"},
                    {"subItem": "Tester", "quantity": "1", "unitCost": 500},
                    {"quantity": 1, "unitCost": 200},
                ],
            }
        ),
        BudgetItem.model_validate({"category": "Travel", "cost": "1200"}),
    ]


def test_category_total_uses_breakdown_when_present() -> None:
    personnel, travel = _budget()
    assert category_total(personnel) == 3700
    assert category_total(travel) == 1200


def test_grand_total_sums_category_totals() -> None:
    assert grand_total(_budget()) == 4900
    assert grand_total([]) == 0


def test_breakdown_total_is_always_recomputed() -> None:
    entry = BudgetBreakdown.model_validate({"subItem": "Laptop", "quantity": 3, "unitCost": 400, "total": 5})
    assert entry.total == 1200


def test_currency_and_quantity_formatting() -> None:
    assert format_currency(4900) == "€4,900"
    assert format_currency(1234.6) == "€1,235"
    assert format_quantity(2.0) == "2"
    assert format_quantity(1.5) == "1.5"


def test_detail_lines_interleave_categories_and_sub_items() -> None:
    lines = detail_lines(_budget())

    assert [line.label for line in lines] == [
        "1. PERSONNEL",
        "   - Developer",
        "   - Tester",
        "   - Item",
        "2. TRAVEL",
    ]
    assert [line.is_category for line in lines] == [True, False, False, False, True]
    assert lines[0].total == 3700
    assert lines[1].total == 3000
    assert lines[4].total == 1200
    assert lines[4].quantity is None


def test_currency_rounds_halves_away_from_zero() -> None:
    assert format_currency(1234.5) == "€1,235"
    assert format_currency(0.5) == "€1"
    assert format_currency(2.5) == "€3"
    assert format_currency(1234.49) == "€1,234"


def test_half_euro_budget_total_is_rounded_up() -> None:
    items = [BudgetItem.model_validate({"item": "Supplies", "breakdown": [{"subItem": "Pens", "quantity": 1, "unitCost": 0.5}]})]
    assert format_currency(grand_total(items)) == "€1"
