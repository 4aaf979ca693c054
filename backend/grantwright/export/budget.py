from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from grantwright.models import BudgetItem

CURRENCY_SYMBOL = "€"


@dataclass(frozen=True)
class BudgetLine:
    label: str
    quantity: float | None
    unit_cost: float | None
    total: float
    is_category: bool


def category_total(item: BudgetItem) -> float:
    if item.breakdown:
        return sum(entry.quantity * entry.unit_cost for entry in item.breakdown)
    return item.cost


def grand_total(items: list[BudgetItem]) -> float:
    return sum(category_total(item) for item in items)


def format_currency(amount: float) -> str:
    # Halves round away from zero, matching how the totals are shown in the editor.
    whole = Decimal(str(amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return f"{CURRENCY_SYMBOL}{whole:,.0f}"


def format_quantity(quantity: float) -> str:
    if float(quantity).is_integer():
        return str(int(quantity))
    return f"{quantity:g}"


def detail_lines(items: list[BudgetItem]) -> list[BudgetLine]:
    """Category rows, each followed by its sub-item rows, for the unified detail table."""
    lines: list[BudgetLine] = []
    for index, item in enumerate(items):
        lines.append(
            BudgetLine(
                label=f"{index + 1}. {item.item.upper()}",
                quantity=None,
                unit_cost=None,
                total=category_total(item),
                is_category=True,
            )
        )
        for entry in item.breakdown or []:
            lines.append(
                BudgetLine(
                    label=f"   - {entry.sub_item or 'Item'}",
                    quantity=entry.quantity,
                    unit_cost=entry.unit_cost,
                    total=entry.quantity * entry.unit_cost,
                    is_category=False,
                )
            )
    return lines
