from __future__ import annotations

import math
from typing import Iterable


AMOUNT_TOLERANCE = 0.01


def _finite(value) -> float | None:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def positive_amount(value) -> bool:
    number = _finite(value)
    return number is not None and number > 0


def non_negative_amount(value) -> bool:
    number = _finite(value)
    return number is not None and number >= 0


def line_amount(quantity: float, unit_price: float) -> float:
    return round(float(quantity) * float(unit_price), 2)


def request_total(
    line_amounts: Iterable[float],
    *,
    tax_percent: float | None = None,
    declared_amount: float | None = None,
) -> float:
    """Items subtotal plus tax, raised to an externally declared total when larger."""
    subtotal = sum(float(amount) for amount in line_amounts)
    total = subtotal * (1 + float(tax_percent or 0) / 100.0)
    if declared_amount is not None and float(declared_amount) > total:
        total = float(declared_amount)
    return round(total, 2)


def totals_match(stated_total: float, computed_total: float, tolerance: float = AMOUNT_TOLERANCE) -> bool:
    return abs(float(stated_total) - float(computed_total)) <= tolerance


def is_over_budget(pr_amount: float, purchase_amount: float) -> bool:
    return float(pr_amount) > 0 and float(purchase_amount) > float(pr_amount)


def over_percent(pr_amount: float, purchase_amount: float) -> float:
    if float(pr_amount) <= 0:
        return 0.0
    return round((float(purchase_amount) - float(pr_amount)) / float(pr_amount) * 100.0, 2)
