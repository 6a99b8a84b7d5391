"""Money arithmetic, formatting and withholding-tax helpers.

All amounts are ``Decimal`` values quantized to the smallest currency unit
(two decimal places). Percentages are expressed on a 0-100 scale.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


def to_money(value: Any) -> Decimal:
    """Convert ``value`` to a two-decimal ``Decimal`` using round-half-up.

    Accepts Decimal, int, float and str. Raises ValueError when the value is
    not a finite number.
    """

    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            # str() avoids binary float artefacts
            amount = Decimal(str(value))
        except (InvalidOperation, ValueError, TypeError) as exc:
            raise ValueError(f"Invalid money amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Invalid money amount: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def to_percent(value: Any) -> Decimal:
    """Convert ``value`` to a percentage in ``[0, 100]`` with two decimals."""

    pct = to_money(value)
    if pct < 0 or pct > HUNDRED:
        raise ValueError(f"Percentage out of range [0, 100]: {value!r}")
    return pct


def percent_of(amount: Decimal, percent: Decimal) -> Decimal:
    """Return ``amount * percent / 100`` rounded half-up to the cent."""

    return (Decimal(amount) * Decimal(percent) / HUNDRED).quantize(CENT, rounding=ROUND_HALF_UP)


def format_money(amount: Decimal, currency: str | None = None) -> str:
    """Render an amount with thousands separators, e.g. ``INR 10,000.00``."""

    text = f"{to_money(amount):,.2f}"
    return f"{currency.upper()} {text}" if currency else text


@dataclass(frozen=True)
class Withholding:
    """Outcome of applying statutory withholding to a taxable amount."""

    taxable_amount: Decimal
    rate: Decimal
    tax_amount: Decimal
    net_amount: Decimal
    threshold: Decimal = ZERO

    @property
    def exempt(self) -> bool:
        return self.taxable_amount < self.threshold

    def to_dict(self) -> dict[str, str]:
        return {
            "taxable_amount": str(self.taxable_amount),
            "rate": str(self.rate),
            "tax_amount": str(self.tax_amount),
            "net_amount": str(self.net_amount),
            "threshold": str(self.threshold),
        }


def calculate_withholding(
    taxable_amount: Decimal,
    rate: Decimal,
    threshold: Decimal = ZERO,
) -> Withholding:
    """Withhold ``rate`` percent of ``taxable_amount``.

    Amounts strictly below ``threshold`` are paid out gross. ``rate`` and
    ``threshold`` are always reported as configured so the decision can be
    reproduced from the result alone.
    """

    taxable = to_money(taxable_amount)
    rate = to_percent(rate)
    threshold = to_money(threshold)
    if taxable <= ZERO or taxable < threshold:
        return Withholding(taxable, rate, ZERO, taxable, threshold)
    tax = percent_of(taxable, rate)
    return Withholding(taxable, rate, tax, taxable - tax, threshold)


def financial_year(moment: datetime) -> str:
    """Return the April-March financial year label, e.g. ``FY 2026-2027``."""

    if moment.month >= 4:
        return f"FY {moment.year}-{moment.year + 1}"
    return f"FY {moment.year - 1}-{moment.year}"


def financial_quarter(moment: datetime) -> str:
    """Quarter of the April-March financial year (Apr-Jun is Q1)."""

    return f"Q{((moment.month - 4) % 12) // 3 + 1}"


__all__ = [
    "CENT",
    "ZERO",
    "HUNDRED",
    "Withholding",
    "calculate_withholding",
    "financial_quarter",
    "financial_year",
    "format_money",
    "percent_of",
    "to_money",
    "to_percent",
]
