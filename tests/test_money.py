from datetime import datetime, timezone
from decimal import Decimal

import pytest

from settlement.services.money import (
    calculate_withholding,
    financial_quarter,
    financial_year,
    format_money,
    percent_of,
    to_money,
    to_percent,
)


def test_to_money_rounds_half_up():
    assert to_money("1.005") == Decimal("1.01")
    assert to_money(1.005) == Decimal("1.01")
    assert to_money(Decimal("2.004")) == Decimal("2.00")
    assert to_money(10) == Decimal("10.00")


@pytest.mark.parametrize("value", ["abc", None, "NaN", "Infinity"])
def test_to_money_rejects_non_numbers(value):
    with pytest.raises(ValueError):
        to_money(value)


def test_to_percent_bounds():
    assert to_percent("0") == Decimal("0.00")
    assert to_percent(100) == Decimal("100.00")
    with pytest.raises(ValueError):
        to_percent("100.01")
    with pytest.raises(ValueError):
        to_percent(-1)


def test_percent_of_rounds_each_component():
    assert percent_of(Decimal("56.95"), Decimal("10")) == Decimal("5.70")
    assert percent_of(Decimal("10000.00"), Decimal("15")) == Decimal("1500.00")


def test_format_money_uses_thousands_separators():
    assert format_money(Decimal("10000"), "inr") == "INR 10,000.00"
    assert format_money(Decimal("1234567.891")) == "1,234,567.89"


def test_withholding_applies_rate():
    result = calculate_withholding(Decimal("8500.00"), Decimal("10"))
    assert result.tax_amount == Decimal("850.00")
    assert result.net_amount == Decimal("7650.00")
    assert result.rate == Decimal("10.00")


def test_withholding_skipped_below_threshold():
    result = calculate_withholding(Decimal("1000.00"), Decimal("10"), threshold=Decimal("30000"))
    assert result.tax_amount == Decimal("0.00")
    assert result.net_amount == Decimal("1000.00")
    assert result.rate == Decimal("10.00")
    assert result.threshold == Decimal("30000.00")
    assert result.exempt


def test_withholding_at_threshold_is_taxed():
    result = calculate_withholding(Decimal("30000.00"), Decimal("10"), threshold=Decimal("30000"))
    assert result.tax_amount == Decimal("3000.00")
    assert not result.exempt


def test_financial_year_runs_april_to_march():
    assert financial_year(datetime(2026, 3, 31, tzinfo=timezone.utc)) == "FY 2025-2026"
    assert financial_year(datetime(2026, 4, 1, tzinfo=timezone.utc)) == "FY 2026-2027"


@pytest.mark.parametrize(
    "month, quarter",
    [(4, "Q1"), (6, "Q1"), (7, "Q2"), (9, "Q2"), (10, "Q3"), (12, "Q3"), (1, "Q4"), (3, "Q4")],
)
def test_financial_quarter(month, quarter):
    assert financial_quarter(datetime(2026, month, 15, tzinfo=timezone.utc)) == quarter
