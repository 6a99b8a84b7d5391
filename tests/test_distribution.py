from decimal import Decimal

import pytest

from settlement.models.dispute import DisputeOutcome
from settlement.services.distribution import DistributionTerms, calculate_distribution

SOLO = DistributionTerms(platform_fee_percent=Decimal("15"), withholding_tax_percent=Decimal("10"))
WITH_FIRM = DistributionTerms(
    platform_fee_percent=Decimal("15"),
    withholding_tax_percent=Decimal("10"),
    firm_commission_percent=Decimal("10"),
)


def _assert_conserved(split):
    assert (
        split.platform_fee_amount
        + split.firm_commission_amount
        + split.practitioner_net_amount
        + split.withheld_tax_amount
        + split.refund_amount
        == split.gross_amount
    )
    assert split.practitioner_gross_amount == split.practitioner_net_amount + split.withheld_tax_amount


def test_release_solo_practitioner():
    split = calculate_distribution(Decimal("10000"), DisputeOutcome.RELEASE, SOLO)

    assert split.platform_fee_amount == Decimal("1500.00")
    assert split.practitioner_gross_amount == Decimal("8500.00")
    assert split.withheld_tax_amount == Decimal("850.00")
    assert split.practitioner_net_amount == Decimal("7650.00")
    assert split.refund_amount == Decimal("0.00")
    assert split.firm_commission_amount == Decimal("0.00")
    _assert_conserved(split)


def test_partial_refund_sixty_percent():
    split = calculate_distribution(Decimal("10000"), DisputeOutcome.PARTIAL_REFUND, SOLO, Decimal("60"))

    assert split.refund_amount == Decimal("6000.00")
    assert split.platform_fee_amount == Decimal("600.00")
    assert split.practitioner_gross_amount == Decimal("3400.00")
    assert split.withheld_tax_amount == Decimal("340.00")
    assert split.practitioner_net_amount == Decimal("3060.00")
    _assert_conserved(split)


def test_full_refund_returns_everything_to_client():
    split = calculate_distribution(Decimal("2500.50"), DisputeOutcome.FULL_REFUND, WITH_FIRM)

    assert split.refund_amount == Decimal("2500.50")
    assert split.refund_percentage == Decimal("100")
    assert split.platform_fee_amount == Decimal("0.00")
    assert split.firm_commission_amount == Decimal("0.00")
    assert split.practitioner_net_amount == Decimal("0.00")
    _assert_conserved(split)


def test_firm_commission_taken_after_platform_fee():
    split = calculate_distribution(Decimal("10000"), DisputeOutcome.RELEASE, WITH_FIRM)

    assert split.platform_fee_amount == Decimal("1500.00")
    assert split.firm_commission_amount == Decimal("850.00")
    assert split.practitioner_gross_amount == Decimal("7650.00")
    assert split.withheld_tax_amount == Decimal("765.00")
    assert split.practitioner_net_amount == Decimal("6885.00")
    _assert_conserved(split)


def test_odd_refund_percentage_loses_no_cent():
    split = calculate_distribution(Decimal("100"), DisputeOutcome.PARTIAL_REFUND, SOLO, Decimal("33"))

    assert split.refund_amount == Decimal("33.00")
    assert split.platform_fee_amount == Decimal("10.05")
    assert split.practitioner_gross_amount == Decimal("56.95")
    assert split.withheld_tax_amount == Decimal("5.70")
    assert split.practitioner_net_amount == Decimal("51.25")
    _assert_conserved(split)


def test_half_cent_refund_rounds_up():
    split = calculate_distribution(Decimal("33.33"), DisputeOutcome.PARTIAL_REFUND, SOLO, Decimal("50"))

    assert split.refund_amount == Decimal("16.67")
    assert split.platform_fee_amount == Decimal("2.50")
    assert split.withheld_tax_amount == Decimal("1.42")
    assert split.practitioner_net_amount == Decimal("12.74")
    _assert_conserved(split)


@pytest.mark.parametrize(
    "gross, pct",
    [("0.01", "50"), ("0.03", "33.33"), ("999.99", "12.5"), ("12345.67", "66.67"), ("1", "99.99")],
)
def test_conservation_on_awkward_amounts(gross, pct):
    split = calculate_distribution(Decimal(gross), DisputeOutcome.PARTIAL_REFUND, WITH_FIRM, Decimal(pct))
    _assert_conserved(split)


def test_withholding_threshold_exempts_small_shares():
    terms = DistributionTerms(
        platform_fee_percent=Decimal("15"),
        withholding_tax_percent=Decimal("10"),
        withholding_threshold=Decimal("30000"),
    )
    split = calculate_distribution(Decimal("10000"), DisputeOutcome.RELEASE, terms)

    assert split.withheld_tax_amount == Decimal("0.00")
    assert split.withholding_tax_percent == Decimal("10.00")
    assert split.withholding_threshold == Decimal("30000.00")
    assert split.to_dict()["withholding_threshold"] == "30000.00"
    assert split.practitioner_net_amount == Decimal("8500.00")
    _assert_conserved(split)


def test_partial_refund_requires_percentage():
    with pytest.raises(ValueError):
        calculate_distribution(Decimal("100"), DisputeOutcome.PARTIAL_REFUND, SOLO)


def test_partial_refund_percentage_must_be_in_range():
    with pytest.raises(ValueError):
        calculate_distribution(Decimal("100"), DisputeOutcome.PARTIAL_REFUND, SOLO, Decimal("120"))


def test_gross_must_be_positive():
    with pytest.raises(ValueError):
        calculate_distribution(Decimal("0"), DisputeOutcome.RELEASE, SOLO)
