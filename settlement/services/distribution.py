"""Distribution calculator.

Splits a settled gross amount between the client (refund), the platform
(fee), an optional intermediary firm (commission) and the practitioner
(gross share, less statutory withholding).

The calculator is a pure function: it never touches the database. Every
component is rounded half-up to the cent, and any residual cent left by
rounding is folded into the practitioner share so that::

    refund + platform_fee + firm_commission + practitioner_gross == gross
    practitioner_gross == practitioner_net + withheld_tax
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from settlement.config import Settings, get_settings
from settlement.models.dispute import DisputeOutcome
from settlement.models.engagement import Engagement
from settlement.services.money import (
    HUNDRED,
    ZERO,
    calculate_withholding,
    percent_of,
    to_money,
    to_percent,
)


@dataclass(frozen=True)
class DistributionTerms:
    """Percentages in force for one settlement."""

    platform_fee_percent: Decimal
    withholding_tax_percent: Decimal
    # None for a solo practitioner: no firm, no commission.
    firm_commission_percent: Decimal | None = None
    withholding_threshold: Decimal = ZERO

    @property
    def has_firm(self) -> bool:
        return self.firm_commission_percent is not None


@dataclass(frozen=True)
class DistributionSplit:
    """Itemized result of :func:`calculate_distribution`."""

    outcome: DisputeOutcome
    gross_amount: Decimal
    refund_percentage: Decimal
    refund_amount: Decimal
    platform_fee_percent: Decimal
    platform_fee_amount: Decimal
    firm_commission_percent: Decimal
    firm_commission_amount: Decimal
    practitioner_gross_amount: Decimal
    withholding_tax_percent: Decimal
    withheld_tax_amount: Decimal
    practitioner_net_amount: Decimal
    withholding_threshold: Decimal = ZERO

    @property
    def distributed_total(self) -> Decimal:
        return (
            self.refund_amount
            + self.platform_fee_amount
            + self.firm_commission_amount
            + self.practitioner_net_amount
            + self.withheld_tax_amount
        )

    def is_balanced(self) -> bool:
        return (
            self.distributed_total == self.gross_amount
            and self.practitioner_gross_amount == self.practitioner_net_amount + self.withheld_tax_amount
        )

    def to_dict(self) -> dict[str, str]:
        return {
            "outcome": self.outcome.value,
            "gross_amount": str(self.gross_amount),
            "refund_percentage": str(self.refund_percentage),
            "refund_amount": str(self.refund_amount),
            "platform_fee_percent": str(self.platform_fee_percent),
            "platform_fee_amount": str(self.platform_fee_amount),
            "firm_commission_percent": str(self.firm_commission_percent),
            "firm_commission_amount": str(self.firm_commission_amount),
            "practitioner_gross_amount": str(self.practitioner_gross_amount),
            "withholding_tax_percent": str(self.withholding_tax_percent),
            "withheld_tax_amount": str(self.withheld_tax_amount),
            "practitioner_net_amount": str(self.practitioner_net_amount),
            "withholding_threshold": str(self.withholding_threshold),
        }


def terms_for_engagement(engagement: Engagement, settings: Settings | None = None) -> DistributionTerms:
    """Resolve the engagement's configured percentages, falling back to platform defaults."""

    settings = settings or get_settings()

    def _pick(override: Decimal | None, default: Decimal) -> Decimal:
        return to_percent(override if override is not None else default)

    firm_percent = None
    if engagement.has_firm:
        firm_percent = _pick(engagement.firm_commission_percent, settings.FIRM_COMMISSION_PERCENT)

    return DistributionTerms(
        platform_fee_percent=_pick(engagement.platform_fee_percent, settings.PLATFORM_FEE_PERCENT),
        withholding_tax_percent=_pick(engagement.withholding_tax_percent, settings.WITHHOLDING_TAX_PERCENT),
        firm_commission_percent=firm_percent,
        withholding_threshold=to_money(settings.WITHHOLDING_THRESHOLD),
    )


def _refund_percentage_for(outcome: DisputeOutcome, refund_percentage: Decimal | None) -> Decimal:
    if outcome is DisputeOutcome.FULL_REFUND:
        return HUNDRED
    if outcome is DisputeOutcome.RELEASE:
        return ZERO
    if refund_percentage is None:
        raise ValueError("A partial refund requires a refund percentage")
    return to_percent(refund_percentage)


def calculate_distribution(
    gross_amount: Decimal,
    outcome: DisputeOutcome,
    terms: DistributionTerms,
    refund_percentage: Decimal | None = None,
) -> DistributionSplit:
    """Compute the split of ``gross_amount`` for the given outcome and terms."""

    gross = to_money(gross_amount)
    if gross <= ZERO:
        raise ValueError("Gross amount must be positive")

    outcome = DisputeOutcome(outcome)
    refund_pct = _refund_percentage_for(outcome, refund_percentage)
    fee_pct = to_percent(terms.platform_fee_percent)
    tax_pct = to_percent(terms.withholding_tax_percent)
    firm_pct = to_percent(terms.firm_commission_percent) if terms.has_firm else ZERO

    refund = gross if refund_pct == HUNDRED else percent_of(gross, refund_pct)
    remaining = gross - refund

    platform_fee = percent_of(remaining, fee_pct)
    after_fee = remaining - platform_fee
    firm_commission = percent_of(after_fee, firm_pct) if terms.has_firm else ZERO
    practitioner_gross = to_money(after_fee - firm_commission)

    residual = gross - (refund + platform_fee + firm_commission + practitioner_gross)
    practitioner_gross += residual

    withholding = calculate_withholding(practitioner_gross, tax_pct, terms.withholding_threshold)

    split = DistributionSplit(
        outcome=outcome,
        gross_amount=gross,
        refund_percentage=refund_pct,
        refund_amount=refund,
        platform_fee_percent=fee_pct,
        platform_fee_amount=platform_fee,
        firm_commission_percent=firm_pct,
        firm_commission_amount=firm_commission,
        practitioner_gross_amount=practitioner_gross,
        withholding_tax_percent=withholding.rate,
        withheld_tax_amount=withholding.tax_amount,
        practitioner_net_amount=withholding.net_amount,
        withholding_threshold=withholding.threshold,
    )
    if not split.is_balanced():
        raise ArithmeticError(f"Distribution does not conserve gross amount: {split.to_dict()}")
    return split


__all__ = [
    "DistributionSplit",
    "DistributionTerms",
    "calculate_distribution",
    "terms_for_engagement",
]
