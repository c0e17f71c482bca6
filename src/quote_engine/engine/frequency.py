"""
Payment frequency adjustment.

Converts a monthly-equivalent price into the total owed for one billing cycle
and splits that total into installments.
"""
from dataclasses import dataclass
from decimal import Decimal

from ..config.schema import PaymentFrequency, PricingConfig
from ..errors import ValidationError
from .rounding import quantize_money


@dataclass(frozen=True)
class FrequencyAdjustment:
    frequency: PaymentFrequency
    cycle_months: int
    factor: Decimal  # multiplier x cycle months x (1 - discount)
    total_for_cycle: Decimal
    installments: int
    per_installment: Decimal


def cycle_factor(frequency: PaymentFrequency, config: PricingConfig) -> Decimal:
    """Number that turns a monthly-equivalent price into a cycle total."""
    terms = config.frequency_terms(frequency)
    return terms.multiplier * terms.cycle_months * (1 - terms.discount_rate)


def check_installments(frequency: PaymentFrequency, installments: int, config: PricingConfig):
    terms = config.frequency_terms(frequency)
    if installments not in terms.allowed_installments:
        raise ValidationError(
            f"{installments} installment(s) not allowed for {PaymentFrequency(frequency).value} billing",
            field="installments",
            value=installments,
            allowed=terms.allowed_installments,
        )


def apply_frequency(
    monthly_equivalent: Decimal,
    frequency: PaymentFrequency,
    config: PricingConfig,
    installments: int = 1,
) -> FrequencyAdjustment:
    """
    Apply frequency terms to a monthly-equivalent amount.

    total_for_cycle = monthly x multiplier x cycle_months x (1 - discount_rate)
    per_installment = total_for_cycle / installments

    Raises ValidationError when ``installments`` is not allowed for the
    frequency, ConfigurationError when the frequency has no terms.
    """
    frequency = PaymentFrequency(frequency)
    terms = config.frequency_terms(frequency)
    check_installments(frequency, installments, config)

    factor = cycle_factor(frequency, config)
    total = Decimal(monthly_equivalent) * factor
    return FrequencyAdjustment(
        frequency=frequency,
        cycle_months=terms.cycle_months,
        factor=factor,
        total_for_cycle=total,
        installments=installments,
        per_installment=quantize_money(total / installments, config.rounding.money_places),
    )
