"""
Tiered unit pricing for additional users, contracts, leads and signatures.

Charges are marginal: every billable unit is priced at the rate of the step
containing it, so crossing into a cheaper step never reprices the units
already counted in an earlier one.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Sequence

from ..errors import ConfigurationError


@dataclass(frozen=True)
class StepCharge:
    """Units billed inside a single price step."""
    from_unit: int
    to_unit: int
    units: int
    unit_price: Decimal
    amount: Decimal


@dataclass(frozen=True)
class UnitsCharge:
    """Result of pricing a unit count against a step table."""
    requested_units: int
    included_units: int
    billable_units: int
    total: Decimal
    step_charges: tuple[StepCharge, ...] = ()


def validate_steps(steps: Sequence, included_units: int, path: Optional[str] = None):
    """
    Check that steps are ordered, contiguous, start right after the included
    allotment and end unbounded.
    """
    if not steps:
        raise ConfigurationError("no unit price steps defined", path=path)

    expected = included_units + 1
    for index, step in enumerate(steps):
        if step.from_unit > expected:
            raise ConfigurationError(
                f"gap before step {index}: units {expected}-{step.from_unit - 1} have no price",
                path=path,
            )
        if step.from_unit < expected:
            raise ConfigurationError(
                f"step {index} starts at {step.from_unit}, overlapping units below {expected}",
                path=path,
            )
        if step.to_unit is None:
            if index != len(steps) - 1:
                raise ConfigurationError(f"unbounded step {index} is not the last one", path=path)
            return
        expected = step.to_unit + 1

    raise ConfigurationError(f"no price for units from {expected} upwards", path=path)


def price_steps(steps: Sequence, included_units: int, requested_units: int) -> UnitsCharge:
    """
    Fold the ordered step table over ``[included_units + 1, requested_units]``.

    ``requested_units`` counts the included allotment too.
    """
    if requested_units < 0:
        raise ConfigurationError(f"requested units cannot be negative (got {requested_units})")
    validate_steps(steps, included_units)

    billable = max(0, requested_units - included_units)
    total = Decimal("0")
    charges = []

    for step in steps:
        if requested_units < step.from_unit:
            break
        upper = requested_units if step.to_unit is None else min(step.to_unit, requested_units)
        units = upper - step.from_unit + 1
        amount = step.unit_price * units
        charges.append(StepCharge(
            from_unit=step.from_unit,
            to_unit=upper,
            units=units,
            unit_price=step.unit_price,
            amount=amount,
        ))
        total += amount

    return UnitsCharge(
        requested_units=requested_units,
        included_units=included_units,
        billable_units=billable,
        total=total,
        step_charges=tuple(charges),
    )


def price_units(priced, requested_units: int) -> Decimal:
    """Overage cost of ``requested_units`` for a plan or tiered add-on."""
    return price_steps(priced.unit_steps, priced.included_units, requested_units).total
