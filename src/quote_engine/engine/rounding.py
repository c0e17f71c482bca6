"""Price rounding convention: round up to the next integer ending in a fixed digit."""
from decimal import Decimal, ROUND_CEILING, ROUND_HALF_UP


DEFAULT_TARGET_DIGIT = 7


def round_to_convention(amount, target_digit: int = DEFAULT_TARGET_DIGIT) -> Decimal:
    """
    Smallest integer >= amount whose last digit is ``target_digit``.

    490 -> 497, 497 -> 497, 498 -> 507, 496.01 -> 497. Never rounds down.
    """
    if not 0 <= target_digit <= 9:
        raise ValueError(f"target digit must be 0-9, got {target_digit}")

    ceiled = Decimal(amount).to_integral_value(rounding=ROUND_CEILING)
    last_digit = int(ceiled % 10)
    # Decimal % keeps the dividend's sign
    if last_digit < 0:
        last_digit += 10
    return ceiled + (target_digit - last_digit) % 10


def quantize_money(amount: Decimal, places: int = 2) -> Decimal:
    """Half-up quantization for amounts that are not subject to the convention."""
    return Decimal(amount).quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)
