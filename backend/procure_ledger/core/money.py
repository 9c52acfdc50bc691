from decimal import ROUND_HALF_UP, Decimal

ZERO = Decimal("0")
HUNDRED = Decimal("100")
CENT = Decimal("0.01")


def to_decimal(value) -> Decimal:
    """Coerce DB numerics, ints, floats and strings to Decimal without float noise."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(value)


def round_money(value) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def percentage_of(part, base) -> Decimal:
    """part / base * 100, or 0 when the base is 0."""
    base = to_decimal(base)
    if base == 0:
        return ZERO
    return to_decimal(part) / base * HUNDRED
