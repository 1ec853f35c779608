"""Money helpers: two-decimal, half-up rounding."""

from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")

# Reconciliation tolerance between a document total and the sum of its lines
MONEY_EPSILON = Decimal("0.01")


def to_money(value: Decimal | int | float | str | None) -> Decimal:
    """Convert a value to a Decimal rounded to cents (ROUND_HALF_UP)."""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def money_equal(a: Decimal, b: Decimal, epsilon: Decimal = MONEY_EPSILON) -> bool:
    """Compare two amounts within the reconciliation tolerance."""
    return abs(to_money(a) - to_money(b)) <= epsilon


def percentage_of(amount: Decimal, rate: Decimal) -> Decimal:
    """Return ``amount * rate / 100`` rounded to cents."""
    return to_money(Decimal(amount) * Decimal(rate) / Decimal("100"))
