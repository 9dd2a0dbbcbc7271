"""
Fixed-point money handling.

All amounts in the ledger are Decimal values with exactly two fractional
digits. Binary floats are never stored; when one arrives from a caller it is
converted through its shortest repr so 50.1 becomes Decimal("50.10") rather
than 50.099999...

Design Decisions:
- Amounts are persisted as integer cents (see infrastructure.database.Money)
- Anything with a third non-zero fractional digit is rejected, not rounded
"""

from decimal import Decimal, InvalidOperation

from .errors import InvalidAmount

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# Upper bound keeps cents inside a signed 64-bit column
MAX_AMOUNT = Decimal("999999999999.99")


def parse_amount(value: object) -> Decimal:
    """
    Parse and validate a positive monetary amount.

    Args:
        value: Decimal, int, str or float supplied by the caller

    Returns:
        Decimal quantized to two fractional digits

    Raises:
        InvalidAmount: If the value is not numeric, not finite, not positive,
            above MAX_AMOUNT, or not representable at 2-digit precision
    """
    if value is None or isinstance(value, bool):
        raise InvalidAmount(f"Invalid amount: {value!r}")

    try:
        if isinstance(value, Decimal):
            amount = value
        elif isinstance(value, float):
            amount = Decimal(repr(value))
        elif isinstance(value, (int, str)):
            amount = Decimal(str(value).strip())
        else:
            raise InvalidAmount(f"Invalid amount: {value!r}")
    except InvalidOperation:
        raise InvalidAmount(f"Invalid amount: {value!r}") from None

    if not amount.is_finite():
        raise InvalidAmount(f"Invalid amount: {value!r}")
    if amount <= 0:
        raise InvalidAmount(f"Amount must be positive, got {amount}")
    if amount > MAX_AMOUNT:
        raise InvalidAmount(f"Amount exceeds maximum of {MAX_AMOUNT}")

    quantized = amount.quantize(CENT)
    if quantized != amount:
        raise InvalidAmount(f"Amount must have at most 2 decimal places, got {amount}")
    return quantized


def to_cents(amount: Decimal) -> int:
    """Convert a 2-digit Decimal to integer cents."""
    return int((amount * 100).to_integral_value())


def from_cents(cents: int) -> Decimal:
    """Convert integer cents back to a 2-digit Decimal."""
    return (Decimal(cents) / 100).quantize(CENT)


def format_amount(amount: Decimal) -> str:
    """Render an amount for snapshots and API payloads ("50.00")."""
    return f"{amount.quantize(CENT):f}"
