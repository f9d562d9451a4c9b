"""
Wei → ether conversion and JSON-RPC quantity parsing.

Amounts from the node are 256-bit integers; they are divided in the Decimal
domain and only narrowed to float at the end.
"""

from __future__ import annotations

from decimal import Decimal, localcontext

ETHER_DECIMALS = 18
# Enough significant digits for any 256-bit integer (78 digits) plus the scale.
_DECIMAL_PRECISION = 100


def parse_quantity(value: int | str | None) -> int:
    """Parse a JSON-RPC quantity ("0x1a", "26" or int) into an int; None -> 0."""
    if value is None:
        return 0
    if isinstance(value, int):
        return value
    s = value.strip()
    if s.startswith(("0x", "0X")):
        return int(s, 16) if len(s) > 2 else 0
    return int(s)


def to_ether(amount: int | str | None, decimals: int = ETHER_DECIMALS) -> float:
    """
    Convert an integer amount in the smallest unit to the human-readable unit.

    The divisor is the exact integer 10**decimals; numerator and divisor are
    converted to Decimal and divided before narrowing to float.

        to_ether(1_500_000_000_000_000_000) == 1.5
    """
    numerator = Decimal(parse_quantity(amount))
    denominator = Decimal(10**decimals)
    with localcontext() as ctx:
        ctx.prec = _DECIMAL_PRECISION
        return float(numerator / denominator)
