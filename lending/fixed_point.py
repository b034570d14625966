"""
fixed_point.py - Checked and saturating integer arithmetic.

Accounting quantities are unbounded Python ints, held to the widths of the
accounting model: u64 for instruction arguments, u128 for stored totals and
intermediate products. Checked operations raise MathOverflow when a result
leaves [0, bound] and DivisionByZero on a zero divisor. Saturating operations
clamp to the bound instead; they are reserved for the rate and interest
accumulators.
"""

from __future__ import annotations

from .core import U64_MAX, U128_MAX, MathOverflow, DivisionByZero


def require_u64(amount: int, name: str = "amount") -> int:
    """
    Validate an instruction argument.

    Raises:
        ValueError: If amount is not an int or is negative
        MathOverflow: If amount does not fit in u64
    """
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValueError(f"{name} must be an int, got {type(amount).__name__}")
    if amount < 0:
        raise ValueError(f"{name} cannot be negative, got {amount}")
    if amount > U64_MAX:
        raise MathOverflow(f"{name} {amount} exceeds u64")
    return amount


def require_positive(amount: int, name: str = "amount") -> int:
    """require_u64 that also rejects zero."""
    require_u64(amount, name)
    if amount == 0:
        raise ValueError(f"{name} must be positive")
    return amount


def checked_add(a: int, b: int, bound: int = U128_MAX) -> int:
    result = a + b
    if result > bound:
        raise MathOverflow(f"{a} + {b} exceeds {bound}")
    return result


def checked_sub(a: int, b: int) -> int:
    if b > a:
        raise MathOverflow(f"{a} - {b} underflows")
    return a - b


def checked_mul(a: int, b: int, bound: int = U128_MAX) -> int:
    result = a * b
    if result > bound:
        raise MathOverflow(f"{a} * {b} exceeds {bound}")
    return result


def checked_div(a: int, b: int) -> int:
    """Floor division."""
    if b == 0:
        raise DivisionByZero(f"{a} / 0")
    return a // b


def ceil_div(a: int, b: int, bound: int = U128_MAX) -> int:
    """(a + b - 1) / b, with the numerator held to ``bound``."""
    if b == 0:
        raise DivisionByZero(f"{a} / 0")
    return checked_add(a, b - 1, bound) // b


def mul_div(a: int, b: int, c: int, bound: int = U128_MAX) -> int:
    """Floor of a * b / c with a checked intermediate product."""
    return checked_div(checked_mul(a, b, bound), c)


def saturating_add(a: int, b: int, bound: int = U128_MAX) -> int:
    return min(a + b, bound)


def saturating_mul(a: int, b: int, bound: int = U128_MAX) -> int:
    return min(a * b, bound)


def saturating_sub(a: int, b: int) -> int:
    return max(a - b, 0)
