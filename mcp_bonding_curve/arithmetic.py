"""
Checked integer arithmetic.

Python integers never overflow, so the widths of the deployed program are enforced
explicitly: inputs and results live in u64, intermediate products in u128. Every helper
either returns an in-range value or raises, there is no saturation or wrap-around.
"""
from mcp_bonding_curve.config import U64_MAX, U128_MAX
from mcp_bonding_curve.errors import (
    InsufficientLiquidityError,
    InvalidAmountError,
    MathOverflowError,
)


def require_amount(name: str, value: int) -> int:
    """Validate a strictly positive u64 trade size."""
    if not isinstance(value, int) or isinstance(value, bool):
        raise InvalidAmountError(f"{name} must be an integer, got {type(value).__name__}")
    if value <= 0:
        raise InvalidAmountError(f"{name} must be positive, got {value}")
    if value > U64_MAX:
        raise MathOverflowError(f"{name} exceeds u64: {value}")
    return value


def require_u64(name: str, value: int) -> int:
    """Validate a non-negative u64 bound or balance."""
    if not isinstance(value, int) or isinstance(value, bool):
        raise InvalidAmountError(f"{name} must be an integer, got {type(value).__name__}")
    if value < 0:
        raise InvalidAmountError(f"{name} must be non-negative, got {value}")
    if value > U64_MAX:
        raise MathOverflowError(f"{name} exceeds u64: {value}")
    return value


def to_u64(value: int) -> int:
    """Narrow a wide intermediate back to u64."""
    if value < 0 or value > U64_MAX:
        raise MathOverflowError(f"Result {value} does not fit in u64")
    return value


def checked_add(a: int, b: int) -> int:
    return to_u64(a + b)


def checked_sub(a: int, b: int) -> int:
    """u64 subtraction; going below zero means a reserve would be exhausted."""
    if b > a:
        raise InsufficientLiquidityError(f"Cannot subtract {b} from {a}")
    return a - b


def checked_mul_wide(a: int, b: int) -> int:
    """u128 product of two u64 values."""
    product = a * b
    if product > U128_MAX:
        raise MathOverflowError(f"Product {a} * {b} exceeds u128")
    return product


def floor_div(numerator: int, denominator: int) -> int:
    if denominator <= 0:
        raise InsufficientLiquidityError("Division by an empty reserve")
    return numerator // denominator
