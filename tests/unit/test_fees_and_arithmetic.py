import pytest

from mcp_bonding_curve.arithmetic import (
    checked_add,
    checked_mul_wide,
    checked_sub,
    floor_div,
    require_u64,
)
from mcp_bonding_curve.config import U64_MAX, U128_MAX
from mcp_bonding_curve.errors import (
    InsufficientLiquidityError,
    InvalidAmountError,
    MathOverflowError,
)
from mcp_bonding_curve.fees import calculate_fee


def test_fee_is_one_percent_by_default():
    assert calculate_fee(30_000, is_subscribed=False) == 300


def test_fee_truncates():
    assert calculate_fee(99, is_subscribed=False, fee_bps=100) == 0
    assert calculate_fee(199, is_subscribed=False, fee_bps=100) == 1


def test_subscribed_traders_pay_no_fee():
    assert calculate_fee(1_000_000_000, is_subscribed=True) == 0


def test_fee_on_max_amount_fits():
    assert calculate_fee(U64_MAX, is_subscribed=False, fee_bps=10_000) == U64_MAX


def test_checked_add_overflow():
    assert checked_add(U64_MAX - 1, 1) == U64_MAX
    with pytest.raises(MathOverflowError):
        checked_add(U64_MAX, 1)


def test_checked_sub_underflow():
    assert checked_sub(5, 5) == 0
    with pytest.raises(InsufficientLiquidityError):
        checked_sub(5, 6)


def test_checked_mul_wide_limits():
    assert checked_mul_wide(U64_MAX, U64_MAX) <= U128_MAX
    with pytest.raises(MathOverflowError):
        checked_mul_wide(U128_MAX, 2)


def test_division_truncates():
    assert floor_div(7, 2) == 3
    assert floor_div(8, 2) == 4
    with pytest.raises(InsufficientLiquidityError):
        floor_div(1, 0)


def test_require_u64():
    assert require_u64("bound", 0) == 0
    with pytest.raises(InvalidAmountError):
        require_u64("bound", -1)
    with pytest.raises(MathOverflowError):
        require_u64("bound", U64_MAX + 1)
