"""
Trade fee calculation.

Buys pay the fee on top of the base price, sells have it carved out of the base return. In
both cases the fee goes to the fee collector and never touches the curve's reserves, so the
reserves move by exactly the base amount and k is unaffected by fees.
"""
from mcp_bonding_curve.config import BPS_DENOMINATOR, TRADE_FEE_BPS
from mcp_bonding_curve.arithmetic import checked_mul_wide, to_u64


def calculate_fee(base_amount: int, is_subscribed: bool, fee_bps: int = TRADE_FEE_BPS) -> int:
    """Return ``base_amount * fee_bps / 10000`` truncated, or 0 for subscribed traders."""
    if is_subscribed:
        return 0
    return to_u64(checked_mul_wide(base_amount, fee_bps) // BPS_DENOMINATOR)
