"""
Token Pricing Engine with Bonding Curves

This module computes what a trade costs or returns given a curve's configuration and the
real reserves currently held by its vault. Pricing is pure: nothing here reads or writes
state, reserves are always passed in fresh by the caller, and every step uses checked
integer arithmetic (u64 values, u128 intermediates) with no floating point.

Bonding Curve Types Supported:
- Constant Product (reference): x * y = k over (real SOL + virtual SOL) and real tokens
- Linear: spot price grows linearly with tokens sold
- Exponential: spot price compounds by growth_bps per whole token sold
- Logarithmic: spot price grows with log2 of whole tokens sold

Only the constant product curve takes part in fee accounting and migration in production;
the other shapes are kept behind the same PricingStrategy interface for compatibility with
curves launched under earlier revisions.

Rounding:
Every division truncates, exactly as the deployed program does. Buy cost is
``k // (tokens - amount) - value``, sell return is ``value - k // (tokens + amount)`` and
tokens-for-value is ``tokens - k // (value + value_in)``. A fee-free buy-then-sell can
therefore return one unit more than its base cost; sells never pay out more than the real
value the vault holds.
"""
from abc import ABC, abstractmethod
from typing import Dict, Optional, Type

from mcp_bonding_curve.arithmetic import (
    checked_add,
    checked_mul_wide,
    floor_div,
    require_amount,
    to_u64,
)
from mcp_bonding_curve.config import BPS_DENOMINATOR, PRICE_PRECISION_FACTOR, U64_MAX
from mcp_bonding_curve.errors import (
    InsufficientLiquidityError,
    InvalidCurveConfigError,
    MathOverflowError,
)
from mcp_bonding_curve.ledger import Reserves
from mcp_bonding_curve.schemas import CurveConfigModel, CurveType, ProtocolSettings
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)

FIXED_POINT = 10**18


class PricingStrategy(ABC):
    """Interface implemented by every curve shape."""

    def __init__(self, curve: CurveConfigModel, settings: ProtocolSettings):
        self.curve = curve
        self.settings = settings

    @classmethod
    def validate(cls, curve: CurveConfigModel) -> None:
        """Raise InvalidCurveConfigError if the shape parameters are unusable."""

    @abstractmethod
    def buy_price(self, reserves: Reserves, amount: int) -> int:
        """Base value cost of taking ``amount`` tokens out of the vault."""

    @abstractmethod
    def sell_price(self, reserves: Reserves, amount: int) -> int:
        """Base value returned for putting ``amount`` tokens into the vault."""

    @abstractmethod
    def spot_price(self, reserves: Reserves) -> int:
        """Marginal price in lamports per PRICE_PRECISION_FACTOR token units."""

    def tokens_for_value(self, reserves: Reserves, value_in: int) -> int:
        """Largest token amount whose buy price does not exceed ``value_in``."""
        require_amount("value_in", value_in)
        lo, hi = 0, reserves.token_balance - 1
        while lo < hi:
            mid = (lo + hi + 1) // 2
            if self.buy_price(reserves, mid) <= value_in:
                lo = mid
            else:
                hi = mid - 1
        return max(lo, 0)


class ConstantProductStrategy(PricingStrategy):
    """Invariant product over (real + virtual) value and real tokens."""

    def _effective(self, reserves: Reserves):
        effective_value = checked_add(reserves.value_balance, self.settings.virtual_sol_amount)
        effective_tokens = reserves.token_balance
        if effective_value == 0 or effective_tokens == 0:
            raise InsufficientLiquidityError(
                f"Empty reserve: effective_value={effective_value}, tokens={effective_tokens}"
            )
        return effective_value, effective_tokens

    def buy_price(self, reserves: Reserves, amount: int) -> int:
        require_amount("amount", amount)
        effective_value, effective_tokens = self._effective(reserves)
        if amount >= effective_tokens:
            raise InsufficientLiquidityError(
                f"Cannot buy {amount} tokens from a vault holding {effective_tokens}"
            )
        k = checked_mul_wide(effective_tokens, effective_value)
        new_value = floor_div(k, effective_tokens - amount)
        return to_u64(new_value - effective_value)

    def sell_price(self, reserves: Reserves, amount: int) -> int:
        require_amount("amount", amount)
        effective_value, effective_tokens = self._effective(reserves)
        k = checked_mul_wide(effective_tokens, effective_value)
        new_tokens = checked_add(effective_tokens, amount)
        new_value = floor_div(k, new_tokens)
        return to_u64(effective_value - new_value)

    def tokens_for_value(self, reserves: Reserves, value_in: int) -> int:
        require_amount("value_in", value_in)
        effective_value, effective_tokens = self._effective(reserves)
        k = checked_mul_wide(effective_tokens, effective_value)
        new_value = checked_add(effective_value, value_in)
        new_tokens = floor_div(k, new_value)
        return to_u64(effective_tokens - new_tokens)

    def spot_price(self, reserves: Reserves) -> int:
        effective_value, effective_tokens = self._effective(reserves)
        return to_u64(checked_mul_wide(effective_value, PRICE_PRECISION_FACTOR) // effective_tokens)


class _SupplyCurveStrategy(PricingStrategy):
    """Curves priced from tokens sold so far, ``total_supply - vault balance``."""

    @property
    def unit(self) -> int:
        return 10 ** self.curve.token.decimals

    @classmethod
    def validate(cls, curve: CurveConfigModel) -> None:
        if curve.curve.base_price <= 0:
            raise InvalidCurveConfigError(f"{curve.curve.curve_type.value} curve requires base_price > 0")

    @abstractmethod
    def _spot(self, supply_sold: int) -> int:
        """Lamports per whole token once ``supply_sold`` base units are sold."""

    def _sold(self, reserves: Reserves) -> int:
        return max(self.curve.token.total_supply - reserves.token_balance, 0)

    def buy_price(self, reserves: Reserves, amount: int) -> int:
        require_amount("amount", amount)
        if amount >= reserves.token_balance:
            raise InsufficientLiquidityError(
                f"Cannot buy {amount} tokens from a vault holding {reserves.token_balance}"
            )
        spot = self._spot(self._sold(reserves) + amount)
        return to_u64(checked_mul_wide(spot, amount) // self.unit)

    def sell_price(self, reserves: Reserves, amount: int) -> int:
        require_amount("amount", amount)
        sold = self._sold(reserves)
        if amount > sold:
            raise InsufficientLiquidityError(f"Cannot sell {amount} tokens, only {sold} were sold")
        spot = self._spot(sold - amount)
        return to_u64(checked_mul_wide(spot, amount) // self.unit)

    def spot_price(self, reserves: Reserves) -> int:
        spot = self._spot(self._sold(reserves))
        return to_u64(checked_mul_wide(spot, PRICE_PRECISION_FACTOR) // self.unit)


class LinearStrategy(_SupplyCurveStrategy):
    def _spot(self, supply_sold: int) -> int:
        params = self.curve.curve
        return to_u64(params.base_price + checked_mul_wide(params.slope, supply_sold) // self.unit)


class ExponentialStrategy(_SupplyCurveStrategy):
    @classmethod
    def validate(cls, curve: CurveConfigModel) -> None:
        super().validate(curve)
        if curve.curve.growth_bps <= 0:
            raise InvalidCurveConfigError("exponential curve requires growth_bps > 0")

    def _spot(self, supply_sold: int) -> int:
        params = self.curve.curve
        limit = U64_MAX * FIXED_POINT
        result = FIXED_POINT
        base = FIXED_POINT * (BPS_DENOMINATOR + params.growth_bps) // BPS_DENOMINATOR
        steps = supply_sold // self.unit
        # Square-and-multiply in 18-decimal fixed point
        while steps:
            if steps & 1:
                result = result * base // FIXED_POINT
                if result > limit:
                    raise MathOverflowError(f"Exponential price overflow at supply {supply_sold}")
            steps >>= 1
            if steps:
                base = base * base // FIXED_POINT
                if base > limit:
                    raise MathOverflowError(f"Exponential price overflow at supply {supply_sold}")
        return to_u64(params.base_price * result // FIXED_POINT)


class LogarithmicStrategy(_SupplyCurveStrategy):
    @classmethod
    def validate(cls, curve: CurveConfigModel) -> None:
        super().validate(curve)
        if curve.curve.slope <= 0:
            raise InvalidCurveConfigError("logarithmic curve requires slope > 0")

    def _spot(self, supply_sold: int) -> int:
        params = self.curve.curve
        log2 = (1 + supply_sold // self.unit).bit_length() - 1
        return to_u64(params.base_price + checked_mul_wide(params.slope, log2))


STRATEGIES: Dict[CurveType, Type[PricingStrategy]] = {
    CurveType.constant_product: ConstantProductStrategy,
    CurveType.linear: LinearStrategy,
    CurveType.exponential: ExponentialStrategy,
    CurveType.logarithmic: LogarithmicStrategy,
}


def get_strategy(curve: CurveConfigModel, settings: Optional[ProtocolSettings] = None) -> PricingStrategy:
    try:
        strategy_cls = STRATEGIES[curve.curve.curve_type]
    except KeyError:
        raise InvalidCurveConfigError(f"Unsupported curve type '{curve.curve.curve_type}'")
    return strategy_cls(curve, settings or ProtocolSettings())


def validate_curve(curve: CurveConfigModel) -> None:
    strategy_cls = STRATEGIES.get(curve.curve.curve_type)
    if strategy_cls is None:
        raise InvalidCurveConfigError(f"Unsupported curve type '{curve.curve.curve_type}'")
    strategy_cls.validate(curve)


def calculate_token_price(
    amount: int,
    curve: CurveConfigModel,
    reserves: Reserves,
    is_sell: bool = False,
    settings: Optional[ProtocolSettings] = None,
) -> int:
    """
    Calculates the base price (no fee) of a trade against the given reserves.

    Args:
        amount: The number of tokens (in base units).
        curve: The curve configuration.
        reserves: Real reserves observed for the curve, read under the caller's lock.
        is_sell: True to price a sell, False to price a buy.
        settings: Protocol constants; defaults from the environment.

    Returns:
        The value cost (buy) or value return (sell) in lamports.
    """
    strategy = get_strategy(curve, settings)
    price = strategy.sell_price(reserves, amount) if is_sell else strategy.buy_price(reserves, amount)
    logger.debug(
        f"{'Sell' if is_sell else 'Buy'} price for {amount} units of {curve.curve_id}: "
        f"{price} lamports (reserves value={reserves.value_balance}, tokens={reserves.token_balance})"
    )
    return price
