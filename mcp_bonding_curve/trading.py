"""
Trade Execution

TradeExecutor orchestrates a single buy or sell against one curve:

1. Reject unless the curve is active
2. Price the trade from freshly read reserves (pricing.py)
3. Apply the trade fee (fees.py): added on top for buys, carved out for sells
4. Enforce the caller's slippage bound before anything moves
5. Move value and tokens through the ledger ports; vault debits carry the VaultAuthority and
   trader debits the TraderAuthority
6. Verify the vault balance reported by the token transfer
7. On buys, hand over to the MigrationController once real reserves reach the threshold

The executor keeps no state of its own. Atomicity and serialization are provided by the
caller (engine.py), which runs each call inside one ledger transaction under the curve lock.
"""
from typing import List, NamedTuple, Optional, Tuple, Union

from mcp_bonding_curve.arithmetic import checked_add, require_u64
from mcp_bonding_curve.errors import (
    BalanceMismatchError,
    InsufficientLiquidityError,
    InvalidCurveConfigError,
    MigrationCompleteError,
    PriceBelowMinReturnError,
    PriceExceedsMaxCostError,
)
from mcp_bonding_curve.fees import calculate_fee
from mcp_bonding_curve.ledger import (
    ReservePort,
    Reserves,
    TokenTransferPort,
    TraderAuthority,
    ValueTransferPort,
    VaultAuthority,
)
from mcp_bonding_curve.migration import MigrationController
from mcp_bonding_curve.pricing import get_strategy
from mcp_bonding_curve.schemas import (
    BuyQuote,
    BuyResult,
    CurveConfigModel,
    MigrationRecord,
    MigrationStatus,
    ProtocolSettings,
    SellQuote,
    SellResult,
    TradeRecord,
)
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)


class TradeOutcome(NamedTuple):
    result: Union[BuyResult, SellResult]
    records: List[Union[TradeRecord, MigrationRecord]]


def ensure_active(curve: CurveConfigModel) -> None:
    status = curve.curve.migration_status
    if status != MigrationStatus.active:
        raise MigrationCompleteError(f"Curve '{curve.curve_id}' is {status.value}; trading is closed")


class TradeExecutor:
    def __init__(
        self,
        reserves: ReservePort,
        value_transfers: ValueTransferPort,
        token_transfers: TokenTransferPort,
        settings: ProtocolSettings,
        migration: Optional[MigrationController] = None,
    ):
        self.reserves = reserves
        self.value_transfers = value_transfers
        self.token_transfers = token_transfers
        self.settings = settings
        self.migration = migration

    # --- Pricing ---

    def price_buy(self, curve: CurveConfigModel, amount: int, discount: bool) -> Tuple[BuyQuote, Reserves]:
        ensure_active(curve)
        reserves = self.reserves.current_reserves(curve.curve_id)
        base = get_strategy(curve, self.settings).buy_price(reserves, amount)
        fee = calculate_fee(base, discount, self.settings.trade_fee_bps)
        total = checked_add(base, fee)
        logger.debug(f"Buy quote for {amount} units of {curve.curve_id}: base={base}, fee={fee}, total={total}")
        return BuyQuote(amount=amount, base_cost=base, fee=fee, total_cost=total), reserves

    def price_sell(self, curve: CurveConfigModel, amount: int, discount: bool) -> Tuple[SellQuote, Reserves]:
        ensure_active(curve)
        reserves = self.reserves.current_reserves(curve.curve_id)
        base = get_strategy(curve, self.settings).sell_price(reserves, amount)
        if base > reserves.value_balance:
            raise InsufficientLiquidityError(
                f"Sell of {amount} units returns {base}, curve holds {reserves.value_balance}"
            )
        fee = calculate_fee(base, discount, self.settings.trade_fee_bps)
        if fee > base:
            raise InvalidCurveConfigError(f"Fee {fee} exceeds sell return {base}")
        payout = base - fee
        logger.debug(f"Sell quote for {amount} units of {curve.curve_id}: base={base}, fee={fee}, payout={payout}")
        return SellQuote(amount=amount, base_return=base, fee=fee, payout=payout), reserves

    # --- Execution ---

    def buy(
        self,
        curve: CurveConfigModel,
        authority: VaultAuthority,
        buyer: TraderAuthority,
        amount: int,
        max_value_cost: int,
        discount: bool,
    ) -> TradeOutcome:
        quote, reserves = self.price_buy(curve, amount, discount)
        require_u64("max_value_cost", max_value_cost)
        if quote.total_cost > max_value_cost:
            logger.warning(
                f"Buy rejected for {curve.curve_id}: cost {quote.total_cost} exceeds max {max_value_cost}"
            )
            raise PriceExceedsMaxCostError(
                f"Price {quote.total_cost} exceeds maximum cost {max_value_cost}"
            )

        vault = authority.vault_address
        trader = buyer.account
        self.value_transfers.transfer_value(trader, vault, quote.base_cost, buyer)
        if quote.fee > 0:
            self.value_transfers.transfer_value(trader, self.settings.fee_collector, quote.fee, buyer)

        receipt = self.token_transfers.transfer_tokens(curve.curve_id, vault, trader, amount, authority)
        expected = reserves.token_balance - amount
        if receipt.source_balance != expected:
            raise BalanceMismatchError(
                f"Vault holds {receipt.source_balance} tokens after buy, expected {expected}"
            )

        records: List[Union[TradeRecord, MigrationRecord]] = [
            TradeRecord(
                kind="buy",
                curve_id=curve.curve_id,
                amount=amount,
                value_amount=quote.total_cost,
                fee=quote.fee,
                trader=trader,
                is_subscribed=discount,
            )
        ]
        logger.info(
            f"Buy completed for '{curve.curve_id}': amount={amount}, cost={quote.base_cost}, "
            f"fee={quote.fee}, buyer={trader}"
        )

        migrated = False
        if self.migration is not None:
            after = self.reserves.current_reserves(curve.curve_id)
            if self.migration.should_migrate(curve, after):
                records.append(self.migration.migrate(curve, authority))
                migrated = True

        result = BuyResult(
            tokens_bought=amount, value_paid=quote.total_cost, fee=quote.fee, migrated=migrated
        )
        return TradeOutcome(result, records)

    def sell(
        self,
        curve: CurveConfigModel,
        authority: VaultAuthority,
        seller: TraderAuthority,
        amount: int,
        min_value_return: int,
        discount: bool,
    ) -> TradeOutcome:
        quote, reserves = self.price_sell(curve, amount, discount)
        require_u64("min_value_return", min_value_return)
        if quote.payout < min_value_return:
            logger.warning(
                f"Sell rejected for {curve.curve_id}: payout {quote.payout} below min {min_value_return}"
            )
            raise PriceBelowMinReturnError(
                f"Return {quote.payout} is below minimum return {min_value_return}"
            )

        vault = authority.vault_address
        trader = seller.account
        receipt = self.token_transfers.transfer_tokens(curve.curve_id, trader, vault, amount, seller)
        expected = reserves.token_balance + amount
        if receipt.destination_balance != expected:
            raise BalanceMismatchError(
                f"Vault holds {receipt.destination_balance} tokens after sell, expected {expected}"
            )

        self.value_transfers.transfer_value(vault, trader, quote.payout, authority)
        if quote.fee > 0:
            self.value_transfers.transfer_value(vault, self.settings.fee_collector, quote.fee, authority)

        logger.info(
            f"Sell completed for '{curve.curve_id}': amount={amount}, return={quote.base_return}, "
            f"fee={quote.fee}, seller={trader}"
        )
        record = TradeRecord(
            kind="sell",
            curve_id=curve.curve_id,
            amount=amount,
            value_amount=quote.payout,
            fee=quote.fee,
            trader=trader,
            is_subscribed=discount,
        )
        return TradeOutcome(SellResult(value_returned=quote.payout, fee=quote.fee), [record])
