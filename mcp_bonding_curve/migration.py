"""
Migration to an external liquidity venue.

Once a curve's real value reserve reaches the migration threshold, trading on the curve
stops for good and its reserves are handed to the venue:

1. Keep the rent-exempt floor in the vault; the rest is ``available``
2. Carve the developer fee (subscribed curves only) and the venue listing fee out of it
3. Size the token side so the venue opens at the curve's current effective price
4. Move both sides to the venue, the fees to their receivers, leftover tokens to the admin
5. Flip the curve to ``migrated``, then open the pool

The controller runs inside the caller's ledger transaction; if any step
raises, the transaction rolls back and the engine restores the curve configuration.
"""
from mcp_bonding_curve.arithmetic import checked_add, checked_mul_wide, checked_sub, to_u64
from mcp_bonding_curve.errors import (
    BalanceMismatchError,
    InsufficientLiquidityError,
    MigrationCompleteError,
)
from mcp_bonding_curve.config import PRICE_PRECISION_FACTOR
from mcp_bonding_curve.ledger import (
    ReservePort,
    Reserves,
    TokenTransferPort,
    ValueTransferPort,
    VaultAuthority,
)
from mcp_bonding_curve.schemas import (
    CurveConfigModel,
    MigrationRecord,
    MigrationStatus,
    ProtocolSettings,
)
from mcp_bonding_curve.venue import LiquidityVenuePort
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)


class MigrationController:
    def __init__(
        self,
        reserves: ReservePort,
        value_transfers: ValueTransferPort,
        token_transfers: TokenTransferPort,
        venue: LiquidityVenuePort,
        curves,
        settings: ProtocolSettings,
    ):
        self.reserves = reserves
        self.value_transfers = value_transfers
        self.token_transfers = token_transfers
        self.venue = venue
        self.curves = curves
        self.settings = settings

    def should_migrate(self, curve: CurveConfigModel, reserves: Reserves) -> bool:
        return (
            curve.curve.migration_status == MigrationStatus.active
            and reserves.value_balance >= self.settings.migration_threshold
        )

    def migrate(self, curve: CurveConfigModel, authority: VaultAuthority) -> MigrationRecord:
        """
        Drain the curve into the venue and mark it migrated.

        Args:
            curve: Configuration of an active curve.
            authority: The curve's vault authority, required to debit the vault.

        Returns:
            The MigrationRecord describing what moved.

        Raises:
            MigrationCompleteError: The curve is not active.
            InsufficientLiquidityError: The reserve cannot cover the floor and fees.
            BalanceMismatchError: The vault was not drained as expected.
        """
        settings = self.settings
        curve_id = curve.curve_id
        if curve.curve.migration_status != MigrationStatus.active:
            raise MigrationCompleteError(f"Curve '{curve_id}' has already left the active state")
        is_subscribed = curve.curve.is_subscribed
        reserves = self.reserves.current_reserves(curve_id)
        effective_value = checked_add(reserves.value_balance, settings.virtual_sol_amount)

        available = checked_sub(reserves.value_balance, settings.rent_exempt_minimum)
        dev_fee = settings.dev_fee_lamports if is_subscribed else 0
        venue_value = checked_sub(available, checked_add(dev_fee, settings.venue_pool_creation_fee))

        venue_tokens = to_u64(checked_mul_wide(venue_value, reserves.token_balance) // effective_value)
        if venue_tokens > reserves.token_balance:
            raise InsufficientLiquidityError(
                f"Venue needs {venue_tokens} tokens, vault holds {reserves.token_balance}"
            )
        leftover_tokens = reserves.token_balance - venue_tokens
        effective_price = 0
        if reserves.token_balance > 0:
            effective_price = to_u64(
                checked_mul_wide(effective_value, PRICE_PRECISION_FACTOR) // reserves.token_balance
            )

        logger.info(
            f"Migrating curve '{curve_id}': available={available}, venue_value={venue_value}, "
            f"venue_tokens={venue_tokens}, dev_fee={dev_fee}"
        )

        vault = authority.vault_address
        accounts = self.venue.pool_accounts(curve_id)
        if venue_value > 0:
            self.value_transfers.transfer_value(vault, accounts.value_account, venue_value, authority)
        if venue_tokens > 0:
            self.token_transfers.transfer_tokens(curve_id, vault, accounts.token_account, venue_tokens, authority)
        if dev_fee > 0:
            self.value_transfers.transfer_value(vault, curve.curve.developer, dev_fee, authority)
        if settings.venue_pool_creation_fee > 0:
            self.value_transfers.transfer_value(
                vault, settings.venue_fee_receiver, settings.venue_pool_creation_fee, authority
            )
        if leftover_tokens > 0:
            self.token_transfers.transfer_tokens(
                curve_id, vault, settings.migration_admin, leftover_tokens, authority
            )

        remaining = self.reserves.current_reserves(curve_id)
        if remaining.value_balance > settings.rent_exempt_minimum or remaining.token_balance != 0:
            raise BalanceMismatchError(
                f"Vault for '{curve_id}' not drained: value={remaining.value_balance}, "
                f"tokens={remaining.token_balance}"
            )

        self.curves.set_migration_status(curve_id, MigrationStatus.migrated)
        self.venue.open_pool(curve_id, venue_tokens, venue_value)

        return MigrationRecord(
            curve_id=curve_id,
            real_value_amount=available,
            virtual_value_amount=settings.virtual_sol_amount,
            token_amount=venue_tokens,
            venue_value_amount=venue_value,
            effective_price=effective_price,
            developer=curve.curve.developer,
            is_subscribed=is_subscribed,
        )
