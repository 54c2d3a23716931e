"""
Bonding Curve Engine

Facade over the pricing, trading and migration components. Every operation on a curve runs
under that curve's lock, so reserves are read, priced and committed without another
operation on the same curve interleaving. Mutating operations additionally run inside one
ledger transaction: if anything raises, every transfer made so far is reverted and the
curve's configuration is restored, so a trade either fully applies or leaves no trace.

Records produced by a trade (and by a migration it triggers) are published to the EventLog
only after the transaction has committed. When a ledger path is given, balances are saved
after every operation and restored by load_persisted, next to the curve configurations
persisted by the CurveManager.
"""
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union

from mcp_bonding_curve.arithmetic import require_amount
from mcp_bonding_curve.curve_manager import CurveManager, parse_curve_config
from mcp_bonding_curve.errors import InvalidCurveConfigError
from mcp_bonding_curve.events import EventLog
from mcp_bonding_curve.ledger import InMemoryLedger, TraderAuthority
from mcp_bonding_curve.migration import MigrationController
from mcp_bonding_curve.pricing import calculate_token_price, get_strategy
from mcp_bonding_curve.schemas import (
    BuyResult,
    CurveConfigModel,
    MigrationProgress,
    MigrationStatus,
    PriceInfo,
    ProtocolSettings,
    SellResult,
)
from mcp_bonding_curve.config import BPS_DENOMINATOR
from mcp_bonding_curve.trading import TradeExecutor, TradeOutcome, ensure_active
from mcp_bonding_curve.venue import InMemoryVenue, LiquidityVenuePort
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)


class BondingCurveEngine:
    def __init__(
        self,
        ledger: Optional[InMemoryLedger] = None,
        venue: Optional[LiquidityVenuePort] = None,
        curves: Optional[CurveManager] = None,
        settings: Optional[ProtocolSettings] = None,
        events: Optional[EventLog] = None,
        ledger_path: Optional[Path] = None,
    ):
        self.ledger = ledger or InMemoryLedger()
        self.venue = venue or InMemoryVenue()
        self.curves = curves or CurveManager(persist=False)
        self.settings = settings or ProtocolSettings()
        self.events = events or EventLog()
        self.ledger_path = Path(ledger_path) if ledger_path else None
        self.migration = MigrationController(
            self.ledger, self.ledger, self.ledger, self.venue, self.curves, self.settings
        )
        self.executor = TradeExecutor(self.ledger, self.ledger, self.ledger, self.settings, self.migration)
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # --- Serialization and atomicity ---

    def _lock_for(self, curve_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(curve_id)
            if lock is None:
                lock = self._locks[curve_id] = threading.Lock()
            return lock

    @contextmanager
    def _atomic(self, curve_id: str) -> Iterator[CurveConfigModel]:
        """Hold the curve lock and a ledger transaction; restore the config if the block raises."""
        with self._lock_for(curve_id):
            snapshot = self.curves.get_curve(curve_id)
            try:
                with self.ledger.transaction():
                    yield snapshot
            except BaseException:
                self.curves.replace(snapshot)
                raise
            finally:
                self._persist_ledger()

    def _persist_ledger(self) -> None:
        if self.ledger_path is not None:
            self.ledger.save(self.ledger_path)

    def _execute(self, curve_id: str, operation) -> Union[BuyResult, SellResult]:
        with self._atomic(curve_id) as curve:
            outcome: TradeOutcome = operation(curve, self.curves.get_authority(curve_id))
            updated = self.curves.get_curve(curve_id)
        if updated is not curve:
            self.curves.save(updated)
        self.events.publish(outcome.records)
        return outcome.result

    # --- Lifecycle ---

    def create_curve(self, config: Union[CurveConfigModel, dict]) -> CurveConfigModel:
        """
        Register a new curve and fund its vault with the token's total supply.

        Args:
            config: A CurveConfigModel or the raw dictionary it is parsed from.

        Returns:
            The registered configuration, including the issued vault address.

        Raises:
            InvalidCurveConfigError: The configuration is invalid or the curve already exists.
        """
        if isinstance(config, dict):
            curve = parse_curve_config(config)
        else:
            curve = parse_curve_config(config.model_dump(mode="json"))
        if curve.curve.migration_status != MigrationStatus.active:
            raise InvalidCurveConfigError("A new curve must start in the active state")

        curve_id = curve.curve_id
        with self._lock_for(curve_id):
            if self.curves.has_curve(curve_id):
                raise InvalidCurveConfigError(f"Curve '{curve_id}' already exists")
            authority = self.ledger.open_vault(curve_id)
            self.ledger.mint_to(curve_id, authority.vault_address, curve.token.total_supply)
            registered = self.curves.register(curve, authority)
            self._persist_ledger()

        logger.info(
            f"Created {curve.curve.curve_type.value} curve '{curve_id}' ({curve.token.symbol}), "
            f"supply={curve.token.total_supply}, vault={authority.vault_address}"
        )
        return registered

    def load_persisted(self) -> List[CurveConfigModel]:
        """
        Register curves persisted by a previous run, reusing their vault addresses.

        Balances are restored from the ledger path first. An active curve whose vault holds
        nothing could never trade again, so it is skipped and can be created anew.
        """
        if self.ledger_path is not None:
            self.ledger.load(self.ledger_path)
        loaded = []
        for curve in self.curves.load_curves_from_config_files():
            if self.curves.has_curve(curve.curve_id):
                continue
            vault = curve.vault_address
            empty = (
                self.ledger.token_balance(curve.curve_id, vault) == 0
                and self.ledger.value_balance(vault) == 0
            )
            if empty and curve.curve.migration_status == MigrationStatus.active:
                logger.warning(f"Skipping curve '{curve.curve_id}': vault {vault} holds no balances")
                continue
            authority = self.ledger.open_vault(curve.curve_id, curve.vault_address)
            loaded.append(self.curves.register(curve, authority))
        return loaded

    def get_curve(self, curve_id: str) -> CurveConfigModel:
        return self.curves.get_curve(curve_id)

    # --- Trading ---

    def buy(
        self,
        curve_id: str,
        buyer: TraderAuthority,
        amount: int,
        max_value_cost: int,
        discount: bool = False,
    ) -> BuyResult:
        return self._execute(
            curve_id,
            lambda curve, authority: self.executor.buy(
                curve, authority, buyer, amount, max_value_cost, discount
            ),
        )

    def sell(
        self,
        curve_id: str,
        seller: TraderAuthority,
        amount: int,
        min_value_return: int,
        discount: bool = False,
    ) -> SellResult:
        return self._execute(
            curve_id,
            lambda curve, authority: self.executor.sell(
                curve, authority, seller, amount, min_value_return, discount
            ),
        )

    def fund(self, account: str, lamports: int) -> int:
        """Credit ``lamports`` to ``account`` and return its new balance."""
        require_amount("lamports", lamports)
        balance = self.ledger.deposit_value(account, lamports)
        self._persist_ledger()
        logger.info(f"Credited {lamports} lamports to {account}")
        return balance

    # --- Read-only ---

    def quote_buy(self, curve_id: str, amount: int, discount: bool = False) -> int:
        """Total value a buy of ``amount`` would cost right now, fee included."""
        with self._lock_for(curve_id):
            quote, _ = self.executor.price_buy(self.curves.get_curve(curve_id), amount, discount)
        return quote.total_cost

    def quote_sell(self, curve_id: str, amount: int, discount: bool = False) -> int:
        """Value a sell of ``amount`` would pay out right now, net of fee."""
        with self._lock_for(curve_id):
            quote, _ = self.executor.price_sell(self.curves.get_curve(curve_id), amount, discount)
        return quote.payout

    def quote_tokens_for_value(self, curve_id: str, value_in: int) -> int:
        with self._lock_for(curve_id):
            curve = self.curves.get_curve(curve_id)
            ensure_active(curve)
            reserves = self.ledger.current_reserves(curve_id)
            return get_strategy(curve, self.settings).tokens_for_value(reserves, value_in)

    def calculate_price(self, curve_id: str, amount: int, is_buy: bool = True) -> PriceInfo:
        require_amount("amount", amount)
        with self._lock_for(curve_id):
            curve = self.curves.get_curve(curve_id)
            reserves = self.ledger.current_reserves(curve_id)
            price = calculate_token_price(amount, curve, reserves, is_sell=not is_buy, settings=self.settings)
        return PriceInfo(price=price, supply_delta=amount, is_buy=is_buy)

    def spot_price(self, curve_id: str) -> int:
        with self._lock_for(curve_id):
            curve = self.curves.get_curve(curve_id)
            return get_strategy(curve, self.settings).spot_price(self.ledger.current_reserves(curve_id))

    def migration_status(self, curve_id: str) -> MigrationStatus:
        return self.curves.get_curve(curve_id).curve.migration_status

    def migration_progress(self, curve_id: str) -> MigrationProgress:
        with self._lock_for(curve_id):
            curve = self.curves.get_curve(curve_id)
            reserves = self.ledger.current_reserves(curve_id)
        threshold = self.settings.migration_threshold
        progress = min(reserves.value_balance * BPS_DENOMINATOR // threshold, BPS_DENOMINATOR)
        if curve.curve.migration_status == MigrationStatus.migrated:
            progress = BPS_DENOMINATOR
        return MigrationProgress(
            real_value_balance=reserves.value_balance,
            threshold=threshold,
            progress_bps=progress,
            migration_status=curve.curve.migration_status,
        )

    def mark_failed(self, curve_id: str) -> CurveConfigModel:
        with self._lock_for(curve_id):
            updated = self.curves.mark_failed(curve_id)
        logger.warning(f"Curve '{curve_id}' marked as failed")
        return updated
