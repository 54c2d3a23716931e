"""
External liquidity venue that receives a curve's reserves at migration.

The engine only needs two things from the venue: the accounts to deposit into, and a call
that opens the pool once both sides have been funded.
"""
import threading
from abc import ABC, abstractmethod
from typing import Dict, NamedTuple

from solders.keypair import Keypair

from mcp_bonding_curve.errors import TransactionFailedError
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)


class VenueAccounts(NamedTuple):
    value_account: str
    token_account: str


class VenuePool(NamedTuple):
    curve_id: str
    token_amount: int
    value_amount: int


class LiquidityVenuePort(ABC):
    @abstractmethod
    def pool_accounts(self, curve_id: str) -> VenueAccounts:
        """Accounts that receive the migrated value and tokens for ``curve_id``."""

    @abstractmethod
    def open_pool(self, curve_id: str, token_amount: int, value_amount: int) -> str:
        """Open the pool after both sides are deposited and return its id."""


class InMemoryVenue(LiquidityVenuePort):
    def __init__(self):
        self._accounts: Dict[str, VenueAccounts] = {}
        self.pools: Dict[str, VenuePool] = {}
        self._lock = threading.Lock()

    def pool_accounts(self, curve_id: str) -> VenueAccounts:
        with self._lock:
            if curve_id not in self._accounts:
                self._accounts[curve_id] = VenueAccounts(
                    value_account=str(Keypair().pubkey()),
                    token_account=str(Keypair().pubkey()),
                )
            return self._accounts[curve_id]

    def open_pool(self, curve_id: str, token_amount: int, value_amount: int) -> str:
        with self._lock:
            if curve_id in self.pools:
                raise TransactionFailedError(f"Pool already opened for curve {curve_id}")
            self.pools[curve_id] = VenuePool(curve_id, token_amount, value_amount)
        logger.info(f"Opened venue pool for {curve_id}: tokens={token_amount}, value={value_amount}")
        return curve_id
