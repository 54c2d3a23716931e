"""
Balance Ledger Collaborators

The engine never stores reserves. It observes them through a ReservePort and moves funds
through the ValueTransferPort (settlement currency, lamports) and TokenTransferPort (fungible
token units, keyed by mint). Each transfer either fully applies and reports the resulting
balances, or raises and moves nothing.

Every debit needs the source's authority. Funds leave a curve's vault only when the caller
presents the VaultAuthority issued for that curve at creation time; they leave a trader's
account only with a TraderAuthority for that account, which the MCP layer issues after
checking the trader's signature (signatures.py). Authorities are ordinary objects; no key
derivation is involved.

InMemoryLedger implements all three ports for a single process. Its ``transaction()`` context
records every balance change as a delta and reverts them if the block raises, which gives the
engine one atomic boundary per trade. Deltas are reverted rather than snapshots restored, so
a rollback on one curve never clobbers concurrent changes made for another curve.

Balances can be saved to and loaded from a JSON file so curves survive a restart.
"""
import json
import os
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, NamedTuple, Optional, Tuple, Union

from solders.keypair import Keypair

from mcp_bonding_curve.config import U64_MAX
from mcp_bonding_curve.errors import (
    InsufficientFundsError,
    TransactionFailedError,
    UnauthorizedTransferError,
)
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)


class Reserves(NamedTuple):
    value_balance: int
    token_balance: int


class TransferReceipt(NamedTuple):
    source_balance: int
    destination_balance: int


@dataclass(frozen=True)
class VaultAuthority:
    """Capability over one curve's value and token vault."""

    curve_id: str
    vault_address: str


@dataclass(frozen=True)
class TraderAuthority:
    """Capability over one trader's value and token balances."""

    account: str

    @classmethod
    def from_keypair(cls, keypair: Keypair) -> "TraderAuthority":
        return cls(account=str(keypair.pubkey()))


Authority = Union[VaultAuthority, TraderAuthority]


class ReservePort(ABC):
    @abstractmethod
    def current_reserves(self, curve_id: str) -> Reserves:
        """Return the real (value, token) balances held by the curve's vault."""


class ValueTransferPort(ABC):
    @abstractmethod
    def transfer_value(
        self,
        source: str,
        destination: str,
        amount: int,
        authority: Optional[Authority] = None,
    ) -> TransferReceipt:
        """Move lamports between two holders."""


class TokenTransferPort(ABC):
    @abstractmethod
    def transfer_tokens(
        self,
        mint: str,
        source: str,
        destination: str,
        amount: int,
        authority: Optional[Authority] = None,
    ) -> TransferReceipt:
        """Move token units of ``mint`` between two holders."""


_JournalEntry = Tuple[Dict, object, int]


class InMemoryLedger(ReservePort, ValueTransferPort, TokenTransferPort):
    """Process-local ledger for lamports and token units."""

    def __init__(self):
        self._value: Dict[str, int] = {}
        self._tokens: Dict[Tuple[str, str], int] = {}
        self._vaults: Dict[str, VaultAuthority] = {}
        self._curve_vaults: Dict[str, str] = {}
        self._lock = threading.RLock()
        self._save_lock = threading.Lock()
        self._local = threading.local()

    # --- Vaults ---

    def open_vault(self, curve_id: str, vault_address: Optional[str] = None) -> VaultAuthority:
        """Issue the authority over a new (or persisted) vault for ``curve_id``."""
        with self._lock:
            if curve_id in self._curve_vaults:
                raise TransactionFailedError(f"Vault already exists for curve {curve_id}")
            address = vault_address or str(Keypair().pubkey())
            authority = VaultAuthority(curve_id=curve_id, vault_address=address)
            self._vaults[address] = authority
            self._curve_vaults[curve_id] = address
            logger.debug(f"Opened vault {address} for curve {curve_id}")
            return authority

    def vault_address(self, curve_id: str) -> str:
        try:
            return self._curve_vaults[curve_id]
        except KeyError:
            raise TransactionFailedError(f"No vault registered for curve {curve_id}")

    # --- Reads ---

    def value_balance(self, account: str) -> int:
        return self._value.get(account, 0)

    def token_balance(self, mint: str, account: str) -> int:
        return self._tokens.get((mint, account), 0)

    def current_reserves(self, curve_id: str) -> Reserves:
        vault = self.vault_address(curve_id)
        with self._lock:
            return Reserves(self.value_balance(vault), self.token_balance(curve_id, vault))

    # --- Supply hooks (token creation and funding live outside the engine) ---

    def mint_to(self, mint: str, destination: str, amount: int) -> int:
        self._require_amount(amount)
        with self._lock:
            self._apply(self._tokens, (mint, destination), amount)
            return self._tokens[(mint, destination)]

    def deposit_value(self, account: str, amount: int) -> int:
        self._require_amount(amount)
        with self._lock:
            self._apply(self._value, account, amount)
            return self._value[account]

    # --- Persistence ---

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "value": dict(self._value),
                "tokens": [
                    {"mint": mint, "account": account, "amount": amount}
                    for (mint, account), amount in self._tokens.items()
                ],
            }

    def restore(self, state: dict) -> None:
        """Replace every balance with ``state``, as produced by ``snapshot``."""
        value = {str(account): int(amount) for account, amount in state["value"].items()}
        tokens = {(str(e["mint"]), str(e["account"])): int(e["amount"]) for e in state["tokens"]}
        for amount in [*value.values(), *tokens.values()]:
            if amount < 0 or amount > U64_MAX:
                raise TransactionFailedError(f"Persisted balance out of range: {amount}")
        with self._lock:
            self._value = value
            self._tokens = tokens

    def save(self, path: Path) -> bool:
        """Write every balance to ``path``. Returns False if writing failed."""
        path = Path(path)
        tmp_path = path.with_name(path.name + ".tmp")
        with self._save_lock:
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                with open(tmp_path, "w") as f:
                    json.dump(self.snapshot(), f, indent=4)
                os.replace(tmp_path, path)
                logger.debug(f"Saved ledger balances to {path}")
                return True
            except OSError as e:
                logger.error(f"Error saving ledger balances to {path}: {e}")
                return False

    def load(self, path: Path) -> bool:
        """Restore balances saved by ``save``. Returns False if ``path`` holds nothing usable."""
        path = Path(path)
        if not path.is_file():
            logger.info(f"No ledger balances found at {path}")
            return False
        try:
            with open(path) as f:
                self.restore(json.load(f))
        except (OSError, ValueError, KeyError, TypeError, AttributeError, TransactionFailedError) as e:
            logger.error(f"Error loading ledger balances from {path}: {e}")
            return False
        logger.info(f"Loaded ledger balances from {path}")
        return True

    # --- Transfers ---

    def transfer_value(self, source, destination, amount, authority=None) -> TransferReceipt:
        return self._transfer(self._value, source, destination, source, destination, amount, authority)

    def transfer_tokens(self, mint, source, destination, amount, authority=None) -> TransferReceipt:
        return self._transfer(
            self._tokens, (mint, source), (mint, destination), source, destination, amount, authority
        )

    def _transfer(self, book, source_key, destination_key, source, destination, amount, authority):
        self._require_amount(amount)
        self._check_authority(source, authority)
        with self._lock:
            source_balance = book.get(source_key, 0)
            destination_balance = book.get(destination_key, 0)
            if source_key == destination_key:
                return TransferReceipt(source_balance, destination_balance)
            if source_balance < amount:
                raise InsufficientFundsError(
                    f"{source} holds {source_balance}, cannot transfer {amount} to {destination}"
                )
            if destination_balance + amount > U64_MAX:
                raise TransactionFailedError(f"Balance of {destination} would overflow")
            self._apply(book, source_key, -amount)
            self._apply(book, destination_key, amount)
            return TransferReceipt(book[source_key], book[destination_key])

    def _check_authority(self, source: str, authority: Optional[Authority]) -> None:
        vault = self._vaults.get(source)
        if vault is not None:
            if authority != vault:
                raise UnauthorizedTransferError(f"Transfer out of vault {source} requires its authority")
        elif not isinstance(authority, TraderAuthority) or authority.account != source:
            raise UnauthorizedTransferError(f"Transfer out of {source} requires the account owner's authority")

    @staticmethod
    def _require_amount(amount: int) -> None:
        if not isinstance(amount, int) or isinstance(amount, bool) or amount < 0:
            raise TransactionFailedError(f"Invalid transfer amount: {amount!r}")

    # --- Atomicity ---

    def _journals(self) -> List[List[_JournalEntry]]:
        if not hasattr(self._local, "journals"):
            self._local.journals = []
        return self._local.journals

    def _apply(self, book, key, delta: int) -> None:
        new_balance = book.get(key, 0) + delta
        if new_balance < 0:
            raise InsufficientFundsError(f"Balance of {key} would go negative")
        if new_balance > U64_MAX:
            raise TransactionFailedError(f"Balance of {key} would overflow")
        book[key] = new_balance
        journals = self._journals()
        if journals:
            journals[-1].append((book, key, delta))

    @contextmanager
    def transaction(self) -> Iterator["InMemoryLedger"]:
        """Apply every transfer in the block, or none of them."""
        journals = self._journals()
        journal: List[_JournalEntry] = []
        journals.append(journal)
        try:
            yield self
        except BaseException:
            journals.pop()
            with self._lock:
                for book, key, delta in reversed(journal):
                    book[key] = book.get(key, 0) - delta
            logger.debug(f"Rolled back {len(journal)} ledger change(s)")
            raise
        else:
            journals.pop()
            if journals:
                journals[-1].extend(journal)
