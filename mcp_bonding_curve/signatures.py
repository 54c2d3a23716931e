"""
Trade Intent Signatures

MCP callers never hand over keys. To trade from an account, the caller signs a trade intent
with that account's ed25519 key and passes the base58 signature along with the trade. The
intent binds the action, curve, trader, amount, slippage bound and a caller-chosen nonce, so
a signature authorizes exactly one trade:

    buy:<curve_id>:<trader>:<amount>:<bound>:<nonce>

A verified signature is exchanged for a TraderAuthority, which the ledger requires for every
debit from the trader's account. Each signature is accepted once; resubmitting a trade, even
one that was rejected, needs a fresh nonce.
"""
import threading
from collections import OrderedDict
from typing import Literal

from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature

from mcp_bonding_curve.errors import InvalidTransactionError
from mcp_bonding_curve.ledger import TraderAuthority
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)

TradeAction = Literal["buy", "sell"]

MAX_NONCE_LENGTH = 64


def trade_intent(action: TradeAction, curve_id: str, trader: str, amount: int, bound: int, nonce: str) -> bytes:
    """The exact bytes a trader signs to authorize one trade."""
    return f"{action}:{curve_id}:{trader}:{amount}:{bound}:{nonce}".encode("utf-8")


def sign_trade_intent(
    keypair: Keypair, action: TradeAction, curve_id: str, amount: int, bound: int, nonce: str
) -> str:
    message = trade_intent(action, curve_id, str(keypair.pubkey()), amount, bound, nonce)
    return str(keypair.sign_message(message))


class SignatureVerifier:
    """Verifies trade intent signatures and remembers the ones already used."""

    def __init__(self, max_entries: int = 100_000):
        self.max_entries = max_entries
        self._used: "OrderedDict[str, None]" = OrderedDict()
        self._lock = threading.Lock()

    def authorize(
        self,
        action: TradeAction,
        curve_id: str,
        trader: str,
        amount: int,
        bound: int,
        nonce: str,
        signature: str,
    ) -> TraderAuthority:
        """
        Check ``signature`` over the trade intent and issue the trader's authority.

        Raises:
            InvalidTransactionError: The signature is malformed, was made by another key or over
                other trade parameters, or has been used before.
        """
        if not nonce or len(nonce) > MAX_NONCE_LENGTH:
            raise InvalidTransactionError(f"Nonce must be 1 to {MAX_NONCE_LENGTH} characters")
        try:
            parsed = Signature.from_string(signature)
            pubkey = Pubkey.from_string(trader)
        except ValueError as e:
            raise InvalidTransactionError(f"Invalid signature format: {e}")

        message = trade_intent(action, curve_id, trader, amount, bound, nonce)
        if not parsed.verify(pubkey, message):
            logger.warning(f"Rejected {action} signature for {trader} on curve {curve_id}")
            raise InvalidTransactionError(f"Signature does not authorize this {action} for {trader}")

        key = str(parsed)
        with self._lock:
            if key in self._used:
                raise InvalidTransactionError("Signature has already been used")
            self._used[key] = None
            while len(self._used) > self.max_entries:
                self._used.popitem(last=False)
        return TraderAuthority(account=trader)

    def reset(self) -> None:
        with self._lock:
            self._used.clear()

    def __len__(self) -> int:
        return len(self._used)
