"""
Read-only reserve lookups against a Solana RPC node.

RpcReserveView implements ReservePort for curves whose vaults live on-chain: the value
reserve is the lamport balance of the vault account, the token reserve is the balance of the
vault's associated token account for the curve's mint. It can back quotes and progress
reports; it cannot move funds.
"""
from typing import Dict, Optional

import httpx
from solders.pubkey import Pubkey
from spl.token.instructions import get_associated_token_address

from mcp_bonding_curve.config import RPC_ENDPOINT
from mcp_bonding_curve.errors import TokenBalanceError
from mcp_bonding_curve.ledger import ReservePort, Reserves
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)


class RpcReserveView(ReservePort):
    def __init__(
        self,
        vaults: Dict[str, str],
        client: Optional[httpx.Client] = None,
        endpoint: str = RPC_ENDPOINT,
    ):
        """
        Args:
            vaults: Mapping of curve id (mint address) to vault address.
            client: HTTP client; a client with conservative timeouts is created if omitted.
            endpoint: JSON-RPC endpoint URL.
        """
        self._vaults = dict(vaults)
        self._client = client or httpx.Client(timeout=httpx.Timeout(10.0, connect=5.0))
        self._endpoint = endpoint

    def current_reserves(self, curve_id: str) -> Reserves:
        try:
            vault = Pubkey.from_string(self._vaults[curve_id])
        except KeyError:
            raise TokenBalanceError(f"No vault known for curve {curve_id}")
        mint = Pubkey.from_string(curve_id)
        token_account = get_associated_token_address(vault, mint)

        value_balance = self._rpc("getBalance", [str(vault), {"commitment": "confirmed"}])
        token_value = self._rpc("getTokenAccountBalance", [str(token_account), {"commitment": "confirmed"}])
        try:
            token_balance = int(token_value["amount"])
        except (KeyError, TypeError, ValueError):
            raise TokenBalanceError(f"Unexpected response format for token balance of {token_account}")

        logger.debug(f"RPC reserves for {curve_id}: value={value_balance}, tokens={token_balance}")
        return Reserves(int(value_balance), token_balance)

    def _rpc(self, method: str, params: list):
        try:
            resp = self._client.post(
                self._endpoint,
                json={"jsonrpc": "2.0", "id": 1, "method": method, "params": params},
            )
            resp.raise_for_status()
            result = resp.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"HTTP error calling {method}: {e.response.status_code} - {e.response.text}")
            raise TokenBalanceError(f"HTTP error calling {method}: {e.response.status_code}")
        except httpx.HTTPError as e:
            logger.error(f"Transport error calling {method}: {e}")
            raise TokenBalanceError(f"Transport error calling {method}: {e}")

        if result.get("error"):
            raise TokenBalanceError(f"Error from {method}: {result['error']}")
        if not result.get("result") or "value" not in result["result"]:
            raise TokenBalanceError(f"Unexpected response format from {method}")
        return result["result"]["value"]
