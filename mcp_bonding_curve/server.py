"""
Bonding Curve Server - MCP Server Implementation

This module exposes the bonding curve engine as MCP tools. Each tool validates its inputs,
applies per-client rate limiting to trades, delegates to the module-level engine and turns
every outcome, including failures, into a plain string for the calling agent.

Tools:
- get_curve_info / create_curve: curve configuration
- buy_tokens / sell_tokens: signed trades with caller-supplied slippage bounds
- quote_buy / quote_sell / quote_tokens_for_value: read-only pricing
- get_migration_status / get_migration_progress: lifecycle state
- fund_account: credits lamports to an account of the in-process ledger

Security Features:
- Input validation of ids, addresses and amounts before the engine is touched
- Trades must carry the trader's ed25519 signature over the trade intent (signatures.py);
  each signature is accepted once
- Rate limiting by client IP address for trades
- Engine errors are reported by their stable code; unexpected errors are logged
  with a traceback and reported generically
"""

import json
import time

from pydantic import Field, ValidationError
from solders.pubkey import Pubkey

from mcp.server.fastmcp import Context, FastMCP
from mcp.server.fastmcp.utilities.logging import get_logger

from mcp_bonding_curve import config
from mcp_bonding_curve import rate_limiter
from mcp_bonding_curve.curve_manager import MODULE_DIR, CurveManager
from mcp_bonding_curve.engine import BondingCurveEngine
from mcp_bonding_curve.errors import (
    BondingCurveError,
    CurveNotFoundError,
    InvalidTransactionError,
    RateLimitExceededError,
    TransactionFailedError,
)
from mcp_bonding_curve.signatures import SignatureVerifier

# Constants
MAX_CURVE_ID_LENGTH = 64
MAX_CONFIG_JSON_LENGTH = 10000

logger = get_logger(__name__)

# --- Server Setup ---
mcp = FastMCP(name="Bonding Curve Server")

engine = BondingCurveEngine(curves=CurveManager(), ledger_path=MODULE_DIR / config.LEDGER_STATE_FILE)
verifier = SignatureVerifier()


# --- Helper Functions ---

def lamports_to_sol(lamports: int) -> float:
    """Convert lamports to SOL."""
    return lamports / config.LAMPORTS_PER_SOL


def format_token_amount(amount: int, decimals: int, symbol: str) -> str:
    """Format token amount with proper decimal places and symbol."""
    token_amount_ui = amount / (10 ** decimals)
    return f"{token_amount_ui:.{decimals}f} {symbol}"


def validate_address(name: str, value: str) -> None:
    if not value or not isinstance(value, str):
        raise ValueError(f"{name} must be a non-empty string")
    if len(value) > MAX_CURVE_ID_LENGTH:
        raise ValueError(f"{name} is too long")
    try:
        Pubkey.from_string(value)
    except Exception:
        raise ValueError(f"{name} is not a valid public key")


def validate_amount(name: str, value: int, allow_zero: bool = False) -> None:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValueError(f"{name} must be an integer")
    if value < 0 or (value == 0 and not allow_zero):
        raise ValueError(f"{name} must be {'non-negative' if allow_zero else 'positive'}")
    if value > config.U64_MAX:
        raise ValueError(f"{name} is too large")


def validate_trade_params(curve_id: str, trader: str, amount: int, bound: int, client_ip: str) -> None:
    """
    Validate common parameters for trade operations.

    Args:
        curve_id: Curve identifier (token mint address)
        trader: Address of the buyer or seller
        amount: Token amount in base units
        bound: Slippage bound in lamports (max cost for buys, min return for sells)
        client_ip: Client IP used for rate limiting

    Raises:
        ValueError: If any parameter is invalid
    """
    validate_address("Curve ID", curve_id)
    validate_address("Trader address", trader)
    validate_amount("Amount", amount)
    validate_amount("Slippage bound", bound, allow_zero=True)
    if not client_ip or not isinstance(client_ip, str):
        raise ValueError("Client IP must be a non-empty string")


def log_operation_error(operation: str, curve_id: str, error: Exception, client_ip: str, duration: float) -> None:
    """Log operation error with structured information."""
    logger.error(f"{operation} failed for curve '{curve_id}': {error}, "
                 f"client_ip: {client_ip}, duration: {duration:.3f}s")


def describe_error(error: BondingCurveError) -> str:
    return f"Error ({error.code}): {error}"


# --- Curve Configuration ---

@mcp.tool()
async def get_curve_info(context: Context, curve_id: str = Field(..., description="The curve ID (token mint address).")) -> str:
    """Get the configuration of a specific curve."""
    try:
        validate_address("Curve ID", curve_id)
        return engine.get_curve(curve_id).model_dump_json(indent=2)
    except ValueError as e:
        logger.error(f"Invalid curve ID provided: {e}")
        return f"Invalid curve ID: {e}"
    except CurveNotFoundError:
        logger.warning(f"Curve not found: {curve_id}")
        return f"Curve with id {curve_id} not found."
    except Exception as e:
        logger.exception(f"Unexpected error getting curve info for {curve_id}: {e}")
        return "An unexpected error occurred while retrieving curve information."


@mcp.tool()
async def create_curve(context: Context, config_json: str = Field(..., description="The curve configuration as a JSON string.")) -> str:
    """Creates a new curve from a JSON configuration string and funds its vault with the total supply."""
    try:
        if not config_json or not isinstance(config_json, str):
            raise ValueError("Configuration JSON must be a non-empty string")
        if len(config_json) > MAX_CONFIG_JSON_LENGTH:
            raise ValueError("Configuration JSON is too large (max 10KB)")

        config_data = json.loads(config_json)
        if not isinstance(config_data, dict):
            raise ValueError("Configuration JSON must be an object")
        curve = engine.create_curve(config_data)
        return (f"Curve '{curve.curve_id}' created successfully. "
                f"Vault: {curve.vault_address}")

    except json.JSONDecodeError as e:
        logger.error(f"Error decoding JSON for create_curve request: {e}")
        return "Error: Invalid JSON format provided. Please check your JSON syntax."
    except ValidationError as e:
        logger.error(f"Invalid curve configuration provided to create_curve: {e}")
        return f"Error: Invalid curve configuration - {e}"
    except BondingCurveError as e:
        logger.error(f"Curve creation rejected: {e}")
        return describe_error(e)
    except ValueError as e:
        logger.error(f"Validation error in create_curve: {e}")
        return f"Error: {e}"
    except Exception as e:
        logger.exception(f"Unexpected error creating curve via create_curve: {e}")
        return "An unexpected server error occurred while creating the curve."


# --- Trading ---

@mcp.tool()
async def buy_tokens(
    context: Context,
    curve_id: str = Field(..., description="The curve ID (token mint address)."),
    buyer: str = Field(..., description="The buyer's address."),
    amount: int = Field(..., description="The number of tokens to buy (in base units)."),
    max_value_cost: int = Field(..., description="Maximum lamports to spend, fee included."),
    client_ip: str = Field(..., description="The client's IP address."),
    discount: bool = Field(False, description="Set to True if the buyer is exempt from the trade fee."),
    nonce: str = Field(..., description="A fresh value chosen by the buyer, part of the signed intent."),
    signature: str = Field(..., description="The buyer's base58 signature of 'buy:<curve_id>:<buyer>:<amount>:<max_value_cost>:<nonce>'."),
) -> str:
    """
    Buys tokens from a curve.

    The buy is rejected before anything moves if its cost, fee included, exceeds
    max_value_cost. A buy that lifts the curve's real SOL reserve to the migration
    threshold migrates the curve within the same call.

    Args:
        context: MCP context object (provided by framework)
        curve_id: Curve identifier (token mint address)
        buyer: Address paying lamports and receiving tokens
        amount: Number of tokens to buy in base units
        max_value_cost: Slippage bound in lamports
        client_ip: Client's IP address for rate limiting
        discount: Fee exemption flag
        nonce: Caller-chosen value making the signed intent unique
        signature: Buyer's signature of the trade intent

    Returns:
        str: Success message with trade details, or error message
    """
    start_time = time.time()
    try:
        validate_trade_params(curve_id, buyer, amount, max_value_cost, client_ip)

        if not rate_limiter.check_rate_limit(client_ip):
            logger.warning(f"Rate limit exceeded for IP: {client_ip} attempting to buy tokens on curve: {curve_id}")
            raise RateLimitExceededError(f"Rate limit exceeded for IP: {client_ip}")

        authority = verifier.authorize("buy", curve_id, buyer, amount, max_value_cost, nonce, signature)
        result = engine.buy(curve_id, authority, amount, max_value_cost, discount)
        token = engine.get_curve(curve_id).token

        logger.info(f"Token purchase completed for curve '{curve_id}': amount={amount}, "
                    f"paid={result.value_paid}, fee={result.fee}, "
                    f"duration={time.time() - start_time:.3f}s, client_ip={client_ip}")
        message = (f"Successfully purchased {format_token_amount(amount, token.decimals, token.symbol)} "
                   f"for {lamports_to_sol(result.value_paid):.9f} SOL "
                   f"(fee: {result.fee} lamports).")
        if result.migrated:
            message += " The curve reached its migration threshold and has migrated."
        return message

    except RateLimitExceededError as e:
        return str(e)
    except CurveNotFoundError:
        logger.warning(f"Curve not found: {curve_id}, client_ip: {client_ip}")
        return f"Curve with id {curve_id} not found."
    except BondingCurveError as e:
        log_operation_error("Token purchase", curve_id, e, client_ip, time.time() - start_time)
        return describe_error(e)
    except InvalidTransactionError as e:
        log_operation_error("Token purchase", curve_id, e, client_ip, time.time() - start_time)
        return f"Invalid signature: {e}"
    except TransactionFailedError as e:
        log_operation_error("Token purchase", curve_id, e, client_ip, time.time() - start_time)
        return f"Transaction failed: {e}"
    except ValueError as e:
        log_operation_error("Token purchase", curve_id, e, client_ip, time.time() - start_time)
        return f"Error processing request: {e}"
    except Exception as e:
        logger.exception(f"Unexpected error buying tokens on curve {curve_id}: {e}")
        return "An unexpected server error occurred"


@mcp.tool()
async def sell_tokens(
    context: Context,
    curve_id: str = Field(..., description="The curve ID (token mint address)."),
    seller: str = Field(..., description="The seller's address."),
    amount: int = Field(..., description="The number of tokens to sell (in base units)."),
    min_value_return: int = Field(..., description="Minimum lamports to receive, net of fee."),
    client_ip: str = Field(..., description="The client's IP address."),
    discount: bool = Field(False, description="Set to True if the seller is exempt from the trade fee."),
    nonce: str = Field(..., description="A fresh value chosen by the seller, part of the signed intent."),
    signature: str = Field(..., description="The seller's base58 signature of 'sell:<curve_id>:<seller>:<amount>:<min_value_return>:<nonce>'."),
) -> str:
    """
    Sells tokens back to a curve, rejecting the sale if it would pay out less than min_value_return.

    The seller signs the trade intent exactly as for buy_tokens, with action "sell" and
    min_value_return as the bound.
    """
    start_time = time.time()
    try:
        validate_trade_params(curve_id, seller, amount, min_value_return, client_ip)

        if not rate_limiter.check_rate_limit(client_ip):
            logger.warning(f"Rate limit exceeded for IP: {client_ip} attempting to sell tokens on curve: {curve_id}")
            raise RateLimitExceededError(f"Rate limit exceeded for IP: {client_ip}")

        authority = verifier.authorize("sell", curve_id, seller, amount, min_value_return, nonce, signature)
        result = engine.sell(curve_id, authority, amount, min_value_return, discount)
        token = engine.get_curve(curve_id).token

        logger.info(f"Token sale completed for curve '{curve_id}': amount={amount}, "
                    f"returned={result.value_returned}, fee={result.fee}, "
                    f"duration={time.time() - start_time:.3f}s, client_ip={client_ip}")
        return (f"Successfully sold {format_token_amount(amount, token.decimals, token.symbol)} "
                f"for {lamports_to_sol(result.value_returned):.9f} SOL "
                f"(fee: {result.fee} lamports).")

    except RateLimitExceededError as e:
        return str(e)
    except CurveNotFoundError:
        logger.warning(f"Curve not found: {curve_id}, client_ip: {client_ip}")
        return f"Curve with id {curve_id} not found."
    except BondingCurveError as e:
        log_operation_error("Token sale", curve_id, e, client_ip, time.time() - start_time)
        return describe_error(e)
    except InvalidTransactionError as e:
        log_operation_error("Token sale", curve_id, e, client_ip, time.time() - start_time)
        return f"Invalid signature: {e}"
    except TransactionFailedError as e:
        log_operation_error("Token sale", curve_id, e, client_ip, time.time() - start_time)
        return f"Transaction failed: {e}"
    except ValueError as e:
        log_operation_error("Token sale", curve_id, e, client_ip, time.time() - start_time)
        return f"Error processing request: {e}"
    except Exception as e:
        logger.exception(f"Unexpected error selling tokens on curve {curve_id}: {e}")
        return "An unexpected server error occurred"


# --- Quotes ---

@mcp.tool()
async def quote_buy(
    context: Context,
    curve_id: str = Field(..., description="The curve ID (token mint address)."),
    amount: int = Field(..., description="The number of tokens to buy (in base units)."),
    discount: bool = Field(False, description="Quote without the trade fee."),
) -> str:
    """Quotes the lamports a buy would cost right now, fee included."""
    try:
        validate_address("Curve ID", curve_id)
        validate_amount("Amount", amount)
        cost = engine.quote_buy(curve_id, amount, discount)
        return f"Buying {amount} base units costs {cost} lamports ({lamports_to_sol(cost):.9f} SOL)."
    except CurveNotFoundError:
        return f"Curve with id {curve_id} not found."
    except BondingCurveError as e:
        logger.warning(f"Buy quote rejected for curve {curve_id}: {e}")
        return describe_error(e)
    except ValueError as e:
        return f"Error: {e}"
    except Exception as e:
        logger.exception(f"Unexpected error quoting buy on curve {curve_id}: {e}")
        return "An unexpected error occurred while quoting."


@mcp.tool()
async def quote_sell(
    context: Context,
    curve_id: str = Field(..., description="The curve ID (token mint address)."),
    amount: int = Field(..., description="The number of tokens to sell (in base units)."),
    discount: bool = Field(False, description="Quote without the trade fee."),
) -> str:
    """Quotes the lamports a sell would pay out right now, net of fee."""
    try:
        validate_address("Curve ID", curve_id)
        validate_amount("Amount", amount)
        payout = engine.quote_sell(curve_id, amount, discount)
        return f"Selling {amount} base units returns {payout} lamports ({lamports_to_sol(payout):.9f} SOL)."
    except CurveNotFoundError:
        return f"Curve with id {curve_id} not found."
    except BondingCurveError as e:
        logger.warning(f"Sell quote rejected for curve {curve_id}: {e}")
        return describe_error(e)
    except ValueError as e:
        return f"Error: {e}"
    except Exception as e:
        logger.exception(f"Unexpected error quoting sell on curve {curve_id}: {e}")
        return "An unexpected error occurred while quoting."


@mcp.tool()
async def quote_tokens_for_value(
    context: Context,
    curve_id: str = Field(..., description="The curve ID (token mint address)."),
    value_in: int = Field(..., description="Lamports to spend, before fee."),
) -> str:
    """Quotes how many tokens value_in lamports buys right now."""
    try:
        validate_address("Curve ID", curve_id)
        validate_amount("Value", value_in)
        tokens = engine.quote_tokens_for_value(curve_id, value_in)
        return f"{value_in} lamports buys {tokens} base units."
    except CurveNotFoundError:
        return f"Curve with id {curve_id} not found."
    except BondingCurveError as e:
        logger.warning(f"Token quote rejected for curve {curve_id}: {e}")
        return describe_error(e)
    except ValueError as e:
        return f"Error: {e}"
    except Exception as e:
        logger.exception(f"Unexpected error quoting tokens on curve {curve_id}: {e}")
        return "An unexpected error occurred while quoting."


# --- Lifecycle ---

@mcp.tool()
async def get_migration_status(context: Context, curve_id: str = Field(..., description="The curve ID (token mint address).")) -> str:
    """Gets the lifecycle status (active, migrated or failed) of a curve."""
    try:
        validate_address("Curve ID", curve_id)
        return engine.migration_status(curve_id).value
    except CurveNotFoundError:
        return f"Curve with id {curve_id} not found."
    except ValueError as e:
        return f"Error: {e}"
    except Exception as e:
        logger.exception(f"Unexpected error getting migration status for {curve_id}: {e}")
        return "An unexpected error occurred while retrieving the migration status."


@mcp.tool()
async def get_migration_progress(context: Context, curve_id: str = Field(..., description="The curve ID (token mint address).")) -> str:
    """Gets the curve's real SOL reserve relative to the migration threshold, as JSON."""
    try:
        validate_address("Curve ID", curve_id)
        return engine.migration_progress(curve_id).model_dump_json(indent=2)
    except CurveNotFoundError:
        return f"Curve with id {curve_id} not found."
    except BondingCurveError as e:
        return describe_error(e)
    except ValueError as e:
        return f"Error: {e}"
    except Exception as e:
        logger.exception(f"Unexpected error getting migration progress for {curve_id}: {e}")
        return "An unexpected error occurred while retrieving the migration progress."


@mcp.tool()
async def fund_account(
    context: Context,
    account: str = Field(..., description="The account to credit."),
    lamports: int = Field(..., description="Lamports to credit."),
) -> str:
    """Credits lamports to an account of the in-process ledger."""
    try:
        validate_address("Account", account)
        validate_amount("Lamports", lamports)
        balance = engine.fund(account, lamports)
        return f"Account {account} now holds {balance} lamports."
    except BondingCurveError as e:
        return describe_error(e)
    except TransactionFailedError as e:
        return f"Transaction failed: {e}"
    except ValueError as e:
        return f"Error: {e}"
    except Exception as e:
        logger.exception(f"Unexpected error funding account {account}: {e}")
        return "An unexpected server error occurred"


# --- Main Execution ---
if __name__ == "__main__":
    startup_start = time.time()
    logger.info("Starting Bonding Curve MCP Server...")

    curve_count = len(engine.load_persisted())
    startup_duration = time.time() - startup_start
    logger.info(f"Server startup completed in {startup_duration:.3f}s, loaded {curve_count} curve(s).")

    try:
        mcp.run(transport="stdio")
    except KeyboardInterrupt:
        logger.info("Server shutdown requested by user")
    except Exception as e:
        logger.exception(f"Server error: {e}")
    finally:
        logger.info("Bonding Curve MCP Server stopped.")
