import os
import logging
from typing import Optional
from solders.pubkey import Pubkey
from dotenv import load_dotenv

# Import custom errors
from mcp_bonding_curve.errors import ConfigurationError

"""
Configuration Management for the Bonding Curve Server

This module handles all configuration loading and validation for the bonding curve engine.
It loads protocol constants from environment variables with defaults matching the deployed
program, and validates them so the engine never starts with an inconsistent setup.

Configuration Sources (in order of precedence):
1. Environment variables
2. Default values defined in this module

Environment Variables:
    RPC_ENDPOINT: Solana RPC endpoint URL (read-only reserve lookups)
    TOKEN_DECIMALS: Default token decimals (0-18)
    TRADE_FEE_BPS: Trade fee in basis points (0-10000)
    VIRTUAL_SOL_AMOUNT: Virtual liquidity added to real SOL reserves (lamports)
    MIGRATION_THRESHOLD: Real SOL balance that triggers migration (lamports)
    DEV_FEE_LAMPORTS: Developer fee carved out at migration for subscribed curves
    VENUE_POOL_CREATION_FEE: Listing fee paid to the liquidity venue at migration
    RENT_EXEMPT_MINIMUM: Balance the curve account always retains (lamports)
    FEE_COLLECTOR: Destination of trade fees
    MIGRATION_ADMIN: Destination of tokens left over after migration
    VENUE_FEE_RECEIVER: Destination of the venue listing fee
    RATE_LIMIT_PER_MINUTE: Trades allowed per client per minute
    CURVE_CONFIG_DIR: Directory holding persisted curve configurations
    LEDGER_STATE_FILE: File holding persisted ledger balances
"""

# Set up logger
logger = logging.getLogger(__name__)

# Load environment variables
load_dotenv()

LAMPORTS_PER_SOL = 10**9
U64_MAX = 2**64 - 1
U128_MAX = 2**128 - 1
BPS_DENOMINATOR = 10_000
PRICE_PRECISION_FACTOR = 1_000_000  # 6 decimal places

# Original on-chain constants
_FEE_COLLECTOR_BYTES = bytes([
    194, 73, 64, 156, 20, 86, 1, 93,
    103, 112, 193, 65, 134, 23, 207, 28,
    187, 39, 81, 4, 122, 135, 79, 54,
    8, 254, 239, 26, 243, 192, 173, 3,
])
_MIGRATION_ADMIN_BYTES = bytes([
    224, 67, 189, 212, 203, 187, 41,
    223, 118, 50, 190, 182, 44, 210,
    139, 163, 109, 249, 134, 115, 45,
    43, 110, 126, 162, 220, 181, 167,
    50, 69, 161, 200,
])
VENUE_PROGRAM_ID = "CPMMoo8L3F4NbTegBCKVNunggL7H1ZpdTHKxQB5qKP1C"


def _get_env_str(key: str, default: str, required: bool = False) -> str:
    """Get environment variable as string with validation."""
    value = os.getenv(key, default)
    if required and not value:
        raise ConfigurationError(f"Required environment variable {key} is not set")
    return value


def _get_env_int(key: str, default: int, min_val: Optional[int] = None, max_val: Optional[int] = None) -> int:
    """Get environment variable as integer with validation."""
    try:
        value = int(os.getenv(key, str(default)))
    except ValueError:
        raise ConfigurationError(f"Environment variable {key} must be a valid integer")
    if min_val is not None and value < min_val:
        raise ConfigurationError(f"Environment variable {key} must be >= {min_val}")
    if max_val is not None and value > max_val:
        raise ConfigurationError(f"Environment variable {key} must be <= {max_val}")
    return value


def _get_env_pubkey(key: str, default: Pubkey) -> Pubkey:
    """Get environment variable as Pubkey with validation."""
    value = os.getenv(key)
    if not value:
        return default
    try:
        return Pubkey.from_string(value)
    except Exception as e:
        raise ConfigurationError(f"Environment variable {key} must be a valid public key: {e}")


try:
    # --- Solana Configuration ---
    RPC_ENDPOINT = _get_env_str("RPC_ENDPOINT", "http://localhost:8899", required=True)
    DEFAULT_TOKEN_DECIMALS = _get_env_int("TOKEN_DECIMALS", 6, min_val=0, max_val=18)

    # --- Fees ---
    TRADE_FEE_BPS = _get_env_int("TRADE_FEE_BPS", 100, min_val=0, max_val=BPS_DENOMINATOR)

    # --- Curve Shape ---
    VIRTUAL_SOL_AMOUNT = _get_env_int("VIRTUAL_SOL_AMOUNT", 30 * LAMPORTS_PER_SOL, min_val=0, max_val=U64_MAX)

    # --- Migration ---
    MIGRATION_THRESHOLD = _get_env_int("MIGRATION_THRESHOLD", 80 * LAMPORTS_PER_SOL, min_val=1, max_val=U64_MAX)
    DEV_FEE_LAMPORTS = _get_env_int("DEV_FEE_LAMPORTS", 3 * LAMPORTS_PER_SOL, min_val=0, max_val=U64_MAX)
    VENUE_POOL_CREATION_FEE = _get_env_int("VENUE_POOL_CREATION_FEE", 150_000_000, min_val=0, max_val=U64_MAX)
    RENT_EXEMPT_MINIMUM = _get_env_int("RENT_EXEMPT_MINIMUM", 1_461_600, min_val=0, max_val=U64_MAX)

    # --- Destinations ---
    FEE_COLLECTOR = _get_env_pubkey("FEE_COLLECTOR", Pubkey(_FEE_COLLECTOR_BYTES))
    MIGRATION_ADMIN = _get_env_pubkey("MIGRATION_ADMIN", Pubkey(_MIGRATION_ADMIN_BYTES))
    VENUE_FEE_RECEIVER = _get_env_pubkey("VENUE_FEE_RECEIVER", Pubkey.from_string(VENUE_PROGRAM_ID))

    # --- Rate Limiting ---
    RATE_LIMIT_PER_MINUTE = _get_env_int("RATE_LIMIT_PER_MINUTE", 10, min_val=1, max_val=1000)

    # --- Directories ---
    CURVE_CONFIG_DIR = _get_env_str("CURVE_CONFIG_DIR", "curve_configs")
    LEDGER_STATE_FILE = _get_env_str("LEDGER_STATE_FILE", "ledger_state.json")

    logger.info("Configuration loaded successfully")

except ConfigurationError as e:
    logger.error(f"Configuration error: {e}")
    raise
