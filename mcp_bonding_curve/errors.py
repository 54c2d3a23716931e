"""
Custom Exception Classes for the Bonding Curve Engine

This module defines the exception classes raised by the pricing and lifecycle engine and by
the collaborators it drives. Every failure is local and synchronous: the engine never retries,
it aborts the whole operation and leaves reserves untouched. Callers decide whether to resubmit
(for example with a wider slippage bound).

Exception Categories:
- Engine Errors (BondingCurveError subclasses): invalid amounts, checked arithmetic failures,
  liquidity exhaustion, slippage bounds, terminal lifecycle state, invalid configuration
- Collaborator Errors (TransactionFailedError subclasses): failures reported by the ledger or
  the external liquidity venue while moving value or tokens
- Service Errors: trade signature checks, configuration loading and API rate limiting

Each engine error carries a stable ``code`` matching the on-chain program's error names so the
MCP layer and event consumers can report failures without string matching.
"""


class BondingCurveError(Exception):
    """Base class for errors raised by the pricing and lifecycle engine."""

    code = "BondingCurveError"


class InvalidAmountError(BondingCurveError):
    """Raised for a zero, negative or non-integer trade size."""

    code = "InvalidAmount"


class MathOverflowError(BondingCurveError):
    """Raised when a checked arithmetic step exceeds its working width."""

    code = "MathOverflow"


class InsufficientLiquidityError(BondingCurveError):
    """Raised when a reserve would go non-positive or a division has a zero reserve."""

    code = "InsufficientLiquidity"


class PriceExceedsMaxCostError(BondingCurveError):
    """Raised when a buy would cost more than the caller's max_value_cost."""

    code = "PriceExceedsMaxCost"


class PriceBelowMinReturnError(BondingCurveError):
    """Raised when a sell would return less than the caller's min_value_return."""

    code = "PriceBelowMinReturn"


class MigrationCompleteError(BondingCurveError):
    """Raised when trading is attempted on a curve that is no longer active."""

    code = "MigrationComplete"


class InvalidCurveConfigError(BondingCurveError):
    """Raised when curve shape parameters are missing or inconsistent."""

    code = "InvalidCurveConfig"


class BalanceMismatchError(BondingCurveError):
    """Raised when a balance reported after a transfer differs from the expected one."""

    code = "BalanceMismatch"


class CurveNotFoundError(BondingCurveError):
    """Raised when no curve is registered under the requested id."""

    code = "CurveNotFound"


class TransactionFailedError(Exception):
    """Raised if a value or token transfer fails in the external ledger."""


class InsufficientFundsError(TransactionFailedError):
    """Raised when the source of a transfer does not hold enough units."""


class UnauthorizedTransferError(TransactionFailedError):
    """Raised when an account or vault is debited without its owner's authority."""


class InvalidTransactionError(Exception):
    """Raised for invalid, mismatched or reused trade signatures."""


class RateLimitExceededError(Exception):
    """Raised when the rate limit is exceeded for API requests."""


class ConfigurationError(Exception):
    """Raised when there are configuration-related errors."""


class TokenBalanceError(TransactionFailedError):
    """Raised when there are issues fetching balances from the blockchain."""
