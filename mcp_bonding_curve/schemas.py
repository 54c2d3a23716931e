"""
Pydantic Data Models and Validation Schemas

This module defines the data models used throughout the bonding curve engine. Configuration
models are persisted as JSON and validated on load; result and record models are what the
engine hands back to callers and to event subscribers.

Key Components:
- CurveType / MigrationStatus: closed sets of curve shapes and lifecycle states
- TokenConfig: token metadata and supply minted into the curve's vault at creation
- CurveConfig: shape parameters, lifecycle status and beneficiary of one curve
- CurveConfigModel: token + curve configuration, plus the vault address issued at creation
- ProtocolSettings: protocol-wide constants (fee rate, virtual liquidity, migration fees)
- BuyQuote / SellQuote / PriceInfo: read-only pricing results
- BuyResult / SellResult / MigrationProgress: operation results
- TradeRecord / MigrationRecord: observability records emitted after commit

All amounts are integers in base units (lamports for SOL, base token units for tokens).
Public keys are stored as base58 strings and validated with solders.
"""
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from solders.pubkey import Pubkey

from mcp_bonding_curve import config


def _validate_pubkey(value: str) -> str:
    try:
        Pubkey.from_string(value)
    except Exception as e:
        raise ValueError(f"Invalid public key '{value}': {e}")
    return value


class CurveType(str, Enum):
    linear = "linear"
    exponential = "exponential"
    logarithmic = "logarithmic"
    constant_product = "constant_product"


class MigrationStatus(str, Enum):
    active = "active"
    migrated = "migrated"
    failed = "failed"


class TokenConfig(BaseModel):
    name: str
    symbol: str
    uri: str = ""
    decimals: int = Field(default=config.DEFAULT_TOKEN_DECIMALS, ge=0, le=18)
    total_supply: int = Field(gt=0, le=config.U64_MAX)


class CurveConfig(BaseModel):
    curve_id: str
    curve_type: CurveType = CurveType.constant_product
    # Shape parameters for the compatibility curves, lamports per whole token
    base_price: int = Field(default=0, ge=0, le=config.U64_MAX)
    slope: int = Field(default=0, ge=0, le=config.U64_MAX)
    growth_bps: int = Field(default=0, ge=0, le=config.BPS_DENOMINATOR)
    migration_status: MigrationStatus = MigrationStatus.active
    is_subscribed: bool = False
    developer: str

    @field_validator("curve_id", "developer")
    @classmethod
    def check_pubkey(cls, value: str) -> str:
        return _validate_pubkey(value)


class CurveConfigModel(BaseModel):
    token: TokenConfig
    curve: CurveConfig
    vault_address: Optional[str] = None

    @property
    def curve_id(self) -> str:
        return self.curve.curve_id


class ProtocolSettings(BaseModel):
    """Protocol-wide constants. Defaults come from the environment via config."""

    model_config = ConfigDict(frozen=True)

    trade_fee_bps: int = Field(default=config.TRADE_FEE_BPS, ge=0, le=config.BPS_DENOMINATOR)
    virtual_sol_amount: int = Field(default=config.VIRTUAL_SOL_AMOUNT, ge=0, le=config.U64_MAX)
    migration_threshold: int = Field(default=config.MIGRATION_THRESHOLD, gt=0, le=config.U64_MAX)
    dev_fee_lamports: int = Field(default=config.DEV_FEE_LAMPORTS, ge=0, le=config.U64_MAX)
    venue_pool_creation_fee: int = Field(default=config.VENUE_POOL_CREATION_FEE, ge=0, le=config.U64_MAX)
    rent_exempt_minimum: int = Field(default=config.RENT_EXEMPT_MINIMUM, ge=0, le=config.U64_MAX)
    fee_collector: str = str(config.FEE_COLLECTOR)
    migration_admin: str = str(config.MIGRATION_ADMIN)
    venue_fee_receiver: str = str(config.VENUE_FEE_RECEIVER)

    @field_validator("fee_collector", "migration_admin", "venue_fee_receiver")
    @classmethod
    def check_pubkey(cls, value: str) -> str:
        return _validate_pubkey(value)

    @model_validator(mode="after")
    def check_migration_costs(self) -> "ProtocolSettings":
        # Migration carves these out of the threshold amount
        costs = self.rent_exempt_minimum + self.dev_fee_lamports + self.venue_pool_creation_fee
        if self.migration_threshold < costs:
            raise ValueError(
                f"migration_threshold ({self.migration_threshold}) must cover rent, dev fee and "
                f"venue fee ({costs})"
            )
        return self


class BuyQuote(BaseModel):
    amount: int
    base_cost: int
    fee: int
    total_cost: int


class SellQuote(BaseModel):
    amount: int
    base_return: int
    fee: int
    payout: int


class PriceInfo(BaseModel):
    price: int
    supply_delta: int
    is_buy: bool


class BuyResult(BaseModel):
    tokens_bought: int
    value_paid: int
    fee: int
    migrated: bool = False


class SellResult(BaseModel):
    value_returned: int
    fee: int


class MigrationProgress(BaseModel):
    real_value_balance: int
    threshold: int
    progress_bps: int
    migration_status: MigrationStatus


class TradeRecord(BaseModel):
    kind: Literal["buy", "sell"]
    curve_id: str
    amount: int
    value_amount: int
    fee: int
    trader: str
    is_subscribed: bool


class MigrationRecord(BaseModel):
    kind: Literal["migration"] = "migration"
    curve_id: str
    real_value_amount: int
    virtual_value_amount: int
    token_amount: int
    venue_value_amount: int
    effective_price: int
    developer: str
    is_subscribed: bool
