import json
import uuid
from unittest.mock import MagicMock, patch

import pytest
from solders.keypair import Keypair

from mcp_bonding_curve import errors
from mcp_bonding_curve import rate_limiter
from mcp_bonding_curve import server
from mcp_bonding_curve.rate_limiter import RateLimiter
from mcp_bonding_curve.signatures import SignatureVerifier, sign_trade_intent


@pytest.fixture(autouse=True)
def fresh_server(engine, monkeypatch):
    """Point the server at an isolated engine, verifier and rate limiter for each test."""
    monkeypatch.setattr(server, "engine", engine)
    monkeypatch.setattr(server, "verifier", SignatureVerifier())
    monkeypatch.setattr(rate_limiter, "default_limiter", RateLimiter(limit=3))
    return engine


@pytest.fixture
def context():
    return MagicMock()


async def buy(context, keypair, curve_id, amount, max_value_cost, client_ip="127.0.0.1", nonce=None, **overrides):
    nonce = nonce or uuid.uuid4().hex
    params = dict(
        context=context,
        curve_id=curve_id,
        buyer=str(keypair.pubkey()),
        amount=amount,
        max_value_cost=max_value_cost,
        client_ip=client_ip,
        discount=False,
        nonce=nonce,
        signature=sign_trade_intent(keypair, "buy", curve_id, amount, max_value_cost, nonce),
    )
    params.update(overrides)
    return await server.buy_tokens(**params)


async def sell(context, keypair, curve_id, amount, min_value_return, client_ip="127.0.0.1", **overrides):
    nonce = uuid.uuid4().hex
    params = dict(
        context=context,
        curve_id=curve_id,
        seller=str(keypair.pubkey()),
        amount=amount,
        min_value_return=min_value_return,
        client_ip=client_ip,
        discount=False,
        nonce=nonce,
        signature=sign_trade_intent(keypair, "sell", curve_id, amount, min_value_return, nonce),
    )
    params.update(overrides)
    return await server.sell_tokens(**params)


@pytest.mark.asyncio
async def test_create_curve_and_get_info(context, make_config):
    config = make_config()
    result = await server.create_curve(context=context, config_json=json.dumps(config))
    curve_id = config["curve"]["curve_id"]
    assert result.startswith(f"Curve '{curve_id}' created successfully.")

    info = json.loads(await server.get_curve_info(context=context, curve_id=curve_id))
    assert info["curve"]["curve_id"] == curve_id
    assert info["curve"]["migration_status"] == "active"
    assert info["vault_address"]


@pytest.mark.asyncio
async def test_create_curve_invalid_json(context):
    result = await server.create_curve(context=context, config_json="{not json")
    assert result == "Error: Invalid JSON format provided. Please check your JSON syntax."


@pytest.mark.asyncio
async def test_create_curve_invalid_shape(context, make_config):
    result = await server.create_curve(context=context, config_json=json.dumps(make_config("linear")))
    assert result.startswith("Error (InvalidCurveConfig):")


@pytest.mark.asyncio
async def test_get_curve_info_not_found(context):
    curve_id = str(Keypair().pubkey())
    result = await server.get_curve_info(context=context, curve_id=curve_id)
    assert result == f"Curve with id {curve_id} not found."


@pytest.mark.asyncio
async def test_get_curve_info_invalid_id(context):
    result = await server.get_curve_info(context=context, curve_id="main_ico")
    assert result.startswith("Invalid curve ID:")

@pytest.mark.asyncio
async def test_successful_buy_and_sell(context, curve, buyer_keypair):
    result = await buy(context, buyer_keypair, curve.curve_id, 1_000_000, 30_300)
    assert result == "Successfully purchased 1.000000 LCH for 0.000030300 SOL (fee: 300 lamports)."

    result = await sell(context, buyer_keypair, curve.curve_id, 500_000, 14_851)
    assert result == "Successfully sold 0.500000 LCH for 0.000014851 SOL (fee: 150 lamports)."


@pytest.mark.asyncio
async def test_buy_slippage_rejected(context, curve, buyer_keypair):
    result = await buy(context, buyer_keypair, curve.curve_id, 1_000_000, 30_299)
    assert result.startswith("Error (PriceExceedsMaxCost):")


@pytest.mark.asyncio
async def test_buy_that_migrates(context, curve, buyer_keypair):
    result = await buy(context, buyer_keypair, curve.curve_id, 40_000_000_000, 2_000_000_000)
    assert "has migrated" in result
    assert await server.get_migration_status(context=context, curve_id=curve.curve_id) == "migrated"

    result = await sell(context, buyer_keypair, curve.curve_id, 1_000_000, 0)
    assert result.startswith("Error (MigrationComplete):")


@pytest.mark.asyncio
async def test_buy_invalid_parameters(context, curve, buyer_keypair):
    result = await buy(context, buyer_keypair, curve.curve_id, 0, 30_300)
    assert result == "Error processing request: Amount must be positive"

    result = await buy(context, buyer_keypair, curve.curve_id, 1_000_000, 30_300, buyer="not-an-address")
    assert result == "Error processing request: Trader address is not a valid public key"


@pytest.mark.asyncio
async def test_buy_unknown_curve(context, buyer_keypair):
    curve_id = str(Keypair().pubkey())
    result = await buy(context, buyer_keypair, curve_id, 1_000_000, 30_300)
    assert result == f"Curve with id {curve_id} not found."


@pytest.mark.asyncio
async def test_buy_without_funds(context, curve):
    result = await buy(context, Keypair(), curve.curve_id, 1_000_000, 30_300)
    assert result.startswith("Transaction failed:")


@pytest.mark.asyncio
async def test_buy_signed_by_another_key_is_rejected(context, curve, buyer_keypair, fresh_server):
    victim = str(buyer_keypair.pubkey())
    result = await buy(context, Keypair(), curve.curve_id, 1_000_000, 30_300, buyer=victim)
    assert result.startswith("Invalid signature:")
    assert fresh_server.ledger.value_balance(victim) == 5_000_000_000


@pytest.mark.asyncio
async def test_sell_of_another_accounts_tokens_is_rejected(context, curve, buyer_keypair, fresh_server):
    await buy(context, buyer_keypair, curve.curve_id, 1_000_000, 30_300)
    victim = str(buyer_keypair.pubkey())
    result = await sell(context, Keypair(), curve.curve_id, 500_000, 0, seller=victim)
    assert result.startswith("Invalid signature:")
    assert fresh_server.ledger.token_balance(curve.curve_id, victim) == 1_000_000


@pytest.mark.asyncio
async def test_signature_covers_trade_parameters(context, curve, buyer_keypair):
    nonce = "order-1"
    signature = sign_trade_intent(buyer_keypair, "buy", curve.curve_id, 1_000, 10**9, nonce)
    result = await buy(
        context, buyer_keypair, curve.curve_id, 2_000_000, 10**9, nonce=nonce, signature=signature
    )
    assert result.startswith("Invalid signature:")


@pytest.mark.asyncio
async def test_signature_is_accepted_once(context, curve, buyer_keypair):
    result = await buy(context, buyer_keypair, curve.curve_id, 1_000, 10**9, nonce="order-1")
    assert result.startswith("Successfully purchased")
    result = await buy(context, buyer_keypair, curve.curve_id, 1_000, 10**9, nonce="order-1")
    assert result == "Invalid signature: Signature has already been used"


@pytest.mark.asyncio
async def test_malformed_signature_is_rejected(context, curve, buyer_keypair):
    result = await buy(context, buyer_keypair, curve.curve_id, 1_000, 10**9, signature="not-a-signature")
    assert result.startswith("Invalid signature: Invalid signature format")


@pytest.mark.asyncio
async def test_unexpected_error_is_not_exposed(context, curve, buyer_keypair, fresh_server):
    with patch.object(fresh_server, "buy", side_effect=KeyError("internal detail")):
        result = await buy(context, buyer_keypair, curve.curve_id, 1_000_000, 30_300)
    assert result == "An unexpected server error occurred"


@pytest.mark.asyncio
async def test_rate_limit_exceeded_error(context, curve, buyer_keypair):
    client_ip = "192.168.1.100"
    for _ in range(3):
        result = await buy(context, buyer_keypair, curve.curve_id, 1_000, 10**9, client_ip=client_ip)
        assert result.startswith("Successfully purchased")

    result = await buy(context, buyer_keypair, curve.curve_id, 1_000, 10**9, client_ip=client_ip)
    assert result == f"Rate limit exceeded for IP: {client_ip}"


@pytest.mark.asyncio
async def test_quotes(context, curve):
    result = await server.quote_buy(context=context, curve_id=curve.curve_id, amount=1_000_000, discount=False)
    assert result == "Buying 1000000 base units costs 30300 lamports (0.000030300 SOL)."

    result = await server.quote_sell(context=context, curve_id=curve.curve_id, amount=1_000_000, discount=False)
    assert result.startswith("Error (InsufficientLiquidity):")

    result = await server.quote_tokens_for_value(context=context, curve_id=curve.curve_id, value_in=30_000)
    assert result == "30000 lamports buys 1000000 base units."


@pytest.mark.asyncio
async def test_migration_progress(context, curve):
    progress = json.loads(await server.get_migration_progress(context=context, curve_id=curve.curve_id))
    assert progress == {
        "real_value_balance": 0,
        "threshold": 1_000_000_000,
        "progress_bps": 0,
        "migration_status": "active",
    }


@pytest.mark.asyncio
async def test_fund_account(context):
    account = str(Keypair().pubkey())
    result = await server.fund_account(context=context, account=account, lamports=1_000)
    assert result == f"Account {account} now holds 1000 lamports."
    result = await server.fund_account(context=context, account=account, lamports=-1)
    assert result == "Error: Lamports must be positive"


def test_engine_errors_carry_codes():
    assert errors.MigrationCompleteError("closed").code == "MigrationComplete"
    assert server.describe_error(errors.InvalidAmountError("zero")) == "Error (InvalidAmount): zero"
