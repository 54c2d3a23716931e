import pytest
from solders.keypair import Keypair

from mcp_bonding_curve.curve_manager import CurveManager
from mcp_bonding_curve.engine import BondingCurveEngine
from mcp_bonding_curve.ledger import TraderAuthority
from mcp_bonding_curve.schemas import ProtocolSettings

TOTAL_SUPPLY = 1_000_000_000_000
VIRTUAL_SOL = 30_000_000_000
THRESHOLD = 1_000_000_000
RENT_FLOOR = 1_000_000
DEV_FEE = 100_000_000
LISTING_FEE = 15_000_000


def new_address() -> str:
    return str(Keypair().pubkey())


@pytest.fixture
def settings():
    return ProtocolSettings(
        trade_fee_bps=100,
        virtual_sol_amount=VIRTUAL_SOL,
        migration_threshold=THRESHOLD,
        dev_fee_lamports=DEV_FEE,
        venue_pool_creation_fee=LISTING_FEE,
        rent_exempt_minimum=RENT_FLOOR,
        fee_collector=new_address(),
        migration_admin=new_address(),
        venue_fee_receiver=new_address(),
    )


@pytest.fixture
def engine(settings):
    return BondingCurveEngine(curves=CurveManager(persist=False), settings=settings)


def curve_config(curve_type="constant_product", is_subscribed=False, **curve_fields):
    return {
        "token": {"name": "Launch Token", "symbol": "LCH", "decimals": 6, "total_supply": TOTAL_SUPPLY},
        "curve": {
            "curve_id": new_address(),
            "curve_type": curve_type,
            "developer": new_address(),
            "is_subscribed": is_subscribed,
            **curve_fields,
        },
    }


@pytest.fixture
def curve(engine):
    return engine.create_curve(curve_config())


@pytest.fixture
def buyer_keypair(engine):
    keypair = Keypair()
    engine.ledger.deposit_value(str(keypair.pubkey()), 5_000_000_000)
    return keypair


@pytest.fixture
def buyer(buyer_keypair):
    return TraderAuthority.from_keypair(buyer_keypair)


@pytest.fixture
def make_trader(engine):
    def make(lamports=10**9) -> TraderAuthority:
        trader = TraderAuthority(account=new_address())
        engine.ledger.deposit_value(trader.account, lamports)
        return trader

    return make


@pytest.fixture
def make_config():
    return curve_config
