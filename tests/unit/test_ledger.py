import pytest
from solders.keypair import Keypair

from mcp_bonding_curve.errors import (
    InsufficientFundsError,
    TransactionFailedError,
    UnauthorizedTransferError,
)
from mcp_bonding_curve.ledger import InMemoryLedger, Reserves, TraderAuthority, VaultAuthority

MINT = str(Keypair().pubkey())
ALICE = TraderAuthority(account="alice")


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
def authority(ledger):
    authority = ledger.open_vault(MINT)
    ledger.mint_to(MINT, authority.vault_address, 1_000)
    ledger.deposit_value(authority.vault_address, 500)
    return authority


def test_current_reserves(ledger, authority):
    assert ledger.current_reserves(MINT) == Reserves(500, 1_000)


def test_vault_is_opened_once(ledger, authority):
    with pytest.raises(TransactionFailedError):
        ledger.open_vault(MINT)


def test_unknown_curve_has_no_reserves(ledger):
    with pytest.raises(TransactionFailedError):
        ledger.current_reserves("unknown")


def test_transfer_reports_both_balances(ledger, authority):
    receipt = ledger.transfer_tokens(MINT, authority.vault_address, "alice", 300, authority)
    assert receipt.source_balance == 700
    assert receipt.destination_balance == 300


def test_vault_debit_requires_authority(ledger, authority):
    with pytest.raises(UnauthorizedTransferError):
        ledger.transfer_value(authority.vault_address, "alice", 1)
    forged = VaultAuthority(curve_id="other", vault_address=authority.vault_address)
    with pytest.raises(UnauthorizedTransferError):
        ledger.transfer_tokens(MINT, authority.vault_address, "alice", 1, forged)
    assert ledger.current_reserves(MINT) == Reserves(500, 1_000)


def test_vault_credit_needs_only_the_payers_authority(ledger, authority):
    ledger.deposit_value("alice", 10)
    ledger.transfer_value("alice", authority.vault_address, 10, ALICE)
    assert ledger.value_balance(authority.vault_address) == 510


def test_insufficient_funds_moves_nothing(ledger):
    ledger.deposit_value("alice", 10)
    with pytest.raises(InsufficientFundsError):
        ledger.transfer_value("alice", "bob", 11, ALICE)
    assert ledger.value_balance("alice") == 10
    assert ledger.value_balance("bob") == 0


def test_negative_amount_rejected(ledger):
    with pytest.raises(TransactionFailedError):
        ledger.transfer_value("alice", "bob", -1, ALICE)


def test_transaction_rolls_back_on_error(ledger, authority):
    ledger.deposit_value("alice", 100)
    with pytest.raises(RuntimeError):
        with ledger.transaction():
            ledger.transfer_value("alice", authority.vault_address, 60, ALICE)
            ledger.transfer_tokens(MINT, authority.vault_address, "alice", 400, authority)
            raise RuntimeError("abort")
    assert ledger.value_balance("alice") == 100
    assert ledger.token_balance(MINT, "alice") == 0
    assert ledger.current_reserves(MINT) == Reserves(500, 1_000)


def test_transaction_commits(ledger, authority):
    ledger.deposit_value("alice", 100)
    with ledger.transaction():
        ledger.transfer_value("alice", authority.vault_address, 60, ALICE)
    assert ledger.value_balance("alice") == 40
    assert ledger.current_reserves(MINT) == Reserves(560, 1_000)


def test_outer_rollback_reverts_committed_inner(ledger, authority):
    ledger.deposit_value("alice", 100)
    with pytest.raises(RuntimeError):
        with ledger.transaction():
            with ledger.transaction():
                ledger.transfer_value("alice", "bob", 30, ALICE)
            ledger.transfer_value("alice", "bob", 20, ALICE)
            raise RuntimeError("abort")
    assert ledger.value_balance("alice") == 100
    assert ledger.value_balance("bob") == 0


def test_inner_rollback_keeps_outer_changes(ledger, authority):
    ledger.deposit_value("alice", 100)
    with ledger.transaction():
        ledger.transfer_value("alice", "bob", 30, ALICE)
        with pytest.raises(InsufficientFundsError):
            with ledger.transaction():
                ledger.transfer_value("alice", "bob", 20, ALICE)
                ledger.transfer_value("alice", "bob", 1_000, ALICE)
    assert ledger.value_balance("alice") == 70
    assert ledger.value_balance("bob") == 30


def test_account_debit_requires_owner_authority(ledger, authority):
    ledger.deposit_value("alice", 100)
    ledger.transfer_tokens(MINT, authority.vault_address, "alice", 300, authority)
    with pytest.raises(UnauthorizedTransferError):
        ledger.transfer_value("alice", "bob", 10)
    with pytest.raises(UnauthorizedTransferError):
        ledger.transfer_value("alice", "bob", 10, TraderAuthority(account="bob"))
    with pytest.raises(UnauthorizedTransferError):
        ledger.transfer_tokens(MINT, "alice", authority.vault_address, 300, TraderAuthority(account="bob"))
    with pytest.raises(UnauthorizedTransferError):
        ledger.transfer_tokens(MINT, "alice", "bob", 300, authority)
    assert ledger.value_balance("alice") == 100
    assert ledger.token_balance(MINT, "alice") == 300


def test_trader_authority_cannot_debit_a_vault(ledger, authority):
    stolen = TraderAuthority(account=authority.vault_address)
    with pytest.raises(UnauthorizedTransferError):
        ledger.transfer_value(authority.vault_address, "alice", 1, stolen)
    assert ledger.current_reserves(MINT) == Reserves(500, 1_000)


def test_trader_authority_from_keypair():
    keypair = Keypair()
    assert TraderAuthority.from_keypair(keypair).account == str(keypair.pubkey())


def test_save_and_load_balances(ledger, authority, tmp_path):
    ledger.deposit_value("alice", 100)
    ledger.transfer_tokens(MINT, authority.vault_address, "alice", 300, authority)
    path = tmp_path / "state" / "ledger.json"
    assert ledger.save(path)

    restored = InMemoryLedger()
    assert restored.load(path)
    restored.open_vault(MINT, authority.vault_address)
    assert restored.current_reserves(MINT) == Reserves(500, 700)
    assert restored.value_balance("alice") == 100
    assert restored.token_balance(MINT, "alice") == 300
    assert restored.snapshot() == ledger.snapshot()


def test_load_missing_file(ledger, tmp_path):
    assert not ledger.load(tmp_path / "missing.json")


@pytest.mark.parametrize(
    "content",
    [
        "not json",
        '{"value": {}}',
        '{"value": {"alice": -1}, "tokens": []}',
        '{"value": {}, "tokens": [{"mint": "m", "account": "alice"}]}',
    ],
)
def test_load_unusable_file_keeps_balances(ledger, tmp_path, content):
    ledger.deposit_value("alice", 100)
    path = tmp_path / "ledger.json"
    path.write_text(content)
    assert not ledger.load(path)
    assert ledger.value_balance("alice") == 100
