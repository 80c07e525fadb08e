"""
Pytest fixtures for the KRC Transfer SDK tests.
"""
import time

import pytest

from krc_transfer._rate_limited_log import reset_rate_limits
from krc_transfer.address import VERSION_PUBKEY, encode_address
from krc_transfer.config import NetworkConfig, TransferSettings
from krc_transfer.keys import load_treasury
from krc_transfer.ledger.memory import InMemoryLedger
from krc_transfer.models import Outpoint, UtxoEntry
from krc_transfer.utils import kaspa_to_sompi

# Constants for testing
TEST_PRIV_KEY = "0123456789abcdef0123456789abcdef0123456789abcdef0123456789abcdef"
OTHER_PRIV_KEY = "fedcba9876543210fedcba9876543210fedcba9876543210fedcba9876543210"
DEST_ADDRESS = encode_address("kaspa", VERSION_PUBKEY, bytes(range(32)))
TESTNET_DEST_ADDRESS = encode_address("kaspatest", VERSION_PUBKEY, bytes(range(32)))
FEE = kaspa_to_sompi("0.0001")
ONE_KAS = kaspa_to_sompi(1)


def make_entry(amount, address="kaspa:treasury", transaction_id=None, index=0):
    """Build a UTXO entry with a deterministic outpoint."""
    return UtxoEntry(
        outpoint=Outpoint(transaction_id=transaction_id or f"tx-{amount}-{index}", index=index),
        address=address,
        amount=amount,
    )


# 1) Make time.sleep instantaneous so batch delays don't slow the suite down
@pytest.fixture(autouse=True)
def _fast_sleep(monkeypatch):
    monkeypatch.setattr(time, "sleep", lambda *_a, **_kw: None)


# 2) Keep configuration and log suppression from leaking between tests
@pytest.fixture(autouse=True)
def _isolated_state(monkeypatch):
    for name in ("NETWORK", "MAINNET_REST_URL", "TESTNET_10_REST_URL", "TREASURY_PRIVATE_KEY", "TREASURY_ADDRESS"):
        monkeypatch.delenv(name, raising=False)
    for name in list(TransferSettings.model_fields):
        monkeypatch.delenv(f"KRC_{name.upper()}", raising=False)
    monkeypatch.delenv("KRC_NETWORK", raising=False)
    NetworkConfig._networks_cache = None
    reset_rate_limits()
    yield
    NetworkConfig._networks_cache = None


@pytest.fixture
def treasury():
    """Deterministic mainnet treasury identity"""
    return load_treasury(TEST_PRIV_KEY, "mainnet")


@pytest.fixture
def fast_settings():
    """Mainnet settings with sub-second timeouts and polling"""
    return TransferSettings(
        fungible_commit_timeout=0.3,
        fungible_reveal_timeout=0.3,
        nft_commit_timeout=0.2,
        nft_reveal_timeout=0.3,
        poll_interval=0.05,
        poll_max_attempts=5,
        wait_slice=0.01,
        batch_delay=0,
    )


@pytest.fixture
def ledger(treasury):
    """Simulated ledger with a single 6 KAS treasury UTXO"""
    ledger = InMemoryLedger("mainnet")
    ledger.fund(treasury.address, kaspa_to_sompi(6))
    return ledger


@pytest.fixture
def funded_ledger(treasury):
    """Simulated ledger holding enough for several transfers"""
    ledger = InMemoryLedger("mainnet")
    ledger.fund(treasury.address, kaspa_to_sompi(100))
    return ledger
