"""
Tests for the krc-transfer command line tool.
"""
import json
import re

import pytest
from typer.testing import CliRunner

from krc_cli.main import app, load_ledger_factory
from krc_transfer.keys import load_treasury
from krc_transfer.ledger.memory import InMemoryLedger

from conftest import DEST_ADDRESS, TEST_PRIV_KEY

runner = CliRunner()


@pytest.fixture
def treasury_env(monkeypatch):
    monkeypatch.setenv("TREASURY_PRIVATE_KEY", TEST_PRIV_KEY)
    monkeypatch.setenv("TREASURY_ADDRESS", load_treasury(TEST_PRIV_KEY, "mainnet").address)


@pytest.fixture
def airdrop_csv(tmp_path):
    path = tmp_path / "airdrop.csv"
    path.write_text(f"walletAddress,tick,id\n{DEST_ADDRESS},KASPUNKS,1\n{DEST_ADDRESS},KASPUNKS,2\n")
    return path


def simulated_ledger(network):
    """Ledger factory used through --ledger-factory"""
    ledger = InMemoryLedger(network)
    ledger.fund(load_treasury(TEST_PRIV_KEY, network).address, 50 * 100_000_000)
    return ledger


def test_airdrop_simulated(treasury_env, airdrop_csv):
    result = runner.invoke(app, ["airdrop", str(airdrop_csv), "--simulate", "--delay", "0", "--no-color"])

    assert result.exit_code == 0, result.output
    assert "Found 2 NFTs to transfer" in result.output
    assert "[OK] NFT KASPUNKS:1" in result.output
    assert "2/2 transfers verified (0 pending, 0 failed, 0 timed out)" in result.output


def test_airdrop_underfunded_exits_nonzero(treasury_env, airdrop_csv):
    result = runner.invoke(
        app, ["airdrop", str(airdrop_csv), "--simulate", "--simulate-balance", "0.5", "--delay", "0", "--no-color"]
    )
    assert result.exit_code == 1
    assert "[FAILED]" in result.output
    assert "0/2 transfers verified" in result.output


def test_airdrop_invalid_file(treasury_env, tmp_path):
    path = tmp_path / "airdrop.txt"
    path.write_text("nothing")
    result = runner.invoke(app, ["airdrop", str(path), "--simulate"])
    assert result.exit_code == 1
    assert "Unsupported file format" in result.output


def test_missing_treasury_key(airdrop_csv):
    result = runner.invoke(app, ["airdrop", str(airdrop_csv), "--simulate"])
    assert result.exit_code == 1
    assert "TREASURY_PRIVATE_KEY" in result.output


def test_mismatched_treasury_address(monkeypatch, airdrop_csv):
    monkeypatch.setenv("TREASURY_PRIVATE_KEY", TEST_PRIV_KEY)
    monkeypatch.setenv("TREASURY_ADDRESS", DEST_ADDRESS)
    result = runner.invoke(app, ["airdrop", str(airdrop_csv), "--simulate"])
    assert result.exit_code == 1
    assert "does not match" in result.output


def test_ledger_required(treasury_env, airdrop_csv):
    result = runner.invoke(app, ["airdrop", str(airdrop_csv)])
    assert result.exit_code == 1
    assert "--ledger-factory" in result.output


def test_transfer_krc20_with_ledger_file(treasury_env, tmp_path):
    books = tmp_path / "books.json"
    result = runner.invoke(app, [
        "transfer-krc20", "NACHO", "100", "kaspa:dest1",
        "--rebate", "0.001", "--full-rebate",
        "--simulate",
        "--ledger-file", str(books),
        "--no-color",
    ])

    assert result.exit_code == 0, result.output
    assert "[OK] 100 NACHO to kaspa:dest1" in result.output
    data = json.loads(books.read_text())
    transfer = next(iter(data["transfers"].values()))
    assert transfer["counterpart_amount"] == "300000"
    assert transfer["nacho_transfer_status"] == "COMPLETED"
    assert data["balances"]["nacho_rebate_kas"]["kaspa:dest1"] == "-300000"
    assert data["payments"][0]["amount"] == "100"


def test_ledger_factory_with_rest_polling(treasury_env, requests_mock):
    balance = requests_mock.get(re.compile(r"https://api\.kaspa\.test/addresses/.*/balance"), json={"balance": 0})
    requests_mock.get(re.compile(r"https://api\.kaspa\.test/addresses/.*/transactions-count"), json={"total": 2})

    result = runner.invoke(app, [
        "transfer-krc721", "KASPUNKS", "7", DEST_ADDRESS,
        "--ledger-factory", "test_cli:simulated_ledger",
        "--rest-url", "https://api.kaspa.test",
        "--no-color",
    ])

    assert result.exit_code == 0, result.output
    assert "[OK] NFT KASPUNKS:7" in result.output
    assert balance.called


def test_transfer_krc721_simulated(treasury_env):
    result = runner.invoke(app, ["transfer-krc721", "KASPUNKS", "7", DEST_ADDRESS, "--simulate", "--no-color"])
    assert result.exit_code == 0, result.output
    assert "[OK] NFT KASPUNKS:7" in result.output
    assert "Reveal TX:" in result.output


def test_address_command(monkeypatch):
    monkeypatch.setenv("TREASURY_PRIVATE_KEY", TEST_PRIV_KEY)
    result = runner.invoke(app, [
        "address", "--ticker", "KASPUNKS", "--token-id", "42", "--destination", DEST_ADDRESS,
    ])
    assert result.exit_code == 0, result.output
    assert f"Treasury address: {load_treasury(TEST_PRIV_KEY, 'mainnet').address}" in result.output
    assert '"tick":"kaspunks"' in result.output
    assert "Script-hash address: kaspa:p" in result.output


def test_address_requires_amount_for_krc20(monkeypatch):
    monkeypatch.setenv("TREASURY_PRIVATE_KEY", TEST_PRIV_KEY)
    result = runner.invoke(app, ["address", "--protocol", "krc-20", "--ticker", "NACHO", "--destination", DEST_ADDRESS])
    assert result.exit_code == 1
    assert "--amount is required" in result.output


def test_address_testnet(monkeypatch):
    monkeypatch.setenv("TREASURY_PRIVATE_KEY", TEST_PRIV_KEY)
    result = runner.invoke(app, [
        "address", "--protocol", "krc-20", "--ticker", "NACHO", "--amount", "5",
        "--destination", DEST_ADDRESS, "--network", "testnet-10",
    ])
    assert result.exit_code == 0, result.output
    assert "Script-hash address: kaspatest:p" in result.output


def test_version_command():
    from krc_transfer import __version__
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert __version__ in result.output


@pytest.mark.parametrize("target", ["no_colon", ":missing", "module:", "no.such.module:factory", "json:not_there"])
def test_invalid_ledger_factory(target):
    with pytest.raises(ValueError):
        load_ledger_factory(target)
