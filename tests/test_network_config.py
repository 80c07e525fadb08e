"""
Tests for network configuration and transfer settings.
"""
import pytest
from pydantic import ValidationError

from krc_transfer.config import NetworkConfig, TransferSettings
from krc_transfer.models import ProtocolTag
from krc_transfer.utils import kaspa_to_sompi


class TestNetworkConfig:
    def test_load_networks(self):
        networks = NetworkConfig.load_networks()
        assert set(networks) >= {"mainnet", "testnet-10"}
        assert NetworkConfig.load_networks() is networks

    def test_prefixes(self):
        assert NetworkConfig.get_prefix("mainnet") == "kaspa"
        assert NetworkConfig.get_prefix("testnet-10") == "kaspatest"
        assert NetworkConfig.get_prefix("testnet") == "kaspatest"
        assert NetworkConfig.get_network_id("testnet") == "testnet-10"

    def test_unknown_network(self):
        with pytest.raises(ValueError, match="Unknown network 'devnet'"):
            NetworkConfig.get_network("devnet")

    def test_rest_url_priority(self, monkeypatch):
        assert NetworkConfig.get_rest_url("mainnet") == "https://api.kaspa.org"

        monkeypatch.setenv("TESTNET_10_REST_URL", "https://tn10.example.org")
        assert NetworkConfig.get_rest_url("testnet") == "https://tn10.example.org"

        assert NetworkConfig.get_rest_url("testnet", "https://override.example.org") == "https://override.example.org"


class TestTransferSettings:
    def test_defaults(self):
        settings = TransferSettings()
        assert settings.network == "mainnet"
        assert settings.fixed_fee == 10_000
        assert settings.preferred_min_utxo == kaspa_to_sompi(5)
        assert settings.absolute_min_utxo == kaspa_to_sompi(1)
        assert settings.single_entry_fee_multiplier == 3
        assert settings.commit_amount == settings.preferred_min_utxo
        assert settings.batch_delay == 10
        assert settings.prefix == "kaspa"

    def test_protocol_dependent_values(self):
        settings = TransferSettings()
        assert settings.marker(ProtocolTag.KRC20) == "kasplex"
        assert settings.marker(ProtocolTag.KRC721) == "kspr"
        assert settings.commit_timeout(ProtocolTag.KRC20) == 180
        assert settings.commit_timeout(ProtocolTag.KRC721) == 30
        assert settings.reveal_timeout(ProtocolTag.KRC721) == 180
        assert settings.commit_timeout_is_fatal(ProtocolTag.KRC20)
        assert not settings.commit_timeout_is_fatal(ProtocolTag.KRC721)

    @pytest.mark.parametrize("field", [
        "fixed_fee", "preferred_min_utxo", "absolute_min_utxo", "poll_max_attempts",
        "fungible_commit_timeout", "fungible_reveal_timeout", "nft_commit_timeout", "nft_reveal_timeout",
        "poll_interval", "wait_slice", "notification_ttl",
    ])
    def test_positive_fields(self, field):
        with pytest.raises(ValidationError):
            TransferSettings(**{field: 0})

    def test_batch_delay_may_be_zero(self):
        assert TransferSettings(batch_delay=0).batch_delay == 0
        with pytest.raises(ValidationError):
            TransferSettings(batch_delay=-1)

    def test_unknown_network_rejected(self):
        with pytest.raises(ValidationError):
            TransferSettings(network="devnet")

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("NETWORK", "testnet-10")
        monkeypatch.setenv("KRC_FIXED_FEE", "0.0002")
        monkeypatch.setenv("KRC_PREFERRED_MIN_UTXO", "6")
        monkeypatch.setenv("KRC_POLL_INTERVAL", "15")
        monkeypatch.setenv("KRC_NFT_MARKER", "kspr2")

        settings = TransferSettings.from_env()

        assert settings.network == "testnet-10"
        assert settings.prefix == "kaspatest"
        assert settings.fixed_fee == 20_000
        assert settings.preferred_min_utxo == kaspa_to_sompi(6)
        assert settings.poll_interval == 15.0
        assert settings.nft_marker == "kspr2"

    def test_from_env_prefixed_network_and_overrides(self, monkeypatch):
        monkeypatch.setenv("NETWORK", "mainnet")
        monkeypatch.setenv("KRC_NETWORK", "testnet")
        monkeypatch.setenv("KRC_BATCH_DELAY", "3")

        settings = TransferSettings.from_env(batch_delay=0)

        assert settings.network == "testnet"
        assert settings.batch_delay == 0

    def test_from_env_invalid_value(self, monkeypatch):
        monkeypatch.setenv("KRC_POLL_MAX_ATTEMPTS", "many")
        with pytest.raises(ValidationError):
            TransferSettings.from_env()
