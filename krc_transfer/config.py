"""
Network and transfer configuration.
"""
import json
import logging
import os
import importlib.resources
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

from .models import ProtocolTag
from .utils import kaspa_to_sompi

logger = logging.getLogger(__name__)

NETWORK_ALIASES = {"testnet": "testnet-10"}


class NetworkConfig:
    """Access to the packaged network definitions (networks.json)."""

    _networks_cache: Optional[Dict[str, Dict[str, Any]]] = None

    @classmethod
    def load_networks(cls) -> Dict[str, Dict[str, Any]]:
        """
        Load network definitions, cached after the first call.

        Returns:
            Mapping of network name to its settings
        """
        if cls._networks_cache is None:
            resource = importlib.resources.files("krc_transfer").joinpath("networks.json")
            with resource.open("r", encoding="utf-8") as f:
                cls._networks_cache = json.load(f)
        return cls._networks_cache

    @classmethod
    def resolve_name(cls, network: str) -> str:
        return NETWORK_ALIASES.get(network, network)

    @classmethod
    def get_network(cls, network: str) -> Dict[str, Any]:
        """
        Get the settings of one network.

        Raises:
            ValueError: If the network is unknown
        """
        networks = cls.load_networks()
        name = cls.resolve_name(network)
        if name not in networks:
            available = ", ".join(sorted(networks))
            raise ValueError(f"Unknown network {network!r}. Available networks: {available}")
        return networks[name]

    @classmethod
    def get_prefix(cls, network: str) -> str:
        """Address prefix of a network, e.g. "kaspa"."""
        return cls.get_network(network)["prefix"]

    @classmethod
    def get_network_id(cls, network: str) -> str:
        return cls.get_network(network)["networkId"]

    @classmethod
    def get_rest_url(cls, network: str, override: Optional[str] = None) -> str:
        """
        REST API base URL for a network.

        Priority: explicit override, then ``<NETWORK>_REST_URL`` env var,
        then the packaged default.
        """
        if override:
            return override
        env_name = cls.resolve_name(network).upper().replace("-", "_") + "_REST_URL"
        env_value = os.environ.get(env_name)
        if env_value:
            return env_value
        return cls.get_network(network)["rest"]


class TransferSettings(BaseModel):
    """
    Scalar settings for commit-reveal transfers.

    Amounts are in sompi, durations in seconds.
    """
    network: str = "mainnet"
    fixed_fee: int = kaspa_to_sompi("0.0001")
    preferred_min_utxo: int = kaspa_to_sompi(5)
    absolute_min_utxo: int = kaspa_to_sompi(1)
    single_entry_fee_multiplier: int = 3
    fungible_marker: str = "kasplex"
    nft_marker: str = "kspr"
    fungible_commit_timeout: float = Field(180.0, gt=0)
    fungible_reveal_timeout: float = Field(180.0, gt=0)
    nft_commit_timeout: float = Field(30.0, gt=0)
    nft_reveal_timeout: float = Field(180.0, gt=0)
    poll_interval: float = Field(60.0, gt=0)
    poll_max_attempts: int = 30
    wait_slice: float = Field(0.5, gt=0)
    batch_delay: float = Field(10.0, ge=0)
    notification_ttl: float = Field(600.0, gt=0)

    @field_validator("network")
    @classmethod
    def _known_network(cls, v: str) -> str:
        NetworkConfig.get_network(v)
        return v

    @field_validator("fixed_fee", "preferred_min_utxo", "absolute_min_utxo", "poll_max_attempts")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @property
    def prefix(self) -> str:
        return NetworkConfig.get_prefix(self.network)

    @property
    def commit_amount(self) -> int:
        """Amount locked at the script-hash address by the commit transaction."""
        return self.preferred_min_utxo

    @property
    def required_funds_per_transfer(self) -> int:
        return self.preferred_min_utxo + self.fixed_fee

    def marker(self, protocol: ProtocolTag) -> str:
        return self.fungible_marker if protocol == ProtocolTag.KRC20 else self.nft_marker

    def commit_timeout(self, protocol: ProtocolTag) -> float:
        return self.fungible_commit_timeout if protocol == ProtocolTag.KRC20 else self.nft_commit_timeout

    def reveal_timeout(self, protocol: ProtocolTag) -> float:
        return self.fungible_reveal_timeout if protocol == ProtocolTag.KRC20 else self.nft_reveal_timeout

    def commit_timeout_is_fatal(self, protocol: ProtocolTag) -> bool:
        """KRC-20 aborts on commit timeout; KRC-721 warns and proceeds to reveal."""
        return protocol == ProtocolTag.KRC20

    @classmethod
    def from_env(cls, prefix: str = "KRC_", **overrides: Any) -> "TransferSettings":
        """
        Build settings from environment variables.

        Each field is read from ``<prefix><FIELD>`` (e.g. ``KRC_POLL_INTERVAL``).
        The network also falls back to ``NETWORK``. Fee and thresholds
        given in the environment are in KAS.
        """
        values: Dict[str, Any] = {}
        network = os.environ.get(f"{prefix}NETWORK") or os.environ.get("NETWORK")
        if network:
            values["network"] = network

        kas_fields = {"fixed_fee", "preferred_min_utxo", "absolute_min_utxo"}
        for name in cls.model_fields:
            if name == "network":
                continue
            raw = os.environ.get(f"{prefix}{name.upper()}")
            if raw is None:
                continue
            values[name] = kaspa_to_sompi(raw) if name in kas_fields else raw

        values.update(overrides)
        settings = cls(**values)
        logger.debug(f"Loaded transfer settings for network {settings.network}")
        return settings
