"""
Treasury key handling.

Signing is delegated to the ledger client; this module only derives the
x-only public key embedded in the envelope and the treasury's own address.
"""
import logging
from dataclasses import dataclass, field
from typing import Optional

from cryptography.hazmat.primitives.asymmetric import ec

from .address import VERSION_PUBKEY, encode_address, same_address
from .config import NetworkConfig

logger = logging.getLogger(__name__)

# Order of the SECP256K1 elliptic curve (N value)
SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

# Valid private key scalar range is [1, N-1]
SECP256K1_MIN = 1
SECP256K1_MAX = SECP256K1_N - 1


@dataclass(frozen=True)
class TreasuryIdentity:
    """
    The treasury wallet that funds commits and receives change.

    Attributes:
        address: Treasury address (pay-to-pubkey)
        private_key: Private key in hex, handed to the ledger client for signing
        x_only_public_key: 32-byte x-only public key
    """
    address: str
    private_key: str = field(repr=False)
    x_only_public_key: bytes


def x_only_public_key(private_key_hex: str) -> bytes:
    """
    Derive the 32-byte x-only secp256k1 public key from a private key.

    Raises:
        ValueError: If the key is not 32 bytes of hex or out of range
    """
    key_hex = private_key_hex[2:] if private_key_hex.startswith("0x") else private_key_hex
    if len(key_hex) != 64:
        raise ValueError(f"Private key must be 32 bytes (64 hex chars), got {len(key_hex)} chars")
    try:
        scalar = int(key_hex, 16)
    except ValueError:
        raise ValueError("Private key must be a hex string")
    if not SECP256K1_MIN <= scalar <= SECP256K1_MAX:
        raise ValueError("Private key is outside the valid secp256k1 range")

    public_numbers = ec.derive_private_key(scalar, ec.SECP256K1()).public_key().public_numbers()
    return public_numbers.x.to_bytes(32, "big")


def load_treasury(private_key_hex: str, network: str, address: Optional[str] = None) -> TreasuryIdentity:
    """
    Build the treasury identity for a network.

    Args:
        private_key_hex: Treasury private key in hex
        network: Network name, e.g. "mainnet" or "testnet-10"
        address: Optional expected treasury address; must match the key

    Returns:
        TreasuryIdentity

    Raises:
        ValueError: If the key is invalid or does not match ``address``
    """
    public_key = x_only_public_key(private_key_hex)
    derived = encode_address(NetworkConfig.get_prefix(network), VERSION_PUBKEY, public_key)

    if address and not same_address(address, derived):
        raise ValueError(f"Treasury address {address} does not match the private key (derived {derived})")

    # Log truncated address only
    logger.info("Loaded treasury %s…", derived[:16])
    return TreasuryIdentity(
        address=address or derived,
        private_key=private_key_hex[2:] if private_key_hex.startswith("0x") else private_key_hex,
        x_only_public_key=public_key,
    )
