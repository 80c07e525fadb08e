"""
Kaspa address codec.

Kaspa addresses are ``<prefix>:<base32 payload><8 char checksum>`` where the
payload is a version byte followed by a public key or script hash, and the
checksum is a 40-bit BCH code over the prefix and payload (the same
polymod as cashaddr).
"""
import hashlib
from typing import List, Optional, Sequence, Tuple

from .exceptions import EnvelopeError

CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
_CHARSET_REV = {c: i for i, c in enumerate(CHARSET)}

_GENERATORS = (
    0x98F2BC8E61,
    0x79B76D99E2,
    0xF33E5FB3C4,
    0xAE2EABE2A8,
    0x1E4F43E470,
)

# Address versions
VERSION_PUBKEY = 0x00
VERSION_PUBKEY_ECDSA = 0x01
VERSION_SCRIPT_HASH = 0x08

_PAYLOAD_LENGTHS = {
    VERSION_PUBKEY: 32,
    VERSION_PUBKEY_ECDSA: 33,
    VERSION_SCRIPT_HASH: 32,
}

# Opcodes used by the pay-to-script-hash script public key
OP_BLAKE2B = 0xAA
OP_DATA_32 = 0x20
OP_EQUAL = 0x87


def _polymod(values: Sequence[int]) -> int:
    c = 1
    for d in values:
        c0 = c >> 35
        c = ((c & 0x07FFFFFFFF) << 5) ^ d
        for i, generator in enumerate(_GENERATORS):
            if (c0 >> i) & 1:
                c ^= generator
    return c ^ 1


def _convert_bits(data: Sequence[int], from_bits: int, to_bits: int, pad: bool) -> List[int]:
    acc = 0
    bits = 0
    result = []
    maxv = (1 << to_bits) - 1
    for value in data:
        acc = (acc << from_bits) | value
        bits += from_bits
        while bits >= to_bits:
            bits -= to_bits
            result.append((acc >> bits) & maxv)
    if pad and bits:
        result.append((acc << (to_bits - bits)) & maxv)
    return result


def _checksum(prefix: str, payload5: Sequence[int]) -> List[int]:
    values = [ord(c) & 0x1F for c in prefix] + [0] + list(payload5) + [0] * 8
    checksum = _polymod(values)
    return _convert_bits(checksum.to_bytes(8, "big")[3:], 8, 5, pad=True)


def encode_address(prefix: str, version: int, payload: bytes) -> str:
    """
    Encode a Kaspa address.

    Args:
        prefix: Network prefix, e.g. "kaspa" or "kaspatest"
        version: Address version byte
        payload: Public key or script hash bytes

    Returns:
        Address string including the prefix
    """
    expected = _PAYLOAD_LENGTHS.get(version)
    if expected is None:
        raise ValueError(f"Unknown address version: {version}")
    if len(payload) != expected:
        raise ValueError(f"Address version {version} requires a {expected}-byte payload, got {len(payload)}")

    payload5 = _convert_bits(bytes([version]) + bytes(payload), 8, 5, pad=True)
    checksum = _checksum(prefix, payload5)
    return prefix + ":" + "".join(CHARSET[d] for d in payload5 + checksum)


def decode_address(address: str, expected_prefix: Optional[str] = None) -> Tuple[str, int, bytes]:
    """
    Decode and validate a Kaspa address.

    Returns:
        Tuple of (prefix, version, payload)

    Raises:
        ValueError: If the address is malformed, has the wrong prefix or a
            bad checksum
    """
    if ":" not in address:
        raise ValueError(f"Address is missing a network prefix: {address}")
    prefix, body = address.split(":", 1)
    if expected_prefix is not None and prefix != expected_prefix:
        raise ValueError(f"Address prefix {prefix!r} does not match network prefix {expected_prefix!r}")
    if address.lower() != address or len(body) <= 8:
        raise ValueError(f"Malformed address: {address}")

    try:
        values = [_CHARSET_REV[c] for c in body]
    except KeyError as e:
        raise ValueError(f"Invalid character {e.args[0]!r} in address: {address}")

    payload5, checksum = values[:-8], values[-8:]
    if _checksum(prefix, payload5) != checksum:
        raise ValueError(f"Invalid address checksum: {address}")

    data = bytes(_convert_bits(payload5, 5, 8, pad=False))
    version, payload = data[0], data[1:]
    expected = _PAYLOAD_LENGTHS.get(version)
    if expected is None or len(payload) != expected:
        raise ValueError(f"Unsupported address version {version} or payload length {len(payload)}")
    return prefix, version, payload


def is_valid_address(address: str, prefix: Optional[str] = None) -> bool:
    """Check whether an address decodes cleanly (optionally for a given prefix)."""
    try:
        decode_address(address, prefix)
        return True
    except ValueError:
        return False


def address_payload(address: str) -> str:
    """
    Return the part of the address after the network prefix.

    Notifications identify addresses by this payload, so address
    comparisons between the core and the ledger go through it.
    """
    return address.split(":", 1)[-1]


def same_address(a: str, b: str) -> bool:
    return address_payload(a) == address_payload(b)


def blake2b_256(data: bytes) -> bytes:
    return hashlib.blake2b(data, digest_size=32).digest()


def pay_to_script_hash_script(redeem_script: bytes) -> bytes:
    """Build the script public key ``OP_BLAKE2B <hash> OP_EQUAL`` locking to a redeem script."""
    return bytes([OP_BLAKE2B, OP_DATA_32]) + blake2b_256(redeem_script) + bytes([OP_EQUAL])


def script_hash_address(redeem_script: bytes, prefix: str) -> str:
    """Derive the pay-to-script-hash address of a redeem script for a network prefix."""
    if not prefix:
        raise EnvelopeError("A network prefix is required to derive a script-hash address")
    return encode_address(prefix, VERSION_SCRIPT_HASH, blake2b_256(redeem_script))
