"""
Envelope script construction.

The envelope is a pay-to-pubkey script with an inert conditional branch:

    <x-only pubkey> OP_CHECKSIG OP_FALSE OP_IF <marker> OP_0 <json payload> OP_ENDIF

The OP_IF branch never executes, so spending only needs the treasury
signature; indexers read the payload from the reveal transaction's
signature script, which carries this script as the redeem script.
"""
import json
import logging
from dataclasses import dataclass
from typing import Union

from .address import pay_to_script_hash_script, script_hash_address
from .config import NetworkConfig
from .exceptions import EnvelopeError
from .models import KRC20TransferPayload, KRC721TransferPayload, OperationPayload

logger = logging.getLogger(__name__)

# Opcodes
OP_0 = 0x00
OP_FALSE = OP_0
OP_PUSHDATA1 = 0x4C
OP_PUSHDATA2 = 0x4D
OP_PUSHDATA4 = 0x4E
OP_1NEGATE = 0x4F
OP_1 = 0x51
OP_16 = 0x60
OP_IF = 0x63
OP_ENDIF = 0x68
OP_CHECKSIG = 0xAC

MAX_SCRIPT_ELEMENT_SIZE = 520


class ScriptBuilder:
    """Minimal script builder with canonical (minimal) data pushes."""

    def __init__(self):
        self._script = bytearray()

    def add_op(self, opcode: int) -> "ScriptBuilder":
        self._script.append(opcode)
        return self

    def add_data(self, data: Union[bytes, str]) -> "ScriptBuilder":
        """
        Push data using the smallest encoding.

        ``str`` data is UTF-8 encoded.

        Raises:
            EnvelopeError: If the element is larger than MAX_SCRIPT_ELEMENT_SIZE
        """
        if isinstance(data, str):
            data = data.encode("utf-8")
        if len(data) > MAX_SCRIPT_ELEMENT_SIZE:
            raise EnvelopeError(
                f"Script element of {len(data)} bytes exceeds the {MAX_SCRIPT_ELEMENT_SIZE}-byte limit"
            )
        self._script += push_data(data)
        return self

    def add_i64(self, value: int) -> "ScriptBuilder":
        if value == 0:
            return self.add_op(OP_0)
        if value == -1:
            return self.add_op(OP_1NEGATE)
        if 1 <= value <= 16:
            return self.add_op(OP_1 + value - 1)
        return self.add_data(_script_num(value))

    def to_bytes(self) -> bytes:
        return bytes(self._script)


def push_data(data: bytes) -> bytes:
    """Encode a minimal push of ``data``."""
    length = len(data)
    if length == 0 or (length == 1 and data[0] == 0):
        return bytes([OP_0])
    if length == 1 and 1 <= data[0] <= 16:
        return bytes([OP_1 + data[0] - 1])
    if length == 1 and data[0] == 0x81:
        return bytes([OP_1NEGATE])
    if length < OP_PUSHDATA1:
        return bytes([length]) + data
    if length <= 0xFF:
        return bytes([OP_PUSHDATA1, length]) + data
    if length <= 0xFFFF:
        return bytes([OP_PUSHDATA2]) + length.to_bytes(2, "little") + data
    return bytes([OP_PUSHDATA4]) + length.to_bytes(4, "little") + data


def _script_num(value: int) -> bytes:
    # Little-endian sign-magnitude encoding
    negative = value < 0
    magnitude = abs(value)
    result = bytearray()
    while magnitude:
        result.append(magnitude & 0xFF)
        magnitude >>= 8
    if result[-1] & 0x80:
        result.append(0x80 if negative else 0x00)
    elif negative:
        result[-1] |= 0x80
    return bytes(result)


def canonical_payload(payload: OperationPayload) -> bytes:
    """
    Serialize an operation payload to its canonical JSON bytes.

    Compact separators, declared field order, wire aliases. Any variance
    here changes the script hash, so the reveal would no longer match the
    commit's address.
    """
    if not isinstance(payload, (KRC20TransferPayload, KRC721TransferPayload)):
        raise EnvelopeError(f"Unsupported payload type: {type(payload).__name__}")
    return json.dumps(
        payload.model_dump(by_alias=True),
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


@dataclass(frozen=True)
class EnvelopeScript:
    """
    Envelope redeem script and its derived script-hash address.

    Attributes:
        public_key: x-only public key of the treasury
        marker: Protocol marker embedded in the inert branch
        payload: Canonical JSON payload bytes
        script: Full redeem script
        network: Network the address was derived for
        script_hash_address: Address that the commit funds
    """
    public_key: bytes
    marker: str
    payload: bytes
    script: bytes
    network: str
    script_hash_address: str

    @property
    def script_public_key(self) -> bytes:
        return pay_to_script_hash_script(self.script)

    def signature_script(self, signature: bytes) -> bytes:
        """
        Build the reveal input's unlock script.

        Args:
            signature: Signature push as produced by the ledger client's
                input signing (push opcode, signature, sighash type)

        Returns:
            ``signature`` followed by the redeem script pushed as data
        """
        if not signature:
            raise EnvelopeError("Cannot build a signature script from an empty signature")
        return bytes(signature) + push_data(self.script)


def build_envelope(
    public_key: bytes,
    marker: str,
    payload: OperationPayload,
    network: str,
) -> EnvelopeScript:
    """
    Build the envelope script for an operation and derive its address.

    Deterministic in all four arguments; the address is always derived
    for ``network`` and never reused across networks.

    Raises:
        EnvelopeError: For a malformed public key, empty marker or an
            oversized payload
    """
    if len(public_key) != 32:
        raise EnvelopeError(f"Envelope requires a 32-byte x-only public key, got {len(public_key)} bytes")
    if not marker:
        raise EnvelopeError("Protocol marker must not be empty")

    payload_bytes = canonical_payload(payload)
    script = (
        ScriptBuilder()
        .add_data(public_key)
        .add_op(OP_CHECKSIG)
        .add_op(OP_FALSE)
        .add_op(OP_IF)
        .add_data(marker)
        .add_i64(0)
        .add_data(payload_bytes)
        .add_op(OP_ENDIF)
        .to_bytes()
    )

    try:
        prefix = NetworkConfig.get_prefix(network)
    except ValueError as e:
        raise EnvelopeError(str(e))
    address = script_hash_address(script, prefix)

    logger.debug(f"Envelope payload: {payload_bytes.decode('utf-8')}")
    logger.debug(f"Envelope script: {script.hex()}")
    return EnvelopeScript(
        public_key=bytes(public_key),
        marker=marker,
        payload=payload_bytes,
        script=script,
        network=network,
        script_hash_address=address,
    )
