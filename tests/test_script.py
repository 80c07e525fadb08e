"""
Tests for envelope script construction.
"""
import json

import pytest

from krc_transfer.address import blake2b_256, decode_address, VERSION_SCRIPT_HASH
from krc_transfer.exceptions import EnvelopeError
from krc_transfer.models import FungibleTransferRequest, KRC20TransferPayload, KRC721TransferPayload, NftTransferRequest
from krc_transfer.script import (
    OP_0,
    OP_CHECKSIG,
    OP_ENDIF,
    OP_IF,
    OP_PUSHDATA1,
    OP_PUSHDATA2,
    ScriptBuilder,
    build_envelope,
    canonical_payload,
    push_data,
)

PUBKEY = bytes(range(1, 33))


def krc20_payload(**overrides):
    values = {"tick": "NACHO", "amt": "100", "to": "kaspa:dest1"}
    values.update(overrides)
    return KRC20TransferPayload(**values)


class TestPushData:
    def test_small_push(self):
        assert push_data(b"abc") == b"\x03abc"

    def test_empty_and_zero_use_op_0(self):
        assert push_data(b"") == bytes([OP_0])
        assert push_data(b"\x00") == bytes([OP_0])

    def test_small_integers_use_opcodes(self):
        assert push_data(b"\x01") == bytes([0x51])
        assert push_data(b"\x10") == bytes([0x60])
        assert push_data(b"\x81") == bytes([0x4F])

    def test_pushdata1(self):
        data = b"x" * 100
        assert push_data(data) == bytes([OP_PUSHDATA1, 100]) + data

    def test_pushdata2(self):
        data = b"x" * 300
        assert push_data(data) == bytes([OP_PUSHDATA2]) + (300).to_bytes(2, "little") + data


class TestScriptBuilder:
    def test_add_i64(self):
        script = ScriptBuilder().add_i64(0).add_i64(1).add_i64(16).add_i64(-1).add_i64(17).to_bytes()
        assert script == bytes([0x00, 0x51, 0x60, 0x4F, 0x01, 0x11])

    def test_add_data_encodes_strings(self):
        assert ScriptBuilder().add_data("kspr").to_bytes() == b"\x04kspr"

    def test_oversized_element_rejected(self):
        with pytest.raises(EnvelopeError):
            ScriptBuilder().add_data(b"x" * 521)


class TestCanonicalPayload:
    def test_krc20_field_order(self):
        assert canonical_payload(krc20_payload()) == (
            b'{"p":"krc-20","op":"transfer","tick":"NACHO","amt":"100","to":"kaspa:dest1"}'
        )

    def test_krc721_uses_token_id_alias(self):
        payload = KRC721TransferPayload(tick="kaspunks", to="kaspa:dest1", token_id="42")
        assert canonical_payload(payload) == (
            b'{"op":"transfer","p":"krc-721","tick":"kaspunks","to":"kaspa:dest1","tokenId":"42"}'
        )

    def test_non_ascii_is_not_escaped(self):
        encoded = canonical_payload(krc20_payload(tick="ÑACHO"))
        assert "ÑACHO".encode("utf-8") in encoded

    def test_rejects_unknown_payload(self):
        with pytest.raises(EnvelopeError):
            canonical_payload({"op": "transfer"})


class TestBuildEnvelope:
    def test_script_layout(self):
        payload = krc20_payload()
        envelope = build_envelope(PUBKEY, "kasplex", payload, "mainnet")
        body = canonical_payload(payload)

        expected = (
            bytes([32]) + PUBKEY
            + bytes([OP_CHECKSIG, OP_0, OP_IF])
            + b"\x07kasplex"
            + bytes([OP_0])
            + push_data(body)
            + bytes([OP_ENDIF])
        )
        assert envelope.script == expected
        assert envelope.payload == body
        assert envelope.marker == "kasplex"

    def test_address_is_script_hash(self):
        envelope = build_envelope(PUBKEY, "kasplex", krc20_payload(), "mainnet")
        prefix, version, payload = decode_address(envelope.script_hash_address)
        assert prefix == "kaspa"
        assert version == VERSION_SCRIPT_HASH
        assert payload == blake2b_256(envelope.script)
        assert envelope.script_public_key == b"\xaa\x20" + payload + b"\x87"

    def test_deterministic(self):
        first = build_envelope(PUBKEY, "kasplex", krc20_payload(), "mainnet")
        second = build_envelope(PUBKEY, "kasplex", krc20_payload(), "mainnet")
        assert first == second

    @pytest.mark.parametrize("field,value", [("tick", "OTHER"), ("amt", "101"), ("to", "kaspa:dest2")])
    def test_any_payload_change_changes_address(self, field, value):
        base = build_envelope(PUBKEY, "kasplex", krc20_payload(), "mainnet")
        changed = build_envelope(PUBKEY, "kasplex", krc20_payload(**{field: value}), "mainnet")
        assert changed.script_hash_address != base.script_hash_address

    def test_marker_and_network_change_address(self):
        base = build_envelope(PUBKEY, "kasplex", krc20_payload(), "mainnet")
        assert build_envelope(PUBKEY, "kspr", krc20_payload(), "mainnet").script_hash_address != base.script_hash_address

        testnet = build_envelope(PUBKEY, "kasplex", krc20_payload(), "testnet-10")
        assert testnet.script_hash_address.startswith("kaspatest:")
        assert testnet.script == base.script

    def test_invalid_inputs(self):
        with pytest.raises(EnvelopeError):
            build_envelope(PUBKEY[:31], "kasplex", krc20_payload(), "mainnet")
        with pytest.raises(EnvelopeError):
            build_envelope(PUBKEY, "", krc20_payload(), "mainnet")
        with pytest.raises(EnvelopeError):
            build_envelope(PUBKEY, "kasplex", krc20_payload(), "no-such-net")

    def test_request_payloads(self):
        fungible = FungibleTransferRequest(ticker="NACHO", amount="5", destination="kaspa:dest1")
        nft = NftTransferRequest(ticker="KASPUNKS", token_id=7, destination="kaspa:dest1")

        assert json.loads(canonical_payload(fungible.payload())) == {
            "p": "krc-20", "op": "transfer", "tick": "NACHO", "amt": "5", "to": "kaspa:dest1",
        }
        assert json.loads(canonical_payload(nft.payload())) == {
            "op": "transfer", "p": "krc-721", "tick": "kaspunks", "to": "kaspa:dest1", "tokenId": "7",
        }


class TestSignatureScript:
    def test_signature_then_redeem_script(self):
        envelope = build_envelope(PUBKEY, "kspr", krc20_payload(), "mainnet")
        signature = b"\x41" + b"s" * 64 + b"\x01"
        witness = envelope.signature_script(signature)
        assert witness.startswith(signature)
        assert witness[len(signature):] == push_data(envelope.script)

    def test_empty_signature_rejected(self):
        envelope = build_envelope(PUBKEY, "kspr", krc20_payload(), "mainnet")
        with pytest.raises(EnvelopeError):
            envelope.signature_script(b"")
