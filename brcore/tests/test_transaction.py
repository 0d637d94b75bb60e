"""
Tests for brcore.transaction
"""

from __future__ import annotations

import pytest

from brcore.constants import TX_INPUT_SIZE, TX_OUTPUT_SIZE, TX_UNCONFIRMED, TXIN_SEQUENCE
from brcore.transaction import (
    Transaction,
    TransactionParseError,
    encode_varint,
    hash_to_txid,
    read_varint,
    txid_to_hash,
)

GENESIS_COINBASE_HEX = (
    "01000000010000000000000000000000000000000000000000000000000000000000000000ffffffff4d04ffff001d"
    "0104455468652054696d65732030332f4a616e2f32303039204368616e63656c6c6f72206f6e206272696e6b206f66"
    "207365636f6e64206261696c6f757420666f722062616e6b73ffffffff0100f2052a01000000434104678afdb0fe55"
    "48271967f1a67130b7105cd6a828e03909a67962e0ea1f61deb649f6bc3f4cef38c4f35504e51ec112de5c384df7ba"
    "0b8d578a4c702b6bf11d5fac00000000"
)
GENESIS_COINBASE_TXID = "4a5e1e4baab89f3a32518a88c31bc87f618f76673e2cc77ab2127b7afdeda33b"

# minimal segwit transaction spending to P2WPKH
SEGWIT_TX_HEX = (
    "02000000"
    "0001"
    "01"
    "0000000000000000000000000000000000000000000000000000000000000000"
    "00000000"
    "00"
    "ffffffff"
    "01"
    "0000000000000000"
    "16"
    "0014751e76e8199196d454941c45d1b3a323f1433bd6"
    "00"
    "00000000"
)

P2PKH_SCRIPT = bytes.fromhex("76a914751e76e8199196d454941c45d1b3a323f1433bd688ac")


class TestVarint:
    def test_read_single_byte(self):
        value, offset = read_varint(bytes([0x05, 0xFF]), 0)
        assert value == 5
        assert offset == 1

    def test_read_two_bytes(self):
        value, offset = read_varint(bytes([0xFD, 0x01, 0x00]), 0)
        assert value == 1
        assert offset == 3

    def test_encode_boundaries(self):
        assert encode_varint(0xFC) == bytes([0xFC])
        assert encode_varint(0xFD) == bytes([0xFD, 0xFD, 0x00])
        assert encode_varint(0x10000) == bytes([0xFE, 0x00, 0x00, 0x01, 0x00])
        assert encode_varint(0x100000000) == b"\xff" + (0x100000000).to_bytes(8, "little")


def test_txid_is_reversed_hash():
    tx_hash = bytes(range(32))
    assert hash_to_txid(tx_hash) == tx_hash[::-1].hex()
    assert txid_to_hash(hash_to_txid(tx_hash)) == tx_hash


class TestParse:
    """Tests for Transaction.from_bytes."""

    def test_genesis_coinbase(self) -> None:
        """Test the genesis coinbase parses and hashes to its known txid."""
        raw = bytes.fromhex(GENESIS_COINBASE_HEX)
        tx = Transaction.from_bytes(raw)

        assert tx.version == 1
        assert len(tx.inputs) == 1
        assert tx.inputs[0].prev_hash == b"\x00" * 32
        assert tx.inputs[0].prev_index == 0xFFFFFFFF
        assert tx.outputs[0].amount == 5_000_000_000
        assert tx.to_bytes() == raw
        assert tx.txid == GENESIS_COINBASE_TXID

    def test_segwit_witness_is_skipped(self) -> None:
        """Test witness data is dropped and the legacy form remains."""
        tx = Transaction.from_bytes(bytes.fromhex(SEGWIT_TX_HEX))

        assert tx.version == 2
        assert len(tx.inputs) == 1
        assert tx.inputs[0].signature == b""
        assert tx.inputs[0].sequence == TXIN_SEQUENCE
        assert tx.outputs[0].script == bytes.fromhex("0014751e76e8199196d454941c45d1b3a323f1433bd6")
        assert tx.to_bytes()[4] == 0x01  # input count follows the version directly

    def test_parsed_transaction_is_unconfirmed(self) -> None:
        """Test parsed transactions carry no block height or timestamp."""
        tx = Transaction.from_bytes(bytes.fromhex(GENESIS_COINBASE_HEX))
        assert tx.block_height == TX_UNCONFIRMED
        assert tx.timestamp == 0
        assert not tx.is_confirmed

    def test_truncated(self) -> None:
        """Test truncated data raises TransactionParseError."""
        with pytest.raises(TransactionParseError):
            Transaction.from_bytes(bytes.fromhex(GENESIS_COINBASE_HEX)[:-10])

    def test_trailing_data(self) -> None:
        """Test extra bytes after the lock time are rejected."""
        with pytest.raises(TransactionParseError):
            Transaction.from_bytes(bytes.fromhex(GENESIS_COINBASE_HEX) + b"\x00")

    def test_garbage(self) -> None:
        with pytest.raises(TransactionParseError):
            Transaction.from_bytes(b"\x00\x01\x02")


class TestBuild:
    """Tests for building transactions."""

    def test_add_input_requires_32_byte_hash(self) -> None:
        """Test short previous hashes are rejected."""
        tx = Transaction()
        with pytest.raises(ValueError, match="hash length"):
            tx.add_input(b"\x00" * 31, 0)

    def test_add_output_rejects_negative_amount(self) -> None:
        tx = Transaction()
        with pytest.raises(ValueError):
            tx.add_output(-1, P2PKH_SCRIPT)

    def test_unsigned_size_estimate(self) -> None:
        """Test unsigned size assumes one P2PKH signature per input."""
        tx = Transaction()
        tx.add_input(b"\x11" * 32, 0, P2PKH_SCRIPT)
        tx.add_input(b"\x22" * 32, 1, P2PKH_SCRIPT)
        tx.add_output(10_000, P2PKH_SCRIPT)

        assert not tx.is_signed
        assert tx.size == 8 + 1 + 1 + 2 * TX_INPUT_SIZE + TX_OUTPUT_SIZE

    def test_signed_size_is_serialized_length(self) -> None:
        tx = Transaction()
        tx.add_input(b"\x11" * 32, 0, P2PKH_SCRIPT, signature=b"\x01\x02")
        tx.add_output(10_000, P2PKH_SCRIPT)

        assert tx.is_signed
        assert tx.size == len(tx.to_bytes())

    def test_hash_ignores_spent_output_script(self) -> None:
        """Test the spent output script is not part of the serialization."""
        with_script = Transaction()
        with_script.add_input(b"\x11" * 32, 0, P2PKH_SCRIPT)
        with_script.add_output(1_000, P2PKH_SCRIPT)

        without_script = Transaction()
        without_script.add_input(b"\x11" * 32, 0)
        without_script.add_output(1_000, P2PKH_SCRIPT)

        assert with_script.tx_hash == without_script.tx_hash

    def test_sighash_preimage_places_script_in_signed_input(self) -> None:
        """Test the preimage carries the script only at the signed input."""
        tx = Transaction()
        tx.add_input(b"\x11" * 32, 0, P2PKH_SCRIPT, signature=b"\xaa")
        tx.add_input(b"\x22" * 32, 0, P2PKH_SCRIPT, signature=b"\xbb")
        tx.add_output(1_000, P2PKH_SCRIPT)

        preimage = tx.sighash_preimage(1, 1)

        assert preimage.endswith(b"\x01\x00\x00\x00")
        assert preimage.count(P2PKH_SCRIPT) == 2  # signed input and the output
        assert b"\xaa" not in preimage[:-4]

    def test_sighash_preimage_index_out_of_range(self) -> None:
        tx = Transaction()
        tx.add_input(b"\x11" * 32, 0, P2PKH_SCRIPT)
        with pytest.raises(IndexError):
            tx.sighash_preimage(1, 1)

    def test_copy_is_independent(self) -> None:
        tx = Transaction()
        tx.add_input(b"\x11" * 32, 0, P2PKH_SCRIPT)
        clone = tx.copy()
        clone.inputs[0].signature = b"\x01"

        assert tx.inputs[0].signature == b""
