"""
Bitcoin transaction structure and legacy wire serialization.

Transaction hashes are kept in internal byte order (as hashed). The txid shown
to users is the same hash reversed and hex encoded.
"""

from __future__ import annotations

import copy
import struct
from dataclasses import dataclass, field

from brcore.constants import (
    TX_INPUT_SIZE,
    TX_OUTPUT_SIZE,
    TX_UNCONFIRMED,
    TX_VERSION,
    TXIN_SEQUENCE,
)
from brcore.crypto import hash256


class TransactionParseError(Exception):
    pass


def encode_varint(value: int) -> bytes:
    if value < 0xFD:
        return bytes([value])
    if value <= 0xFFFF:
        return b"\xfd" + struct.pack("<H", value)
    if value <= 0xFFFFFFFF:
        return b"\xfe" + struct.pack("<I", value)
    return b"\xff" + struct.pack("<Q", value)


def read_varint(data: bytes, offset: int) -> tuple[int, int]:
    """Read a varint, returning (value, new_offset)."""
    first = data[offset]
    offset += 1

    if first < 0xFD:
        return first, offset
    if first == 0xFD:
        return struct.unpack("<H", data[offset : offset + 2])[0], offset + 2
    if first == 0xFE:
        return struct.unpack("<I", data[offset : offset + 4])[0], offset + 4
    return struct.unpack("<Q", data[offset : offset + 8])[0], offset + 8


def txid_to_hash(txid: str) -> bytes:
    """Convert a display txid (big-endian hex) to an internal-order hash."""
    return bytes.fromhex(txid)[::-1]


def hash_to_txid(tx_hash: bytes) -> str:
    return tx_hash[::-1].hex()


def serialize_outpoint(prev_hash: bytes, prev_index: int) -> bytes:
    return prev_hash + struct.pack("<I", prev_index)


@dataclass
class TxIn:
    """
    Transaction input.

    `script` is the scriptPubKey of the output being spent, when known (needed
    for signing). `signature` is the scriptSig placed in the serialized input.
    """

    prev_hash: bytes
    prev_index: int
    script: bytes = b""
    signature: bytes = b""
    sequence: int = TXIN_SEQUENCE

    @property
    def outpoint(self) -> tuple[bytes, int]:
        return self.prev_hash, self.prev_index


@dataclass
class TxOut:
    amount: int
    script: bytes


@dataclass
class Transaction:
    inputs: list[TxIn] = field(default_factory=list)
    outputs: list[TxOut] = field(default_factory=list)
    version: int = TX_VERSION
    lock_time: int = 0
    block_height: int = TX_UNCONFIRMED
    timestamp: int = 0

    def add_input(
        self,
        prev_hash: bytes,
        prev_index: int,
        script: bytes = b"",
        signature: bytes = b"",
        sequence: int = TXIN_SEQUENCE,
    ) -> None:
        if len(prev_hash) != 32:
            raise ValueError(f"Invalid previous transaction hash length: {len(prev_hash)}")
        self.inputs.append(TxIn(prev_hash, prev_index, script, signature, sequence))

    def add_output(self, amount: int, script: bytes) -> None:
        if amount < 0:
            raise ValueError(f"Output amount must be non-negative: {amount}")
        self.outputs.append(TxOut(amount, script))

    def serialize(self, subscript_index: int | None = None) -> bytes:
        """
        Serialize the transaction in legacy (non-witness) format.

        With subscript_index set, every scriptSig is emptied except the one at
        that index, which is replaced by the spent output's script. This is the
        layout hashed for legacy signatures.
        """
        result = struct.pack("<I", self.version)
        result += encode_varint(len(self.inputs))

        for i, inp in enumerate(self.inputs):
            if subscript_index is None:
                script_sig = inp.signature
            elif i == subscript_index:
                script_sig = inp.script
            else:
                script_sig = b""

            result += serialize_outpoint(inp.prev_hash, inp.prev_index)
            result += encode_varint(len(script_sig)) + script_sig
            result += struct.pack("<I", inp.sequence)

        result += encode_varint(len(self.outputs))
        for out in self.outputs:
            result += struct.pack("<Q", out.amount)
            result += encode_varint(len(out.script)) + out.script

        result += struct.pack("<I", self.lock_time)
        return result

    def to_bytes(self) -> bytes:
        return self.serialize()

    @property
    def tx_hash(self) -> bytes:
        return hash256(self.serialize())

    @property
    def txid(self) -> str:
        return hash_to_txid(self.tx_hash)

    @property
    def input_hashes(self) -> list[bytes]:
        return [inp.prev_hash for inp in self.inputs]

    @property
    def is_signed(self) -> bool:
        return bool(self.inputs) and all(inp.signature for inp in self.inputs)

    @property
    def size(self) -> int:
        """
        Size in bytes. Unsigned transactions are estimated assuming every
        input will carry a compressed-key P2PKH signature.
        """
        if self.is_signed:
            return len(self.serialize())

        return (
            8
            + len(encode_varint(len(self.inputs)))
            + len(encode_varint(len(self.outputs)))
            + TX_INPUT_SIZE * len(self.inputs)
            + TX_OUTPUT_SIZE * len(self.outputs)
        )

    @property
    def is_confirmed(self) -> bool:
        return self.block_height != TX_UNCONFIRMED

    def sighash_preimage(self, input_index: int, sighash_type: int) -> bytes:
        if input_index < 0 or input_index >= len(self.inputs):
            raise IndexError(f"Input index {input_index} out of range")
        return self.serialize(subscript_index=input_index) + struct.pack("<I", sighash_type)

    def copy(self) -> Transaction:
        return copy.deepcopy(self)

    @classmethod
    def from_bytes(cls, raw: bytes) -> Transaction:
        """
        Parse a serialized transaction. Witness data of segwit transactions is
        skipped. Spent output scripts are not part of the wire format and are
        left empty.
        """
        try:
            offset = 0
            version = struct.unpack("<I", raw[offset : offset + 4])[0]
            offset += 4

            has_witness = False
            if raw[offset] == 0x00 and raw[offset + 1] == 0x01:
                has_witness = True
                offset += 2

            tx = cls(version=version)

            input_count, offset = read_varint(raw, offset)
            for _ in range(input_count):
                prev_hash = raw[offset : offset + 32]
                offset += 32
                prev_index = struct.unpack("<I", raw[offset : offset + 4])[0]
                offset += 4
                script_len, offset = read_varint(raw, offset)
                script_sig = raw[offset : offset + script_len]
                offset += script_len
                sequence = struct.unpack("<I", raw[offset : offset + 4])[0]
                offset += 4
                tx.inputs.append(
                    TxIn(prev_hash, prev_index, signature=script_sig, sequence=sequence)
                )

            output_count, offset = read_varint(raw, offset)
            for _ in range(output_count):
                amount = struct.unpack("<Q", raw[offset : offset + 8])[0]
                offset += 8
                script_len, offset = read_varint(raw, offset)
                script = raw[offset : offset + script_len]
                offset += script_len
                tx.outputs.append(TxOut(amount, script))

            if has_witness:
                for _ in range(input_count):
                    stack_count, offset = read_varint(raw, offset)
                    for _ in range(stack_count):
                        item_len, offset = read_varint(raw, offset)
                        offset += item_len

            tx.lock_time = struct.unpack("<I", raw[offset : offset + 4])[0]
            offset += 4
        except (IndexError, struct.error) as e:
            raise TransactionParseError(f"Failed to parse transaction: {e}") from e

        if offset != len(raw):
            raise TransactionParseError(f"Trailing data after transaction: {len(raw) - offset} bytes")
        for inp in tx.inputs:
            if len(inp.prev_hash) != 32:
                raise TransactionParseError("Truncated input outpoint")

        return tx
