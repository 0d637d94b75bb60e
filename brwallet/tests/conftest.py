"""
Pytest configuration and fixtures for brwallet tests.
"""

from __future__ import annotations

import itertools
from collections.abc import Callable

import pytest
from brcore.constants import TX_UNCONFIRMED, TXIN_SEQUENCE
from brcore.crypto import sha256
from brcore.transaction import Transaction

from brwallet.backends.base import StaticBlockHeightFeed
from brwallet.backends.memory import MemoryStore
from brwallet.wallet.address import address_to_scriptpubkey
from brwallet.wallet.ledger import WalletLedger
from brwallet.wallet.sequence import BIP32Sequence

# BIP32 test vector 1
TEST_SEED_HEX = "000102030405060708090a0b0c0d0e0f"

# P2PKH address of the key with secret exponent 1, never part of the test wallet
FOREIGN_ADDRESS = "1BgGZ9tcN4rm9KBzDn7KprQz87SZ26SAMH"

BLOCK_HEIGHT = 100
TIMESTAMP = 1_600_000_000

# scriptSig placeholder: a single one-byte push, carries no address
PLACEHOLDER_SCRIPT_SIG = b"\x01\x01"


@pytest.fixture
def test_seed() -> bytes:
    """BIP32 test vector 1 seed"""
    return bytes.fromhex(TEST_SEED_HEX)


@pytest.fixture
def sequence() -> BIP32Sequence:
    return BIP32Sequence("mainnet")


@pytest.fixture
def master_public_key(sequence: BIP32Sequence, test_seed: bytes) -> bytes:
    mpk = sequence.master_public_key_from_seed(test_seed)
    assert mpk is not None
    return mpk


@pytest.fixture
def foreign_script() -> bytes:
    return address_to_scriptpubkey(FOREIGN_ADDRESS)


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def block_feed() -> StaticBlockHeightFeed:
    return StaticBlockHeightFeed(BLOCK_HEIGHT)


@pytest.fixture
def ledger(
    master_public_key: bytes,
    sequence: BIP32Sequence,
    store: MemoryStore,
    block_feed: StaticBlockHeightFeed,
) -> WalletLedger:
    """Empty wallet ledger at block height 100"""
    return WalletLedger(master_public_key, sequence, store=store, block_feed=block_feed)


@pytest.fixture
def fund() -> Callable[..., Transaction]:
    """
    Factory for transactions paying the wallet from an unknown outside
    transaction. Each call spends a different outside outpoint.
    """
    counter = itertools.count()

    def _fund(
        address: str,
        amount: int,
        block_height: int = BLOCK_HEIGHT,
        timestamp: int = TIMESTAMP,
        sequence: int = TXIN_SEQUENCE,
        lock_time: int = 0,
        script_sig: bytes = PLACEHOLDER_SCRIPT_SIG,
    ) -> Transaction:
        tx = Transaction(block_height=block_height, timestamp=timestamp, lock_time=lock_time)
        tx.add_input(
            sha256(f"outside-{next(counter)}".encode()),
            0,
            signature=script_sig,
            sequence=sequence,
        )
        tx.add_output(amount, address_to_scriptpubkey(address))
        return tx

    return _fund


@pytest.fixture
def spend() -> Callable[..., Transaction]:
    """
    Factory for transactions spending the given (parent, output index) pairs
    into (amount, script) outputs. Unconfirmed unless told otherwise.
    """

    def _spend(
        inputs: list[tuple[Transaction, int]],
        outputs: list[tuple[int, bytes]],
        block_height: int = TX_UNCONFIRMED,
        timestamp: int = TIMESTAMP,
        sequence: int = TXIN_SEQUENCE,
    ) -> Transaction:
        tx = Transaction(block_height=block_height, timestamp=timestamp)
        for parent, index in inputs:
            tx.add_input(
                parent.tx_hash,
                index,
                parent.outputs[index].script,
                signature=PLACEHOLDER_SCRIPT_SIG,
                sequence=sequence,
            )
        for amount, script in outputs:
            tx.add_output(amount, script)
        return tx

    return _spend
