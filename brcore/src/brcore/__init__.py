"""
brcore - Core library for brwallet components

Provides shared protocol constants, hashing/encoding primitives and the
transaction structure.
"""

__version__ = "0.1.0"

from brcore.constants import (
    STANDARD_DUST_LIMIT,
    TX_FEE_PER_KB,
    TX_MAX_LOCK_HEIGHT,
    TX_MAX_SIZE,
    TX_MIN_OUTPUT_AMOUNT,
    TX_UNCONFIRMED,
)
from brcore.crypto import (
    base58check_decode,
    base58check_encode,
    hash160,
    hash256,
    sha256,
    wipe,
)
from brcore.models import NetworkParams, NetworkType, get_network_params
from brcore.transaction import (
    Transaction,
    TransactionParseError,
    TxIn,
    TxOut,
    hash_to_txid,
    txid_to_hash,
)

__all__ = [
    "NetworkParams",
    "NetworkType",
    "STANDARD_DUST_LIMIT",
    "TX_FEE_PER_KB",
    "TX_MAX_LOCK_HEIGHT",
    "TX_MAX_SIZE",
    "TX_MIN_OUTPUT_AMOUNT",
    "TX_UNCONFIRMED",
    "Transaction",
    "TransactionParseError",
    "TxIn",
    "TxOut",
    "base58check_decode",
    "base58check_encode",
    "get_network_params",
    "hash160",
    "hash256",
    "hash_to_txid",
    "sha256",
    "txid_to_hash",
    "wipe",
]
