"""
Persistence and block-height collaborators for the wallet ledger.
"""

from brwallet.backends.base import (
    AddressRecord,
    BlockHeightFeed,
    StaticBlockHeightFeed,
    TransactionRecord,
    UTXORecord,
    WalletStore,
)
from brwallet.backends.json_file import JsonFileStore
from brwallet.backends.memory import MemoryStore

__all__ = [
    "AddressRecord",
    "BlockHeightFeed",
    "JsonFileStore",
    "MemoryStore",
    "StaticBlockHeightFeed",
    "TransactionRecord",
    "UTXORecord",
    "WalletStore",
]
