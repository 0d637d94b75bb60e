"""
Collaborator interfaces used by the wallet ledger: persisted records and the
block-height feed.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from brcore.constants import TX_UNCONFIRMED
from brcore.transaction import Transaction
from pydantic import BaseModel, Field


class AddressRecord(BaseModel):
    address: str
    index: int = Field(..., ge=0)
    internal: bool


class TransactionRecord(BaseModel):
    """
    Persisted transaction.

    The wire format carries no spent output scripts, so they are stored
    alongside the raw transaction (one hex entry per input, empty if unknown).
    """

    tx_hash: str
    raw: str
    input_scripts: list[str] = Field(default_factory=list)
    block_height: int = TX_UNCONFIRMED
    timestamp: int = 0

    @classmethod
    def from_transaction(cls, tx: Transaction) -> TransactionRecord:
        return cls(
            tx_hash=tx.tx_hash.hex(),
            raw=tx.to_bytes().hex(),
            input_scripts=[inp.script.hex() for inp in tx.inputs],
            block_height=tx.block_height,
            timestamp=tx.timestamp,
        )

    def to_transaction(self) -> Transaction:
        tx = Transaction.from_bytes(bytes.fromhex(self.raw))
        for inp, script in zip(tx.inputs, self.input_scripts):
            inp.script = bytes.fromhex(script)
        tx.block_height = self.block_height
        tx.timestamp = self.timestamp
        return tx


class UTXORecord(BaseModel):
    tx_hash: str
    index: int = Field(..., ge=0)


class WalletStore(ABC):
    """
    Persisted record store.
    Called synchronously while the ledger lock is held, so implementations
    must not block on network I/O.
    """

    @abstractmethod
    def load_addresses(self) -> list[AddressRecord]:
        """Load all derived addresses"""

    @abstractmethod
    def save_addresses(self, records: list[AddressRecord]) -> None:
        """Add newly derived addresses"""

    @abstractmethod
    def load_transactions(self) -> list[TransactionRecord]:
        """Load all registered transactions"""

    @abstractmethod
    def save_transaction(self, record: TransactionRecord) -> None:
        """Add or replace a registered transaction"""

    @abstractmethod
    def delete_transactions(self, tx_hashes: list[str]) -> None:
        """Delete transactions by hash"""

    @abstractmethod
    def update_transactions(self, tx_hashes: list[str], block_height: int, timestamp: int) -> None:
        """Set block height and timestamp of stored transactions"""

    @abstractmethod
    def load_utxos(self) -> list[UTXORecord]:
        """Load the last saved UTXO set"""

    @abstractmethod
    def save_utxos(self, records: list[UTXORecord]) -> None:
        """Replace the saved UTXO set"""


class BlockHeightFeed(ABC):
    @abstractmethod
    def get_block_height(self) -> int:
        """Get current best block height"""


class StaticBlockHeightFeed(BlockHeightFeed):
    """Block height set by the caller (tests, offline tools)"""

    def __init__(self, height: int = 0):
        self.height = height

    def get_block_height(self) -> int:
        return self.height
