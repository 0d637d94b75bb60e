"""
In-memory record store.
"""

from __future__ import annotations

from brwallet.backends.base import AddressRecord, TransactionRecord, UTXORecord, WalletStore


class MemoryStore(WalletStore):
    def __init__(self) -> None:
        self.addresses: dict[str, AddressRecord] = {}
        self.transactions: dict[str, TransactionRecord] = {}
        self.utxos: list[UTXORecord] = []

    def load_addresses(self) -> list[AddressRecord]:
        return list(self.addresses.values())

    def save_addresses(self, records: list[AddressRecord]) -> None:
        for record in records:
            self.addresses[record.address] = record

    def load_transactions(self) -> list[TransactionRecord]:
        return list(self.transactions.values())

    def save_transaction(self, record: TransactionRecord) -> None:
        self.transactions[record.tx_hash] = record

    def delete_transactions(self, tx_hashes: list[str]) -> None:
        for tx_hash in tx_hashes:
            self.transactions.pop(tx_hash, None)

    def update_transactions(self, tx_hashes: list[str], block_height: int, timestamp: int) -> None:
        for tx_hash in tx_hashes:
            record = self.transactions.get(tx_hash)
            if record is not None:
                self.transactions[tx_hash] = record.model_copy(
                    update={"block_height": block_height, "timestamp": timestamp}
                )

    def load_utxos(self) -> list[UTXORecord]:
        return list(self.utxos)

    def save_utxos(self, records: list[UTXORecord]) -> None:
        self.utxos = list(records)
