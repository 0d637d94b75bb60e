"""
Record store backed by a single JSON document.

Every change rewrites the whole document through a temporary file followed by
os.replace, so a crash leaves either the old or the new document on disk.
"""

from __future__ import annotations

import os
from pathlib import Path

from loguru import logger
from pydantic import BaseModel, Field

from brwallet.backends.base import AddressRecord, TransactionRecord, UTXORecord, WalletStore


class WalletDocument(BaseModel):
    addresses: list[AddressRecord] = Field(default_factory=list)
    transactions: dict[str, TransactionRecord] = Field(default_factory=dict)
    utxos: list[UTXORecord] = Field(default_factory=list)


class JsonFileStore(WalletStore):
    def __init__(self, path: Path | str):
        self.path = Path(path)

        if self.path.exists():
            self.document = WalletDocument.model_validate_json(self.path.read_text(encoding="utf-8"))
            logger.info(
                f"Loaded wallet store {self.path}: {len(self.document.addresses)} addresses, "
                f"{len(self.document.transactions)} transactions"
            )
        else:
            self.document = WalletDocument()

    def _write(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.path.with_name(self.path.name + ".tmp")

        with open(temp_path, "w", encoding="utf-8") as f:
            f.write(self.document.model_dump_json(indent=2))
            f.flush()
            os.fsync(f.fileno())

        os.replace(temp_path, self.path)

    def load_addresses(self) -> list[AddressRecord]:
        return list(self.document.addresses)

    def save_addresses(self, records: list[AddressRecord]) -> None:
        known = {record.address for record in self.document.addresses}
        self.document.addresses.extend(r for r in records if r.address not in known)
        self._write()

    def load_transactions(self) -> list[TransactionRecord]:
        return list(self.document.transactions.values())

    def save_transaction(self, record: TransactionRecord) -> None:
        self.document.transactions[record.tx_hash] = record
        self._write()

    def delete_transactions(self, tx_hashes: list[str]) -> None:
        for tx_hash in tx_hashes:
            self.document.transactions.pop(tx_hash, None)
        self._write()

    def update_transactions(self, tx_hashes: list[str], block_height: int, timestamp: int) -> None:
        for tx_hash in tx_hashes:
            record = self.document.transactions.get(tx_hash)
            if record is not None:
                record.block_height = block_height
                record.timestamp = timestamp
        self._write()

    def load_utxos(self) -> list[UTXORecord]:
        return list(self.document.utxos)

    def save_utxos(self, records: list[UTXORecord]) -> None:
        self.document.utxos = list(records)
        self._write()
