"""
Wallet data models.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import NamedTuple

from brcore.transaction import hash_to_txid


class UTXO(NamedTuple):
    """Reference to a transaction output (internal-order hash, output index)"""

    tx_hash: bytes
    index: int

    def __str__(self) -> str:
        return f"{hash_to_txid(self.tx_hash)}:{self.index}"


@dataclass(frozen=True)
class AddressCoordinates:
    """Position of a wallet address in the key sequence"""

    internal: bool
    index: int


@dataclass
class CoinSelection:
    """Result of coin selection"""

    utxos: list[UTXO]
    total_value: int
    change_value: int
    fee: int
