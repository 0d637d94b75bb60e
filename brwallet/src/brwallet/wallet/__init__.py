"""
Key derivation, wallet ledger, transaction building and signing.
"""

from brwallet.wallet.bip32 import HDKey, mnemonic_to_seed
from brwallet.wallet.builder import InsufficientFundsError, TransactionBuilder
from brwallet.wallet.ledger import WalletLedger
from brwallet.wallet.models import UTXO, AddressCoordinates, CoinSelection
from brwallet.wallet.sequence import BIP32Sequence, MasterPublicKey
from brwallet.wallet.service import WalletService
from brwallet.wallet.signing import TransactionSigner, TransactionSigningError

__all__ = [
    "UTXO",
    "AddressCoordinates",
    "BIP32Sequence",
    "CoinSelection",
    "HDKey",
    "InsufficientFundsError",
    "MasterPublicKey",
    "TransactionBuilder",
    "TransactionSigner",
    "TransactionSigningError",
    "WalletLedger",
    "WalletService",
    "mnemonic_to_seed",
]
