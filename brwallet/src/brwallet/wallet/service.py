"""
Wallet service wiring the key sequence, ledger, builder and signer.
"""

from __future__ import annotations

from brcore.transaction import Transaction
from loguru import logger

from brwallet.backends.base import BlockHeightFeed, WalletStore
from brwallet.config import Settings, get_settings
from brwallet.wallet.builder import TransactionBuilder
from brwallet.wallet.ledger import WalletLedger
from brwallet.wallet.sequence import BIP32Sequence
from brwallet.wallet.signing import SeedProvider, TransactionSigner


class WalletService:
    """
    Watch-only wallet built from the account-level master public key.

    Spending requires a seed provider, which is only consulted while signing.

    Derivation path: m/0'/{chain}/{index}
    - chain: 0 (external/receive), 1 (internal/change)
    """

    def __init__(
        self,
        master_public_key: bytes,
        settings: Settings | None = None,
        store: WalletStore | None = None,
        block_feed: BlockHeightFeed | None = None,
        seed_provider: SeedProvider | None = None,
    ):
        self.settings = settings or get_settings()
        self.sequence = BIP32Sequence(self.settings.network)
        self.ledger = WalletLedger(
            master_public_key,
            self.sequence,
            store=store,
            block_feed=block_feed,
            gap_limit_external=self.settings.gap_limit_external,
            gap_limit_internal=self.settings.gap_limit_internal,
        )
        self.builder = TransactionBuilder(
            self.ledger,
            fee_per_kb=self.settings.fee_per_kb,
            allow_unconfirmed=self.settings.allow_unconfirmed_spends,
        )
        self.signer = (
            TransactionSigner(self.ledger, self.sequence, seed_provider)
            if seed_provider is not None
            else None
        )

        logger.info(f"Initialized {self.settings.network} wallet")

    @classmethod
    def from_xpub(
        cls,
        xpub: str,
        settings: Settings | None = None,
        store: WalletStore | None = None,
        block_feed: BlockHeightFeed | None = None,
        seed_provider: SeedProvider | None = None,
    ) -> WalletService:
        """Open a wallet from the account-level xpub (m/0')"""
        settings = settings or get_settings()
        master_public_key = BIP32Sequence(settings.network).parse_master_public_key(xpub)
        if master_public_key is None:
            raise ValueError("Invalid account xpub")
        return cls(master_public_key, settings, store, block_feed, seed_provider)

    @property
    def balance(self) -> int:
        return self.ledger.balance

    @property
    def receive_address(self) -> str | None:
        return self.ledger.receive_address

    @property
    def change_address(self) -> str | None:
        return self.ledger.change_address

    @property
    def xpub(self) -> str | None:
        return self.sequence.serialized_master_public_key(self.ledger.master_public_key)

    async def create_payment(
        self, amount: int, address: str, prompt: str = ""
    ) -> Transaction | None:
        """
        Build, sign and register a payment.
        Returns None if signing was declined or left inputs unsigned.
        """
        if self.signer is None:
            raise ValueError("Watch-only wallet cannot sign")

        tx = self.builder.transaction_for(amount, address)
        if not await self.signer.sign_transaction(tx, prompt):
            logger.warning("Payment not fully signed, discarding")
            return None

        self.ledger.register_transaction(tx)
        return tx
