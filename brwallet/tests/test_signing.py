"""
Tests for transaction signing.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest
from brcore.constants import SIGHASH_ALL
from brcore.transaction import Transaction
from coincurve import PublicKey

from brwallet.wallet.address import (
    address_to_scriptpubkey,
    hash160,
    p2pkh_script,
    parse_script_pushes,
    private_key_to_wif,
)
from brwallet.wallet.builder import TransactionBuilder
from brwallet.wallet.ledger import WalletLedger
from brwallet.wallet.sequence import BIP32Sequence
from brwallet.wallet.signing import (
    TransactionSigner,
    TransactionSigningError,
    compute_sighash_legacy,
    create_p2pkh_script_sig,
    sign_with_private_keys,
)

Fund = Callable[..., Transaction]

SECRET_ONE = (1).to_bytes(32, "big")
G_PUBKEY = bytes.fromhex("0279be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798")
G_SCRIPT = p2pkh_script(hash160(G_PUBKEY))
FOREIGN_ADDRESS = "1BgGZ9tcN4rm9KBzDn7KprQz87SZ26SAMH"


def assert_valid_signature(tx: Transaction, index: int, expected_pubkey: bytes) -> None:
    """Check the scriptSig of an input is <DER sig + SIGHASH_ALL> <pubkey> over its sighash"""
    elements = parse_script_pushes(tx.inputs[index].signature)
    assert elements is not None and len(elements) == 2
    signature, pubkey = elements

    assert pubkey == expected_pubkey
    assert signature[-1] == SIGHASH_ALL
    sighash = compute_sighash_legacy(tx, index)
    assert PublicKey(pubkey).verify(signature[:-1], sighash, hasher=None)


def unsigned_spend(script: bytes = G_SCRIPT) -> Transaction:
    tx = Transaction()
    tx.add_input(b"\x11" * 32, 0, script)
    tx.add_output(50_000, G_SCRIPT)
    return tx


class TestSighash:
    def test_requires_spent_output_script(self) -> None:
        tx = unsigned_spend(script=b"")
        with pytest.raises(TransactionSigningError):
            compute_sighash_legacy(tx, 0)

    def test_index_out_of_range(self) -> None:
        with pytest.raises(TransactionSigningError):
            compute_sighash_legacy(unsigned_spend(), 1)

    def test_independent_of_script_sigs(self) -> None:
        """Test filling scriptSigs does not change what was signed."""
        tx = unsigned_spend()
        before = compute_sighash_legacy(tx, 0)
        tx.inputs[0].signature = b"\x01\x01"
        assert compute_sighash_legacy(tx, 0) == before


class TestSignWithPrivateKeys:
    """Tests for signing with WIF keys."""

    def test_signs_matching_input(self) -> None:
        tx = unsigned_spend()

        assert sign_with_private_keys(tx, [private_key_to_wif(SECRET_ONE)])

        assert tx.is_signed
        assert_valid_signature(tx, 0, G_PUBKEY)

    def test_deterministic_signature(self) -> None:
        first = unsigned_spend()
        second = unsigned_spend()
        sign_with_private_keys(first, [private_key_to_wif(SECRET_ONE)])
        sign_with_private_keys(second, [private_key_to_wif(SECRET_ONE)])

        assert first.to_bytes() == second.to_bytes()

    def test_unmatched_input_is_left_alone(self) -> None:
        tx = unsigned_spend()
        tx.add_input(b"\x22" * 32, 1, address_to_scriptpubkey("1EHNa6Q4Jz2uvNExL497mE43ikXhwF6kZm"))

        assert not sign_with_private_keys(tx, [private_key_to_wif(SECRET_ONE)])
        assert tx.inputs[0].signature
        assert tx.inputs[1].signature == b""

    def test_uncompressed_key(self) -> None:
        """Test an uncompressed WIF signs for the uncompressed key's address."""
        tx = unsigned_spend(script=address_to_scriptpubkey("1EHNa6Q4Jz2uvNExL497mE43ikXhwF6kZm"))

        assert sign_with_private_keys(tx, [private_key_to_wif(SECRET_ONE, compressed=False)])

        uncompressed = PublicKey(G_PUBKEY).format(compressed=False)
        assert_valid_signature(tx, 0, uncompressed)

    def test_invalid_wif(self) -> None:
        with pytest.raises(TransactionSigningError):
            sign_with_private_keys(unsigned_spend(), ["not-a-key"])


def test_script_sig_uses_pushdata1_for_long_data():
    script_sig = create_p2pkh_script_sig(b"\x30" * 80, G_PUBKEY)
    assert script_sig[:2] == b"\x4c\x50"
    assert parse_script_pushes(script_sig) == [b"\x30" * 80, G_PUBKEY]


@pytest.fixture
def funded_ledger(ledger: WalletLedger, fund: Fund) -> WalletLedger:
    """Ledger holding 60_000 on external/0 and 60_000 on internal/0"""
    ledger.register_transaction(fund(ledger.receive_address, 60_000, block_height=100))
    ledger.register_transaction(fund(ledger.change_address, 60_000, block_height=101))
    return ledger


class TestTransactionSigner:
    """Tests for signing wallet transactions with a seed provider."""

    @pytest.mark.asyncio
    async def test_signs_wallet_inputs(
        self,
        funded_ledger: WalletLedger,
        sequence: BIP32Sequence,
        master_public_key: bytes,
        test_seed: bytes,
    ) -> None:
        """Test every wallet input is signed with the key at its coordinates."""

        async def provider(prompt: str, amount: int) -> bytes:
            return test_seed

        tx = TransactionBuilder(funded_ledger).transaction_for(80_000, FOREIGN_ADDRESS)
        signer = TransactionSigner(funded_ledger, sequence, provider)

        assert await signer.sign_transaction(tx)

        assert_valid_signature(tx, 0, sequence.public_key(0, False, master_public_key))
        assert_valid_signature(tx, 1, sequence.public_key(0, True, master_public_key))

    @pytest.mark.asyncio
    async def test_signed_payment_updates_balance(
        self, funded_ledger: WalletLedger, sequence: BIP32Sequence, test_seed: bytes
    ) -> None:
        async def provider(prompt: str, amount: int) -> bytes:
            return test_seed

        tx = TransactionBuilder(funded_ledger).transaction_for(80_000, FOREIGN_ADDRESS)
        await TransactionSigner(funded_ledger, sequence, provider).sign_transaction(tx)

        assert funded_ledger.register_transaction(tx)
        assert funded_ledger.balance == 120_000 - 80_000 - 1_000
        assert funded_ledger.fee_for_transaction(tx) == 1_000

    @pytest.mark.asyncio
    async def test_provider_receives_prompt_and_amount(
        self, funded_ledger: WalletLedger, sequence: BIP32Sequence, test_seed: bytes
    ) -> None:
        """Test the provider is told the net amount leaving the wallet."""
        calls: list[tuple[str, int]] = []

        async def provider(prompt: str, amount: int) -> bytes:
            calls.append((prompt, amount))
            return test_seed

        tx = TransactionBuilder(funded_ledger).transaction_for(80_000, FOREIGN_ADDRESS)
        await TransactionSigner(funded_ledger, sequence, provider).sign_transaction(tx, "pay 80000?")

        assert calls == [("pay 80000?", 81_000)]

    @pytest.mark.asyncio
    async def test_ledger_unlocked_while_awaiting_seed(
        self, funded_ledger: WalletLedger, sequence: BIP32Sequence, test_seed: bytes, fund: Fund
    ) -> None:
        """Test another thread can lock and update the ledger while the seed is awaited."""
        incoming = fund(funded_ledger.receive_address, 50_000)
        lock_free: list[bool] = []
        registered: list[bool] = []

        def try_lock() -> bool:
            if not funded_ledger.lock.acquire(blocking=False):
                return False
            funded_ledger.lock.release()
            return True

        async def provider(prompt: str, amount: int) -> bytes:
            lock_free.append(await asyncio.to_thread(try_lock))
            if lock_free[-1]:
                registered.append(await asyncio.to_thread(funded_ledger.register_transaction, incoming))
            return test_seed

        tx = TransactionBuilder(funded_ledger).transaction_for(80_000, FOREIGN_ADDRESS)

        assert await TransactionSigner(funded_ledger, sequence, provider).sign_transaction(tx)
        assert lock_free == [True]
        assert registered == [True]
        assert funded_ledger.balance == 170_000

    @pytest.mark.asyncio
    async def test_declined(self, funded_ledger: WalletLedger, sequence: BIP32Sequence) -> None:
        """Test a provider returning None leaves the transaction untouched."""

        async def provider(prompt: str, amount: int) -> None:
            return None

        tx = TransactionBuilder(funded_ledger).transaction_for(80_000, FOREIGN_ADDRESS)
        before = tx.copy()

        assert not await TransactionSigner(funded_ledger, sequence, provider).sign_transaction(tx)
        assert tx == before

    @pytest.mark.asyncio
    async def test_cancelled(self, funded_ledger: WalletLedger, sequence: BIP32Sequence) -> None:
        async def provider(prompt: str, amount: int) -> bytes:
            raise asyncio.CancelledError

        tx = TransactionBuilder(funded_ledger).transaction_for(80_000, FOREIGN_ADDRESS)
        before = tx.copy()

        with pytest.raises(asyncio.CancelledError):
            await TransactionSigner(funded_ledger, sequence, provider).sign_transaction(tx)
        assert tx == before

    @pytest.mark.asyncio
    async def test_mutable_seed_is_wiped(
        self, funded_ledger: WalletLedger, sequence: BIP32Sequence, test_seed: bytes
    ) -> None:
        seed = bytearray(test_seed)

        async def provider(prompt: str, amount: int) -> bytearray:
            return seed

        tx = TransactionBuilder(funded_ledger).transaction_for(80_000, FOREIGN_ADDRESS)
        assert await TransactionSigner(funded_ledger, sequence, provider).sign_transaction(tx)

        assert seed == bytearray(len(test_seed))

    @pytest.mark.asyncio
    async def test_foreign_input_stays_unsigned(
        self, funded_ledger: WalletLedger, sequence: BIP32Sequence, test_seed: bytes
    ) -> None:
        async def provider(prompt: str, amount: int) -> bytes:
            return test_seed

        tx = TransactionBuilder(funded_ledger).transaction_for(30_000, FOREIGN_ADDRESS)
        tx.add_input(b"\x33" * 32, 0, G_SCRIPT)

        assert not await TransactionSigner(funded_ledger, sequence, provider).sign_transaction(tx)
        assert tx.inputs[0].signature
        assert tx.inputs[1].signature == b""

    @pytest.mark.asyncio
    async def test_wrong_seed_signs_nothing(
        self, funded_ledger: WalletLedger, sequence: BIP32Sequence
    ) -> None:
        """Test keys from another seed match no input."""

        async def provider(prompt: str, amount: int) -> bytes:
            return b"\xff" * 16

        tx = TransactionBuilder(funded_ledger).transaction_for(80_000, FOREIGN_ADDRESS)

        assert not await TransactionSigner(funded_ledger, sequence, provider).sign_transaction(tx)
        assert all(inp.signature == b"" for inp in tx.inputs)
