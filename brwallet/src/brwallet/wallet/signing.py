"""
Bitcoin transaction signing for legacy P2PKH inputs.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from brcore.constants import SIGHASH_ALL
from brcore.crypto import hash256, wipe
from brcore.transaction import Transaction
from coincurve import PrivateKey
from loguru import logger

from brwallet.wallet.address import hash160, p2pkh_script, wif_to_private_key
from brwallet.wallet.ledger import WalletLedger
from brwallet.wallet.sequence import BIP32Sequence

SeedProvider = Callable[[str, int], Awaitable[bytes | bytearray | None]]


class TransactionSigningError(Exception):
    pass


def compute_sighash_legacy(tx: Transaction, input_index: int, sighash_type: int = SIGHASH_ALL) -> bytes:
    """
    Legacy signature hash: hash256 of the transaction with every scriptSig
    emptied except the signed input's, which holds the spent output script,
    followed by the 4-byte hash type.
    """
    try:
        if not tx.inputs[input_index].script:
            raise TransactionSigningError(f"Input {input_index} has no spent output script")
        return hash256(tx.sighash_preimage(input_index, sighash_type))
    except IndexError as e:
        raise TransactionSigningError(f"Failed to compute sighash: {e}") from e


def sign_p2pkh_input(
    tx: Transaction,
    input_index: int,
    private_key: PrivateKey,
    sighash_type: int = SIGHASH_ALL,
) -> bytes:
    """Sign a P2PKH input using coincurve.

    Args:
        tx: The transaction to sign
        input_index: Index of the input to sign
        private_key: coincurve PrivateKey instance
        sighash_type: Sighash type (default SIGHASH_ALL = 1)

    Returns:
        DER-encoded signature with sighash type byte appended
    """
    sighash = compute_sighash_legacy(tx, input_index, sighash_type)

    # sighash is already hash256, so coincurve must not hash it again
    signature = private_key.sign(sighash, hasher=None)

    return signature + bytes([sighash_type])


def _push(data: bytes) -> bytes:
    if len(data) < 0x4C:
        return bytes([len(data)]) + data
    return b"\x4c" + bytes([len(data)]) + data


def create_p2pkh_script_sig(signature: bytes, pubkey_bytes: bytes) -> bytes:
    """<sig> <pubkey>"""
    return _push(signature) + _push(pubkey_bytes)


def sign_with_private_keys(tx: Transaction, private_keys: list[str]) -> bool:
    """
    Sign every input whose spent output script pays one of the given WIF keys.
    Inputs without a matching key are left as they are.

    Returns True if the transaction is fully signed afterwards.
    """
    keys: dict[bytes, tuple[PrivateKey, bytes]] = {}
    for wif in private_keys:
        decoded = wif_to_private_key(wif)
        if decoded is None:
            raise TransactionSigningError("Invalid WIF private key")

        secret, compressed = decoded
        private_key = PrivateKey(secret)
        pubkey = private_key.public_key.format(compressed=compressed)
        keys[p2pkh_script(hash160(pubkey))] = (private_key, pubkey)

    # compute all signatures before touching the transaction
    script_sigs: dict[int, bytes] = {}
    for i, inp in enumerate(tx.inputs):
        match = keys.get(inp.script)
        if match is None:
            continue

        private_key, pubkey = match
        signature = sign_p2pkh_input(tx, i, private_key)
        script_sigs[i] = create_p2pkh_script_sig(signature, pubkey)

    for i, script_sig in script_sigs.items():
        tx.inputs[i].signature = script_sig

    return tx.is_signed


class TransactionSigner:
    """
    Signs wallet inputs with keys re-derived from the seed.

    The seed provider is awaited without holding the ledger lock. If it
    returns None (the user declined) or is cancelled, the transaction is left
    untouched.
    """

    def __init__(self, ledger: WalletLedger, sequence: BIP32Sequence, seed_provider: SeedProvider):
        self.ledger = ledger
        self.sequence = sequence
        self.seed_provider = seed_provider

    async def sign_transaction(self, tx: Transaction, prompt: str = "") -> bool:
        working = tx.copy()
        internal_indexes: list[int] = []
        external_indexes: list[int] = []

        with self.ledger.lock:
            amount = self.ledger.amount_sent_by_transaction(tx) - self.ledger.amount_received_from_transaction(tx)

            for inp in working.inputs:
                if not inp.script:
                    prev = self.ledger.transaction_for_hash(inp.prev_hash)
                    if prev is not None and inp.prev_index < len(prev.outputs):
                        inp.script = prev.outputs[inp.prev_index].script

                address = self.ledger.input_address(inp)
                coordinates = self.ledger.address_coordinates(address) if address else None
                if coordinates is None:
                    continue

                if coordinates.internal:
                    internal_indexes.append(coordinates.index)
                else:
                    external_indexes.append(coordinates.index)

        seed = await self.seed_provider(prompt, max(amount, 0))
        if seed is None:
            logger.warning("Signing cancelled: no seed provided")
            return False

        try:
            private_keys = self.sequence.private_keys(external_indexes, False, seed) or []
            private_keys += self.sequence.private_keys(internal_indexes, True, seed) or []
        finally:
            if isinstance(seed, bytearray):
                wipe(seed)

        sign_with_private_keys(working, private_keys)

        signed = 0
        for original, inp in zip(tx.inputs, working.inputs):
            if inp.signature and inp.signature != original.signature:
                original.signature = inp.signature
                signed += 1

        logger.info(f"Signed {signed} of {len(tx.inputs)} inputs of {working.txid}")
        return tx.is_signed
