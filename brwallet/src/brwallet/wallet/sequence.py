"""
Fixed wallet derivation paths.

Payment keys live at m/0'/{0|1}/n (chain 0 external/receive, 1 internal/change).
The authentication key lives at m/1'/0.

The watch-only root is the account node m/0' exported as a 69-byte blob:
fingerprint(4) || chain_code(32) || compressed_pubkey(33).
"""

from __future__ import annotations

from dataclasses import dataclass

from brcore.crypto import wipe
from brcore.models import NetworkType, get_network_params
from loguru import logger

from brwallet.wallet.address import private_key_to_wif
from brwallet.wallet.bip32 import (
    HARDENED,
    XPRV_VERSION,
    XPUB_VERSION,
    derive_child_private,
    derive_child_public,
    key_fingerprint,
    master_key_from_seed,
    parse_extended_key,
    point_from_secret,
    serialize_extended_key,
)

MASTER_PUBLIC_KEY_LENGTH = 4 + 32 + 33

ACCOUNT_INDEX = 0 | HARDENED
AUTH_ACCOUNT_INDEX = 1 | HARDENED
EXTERNAL_CHAIN = 0
INTERNAL_CHAIN = 1


@dataclass(frozen=True)
class MasterPublicKey:
    """Account-level watch-only root (m/0')"""

    fingerprint: bytes
    chain_code: bytes
    public_key: bytes

    def to_bytes(self) -> bytes:
        return self.fingerprint + self.chain_code + self.public_key

    @classmethod
    def from_bytes(cls, blob: bytes | None) -> MasterPublicKey | None:
        if blob is None or len(blob) < MASTER_PUBLIC_KEY_LENGTH:
            return None
        return cls(bytes(blob[0:4]), bytes(blob[4:36]), bytes(blob[36:69]))


def _chain(internal: bool) -> int:
    return INTERNAL_CHAIN if internal else EXTERNAL_CHAIN


SecretNode = tuple[bytearray, bytearray]


def _master_node(seed: bytes | bytearray | None) -> SecretNode | None:
    master = master_key_from_seed(seed)
    if master is None:
        return None
    return bytearray(master[0]), bytearray(master[1])


def _private_child(node: SecretNode, index: int) -> SecretNode | None:
    child = derive_child_private(node[0], node[1], index)
    if child is None:
        return None
    return bytearray(child[0]), bytearray(child[1])


def _wipe_nodes(*nodes: SecretNode | None) -> None:
    for node in nodes:
        if node is not None:
            wipe(*node)


class BIP32Sequence:
    """
    Maps (internal, index) coordinates to keys for one network.

    Every method returns None instead of raising when the seed or master
    public key is absent or malformed.
    """

    def __init__(self, network: NetworkType | str = NetworkType.MAINNET):
        self.params = get_network_params(network)

    @property
    def network(self) -> NetworkType:
        return self.params.network

    def master_public_key_from_seed(self, seed: bytes | bytearray | None) -> bytes | None:
        master = _master_node(seed)
        if master is None:
            return None

        account = None
        try:
            fingerprint = key_fingerprint(point_from_secret(master[0]))
            account = _private_child(master, ACCOUNT_INDEX)
            if account is None:
                return None

            return MasterPublicKey(
                fingerprint, bytes(account[1]), point_from_secret(account[0])
            ).to_bytes()
        finally:
            _wipe_nodes(master, account)

    def public_key(self, n: int, internal: bool, master_public_key: bytes | None) -> bytes | None:
        mpk = MasterPublicKey.from_bytes(master_public_key)
        if mpk is None:
            return None

        chain = derive_child_public(mpk.public_key, mpk.chain_code, _chain(internal))
        if chain is None:
            return None

        child = derive_child_public(chain[0], chain[1], n)
        return child[0] if child is not None else None

    def _chain_node(
        self, seed: bytes | bytearray | None, internal: bool
    ) -> SecretNode | None:
        """m/0'/chain, to be wiped by the caller"""
        master = _master_node(seed)
        if master is None:
            return None

        account = None
        try:
            account = _private_child(master, ACCOUNT_INDEX)
            if account is None:
                return None
            return _private_child(account, _chain(internal))
        finally:
            _wipe_nodes(master, account)

    def private_keys(
        self, indices: list[int], internal: bool, seed: bytes | bytearray | None
    ) -> list[str] | None:
        """
        WIF private keys for the given chain indexes.

        Returns [] for an empty index list and None without a seed. An index
        whose child is not derivable is left out and logged.
        """
        if seed is None:
            return None
        if not indices:
            return []

        node = self._chain_node(seed, internal)
        if node is None:
            return None

        keys = []
        try:
            for n in indices:
                child = _private_child(node, n)
                if child is None:
                    logger.warning(f"Key {_chain(internal)}/{n} is not derivable, skipping")
                    continue
                try:
                    keys.append(private_key_to_wif(child[0], self.network))
                finally:
                    _wipe_nodes(child)
        finally:
            _wipe_nodes(node)

        logger.debug(f"Derived {len(keys)} private keys on chain {_chain(internal)}")
        return keys

    def private_key(self, n: int, internal: bool, seed: bytes | bytearray | None) -> str | None:
        keys = self.private_keys([n], internal, seed)
        return keys[0] if keys else None

    def _auth_node(self, seed: bytes | bytearray | None) -> SecretNode | None:
        """m/1'/0, to be wiped by the caller"""
        master = _master_node(seed)
        if master is None:
            return None

        account = None
        try:
            account = _private_child(master, AUTH_ACCOUNT_INDEX)
            if account is None:
                return None
            return _private_child(account, 0)
        finally:
            _wipe_nodes(master, account)

    def auth_private_key_from_seed(self, seed: bytes | bytearray | None) -> str | None:
        node = self._auth_node(seed)
        if node is None:
            return None
        try:
            return private_key_to_wif(node[0], self.network)
        finally:
            _wipe_nodes(node)

    def auth_public_key_from_seed(self, seed: bytes | bytearray | None) -> bytes | None:
        node = self._auth_node(seed)
        if node is None:
            return None
        try:
            return point_from_secret(node[0])
        finally:
            _wipe_nodes(node)

    def serialized_master_private_key_from_seed(self, seed: bytes | bytearray | None) -> str | None:
        """xprv of the master node (depth 0)"""
        master = _master_node(seed)
        if master is None:
            return None

        try:
            return serialize_extended_key(0, b"\x00\x00\x00\x00", 0, bytes(master[1]), bytes(master[0]))
        finally:
            _wipe_nodes(master)

    def serialized_master_public_key(self, master_public_key: bytes | None) -> str | None:
        """xpub of the account node m/0' (depth 1, child 0')"""
        mpk = MasterPublicKey.from_bytes(master_public_key)
        if mpk is None:
            return None

        return serialize_extended_key(
            1, mpk.fingerprint, ACCOUNT_INDEX, mpk.chain_code, mpk.public_key
        )

    def parse_master_private_key(self, text: str) -> bytes | None:
        """
        Accepts only a depth 0 xprv. Returns fingerprint || chain_code || key
        where key is the 0x00-padded scalar.
        """
        xkey = parse_extended_key(text, 0, 0, XPRV_VERSION)
        if xkey is None:
            return None
        return xkey.parent_fingerprint + xkey.chain_code + xkey.key_data

    def parse_master_public_key(self, text: str) -> bytes | None:
        """Accepts only the account-level xpub (depth 1, child 0')"""
        xkey = parse_extended_key(text, 1, ACCOUNT_INDEX, XPUB_VERSION)
        if xkey is None:
            return None
        return xkey.parent_fingerprint + xkey.chain_code + xkey.key_data
