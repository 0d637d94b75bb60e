"""
BIP32 HD key derivation.
https://github.com/bitcoin/bips/blob/master/bip-0032.mediawiki

The module level functions are pure and operate on raw 32-byte secrets,
33-byte compressed public keys and 32-byte chain codes. Anything that cannot
be derived (absent seed, malformed input, hardened public derivation, or the
invalid-child case) is reported as None rather than raised.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field

from brcore.crypto import base58check_decode, base58check_encode, hash160, hmac_sha512, wipe
from coincurve import PrivateKey, PublicKey

# secp256k1 curve order
SECP256K1_N = int("FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141", 16)

HARDENED = 0x80000000
BIP32_SEED_KEY = b"Bitcoin seed"

XPRV_VERSION = bytes.fromhex("0488ADE4")
XPUB_VERSION = bytes.fromhex("0488B21E")

EXTENDED_KEY_LENGTH = 78
CHAIN_CODE_LENGTH = 32
SECRET_LENGTH = 32
PUBLIC_KEY_LENGTH = 33


def is_hardened(index: int) -> bool:
    return bool(index & HARDENED)


def _ser32(index: int) -> bytes:
    return struct.pack(">I", index)


def _valid_index(index: int) -> bool:
    return 0 <= index <= 0xFFFFFFFF


def _valid_secret(secret: bytes | bytearray) -> bool:
    if len(secret) != SECRET_LENGTH:
        return False
    return 0 < int.from_bytes(secret, "big") < SECP256K1_N


def point_from_secret(secret: bytes | bytearray) -> bytes:
    """serP(point(k)): compressed public key for a private scalar."""
    return PrivateKey(bytes(secret)).public_key.format(compressed=True)


def key_fingerprint(public_key: bytes) -> bytes:
    """First 4 bytes of hash160 of a compressed public key."""
    return hash160(public_key)[:4]


def master_key_from_seed(seed: bytes | bytearray | None) -> tuple[bytes, bytes] | None:
    """
    Master secret and chain code from a seed.

    I = HMAC-SHA512(Key = "Bitcoin seed", Data = seed); IL is the secret, IR
    the chain code.
    """
    if seed is None:
        return None

    i = hmac_sha512(BIP32_SEED_KEY, bytes(seed))
    try:
        if not _valid_secret(i[:32]):
            return None
        return bytes(i[:32]), bytes(i[32:])
    finally:
        wipe(i)


def derive_child_private(
    secret: bytes | bytearray, chain_code: bytes | bytearray, index: int
) -> tuple[bytes, bytes] | None:
    """
    CKDpriv((kpar, cpar), i) -> (ki, ci)

    Hardened children hash 0x00 || ser256(kpar) || ser32(i), normal children
    hash serP(point(kpar)) || ser32(i), keyed by the parent chain code.
    ki = parse256(IL) + kpar (mod n), ci = IR.

    Returns None when parse256(IL) >= n or ki == 0 (probability below 2^-127).
    No retry with the next index is attempted.
    """
    if (
        not _valid_secret(secret)
        or len(chain_code) != CHAIN_CODE_LENGTH
        or not _valid_index(index)
    ):
        return None

    if is_hardened(index):
        data = bytearray(b"\x00") + secret + _ser32(index)
    else:
        data = bytearray(point_from_secret(secret)) + _ser32(index)

    i = hmac_sha512(bytes(chain_code), bytes(data))
    try:
        offset_int = int.from_bytes(i[:32], "big")
        if offset_int >= SECP256K1_N:
            return None

        child_int = (offset_int + int.from_bytes(secret, "big")) % SECP256K1_N
        if child_int == 0:
            return None

        return child_int.to_bytes(32, "big"), bytes(i[32:])
    finally:
        wipe(data, i)


def derive_child_public(
    public_key: bytes, chain_code: bytes, index: int
) -> tuple[bytes, bytes] | None:
    """
    CKDpub((Kpar, cpar), i) -> (Ki, ci)

    Only defined for non-hardened children: a hardened index returns None.
    I = HMAC-SHA512(Key = cpar, Data = serP(Kpar) || ser32(i)),
    Ki = point(parse256(IL)) + Kpar, ci = IR.
    """
    if is_hardened(index) or not _valid_index(index):
        return None
    if len(public_key) != PUBLIC_KEY_LENGTH or len(chain_code) != CHAIN_CODE_LENGTH:
        return None

    i = hmac_sha512(bytes(chain_code), bytes(public_key) + _ser32(index))
    try:
        tweak = bytes(i[:32])
        if int.from_bytes(tweak, "big") >= SECP256K1_N:
            return None

        try:
            child = PublicKey(bytes(public_key)).add(tweak)
        except ValueError:
            # unparseable parent point, or the sum is the point at infinity
            return None

        return child.format(compressed=True), bytes(i[32:])
    finally:
        wipe(i)


def serialize_extended_key(
    depth: int,
    parent_fingerprint: bytes,
    child_index: int,
    chain_code: bytes,
    key_bytes: bytes,
) -> str:
    """
    Serialize to the 78-byte xprv/xpub format, base58check encoded.

    key_bytes shorter than 33 bytes is a private scalar (serialized as
    0x00 || scalar under the xprv version), otherwise a compressed point
    under the xpub version.
    """
    if not 0 <= depth <= 0xFF:
        raise ValueError(f"Invalid depth: {depth}")
    if len(parent_fingerprint) != 4:
        raise ValueError("Parent fingerprint must be 4 bytes")
    if len(chain_code) != CHAIN_CODE_LENGTH:
        raise ValueError("Chain code must be 32 bytes")
    if len(key_bytes) not in (SECRET_LENGTH, PUBLIC_KEY_LENGTH):
        raise ValueError(f"Invalid key length: {len(key_bytes)}")

    private = len(key_bytes) < PUBLIC_KEY_LENGTH

    data = bytearray(XPRV_VERSION if private else XPUB_VERSION)
    data += bytes([depth])
    data += parent_fingerprint
    data += _ser32(child_index)
    data += chain_code
    if private:
        data += b"\x00"
    data += key_bytes

    try:
        return base58check_encode(data)
    finally:
        wipe(data)


@dataclass(frozen=True)
class ExtendedKey:
    """Decoded xprv/xpub fields. key_data is always 33 bytes."""

    version: bytes
    depth: int
    parent_fingerprint: bytes
    child_index: int
    chain_code: bytes
    key_data: bytes = field(repr=False)

    @property
    def is_private(self) -> bool:
        return self.version == XPRV_VERSION

    @property
    def secret(self) -> bytes | None:
        return self.key_data[1:] if self.is_private else None

    @property
    def public_key(self) -> bytes:
        if self.is_private:
            return point_from_secret(self.key_data[1:])
        return self.key_data

    def serialize(self) -> str:
        key = self.key_data[1:] if self.is_private else self.key_data
        return serialize_extended_key(
            self.depth, self.parent_fingerprint, self.child_index, self.chain_code, key
        )


def parse_extended_key(
    text: str,
    expected_depth: int | None,
    expected_child_index: int | None,
    expected_version: bytes,
) -> ExtendedKey | None:
    """
    Decode an xprv/xpub string, accepting it only if it is exactly 78 bytes,
    carries expected_version and sits at the expected depth and child index
    (None accepts any value). Key material must be a valid scalar or point.
    """
    data = base58check_decode(text)
    if data is None or len(data) != EXTENDED_KEY_LENGTH:
        return None

    version = data[0:4]
    depth = data[4]
    parent_fingerprint = data[5:9]
    child_index = struct.unpack(">I", data[9:13])[0]
    chain_code = data[13:45]
    key_data = data[45:78]

    if version != expected_version:
        return None
    if expected_depth is not None and depth != expected_depth:
        return None
    if expected_child_index is not None and child_index != expected_child_index:
        return None

    if version == XPRV_VERSION:
        if key_data[0] != 0 or not _valid_secret(key_data[1:]):
            return None
    else:
        try:
            PublicKey(key_data)
        except ValueError:
            return None

    return ExtendedKey(version, depth, parent_fingerprint, child_index, chain_code, key_data)


def parse_path(path: str) -> list[int]:
    """
    Parse path notation (e.g., "m/0'/1/2h") into child indexes.
    ' or h indicates hardened derivation.
    """
    if not path.startswith("m"):
        raise ValueError("Path must start with 'm'")

    indexes = []
    for part in path.split("/")[1:]:
        if not part:
            continue

        hardened = part.endswith("'") or part.endswith("h")
        index = int(part.rstrip("'h"))
        if not 0 <= index < HARDENED:
            raise ValueError(f"Path component out of range: {part}")

        indexes.append(index + HARDENED if hardened else index)

    return indexes


class HDKey:
    """
    Hierarchical Deterministic Key for Bitcoin.
    Wraps the BIP32 functions above; a node without a private key is
    watch-only and can only derive non-hardened children.
    """

    def __init__(
        self,
        private_key: PrivateKey | None,
        chain_code: bytes,
        depth: int = 0,
        parent_fingerprint: bytes = b"\x00\x00\x00\x00",
        child_index: int = 0,
        public_key: PublicKey | None = None,
    ):
        if private_key is None and public_key is None:
            raise ValueError("Either a private or a public key is required")

        self._private_key = private_key
        self._public_key = private_key.public_key if private_key is not None else public_key
        self.chain_code = chain_code
        self.depth = depth
        self.parent_fingerprint = parent_fingerprint
        self.child_index = child_index

    @property
    def private_key(self) -> PrivateKey | None:
        """Return the coincurve PrivateKey instance (None when watch-only)."""
        return self._private_key

    @property
    def public_key(self) -> PublicKey:
        """Return the coincurve PublicKey instance."""
        return self._public_key

    @property
    def is_private(self) -> bool:
        return self._private_key is not None

    @property
    def identifier(self) -> bytes:
        return hash160(self.get_public_key_bytes())

    @property
    def fingerprint(self) -> bytes:
        return self.identifier[:4]

    @classmethod
    def from_seed(cls, seed: bytes) -> HDKey:
        """Create master HD key from seed"""
        master = master_key_from_seed(seed)
        if master is None:
            raise ValueError("Seed does not produce a valid master key")

        secret, chain_code = master
        return cls(PrivateKey(secret), chain_code, depth=0)

    @classmethod
    def from_extended_key(cls, text: str) -> HDKey:
        """Create an HD key from an xprv or xpub string at any depth"""
        for version in (XPRV_VERSION, XPUB_VERSION):
            xkey = parse_extended_key(text, None, None, version)
            if xkey is None:
                continue

            if xkey.is_private:
                return cls(
                    PrivateKey(xkey.secret),
                    xkey.chain_code,
                    xkey.depth,
                    xkey.parent_fingerprint,
                    xkey.child_index,
                )
            return cls(
                None,
                xkey.chain_code,
                xkey.depth,
                xkey.parent_fingerprint,
                xkey.child_index,
                public_key=PublicKey(xkey.key_data),
            )

        raise ValueError("Invalid extended key")

    def derive(self, path: str) -> HDKey:
        """
        Derive child key from path notation (e.g., "m/0'/1/5")
        ' indicates hardened derivation
        """
        key = self
        for index in parse_path(path):
            key = key.child(index)
        return key

    def child(self, index: int) -> HDKey:
        """Derive a child key at the given index"""
        if self._private_key is not None:
            result = derive_child_private(self._private_key.secret, self.chain_code, index)
            if result is None:
                raise ValueError(f"Invalid child key at index {index}")

            secret, chain_code = result
            return HDKey(
                PrivateKey(secret),
                chain_code,
                depth=self.depth + 1,
                parent_fingerprint=self.fingerprint,
                child_index=index,
            )

        if is_hardened(index):
            raise ValueError("Cannot derive a hardened child from a public key")

        result = derive_child_public(self.get_public_key_bytes(), self.chain_code, index)
        if result is None:
            raise ValueError(f"Invalid child key at index {index}")

        public_key, chain_code = result
        return HDKey(
            None,
            chain_code,
            depth=self.depth + 1,
            parent_fingerprint=self.fingerprint,
            child_index=index,
            public_key=PublicKey(public_key),
        )

    def neuter(self) -> HDKey:
        """Public-only copy of this node"""
        return HDKey(
            None,
            self.chain_code,
            self.depth,
            self.parent_fingerprint,
            self.child_index,
            public_key=self._public_key,
        )

    def get_private_key_bytes(self) -> bytes:
        """Get private key as 32 bytes"""
        if self._private_key is None:
            raise ValueError("Watch-only key has no private key")
        return self._private_key.secret

    def get_public_key_bytes(self, compressed: bool = True) -> bytes:
        """Get public key bytes"""
        return self._public_key.format(compressed=compressed)

    def to_extended_private(self) -> str:
        return serialize_extended_key(
            self.depth,
            self.parent_fingerprint,
            self.child_index,
            self.chain_code,
            self.get_private_key_bytes(),
        )

    def to_extended_public(self) -> str:
        return serialize_extended_key(
            self.depth,
            self.parent_fingerprint,
            self.child_index,
            self.chain_code,
            self.get_public_key_bytes(),
        )

    def get_address(self, network: str = "mainnet") -> str:
        """Get P2PKH address for this key"""
        from brwallet.wallet.address import pubkey_to_p2pkh_address

        return pubkey_to_p2pkh_address(self.get_public_key_bytes(), network)

    def sign(self, message: bytes) -> bytes:
        """Sign a message with this key (uses SHA256 hashing)."""
        if self._private_key is None:
            raise ValueError("Watch-only key cannot sign")
        return self._private_key.sign(message)


def mnemonic_to_seed(mnemonic: str, passphrase: str = "") -> bytes:
    """
    Convert BIP39 mnemonic to seed (PBKDF2-HMAC-SHA512, 2048 rounds).
    The mnemonic checksum is not validated.
    """
    from hashlib import pbkdf2_hmac

    mnemonic_bytes = mnemonic.encode("utf-8")
    salt = ("mnemonic" + passphrase).encode("utf-8")

    seed = pbkdf2_hmac("sha512", mnemonic_bytes, salt, 2048, dklen=64)
    return seed
