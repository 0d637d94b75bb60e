"""
Hashing and encoding primitives shared by the wallet components.
"""

from __future__ import annotations

import hashlib
import hmac

import base58


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def hash256(data: bytes) -> bytes:
    """SHA256(SHA256(data))"""
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def hash160(data: bytes) -> bytes:
    """RIPEMD160(SHA256(data))"""
    h = hashlib.new("ripemd160")
    h.update(hashlib.sha256(data).digest())
    return h.digest()


def hmac_sha512(key: bytes, data: bytes) -> bytearray:
    """
    HMAC-SHA512 returned as a mutable buffer so callers can wipe it
    once the key material has been consumed.
    """
    return bytearray(hmac.new(key, data, hashlib.sha512).digest())


def wipe(*buffers: bytearray | None) -> None:
    """
    Overwrite mutable buffers with zeros.

    Immutable bytes cannot be cleared from Python, so secrets that must be
    wiped are kept in bytearrays for as long as possible.
    """
    for buf in buffers:
        if isinstance(buf, bytearray):
            buf[:] = bytes(len(buf))


def base58check_encode(payload: bytes) -> str:
    """Base58 encode payload followed by the first 4 bytes of its hash256."""
    return base58.b58encode_check(bytes(payload)).decode("ascii")


def base58check_decode(text: str) -> bytes | None:
    """
    Decode a base58check string.

    Returns:
        The payload without checksum, or None if the string is not valid
        base58 or the checksum does not match
    """
    if not text:
        return None
    try:
        return base58.b58decode_check(text)
    except ValueError:
        return None
