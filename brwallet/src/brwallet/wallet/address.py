"""
Bitcoin address and private key encoding utilities.
"""

from __future__ import annotations

import bech32
from brcore.crypto import base58check_decode, base58check_encode, hash160, wipe
from brcore.models import NetworkType, get_network_params

__all__ = [
    "address_from_script_sig",
    "address_to_scriptpubkey",
    "hash160",
    "is_valid_address",
    "p2pkh_script",
    "parse_script_pushes",
    "private_key_to_wif",
    "pubkey_to_p2pkh_address",
    "pubkey_to_p2wpkh_address",
    "scriptpubkey_to_address",
    "wif_to_private_key",
]

OP_0 = 0x00
OP_PUSHDATA1 = 0x4C
OP_PUSHDATA2 = 0x4D
OP_PUSHDATA4 = 0x4E
OP_1 = 0x51
OP_DUP = 0x76
OP_EQUAL = 0x87
OP_EQUALVERIFY = 0x88
OP_HASH160 = 0xA9
OP_CHECKSIG = 0xAC


def p2pkh_script(pubkey_hash: bytes) -> bytes:
    """OP_DUP OP_HASH160 <20-byte-hash> OP_EQUALVERIFY OP_CHECKSIG"""
    return bytes([OP_DUP, OP_HASH160, 0x14]) + pubkey_hash + bytes([OP_EQUALVERIFY, OP_CHECKSIG])


def p2sh_script(script_hash: bytes) -> bytes:
    """OP_HASH160 <20-byte-hash> OP_EQUAL"""
    return bytes([OP_HASH160, 0x14]) + script_hash + bytes([OP_EQUAL])


def pubkey_to_p2pkh_address(pubkey: bytes, network: NetworkType | str = "mainnet") -> str:
    """Base58check P2PKH address of a public key"""
    params = get_network_params(network)
    return base58check_encode(bytes([params.pubkey_address]) + hash160(pubkey))


def pubkey_to_p2wpkh_address(pubkey: bytes, network: NetworkType | str = "mainnet") -> str:
    """
    Convert compressed public key to P2WPKH (native segwit) address.
    BIP173 bech32 encoding.
    """
    if len(pubkey) != 33:
        raise ValueError(f"Invalid compressed pubkey length: {len(pubkey)}")

    hrp = get_network_params(network).bech32_hrp
    return bech32.encode(hrp, 0, hash160(pubkey))


def address_to_scriptpubkey(address: str, network: NetworkType | str = "mainnet") -> bytes:
    """
    Convert an address to its scriptPubKey.

    Supports base58 P2PKH and P2SH addresses and bech32 witness v0 addresses
    (P2WPKH and P2WSH) of the given network.
    """
    params = get_network_params(network)

    if address.lower().startswith(params.bech32_hrp + "1"):
        witver, witprog = bech32.decode(params.bech32_hrp, address)
        if witver is None:
            raise ValueError(f"Invalid bech32 address: {address}")
        return bytes([OP_0 if witver == 0 else OP_1 + witver - 1, len(witprog)]) + bytes(witprog)

    data = base58check_decode(address)
    if data is None or len(data) != 21:
        raise ValueError(f"Unsupported address format: {address}")

    if data[0] == params.pubkey_address:
        return p2pkh_script(data[1:])
    if data[0] == params.script_address:
        return p2sh_script(data[1:])

    raise ValueError(f"Address {address} does not belong to {params.network.value}")


def scriptpubkey_to_address(script: bytes, network: NetworkType | str = "mainnet") -> str | None:
    """Address paid by an output script, or None for non-standard scripts"""
    params = get_network_params(network)

    if (
        len(script) == 25
        and script[0] == OP_DUP
        and script[1] == OP_HASH160
        and script[2] == 0x14
        and script[23] == OP_EQUALVERIFY
        and script[24] == OP_CHECKSIG
    ):
        return base58check_encode(bytes([params.pubkey_address]) + script[3:23])

    if len(script) == 23 and script[0] == OP_HASH160 and script[1] == 0x14 and script[22] == OP_EQUAL:
        return base58check_encode(bytes([params.script_address]) + script[2:22])

    if len(script) in (22, 34) and script[0] == OP_0 and script[1] == len(script) - 2:
        return bech32.encode(params.bech32_hrp, 0, script[2:])

    return None


def parse_script_pushes(script: bytes) -> list[bytes] | None:
    """
    Split a push-only script into its data elements.
    Returns None if the script contains opcodes other than pushes or is truncated.
    """
    elements = []
    offset = 0

    while offset < len(script):
        opcode = script[offset]
        offset += 1

        if opcode == OP_0:
            length = 0
        elif opcode < OP_PUSHDATA1:
            length = opcode
        elif opcode == OP_PUSHDATA1:
            if offset + 1 > len(script):
                return None
            length = script[offset]
            offset += 1
        elif opcode == OP_PUSHDATA2:
            if offset + 2 > len(script):
                return None
            length = int.from_bytes(script[offset : offset + 2], "little")
            offset += 2
        elif opcode == OP_PUSHDATA4:
            if offset + 4 > len(script):
                return None
            length = int.from_bytes(script[offset : offset + 4], "little")
            offset += 4
        else:
            return None

        if offset + length > len(script):
            return None

        elements.append(script[offset : offset + length])
        offset += length

    return elements


def address_from_script_sig(script_sig: bytes, network: NetworkType | str = "mainnet") -> str | None:
    """
    Address spent by an input, recovered from its scriptSig.

    <sig> <pubkey> is pay-to-pubkey-hash; a trailing non-key push is taken as a
    P2SH redeem script. Pay-to-pubkey scriptSigs carry no address.
    """
    elements = parse_script_pushes(script_sig)
    if not elements or len(elements) < 2:
        return None

    params = get_network_params(network)
    last = elements[-1]

    if len(last) in (33, 65):
        return base58check_encode(bytes([params.pubkey_address]) + hash160(last))
    if last:
        return base58check_encode(bytes([params.script_address]) + hash160(last))

    return None


def is_valid_address(address: str, network: NetworkType | str = "mainnet") -> bool:
    try:
        address_to_scriptpubkey(address, network)
    except ValueError:
        return False
    return True


def private_key_to_wif(
    secret: bytes, network: NetworkType | str = "mainnet", compressed: bool = True
) -> str:
    """Wallet import format: version || secret(32) [|| 0x01], base58check"""
    if len(secret) != 32:
        raise ValueError(f"Invalid private key length: {len(secret)}")

    params = get_network_params(network)
    payload = bytearray([params.private_key]) + secret
    if compressed:
        payload += b"\x01"

    try:
        return base58check_encode(payload)
    finally:
        wipe(payload)


def wif_to_private_key(wif: str) -> tuple[bytes, bool] | None:
    """
    Decode a WIF string to (secret, compressed).
    Returns None if the string is not a valid WIF key.
    """
    data = base58check_decode(wif)
    if data is None:
        return None

    if len(data) == 34 and data[33] == 0x01:
        return data[1:33], True
    if len(data) == 33:
        return data[1:33], False

    return None
