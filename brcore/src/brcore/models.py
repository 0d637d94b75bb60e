"""
Network parameter models.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class NetworkType(str, Enum):
    MAINNET = "mainnet"
    TESTNET = "testnet"
    SIGNET = "signet"
    REGTEST = "regtest"


class NetworkParams(BaseModel):
    """Version bytes and prefixes used when encoding keys and addresses."""

    model_config = ConfigDict(frozen=True)

    network: NetworkType
    pubkey_address: int = Field(..., ge=0, le=255)
    script_address: int = Field(..., ge=0, le=255)
    private_key: int = Field(..., ge=0, le=255)
    bech32_hrp: str = Field(..., min_length=1)


MAINNET_PARAMS = NetworkParams(
    network=NetworkType.MAINNET,
    pubkey_address=0x00,
    script_address=0x05,
    private_key=0x80,
    bech32_hrp="bc",
)

TESTNET_PARAMS = NetworkParams(
    network=NetworkType.TESTNET,
    pubkey_address=0x6F,
    script_address=0xC4,
    private_key=0xEF,
    bech32_hrp="tb",
)

SIGNET_PARAMS = TESTNET_PARAMS.model_copy(update={"network": NetworkType.SIGNET})

REGTEST_PARAMS = TESTNET_PARAMS.model_copy(
    update={"network": NetworkType.REGTEST, "bech32_hrp": "bcrt"}
)

_PARAMS: dict[NetworkType, NetworkParams] = {
    NetworkType.MAINNET: MAINNET_PARAMS,
    NetworkType.TESTNET: TESTNET_PARAMS,
    NetworkType.SIGNET: SIGNET_PARAMS,
    NetworkType.REGTEST: REGTEST_PARAMS,
}


def get_network_params(network: NetworkType | str) -> NetworkParams:
    """Get encoding parameters for a network (accepts the enum or its value)."""
    return _PARAMS[NetworkType(network)]
