"""
Configuration management using pydantic-settings.
"""

from pathlib import Path
from typing import Literal

from brcore.constants import (
    SEQUENCE_GAP_LIMIT_EXTERNAL,
    SEQUENCE_GAP_LIMIT_INTERNAL,
    TX_FEE_PER_KB,
)
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="BRWALLET_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    network: Literal["mainnet", "testnet", "signet", "regtest"] = "mainnet"

    fee_per_kb: int = Field(TX_FEE_PER_KB, ge=0)
    gap_limit_external: int = Field(SEQUENCE_GAP_LIMIT_EXTERNAL, ge=1)
    gap_limit_internal: int = Field(SEQUENCE_GAP_LIMIT_INTERNAL, ge=1)
    allow_unconfirmed_spends: bool = False

    data_dir: Path = Path.home() / ".brwallet"
    store_file: str = "wallet.json"

    log_level: str = "INFO"

    @property
    def store_path(self) -> Path:
        return self.data_dir / self.store_file


def get_settings() -> Settings:
    return Settings()
