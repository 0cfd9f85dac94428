"""
Configuration management for the wallet synchronizer.
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from xkrcore.constants import (
    BLOCK_TARGET_TIME,
    DECIMAL_PLACES,
    FEE_PER_BYTE_CHUNK_SIZE,
    MINIMUM_FEE_PER_BYTE,
    TICKER,
)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False
    )

    daemon_host: str = "127.0.0.1"
    daemon_port: int = Field(11898, ge=1, le=65535)
    daemon_ssl: bool = False
    request_timeout: float = 10.0

    block_target_time: int = Field(BLOCK_TARGET_TIME, ge=1)

    # Blocks handed to the ledger per sync tick
    blocks_per_tick: int = Field(1, ge=1)
    # Upper bound of the adaptive /sync request size
    blocks_per_daemon_request: int = Field(100, ge=1)
    # Background downloads stop once this many blocks are waiting to be processed
    block_store_limit: int = Field(500, ge=0)

    # Staleness thresholds (seconds)
    max_last_fetched_block_interval: int = 60 * 3
    max_last_updated_network_height_interval: int = 60 * 3
    max_last_updated_local_height_interval: int = 60 * 3

    scan_coinbase_transactions: bool = False

    minimum_fee_per_byte: float = MINIMUM_FEE_PER_BYTE
    fee_per_byte_chunk_size: int = FEE_PER_BYTE_CHUNK_SIZE
    mixin: int = Field(3, ge=0)

    decimal_places: int = DECIMAL_PLACES
    ticker: str = TICKER

    # Check locked transactions every this many processed blocks
    locked_transactions_check_interval: int = Field(30, ge=1)
    # Seconds between daemon info refreshes in the sync loop
    daemon_update_interval: float = 10.0
    # Seconds to sleep when the daemon is busy or we are synced
    sync_sleep_interval: float = 1.0

    log_level: str = "INFO"

    @property
    def daemon_url(self) -> str:
        scheme = "https" if self.daemon_ssl else "http"
        return f"{scheme}://{self.daemon_host}:{self.daemon_port}"


def get_settings() -> Settings:
    return Settings()
