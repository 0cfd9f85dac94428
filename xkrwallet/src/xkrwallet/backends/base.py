"""
Base daemon backend interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from xkrcore.models import (
    GlobalIndexes,
    NodeFee,
    NodeInfo,
    RandomOutputs,
    SendTransactionResult,
    WalletSyncData,
    WalletSyncResponse,
)


class DaemonBackend(ABC):
    """
    Abstract daemon backend interface.

    Implementations talk to a single daemon and raise DaemonRequestError on
    any transport, HTTP or payload failure. Liveness and staleness decisions
    are left to the caller.
    """

    @abstractmethod
    async def get_info(self) -> NodeInfo:
        """Get height, network height, peer counts and hashrate"""

    @abstractmethod
    async def get_fee(self) -> NodeFee:
        """Get the node operator fee"""

    @abstractmethod
    async def get_wallet_sync_data(self, request: WalletSyncData) -> WalletSyncResponse:
        """Get blocks following the given checkpoints, height or timestamp"""

    @abstractmethod
    async def get_global_indexes_for_range(
        self, start_height: int, end_height: int
    ) -> list[GlobalIndexes]:
        """Get output global indexes of every transaction in [start_height, end_height)"""

    @abstractmethod
    async def get_transaction_status(self, transaction_hashes: list[str]) -> list[str]:
        """Get the hashes among transaction_hashes the daemon does not know about"""

    @abstractmethod
    async def get_random_outputs(self, amounts: list[int], count: int) -> list[RandomOutputs]:
        """Get `count` random decoy outputs for each amount"""

    @abstractmethod
    async def send_raw_transaction(self, raw_transaction: str) -> SendTransactionResult:
        """Relay a hex encoded transaction"""

    @abstractmethod
    async def is_reachable(self) -> bool:
        """Lightweight probe, True if the info endpoint answers successfully"""

    async def close(self) -> None:
        """Close backend connection"""
        pass
