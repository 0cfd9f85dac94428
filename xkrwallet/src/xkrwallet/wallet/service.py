"""
Kryptokrona wallet service: ties the daemon, the sub-wallet ledger and the
block synchronizer together behind one object.
"""

from __future__ import annotations

import asyncio

from loguru import logger

from xkrcore.models import Block
from xkrwallet.backends.base import DaemonBackend
from xkrwallet.config import Settings
from xkrwallet.daemon import Daemon
from xkrwallet.errors import NodeDeadError
from xkrwallet.wallet.crypto import AddressCodec, CryptoProvider
from xkrwallet.wallet.models import Transaction, TxInputAndOwner
from xkrwallet.wallet.subwallets import SubWallets
from xkrwallet.wallet.synchronizer import SyncOutcome, WalletSynchronizer


class WalletService:
    """
    Kryptokrona wallet service.

    Sync runs as a background task between start() and stop(). Stopping is
    cooperative: the block being applied is always finished first.
    """

    def __init__(
        self,
        address: str,
        private_view_key: str,
        backend: DaemonBackend,
        crypto: CryptoProvider,
        address_codec: AddressCodec,
        private_spend_key: str | None = None,
        scan_height: int = 0,
        new_wallet: bool = False,
        settings: Settings | None = None,
    ):
        self.settings = settings or Settings()
        self.daemon = Daemon(backend, self.settings, address_codec)
        self.subwallets = SubWallets(
            address,
            scan_height,
            new_wallet,
            private_view_key,
            address_codec,
            crypto,
            private_spend_key,
            self.settings.block_target_time,
        )

        start_timestamp = self.subwallets.get_primary_subwallet().sync_start_timestamp

        self.synchronizer = WalletSynchronizer(
            self.daemon,
            self.subwallets,
            crypto,
            start_timestamp,
            scan_height,
            private_view_key,
            self.settings,
        )

        self._stop_event: asyncio.Event | None = None
        self._sync_task: asyncio.Task[None] | None = None

    async def init(self) -> None:
        """Connect to the daemon and load its heights and fee."""
        await self.daemon.init()
        logger.info(
            f"Wallet ready: wallet height {self.get_height()}, "
            f"network height {self.daemon.network_block_count}"
        )

    @property
    def is_syncing(self) -> bool:
        return self._sync_task is not None and not self._sync_task.done()

    def get_height(self) -> int:
        return self.synchronizer.get_height()

    def get_sync_status(self) -> tuple[int, int, int]:
        """Returns (wallet height, local daemon height, network height)."""
        return (
            self.get_height(),
            self.daemon.local_daemon_block_count,
            self.daemon.network_block_count,
        )

    async def fetch_blocks(self, block_count: int | None = None) -> tuple[list[Block], bool]:
        return await self.synchronizer.fetch_blocks(block_count)

    async def sync_once(self) -> SyncOutcome:
        """Run a single sync cycle in the caller's task."""
        return await self.synchronizer.sync_tick()

    async def start(self) -> None:
        """Start background sync. Does nothing if already running."""
        if self.is_syncing:
            return

        self._stop_event = asyncio.Event()
        self._sync_task = asyncio.create_task(self.synchronizer.run(self._stop_event))
        logger.info("Wallet sync started")

    async def stop(self) -> None:
        """Stop background sync, waiting for the current cycle to finish."""
        if self._sync_task is None or self._stop_event is None:
            return

        self._stop_event.set()
        try:
            await self._sync_task
        except NodeDeadError as e:
            logger.warning(f"Sync had already stopped: {e}")
        finally:
            self._sync_task = None
            self._stop_event = None

        logger.info("Wallet sync stopped")

    async def wait(self) -> None:
        """
        Wait for background sync to end.

        Raises:
            NodeDeadError: The daemon stopped making progress
        """
        if self._sync_task is not None:
            await self._sync_task

    async def reset(self, scan_height: int = 0, scan_timestamp: int = 0) -> None:
        """Forget all transactions and rescan from the given height or timestamp."""
        was_syncing = self.is_syncing
        await self.stop()
        await self.synchronizer.reset(scan_height, scan_timestamp)
        if was_syncing:
            await self.start()

    async def rewind(self, scan_height: int) -> None:
        """Discard everything at or above scan_height and rescan from there."""
        was_syncing = self.is_syncing
        await self.stop()
        await self.synchronizer.rewind(scan_height)
        if was_syncing:
            await self.start()

    def get_balance(self, addresses: list[str] | None = None) -> tuple[int, int]:
        """Returns (unlocked, locked) at the current network height."""
        return self.subwallets.get_balance(self.daemon.network_block_count, addresses)

    def get_spendable_transaction_inputs(
        self, addresses: list[str] | None = None
    ) -> list[TxInputAndOwner]:
        return self.subwallets.get_spendable_transaction_inputs(
            addresses, self.daemon.network_block_count
        )

    def get_fusion_transaction_inputs(
        self, addresses: list[str] | None = None
    ) -> tuple[list[TxInputAndOwner], int, int]:
        return self.subwallets.get_fusion_transaction_inputs(
            addresses, self.settings.mixin, self.daemon.network_block_count
        )

    def get_primary_address(self) -> str:
        return self.subwallets.get_primary_address()

    def get_addresses(self) -> list[str]:
        return self.subwallets.get_addresses()

    async def add_subwallet(self) -> str:
        """Create a sub-wallet that scans from the current network height."""
        return await self.subwallets.add_subwallet(self.daemon.network_block_count)

    async def import_subwallet(self, private_spend_key: str, scan_height: int = 0) -> str:
        """
        Import a sub-wallet from its private spend key.

        If scan_height is below the wallet height the wallet is rewound so
        the new sub-wallet's history is picked up.
        """
        address = await self.subwallets.import_subwallet(private_spend_key, scan_height)
        if scan_height < self.get_height():
            await self.rewind(scan_height)
        return address

    async def import_view_subwallet(self, public_spend_key: str, scan_height: int = 0) -> str:
        address = await self.subwallets.import_view_subwallet(public_spend_key, scan_height)
        if scan_height < self.get_height():
            await self.rewind(scan_height)
        return address

    def delete_subwallet(self, address: str) -> None:
        self.subwallets.delete_subwallet(address)

    def get_transactions(
        self, address: str | None = None, include_fusions: bool = True
    ) -> list[Transaction]:
        return self.subwallets.get_transactions(address, include_fusions)

    def get_unconfirmed_transactions(
        self, address: str | None = None, include_fusions: bool = True
    ) -> list[Transaction]:
        return self.subwallets.get_unconfirmed_transactions(address, include_fusions)

    async def close(self) -> None:
        """Stop sync and close the daemon connection"""
        await self.stop()
        await self.synchronizer.close()
        await self.daemon.close()
