"""
Daemon liaison: tracks local and network height, node fee and liveness.

A daemon is considered dead when neither its own height nor the network
height it reports has changed for longer than the configured staleness
window. A single failed request is never fatal on its own.
"""

from __future__ import annotations

import math
import time

from loguru import logger

from xkrcore.models import NodeFee, WalletSyncData, WalletSyncResponse
from xkrwallet.backends.base import DaemonBackend
from xkrwallet.config import Settings
from xkrwallet.errors import DaemonRequestError, NetworkBlockCountError, NodeDeadError
from xkrwallet.wallet.crypto import AddressCodec


class Daemon:
    """
    Liaison between the wallet and one daemon backend.

    Owns the height and liveness state. Staleness is measured with
    time.monotonic so wall clock adjustments do not affect it.
    """

    def __init__(
        self,
        backend: DaemonBackend,
        settings: Settings | None = None,
        address_codec: AddressCodec | None = None,
    ):
        self.backend = backend
        self.settings = settings or Settings()
        self.address_codec = address_codec

        self.local_daemon_block_count = 0
        self.network_block_count = 0
        self.peer_count = 0
        self.last_known_hashrate = 0
        self.node_fee = NodeFee()
        self.connected = True

        # Current /sync request size, adapts to daemon failures
        self.block_count = self.settings.blocks_per_daemon_request

        now = time.monotonic()
        self.last_updated_network_height = now
        self.last_updated_local_height = now

    async def init(self) -> None:
        """
        Probe the daemon and load its height and fee.

        Raises:
            NetworkBlockCountError: The daemon reports a network height of zero
        """
        if not await self.backend.is_reachable():
            logger.warning("Daemon is not reachable, will keep retrying")
        else:
            logger.info("Initializing daemon")

        await self.update_daemon_info()
        await self.update_fee_info()

        if self.network_block_count == 0:
            raise NetworkBlockCountError("Daemon reports a network height of 0")

    def _check_staleness(self) -> None:
        now = time.monotonic()
        network_diff = now - self.last_updated_network_height
        local_diff = now - self.last_updated_local_height

        if (
            network_diff > self.settings.max_last_updated_network_height_interval
            or local_diff > self.settings.max_last_updated_local_height_interval
        ):
            self.connected = False
            raise NodeDeadError(
                f"Daemon height has not changed for {max(network_diff, local_diff):.0f}s"
            )

    async def update_daemon_info(self) -> None:
        """
        Refresh height, peer count and hashrate.

        Raises:
            NodeDeadError: Heights unchanged, or the daemon unreachable, for
                longer than the staleness thresholds
        """
        try:
            info = await self.backend.get_info()
        except DaemonRequestError as e:
            logger.error(f"Failed to update daemon info: {e}")
            try:
                self._check_staleness()
            except NodeDeadError as dead:
                raise dead from e
            return

        network_block_count = max(info.network_height - 1, 0)

        if (
            self.local_daemon_block_count != info.height
            or self.network_block_count != network_block_count
        ):
            now = time.monotonic()
            self.last_updated_network_height = now
            self.last_updated_local_height = now
            self.connected = True
        else:
            self._check_staleness()

        self.local_daemon_block_count = info.height
        self.network_block_count = network_block_count
        self.peer_count = info.peer_count
        self.last_known_hashrate = info.hashrate

        logger.debug(
            f"Daemon info updated: local={self.local_daemon_block_count}, "
            f"network={self.network_block_count}, peers={self.peer_count}"
        )

    async def update_fee_info(self) -> None:
        """Refresh the node fee. Only a positive amount to a valid address replaces the current fee."""
        try:
            fee = await self.backend.get_fee()
        except DaemonRequestError as e:
            logger.error(f"Failed to update fee info: {e}")
            return

        if fee.amount <= 0 or not fee.address:
            logger.debug("Daemon has no node fee configured")
            return

        if self.address_codec is not None and not self.address_codec.is_valid_address(fee.address):
            logger.warning(f"Ignoring node fee with invalid address: {fee.address}")
            return

        self.node_fee = fee
        logger.info(f"Node fee updated: {fee.amount} to {fee.address}")

    async def get_wallet_sync_data(
        self,
        block_hash_checkpoints: list[str],
        start_height: int,
        start_timestamp: int,
    ) -> WalletSyncResponse:
        """
        Fetch the blocks following our checkpoints.

        The request size shrinks to a quarter on every failure and doubles
        back towards blocks_per_daemon_request on every success.

        Raises:
            DaemonRequestError: The request failed
        """
        request = WalletSyncData(
            block_hash_checkpoints=block_hash_checkpoints,
            start_height=start_height,
            start_timestamp=start_timestamp,
            block_count=self.block_count,
            skip_coinbase_transactions=not self.settings.scan_coinbase_transactions,
        )

        try:
            response = await self.backend.get_wallet_sync_data(request)
        except DaemonRequestError as e:
            self.block_count = math.ceil(self.block_count / 4)
            logger.error(f"Failed to get wallet sync data: {e}. Lowering block count to {self.block_count}")
            raise

        # A daemon serving blocks is alive
        now = time.monotonic()
        self.last_updated_network_height = now
        self.last_updated_local_height = now

        if self.block_count != self.settings.blocks_per_daemon_request:
            self.block_count = min(self.settings.blocks_per_daemon_request, self.block_count * 2)

        return response

    async def get_global_indexes_for_range(
        self, start_height: int, end_height: int
    ) -> dict[str, list[int]]:
        """Map transaction hash -> output global indexes, empty on failure."""
        try:
            entries = await self.backend.get_global_indexes_for_range(start_height, end_height)
        except DaemonRequestError as e:
            logger.error(f"Failed to get global indexes: {e}")
            return {}

        return {entry.hash: entry.indexes for entry in entries}

    async def get_cancelled_transactions(self, transaction_hashes: list[str]) -> list[str]:
        """Hashes the daemon does not know about, empty on failure."""
        try:
            return await self.backend.get_transaction_status(transaction_hashes)
        except DaemonRequestError as e:
            logger.error(f"Failed to get transaction status: {e}")
            return []

    async def get_random_outputs_by_amount(
        self, amounts: list[int], requested_outputs: int
    ) -> list[tuple[int, list[tuple[int, str]]]]:
        """Decoys for each amount as (amount, [(global index, key)]), empty on failure."""
        try:
            entries = await self.backend.get_random_outputs(amounts, requested_outputs)
        except DaemonRequestError as e:
            logger.error(f"Failed to get random outputs: {e}")
            return []

        outputs = []
        for entry in entries:
            indexes = [(output.index, output.key) for output in entry.outputs]
            # Sorted so the position of the real output reveals nothing
            outputs.append((entry.amount, sorted(indexes, key=lambda item: item[0])))
        return outputs

    async def send_transaction(self, raw_transaction: str) -> tuple[bool, str | None]:
        """Relay a transaction. Returns (success, error message)."""
        result = await self.backend.send_raw_transaction(raw_transaction)
        if result.success:
            return True, None
        return False, result.error or f"Daemon returned status {result.status or 'unknown'}"

    async def is_reachable(self) -> bool:
        return await self.backend.is_reachable()

    async def close(self) -> None:
        await self.backend.close()
