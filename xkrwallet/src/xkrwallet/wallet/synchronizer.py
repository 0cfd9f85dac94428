"""
Block synchronization: pulls blocks from the daemon, finds our outputs and
spends, and applies them to the sub-wallet ledger one block at a time.

Only daemon requests and crypto calls suspend. Everything a block changes
in the ledger is computed first and then written in one locked step, so a
cancelled or failed cycle leaves the ledger at the previous block.
"""

from __future__ import annotations

import asyncio
import time
from enum import Enum

from loguru import logger

from xkrcore.constants import (
    CANCELLED_TRANSACTION_MAX_FAIL_COUNT,
    LAST_KNOWN_BLOCK_HASHES_SIZE,
    PRUNE_SPENT_INPUTS_INTERVAL,
)
from xkrcore.models import Block, RawCoinbaseTransaction, RawTransaction, SynchronizationStatus
from xkrwallet.config import Settings
from xkrwallet.daemon import Daemon
from xkrwallet.errors import DaemonRequestError, NodeDeadError, SubWalletNotFoundError
from xkrwallet.wallet.crypto import CryptoProvider
from xkrwallet.wallet.models import Transaction, TransactionData, TransactionInput
from xkrwallet.wallet.subwallets import SubWallets


class SyncState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    APPLYING = "applying"
    WAITING_BACKOFF = "waiting_backoff"
    DEAD = "dead"


class SyncOutcome(str, Enum):
    """Result of one sync tick."""

    PROCESSED = "processed"  # At least one block applied
    IDLE = "idle"  # Nothing to apply, a fetch is already in flight
    BACKOFF = "backoff"  # Daemon busy, behind, failing or we are synced
    DEAD = "dead"  # No blocks for longer than max_last_fetched_block_interval


class WalletSynchronizer:
    """
    Drives synchronization of one wallet against one daemon.

    At most one daemon sync request is in flight: a second caller of
    download_blocks sees the fetch guard held and returns immediately.
    reset and rewind wait for the current cycle and any in-flight request.
    """

    def __init__(
        self,
        daemon: Daemon,
        subwallets: SubWallets,
        crypto: CryptoProvider,
        start_timestamp: int,
        start_height: int,
        private_view_key: str,
        settings: Settings | None = None,
    ):
        self.daemon = daemon
        self.subwallets = subwallets
        self.crypto = crypto
        self.start_timestamp = start_timestamp
        self.start_height = start_height
        self.private_view_key = private_view_key
        self.settings = settings or daemon.settings

        self.synchronization_status = SynchronizationStatus()
        self.stored_blocks: list[Block] = []
        self.cancelled_transactions_fail_count: dict[str, int] = {}
        self.last_downloaded_blocks = time.monotonic()
        self.state = SyncState.IDLE

        # Single slot guard for daemon sync requests
        self._fetch_lock = asyncio.Lock()
        # Held for a whole fetch-and-apply cycle
        self._cycle_lock = asyncio.Lock()
        self._prefetch_task: asyncio.Task[tuple[bool, bool]] | None = None

    @property
    def fetching_blocks(self) -> bool:
        return self._fetch_lock.locked()

    def get_height(self) -> int:
        return self.synchronization_status.last_known_block_height

    def get_wallet_sync_data_hashes(self) -> list[str]:
        """
        Checkpoints for the next sync request, newest first.

        Stored but unprocessed blocks come before processed ones so the
        daemon continues after the last block we downloaded. The infrequent
        checkpoints are always appended to resolve deep forks.
        """
        unprocessed = [block.block_hash for block in reversed(self.stored_blocks)]
        recent = unprocessed + self.synchronization_status.last_known_block_hashes
        return recent[:LAST_KNOWN_BLOCK_HASHES_SIZE] + self.synchronization_status.block_hash_checkpoints

    def should_fetch_more_blocks(self) -> bool:
        return not self.fetching_blocks and len(self.stored_blocks) < self.settings.block_store_limit

    async def download_blocks(self) -> tuple[bool, bool]:
        """
        Request the next blocks from the daemon into the block store.

        Returns:
            (success_or_busy, should_sleep). (True, False) while another
            download is in flight, (False, True) if the request failed.
        """
        if self._fetch_lock.locked():
            return True, False

        async with self._fetch_lock:
            # A background download does not hide a block being applied
            if self.state is not SyncState.APPLYING:
                self.state = SyncState.FETCHING
            try:
                return await self._download_blocks()
            finally:
                if self.state is SyncState.FETCHING:
                    self.state = SyncState.IDLE

    async def _download_blocks(self) -> tuple[bool, bool]:
        local_daemon_block_count = self.daemon.local_daemon_block_count
        wallet_block_count = self.get_height()

        if local_daemon_block_count < wallet_block_count:
            logger.debug(
                f"Daemon is behind the wallet ({local_daemon_block_count} < {wallet_block_count})"
            )
            return True, True

        block_checkpoints = self.get_wallet_sync_data_hashes()

        try:
            response = await self.daemon.get_wallet_sync_data(
                block_checkpoints, self.start_height, self.start_timestamp
            )
        except DaemonRequestError as e:
            logger.warning(f"Failed to get blocks from daemon: {e}")
            return False, True

        blocks = response.items
        top_block = response.top_block

        if top_block is not None and not blocks:
            # Synced. Record the tip once the store is drained so the height is reported correctly
            if not self.stored_blocks:
                self.synchronization_status.store_block_hash(top_block.height, top_block.hash)
                logger.debug(f"Wallet synced at height {top_block.height}")
            return True, True

        if not blocks:
            logger.debug("Zero blocks received from daemon, possibly fully synced")
            return True, True

        # Timestamps are not dependable, switch to the height of the first block we got
        if self.start_timestamp != 0:
            timestamp = self.start_timestamp
            self.start_timestamp = 0
            self.start_height = blocks[0].block_height
            self.subwallets.convert_sync_timestamp_to_height(timestamp, self.start_height)
            logger.info(f"Converted sync timestamp {timestamp} to height {self.start_height}")

        if self.stored_blocks:
            last_stored = self.stored_blocks[-1].block_height
            blocks = [block for block in blocks if block.block_height > last_stored]

        self.stored_blocks.extend(blocks)
        logger.debug(f"Stored {len(blocks)} blocks, {len(self.stored_blocks)} pending")
        return True, False

    def _start_prefetch(self) -> None:
        if self._prefetch_task is not None and not self._prefetch_task.done():
            return
        self._prefetch_task = asyncio.create_task(self.download_blocks())
        self._prefetch_task.add_done_callback(self._on_prefetch_done)

    @staticmethod
    def _on_prefetch_done(task: asyncio.Task[tuple[bool, bool]]) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Background block download failed: {error}")

    async def fetch_blocks(self, block_count: int | None = None) -> tuple[list[Block], bool]:
        """
        Next blocks to process from the store, downloading if it is empty.

        Blocks stay in the store until drop_block is called for them.

        Returns:
            (blocks, should_sleep)

        Raises:
            NodeDeadError: No blocks downloaded for longer than
                max_last_fetched_block_interval
        """
        block_count = block_count or self.settings.blocks_per_tick
        should_sleep = False

        if not self.stored_blocks:
            if not self.fetching_blocks:
                logger.debug("No blocks stored, attempting to fetch more.")

            success_or_busy, should_sleep = await self.download_blocks()

            if not success_or_busy:
                diff = time.monotonic() - self.last_downloaded_blocks
                if diff > self.settings.max_last_fetched_block_interval:
                    self.state = SyncState.DEAD
                    raise NodeDeadError(f"No blocks downloaded for {diff:.0f}s")
            else:
                self.last_downloaded_blocks = time.monotonic()
        elif self.should_fetch_more_blocks():
            self._start_prefetch()

        return self.stored_blocks[:block_count], should_sleep

    def drop_block(self, block_height: int, block_hash: str) -> None:
        """Remove a processed block from the store and record its hash."""
        # May run twice for the same block, only drop the one just processed
        if (
            self.stored_blocks
            and self.stored_blocks[0].block_height == block_height
            and self.stored_blocks[0].block_hash == block_hash
        ):
            self.stored_blocks.pop(0)

        self.synchronization_status.store_block_hash(block_height, block_hash)

    async def process_transaction_outputs(
        self, raw_transaction: RawCoinbaseTransaction, block_height: int
    ) -> list[tuple[str, TransactionInput]]:
        """Find the outputs of a transaction sent to one of our spend keys."""
        try:
            derivation = await self.crypto.generate_key_derivation(
                raw_transaction.transaction_public_key, self.private_view_key
            )
        except ValueError as e:
            # Malformed transaction public keys can be mined, they just cannot be ours
            logger.debug(f"Skipping transaction {raw_transaction.hash}: {e}")
            return []

        spend_keys = set(self.subwallets.get_public_spend_keys())
        inputs: list[tuple[str, TransactionInput]] = []

        for output_index, output in enumerate(raw_transaction.key_outputs):
            derived_spend_key = await self.crypto.underive_public_key(
                derivation, output_index, output.key
            )

            if derived_spend_key not in spend_keys:
                continue

            try:
                key_image, private_ephemeral = await self.subwallets.get_tx_input_key_image(
                    derived_spend_key, derivation, output_index
                )
            except SubWalletNotFoundError:
                logger.debug(f"Sub-wallet {derived_spend_key} deleted during scan, skipping output")
                continue

            logger.trace(f"Found output {output_index} of {raw_transaction.hash} for {derived_spend_key}")

            inputs.append(
                (
                    derived_spend_key,
                    TransactionInput(
                        key_image=key_image,
                        amount=output.amount,
                        block_height=block_height,
                        transaction_public_key=raw_transaction.transaction_public_key,
                        transaction_index=output_index,
                        global_output_index=output.global_index,
                        key=output.key,
                        spend_height=0,
                        unlock_time=raw_transaction.unlock_time,
                        parent_transaction_hash=raw_transaction.hash,
                        private_ephemeral=private_ephemeral,
                    ),
                )
            )

        return inputs

    async def process_block_outputs(self, block: Block) -> dict[str, list[TransactionInput]]:
        """Our outputs in a block, keyed by owning public spend key."""
        inputs: dict[str, list[TransactionInput]] = {}

        raw_transactions: list[RawCoinbaseTransaction] = []
        if self.settings.scan_coinbase_transactions and block.coinbase_transaction is not None:
            raw_transactions.append(block.coinbase_transaction)
        raw_transactions.extend(block.transactions)

        for raw_transaction in raw_transactions:
            found = await self.process_transaction_outputs(raw_transaction, block.block_height)
            for public_spend_key, transaction_input in found:
                inputs.setdefault(public_spend_key, []).append(transaction_input)

        return inputs

    @staticmethod
    def _transfers_from_inputs(
        our_inputs: list[tuple[str, TransactionInput]], transaction_hash: str
    ) -> dict[str, int]:
        transfers: dict[str, int] = {}
        for public_spend_key, transaction_input in our_inputs:
            if transaction_input.parent_transaction_hash == transaction_hash:
                transfers[public_spend_key] = transfers.get(public_spend_key, 0) + transaction_input.amount
        return transfers

    def process_coinbase_transaction(
        self, block: Block, our_inputs: list[tuple[str, TransactionInput]]
    ) -> Transaction | None:
        coinbase = block.coinbase_transaction
        if coinbase is None:
            return None

        transfers = self._transfers_from_inputs(our_inputs, coinbase.hash)
        if not transfers:
            return None

        return Transaction(
            transfers=transfers,
            hash=coinbase.hash,
            fee=0,
            timestamp=block.block_timestamp,
            block_height=block.block_height,
            payment_id="",
            unlock_time=coinbase.unlock_time,
            is_coinbase_transaction=True,
        )

    def process_transaction(
        self,
        block: Block,
        our_inputs: list[tuple[str, TransactionInput]],
        raw_transaction: RawTransaction,
        released_key_images: set[str] | frozenset[str] = frozenset(),
    ) -> tuple[Transaction | None, list[tuple[str, str]]]:
        """
        Build our view of one transaction: amounts received from our_inputs,
        amounts spent from key images we own. Key images in released_key_images
        belong to a fork about to be removed and are no longer ours.

        Returns:
            (transaction or None if it does not touch us, [(owner, spent key image)])
        """
        transfers = self._transfers_from_inputs(our_inputs, raw_transaction.hash)
        spent_key_images: list[tuple[str, str]] = []

        for key_input in raw_transaction.key_inputs:
            if key_input.key_image in released_key_images:
                continue
            owner = self.subwallets.get_key_image_owner(key_input.key_image)
            if owner is not None:
                transfers[owner] = transfers.get(owner, 0) - key_input.amount
                spent_key_images.append((owner, key_input.key_image))

        if not transfers:
            return None, []

        amount_in = sum(key_input.amount for key_input in raw_transaction.key_inputs)
        amount_out = sum(output.amount for output in raw_transaction.key_outputs)

        transaction = Transaction(
            transfers=transfers,
            hash=raw_transaction.hash,
            fee=amount_in - amount_out,
            timestamp=block.block_timestamp,
            block_height=block.block_height,
            payment_id=raw_transaction.payment_id,
            unlock_time=raw_transaction.unlock_time,
            is_coinbase_transaction=False,
        )
        return transaction, spent_key_images

    def process_block(
        self,
        block: Block,
        our_inputs: dict[str, list[TransactionInput]],
        released_key_images: set[str] | frozenset[str] = frozenset(),
    ) -> TransactionData:
        """Turn a block and our outputs in it into the ledger changes it implies."""
        flat_inputs = [
            (public_spend_key, transaction_input)
            for public_spend_key, inputs in our_inputs.items()
            for transaction_input in inputs
        ]

        data = TransactionData()

        if self.settings.scan_coinbase_transactions:
            coinbase = self.process_coinbase_transaction(block, flat_inputs)
            if coinbase is not None:
                data.transactions_to_add.append(coinbase)

        for raw_transaction in block.transactions:
            transaction, spent_key_images = self.process_transaction(
                block, flat_inputs, raw_transaction, released_key_images
            )
            if transaction is not None:
                data.transactions_to_add.append(transaction)
                data.key_images_to_mark_spent.extend(spent_key_images)

        data.inputs_to_add = flat_inputs
        return data

    async def _fill_global_indexes(
        self, block: Block, our_inputs: dict[str, list[TransactionInput]]
    ) -> bool:
        global_indexes: dict[str, list[int]] = {}

        for inputs in our_inputs.values():
            for transaction_input in inputs:
                if transaction_input.global_output_index is not None:
                    continue

                if not global_indexes:
                    global_indexes = await self.daemon.get_global_indexes_for_range(
                        block.block_height, block.block_height + 1
                    )

                our_indexes = global_indexes.get(transaction_input.parent_transaction_hash)
                if our_indexes is None or len(our_indexes) <= transaction_input.transaction_index:
                    logger.warning(
                        f"Could not get global indexes from daemon for transaction "
                        f"{transaction_input.parent_transaction_hash}, retrying block {block.block_height}"
                    )
                    return False

                transaction_input.global_output_index = our_indexes[transaction_input.transaction_index]

        return True

    async def _apply_block(self, block: Block) -> bool:
        our_inputs = await self.process_block_outputs(block)

        if not await self._fill_global_indexes(block, our_inputs):
            return False

        # No awaits from here on: the block is applied in one step
        with self.subwallets.lock:
            # Sub-wallets deleted while the block was being scanned
            spend_keys = set(self.subwallets.get_public_spend_keys())
            our_inputs = {key: inputs for key, inputs in our_inputs.items() if key in spend_keys}

            forked = self.get_height() >= block.block_height
            released_key_images = (
                self.subwallets.get_forked_key_images(block.block_height) if forked else set()
            )

            data = self.process_block(block, our_inputs, released_key_images)
            # Nothing below may fail once the fork is removed
            self.subwallets.validate_transaction_data(data, released_key_images)

            if forked:
                logger.info(f"Fork detected at height {block.block_height}, removing forked transactions")
                self.subwallets.remove_forked_transactions(block.block_height)

            if block.block_height % PRUNE_SPENT_INPUTS_INTERVAL == 0:
                self.subwallets.prune_spent_inputs(block.block_height - PRUNE_SPENT_INPUTS_INTERVAL)

            self.subwallets.store_transaction_data(block.block_height, data)
            self.drop_block(block.block_height, block.block_hash)

        if data.transactions_to_add:
            logger.info(
                f"Processed block {block.block_height}: {len(data.transactions_to_add)} transactions"
            )

        if block.block_height % self.settings.locked_transactions_check_interval == 0:
            await self.check_locked_transactions()

        return True

    async def process_blocks(self) -> SyncOutcome:
        """
        One sync cycle: fetch up to blocks_per_tick blocks and apply them in order.

        Raises:
            NodeDeadError: No blocks downloaded for too long
        """
        async with self._cycle_lock:
            blocks, should_sleep = await self.fetch_blocks()

            if not blocks:
                self.state = SyncState.WAITING_BACKOFF if should_sleep else SyncState.IDLE
                return SyncOutcome.BACKOFF if should_sleep else SyncOutcome.IDLE

            self.state = SyncState.APPLYING
            try:
                for block in blocks:
                    if not await self._apply_block(block):
                        self.state = SyncState.WAITING_BACKOFF
                        return SyncOutcome.BACKOFF
            finally:
                if self.state is SyncState.APPLYING:
                    self.state = SyncState.IDLE

            return SyncOutcome.PROCESSED

    async def sync_tick(self) -> SyncOutcome:
        """Like process_blocks, but reports a dead daemon as SyncOutcome.DEAD."""
        try:
            return await self.process_blocks()
        except NodeDeadError as e:
            logger.error(f"Daemon is dead: {e}")
            self.state = SyncState.DEAD
            return SyncOutcome.DEAD

    async def check_locked_transactions(self) -> None:
        """Release the inputs of sent transactions the daemon has forgotten."""
        transaction_hashes = self.subwallets.get_locked_transaction_hashes()
        cancelled = await self.find_cancelled_transactions(transaction_hashes)
        for transaction_hash in cancelled:
            self.subwallets.remove_cancelled_transaction(transaction_hash)

    async def find_cancelled_transactions(self, transaction_hashes: list[str]) -> list[str]:
        """
        Hashes to treat as cancelled.

        A hash is cancelled once the daemon has failed to find it on
        CANCELLED_TRANSACTION_MAX_FAIL_COUNT consecutive checks and again on
        the next one. Any check that finds it resets its count.
        """
        if not transaction_hashes:
            return []

        not_found = set(await self.daemon.get_cancelled_transactions(transaction_hashes))
        to_remove: list[str] = []

        for transaction_hash, fail_count in list(self.cancelled_transactions_fail_count.items()):
            if transaction_hash in not_found:
                if fail_count >= CANCELLED_TRANSACTION_MAX_FAIL_COUNT:
                    to_remove.append(transaction_hash)
                    del self.cancelled_transactions_fail_count[transaction_hash]
                else:
                    self.cancelled_transactions_fail_count[transaction_hash] = fail_count + 1
            else:
                del self.cancelled_transactions_fail_count[transaction_hash]

        for transaction_hash in not_found:
            if transaction_hash not in self.cancelled_transactions_fail_count and transaction_hash not in to_remove:
                self.cancelled_transactions_fail_count[transaction_hash] = 1

        if to_remove:
            logger.info(f"Cancelled transactions: {', '.join(to_remove)}")

        return to_remove

    async def reset(self, scan_height: int, scan_timestamp: int) -> None:
        """Drop all sync state and ledger contents and rescan from height or timestamp."""
        async with self._cycle_lock, self._fetch_lock:
            self.start_height = scan_height
            self.start_timestamp = scan_timestamp
            self.stored_blocks = []
            self.cancelled_transactions_fail_count = {}
            self.synchronization_status = SynchronizationStatus(
                last_known_block_height=max(scan_height - 1, 0) if scan_timestamp == 0 else 0
            )
            self.last_downloaded_blocks = time.monotonic()
            self.state = SyncState.IDLE
            self.subwallets.reset(scan_height, scan_timestamp)

    async def rewind(self, scan_height: int) -> None:
        """Discard sync state and ledger contents at or above scan_height."""
        async with self._cycle_lock, self._fetch_lock:
            self.start_height = scan_height
            self.start_timestamp = 0
            self.stored_blocks = []
            self.cancelled_transactions_fail_count = {}
            self.synchronization_status = SynchronizationStatus(
                last_known_block_height=max(scan_height - 1, 0)
            )
            self.last_downloaded_blocks = time.monotonic()
            self.state = SyncState.IDLE
            self.subwallets.rewind(scan_height)

    async def run(self, stop_event: asyncio.Event) -> None:
        """
        Sync until stop_event is set. Stopping only takes effect between cycles.

        Raises:
            NodeDeadError: The daemon stopped making progress
        """
        last_daemon_update = time.monotonic()

        while not stop_event.is_set():
            if time.monotonic() - last_daemon_update >= self.settings.daemon_update_interval:
                try:
                    await self.daemon.update_daemon_info()
                except NodeDeadError:
                    self.state = SyncState.DEAD
                    raise
                await self.daemon.update_fee_info()
                last_daemon_update = time.monotonic()

            outcome = await self.sync_tick()

            if outcome is SyncOutcome.DEAD:
                raise NodeDeadError("Daemon stopped serving blocks")

            if outcome is SyncOutcome.PROCESSED:
                await asyncio.sleep(0)
                continue

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.settings.sync_sleep_interval)
            except TimeoutError:
                pass

    async def close(self) -> None:
        if self._prefetch_task is not None and not self._prefetch_task.done():
            self._prefetch_task.cancel()
            try:
                await self._prefetch_task
            except asyncio.CancelledError:
                pass
