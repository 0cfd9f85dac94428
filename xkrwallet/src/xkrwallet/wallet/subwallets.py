"""
Container of all sub-wallets: transactions, key image ownership and input
selection.

Every mutation runs under one re-entrant lock so the sync loop and user
operations (adding or deleting sub-wallets, cancelling transactions) never
interleave. Cross-field invariants, e.g. key image owners vs. the inputs
each sub-wallet holds, only ever change together.
"""

from __future__ import annotations

import random
import threading
from collections.abc import Callable
from dataclasses import replace
from functools import wraps
from typing import Any, TypeVar

from loguru import logger

from xkrcore.constants import BLOCK_TARGET_TIME, FUSION_TX_MAX_SIZE, FUSION_TX_MIN_INPUT_COUNT
from xkrcore.fees import get_fusion_input_size
from xkrcore.utils import get_current_timestamp_adjusted
from xkrwallet.errors import (
    AddressNotInWalletError,
    CannotDeletePrimaryAddressError,
    IllegalNonViewWalletOperationError,
    IllegalViewWalletOperationError,
    KeyImageAlreadyOwnedError,
    NoPrimaryAddressError,
    SubWalletAlreadyExistsError,
    SubWalletNotFoundError,
)
from xkrwallet.wallet.crypto import AddressCodec, CryptoProvider
from xkrwallet.wallet.models import (
    KeyPair,
    Transaction,
    TransactionData,
    TransactionInput,
    TxInputAndOwner,
    UnconfirmedInput,
)
from xkrwallet.wallet.subwallet import SubWallet

F = TypeVar("F", bound=Callable[..., Any])


def with_lock(func: F) -> F:
    @wraps(func)
    def func_wrapper(self: SubWallets, *args: Any, **kwargs: Any) -> Any:
        with self.lock:
            return func(self, *args, **kwargs)

    return func_wrapper  # type: ignore[return-value]


def _amount_digits(amount: int) -> int:
    return len(str(amount)) if amount > 0 else 0


class SubWallets:
    """
    All sub-wallets of one wallet.

    A wallet created without a private spend key is a view wallet: it sees
    incoming funds but never learns key images, so it keeps no key image
    ownership map.
    """

    def __init__(
        self,
        address: str,
        scan_height: int,
        new_wallet: bool,
        private_view_key: str,
        address_codec: AddressCodec,
        crypto: CryptoProvider,
        private_spend_key: str | None = None,
        block_target_time: int = BLOCK_TARGET_TIME,
    ):
        """
        Initialize the container with its primary sub-wallet.

        Args:
            address: Primary address
            scan_height: Height to start scanning from
            new_wallet: A new wallet also starts from a slightly back-dated timestamp
            private_view_key: Shared private view key
            address_codec: Address encoding collaborator
            crypto: Key derivation collaborator
            private_spend_key: Primary private spend key, None for a view wallet
            block_target_time: Block time used to back-date a new wallet
        """
        self.lock = threading.RLock()
        self.address_codec = address_codec
        self.crypto = crypto
        self.private_view_key = private_view_key
        self.is_view_wallet = private_spend_key is None

        public_spend_key, public_view_key = address_codec.address_to_keys(address)
        self.public_view_key = public_view_key

        timestamp = get_current_timestamp_adjusted(block_target_time) if new_wallet else 0

        self.subwallets: dict[str, SubWallet] = {
            public_spend_key: SubWallet(
                address,
                scan_height,
                timestamp,
                public_spend_key,
                private_spend_key,
                primary_address=True,
            )
        }
        self.public_spend_keys: list[str] = [public_spend_key]

        self.transactions: list[Transaction] = []
        # Sent by us, not yet in a block
        self.locked_transactions: list[Transaction] = []
        self.transaction_private_keys: dict[str, str] = {}
        self.key_image_owners: dict[str, str] = {}

        logger.info(f"Initialized {'view ' if self.is_view_wallet else ''}wallet {address}")

    def _get_subwallet(self, public_spend_key: str) -> SubWallet:
        subwallet = self.subwallets.get(public_spend_key)
        if subwallet is None:
            raise SubWalletNotFoundError(f"No sub-wallet with public spend key {public_spend_key}")
        return subwallet

    def _address_to_spend_key(self, address: str) -> str:
        try:
            public_spend_key, _ = self.address_codec.address_to_keys(address)
        except ValueError as e:
            raise AddressNotInWalletError(f"Invalid address {address}: {e}") from e
        if public_spend_key not in self.subwallets:
            raise AddressNotInWalletError(f"Address {address} is not in this wallet")
        return public_spend_key

    def _spend_keys_for(self, addresses: list[str] | None) -> list[str]:
        """Public spend keys of the given addresses, all sub-wallets if none given."""
        if not addresses:
            return list(self.public_spend_keys)
        return [self._address_to_spend_key(address) for address in addresses]

    @with_lock
    def init_key_image_map(self) -> None:
        """Rebuild key image ownership from the stored inputs, e.g. after loading."""
        if self.is_view_wallet:
            return
        self.key_image_owners = {}
        for public_spend_key, subwallet in self.subwallets.items():
            for key_image in subwallet.get_key_images():
                self.key_image_owners[key_image] = public_spend_key

    @with_lock
    def prune_spent_inputs(self, prune_height: int) -> None:
        for subwallet in self.subwallets.values():
            subwallet.prune_spent_inputs(prune_height)

    @with_lock
    def reset(self, scan_height: int, scan_timestamp: int) -> None:
        """Forget all transactions and inputs and rescan from the given point."""
        self.transactions = []
        self.locked_transactions = []
        self.transaction_private_keys = {}
        self.key_image_owners = {}

        for subwallet in self.subwallets.values():
            subwallet.reset(scan_height, scan_timestamp)

        logger.info(f"Wallet reset to height {scan_height}, timestamp {scan_timestamp}")

    @with_lock
    def rewind(self, scan_height: int) -> None:
        """Discard everything at or above scan_height, including pending sends."""
        for transaction_hash in self.get_locked_transaction_hashes():
            for subwallet in self.subwallets.values():
                subwallet.remove_cancelled_transaction(transaction_hash)
        self.locked_transactions = []

        self.remove_forked_transactions(scan_height)
        logger.info(f"Wallet rewound to height {scan_height}")

    @with_lock
    def get_private_spend_key(self, public_spend_key: str) -> str:
        subwallet = self.subwallets.get(public_spend_key)
        if subwallet is None:
            raise AddressNotInWalletError(f"No sub-wallet with public spend key {public_spend_key}")
        if subwallet.private_spend_key is None:
            raise IllegalViewWalletOperationError("View sub-wallets have no private spend key")
        return subwallet.private_spend_key

    @with_lock
    def get_primary_subwallet(self) -> SubWallet:
        for subwallet in self.subwallets.values():
            if subwallet.primary_address:
                return subwallet
        raise NoPrimaryAddressError("Wallet has no primary address")

    def get_primary_address(self) -> str:
        return self.get_primary_subwallet().address

    def get_primary_private_spend_key(self) -> str:
        primary = self.get_primary_subwallet()
        if primary.private_spend_key is None:
            raise IllegalViewWalletOperationError("View wallets have no private spend key")
        return primary.private_spend_key

    @with_lock
    def get_locked_transaction_hashes(self) -> list[str]:
        return [transaction.hash for transaction in self.locked_transactions]

    @with_lock
    def add_transaction(self, transaction: Transaction) -> None:
        """Store a confirmed transaction, promoting it out of the locked list if we sent it."""
        logger.trace(f"Transaction {transaction.hash}")

        self.locked_transactions = [
            locked for locked in self.locked_transactions if locked.hash != transaction.hash
        ]

        if any(existing.hash == transaction.hash for existing in self.transactions):
            logger.debug(f"Already seen transaction {transaction.hash}, ignoring.")
            return

        self.transactions.append(transaction)

    @with_lock
    def add_unconfirmed_transaction(self, transaction: Transaction) -> None:
        """Store a transaction we sent that is not yet in a block."""
        logger.trace(f"Unconfirmed transaction {transaction.hash}")

        if any(existing.hash == transaction.hash for existing in self.locked_transactions):
            logger.debug(f"Already seen unconfirmed transaction {transaction.hash}, ignoring.")
            return

        if any(existing.hash == transaction.hash for existing in self.transactions):
            logger.debug(f"Transaction {transaction.hash} is already confirmed, ignoring.")
            return

        self.locked_transactions.append(transaction)

    def _check_key_image(self, public_spend_key: str, key_image: str) -> bool:
        """
        Returns False if the input is a replay for the same owner.

        Raises:
            KeyImageAlreadyOwnedError: A different sub-wallet owns the key image
        """
        owner = self.key_image_owners.get(key_image)
        if owner is None:
            return True
        if owner != public_spend_key:
            raise KeyImageAlreadyOwnedError(key_image, owner)
        return False

    @with_lock
    def store_transaction_input(self, public_spend_key: str, transaction_input: TransactionInput) -> None:
        """
        Store an input in the sub-wallet owning it.

        Raises:
            SubWalletNotFoundError: Unknown public spend key
            KeyImageAlreadyOwnedError: Another sub-wallet already owns the key image
        """
        subwallet = self._get_subwallet(public_spend_key)

        logger.trace(f"Input key image {transaction_input.key_image}")

        if not self.is_view_wallet:
            if not self._check_key_image(public_spend_key, transaction_input.key_image):
                logger.debug(f"Input {transaction_input.key_image} already stored, ignoring.")
                return
            self.key_image_owners[transaction_input.key_image] = public_spend_key
        elif subwallet.has_input(transaction_input.key):
            logger.debug(f"Input {transaction_input.key} already stored, ignoring.")
            return

        subwallet.store_transaction_input(transaction_input, self.is_view_wallet)

    @with_lock
    def mark_input_as_spent(self, public_spend_key: str, key_image: str, spend_height: int) -> None:
        self._get_subwallet(public_spend_key).mark_input_as_spent(key_image, spend_height)

    @with_lock
    def mark_input_as_locked(self, public_spend_key: str, key_image: str, transaction_hash: str) -> None:
        self._get_subwallet(public_spend_key).mark_input_as_locked(key_image, transaction_hash)

    @with_lock
    def remove_cancelled_transaction(self, transaction_hash: str) -> None:
        """Drop a sent transaction that never made it into a block, releasing its inputs."""
        self.locked_transactions = [
            locked for locked in self.locked_transactions if locked.hash != transaction_hash
        ]

        for subwallet in self.subwallets.values():
            subwallet.remove_cancelled_transaction(transaction_hash)

        logger.info(f"Removed cancelled transaction {transaction_hash}")

    @with_lock
    def remove_forked_transactions(self, fork_height: int) -> None:
        """Remove transactions and inputs from blocks at or above fork_height."""
        self.transactions = [t for t in self.transactions if t.block_height < fork_height]

        key_images_to_remove: list[str] = []
        for subwallet in self.subwallets.values():
            key_images_to_remove.extend(subwallet.remove_forked_transactions(fork_height))

        if not self.is_view_wallet:
            for key_image in key_images_to_remove:
                self.key_image_owners.pop(key_image, None)

        if key_images_to_remove:
            logger.debug(f"Removed {len(key_images_to_remove)} forked inputs at height {fork_height}")

    @with_lock
    def get_forked_key_images(self, fork_height: int) -> set[str]:
        """Key images remove_forked_transactions(fork_height) would release."""
        return {
            key_image
            for subwallet in self.subwallets.values()
            for key_image in subwallet.get_key_images(fork_height)
        }

    @with_lock
    def convert_sync_timestamp_to_height(self, timestamp: int, height: int) -> None:
        for subwallet in self.subwallets.values():
            subwallet.convert_sync_timestamp_to_height(timestamp, height)

    @with_lock
    def have_spendable_input(self, transaction_input: TransactionInput, height: int) -> bool:
        return any(
            subwallet.have_spendable_input(transaction_input, height)
            for subwallet in self.subwallets.values()
        )

    @with_lock
    def get_key_image_owner(self, key_image: str) -> str | None:
        """Public spend key owning the key image, None if unknown or a view wallet."""
        if self.is_view_wallet:
            return None
        return self.key_image_owners.get(key_image)

    async def get_tx_input_key_image(
        self, public_spend_key: str, derivation: str, output_index: int
    ) -> tuple[str, str]:
        """
        Generate (key_image, private_ephemeral) for an output we own.

        A view wallet cannot compute key images and gets empty strings.
        """
        with self.lock:
            subwallet = self._get_subwallet(public_spend_key)

        if self.is_view_wallet:
            return "", ""

        return await subwallet.get_tx_input_key_image(self.crypto, derivation, output_index)

    @with_lock
    def get_balance(self, current_height: int, addresses: list[str] | None = None) -> tuple[int, int]:
        """Returns (unlocked, locked) summed over the given addresses, all if none given."""
        unlocked = 0
        locked = 0
        for public_spend_key in self._spend_keys_for(addresses):
            sub_unlocked, sub_locked = self.subwallets[public_spend_key].get_balance(current_height)
            unlocked += sub_unlocked
            locked += sub_locked
        return unlocked, locked

    @with_lock
    def get_addresses(self) -> list[str]:
        return [subwallet.address for subwallet in self.subwallets.values()]

    @with_lock
    def get_public_spend_keys(self) -> list[str]:
        return list(self.public_spend_keys)

    @with_lock
    def get_all_spend_keys(self) -> list[KeyPair]:
        """Spend key pairs of every sub-wallet, private key empty for view sub-wallets."""
        return [
            KeyPair(public_key=key, private_key=subwallet.private_spend_key or "")
            for key, subwallet in self.subwallets.items()
        ]

    @with_lock
    def get_spendable_transaction_inputs(
        self, addresses: list[str] | None, current_height: int
    ) -> list[TxInputAndOwner]:
        """
        Unspent, unlocked inputs of the given sub-wallets (all if none given),
        ordered for selection.

        Inputs are grouped by the number of digits of their amount. Groups come
        smallest first, and within a group the largest amount comes first.
        """
        available: list[TxInputAndOwner] = []
        for public_spend_key in self._spend_keys_for(addresses):
            available.extend(self.subwallets[public_spend_key].get_spendable_inputs(current_height))

        available.sort(key=lambda owned: owned.input.amount)

        buckets: dict[int, list[TxInputAndOwner]] = {}
        for owned in available:
            buckets.setdefault(_amount_digits(owned.input.amount), []).append(owned)

        ordered: list[TxInputAndOwner] = []
        for digits in sorted(buckets):
            ordered.extend(reversed(buckets[digits]))
        return ordered

    @with_lock
    def get_fusion_transaction_inputs(
        self,
        addresses: list[str] | None,
        mixin: int,
        current_height: int,
        rng: random.Random | None = None,
    ) -> tuple[list[TxInputAndOwner], int, int]:
        """
        Pick inputs for a fusion transaction.

        Prefers a random single digit-count group with at least
        FUSION_TX_MIN_INPUT_COUNT inputs, otherwise takes from every group.

        Returns:
            (inputs, maximum inputs a fusion may take, sum of the inputs)
        """
        rng = rng or random.Random()

        available: list[TxInputAndOwner] = []
        for public_spend_key in self._spend_keys_for(addresses):
            available.extend(self.subwallets[public_spend_key].get_spendable_inputs(current_height))

        rng.shuffle(available)

        buckets: dict[int, list[TxInputAndOwner]] = {}
        for owned in available:
            buckets.setdefault(_amount_digits(owned.input.amount), []).append(owned)

        full_buckets = [
            digits for digits, bucket in buckets.items() if len(bucket) >= FUSION_TX_MIN_INPUT_COUNT
        ]

        if full_buckets:
            buckets_to_take_from = [buckets[rng.choice(full_buckets)]]
        else:
            buckets_to_take_from = list(buckets.values())

        max_inputs_to_take = FUSION_TX_MAX_SIZE // get_fusion_input_size(mixin)

        inputs_to_use: list[TxInputAndOwner] = []
        found_money = 0

        for bucket in buckets_to_take_from:
            for owned in bucket:
                inputs_to_use.append(owned)
                found_money += owned.input.amount
                if len(inputs_to_use) >= max_inputs_to_take:
                    return inputs_to_use, max_inputs_to_take, found_money

        return inputs_to_use, max_inputs_to_take, found_money

    @with_lock
    def store_tx_private_key(self, tx_private_key: str, tx_hash: str) -> None:
        self.transaction_private_keys[tx_hash] = tx_private_key

    @with_lock
    def get_tx_private_key(self, tx_hash: str) -> str | None:
        return self.transaction_private_keys.get(tx_hash)

    @with_lock
    def store_unconfirmed_incoming_input(
        self, unconfirmed_input: UnconfirmedInput, public_spend_key: str
    ) -> None:
        """Track change from a transaction we sent so it shows in the locked balance."""
        self._get_subwallet(public_spend_key).store_unconfirmed_incoming_input(unconfirmed_input)

    def _filter_transactions(
        self, transactions: list[Transaction], address: str | None, include_fusions: bool
    ) -> list[Transaction]:
        public_spend_key = self._address_to_spend_key(address) if address else None
        return [
            transaction
            for transaction in transactions
            if (include_fusions or not transaction.is_fusion_transaction())
            and (public_spend_key is None or public_spend_key in transaction.transfers)
        ]

    @with_lock
    def get_transactions(
        self, address: str | None = None, include_fusions: bool = True
    ) -> list[Transaction]:
        return self._filter_transactions(self.transactions, address, include_fusions)

    def get_num_transactions(self, address: str | None = None, include_fusions: bool = True) -> int:
        return len(self.get_transactions(address, include_fusions))

    @with_lock
    def get_unconfirmed_transactions(
        self, address: str | None = None, include_fusions: bool = True
    ) -> list[Transaction]:
        return self._filter_transactions(self.locked_transactions, address, include_fusions)

    def get_num_unconfirmed_transactions(
        self, address: str | None = None, include_fusions: bool = True
    ) -> int:
        return len(self.get_unconfirmed_transactions(address, include_fusions))

    def _insert_subwallet(
        self,
        public_spend_key: str,
        private_spend_key: str | None,
        scan_height: int,
    ) -> str:
        address = self.address_codec.keys_to_address(public_spend_key, self.public_view_key)
        with self.lock:
            if public_spend_key in self.subwallets:
                raise SubWalletAlreadyExistsError(f"Sub-wallet {address} already exists")
            self.subwallets[public_spend_key] = SubWallet(
                address, scan_height, 0, public_spend_key, private_spend_key
            )
            self.public_spend_keys.append(public_spend_key)

        logger.info(f"Added sub-wallet {address} scanning from height {scan_height}")
        return address

    async def add_subwallet(self, scan_height: int) -> str:
        """
        Create a sub-wallet with a fresh spend key. Returns its address.

        Raises:
            IllegalViewWalletOperationError: On a view wallet
        """
        if self.is_view_wallet:
            raise IllegalViewWalletOperationError("Cannot add a sub-wallet to a view wallet")

        keys = await self.crypto.generate_keys()
        return self._insert_subwallet(keys.public_key, keys.private_key, scan_height)

    async def import_subwallet(self, private_spend_key: str, scan_height: int) -> str:
        """
        Import a sub-wallet from its private spend key. Returns its address.

        Raises:
            IllegalViewWalletOperationError: On a view wallet
            SubWalletAlreadyExistsError: The key is already in the wallet
        """
        if self.is_view_wallet:
            raise IllegalViewWalletOperationError("Cannot import a spend key into a view wallet")

        public_spend_key = await self.crypto.secret_key_to_public_key(private_spend_key)
        return self._insert_subwallet(public_spend_key, private_spend_key, scan_height)

    async def import_view_subwallet(self, public_spend_key: str, scan_height: int) -> str:
        """
        Import a view-only sub-wallet from its public spend key. Returns its address.

        Raises:
            IllegalNonViewWalletOperationError: On a wallet that holds spend keys
            SubWalletAlreadyExistsError: The key is already in the wallet
        """
        if not self.is_view_wallet:
            raise IllegalNonViewWalletOperationError(
                "Cannot import a view sub-wallet into a non-view wallet"
            )

        if not await self.crypto.check_key(public_spend_key):
            raise ValueError(f"Invalid public spend key {public_spend_key}")

        return self._insert_subwallet(public_spend_key, None, scan_height)

    @with_lock
    def delete_subwallet(self, address: str) -> None:
        """
        Remove a sub-wallet and its share of every transaction.

        Raises:
            AddressNotInWalletError: Unknown address
            CannotDeletePrimaryAddressError: The address is the primary one
        """
        public_spend_key = self._address_to_spend_key(address)
        subwallet = self.subwallets[public_spend_key]

        if subwallet.primary_address:
            raise CannotDeletePrimaryAddressError("Cannot delete the primary address")

        for key_image in subwallet.get_key_images():
            if self.key_image_owners.get(key_image) == public_spend_key:
                del self.key_image_owners[key_image]

        del self.subwallets[public_spend_key]
        self.public_spend_keys.remove(public_spend_key)

        self.transactions = self._delete_address_transactions(self.transactions, public_spend_key)
        self.locked_transactions = self._delete_address_transactions(
            self.locked_transactions, public_spend_key
        )

        logger.info(f"Deleted sub-wallet {address}")

    @staticmethod
    def _delete_address_transactions(
        transactions: list[Transaction], public_spend_key: str
    ) -> list[Transaction]:
        kept = []
        for transaction in transactions:
            if public_spend_key in transaction.transfers:
                # Only this sub-wallet was involved
                if len(transaction.transfers) == 1:
                    continue
                # Callers may still hold the old object
                transfers = {
                    key: amount
                    for key, amount in transaction.transfers.items()
                    if key != public_spend_key
                }
                transaction = replace(transaction, transfers=transfers)
            kept.append(transaction)
        return kept

    @with_lock
    def get_wallet_count(self) -> int:
        return len(self.subwallets)

    @with_lock
    def validate_transaction_data(
        self, data: TransactionData, released_key_images: set[str] | frozenset[str] = frozenset()
    ) -> None:
        """
        Check one block's changes without writing anything.

        released_key_images are owned key images about to be dropped (a fork
        being removed), so a new owner may claim them.

        Raises:
            SubWalletNotFoundError: An owner is not in the wallet
            KeyImageAlreadyOwnedError: A key image is claimed by two sub-wallets
        """
        claimed: dict[str, str] = {}
        for public_spend_key, transaction_input in data.inputs_to_add:
            self._get_subwallet(public_spend_key)
            if self.is_view_wallet:
                continue
            key_image = transaction_input.key_image
            previous = claimed.get(key_image)
            if previous is not None and previous != public_spend_key:
                raise KeyImageAlreadyOwnedError(key_image, previous)
            if key_image not in released_key_images:
                self._check_key_image(public_spend_key, key_image)
            claimed[key_image] = public_spend_key

        for public_spend_key, _ in data.key_images_to_mark_spent:
            self._get_subwallet(public_spend_key)

    @with_lock
    def store_transaction_data(self, block_height: int, data: TransactionData) -> None:
        """
        Apply one block's changes as a single step.

        Every owner and key image is validated before anything is written, so
        a failure leaves the ledger exactly as it was before the block.

        Raises:
            SubWalletNotFoundError: An owner is not in the wallet
            KeyImageAlreadyOwnedError: A key image is claimed by two sub-wallets
        """
        self.validate_transaction_data(data)

        for transaction in data.transactions_to_add:
            self.add_transaction(transaction)

        for public_spend_key, transaction_input in data.inputs_to_add:
            self.store_transaction_input(public_spend_key, transaction_input)

        for public_spend_key, key_image in data.key_images_to_mark_spent:
            self.mark_input_as_spent(public_spend_key, key_image, block_height)
