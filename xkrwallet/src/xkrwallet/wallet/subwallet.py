"""
A single spend key pair within the wallet and the inputs it owns.
"""

from __future__ import annotations

from loguru import logger

from xkrcore.utils import is_input_unlocked
from xkrwallet.wallet.crypto import CryptoProvider
from xkrwallet.wallet.models import TransactionInput, TxInputAndOwner, UnconfirmedInput


class SubWallet:
    """
    One sub-wallet.

    Inputs live in exactly one of three lists: unspent, locked (being spent
    by a transaction we sent that is not yet in a block) or spent.
    Not thread safe on its own; SubWallets serializes access.
    """

    def __init__(
        self,
        address: str,
        scan_height: int,
        scan_timestamp: int,
        public_spend_key: str,
        private_spend_key: str | None = None,
        primary_address: bool = False,
    ):
        self.address = address
        self.sync_start_height = scan_height
        self.sync_start_timestamp = scan_timestamp
        self.public_spend_key = public_spend_key
        # None for a view sub-wallet
        self.private_spend_key = private_spend_key
        self.primary_address = primary_address

        self.unspent_inputs: list[TransactionInput] = []
        self.locked_inputs: list[TransactionInput] = []
        self.spent_inputs: list[TransactionInput] = []
        self.unconfirmed_incoming_amounts: list[UnconfirmedInput] = []

    def _all_inputs(self) -> list[TransactionInput]:
        return self.unspent_inputs + self.locked_inputs + self.spent_inputs

    def has_input(self, key: str) -> bool:
        """True if an input with this one-time output key is stored."""
        return any(stored.key == key for stored in self._all_inputs())

    def store_transaction_input(self, transaction_input: TransactionInput, is_view_wallet: bool) -> None:
        if not is_view_wallet:
            # Change from a transaction we sent is no longer unconfirmed
            self.unconfirmed_incoming_amounts = [
                unconfirmed
                for unconfirmed in self.unconfirmed_incoming_amounts
                if unconfirmed.key != transaction_input.key
            ]

        self.unspent_inputs.append(transaction_input)

    def mark_input_as_spent(self, key_image: str, spend_height: int) -> None:
        for inputs in (self.unspent_inputs, self.locked_inputs):
            for index, stored in enumerate(inputs):
                if stored.key_image == key_image:
                    spent = inputs.pop(index)
                    spent.spend_height = spend_height
                    self.spent_inputs.append(spent)
                    return

        if any(stored.key_image == key_image for stored in self.spent_inputs):
            logger.debug(f"Input {key_image} already marked as spent")
            return

        logger.warning(f"Could not find input {key_image} to mark as spent")

    def mark_input_as_locked(self, key_image: str, transaction_hash: str) -> None:
        for index, stored in enumerate(self.unspent_inputs):
            if stored.key_image == key_image:
                locked = self.unspent_inputs.pop(index)
                locked.locking_transaction_hash = transaction_hash
                self.locked_inputs.append(locked)
                return

        for stored in self.locked_inputs:
            if stored.key_image == key_image:
                stored.locking_transaction_hash = transaction_hash
                return

        logger.warning(f"Could not find input {key_image} to mark as locked")

    def remove_forked_transactions(self, fork_height: int) -> list[str]:
        """
        Drop inputs received at or after fork_height.

        Inputs received before the fork but spent at or after it go back to
        unspent. Returns the key images of the dropped inputs.
        """
        key_images_to_remove: list[str] = []

        def keep(transaction_input: TransactionInput) -> bool:
            if transaction_input.block_height >= fork_height:
                key_images_to_remove.append(transaction_input.key_image)
                return False
            return True

        self.unspent_inputs = [i for i in self.unspent_inputs if keep(i)]
        self.locked_inputs = [i for i in self.locked_inputs if keep(i)]
        self.spent_inputs = [i for i in self.spent_inputs if keep(i)]

        still_spent = []
        for transaction_input in self.spent_inputs:
            if transaction_input.spend_height >= fork_height:
                transaction_input.spend_height = 0
                self.unspent_inputs.append(transaction_input)
            else:
                still_spent.append(transaction_input)
        self.spent_inputs = still_spent

        return key_images_to_remove

    def remove_cancelled_transaction(self, transaction_hash: str) -> None:
        """Return inputs locked by a cancelled transaction to unspent."""
        still_locked = []
        for transaction_input in self.locked_inputs:
            if transaction_input.locking_transaction_hash == transaction_hash:
                transaction_input.locking_transaction_hash = ""
                transaction_input.spend_height = 0
                self.unspent_inputs.append(transaction_input)
            else:
                still_locked.append(transaction_input)
        self.locked_inputs = still_locked

        self.unconfirmed_incoming_amounts = [
            unconfirmed
            for unconfirmed in self.unconfirmed_incoming_amounts
            if unconfirmed.parent_transaction_hash != transaction_hash
        ]

    def prune_spent_inputs(self, prune_height: int) -> None:
        """Forget spent inputs spent at or below prune_height."""
        before = len(self.spent_inputs)
        self.spent_inputs = [i for i in self.spent_inputs if i.spend_height > prune_height]
        pruned = before - len(self.spent_inputs)
        if pruned:
            logger.debug(f"Pruned {pruned} spent inputs from {self.address}")

    def reset(self, scan_height: int, scan_timestamp: int) -> None:
        self.sync_start_height = scan_height
        self.sync_start_timestamp = scan_timestamp
        self.unspent_inputs = []
        self.locked_inputs = []
        self.spent_inputs = []
        self.unconfirmed_incoming_amounts = []

    def convert_sync_timestamp_to_height(self, timestamp: int, height: int) -> None:
        if self.sync_start_timestamp == timestamp:
            self.sync_start_timestamp = 0
            self.sync_start_height = height

    def have_spendable_input(self, transaction_input: TransactionInput, height: int) -> bool:
        for stored in self.unspent_inputs:
            if stored.key == transaction_input.key:
                return is_input_unlocked(stored.unlock_time, height)
        return False

    def get_spendable_inputs(self, current_height: int) -> list[TxInputAndOwner]:
        return [
            TxInputAndOwner(
                input=transaction_input,
                public_spend_key=self.public_spend_key,
                private_spend_key=self.private_spend_key or "",
            )
            for transaction_input in self.unspent_inputs
            if is_input_unlocked(transaction_input.unlock_time, current_height)
        ]

    def get_balance(self, current_height: int) -> tuple[int, int]:
        """Returns (unlocked, locked). Inputs being spent count towards neither."""
        unlocked = 0
        locked = 0

        for transaction_input in self.unspent_inputs:
            if is_input_unlocked(transaction_input.unlock_time, current_height):
                unlocked += transaction_input.amount
            else:
                locked += transaction_input.amount

        for unconfirmed in self.unconfirmed_incoming_amounts:
            locked += unconfirmed.amount

        return unlocked, locked

    def get_key_images(self, from_height: int = 0) -> list[str]:
        """Key images of the inputs received at or after from_height."""
        return [
            i.key_image for i in self._all_inputs() if i.key_image and i.block_height >= from_height
        ]

    def store_unconfirmed_incoming_input(self, unconfirmed_input: UnconfirmedInput) -> None:
        self.unconfirmed_incoming_amounts.append(unconfirmed_input)

    async def get_tx_input_key_image(
        self, crypto: CryptoProvider, derivation: str, output_index: int
    ) -> tuple[str, str]:
        """Returns (key_image, private_ephemeral) for one of our outputs."""
        if self.private_spend_key is None:
            return "", ""
        return await crypto.generate_key_image(
            self.public_spend_key, self.private_spend_key, output_index, derivation
        )
