"""
Wallet data models.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class KeyPair:
    public_key: str
    private_key: str


@dataclass
class TransactionInput:
    """An output we own, which becomes an input once we spend it"""

    key_image: str
    amount: int
    block_height: int
    transaction_public_key: str
    transaction_index: int  # Position among the outputs of the parent transaction
    global_output_index: int | None
    key: str  # One-time output key
    spend_height: int = 0  # 0 while unspent
    unlock_time: int = 0
    parent_transaction_hash: str = ""
    private_ephemeral: str = ""
    # Hash of the transaction we sent that is spending this input, if any
    locking_transaction_hash: str = ""


@dataclass
class UnconfirmedInput:
    """Incoming amount of a transaction we sent, e.g. change, not yet in a block"""

    amount: int
    key: str
    parent_transaction_hash: str


@dataclass
class Transaction:
    """A transaction affecting one or more of our sub-wallets"""

    # Public spend key -> signed amount change for that sub-wallet
    transfers: dict[str, int]
    hash: str
    fee: int
    timestamp: int
    block_height: int
    payment_id: str = ""
    unlock_time: int = 0
    is_coinbase_transaction: bool = False

    def total_amount(self) -> int:
        return sum(self.transfers.values())

    def is_fusion_transaction(self) -> bool:
        return self.fee == 0 and not self.is_coinbase_transaction


@dataclass
class TxInputAndOwner:
    input: TransactionInput
    public_spend_key: str
    private_spend_key: str


@dataclass
class TransactionData:
    """Changes one block makes to the ledger, applied in a single step"""

    transactions_to_add: list[Transaction] = field(default_factory=list)
    # (owner public spend key, input)
    inputs_to_add: list[tuple[str, TransactionInput]] = field(default_factory=list)
    # (owner public spend key, key image)
    key_images_to_mark_spent: list[tuple[str, str]] = field(default_factory=list)
