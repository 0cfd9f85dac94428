"""
xkrcore - Core library for the Kryptokrona wallet

Provides chain constants, daemon wire models and the fee/size arithmetic.
"""

__version__ = "0.1.0"

from xkrcore.fees import (
    estimated_transaction_size,
    get_fusion_input_size,
    get_max_tx_size,
    get_minimum_transaction_fee,
    get_transaction_fee,
    split_amount_into_denominations,
)
from xkrcore.models import (
    Block,
    GlobalIndexes,
    KeyInput,
    KeyOutput,
    NodeFee,
    NodeInfo,
    RandomOutputs,
    RawCoinbaseTransaction,
    RawTransaction,
    SendTransactionResult,
    SynchronizationStatus,
    TopBlock,
    WalletSyncData,
    WalletSyncResponse,
)
from xkrcore.utils import (
    get_current_timestamp_adjusted,
    is_input_unlocked,
    pretty_print_amount,
    pretty_print_bytes,
)

__all__ = [
    "Block",
    "GlobalIndexes",
    "KeyInput",
    "KeyOutput",
    "NodeFee",
    "NodeInfo",
    "RandomOutputs",
    "RawCoinbaseTransaction",
    "RawTransaction",
    "SendTransactionResult",
    "SynchronizationStatus",
    "TopBlock",
    "WalletSyncData",
    "WalletSyncResponse",
    "estimated_transaction_size",
    "get_current_timestamp_adjusted",
    "get_fusion_input_size",
    "get_max_tx_size",
    "get_minimum_transaction_fee",
    "get_transaction_fee",
    "is_input_unlocked",
    "pretty_print_amount",
    "pretty_print_bytes",
    "split_amount_into_denominations",
]
