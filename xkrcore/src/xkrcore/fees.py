"""
Transaction size, fee and denomination calculations.

All results must match the daemon's own arithmetic exactly, so everything
here is integer math on atomic units and byte counts.
"""

from __future__ import annotations

import math

from xkrcore.constants import (
    CRYPTONOTE_COINBASE_BLOB_RESERVED_SIZE,
    FEE_PER_BYTE_CHUNK_SIZE,
    MAX_BLOCK_SIZE_CAP,
    MAX_BLOCK_SIZE_GROWTH_SPEED_DENOMINATOR,
    MAX_BLOCK_SIZE_GROWTH_SPEED_NUMERATOR,
    MAX_BLOCK_SIZE_INITIAL,
    MAX_OUTPUT_SIZE_CLIENT,
    MINIMUM_FEE_PER_BYTE,
)

KEY_IMAGE_SIZE = 32
OUTPUT_KEY_SIZE = 32
AMOUNT_SIZE = 8 + 2  # varint
GLOBAL_INDEXES_VECTOR_SIZE_SIZE = 1
GLOBAL_INDEXES_INITIAL_VALUE_SIZE = 4
SIGNATURE_SIZE = 64
EXTRA_TAG_SIZE = 1
INPUT_TAG_SIZE = 1
OUTPUT_TAG_SIZE = 1
PUBLIC_KEY_SIZE = 32
TRANSACTION_VERSION_SIZE = 1
TRANSACTION_UNLOCK_TIME_SIZE = 8 + 2  # varint
PAYMENT_ID_SIZE = 34


def get_input_size(mixin: int) -> int:
    """Serialized size of one key input with `mixin` ring members besides the real one."""
    return (
        INPUT_TAG_SIZE
        + AMOUNT_SIZE
        + KEY_IMAGE_SIZE
        + SIGNATURE_SIZE
        + GLOBAL_INDEXES_VECTOR_SIZE_SIZE
        + GLOBAL_INDEXES_INITIAL_VALUE_SIZE
        + mixin * SIGNATURE_SIZE
    )


def get_output_size() -> int:
    return OUTPUT_TAG_SIZE + OUTPUT_KEY_SIZE + AMOUNT_SIZE


def get_fusion_input_size(mixin: int) -> int:
    """
    Per-input size used to cap how many inputs a fusion transaction may take.

    Matches the daemon's fusion size check, which counts the amount as a
    6+2 byte varint and each ring member as a 4 byte offset plus signature,
    e.g. 314 bytes with mixin 3.
    """
    return (
        INPUT_TAG_SIZE
        + (6 + 2)
        + KEY_IMAGE_SIZE
        + SIGNATURE_SIZE
        + GLOBAL_INDEXES_VECTOR_SIZE_SIZE
        + GLOBAL_INDEXES_INITIAL_VALUE_SIZE
        + mixin * (GLOBAL_INDEXES_INITIAL_VALUE_SIZE + SIGNATURE_SIZE)
    )


def estimated_transaction_size(
    mixin: int,
    num_inputs: int,
    num_outputs: int,
    have_payment_id: bool,
    extra_data_size: int,
) -> int:
    """
    Estimate the serialized size of a transaction in bytes.

    Args:
        mixin: Number of decoy outputs per input
        num_inputs: Number of inputs
        num_outputs: Number of outputs
        have_payment_id: Whether a payment ID is embedded in tx extra
        extra_data_size: Size of arbitrary extra data, 0 if none

    Returns:
        Estimated size in bytes
    """
    extra_size = extra_data_size + 4 if extra_data_size > 0 else 0
    payment_id_size = PAYMENT_ID_SIZE if have_payment_id else 0

    header_size = (
        TRANSACTION_VERSION_SIZE
        + TRANSACTION_UNLOCK_TIME_SIZE
        + EXTRA_TAG_SIZE
        + extra_size
        + PUBLIC_KEY_SIZE
        + payment_id_size
    )

    inputs_size = get_input_size(mixin) * num_inputs
    outputs_size = get_output_size() * num_outputs

    return header_size + inputs_size + outputs_size


def get_max_block_size(current_height: int, block_time: int) -> int:
    """
    Maximum cumulative block size at a height, ignoring the median of recent blocks.

    Follows the daemon's growth curve, e.g. with a 30 second block time:
    100,000 + ((height * 102,400) / 1,051,200), capped at 125,000.
    """
    numerator = current_height * MAX_BLOCK_SIZE_GROWTH_SPEED_NUMERATOR
    denominator = MAX_BLOCK_SIZE_GROWTH_SPEED_DENOMINATOR // block_time
    growth = numerator // denominator
    return min(MAX_BLOCK_SIZE_INITIAL + growth, MAX_BLOCK_SIZE_CAP)


def get_max_tx_size(current_height: int, block_time: int) -> int:
    """Largest transaction that fits in a block, leaving room for the miner transaction."""
    return get_max_block_size(current_height, block_time) - CRYPTONOTE_COINBASE_BLOB_RESERVED_SIZE


def get_transaction_fee(
    transaction_size: int,
    fee_per_byte: float,
    chunk_size: int = FEE_PER_BYTE_CHUNK_SIZE,
) -> int:
    """Fee for a transaction of the given size, charged per started chunk."""
    num_chunks = -(-transaction_size // chunk_size)
    return math.ceil(num_chunks * fee_per_byte * chunk_size)


def get_minimum_transaction_fee(transaction_size: int, height: int) -> int:
    """Network minimum fee. The fee schedule does not currently depend on height."""
    return get_transaction_fee(transaction_size, MINIMUM_FEE_PER_BYTE)


def split_amount_into_denominations(
    amount: int, prevent_too_large_outputs: bool = True
) -> list[int]:
    """
    Split an amount into base-10 denominations, e.g.
    1234567 = 1000000 + 200000 + 30000 + 4000 + 500 + 60 + 7

    With prevent_too_large_outputs, a denomination above MAX_OUTPUT_SIZE_CLIENT
    is replaced by 10**n equal parts, n being the smallest exponent that
    brings each part under the limit.
    """
    multiplier = 1
    split_amounts: list[int] = []

    while amount >= 1:
        denomination = multiplier * (amount % 10)

        if denomination > MAX_OUTPUT_SIZE_CLIENT and prevent_too_large_outputs:
            num_split_amounts = 10
            split_amount = denomination // 10

            while split_amount > MAX_OUTPUT_SIZE_CLIENT:
                split_amount //= 10
                num_split_amounts *= 10

            split_amounts.extend([split_amount] * num_split_amounts)
        elif denomination != 0:
            split_amounts.append(denomination)

        amount //= 10
        multiplier *= 10

    return split_amounts
