"""
Small helpers shared by the wallet: unlock checks, display formatting and
timestamp arithmetic.
"""

from __future__ import annotations

import time

from xkrcore.constants import BLOCK_TARGET_TIME, DECIMAL_PLACES, MAX_BLOCK_NUMBER, TICKER


def is_input_unlocked(unlock_time: int, current_height: int, now: int | None = None) -> bool:
    """
    Check whether an output with the given unlock time is spendable.

    Unlock times at or above MAX_BLOCK_NUMBER are UNIX timestamps, anything
    below is a block height.

    Args:
        unlock_time: Unlock time from the transaction
        current_height: Current blockchain height
        now: Current UNIX time, defaults to the system clock

    Returns:
        True if the output can be spent
    """
    # Nearly every non-coinbase transaction has no unlock time
    if unlock_time == 0:
        return True

    if unlock_time >= MAX_BLOCK_NUMBER:
        if now is None:
            now = int(time.time())
        return now >= unlock_time

    return current_height + 1 >= unlock_time


def pretty_print_amount(
    amount: int, decimal_places: int = DECIMAL_PLACES, ticker: str = TICKER
) -> str:
    """Format an atomic amount, e.g. 123456789 -> 'XKR 1,234.56789'."""
    divisor = 10**decimal_places
    sign = "-" if amount < 0 else ""
    whole, fraction = divmod(abs(amount), divisor)
    if decimal_places == 0:
        return f"{ticker} {sign}{whole:,}"
    return f"{ticker} {sign}{whole:,}.{fraction:0{decimal_places}d}"


def pretty_print_bytes(num_bytes: float) -> str:
    """Format a byte count with a binary suffix, e.g. 2048 -> '2.00 KB'."""
    suffixes = ["B", "KB", "MB", "GB", "TB"]
    selected = 0

    while num_bytes >= 1024 and selected < len(suffixes) - 1:
        selected += 1
        num_bytes /= 1024

    return f"{num_bytes:.2f} {suffixes[selected]}"


def get_current_timestamp_adjusted(block_target_time: int = BLOCK_TARGET_TIME) -> int:
    """
    Current UNIX time minus 100 blocks worth of seconds.

    New wallets start scanning from here so a transaction sent to them right
    after creation is not missed because of clock drift.
    """
    return int(time.time()) - 100 * block_target_time


def get_lower_bound(val: int, nearest_multiple: int) -> int:
    return val - val % nearest_multiple


def get_upper_bound(val: int, nearest_multiple: int) -> int:
    return get_lower_bound(val, nearest_multiple) + nearest_multiple
