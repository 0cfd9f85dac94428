"""
Tests for xkrcore.utils
"""

import time
from unittest.mock import patch

from xkrcore.constants import MAX_BLOCK_NUMBER
from xkrcore.utils import (
    get_current_timestamp_adjusted,
    get_lower_bound,
    get_upper_bound,
    is_input_unlocked,
    pretty_print_amount,
    pretty_print_bytes,
)


class TestIsInputUnlocked:
    def test_zero_unlock_time(self):
        assert is_input_unlocked(0, 0)
        assert is_input_unlocked(0, 1_000_000)

    def test_height_unlock(self):
        """A height unlock time is satisfied one block early."""
        assert not is_input_unlocked(100, 98)
        assert is_input_unlocked(100, 99)
        assert is_input_unlocked(100, 150)

    def test_timestamp_unlock_in_future(self):
        unlock_time = MAX_BLOCK_NUMBER + 10
        assert not is_input_unlocked(unlock_time, 1_000_000, now=MAX_BLOCK_NUMBER + 9)

    def test_timestamp_unlock_reached(self):
        unlock_time = MAX_BLOCK_NUMBER + 10
        assert is_input_unlocked(unlock_time, 0, now=MAX_BLOCK_NUMBER + 10)

    def test_timestamp_uses_clock_by_default(self):
        unlock_time = MAX_BLOCK_NUMBER + 10
        with patch.object(time, "time", return_value=MAX_BLOCK_NUMBER + 9):
            assert not is_input_unlocked(unlock_time, 0)
        with patch.object(time, "time", return_value=MAX_BLOCK_NUMBER + 11):
            assert is_input_unlocked(unlock_time, 0)


class TestPrettyPrint:
    def test_amount(self):
        assert pretty_print_amount(123456789) == "XKR 1,234.56789"
        assert pretty_print_amount(5) == "XKR 0.00005"
        assert pretty_print_amount(0) == "XKR 0.00000"

    def test_negative_amount(self):
        assert pretty_print_amount(-150000) == "XKR -1.50000"

    def test_amount_custom_ticker(self):
        assert pretty_print_amount(250, decimal_places=2, ticker="TRTL") == "TRTL 2.50"

    def test_bytes(self):
        assert pretty_print_bytes(500) == "500.00 B"
        assert pretty_print_bytes(2048) == "2.00 KB"
        assert pretty_print_bytes(5 * 1024 * 1024) == "5.00 MB"

    def test_bytes_largest_suffix(self):
        assert pretty_print_bytes(1024**5) == "1024.00 TB"


class TestTimestamps:
    def test_current_timestamp_adjusted(self):
        with patch.object(time, "time", return_value=1_700_000_000.7):
            assert get_current_timestamp_adjusted(90) == 1_700_000_000 - 9000

    def test_bounds(self):
        assert get_lower_bound(12345, 5000) == 10000
        assert get_upper_bound(12345, 5000) == 15000
        assert get_lower_bound(10000, 5000) == 10000
