"""
Kryptokrona chain and wallet constants.

These mirror the values the reference daemon uses for its consensus checks.
Wallet code that builds or sizes transactions must agree with them exactly,
so they are not exposed through configuration.
"""

from __future__ import annotations

# Unlock times below this are block heights, at or above it they are UNIX timestamps
MAX_BLOCK_NUMBER = 500_000_000

# Block size growth curve: INITIAL + height * NUMERATOR / (DENOMINATOR / block_time)
MAX_BLOCK_SIZE_INITIAL = 100_000
MAX_BLOCK_SIZE_GROWTH_SPEED_NUMERATOR = 100 * 1024
MAX_BLOCK_SIZE_GROWTH_SPEED_DENOMINATOR = 365 * 24 * 60 * 60

# Hard upper bound the wallet uses for a block, regardless of the growth curve
MAX_BLOCK_SIZE_CAP = 125_000

# Space kept free in every block for the miner (coinbase) transaction
CRYPTONOTE_COINBASE_BLOB_RESERVED_SIZE = 600

# Largest single output the wallet will create when splitting amounts
MAX_OUTPUT_SIZE_CLIENT = 100_000_000_00

# Fusion transactions
FUSION_TX_MIN_INPUT_COUNT = 12
FUSION_TX_MAX_SIZE = MAX_BLOCK_SIZE_INITIAL * 30 // 100

# Atomic units per coin is 10 ** DECIMAL_PLACES
DECIMAL_PLACES = 5
TICKER = "XKR"

# Target time between blocks (seconds)
BLOCK_TARGET_TIME = 90

# Fees are charged per started chunk of this many bytes
FEE_PER_BYTE_CHUNK_SIZE = 256
MINIMUM_FEE_PER_BYTE = 500 / 256

# Recovery phrases are always this many words
MNEMONIC_WORD_COUNT = 25

# Synchronization checkpoints
# Recent block hashes kept for fork detection
LAST_KNOWN_BLOCK_HASHES_SIZE = 50
# An infrequent checkpoint is stored every this many blocks
BLOCK_HASH_CHECKPOINTS_INTERVAL = 5000
# Spent inputs older than this many blocks are pruned
PRUNE_SPENT_INPUTS_INTERVAL = 5000

# Consecutive "not found" answers tolerated before a sent transaction is cancelled
CANCELLED_TRANSACTION_MAX_FAIL_COUNT = 3
