"""
xkrwallet - Kryptokrona wallet synchronization

Keeps a multi-address wallet in sync with a daemon: block download and
scanning, sub-wallet ledger, balances and input selection.
"""

__version__ = "0.1.0"
