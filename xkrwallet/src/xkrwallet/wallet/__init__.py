"""
Wallet ledger and synchronization.
"""
