"""
Wallet and daemon exceptions.
"""

from __future__ import annotations


class WalletError(Exception):
    """Base class for ledger and sub-wallet errors."""


class SubWalletNotFoundError(WalletError):
    """No sub-wallet has the given public spend key."""


class AddressNotInWalletError(WalletError):
    """The address does not belong to any sub-wallet."""


class IllegalViewWalletOperationError(WalletError):
    """Operation needs private spend keys, which a view wallet does not have."""


class IllegalNonViewWalletOperationError(WalletError):
    """Operation is only valid on a view wallet."""


class SubWalletAlreadyExistsError(WalletError):
    """A sub-wallet with the same public spend key is already in the wallet."""


class CannotDeletePrimaryAddressError(WalletError):
    """The primary sub-wallet can never be deleted."""


class NoPrimaryAddressError(WalletError):
    """The wallet has no primary sub-wallet."""


class KeyImageAlreadyOwnedError(WalletError):
    """A key image is already claimed by a different sub-wallet."""

    def __init__(self, key_image: str, owner: str):
        self.key_image = key_image
        self.owner = owner
        super().__init__(f"Key image {key_image} is already owned by {owner}")


class MnemonicWrongLengthError(WalletError):
    """Recovery phrase does not have the expected number of words."""

    def __init__(self, num_words: int, expected: int):
        self.num_words = num_words
        self.expected = expected
        super().__init__(f"Mnemonic has {num_words} words, expected {expected}")


class MnemonicInvalidWordError(WalletError):
    """Recovery phrase contains words that are not in the word list."""

    def __init__(self, invalid_words: list[str]):
        self.invalid_words = invalid_words
        super().__init__(f"Mnemonic contains invalid words: {', '.join(invalid_words)}")


class InvalidMnemonicError(WalletError):
    """Recovery phrase words are valid but do not decode to an address."""


class NodeError(Exception):
    """Base class for daemon errors."""


class NodeDeadError(NodeError):
    """The daemon stopped making progress for longer than the staleness window."""


class NetworkBlockCountError(NodeError):
    """The daemon reports a network height of zero."""


class DaemonRequestError(NodeError):
    """A daemon request failed at the transport, HTTP or payload level."""

    def __init__(self, endpoint: str, message: str):
        self.endpoint = endpoint
        super().__init__(f"Daemon request to {endpoint} failed: {message}")
