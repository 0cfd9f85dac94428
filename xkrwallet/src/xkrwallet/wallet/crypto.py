"""
Interfaces to the cryptographic primitives and address encoding.

The wallet does not implement elliptic curve operations or address text
encoding itself. Both are supplied by the embedding application through
these interfaces.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from xkrwallet.wallet.models import KeyPair


class CryptoProvider(ABC):
    """
    One-time key derivation and key image generation.

    Methods are async so implementations may offload to a thread pool or a
    native extension without blocking the event loop.
    """

    @abstractmethod
    async def generate_key_derivation(
        self, transaction_public_key: str, private_view_key: str
    ) -> str:
        """Shared derivation of a transaction public key and our private view key.
        Raises ValueError if the public key is not a valid point."""

    @abstractmethod
    async def underive_public_key(
        self, derivation: str, output_index: int, output_key: str
    ) -> str:
        """Recover the public spend key an output was sent to"""

    @abstractmethod
    async def generate_key_image(
        self,
        public_spend_key: str,
        private_spend_key: str,
        output_index: int,
        derivation: str,
    ) -> tuple[str, str]:
        """Returns (key_image, private_ephemeral) for an output we own"""

    @abstractmethod
    async def generate_keys(self) -> KeyPair:
        """Generate a random key pair"""

    @abstractmethod
    async def secret_key_to_public_key(self, private_key: str) -> str:
        """Derive the public key of a private key"""

    @abstractmethod
    async def check_key(self, public_key: str) -> bool:
        """Check that a public key is a valid curve point"""


class AddressCodec(ABC):
    """Address text encoding and recovery phrase word list."""

    @abstractmethod
    def address_to_keys(self, address: str) -> tuple[str, str]:
        """Returns (public_spend_key, public_view_key).
        Raises ValueError on a malformed address or checksum mismatch."""

    @abstractmethod
    def keys_to_address(self, public_spend_key: str, public_view_key: str) -> str:
        """Encode public keys as an address"""

    def is_valid_address(self, address: str) -> bool:
        try:
            self.address_to_keys(address)
        except ValueError:
            return False
        return True

    @abstractmethod
    def is_valid_mnemonic_word(self, word: str) -> bool:
        """Check that a word is in the recovery phrase word list"""

    @abstractmethod
    def address_from_mnemonic(self, words: list[str]) -> str:
        """Derive the primary address of a recovery phrase.
        Raises ValueError if the phrase checksum does not match."""
