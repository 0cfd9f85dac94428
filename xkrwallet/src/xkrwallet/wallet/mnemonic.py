"""
Recovery phrase validation.
"""

from __future__ import annotations

from xkrcore.constants import MNEMONIC_WORD_COUNT
from xkrwallet.errors import InvalidMnemonicError, MnemonicInvalidWordError, MnemonicWrongLengthError
from xkrwallet.wallet.crypto import AddressCodec


def is_valid_mnemonic(words: list[str] | str, codec: AddressCodec) -> str:
    """
    Validate a recovery phrase before any key derivation.

    Args:
        words: Phrase as a list of words or a whitespace separated string
        codec: Supplies the word list and the phrase -> address derivation

    Returns:
        The primary address of the phrase

    Raises:
        MnemonicWrongLengthError: Not exactly MNEMONIC_WORD_COUNT words
        MnemonicInvalidWordError: Words missing from the word list
        InvalidMnemonicError: Checksum word does not match
    """
    if isinstance(words, str):
        words = words.split()

    if len(words) != MNEMONIC_WORD_COUNT:
        raise MnemonicWrongLengthError(len(words), MNEMONIC_WORD_COUNT)

    invalid_words = [word for word in words if not codec.is_valid_mnemonic_word(word)]
    if invalid_words:
        raise MnemonicInvalidWordError(invalid_words)

    try:
        return codec.address_from_mnemonic(words)
    except ValueError as e:
        raise InvalidMnemonicError(str(e)) from e
