"""Opaque ciphertext arithmetic for Cipher Mafia."""

from cipher.types import Cipher, CipherError, DecryptPending, Kind
from cipher.unit import CipherUnit
from cipher.plain import OracleCipherUnit, PlainCipherUnit

__all__ = [
    "Cipher",
    "CipherError",
    "CipherUnit",
    "DecryptPending",
    "Kind",
    "OracleCipherUnit",
    "PlainCipherUnit",
]
