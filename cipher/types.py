"""Ciphertext kinds and handles."""

from dataclasses import dataclass
from enum import Enum


class Kind(str, Enum):
    """Encrypted value kinds and their bit widths."""

    EBOOL = "ebool"
    EBYTE = "ebyte"
    EWORD = "eword"

    @property
    def bits(self) -> int:
        return _BITS[self]

    @property
    def modulus(self) -> int:
        return 1 << self.bits


_BITS = {Kind.EBOOL: 1, Kind.EBYTE: 8, Kind.EWORD: 32}


def wider(a: Kind, b: Kind) -> Kind:
    """Return the kind with more bits."""
    return a if a.bits >= b.bits else b


@dataclass(frozen=True)
class Cipher:
    """Opaque handle to an encrypted value. Never carries its plaintext."""

    kind: Kind
    handle: int
    unit_id: int

    def __repr__(self) -> str:
        return f"Cipher({self.kind.value}#{self.handle})"


class CipherError(Exception):
    """Malformed ciphertext operation (wrong kind, foreign handle)."""


class DecryptPending(Exception):
    """Decryption was requested but the result is not available yet.

    Retryable: the caller should resubmit once the request resolves.
    """

    def __init__(self, request_id: int, reason: str = ""):
        super().__init__(f"decrypt request {request_id} pending ({reason})")
        self.request_id = request_id
        self.reason = reason
