"""Abstract confidential arithmetic unit."""

from abc import ABC, abstractmethod

from cipher.types import Cipher, Kind


class CipherUnit(ABC):
    """Closed operation set over encrypted values.

    Game logic only ever combines ciphertexts through these calls. `decrypt` is
    the privileged one: every call names the predicate being revealed.
    """

    @abstractmethod
    def encrypt(self, plain: int | bool, kind: Kind) -> Cipher:
        ...

    @abstractmethod
    def add(self, a: Cipher, b: Cipher) -> Cipher:
        ...

    @abstractmethod
    def eq(self, a: Cipher, b: Cipher) -> Cipher:
        ...

    @abstractmethod
    def gt(self, a: Cipher, b: Cipher) -> Cipher:
        ...

    @abstractmethod
    def lt(self, a: Cipher, b: Cipher) -> Cipher:
        ...

    @abstractmethod
    def select(self, cond: Cipher, a: Cipher, b: Cipher) -> Cipher:
        ...

    @abstractmethod
    def decrypt(self, value: Cipher, reason: str) -> int | bool:
        ...

    # Derived helpers; built only from the closed set above.

    def not_(self, a: Cipher) -> Cipher:
        return self.select(a, self.encrypt(False, Kind.EBOOL), self.encrypt(True, Kind.EBOOL))

    def and_(self, a: Cipher, b: Cipher) -> Cipher:
        return self.select(a, b, self.encrypt(False, Kind.EBOOL))

    def or_(self, a: Cipher, b: Cipher) -> Cipher:
        return self.select(a, self.encrypt(True, Kind.EBOOL), b)
