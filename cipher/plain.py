"""Plaintext-simulating cipher units for tests and local runs."""

import itertools
import logging
import threading
from collections import Counter

from cipher.types import Cipher, CipherError, DecryptPending, Kind, wider
from cipher.unit import CipherUnit

logger = logging.getLogger(__name__)

_unit_ids = itertools.count(1)


class PlainCipherUnit(CipherUnit):
    """
    Keeps plaintexts in a private handle table. Handed-out `Cipher` values are
    bare handles, so callers cannot read values without going through `decrypt`.
    Counts every operation (`op_counts`) and records every decrypt (`audit_log`).
    """

    def __init__(self) -> None:
        self.unit_id = next(_unit_ids)
        self._values: dict[int, int] = {}
        self._handles = itertools.count(1)
        self._lock = threading.Lock()
        self.op_counts: Counter = Counter()
        self.audit_log: list[tuple[str, Kind]] = []

    def reset_counts(self) -> None:
        self.op_counts.clear()

    def _new(self, kind: Kind, value: int) -> Cipher:
        with self._lock:
            handle = next(self._handles)
            self._values[handle] = value % kind.modulus
        return Cipher(kind=kind, handle=handle, unit_id=self.unit_id)

    def _value(self, c: Cipher) -> int:
        if not isinstance(c, Cipher) or c.unit_id != self.unit_id:
            raise CipherError(f"{c!r} was not produced by this unit")
        try:
            return self._values[c.handle]
        except KeyError:
            raise CipherError(f"unknown handle {c.handle}") from None

    @staticmethod
    def _require_int(*values: Cipher) -> None:
        for v in values:
            if v.kind == Kind.EBOOL:
                raise CipherError("arithmetic on ebool is not supported")

    def encrypt(self, plain: int | bool, kind: Kind) -> Cipher:
        self.op_counts["encrypt"] += 1
        value = int(plain)
        if value < 0 or value >= kind.modulus:
            raise ValueError(f"{plain} does not fit in {kind.value}")
        return self._new(kind, value)

    def add(self, a: Cipher, b: Cipher) -> Cipher:
        self.op_counts["add"] += 1
        self._require_int(a, b)
        return self._new(wider(a.kind, b.kind), self._value(a) + self._value(b))

    def eq(self, a: Cipher, b: Cipher) -> Cipher:
        self.op_counts["eq"] += 1
        return self._new(Kind.EBOOL, int(self._value(a) == self._value(b)))

    def gt(self, a: Cipher, b: Cipher) -> Cipher:
        self.op_counts["gt"] += 1
        self._require_int(a, b)
        return self._new(Kind.EBOOL, int(self._value(a) > self._value(b)))

    def lt(self, a: Cipher, b: Cipher) -> Cipher:
        self.op_counts["lt"] += 1
        self._require_int(a, b)
        return self._new(Kind.EBOOL, int(self._value(a) < self._value(b)))

    def select(self, cond: Cipher, a: Cipher, b: Cipher) -> Cipher:
        self.op_counts["select"] += 1
        if cond.kind != Kind.EBOOL:
            raise CipherError("select condition must be ebool")
        if (a.kind == Kind.EBOOL) != (b.kind == Kind.EBOOL):
            raise CipherError("select branches must both be ebool or both integers")
        # Both branches are read regardless of the condition.
        va, vb = self._value(a), self._value(b)
        return self._new(wider(a.kind, b.kind), va if self._value(cond) else vb)

    def decrypt(self, value: Cipher, reason: str) -> int | bool:
        self.op_counts["decrypt"] += 1
        plain = self._value(value)
        self.audit_log.append((reason, value.kind))
        logger.debug("decrypt %r reason=%s", value, reason)
        return bool(plain) if value.kind == Kind.EBOOL else plain


class OracleCipherUnit(PlainCipherUnit):
    """
    Decryption goes through an asynchronous oracle. While the oracle is offline,
    or for reasons put on hold, decrypt queues a request and raises
    DecryptPending; after `resolve_all` the caller's retry succeeds.
    """

    def __init__(self) -> None:
        super().__init__()
        self._request_ids = itertools.count(1)
        self._pending: list[int] = []
        self._offline = False
        self._held: set[str] = set()

    @property
    def pending_requests(self) -> list[int]:
        return list(self._pending)

    def go_offline(self) -> None:
        self._offline = True

    def hold(self, *reasons: str) -> None:
        """Keep decrypts with these audit reasons pending."""
        self._held.update(reasons)

    def decrypt(self, value: Cipher, reason: str) -> int | bool:
        self._value(value)
        if self._offline or reason in self._held:
            request_id = next(self._request_ids)
            self._pending.append(request_id)
            logger.debug("decrypt request %d queued for %r reason=%s", request_id, value, reason)
            raise DecryptPending(request_id, reason)
        return super().decrypt(value, reason)

    def resolve_all(self) -> int:
        """Bring the oracle back and fulfil every queued request. Returns how many."""
        count = len(self._pending)
        self._pending.clear()
        self._offline = False
        self._held.clear()
        return count
