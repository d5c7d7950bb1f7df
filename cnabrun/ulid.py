"""Monotonic ULID generation."""

from __future__ import annotations

import os
import threading
import time
from typing import BinaryIO, Callable

_ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
_ENCODED_LENGTH = 26
_RANDOM_BYTES = 10
_RANDOM_LIMIT = 1 << 80
_TIME_LIMIT = 1 << 48


def _encode(value: int) -> str:
    return "".join(
        _ALPHABET[(value >> (5 * (_ENCODED_LENGTH - 1 - position))) & 0x1F]
        for position in range(_ENCODED_LENGTH)
    )


class UlidGenerator:
    """Thread-safe generator of monotonically increasing ULIDs.

    ``entropy`` is a readable binary stream supplying random bytes; when it is
    None the operating system's random source is used.
    """

    def __init__(self, entropy: BinaryIO | None = None) -> None:
        self._read: Callable[[int], bytes] = entropy.read if entropy is not None else os.urandom
        self._lock = threading.Lock()
        self._last_ms = -1
        self._last_random = 0

    def _read_random(self) -> int:
        data = self._read(_RANDOM_BYTES)
        if len(data) < _RANDOM_BYTES:
            raise RuntimeError("could not generate a new ULID: EOF")
        return int.from_bytes(data, "big")

    def new(self) -> str:
        """Return the next ULID as a 26 character string."""
        with self._lock:
            now_ms = time.time_ns() // 1_000_000
            if now_ms >= _TIME_LIMIT:
                raise RuntimeError("could not generate a new ULID: timestamp too large")
            if now_ms <= self._last_ms:
                random_part = self._last_random + 1
                if random_part >= _RANDOM_LIMIT:
                    raise RuntimeError("could not generate a new ULID: monotonic entropy overflow")
                now_ms = self._last_ms
            else:
                random_part = self._read_random()
            self._last_ms = now_ms
            self._last_random = random_part
            return _encode((now_ms << 80) | random_part)


_default_generator = UlidGenerator()


def new_ulid() -> str:
    """Generate a new ULID with the shared process-wide generator."""
    return _default_generator.new()


def is_valid_ulid(value: str) -> bool:
    """Report whether ``value`` is a well-formed ULID string."""
    if not isinstance(value, str) or len(value) != _ENCODED_LENGTH:
        return False
    upper = value.upper()
    if upper[0] not in "01234567":
        return False
    return all(char in _ALPHABET for char in upper)