"""
Value Primitives
Bounded, parenthesized string values and their fixed-capacity storage.
"""

from typing import Union

from p1gateway.errors import FieldValueError
from p1gateway.result import ParseResult

LPAREN = ord("(")
RPAREN = ord(")")


class FixedString:
    """Byte string stored in a buffer allocated once with a fixed capacity."""

    __slots__ = ("capacity", "_buf", "_len")

    def __init__(self, capacity: int, data: bytes = b""):
        if capacity < 0:
            raise ValueError("capacity must not be negative")
        self.capacity = capacity
        self._buf = bytearray(capacity)
        self._len = 0
        if data:
            self.assign(data)

    def assign(self, data: bytes) -> None:
        """
        Replace the contents.

        Raises:
            OverflowError: If data does not fit; contents stay unchanged
        """
        n = len(data)
        if n > self.capacity:
            raise OverflowError(
                f"{n} bytes do not fit in a string of capacity {self.capacity}"
            )
        self._buf[:n] = data
        self._len = n

    def clear(self) -> None:
        self._len = 0

    def __bytes__(self):
        return bytes(self._buf[:self._len])

    def __str__(self):
        return self._buf[:self._len].decode("ascii", errors="replace")

    def __len__(self):
        return self._len

    def __repr__(self):
        return f"FixedString({self.capacity}, {bytes(self)!r})"

    def __eq__(self, other: object):
        if isinstance(other, FixedString):
            return bytes(self) == bytes(other)
        if isinstance(other, (bytes, bytearray)):
            return bytes(self) == bytes(other)
        if isinstance(other, str):
            return str(self) == other
        return NotImplemented

    # Mutable, and equal to both bytes and str
    __hash__ = None


def parse_string(
    buf: bytes,
    start: int,
    end: int,
    min_len: int,
    max_len: int
) -> ParseResult[FixedString]:
    """
    Parse ``(<text>)`` at ``start`` with ``min_len <= len(text) <= max_len``.

    Parentheses do not nest: the first ``)`` before ``end`` closes the value.
    """
    if start >= end or buf[start] != LPAREN:
        return ParseResult.failure(FieldValueError("Missing (", start))

    str_start = start + 1
    str_end = buf.find(b")", str_start, end)
    if str_end < 0:
        return ParseResult.failure(FieldValueError("Missing )", start))

    length = str_end - str_start
    if length < min_len or length > max_len:
        return ParseResult.failure(FieldValueError("Invalid string length", start))

    value = FixedString(max_len, buf[str_start:str_end])
    return ParseResult.success(value, str_end + 1)


def as_bytes(value: Union[FixedString, bytes, str]) -> bytes:
    """Raw bytes of a string value, for rendering telegram text."""
    if isinstance(value, str):
        return value.encode("ascii")
    return bytes(value)
