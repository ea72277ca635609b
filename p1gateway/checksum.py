"""
Telegram Checksum
CRC-16/ARC as used by DSMR 4 and later: polynomial 0x8005 (reflected),
initial value 0x0000, no final xor. ``crc16(b"123456789") == 0xBB3D``.
"""

import crcmod.predefined

from p1gateway.errors import ChecksumError, FramingError
from p1gateway.result import ParseResult

CRC_LEN = 4
CRC_NAME = "crc-16"

_HEX_DIGITS = frozenset(b"0123456789abcdefABCDEF")

crc16 = crcmod.predefined.mkPredefinedCrcFun(CRC_NAME)


def new_crc() -> "crcmod.Crc":
    """Running checksum; feed it with ``update()`` and read ``crcValue``."""
    return crcmod.predefined.Crc(CRC_NAME)


def parse_checksum(buf: bytes, start: int, end: int) -> ParseResult[int]:
    """Parse the four hex digits at ``start`` into a 16 bit value."""
    if start + CRC_LEN > end:
        return ParseResult.failure(FramingError("No checksum found", start))

    digits = buf[start:start + CRC_LEN]
    if not all(c in _HEX_DIGITS for c in digits):
        return ParseResult.failure(
            ChecksumError("Incomplete or malformed checksum", start)
        )

    return ParseResult.success(int(digits, 16), start + CRC_LEN)


def format_checksum(value: int) -> bytes:
    return b"%04X" % value
