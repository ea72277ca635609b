"""
P1 Telegram Parser
Framing, checksum verification, line splitting and per-line dispatch of
complete DSMR P1 telegrams.

A telegram looks like::

    /XXX5<identification>\\r\\n
    \\r\\n
    1-0:1.8.1(000671.578*kWh)\\r\\n
    ...
    !<crc>\\r\\n

The checksum covers everything from ``/`` up to and including ``!``.
"""

from p1gateway.checksum import new_crc, parse_checksum
from p1gateway.errors import (
    ChecksumError,
    FramingError,
    IdentificationError,
    IdentifierError,
    TerminationError,
    TrailingDataError,
)
from p1gateway.fields import ParsedData
from p1gateway.obis import IDENTIFICATION_ID, parse_obis_id
from p1gateway.result import ParseResult

START_MARKER = ord("/")
END_MARKER = ord("!")
CR = ord("\r")
LF = ord("\n")

# Baud rate indication in the identification line. '5' (9600 baud) is what
# DSMR 3 and later send, DSMR 2 meters send '3' (mode D of IEC 62056-21).
BAUD_INDICATORS = (ord("5"), ord("3"))


def _find_eol(buf: bytes, start: int, end: int) -> int:
    for pos in range(start, end):
        if buf[pos] == CR or buf[pos] == LF:
            return pos
    return -1


class P1Parser:
    """
    Parses one fully buffered telegram into a ``ParsedData`` aggregate.

    Args:
        check_crc: Compare the trailing checksum with the computed one. The
            four checksum digits are required either way.
        unknown_error: Treat identifiers without a declared field as errors
    """

    def __init__(self, check_crc: bool = True, unknown_error: bool = False):
        self.check_crc = check_crc
        self.unknown_error = unknown_error

    def parse(self, data: ParsedData, buf: bytes) -> ParseResult[None]:
        """
        Parse a complete telegram starting at ``buf[0]``.

        The aggregate is reset first. On success ``next`` points just past
        the four checksum digits; anything after that is left alone. On
        failure the aggregate must not be trusted.
        """
        data.reset()
        n = len(buf)

        if not n or buf[0] != START_MARKER:
            return ParseResult.failure(FramingError("Data should start with /", 0))

        data_start = 1
        data_end = buf.find(END_MARKER, data_start)
        if data_end < 0:
            return ParseResult.failure(FramingError("No checksum found", n - 1))

        crc = new_crc()
        crc.update(bytes(buf[0:data_end + 1]))

        check_res = parse_checksum(buf, data_end + 1, n)
        if check_res.failed:
            return check_res

        if self.check_crc and check_res.value != crc.crcValue:
            return ParseResult.failure(ChecksumError("Checksum mismatch", data_end))

        res = self.parse_data(data, buf, data_start, data_end)
        if res.failed:
            return res

        return ParseResult.success(None, check_res.next)

    def parse_data(self, data: ParsedData, buf: bytes, start: int, end: int) -> ParseResult[None]:
        """
        Parse the lines in ``buf[start:end]``, i.e. between ``/`` and ``!``.
        Does not verify the checksum.
        """
        line_end = _find_eol(buf, start, end)
        if line_end < 0:
            if start == end:
                return ParseResult.failure(
                    IdentificationError("Missing identification line", start)
                )
            return ParseResult.failure(
                TerminationError("Last dataline not CRLF terminated", start)
            )

        # XXX5<id>: three letter manufacturer id, baud rate indication, then
        # up to 96 characters of meter identification.
        if start + 3 >= line_end or buf[start + 3] not in BAUD_INDICATORS:
            return ParseResult.failure(
                IdentificationError("Invalid identification string", start)
            )

        res = data.dispatch(IDENTIFICATION_ID, buf, start, line_end)
        if res.failed:
            return res

        line_start = line_end + 1
        while True:
            line_end = _find_eol(buf, line_start, end)
            if line_end < 0:
                break
            res = self.parse_line(data, buf, line_start, line_end)
            if res.failed:
                return res
            line_start = line_end + 1

        if line_start != end:
            return ParseResult.failure(
                TerminationError("Last dataline not CRLF terminated", line_start)
            )

        return ParseResult.success(None, end)

    def parse_line(self, data: ParsedData, buf: bytes, start: int, end: int) -> ParseResult[None]:
        """Parse one data line ``<obis id>(<value>)``, without terminator."""
        if start == end:
            return ParseResult.success(None, end)

        id_res = parse_obis_id(buf, start, end)
        if id_res.failed:
            return id_res

        if id_res.value == IDENTIFICATION_ID:
            value_res = ParseResult.not_matched(id_res.next)
        else:
            value_res = data.dispatch(id_res.value, buf, id_res.next, end)

        if value_res.failed:
            return value_res

        if not value_res.matched:
            if self.unknown_error:
                return ParseResult.failure(IdentifierError("Unknown field", start))
            return ParseResult.success(None, end)

        # A matched field must consume its whole value, even when that
        # value is empty.
        if value_res.next != end:
            return ParseResult.failure(
                TrailingDataError("Trailing characters on data line", value_res.next)
            )

        return ParseResult.success(None, end)
