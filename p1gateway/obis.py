"""
OBIS Identifiers
Six component identifiers of the form ``A-B:C.D.E.F`` as found in front of
every P1 data line.
"""

from typing import NamedTuple

from p1gateway.errors import IdentifierError
from p1gateway.result import ParseResult

# Value of every component that was not present in the text
ABSENT = 255

_DASH = ord("-")
_COLON = ord(":")
_DOT = ord(".")
_ZERO = ord("0")
_NINE = ord("9")


class ObisId(NamedTuple):
    a: int = ABSENT
    b: int = ABSENT
    c: int = ABSENT
    d: int = ABSENT
    e: int = ABSENT
    f: int = ABSENT

    def __str__(self):
        text = f"{self.a}-{self.b}:{self.c}.{self.d}.{self.e}"
        if self.f != ABSENT:
            text += f".{self.f}"
        return text

    @classmethod
    def from_text(cls, text: str) -> "ObisId":
        """
        Build an identifier from its textual form.

        Raises:
            ValueError: If the text is not one complete identifier
        """
        raw = text.encode("ascii")
        res = parse_obis_id(raw, 0, len(raw))
        if res.failed:
            raise ValueError(f"Invalid OBIS id {text!r}: {res.error.message}")
        if res.next != len(raw):
            raise ValueError(f"Invalid OBIS id {text!r}: trailing characters")
        return res.value


# The identification line is offered under this id. Data lines that parse to
# it are never dispatched, so no real field can collide with it.
IDENTIFICATION_ID = ObisId(ABSENT, ABSENT, ABSENT, ABSENT, ABSENT, ABSENT)


def parse_obis_id(buf: bytes, start: int, end: int) -> ParseResult[ObisId]:
    """
    Parse the longest identifier prefix of ``buf[start:end]``.

    Parsing stops without error at the first character that is neither a
    digit nor a separator valid at the current position. Components that
    were never reached are set to 255.
    """
    parts = [0, 0, 0, 0, 0, 0]
    part = 0
    pos = start

    while pos < end:
        c = buf[pos]

        if _ZERO <= c <= _NINE:
            value = parts[part] * 10 + (c - _ZERO)
            if value > 255:
                return ParseResult.failure(
                    IdentifierError("OBIS id has number over 255", start)
                )
            parts[part] = value
        elif part == 0 and c == _DASH:
            part += 1
        elif part == 1 and c == _COLON:
            part += 1
        elif 1 < part < 5 and c == _DOT:
            part += 1
        else:
            break
        pos += 1

    if pos == start:
        return ParseResult.failure(IdentifierError("OBIS id empty", start))

    for i in range(part + 1, 6):
        parts[i] = ABSENT

    return ParseResult.success(ObisId(*parts), pos)
