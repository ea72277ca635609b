"""Errors reported while parsing a telegram.

The parsing core never raises these: it returns them inside a
``ParseResult``. Callers that prefer exceptions use
``ParseResult.raise_for_error()``.
"""

from typing import Optional


class TelegramError(Exception):
    """Base error for everything that can go wrong with a telegram."""

    kind = "telegram"

    def __init__(self, message: str, offset: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.offset = offset

    def __str__(self):
        if self.offset is None:
            return self.message
        return f"{self.message} (at offset {self.offset})"


class FramingError(TelegramError):
    """Leading or trailing marker missing, or no checksum bytes."""

    kind = "framing"


class ChecksumError(TelegramError):
    """Malformed checksum digits or checksum mismatch."""

    kind = "checksum"


class IdentificationError(TelegramError):
    """Malformed identification line."""

    kind = "identification"


class IdentifierError(TelegramError):
    """Malformed, overflowing or unknown OBIS identifier."""

    kind = "identifier"


class FieldValueError(TelegramError):
    """Value rejected by a field parser."""

    kind = "field_value"


class TrailingDataError(TelegramError):
    """Field consumed part, but not all, of its value span."""

    kind = "trailing_data"


class TerminationError(TelegramError):
    """Final line not terminated before the trailing marker."""

    kind = "termination"
