"""
P1 Gateway
Parses DSMR P1 telegrams from smart meters and publishes them to MQTT.
"""

from p1gateway.errors import (
    TelegramError,
    FramingError,
    ChecksumError,
    IdentificationError,
    IdentifierError,
    FieldValueError,
    TrailingDataError,
    TerminationError,
)
from p1gateway.result import Outcome, ParseResult
from p1gateway.obis import ObisId, IDENTIFICATION_ID, parse_obis_id
from p1gateway.fields import Field, ParsedData
from p1gateway.parser import P1Parser

__version__ = "1.0.0"

__all__ = [
    "TelegramError",
    "FramingError",
    "ChecksumError",
    "IdentificationError",
    "IdentifierError",
    "FieldValueError",
    "TrailingDataError",
    "TerminationError",
    "Outcome",
    "ParseResult",
    "ObisId",
    "IDENTIFICATION_ID",
    "parse_obis_id",
    "Field",
    "ParsedData",
    "P1Parser",
]
