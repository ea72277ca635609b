"""
DSMR Fields
Concrete P1 fields built on the value primitives, covering what DSMR 4 and 5
electricity meters with an attached gas meter send.
"""

from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from p1gateway.errors import FieldValueError
from p1gateway.fields import Field
from p1gateway.obis import IDENTIFICATION_ID, ObisId
from p1gateway.primitives import LPAREN, RPAREN, FixedString, as_bytes, parse_string
from p1gateway.result import ParseResult

IDENTIFICATION_MAX = 96
TIMESTAMP_LEN = 13

_STAR = ord("*")
_DOT = ord(".")


def _is_digit(c: int) -> bool:
    return 0x30 <= c <= 0x39


def parse_identification(buf: bytes, start: int, end: int) -> ParseResult[FixedString]:
    """The identification line is taken verbatim, without parentheses."""
    if end - start > IDENTIFICATION_MAX:
        return ParseResult.failure(FieldValueError("Identification too long", start))
    return ParseResult.success(FixedString(IDENTIFICATION_MAX, buf[start:end]), end)


def parse_number(
    buf: bytes,
    start: int,
    end: int,
    unit: str = ""
) -> ParseResult[Decimal]:
    """
    Parse ``(<digits>[.<digits>][*<unit>])``.

    When ``unit`` is given it must be present and match exactly.
    """
    if start >= end or buf[start] != LPAREN:
        return ParseResult.failure(FieldValueError("Missing (", start))

    pos = start + 1
    num_start = pos
    while pos < end and _is_digit(buf[pos]):
        pos += 1
    if pos == num_start:
        return ParseResult.failure(FieldValueError("Invalid number", num_start))

    if pos < end and buf[pos] == _DOT:
        pos += 1
        frac_start = pos
        while pos < end and _is_digit(buf[pos]):
            pos += 1
        if pos == frac_start:
            return ParseResult.failure(FieldValueError("Invalid number", num_start))
    value = Decimal(buf[num_start:pos].decode("ascii"))

    if unit:
        if pos >= end or buf[pos] != _STAR:
            return ParseResult.failure(FieldValueError("Missing unit", pos))
        pos += 1
        raw_unit = unit.encode("ascii")
        if buf[pos:pos + len(raw_unit)] != raw_unit:
            return ParseResult.failure(FieldValueError("Invalid unit", pos))
        pos += len(raw_unit)

    if pos >= end or buf[pos] != RPAREN:
        return ParseResult.failure(FieldValueError("Missing )", pos))

    return ParseResult.success(value, pos + 1)


def render_number(value: Decimal, unit: str = "") -> bytes:
    text = format(value, "f")
    if unit:
        text += "*" + unit
    return ("(" + text + ")").encode("ascii")


def string_field(name: str, obis: str, min_len: int, max_len: int) -> Field:
    return Field(
        name=name,
        id=ObisId.from_text(obis),
        parse=lambda buf, start, end: parse_string(buf, start, end, min_len, max_len),
        render=lambda value: b"(" + as_bytes(value) + b")",
    )


def number_field(name: str, obis: str, unit: str = "") -> Field:
    return Field(
        name=name,
        id=ObisId.from_text(obis),
        parse=lambda buf, start, end: parse_number(buf, start, end, unit),
        render=lambda value: render_number(value, unit),
        unit=unit,
    )


def timestamped_number_field(name: str, obis: str, unit: str) -> Field:
    """``(<YYMMDDhhmmssX>)(<value>*<unit>)``, e.g. hourly gas readings."""

    def parse(buf: bytes, start: int, end: int) -> ParseResult[tuple]:
        ts_res = parse_string(buf, start, end, TIMESTAMP_LEN, TIMESTAMP_LEN)
        if ts_res.failed:
            return ts_res
        num_res = parse_number(buf, ts_res.next, end, unit)
        if num_res.failed:
            return num_res
        return ParseResult.success((ts_res.value, num_res.value), num_res.next)

    def render(value: tuple) -> bytes:
        timestamp, number = value
        return b"(" + as_bytes(timestamp) + b")" + render_number(number, unit)

    return Field(
        name=name,
        id=ObisId.from_text(obis),
        parse=parse,
        render=render,
        unit=unit,
    )


identification = Field(
    name="identification",
    id=IDENTIFICATION_ID,
    parse=parse_identification,
    render=as_bytes,
)

DSMR_FIELDS: List[Field] = [
    identification,
    string_field("p1_version", "1-3:0.2.8", 2, 2),
    string_field("timestamp", "0-0:1.0.0", TIMESTAMP_LEN, TIMESTAMP_LEN),
    string_field("equipment_id", "0-0:96.1.1", 0, 96),
    number_field("energy_delivered_tariff1", "1-0:1.8.1", "kWh"),
    number_field("energy_delivered_tariff2", "1-0:1.8.2", "kWh"),
    number_field("energy_returned_tariff1", "1-0:2.8.1", "kWh"),
    number_field("energy_returned_tariff2", "1-0:2.8.2", "kWh"),
    string_field("electricity_tariff", "0-0:96.14.0", 4, 4),
    number_field("power_delivered", "1-0:1.7.0", "kW"),
    number_field("power_returned", "1-0:2.7.0", "kW"),
    number_field("electricity_failures", "0-0:96.7.21"),
    number_field("voltage_l1", "1-0:32.7.0", "V"),
    number_field("current_l1", "1-0:31.7.0", "A"),
    string_field("message_long", "0-0:96.13.0", 0, 2048),
    number_field("gas_device_type", "0-1:24.1.0"),
    string_field("gas_equipment_id", "0-1:96.1.0", 0, 96),
    timestamped_number_field("gas_delivered", "0-1:24.2.1", "m3"),
]

FIELDS_BY_NAME: Dict[str, Field] = {f.name: f for f in DSMR_FIELDS}


def select_fields(names: Optional[Iterable[str]] = None) -> List[Field]:
    """
    Known fields with the given names, in the order given.
    All known fields when ``names`` is empty or None.

    Raises:
        ValueError: For unknown field names
    """
    if not names:
        return list(DSMR_FIELDS)

    selected = []
    for name in names:
        if name not in FIELDS_BY_NAME:
            raise ValueError(f"Unknown DSMR field: {name}")
        selected.append(FIELDS_BY_NAME[name])
    return selected
