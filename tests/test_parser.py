"""
Tests for the P1 telegram parser.
"""

from decimal import Decimal

import pytest

from conftest import IDENTIFICATION
from p1gateway.dsmr_fields import DSMR_FIELDS, identification, select_fields, string_field
from p1gateway.errors import (
    ChecksumError,
    FieldValueError,
    FramingError,
    IdentificationError,
    IdentifierError,
    TerminationError,
    TrailingDataError,
)
from p1gateway.fields import Field, ParsedData
from p1gateway.obis import ObisId
from p1gateway.parser import P1Parser
from p1gateway.result import ParseResult

ID_LINE = IDENTIFICATION + b"\r\n\r\n"


def all_fields():
    return ParsedData(*DSMR_FIELDS)


class TestParseTelegram:
    """Test cases for complete, valid telegrams."""

    def test_sample_telegram(self, sample_telegram):
        data = all_fields()
        res = P1Parser().parse(data, sample_telegram)

        assert res.matched, res.error
        assert data["identification"] == IDENTIFICATION
        assert data["p1_version"] == "50"
        assert data["timestamp"] == "200408063501S"
        assert data["energy_delivered_tariff1"] == Decimal("1581.123")
        assert data["energy_delivered_tariff2"] == Decimal("1435.706")
        assert data["electricity_tariff"] == "0002"
        assert data["power_delivered"] == Decimal("2.793")
        assert data["electricity_failures"] == Decimal(10)
        assert data["voltage_l1"] == Decimal("229.0")
        assert data["current_l1"] == Decimal(12)
        assert data["gas_device_type"] == Decimal(3)
        timestamp, gas = data["gas_delivered"]
        assert timestamp == "200408063000S"
        assert gas == Decimal("964.839")
        assert not data.present("message_long")

    def test_resume_offset_after_checksum(self, sample_telegram):
        res = P1Parser().parse(all_fields(), sample_telegram)

        # Everything but the final CRLF
        assert res.next == len(sample_telegram) - 2
        assert sample_telegram[res.next - 5:res.next - 4] == b"!"

    def test_trailing_bytes_are_left_alone(self, sample_telegram):
        buf = sample_telegram + b"/next telegram"
        res = P1Parser().parse(all_fields(), buf)

        assert res.matched
        assert res.next == len(sample_telegram) - 2

    def test_minimal_telegram(self, make_telegram):
        buf = make_telegram(b"XMX5LGBBFFB231237741\r\n")
        data = all_fields()
        res = P1Parser().parse(data, buf)

        assert res.matched
        assert res.next == len(buf) - 2
        assert data.as_dict() == {"identification": "XMX5LGBBFFB231237741"}

    def test_lf_only_line_endings(self, make_telegram):
        buf = make_telegram(IDENTIFICATION + b"\n\n1-0:1.7.0(00.318*kW)\n")
        data = all_fields()

        assert P1Parser().parse(data, buf).matched
        assert data["power_delivered"] == Decimal("0.318")

    def test_dsmr2_baud_indicator(self, make_telegram):
        buf = make_telegram(b"KMP3ABC\r\n")

        assert P1Parser().parse(all_fields(), buf).matched

    def test_selected_fields_only(self, sample_telegram):
        data = ParsedData(*select_fields(["power_delivered"]))
        res = P1Parser().parse(data, sample_telegram)

        assert res.matched
        assert data.as_dict() == {"power_delivered": Decimal("2.793")}


class TestFraming:
    """Test cases for markers and checksum."""

    def test_missing_leading_marker(self, sample_telegram):
        res = P1Parser().parse(all_fields(), sample_telegram[1:])

        assert isinstance(res.error, FramingError)
        assert res.error.offset == 0

    def test_empty_input(self):
        res = P1Parser().parse(all_fields(), b"")

        assert isinstance(res.error, FramingError)

    def test_missing_trailing_marker(self):
        buf = b"/" + ID_LINE + b"1-0:1.7.0(00.318*kW)\r\n"
        res = P1Parser().parse(all_fields(), buf)

        assert isinstance(res.error, FramingError)
        assert res.error.offset == len(buf) - 1

    def test_marker_only(self):
        res = P1Parser().parse(all_fields(), b"/")

        assert isinstance(res.error, FramingError)
        assert res.error.offset == 0

    def test_missing_checksum_digits(self, sample_telegram):
        bang = sample_telegram.index(b"!")
        res = P1Parser().parse(all_fields(), sample_telegram[:bang + 3])

        assert isinstance(res.error, FramingError)
        assert res.error.offset == bang + 1

    def test_malformed_checksum(self, sample_telegram):
        bang = sample_telegram.index(b"!")
        buf = sample_telegram[:bang + 1] + b"ZZZZ\r\n"
        res = P1Parser().parse(all_fields(), buf)

        assert isinstance(res.error, ChecksumError)
        assert res.error.offset == bang + 1

    def test_checksum_mismatch_points_at_marker(self, sample_telegram):
        bang = sample_telegram.index(b"!")
        good = int(sample_telegram[bang + 1:bang + 5], 16)
        buf = sample_telegram[:bang + 1] + b"%04X" % (good ^ 0x0001) + b"\r\n"
        res = P1Parser().parse(all_fields(), buf)

        assert isinstance(res.error, ChecksumError)
        assert res.error.message == "Checksum mismatch"
        assert res.error.offset == bang

    def test_lower_case_checksum(self, sample_telegram):
        bang = sample_telegram.index(b"!")
        buf = sample_telegram[:bang + 1] + sample_telegram[bang + 1:].lower()

        assert P1Parser().parse(all_fields(), buf).matched

    def test_every_single_byte_change_is_detected(self, sample_telegram):
        parser = P1Parser()
        bang = sample_telegram.index(b"!")

        for pos in range(1, bang):
            buf = bytearray(sample_telegram)
            buf[pos] = ord("X") if buf[pos] != ord("X") else ord("Y")
            res = parser.parse(all_fields(), bytes(buf))

            assert isinstance(res.error, ChecksumError), pos

    def test_crc_check_can_be_disabled(self, sample_telegram):
        bang = sample_telegram.index(b"!")
        buf = sample_telegram[:bang + 1] + b"0000\r\n"
        data = all_fields()

        assert P1Parser(check_crc=False).parse(data, buf).matched
        assert data.present("power_delivered")


class TestLines:
    """Test cases for identification and data lines."""

    def test_invalid_baud_indicator(self, make_telegram):
        res = P1Parser().parse(all_fields(), make_telegram(b"ISK4MT382\r\n"))

        assert isinstance(res.error, IdentificationError)
        assert res.error.offset == 1

    def test_identification_too_short(self, make_telegram):
        res = P1Parser().parse(all_fields(), make_telegram(b"ISK\r\n"))

        assert isinstance(res.error, IdentificationError)

    def test_empty_body(self, make_telegram):
        res = P1Parser().parse(all_fields(), make_telegram(b""))

        assert isinstance(res.error, IdentificationError)

    def test_unterminated_final_line(self, make_telegram):
        body = ID_LINE + b"1-0:1.7.0(00.318*kW)"
        res = P1Parser().parse(all_fields(), make_telegram(body))

        assert isinstance(res.error, TerminationError)
        assert res.error.offset == 1 + len(ID_LINE)

    def test_unterminated_identification_line(self, make_telegram):
        res = P1Parser().parse(all_fields(), make_telegram(IDENTIFICATION))

        assert isinstance(res.error, TerminationError)

    def test_unknown_identifier_is_ignored(self, make_telegram):
        body = ID_LINE + b"1-0:1.7.0(00.318*kW)\r\n1-0:99.97.0(0)(0-0:96.7.19)\r\n"
        data = ParsedData(*select_fields(["power_delivered"]))
        res = P1Parser().parse(data, make_telegram(body))

        assert res.matched
        assert data.as_dict() == {"power_delivered": Decimal("0.318")}

    def test_unknown_identifier_error_option(self, make_telegram):
        body = ID_LINE + b"1-0:99.97.0(0)\r\n"
        res = P1Parser(unknown_error=True).parse(all_fields(), make_telegram(body))

        assert isinstance(res.error, IdentifierError)
        assert res.error.offset == 1 + len(ID_LINE)

    def test_identifier_overflow(self, make_telegram):
        body = ID_LINE + b"999-0:1.8.0(1)\r\n"
        res = P1Parser().parse(all_fields(), make_telegram(body))

        assert isinstance(res.error, IdentifierError)
        assert res.error.offset == 1 + len(ID_LINE)

    def test_field_value_error_propagates(self, make_telegram):
        body = ID_LINE + b"1-0:1.7.0(00.318*W)\r\n"
        res = P1Parser().parse(all_fields(), make_telegram(body))

        assert isinstance(res.error, FieldValueError)

    def test_partially_consumed_value(self, make_telegram):
        body = ID_LINE + b"0-0:96.1.1(ab)xyz\r\n"
        buf = make_telegram(body)
        data = ParsedData(string_field("equipment_id", "0-0:96.1.1", 0, 5))
        res = P1Parser().parse(data, buf)

        assert isinstance(res.error, TrailingDataError)
        assert res.error.offset == buf.index(b"xyz")

    def test_match_without_progress_on_non_empty_value(self, make_telegram):
        lazy = Field("lazy", ObisId.from_text("0-0:96.1.1"),
                     lambda buf, start, end: ParseResult.success(None, start))
        body = ID_LINE + b"0-0:96.1.1(ab)\r\n"
        res = P1Parser().parse(ParsedData(lazy), make_telegram(body))

        assert isinstance(res.error, TrailingDataError)

    def test_match_of_empty_value(self, make_telegram):
        flag = Field("flag", ObisId.from_text("0-0:96.1.1"),
                     lambda buf, start, end: ParseResult.success(True, start))
        data = ParsedData(flag)
        body = ID_LINE + b"0-0:96.1.1\r\n"

        assert P1Parser().parse(data, make_telegram(body)).matched
        assert data["flag"] is True


class TestIdentificationSentinel:
    """The identification line is only offered under the reserved id."""

    def test_identification_captured(self, sample_telegram):
        data = ParsedData(identification)
        P1Parser().parse(data, sample_telegram)

        assert data["identification"] == IDENTIFICATION

    def test_data_line_cannot_reach_identification_field(self, make_telegram):
        body = ID_LINE + b"255-255:255.255.255.255(spoofed)\r\n"
        data = ParsedData(identification)
        res = P1Parser().parse(data, make_telegram(body))

        assert res.matched
        assert data["identification"] == IDENTIFICATION

    def test_no_dsmr_field_uses_reserved_id(self):
        assert sum(1 for f in DSMR_FIELDS if f.id == identification.id) == 1


class TestReset:
    """The aggregate starts empty for every parse."""

    def test_second_parse_does_not_keep_old_values(self, make_telegram):
        first = make_telegram(ID_LINE + b"1-0:1.7.0(00.318*kW)\r\n1-0:2.7.0(00.100*kW)\r\n")
        second = make_telegram(ID_LINE + b"1-0:1.7.0(00.400*kW)\r\n")
        data = all_fields()
        parser = P1Parser()

        assert parser.parse(data, first).matched
        assert data.present("power_returned")

        assert parser.parse(data, second).matched
        assert data["power_delivered"] == Decimal("0.400")
        assert not data.present("power_returned")

    def test_failed_parse_starts_from_empty_aggregate(self, sample_telegram):
        data = all_fields()
        parser = P1Parser()
        parser.parse(data, sample_telegram)

        res = parser.parse(data, b"garbage")

        assert res.failed
        assert data.as_dict() == {}


def test_raise_for_error(sample_telegram):
    res = P1Parser().parse(all_fields(), sample_telegram[1:])

    with pytest.raises(FramingError) as exc_info:
        res.raise_for_error()

    assert exc_info.value.kind == "framing"
    assert "offset 0" in str(exc_info.value)
