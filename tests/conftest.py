"""Shared telegram fixtures.

Checksums are computed here directly with crcmod so the fixtures do not
depend on the code under test.
"""

import crcmod.predefined
import pytest

_crc16 = crcmod.predefined.mkPredefinedCrcFun("crc-16")

IDENTIFICATION = b"ISK5\\2M550T-1012"

SAMPLE_BODY = (
    IDENTIFICATION + b"\r\n"
    b"\r\n"
    b"1-3:0.2.8(50)\r\n"
    b"0-0:1.0.0(200408063501S)\r\n"
    b"0-0:96.1.1(4530303434303037333832373135373137)\r\n"
    b"1-0:1.8.1(001581.123*kWh)\r\n"
    b"1-0:1.8.2(001435.706*kWh)\r\n"
    b"1-0:2.8.1(000000.000*kWh)\r\n"
    b"1-0:2.8.2(000000.000*kWh)\r\n"
    b"0-0:96.14.0(0002)\r\n"
    b"1-0:1.7.0(02.793*kW)\r\n"
    b"1-0:2.7.0(00.000*kW)\r\n"
    b"0-0:96.7.21(00010)\r\n"
    b"1-0:99.97.0(0)(0-0:96.7.19)\r\n"
    b"1-0:32.7.0(229.0*V)\r\n"
    b"1-0:31.7.0(012*A)\r\n"
    b"0-1:24.1.0(003)\r\n"
    b"0-1:96.1.0(4730303339303031393336393930363139)\r\n"
    b"0-1:24.2.1(200408063000S)(00964.839*m3)\r\n"
)


def frame(body: bytes) -> bytes:
    """Wrap body in markers and append a correct checksum and CRLF."""
    framed = b"/" + body + b"!"
    return framed + b"%04X" % _crc16(framed) + b"\r\n"


@pytest.fixture
def make_telegram():
    return frame


@pytest.fixture
def sample_telegram():
    return frame(SAMPLE_BODY)
