"""
Telegram Builder
Renders a populated aggregate back into a complete telegram with a freshly
computed checksum. Used for simulation and for captured test fixtures.
"""

from typing import Optional

from p1gateway.checksum import crc16, format_checksum
from p1gateway.fields import ParsedData
from p1gateway.obis import IDENTIFICATION_ID

EOL = b"\r\n"


def frame_telegram(body: bytes) -> bytes:
    """
    Wrap ``body`` (the lines between the markers, terminators included) in
    ``/`` ... ``!`` and append checksum and line terminator.
    """
    framed = b"/" + body + b"!"
    return framed + format_checksum(crc16(framed)) + EOL


def build_telegram(data: ParsedData, identification: Optional[bytes] = None) -> bytes:
    """
    Emit the canonical text of every present field in declaration order.

    The identification line comes from the field declared with the
    identification id or, failing that, from ``identification``.

    Raises:
        ValueError: If no identification is available or a present field
            cannot be rendered
    """
    id_line = identification
    lines = []

    def emit(field, value, present):
        nonlocal id_line
        if not present:
            return
        if field.render is None:
            raise ValueError(f"Field {field.name} cannot be rendered")
        if field.id == IDENTIFICATION_ID:
            id_line = field.render(value)
        else:
            lines.append(str(field.id).encode("ascii") + field.render(value) + EOL)

    data.visit(emit)

    if not id_line:
        raise ValueError("Telegram needs an identification line")

    return frame_telegram(id_line + EOL + EOL + b"".join(lines))
