"""Packed Encoding Rules primitives used by the T.124 GCC and T.125 MCS layers."""

from __future__ import annotations

import logging
import struct
from typing import BinaryIO, Sequence

_log = logging.getLogger(__name__)


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    data = stream.read(size)
    if len(data) != size:
        raise EOFError(f"unexpected end of data: wanted {size} bytes, got {len(data)}")
    return data


def _read_u8_or_zero(stream: BinaryIO) -> int:
    data = stream.read(1)
    return data[0] if data else 0


def _read_uint_or_zero(stream: BinaryIO, size: int) -> int:
    data = stream.read(size)
    return int.from_bytes(data, "big") if len(data) == size else 0


def read_enumerates(stream: BinaryIO) -> int:
    """Read a one-byte enumerated value."""
    return _read_exact(stream, 1)[0]


def write_integer(n: int) -> bytes:
    """Encode an integer as a length followed by one, two or four bytes."""
    if n <= 0xFF:
        return write_length(1) + bytes([n & 0xFF])
    if n <= 0xFFFF:
        return write_length(2) + struct.pack(">H", n)
    return write_length(4) + struct.pack(">I", n & 0xFFFFFFFF)


def read_integer16(stream: BinaryIO) -> int:
    """Read a big-endian 16-bit integer."""
    return struct.unpack(">H", _read_exact(stream, 2))[0]


def write_integer16(value: int) -> bytes:
    """Encode a big-endian 16-bit integer."""
    return struct.pack(">H", value & 0xFFFF)


def write_choice(choice: int) -> bytes:
    """Encode a choice index."""
    return bytes([choice & 0xFF])


def write_length(value: int) -> bytes:
    """Encode a length; values above 0x7f take two bytes with the top bit set."""
    if value > 0x7F:
        return struct.pack(">H", (value | 0x8000) & 0xFFFF)
    return bytes([value & 0xFF])


def read_length(stream: BinaryIO) -> int:
    """Read a length; an exhausted stream reads as zero."""
    first = stream.read(1)
    if not first:
        return 0
    b = first[0]
    if b & 0x80:
        return ((b & 0x7F) << 8) + _read_u8_or_zero(stream)
    return b


def write_object_identifier(oid: Sequence[int]) -> bytes:
    """Encode a six-part object identifier, the first two parts sharing a byte."""
    first = ((oid[0] << 4) | (oid[1] & 0x0F)) & 0xFF
    return bytes([5, first, *(part & 0xFF for part in oid[2:6])])


def write_selection(selection: int) -> bytes:
    """Encode a selection byte."""
    return bytes([selection & 0xFF])


def _go_mod10(value: int) -> int:
    # Remainder that keeps the sign of the dividend.
    return value - 10 * int(value / 10)


def write_numeric_string(s: str, min_value: int) -> bytes:
    """Encode a numeric string as packed decimal digits, two per byte."""
    length = len(s)
    m_length = length - min_value if length >= min_value else min_value
    packed = bytearray()
    for start in range(0, length, 2):
        pair = s[start:start + 2]
        c1 = _go_mod10(ord(pair[0]) - 0x30)
        c2 = _go_mod10(ord(pair[1]) - 0x30) if len(pair) > 1 else 0
        packed.append(((c1 << 4) | c2) & 0xFF)
    return write_length(m_length) + bytes(packed)


def write_padding(length: int) -> bytes:
    """Return the given number of zero bytes."""
    return bytes(length)


def write_number_of_set(n: int) -> bytes:
    """Encode a set count."""
    return bytes([n & 0xFF])


def write_octet_stream(data: bytes | str, min_value: int) -> bytes:
    """Encode an octet stream whose length is stored minus ``min_value``."""
    raw = data.encode("latin-1") if isinstance(data, str) else bytes(data)
    length = len(raw)
    m_length = length - min_value if length - min_value >= 0 else min_value
    return write_length(m_length) + raw


def read_choice(stream: BinaryIO) -> int:
    """Read a choice index; an exhausted stream reads as zero."""
    return _read_u8_or_zero(stream)


def read_number_of_set(stream: BinaryIO) -> int:
    """Read a set count; an exhausted stream reads as zero."""
    return _read_u8_or_zero(stream)


def read_integer(stream: BinaryIO) -> int:
    """Read a length-prefixed integer; unsupported sizes read as zero."""
    size = read_length(stream)
    if size in (1, 2, 4):
        return _read_uint_or_zero(stream, size)
    _log.info("unsupported PER integer size %d", size)
    return 0


def read_object_identifier(stream: BinaryIO, oid: Sequence[int]) -> bool:
    """Read an object identifier and report whether it matches ``oid``."""
    if read_length(stream) != 5:
        return False
    packed = _read_u8_or_zero(stream)
    parts = [packed >> 4, packed & 0x0F]
    parts.extend(_read_u8_or_zero(stream) for _ in range(4))
    return len(oid) <= len(parts) and list(oid) == parts[:len(oid)]


def read_octet_stream(stream: BinaryIO, expected: bytes | str, minimum: int) -> bool:
    """Read an octet stream and report whether it equals ``expected``."""
    raw = expected.encode("latin-1") if isinstance(expected, str) else bytes(expected)
    size = read_length(stream) + minimum
    if size != len(raw):
        return False
    for want in raw:
        got = stream.read(1)
        if (got[0] if got else 0) != want:
            return False
    return True