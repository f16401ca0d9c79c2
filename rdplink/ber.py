"""Basic Encoding Rules primitives used by the T.125 MCS connect PDUs."""

from __future__ import annotations

import struct
from typing import BinaryIO

CLASS_MASK = 0xC0
CLASS_UNIV = 0x00
CLASS_APPL = 0x40
CLASS_CTXT = 0x80
CLASS_PRIV = 0xC0

PC_MASK = 0x20
PC_PRIMITIVE = 0x00
PC_CONSTRUCT = 0x20

TAG_MASK = 0x1F
TAG_BOOLEAN = 0x01
TAG_INTEGER = 0x02
TAG_BIT_STRING = 0x03
TAG_OCTET_STRING = 0x04
TAG_OBJECT_IDENTIFIER = 0x06
TAG_ENUMERATED = 0x0A
TAG_SEQUENCE = 0x10
TAG_SEQUENCE_OF = 0x10


class BerError(ValueError):
    """Raised when BER-encoded data is malformed or truncated."""


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    data = stream.read(size)
    if len(data) != size:
        raise BerError(f"unexpected end of data: wanted {size} bytes, got {len(data)}")
    return data


def _read_u8(stream: BinaryIO) -> int:
    return _read_exact(stream, 1)[0]


def _pc(pc: bool) -> int:
    return PC_CONSTRUCT if pc else PC_PRIMITIVE


def _universal_tag_byte(tag: int, pc: bool) -> int:
    return (CLASS_UNIV | _pc(pc)) | (TAG_MASK & tag)


def read_universal_tag(stream: BinaryIO, tag: int, pc: bool) -> bool:
    """Consume one byte and report whether it is the expected universal tag."""
    data = stream.read(1)
    value = data[0] if data else 0
    return value == _universal_tag_byte(tag, pc)


def write_universal_tag(tag: int, pc: bool) -> bytes:
    """Encode a universal class tag byte."""
    return bytes([_universal_tag_byte(tag, pc)])


def read_length(stream: BinaryIO) -> int:
    """Read a BER length in short form or long form of one or two bytes."""
    size = _read_u8(stream)
    if not size & 0x80:
        return size
    size &= 0x7F
    if size == 1:
        return _read_u8(stream)
    if size == 2:
        return struct.unpack(">H", _read_exact(stream, 2))[0]
    raise BerError("BER length may be 1 or 2")


def write_length(size: int) -> bytes:
    """Encode a BER length; values above 0x7f use the two-byte long form."""
    if size > 0x7F:
        return b"\x82" + struct.pack(">H", size & 0xFFFF)
    return bytes([size & 0xFF])


def read_enumerated(stream: BinaryIO) -> int:
    """Read a one-byte ENUMERATED value."""
    if not read_universal_tag(stream, TAG_ENUMERATED, False):
        raise BerError("invalid ber tag")
    length = read_length(stream)
    if length != 1:
        raise BerError(f"enumerate size is wrong, get {length}, expect 1")
    return _read_u8(stream)


def read_integer(stream: BinaryIO) -> int:
    """Read an unsigned INTEGER of one to four bytes."""
    if not read_universal_tag(stream, TAG_INTEGER, False):
        raise BerError("bad integer tag")
    size = read_length(stream)
    if size not in (1, 2, 3, 4):
        raise BerError("wrong size")
    return int.from_bytes(_read_exact(stream, size), "big")


def write_integer(n: int) -> bytes:
    """Encode an INTEGER in one, two or four bytes."""
    tag = write_universal_tag(TAG_INTEGER, False)
    if n <= 0xFF:
        return tag + write_length(1) + bytes([n & 0xFF])
    if n <= 0xFFFF:
        return tag + write_length(2) + struct.pack(">H", n)
    return tag + write_length(4) + struct.pack(">I", n & 0xFFFFFFFF)


def write_octet_string(data: bytes) -> bytes:
    """Encode an OCTET STRING."""
    data = bytes(data)
    return write_universal_tag(TAG_OCTET_STRING, False) + write_length(len(data)) + data


def write_boolean(value: bool) -> bytes:
    """Encode a BOOLEAN; true is 0xff."""
    return write_universal_tag(TAG_BOOLEAN, False) + write_length(1) + (b"\xff" if value else b"\x00")


def read_application_tag(stream: BinaryIO, tag: int) -> int:
    """Check a constructed application tag and return the length that follows it."""
    first = _read_u8(stream)
    if tag > 30:
        if first != (CLASS_APPL | PC_CONSTRUCT) | TAG_MASK:
            raise BerError("application tag: invalid data")
        if _read_u8(stream) != tag:
            raise BerError("application tag: bad tag")
    elif first != (CLASS_APPL | PC_CONSTRUCT) | (TAG_MASK & tag):
        raise BerError("application tag: invalid data")
    return read_length(stream)


def write_application_tag(tag: int, size: int) -> bytes:
    """Encode a constructed application tag followed by its length."""
    if tag > 30:
        head = bytes([(CLASS_APPL | PC_CONSTRUCT) | TAG_MASK, tag & 0xFF])
    else:
        head = bytes([(CLASS_APPL | PC_CONSTRUCT) | (TAG_MASK & tag)])
    return head + write_length(size)


def write_encoded_domain_params(data: bytes) -> bytes:
    """Wrap already encoded domain parameters in a SEQUENCE."""
    data = bytes(data)
    return write_universal_tag(TAG_SEQUENCE, True) + write_length(len(data)) + data