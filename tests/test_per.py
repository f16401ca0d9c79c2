import io

import pytest

from rdplink import per

T124_OID = (0, 0, 20, 124, 0, 1)


def stream(data: bytes) -> io.BytesIO:
    return io.BytesIO(data)


@pytest.mark.parametrize("value", [0, 5, 0x7F, 0x80, 0x1234, 0x7FFF])
def test_length_round_trip(value):
    assert per.read_length(stream(per.write_length(value))) == value


def test_short_length_is_one_byte():
    assert per.write_length(0x7F) == bytes([0x7F])


def test_long_length_sets_top_bit():
    encoded = per.write_length(0x80)
    assert encoded[0] & 0x80
    assert len(encoded) == len(per.write_integer16(0))


def test_read_length_empty_stream():
    assert per.read_length(stream(b"")) == 0


@pytest.mark.parametrize("value", [0, 0xFF, 0x100, 0xFFFF, 0x10000, 0xFFFFFFFF])
def test_integer_round_trip(value):
    assert per.read_integer(stream(per.write_integer(value))) == value


def test_read_integer_unsupported_size_is_zero():
    assert per.read_integer(stream(per.write_length(3) + b"\x01\x02\x03")) == 0


@pytest.mark.parametrize("value", [0, 1, 1003, 0xFFFF])
def test_integer16_round_trip(value):
    assert per.read_integer16(stream(per.write_integer16(value))) == value


def test_read_integer16_truncated():
    with pytest.raises(EOFError):
        per.read_integer16(stream(b"\x01"))


@pytest.mark.parametrize("value", [0, 0x08, 0xC0, 0xFF])
def test_single_byte_round_trips(value):
    assert per.read_choice(stream(per.write_choice(value))) == value
    assert per.read_number_of_set(stream(per.write_number_of_set(value))) == value
    assert per.read_enumerates(stream(per.write_selection(value))) == value


def test_read_choice_empty_stream():
    assert per.read_choice(stream(b"")) == 0


def test_read_enumerates_empty_stream():
    with pytest.raises(EOFError):
        per.read_enumerates(stream(b""))


def test_object_identifier_wire_form():
    assert per.write_object_identifier(T124_OID) == bytes.fromhex("0500147c0001")


@pytest.mark.parametrize("oid", [T124_OID, (1, 2, 3, 4, 5, 6)])
def test_object_identifier_round_trip(oid):
    assert per.read_object_identifier(stream(per.write_object_identifier(oid)), oid) is True


def test_object_identifier_mismatch():
    encoded = per.write_object_identifier(T124_OID)
    assert per.read_object_identifier(stream(encoded), (0, 0, 20, 125, 0, 1)) is False


def test_object_identifier_wrong_size():
    data = per.write_length(4) + bytes(4)
    assert per.read_object_identifier(stream(data), T124_OID) is False


def test_numeric_string_wire_form():
    assert per.write_numeric_string("1", 1) == b"\x00\x10"


def test_numeric_string_length_prefix():
    text = "1234"
    s = stream(per.write_numeric_string(text, 1))
    assert per.read_length(s) == len(text) - 1
    assert len(s.read()) == len(text) // 2


def test_numeric_string_packs_digits():
    s = stream(per.write_numeric_string("98", 0))
    per.read_length(s)
    packed = s.read(1)[0]
    assert (packed >> 4, packed & 0x0F) == (9, 8)


def test_padding():
    assert per.write_padding(3) == bytes(3)


def test_octet_stream_wire_form():
    assert per.write_octet_stream(b"Duca", 4) == b"\x00Duca"


def test_octet_stream_accepts_text():
    assert per.write_octet_stream("McDn", 4) == per.write_octet_stream(b"McDn", 4)


@pytest.mark.parametrize("payload, minimum", [(b"McDn", 4), (b"user data", 0), (bytes(300), 0)])
def test_octet_stream_round_trip(payload, minimum):
    encoded = per.write_octet_stream(payload, minimum)
    assert per.read_octet_stream(stream(encoded), payload, minimum) is True


def test_octet_stream_content_mismatch():
    encoded = per.write_octet_stream(b"Duca", 4)
    assert per.read_octet_stream(stream(encoded), b"McDn", 4) is False


def test_octet_stream_length_mismatch():
    encoded = per.write_octet_stream(b"Duca", 4)
    assert per.read_octet_stream(stream(encoded), b"Duca", 0) is False