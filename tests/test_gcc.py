import struct

import pytest

from rdplink import gcc, per
from rdplink.gcc_server import GccError, ServerCoreData, ServerNetworkData, ServerSecurityData


def _response(blocks: bytes, oid=gcc.T124_02_98_OID, key="McDn") -> bytes:
    tail = b"".join(
        [
            per.write_choice(0x14),
            per.write_integer16(0x7C99),
            per.write_integer(1),
            bytes([0]),
            per.write_number_of_set(1),
            per.write_choice(0xC0),
            per.write_octet_stream(key, 4),
            per.write_octet_stream(blocks, 0),
        ]
    )
    return per.write_choice(0) + per.write_object_identifier(oid) + per.write_length(len(tail)) + tail


def _block(block_type: int, body: bytes) -> bytes:
    return struct.pack("<HH", block_type, len(body) + 4) + body


def test_client_core_data_header_and_length():
    packed = gcc.ClientCoreData(client_name=b"h\x00").pack()
    assert packed[:4] == b"\x01\xc0\xd8\x00"
    assert len(packed) == struct.unpack("<H", packed[2:4])[0]


def test_client_core_data_fields_land_in_place():
    name = "host".encode("utf-16-le")
    data = gcc.ClientCoreData(desktop_width=1024, desktop_height=768, client_name=name)
    packed = data.pack()
    assert struct.unpack("<HH", packed[8:12]) == (1024, 768)
    assert packed[28:60] == name.ljust(32, b"\x00")
    assert struct.unpack("<I", packed[4:8])[0] == gcc.RDP_VERSION_5_PLUS


def test_client_core_data_selected_protocol_is_last():
    packed = gcc.ClientCoreData(client_name=b"", server_selected_protocol=2).pack()
    assert struct.unpack("<I", packed[-4:])[0] == 2


def test_client_network_data_pack():
    net = gcc.ClientNetworkData()
    net.add_virtual_channel("rdpdr", gcc.CHANNEL_OPTION_INITIALIZED)
    net.add_virtual_channel("cliprdr", gcc.CHANNEL_OPTION_INITIALIZED | gcc.CHANNEL_OPTION_COMPRESS_RDP)
    packed = net.pack()
    block_type, length, count = struct.unpack("<HHI", packed[:8])
    assert block_type == 0xC003
    assert length == len(packed)
    assert count == net.channel_count == 2
    assert packed[8:16] == b"rdpdr".ljust(8, b"\x00")
    assert struct.unpack("<I", packed[16:20])[0] == gcc.CHANNEL_OPTION_INITIALIZED


def test_client_network_data_empty():
    packed = gcc.ClientNetworkData().pack()
    assert struct.unpack("<HHI", packed) == (0xC003, len(packed), 0)


def test_client_security_data_pack():
    packed = gcc.ClientSecurityData().pack()
    methods = gcc.ENCRYPTION_FLAG_40BIT | gcc.ENCRYPTION_FLAG_56BIT | gcc.ENCRYPTION_FLAG_128BIT
    assert packed == struct.pack("<HHII", 0xC002, 0x0C, methods, 0)


def test_conference_create_request_layout():
    user_data = b"\x01\x02\x03"
    request = gcc.make_conference_create_request(user_data)
    assert request.startswith(b"\x00\x05\x00\x14\x7c\x00\x01")
    assert request[7] == len(user_data) + 14
    assert request[8:21] == b"\x00\x08\x00\x10\x00\x01\xc0\x00Duca"
    assert request.endswith(bytes([len(user_data)]) + user_data)


def test_conference_create_response_blocks():
    core = _block(0x0C01, struct.pack("<III", gcc.RDP_VERSION_5_PLUS, 3, 1))
    net = _block(0x0C03, struct.pack("<HHHH", 1003, 2, 1004, 1005))
    sec = _block(0x0C02, struct.pack("<II", 0, 0))
    blocks = gcc.read_conference_create_response(_response(core + net + sec))
    assert [type(b) for b in blocks] == [ServerCoreData, ServerNetworkData, ServerSecurityData]
    assert blocks[0].client_requested_protocol == 3
    assert blocks[1].mcs_channel_id == 1003
    assert blocks[1].channel_ids == [1004, 1005]
    assert blocks[2].server_certificate is None


def test_conference_create_response_skips_unknown_blocks():
    unknown = _block(0x0C09, b"\xaa\xbb")
    core = _block(0x0C01, struct.pack("<III", gcc.RDP_VERSION_4, 0, 0))
    blocks = gcc.read_conference_create_response(_response(unknown + core))
    assert len(blocks) == 1
    assert blocks[0].rdp_version == gcc.RDP_VERSION_4


def test_conference_create_response_bad_oid():
    with pytest.raises(GccError):
        gcc.read_conference_create_response(_response(b"", oid=(0, 0, 20, 125, 0, 1)))


def test_conference_create_response_bad_key():
    with pytest.raises(GccError):
        gcc.read_conference_create_response(_response(b"", key="Duca"))