"""Client-to-server GCC user data blocks and the T.124 conference create PDUs."""

from __future__ import annotations

import io
import logging
import socket
import struct
from dataclasses import dataclass, field
from typing import Union

from rdplink import per
from rdplink.gcc_server import (
    RDP_VERSION_4,
    RDP_VERSION_5_PLUS,
    GccError,
    Message,
    ServerCoreData,
    ServerNetworkData,
    ServerSecurityData,
)

_log = logging.getLogger(__name__)

T124_02_98_OID = (0, 0, 20, 124, 0, 1)
H221_CS_KEY = "Duca"
H221_SC_KEY = "McDn"

RNS_UD_COLOR_8BPP = 0xCA01
RNS_UD_COLOR_16BPP_555 = 0xCA02
RNS_UD_COLOR_16BPP_565 = 0xCA03
RNS_UD_COLOR_24BPP = 0xCA04

HIGH_COLOR_4BPP = 0x0004
HIGH_COLOR_8BPP = 0x0008
HIGH_COLOR_15BPP = 0x000F
HIGH_COLOR_16BPP = 0x0010
HIGH_COLOR_24BPP = 0x0018

RNS_UD_24BPP_SUPPORT = 0x0001
RNS_UD_16BPP_SUPPORT = 0x0002
RNS_UD_15BPP_SUPPORT = 0x0004
RNS_UD_32BPP_SUPPORT = 0x0008

RNS_UD_CS_SUPPORT_ERRINFO_PDU = 0x0001
RNS_UD_CS_WANT_32BPP_SESSION = 0x0002
RNS_UD_CS_SUPPORT_STATUSINFO_PDU = 0x0004
RNS_UD_CS_STRONG_ASYMMETRIC_KEYS = 0x0008
RNS_UD_CS_UNUSED = 0x0010
RNS_UD_CS_VALID_CONNECTION_TYPE = 0x0020
RNS_UD_CS_SUPPORT_MONITOR_LAYOUT_PDU = 0x0040
RNS_UD_CS_SUPPORT_NETCHAR_AUTODETECT = 0x0080
RNS_UD_CS_SUPPORT_DYNVC_GFX_PROTOCOL = 0x0100
RNS_UD_CS_SUPPORT_DYNAMIC_TIME_ZONE = 0x0200
RNS_UD_CS_SUPPORT_HEARTBEAT_PDU = 0x0400

CONNECTION_TYPE_MODEM = 0x01
CONNECTION_TYPE_BROADBAND_LOW = 0x02
CONNECTION_TYPE_SATELLITEV = 0x03
CONNECTION_TYPE_BROADBAND_HIGH = 0x04
CONNECTION_TYPE_WAN = 0x05
CONNECTION_TYPE_LAN = 0x06
CONNECTION_TYPE_AUTODETECT = 0x07

RNS_UD_SAS_DEL = 0xAA03

ENCRYPTION_FLAG_40BIT = 0x00000001
ENCRYPTION_FLAG_128BIT = 0x00000002
ENCRYPTION_FLAG_56BIT = 0x00000008
FIPS_ENCRYPTION_FLAG = 0x00000010

ENCRYPTION_LEVEL_NONE = 0x00000000
ENCRYPTION_LEVEL_LOW = 0x00000001
ENCRYPTION_LEVEL_CLIENT_COMPATIBLE = 0x00000002
ENCRYPTION_LEVEL_HIGH = 0x00000003
ENCRYPTION_LEVEL_FIPS = 0x00000004

CHANNEL_OPTION_INITIALIZED = 0x80000000
CHANNEL_OPTION_ENCRYPT_RDP = 0x40000000
CHANNEL_OPTION_ENCRYPT_SC = 0x20000000
CHANNEL_OPTION_ENCRYPT_CS = 0x10000000
CHANNEL_OPTION_PRI_HIGH = 0x08000000
CHANNEL_OPTION_PRI_MED = 0x04000000
CHANNEL_OPTION_PRI_LOW = 0x02000000
CHANNEL_OPTION_COMPRESS_RDP = 0x00800000
CHANNEL_OPTION_COMPRESS = 0x00400000
CHANNEL_OPTION_SHOW_PROTOCOL = 0x00200000
REMOTE_CONTROL_PERSISTENT = 0x00100000

KT_IBM_PC_XT_83_KEY = 0x00000001
KT_OLIVETTI = 0x00000002
KT_IBM_PC_AT_84_KEY = 0x00000003
KT_IBM_101_102_KEYS = 0x00000004
KT_NOKIA_1050 = 0x00000005
KT_NOKIA_9140 = 0x00000006
KT_JAPANESE = 0x00000007

KEYBOARD_LAYOUT_US = 0x00000409

_CORE_FORMAT = struct.Struct("<IHHHHII32sIII64sHHIHHH64sBBI")
_CORE_BLOCK_LENGTH = 0xD8

ServerData = Union[ServerCoreData, ServerSecurityData, ServerNetworkData]

_SERVER_BLOCKS = {
    Message.SC_CORE: ServerCoreData,
    Message.SC_SECURITY: ServerSecurityData,
    Message.SC_NET: ServerNetworkData,
}

__all__ = [
    "RDP_VERSION_4",
    "RDP_VERSION_5_PLUS",
    "ChannelDef",
    "ClientCoreData",
    "ClientNetworkData",
    "ClientSecurityData",
    "make_conference_create_request",
    "read_conference_create_response",
]


def _host_name() -> bytes:
    return socket.gethostname().encode("utf-16-le")[:32]


def _fixed(data: bytes, size: int) -> bytes:
    return bytes(data)[:size].ljust(size, b"\x00")


@dataclass
class ChannelDef:
    """A static virtual channel requested by the client."""

    name: str
    options: int


@dataclass
class ClientCoreData:
    """Client core data block."""

    rdp_version: int = RDP_VERSION_5_PLUS
    desktop_width: int = 1280
    desktop_height: int = 800
    color_depth: int = RNS_UD_COLOR_8BPP
    sas_sequence: int = RNS_UD_SAS_DEL
    kbd_layout: int = KEYBOARD_LAYOUT_US
    client_build: int = 3790
    client_name: bytes = field(default_factory=_host_name)
    keyboard_type: int = KT_IBM_101_102_KEYS
    keyboard_sub_type: int = 0
    keyboard_fn_keys: int = 12
    ime_file_name: bytes = b""
    post_beta2_color_depth: int = RNS_UD_COLOR_8BPP
    client_product_id: int = 1
    serial_number: int = 0
    high_color_depth: int = HIGH_COLOR_24BPP
    supported_color_depths: int = (
        RNS_UD_15BPP_SUPPORT | RNS_UD_16BPP_SUPPORT | RNS_UD_24BPP_SUPPORT | RNS_UD_32BPP_SUPPORT
    )
    early_capability_flags: int = RNS_UD_CS_SUPPORT_ERRINFO_PDU
    client_dig_product_id: bytes = b""
    connection_type: int = 0
    pad1octet: int = 0
    server_selected_protocol: int = 0

    def pack(self) -> bytes:
        """Encode the block with its type and length header."""
        body = _CORE_FORMAT.pack(
            self.rdp_version,
            self.desktop_width,
            self.desktop_height,
            self.color_depth,
            self.sas_sequence,
            self.kbd_layout,
            self.client_build,
            _fixed(self.client_name, 32),
            self.keyboard_type,
            self.keyboard_sub_type,
            self.keyboard_fn_keys,
            _fixed(self.ime_file_name, 64),
            self.post_beta2_color_depth,
            self.client_product_id,
            self.serial_number,
            self.high_color_depth,
            self.supported_color_depths,
            self.early_capability_flags,
            _fixed(self.client_dig_product_id, 64),
            self.connection_type,
            self.pad1octet,
            self.server_selected_protocol,
        )
        return struct.pack("<HH", Message.CS_CORE, _CORE_BLOCK_LENGTH) + body


@dataclass
class ClientNetworkData:
    """Client network data block: the static virtual channels requested."""

    channel_defs: list[ChannelDef] = field(default_factory=list)

    @property
    def channel_count(self) -> int:
        return len(self.channel_defs)

    def add_virtual_channel(self, name: str, options: int) -> None:
        """Request one more static virtual channel."""
        self.channel_defs.append(ChannelDef(name, options))

    def pack(self) -> bytes:
        """Encode the block with its type and length header."""
        count = self.channel_count
        out = bytearray(struct.pack("<HHI", Message.CS_NET, (count * 12 + 8) & 0xFFFF, count))
        for channel in self.channel_defs:
            out += _fixed(channel.name.encode("utf-8"), 8)
            out += struct.pack("<I", channel.options & 0xFFFFFFFF)
        return bytes(out)


@dataclass
class ClientSecurityData:
    """Client security data block."""

    encryption_methods: int = ENCRYPTION_FLAG_40BIT | ENCRYPTION_FLAG_56BIT | ENCRYPTION_FLAG_128BIT
    ext_encryption_methods: int = 0

    def pack(self) -> bytes:
        """Encode the block with its type and length header."""
        return struct.pack(
            "<HHII", Message.CS_SECURITY, 0x0C, self.encryption_methods, self.ext_encryption_methods
        )


def make_conference_create_request(user_data: bytes) -> bytes:
    """Wrap client user data blocks in a T.124 conference create request."""
    user_data = bytes(user_data)
    return b"".join(
        [
            per.write_choice(0),
            per.write_object_identifier(T124_02_98_OID),
            per.write_length(len(user_data) + 14),
            per.write_choice(0),
            per.write_selection(0x08),
            per.write_numeric_string("1", 1),
            per.write_padding(1),
            per.write_number_of_set(1),
            per.write_choice(0xC0),
            per.write_octet_stream(H221_CS_KEY, 4),
            per.write_octet_stream(user_data, 0),
        ]
    )


def read_conference_create_response(data: bytes) -> list[ServerData]:
    """Parse a T.124 conference create response into server user data blocks."""
    stream = io.BytesIO(bytes(data))
    per.read_choice(stream)
    if not per.read_object_identifier(stream, T124_02_98_OID):
        raise GccError("bad T.124 object identifier")
    try:
        per.read_length(stream)
        per.read_choice(stream)
        per.read_integer16(stream)
        per.read_integer(stream)
        per.read_enumerates(stream)
    except EOFError as exc:
        raise GccError(f"truncated conference create response: {exc}") from exc
    per.read_number_of_set(stream)
    per.read_choice(stream)
    if not per.read_octet_stream(stream, H221_SC_KEY, 4):
        raise GccError("bad H.221 server key")

    remaining = per.read_length(stream)
    blocks: list[ServerData] = []
    while remaining > 0:
        header = stream.read(4)
        if len(header) < 4:
            break
        block_type, length = struct.unpack("<HH", header)
        if length < 4:
            raise GccError(f"bad user data block length {length}")
        body = stream.read(length - 4)
        remaining -= length
        _log.debug("server block type 0x%x, length %d", block_type, length)
        block_cls = _SERVER_BLOCKS.get(block_type)
        if block_cls is None:
            _log.error("unknown server block type 0x%x", block_type)
            continue
        try:
            blocks.append(block_cls.read(io.BytesIO(body)))
        except GccError as exc:
            _log.warning("cannot parse server block 0x%x: %s", block_type, exc)
    return blocks