"""T.125 Multipoint Communication Service layer: domain setup and channel multiplexing."""

from __future__ import annotations

import functools
import io
import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, BinaryIO, Callable, Optional

from rdplink import ber, per
from rdplink.gcc import (
    RNS_UD_CS_SUPPORT_DYNVC_GFX_PROTOCOL,
    ClientCoreData,
    ClientNetworkData,
    ClientSecurityData,
    make_conference_create_request,
    read_conference_create_response,
)
from rdplink.gcc_server import GccError, ServerCoreData, ServerNetworkData, ServerSecurityData
from rdplink.tpkt import Emitter

_log = logging.getLogger(__name__)

MCS_GLOBAL_CHANNEL_ID = 1003
MCS_USERCHANNEL_BASE = 1001
GLOBAL_CHANNEL_NAME = "global"


class MCSMessage(IntEnum):
    """BER application tags of the MCS connect PDUs."""

    MCS_TYPE_CONNECT_INITIAL = 0x65
    MCS_TYPE_CONNECT_RESPONSE = 0x66


class MCSDomainPDU(IntEnum):
    """PER encoded MCS domain PDU types."""

    ERECT_DOMAIN_REQUEST = 1
    DISCONNECT_PROVIDER_ULTIMATUM = 8
    ATTACH_USER_REQUEST = 10
    ATTACH_USER_CONFIRM = 11
    CHANNEL_JOIN_REQUEST = 14
    CHANNEL_JOIN_CONFIRM = 15
    SEND_DATA_REQUEST = 25
    SEND_DATA_INDICATION = 26


class McsError(ValueError):
    """Raised or emitted when an MCS PDU is malformed or the server refuses a step."""


_PARSE_ERRORS = (EOFError, ber.BerError, GccError, McsError)


def _pdu_header(pdu: int, options: int = 0) -> bytes:
    return bytes([((pdu << 2) | options) & 0xFF])


def _is_pdu(options: int, pdu: int) -> bool:
    return (options >> 2) == pdu


def _read_u8(stream: BinaryIO) -> int:
    data = stream.read(1)
    if not data:
        raise McsError("unexpected end of data")
    return data[0]


@dataclass
class DomainParameters:
    """MCS domain parameters of a connect PDU."""

    max_channel_ids: int = 0
    max_user_ids: int = 0
    max_token_ids: int = 0
    num_priorities: int = 0
    min_throughput: int = 0
    max_height: int = 0
    max_mcspdu_size: int = 0
    protocol_version: int = 0

    def ber(self) -> bytes:
        """Encode the parameters; priorities, throughput, height and version are fixed."""
        return b"".join(
            [
                ber.write_integer(self.max_channel_ids),
                ber.write_integer(self.max_user_ids),
                ber.write_integer(self.max_token_ids),
                ber.write_integer(1),
                ber.write_integer(0),
                ber.write_integer(1),
                ber.write_integer(self.max_mcspdu_size),
                ber.write_integer(2),
            ]
        )


def read_domain_parameters(stream: BinaryIO) -> DomainParameters:
    """Read a BER sequence of domain parameters."""
    if not ber.read_universal_tag(stream, ber.TAG_SEQUENCE, True):
        raise ber.BerError("bad BER tags")
    ber.read_length(stream)
    params = DomainParameters()
    params.max_channel_ids = ber.read_integer(stream)
    params.max_user_ids = ber.read_integer(stream)
    params.max_token_ids = ber.read_integer(stream)
    ber.read_integer(stream)
    ber.read_integer(stream)
    ber.read_integer(stream)
    params.max_mcspdu_size = ber.read_integer(stream)
    ber.read_integer(stream)
    return params


@dataclass
class ConnectInitial:
    """MCS connect initial PDU body."""

    user_data: bytes = b""
    calling_domain_selector: bytes = b"\x01"
    called_domain_selector: bytes = b"\x01"
    upward_flag: bool = True
    target_parameters: DomainParameters = field(
        default_factory=lambda: DomainParameters(34, 2, 0, 1, 0, 1, 0xFFFF, 2)
    )
    minimum_parameters: DomainParameters = field(
        default_factory=lambda: DomainParameters(1, 1, 1, 1, 0, 1, 0x420, 2)
    )
    maximum_parameters: DomainParameters = field(
        default_factory=lambda: DomainParameters(0xFFFF, 0xFC17, 0xFFFF, 1, 0, 1, 0xFFFF, 2)
    )

    def ber(self) -> bytes:
        """Encode the PDU body without its application tag."""
        return b"".join(
            [
                ber.write_octet_string(self.calling_domain_selector),
                ber.write_octet_string(self.called_domain_selector),
                ber.write_boolean(self.upward_flag),
                ber.write_encoded_domain_params(self.target_parameters.ber()),
                ber.write_encoded_domain_params(self.minimum_parameters.ber()),
                ber.write_encoded_domain_params(self.maximum_parameters.ber()),
                ber.write_octet_string(self.user_data),
            ]
        )


@dataclass
class ConnectResponse:
    """MCS connect response PDU."""

    result: int = 0
    called_connect_id: int = 0
    domain_parameters: DomainParameters = field(
        default_factory=lambda: DomainParameters(22, 3, 0, 1, 0, 1, 0xFFF8, 2)
    )
    user_data: bytes = b""


def read_connect_response(stream: BinaryIO) -> ConnectResponse:
    """Read a BER encoded connect response including its application tag."""
    ber.read_application_tag(stream, MCSMessage.MCS_TYPE_CONNECT_RESPONSE)
    response = ConnectResponse()
    response.result = ber.read_enumerated(stream)
    response.called_connect_id = ber.read_integer(stream)
    response.domain_parameters = read_domain_parameters(stream)
    if not ber.read_universal_tag(stream, ber.TAG_OCTET_STRING, False):
        raise ber.BerError("invalid expected BER tag")
    length = ber.read_length(stream)
    data = stream.read(length)
    if len(data) != length:
        raise ber.BerError(f"user data truncated: wanted {length} bytes, got {len(data)}")
    response.user_data = data
    return response


@dataclass
class MCSChannelInfo:
    """A joined MCS channel."""

    id: int
    name: str


class MCS(Emitter):
    """Common part of the MCS layer over an X.224 transport."""

    def __init__(self, transport: Any, recv_opcode: int, send_opcode: int) -> None:
        super().__init__()
        self.transport = transport
        self.recv_opcode = recv_opcode
        self.send_opcode = send_opcode
        self.channels: list[MCSChannelInfo] = [
            MCSChannelInfo(MCS_GLOBAL_CHANNEL_ID, GLOBAL_CHANNEL_NAME)
        ]
        transport.on("close", lambda: self.emit("close"))
        transport.on("error", lambda err: self.emit("error", err))

    def write(self, data: bytes) -> Any:
        """Send raw bytes to the transport."""
        return self.transport.write(data)

    def close(self) -> Any:
        """Close the underlying transport."""
        return self.transport.close()


class MCSClient(MCS):
    """Client side of the MCS connection sequence.

    Starts on the transport's ``connect`` event, exchanges the GCC blocks,
    attaches a user and joins every channel, then emits ``connect`` with the
    client blocks, server blocks, user id and joined channels. Afterwards each
    received payload is emitted as ``sec`` with its channel name.
    """

    def __init__(self, transport: Any) -> None:
        super().__init__(
            transport, MCSDomainPDU.SEND_DATA_INDICATION, MCSDomainPDU.SEND_DATA_REQUEST
        )
        self.client_core_data = ClientCoreData()
        self.client_network_data = ClientNetworkData()
        self.client_security_data = ClientSecurityData()
        self.server_core_data: Optional[ServerCoreData] = None
        self.server_network_data: Optional[ServerNetworkData] = None
        self.server_security_data: Optional[ServerSecurityData] = None
        self.channels_connected = 0
        self.user_id = 1 + MCS_USERCHANNEL_BASE
        self.nb_channel_requested = 0
        transport.on("connect", self._connect)

    def set_client_desktop(self, width: int, height: int) -> None:
        """Set the desktop size announced to the server."""
        self.client_core_data.desktop_width = width
        self.client_core_data.desktop_height = height

    def set_client_dynvc_protocol(self, name: str, options: int) -> None:
        """Announce graphics pipeline support and request the dynamic channel."""
        self.client_core_data.early_capability_flags = RNS_UD_CS_SUPPORT_DYNVC_GFX_PROTOCOL
        self.client_network_data.add_virtual_channel(name, options)

    def add_virtual_channel(self, name: str, options: int) -> None:
        """Request a static virtual channel."""
        self.client_network_data.add_virtual_channel(name, options)

    def pack(self, data: bytes, channel_id: int) -> bytes:
        """Wrap ``data`` in a send data request for ``channel_id``."""
        data = bytes(data)
        return b"".join(
            [
                _pdu_header(self.send_opcode),
                per.write_integer16(self.user_id - MCS_USERCHANNEL_BASE),
                per.write_integer16(channel_id),
                b"\x70",
                per.write_length(len(data)),
                data,
            ]
        )

    def write(self, data: bytes) -> Any:
        """Send ``data`` on the global channel."""
        return self.transport.write(self.pack(data, self.channels[0].id))

    def send_to_channel(self, channel: str, data: bytes) -> Any:
        """Send ``data`` on the named channel, or the global one if it is unknown."""
        channel_id = next(
            (ch.id for ch in self.channels if ch.name == channel), self.channels[0].id
        )
        return self.transport.write(self.pack(data, channel_id))

    def _guarded(self, handler: Callable[[bytes], None]) -> Callable[[bytes], None]:
        @functools.wraps(handler)
        def run(data: bytes) -> None:
            try:
                handler(data)
            except _PARSE_ERRORS as exc:
                _log.error("mcs: %s", exc)
                self.emit("error", exc if isinstance(exc, McsError) else McsError(str(exc)))

        return run

    def _connect(self, selected_protocol: int) -> None:
        _log.debug("mcs client on connect %s", selected_protocol)
        self.client_core_data.server_selected_protocol = selected_protocol
        user_data = (
            self.client_core_data.pack()
            + self.client_network_data.pack()
            + self.client_security_data.pack()
        )
        encoded = ConnectInitial(make_conference_create_request(user_data)).ber()
        payload = (
            ber.write_application_tag(MCSMessage.MCS_TYPE_CONNECT_INITIAL, len(encoded)) + encoded
        )
        try:
            self.transport.write(payload)
        except OSError as exc:
            self.emit("error", McsError(f"mcs send connect initial write error {exc}"))
            return
        self.transport.once("data", self._guarded(self._recv_connect_response))

    def _recv_connect_response(self, data: bytes) -> None:
        response = read_connect_response(io.BytesIO(bytes(data)))
        for block in read_conference_create_response(response.user_data):
            if isinstance(block, ServerSecurityData):
                self.server_security_data = block
            elif isinstance(block, ServerCoreData):
                self.server_core_data = block
            elif isinstance(block, ServerNetworkData):
                self.server_network_data = block
            else:
                raise McsError(f"unhandled server gcc block {type(block).__name__}")
        self._send_erect_domain_request()
        self._send_attach_user_request()
        self.transport.once("data", self._guarded(self._recv_attach_user_confirm))

    def _send_erect_domain_request(self) -> None:
        self.transport.write(
            _pdu_header(MCSDomainPDU.ERECT_DOMAIN_REQUEST)
            + per.write_integer(0)
            + per.write_integer(0)
        )

    def _send_attach_user_request(self) -> None:
        self.transport.write(_pdu_header(MCSDomainPDU.ATTACH_USER_REQUEST))

    def _recv_attach_user_confirm(self, data: bytes) -> None:
        stream = io.BytesIO(bytes(data))
        if not _is_pdu(_read_u8(stream), MCSDomainPDU.ATTACH_USER_CONFIRM):
            raise McsError("bad MCS header: expected attach user confirm")
        if per.read_enumerates(stream) != 0:
            raise McsError("server rejected user")
        self.user_id = per.read_integer16(stream) + MCS_USERCHANNEL_BASE
        self.channels.append(MCSChannelInfo(self.user_id, "user"))
        self._connect_channels()

    def _server_channel_ids(self) -> list[int]:
        if self.server_network_data is None:
            return []
        return self.server_network_data.channel_ids

    def _connect_channels(self) -> None:
        _log.debug("mcs connect channels %d:%d", self.channels_connected, len(self.channels))
        if self.channels_connected >= len(self.channels):
            server_ids = self._server_channel_ids()
            if self.nb_channel_requested < len(server_ids):
                channel_id = server_ids[self.nb_channel_requested]
                self.nb_channel_requested += 1
                self._send_channel_join_request(channel_id)
                self.transport.once("data", self._guarded(self._recv_channel_join_confirm))
                return
            self.transport.on("data", self._guarded(self._recv_data))
            client_data = [
                self.client_core_data,
                self.client_security_data,
                self.client_network_data,
            ]
            server_data = [self.server_core_data, self.server_security_data]
            self.emit("connect", client_data, server_data, self.user_id, list(self.channels))
            return
        channel = self.channels[self.channels_connected]
        _log.debug("send channel join request: %s", channel.name)
        self._send_channel_join_request(channel.id)
        self.transport.once("data", self._guarded(self._recv_channel_join_confirm))

    def _send_channel_join_request(self, channel_id: int) -> None:
        self.transport.write(
            _pdu_header(MCSDomainPDU.CHANNEL_JOIN_REQUEST)
            + per.write_integer16(self.user_id - MCS_USERCHANNEL_BASE)
            + per.write_integer16(channel_id)
        )

    def _recv_channel_join_confirm(self, data: bytes) -> None:
        stream = io.BytesIO(bytes(data))
        if not _is_pdu(_read_u8(stream), MCSDomainPDU.CHANNEL_JOIN_CONFIRM):
            raise McsError("bad MCS header: expected channel join confirm")
        confirm = per.read_enumerates(stream)
        user_id = per.read_integer16(stream) + MCS_USERCHANNEL_BASE
        if user_id != self.user_id:
            raise McsError("invalid user id in channel join confirm")
        channel_id = per.read_integer16(stream)
        if confirm != 0 and channel_id in (MCS_GLOBAL_CHANNEL_ID, self.user_id):
            raise McsError("server must confirm static channel")
        if confirm == 0:
            defs = self.client_network_data.channel_defs
            for index, server_id in enumerate(self._server_channel_ids()):
                if server_id == channel_id and index < len(defs):
                    self.channels.append(MCSChannelInfo(channel_id, defs[index].name))
        self.channels_connected += 1
        self._connect_channels()

    def _recv_data(self, data: bytes) -> None:
        stream = io.BytesIO(bytes(data))
        options = _read_u8(stream)
        if _is_pdu(options, MCSDomainPDU.DISCONNECT_PROVIDER_ULTIMATUM):
            self.emit("error", McsError("MCS DISCONNECT_PROVIDER_ULTIMATUM"))
            self.transport.close()
            return
        if not _is_pdu(options, self.recv_opcode):
            raise McsError("invalid expected MCS opcode receive data")
        per.read_integer16(stream)
        channel_id = per.read_integer16(stream)
        per.read_enumerates(stream)
        size = per.read_length(stream)
        channel = next((ch for ch in self.channels if ch.id == channel_id), None)
        if channel is None:
            _log.error("mcs receive data for an unconnected layer")
            return
        payload = stream.read(size)
        if len(payload) != size:
            raise McsError(f"mcs data truncated: wanted {size} bytes, got {len(payload)}")
        self.emit("sec", channel.name, payload)