"""X.224 connection layer: protocol negotiation and data TPDU framing."""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Callable, Optional

from rdplink.tpkt import Emitter

_log = logging.getLogger(__name__)

PROTOCOL_RDP = 0x00000000
PROTOCOL_SSL = 0x00000001
PROTOCOL_HYBRID = 0x00000002
PROTOCOL_HYBRID_EX = 0x00000008

SSL_REQUIRED_BY_SERVER = 0x00000001
SSL_NOT_ALLOWED_BY_SERVER = 0x00000002
SSL_CERT_NOT_ON_SERVER = 0x00000003
INCONSISTENT_FLAGS = 0x00000004
HYBRID_REQUIRED_BY_SERVER = 0x00000005
SSL_WITH_USER_AUTH_REQUIRED_BY_SERVER = 0x00000006

DEFAULT_COOKIE = b"Cookie: mstshash=test"

_NEGOTIATION = struct.Struct("<BBHI")
_TPDU_HEADER = struct.Struct(">BBHHB")


class MessageType(IntEnum):
    """Message type carried in an X.224 header."""

    TPDU_CONNECTION_REQUEST = 0xE0
    TPDU_CONNECTION_CONFIRM = 0xD0
    TPDU_DISCONNECT_REQUEST = 0x80
    TPDU_DATA = 0xF0
    TPDU_ERROR = 0x70


class NegotiationType(IntEnum):
    """Kind of negotiation structure."""

    TYPE_RDP_NEG_REQ = 0x01
    TYPE_RDP_NEG_RSP = 0x02
    TYPE_RDP_NEG_FAILURE = 0x03


class X224Error(ValueError):
    """Raised or emitted when X.224 negotiation fails or a PDU is malformed."""


@dataclass
class Negotiation:
    """Security protocol negotiation request, response or failure."""

    type: int = 0
    flag: int = 0
    length: int = 0x0008
    result: int = PROTOCOL_RDP

    def pack(self) -> bytes:
        """Encode the eight-byte negotiation structure."""
        return _NEGOTIATION.pack(
            self.type & 0xFF, self.flag & 0xFF, self.length & 0xFFFF, self.result & 0xFFFFFFFF
        )

    @classmethod
    def unpack(cls, data: bytes) -> Negotiation:
        """Decode a negotiation structure from its first eight bytes."""
        data = bytes(data)
        if len(data) < _NEGOTIATION.size:
            raise X224Error(f"negotiation needs {_NEGOTIATION.size} bytes, got {len(data)}")
        return cls(*_NEGOTIATION.unpack_from(data))


@dataclass
class ClientConnectionRequestPDU:
    """Client connection request TPDU."""

    cookie: bytes = b""
    requested_protocol: int = PROTOCOL_RDP
    protocol_neg: Negotiation = field(default_factory=Negotiation)
    code: int = MessageType.TPDU_CONNECTION_REQUEST

    @property
    def length(self) -> int:
        """Value of the length indicator: the header size without itself."""
        size = 6
        if self.cookie:
            size += len(self.cookie) + 2
        if self.requested_protocol > PROTOCOL_RDP:
            size += _NEGOTIATION.size
        return size

    def serialize(self) -> bytes:
        """Encode the request; the negotiation follows only for non-RDP security."""
        out = bytearray(_TPDU_HEADER.pack(self.length & 0xFF, self.code, 0, 0, 0))
        if self.cookie:
            out += bytes(self.cookie) + b"\r\n"
        if self.requested_protocol > PROTOCOL_RDP:
            out += self.protocol_neg.pack()
        return bytes(out)


@dataclass
class ServerConnectionConfirm:
    """Server connection confirm TPDU with its negotiation structure."""

    length: int = 0
    code: int = MessageType.TPDU_CONNECTION_CONFIRM
    protocol_neg: Negotiation = field(default_factory=Negotiation)

    @classmethod
    def unpack(cls, data: bytes) -> ServerConnectionConfirm:
        """Decode a connection confirm that carries a negotiation structure."""
        data = bytes(data)
        if len(data) < _TPDU_HEADER.size + _NEGOTIATION.size:
            raise X224Error(f"connection confirm too short: {len(data)} bytes")
        length, code, _, _, _ = _TPDU_HEADER.unpack_from(data)
        return cls(length, code, Negotiation.unpack(data[_TPDU_HEADER.size:]))


@dataclass
class DataHeader:
    """Header of every X.224 data TPDU."""

    header: int = 2
    message_type: int = MessageType.TPDU_DATA
    separator: int = 0x80

    def pack(self) -> bytes:
        """Encode the three-byte header."""
        return bytes([self.header & 0xFF, self.message_type & 0xFF, self.separator & 0xFF])


class X224(Emitter):
    """X.224 layer over a TPKT transport.

    Emits ``connect`` with the selected protocol once negotiation is done,
    ``data`` with each received payload, and forwards ``close`` and ``error``.
    ``start_nla`` is called when the server selects CredSSP.
    """

    def __init__(self, transport: Any, start_nla: Optional[Callable[[], Any]] = None) -> None:
        super().__init__()
        self.transport = transport
        self.requested_protocol = PROTOCOL_RDP | PROTOCOL_SSL | PROTOCOL_HYBRID
        self.selected_protocol = PROTOCOL_SSL
        self.data_header = DataHeader()
        self._start_nla = start_nla
        if transport is not None:
            transport.on("close", lambda: self.emit("close"))
            transport.on("error", lambda err: self.emit("error", err))

    def write(self, data: bytes) -> Any:
        """Send ``data`` in a data TPDU."""
        return self.transport.write(self.data_header.pack() + bytes(data))

    def close(self) -> Any:
        """Close the underlying transport."""
        return self.transport.close()

    def set_requested_protocol(self, protocol: int) -> None:
        """Choose the security protocols offered in the connection request."""
        self.requested_protocol = protocol

    def connect(self) -> Any:
        """Send the connection request and wait for the server's confirm."""
        if self.transport is None:
            raise X224Error("no transport")
        message = ClientConnectionRequestPDU(
            DEFAULT_COOKIE,
            self.requested_protocol,
            Negotiation(NegotiationType.TYPE_RDP_NEG_REQ, 0, 0x0008, self.requested_protocol),
        )
        payload = message.serialize()
        _log.debug("x224 send connection request %s", payload.hex())
        self.transport.once("data", self._recv_connection_confirm)
        return self.transport.write(payload)

    def _fail(self, message: str) -> None:
        _log.error(message)
        self.emit("error", X224Error(message))

    def _recv_connection_confirm(self, data: bytes) -> None:
        _log.debug("x224 connection confirm %s", bytes(data).hex())
        indicator = data[0] if data else 0
        if indicator > 6:
            try:
                confirm = ServerConnectionConfirm.unpack(data)
            except X224Error as exc:
                self._fail(f"bad server connection confirm: {exc}")
                return
            neg = confirm.protocol_neg
            if neg.type == NegotiationType.TYPE_RDP_NEG_FAILURE:
                if neg.result == SSL_NOT_ALLOWED_BY_SERVER:
                    _log.info("server only allows standard RDP security")
                self.close()
                self._fail(f"negotiation failure with code {neg.result}")
                return
            if neg.type == NegotiationType.TYPE_RDP_NEG_RSP:
                self.selected_protocol = neg.result
        else:
            self.selected_protocol = PROTOCOL_RDP

        if self.selected_protocol == PROTOCOL_HYBRID_EX:
            self._fail("HYBRID_EX security is not supported")
            return

        self.transport.on("data", self._recv_data)

        if self.selected_protocol == PROTOCOL_RDP:
            _log.info("RDP security selected")
            self.emit("connect", self.selected_protocol)
        elif self.selected_protocol == PROTOCOL_SSL:
            _log.info("SSL security selected")
            try:
                self.transport.start_tls()
            except Exception as exc:  # noqa: BLE001 - any TLS failure is reported as an event
                self._fail(f"start tls failed: {exc}")
                return
            self.emit("connect", self.selected_protocol)
        elif self.selected_protocol == PROTOCOL_HYBRID:
            _log.info("NLA security selected")
            if self._start_nla is None:
                self._fail("NLA security selected but no NLA handler is set")
                return
            try:
                self._start_nla()
            except Exception as exc:  # noqa: BLE001 - any NLA failure is reported as an event
                self._fail(f"start NLA failed: {exc}")
                return
            self.emit("connect", self.selected_protocol)

    def _recv_data(self, data: bytes) -> None:
        self.emit("data", bytes(data[3:]))