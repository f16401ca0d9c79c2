"""TPKT framing layer: X.224 packets and fast-path PDUs over one byte stream."""

from __future__ import annotations

import logging
import struct
from collections import defaultdict
from typing import Any, Callable, Optional, Protocol

_log = logging.getLogger(__name__)

FASTPATH_ACTION_FASTPATH = 0x0
FASTPATH_ACTION_X224 = 0x3

FastPathListener = Callable[[int, bytes], Any]


class TpktError(ValueError):
    """Raised when a TPKT or fast-path header is malformed."""


class Transport(Protocol):
    """Byte stream the TPKT layer writes to."""

    def write(self, data: bytes) -> Any: ...

    def close(self) -> Any: ...

    def start_tls(self) -> Any: ...


class Emitter:
    """Minimal event emitter: named events with persistent or one-shot handlers."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[tuple[Callable[..., Any], bool]]] = defaultdict(list)

    def on(self, event: str, handler: Callable[..., Any]) -> Emitter:
        """Call ``handler`` every time ``event`` is emitted."""
        self._handlers[event].append((handler, False))
        return self

    def once(self, event: str, handler: Callable[..., Any]) -> Emitter:
        """Call ``handler`` the next time ``event`` is emitted only."""
        self._handlers[event].append((handler, True))
        return self

    def off(self, event: str, handler: Callable[..., Any]) -> Emitter:
        """Remove every registration of ``handler`` for ``event``."""
        self._handlers[event] = [(h, o) for h, o in self._handlers[event] if h != handler]
        return self

    def emit(self, event: str, *args: Any) -> bool:
        """Call the handlers of ``event``; return whether any were registered."""
        handlers = self._handlers.get(event)
        if not handlers:
            return False
        current = list(handlers)
        self._handlers[event] = [(h, o) for h, o in handlers if not o]
        for handler, _ in current:
            handler(*args)
        return True


class TPKT(Emitter):
    """Frames outgoing data and splits the incoming byte stream into packets.

    Complete X.224 payloads are emitted as ``data`` events; fast-path payloads
    go to the fast-path listener with their security flags.
    """

    def __init__(self, transport: Transport) -> None:
        super().__init__()
        self.transport = transport
        self.sec_flag = 0
        self._fast_path_listener: Optional[FastPathListener] = None
        self._buffer = bytearray()

    def set_fast_path_listener(self, listener: FastPathListener) -> None:
        """Set the callable that receives ``(sec_flag, payload)`` of fast-path PDUs."""
        self._fast_path_listener = listener

    def start_tls(self) -> Any:
        """Upgrade the underlying transport to TLS."""
        return self.transport.start_tls()

    def close(self) -> Any:
        """Close the underlying transport."""
        return self.transport.close()

    def write(self, data: bytes) -> Any:
        """Send ``data`` in a TPKT header."""
        data = bytes(data)
        header = struct.pack(">BBH", FASTPATH_ACTION_X224, 0, (len(data) + 4) & 0xFFFF)
        return self.transport.write(header + data)

    def send_fast_path(self, sec_flag: int, data: bytes) -> Any:
        """Send ``data`` as a fast-path PDU with a two-byte length."""
        data = bytes(data)
        action = FASTPATH_ACTION_FASTPATH | ((sec_flag & 0x3) << 6)
        header = struct.pack(">BH", action, ((len(data) + 3) | 0x8000) & 0xFFFF)
        return self.transport.write(header + data)

    def feed(self, data: bytes) -> None:
        """Take bytes received from the transport and dispatch every complete packet."""
        self._buffer += data
        while True:
            try:
                packet = self._take_packet()
            except TpktError as exc:
                self._buffer.clear()
                self.emit("error", exc)
                return
            if packet is None:
                return
            is_fast_path, sec_flag, payload = packet
            if not is_fast_path:
                self.emit("data", payload)
                continue
            self.sec_flag = sec_flag
            if self._fast_path_listener is None:
                _log.warning("fast-path PDU dropped: no listener")
            else:
                self._fast_path_listener(sec_flag, payload)

    def _take_packet(self) -> Optional[tuple[bool, int, bytes]]:
        buf = self._buffer
        if len(buf) < 2:
            return None
        action = buf[0]
        if action == FASTPATH_ACTION_X224:
            if len(buf) < 4:
                return None
            header = 4
            body_len = struct.unpack(">H", buf[2:4])[0] - 4
            is_fast_path = False
            sec_flag = 0
        else:
            is_fast_path = True
            sec_flag = (action >> 6) & 0x3
            short_length = buf[1]
            if short_length & 0x80:
                if len(buf) < 3:
                    return None
                header = 3
                body_len = ((short_length & 0x7F) << 8) + buf[2] - 3
            else:
                header = 2
                body_len = short_length - 2
        if body_len < 0:
            raise TpktError(f"packet length shorter than its header: {body_len + header}")
        end = header + body_len
        if len(buf) < end:
            return None
        payload = bytes(buf[header:end])
        del buf[:end]
        return is_fast_path, sec_flag, payload