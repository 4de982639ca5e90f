"""
ATT Bearer - attribute protocol connection over one transport endpoint.

Frames PDUs on a message-preserving socket and multiplexes:
- Requests sent by the local side (one outstanding at a time, queued)
- Responses and Error Responses matched to the outstanding request
- Requests from the remote side (registered handlers, or Request Not Supported)
- Notifications and indications (indications are confirmed)

Lifetime is shared: every holder takes a reference with ref() and gives it
back with unref(). The socket and the readability watch are released by
the last unref().
"""
from __future__ import annotations

import asyncio
import itertools
import socket
import struct
from collections import deque
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, Deque, Dict, List, Optional

import structlog

from attharness.exceptions import AttProtocolError, InvariantViolation, TransportError
from attharness.hexdump import DebugSink, hexdump

logger = structlog.get_logger()

ATT_DEFAULT_LE_MTU = 23
ATT_MAX_MTU = 517


class AttOpcode(IntEnum):
    ERROR_RSP = 0x01
    MTU_REQ = 0x02
    MTU_RSP = 0x03
    FIND_INFO_REQ = 0x04
    FIND_INFO_RSP = 0x05
    FIND_BY_TYPE_REQ = 0x06
    FIND_BY_TYPE_RSP = 0x07
    READ_BY_TYPE_REQ = 0x08
    READ_BY_TYPE_RSP = 0x09
    READ_REQ = 0x0A
    READ_RSP = 0x0B
    READ_BY_GRP_TYPE_REQ = 0x10
    READ_BY_GRP_TYPE_RSP = 0x11
    WRITE_REQ = 0x12
    WRITE_RSP = 0x13
    HANDLE_VAL_NOT = 0x1B
    HANDLE_VAL_IND = 0x1D
    HANDLE_VAL_CONF = 0x1E


class AttError(IntEnum):
    REQUEST_NOT_SUPPORTED = 0x06
    ATTRIBUTE_NOT_FOUND = 0x0A


REQUEST_OPCODES = frozenset({
    AttOpcode.MTU_REQ,
    AttOpcode.FIND_INFO_REQ,
    AttOpcode.FIND_BY_TYPE_REQ,
    AttOpcode.READ_BY_TYPE_REQ,
    AttOpcode.READ_REQ,
    AttOpcode.READ_BY_GRP_TYPE_REQ,
    AttOpcode.WRITE_REQ,
})

RESPONSE_OPCODES = frozenset(opcode + 1 for opcode in REQUEST_OPCODES)

COMMAND_FLAG = 0x40

# (opcode, params) for responses, notifications and indications
PduCallback = Callable[[int, bytes], None]
# (opcode, params) -> full response PDU
RequestHandler = Callable[[int, bytes], bytes]


def error_rsp(request_opcode: int, handle: int, ecode: int) -> bytes:
    """Build an Error Response PDU."""
    return struct.pack("<BBHB", AttOpcode.ERROR_RSP, request_opcode, handle, ecode)


@dataclass
class _Request:
    id: int
    opcode: int
    pdu: bytes
    callback: Optional[PduCallback]


class AttBearer:
    """
    Attribute protocol connection bound to one endpoint of a duplex pair.

    Example:
        bearer = AttBearer(sock, loop, mtu=512)
        bearer.send(AttOpcode.MTU_REQ, b"\\x00\\x02", on_response)
        ...
        bearer.unref()
    """

    def __init__(
        self,
        sock: socket.socket,
        loop: asyncio.AbstractEventLoop,
        max_pdu_size: int = ATT_MAX_MTU,
    ):
        self._sock = sock
        self._loop = loop
        self._recv_size = max(max_pdu_size, ATT_DEFAULT_LE_MTU)
        self.mtu = ATT_DEFAULT_LE_MTU

        self._ids = itertools.count(1)
        self._queue: Deque[_Request] = deque()
        self._pending: Optional[_Request] = None
        self._handlers: Dict[int, RequestHandler] = {}
        self._notify: List[PduCallback] = []

        self._debug_sink: Optional[DebugSink] = None
        self._debug_prefix = ""

        self._refs = 1
        self._watching = True
        loop.add_reader(sock.fileno(), self._on_readable)

    @property
    def closed(self) -> bool:
        return self._refs == 0

    @property
    def pending_opcode(self) -> Optional[int]:
        """Opcode of the request awaiting a response, if any."""
        return self._pending.opcode if self._pending else None

    def ref(self) -> "AttBearer":
        if self.closed:
            raise InvariantViolation("ref() on a released bearer")
        self._refs += 1
        return self

    def unref(self) -> None:
        if self.closed:
            raise InvariantViolation("unref() on a released bearer")
        self._refs -= 1
        if self._refs == 0:
            self._destroy()

    def set_debug(self, sink: Optional[DebugSink], prefix: str = "") -> None:
        self._debug_sink = sink
        self._debug_prefix = prefix

    def register_handler(self, opcode: int, handler: RequestHandler) -> None:
        """Serve incoming requests with this opcode."""
        self._handlers[opcode] = handler

    def register_notify(self, callback: PduCallback) -> None:
        self._notify.append(callback)

    def send(
        self,
        opcode: int,
        payload: bytes = b"",
        callback: Optional[PduCallback] = None,
    ) -> int:
        """
        Send a PDU.

        Requests are queued and written one at a time; the callback runs
        with the matching response or Error Response. Any other opcode is
        written immediately.

        Returns:
            Identifier usable with cancel()
        """
        if self.closed:
            raise TransportError("Bearer released")

        pdu = bytes([opcode]) + payload
        if len(pdu) > self.mtu and opcode != AttOpcode.MTU_REQ:
            raise AttProtocolError(
                f"PDU of {len(pdu)} octets exceeds MTU {self.mtu}",
                details={"opcode": opcode},
            )

        request = _Request(next(self._ids), opcode, pdu, callback)
        if opcode in REQUEST_OPCODES:
            self._queue.append(request)
            self._wakeup_writer()
        else:
            self._write(pdu)
        return request.id

    def cancel(self, request_id: int) -> bool:
        """
        Drop a queued request, or silence the callback of the outstanding one.

        Returns:
            True if the request was found
        """
        if self._pending and self._pending.id == request_id:
            self._pending.callback = None
            return True
        for request in self._queue:
            if request.id == request_id:
                self._queue.remove(request)
                return True
        return False

    def _wakeup_writer(self) -> None:
        if self._pending is not None or not self._queue:
            return
        self._pending = self._queue.popleft()
        self._write(self._pending.pdu)

    def _write(self, pdu: bytes) -> None:
        try:
            written = self._sock.send(pdu)
        except OSError as e:
            raise TransportError(
                "Failed to write ATT PDU",
                details={"error": str(e), "size": len(pdu)},
            )
        if written != len(pdu):
            raise TransportError(
                "Short ATT PDU write",
                details={"written": written, "size": len(pdu)},
            )
        if self._debug_sink:
            hexdump("<", pdu, self._debug_sink, self._debug_prefix)

    def _on_readable(self) -> None:
        try:
            pdu = self._sock.recv(self._recv_size)
        except BlockingIOError:
            return
        except OSError as e:
            self._stop_watching()
            raise TransportError("ATT read failed", details={"error": str(e)})

        if not pdu:
            logger.debug("att_disconnected")
            self._stop_watching()
            return

        if self._debug_sink:
            hexdump(">", pdu, self._debug_sink, self._debug_prefix)

        opcode, params = pdu[0], pdu[1:]
        if opcode == AttOpcode.ERROR_RSP or opcode in RESPONSE_OPCODES:
            self._handle_response(opcode, params)
        elif opcode in (AttOpcode.HANDLE_VAL_NOT, AttOpcode.HANDLE_VAL_IND):
            self._handle_notify(opcode, params)
        elif opcode in REQUEST_OPCODES or opcode & COMMAND_FLAG:
            self._handle_request(opcode, params)
        else:
            logger.warning("att_unknown_opcode", opcode=opcode)

    def _handle_response(self, opcode: int, params: bytes) -> None:
        request = self._pending
        if request is None:
            raise AttProtocolError(
                "Response without an outstanding request",
                details={"opcode": opcode},
            )

        if opcode == AttOpcode.ERROR_RSP:
            if len(params) != 4 or params[0] != request.opcode:
                raise AttProtocolError(
                    "Error Response does not match the outstanding request",
                    details={"opcode": request.opcode, "params": params.hex()},
                )
        elif opcode != request.opcode + 1:
            raise AttProtocolError(
                "Response opcode does not match the outstanding request",
                details={"opcode": opcode, "request_opcode": request.opcode},
            )

        self._pending = None
        if request.callback:
            request.callback(opcode, params)
        if not self.closed:
            self._wakeup_writer()

    def _handle_request(self, opcode: int, params: bytes) -> None:
        handler = self._handlers.get(opcode)
        if handler:
            response = handler(opcode, params)
            if response:
                self._write(response)
            return
        if opcode & COMMAND_FLAG:
            logger.debug("att_command_ignored", opcode=opcode)
            return
        self._write(error_rsp(opcode, 0x0000, AttError.REQUEST_NOT_SUPPORTED))

    def _handle_notify(self, opcode: int, params: bytes) -> None:
        for callback in list(self._notify):
            callback(opcode, params)
        if opcode == AttOpcode.HANDLE_VAL_IND and not self.closed:
            self._write(bytes([AttOpcode.HANDLE_VAL_CONF]))

    def _stop_watching(self) -> None:
        if self._watching:
            self._loop.remove_reader(self._sock.fileno())
            self._watching = False

    def _destroy(self) -> None:
        self._stop_watching()
        self._queue.clear()
        self._pending = None
        self._handlers.clear()
        self._notify.clear()
        self._sock.close()
        logger.debug("att_bearer_released")
