"""
Scripted Peer - impersonates the remote ATT endpoint from a PDU script.

Inbound: every readable event consumes exactly one PDU and compares it
octet for octet with the vector at the cursor.
Outbound: after a match, the next vector is written on a later loop
iteration (call_soon), so the collaborator finishes reacting to what it
just received before the next scripted PDU arrives.

States:
    WAITING_FOR_INBOUND --match--> SEND_SCHEDULED --fires--> WAITING_FOR_INBOUND
    WAITING_FOR_INBOUND --match, sentinel--> TERMINATED_SUCCESS
    any --mismatch / short I/O / transport error--> TERMINATED_FAILURE
"""
from __future__ import annotations

import asyncio
import socket
from enum import Enum
from typing import Callable, Optional

import structlog

from attharness.engine.script import PduScript
from attharness.exceptions import (
    HarnessError,
    InvariantViolation,
    OversizedPduError,
    PduContentMismatch,
    PduLengthMismatch,
    ShortWriteError,
    TransportError,
    TransportHangupError,
)
from attharness.hexdump import DebugSink, hexdump

logger = structlog.get_logger()

TRACE_PREFIX = "GATT: "


class PeerState(str, Enum):
    WAITING_FOR_INBOUND = "waiting_for_inbound"
    SEND_SCHEDULED = "send_scheduled"
    TERMINATED_SUCCESS = "terminated_success"
    TERMINATED_FAILURE = "terminated_failure"


class ScriptedPeer:
    """
    Owns the harness endpoint's loop registrations and the script cursor.

    The cursor only moves forward, by one per matched or emitted vector.
    At most one deferred send is pending at any time.

    Example:
        peer = ScriptedPeer(loop, pair.harness, script, 512, on_exhausted=ctx.maybe_finish)
        peer.attach()
        ...
        peer.close()
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        sock: socket.socket,
        script: PduScript,
        max_pdu_size: int,
        on_exhausted: Callable[[], None],
        debug_sink: Optional[DebugSink] = None,
    ):
        self._loop = loop
        self._sock = sock
        self._script = script
        self._max_pdu_size = max_pdu_size
        self._on_exhausted = on_exhausted
        self._debug_sink = debug_sink

        # One extra octet so an oversized PDU is detectable
        self._buffer = bytearray(max_pdu_size + 1)

        self.cursor = 0
        self.state = PeerState.WAITING_FOR_INBOUND
        self._watch_fd: Optional[int] = None
        self._pending_send: Optional[asyncio.Handle] = None

    @property
    def watching(self) -> bool:
        return self._watch_fd is not None

    @property
    def send_pending(self) -> bool:
        return self._pending_send is not None

    @property
    def script_exhausted(self) -> bool:
        return self._script.is_sentinel(self.cursor)

    @property
    def terminated(self) -> bool:
        return self.state in (PeerState.TERMINATED_SUCCESS, PeerState.TERMINATED_FAILURE)

    def attach(self) -> None:
        """Register the readability watch on the harness endpoint."""
        if self.watching:
            raise InvariantViolation("Scripted peer already attached")
        fd = self._sock.fileno()
        self._loop.add_reader(fd, self.handle_readable)
        self._watch_fd = fd

    def close(self) -> None:
        """Drop the watch and any pending send. Safe to call repeatedly."""
        if self._watch_fd is not None:
            self._loop.remove_reader(self._watch_fd)
            self._watch_fd = None
        if self._pending_send is not None:
            self._pending_send.cancel()
            self._pending_send = None

    def fail(self) -> None:
        self.state = PeerState.TERMINATED_FAILURE
        self.close()

    def handle_readable(self) -> None:
        """Inbound path: consume and verify one PDU."""
        try:
            self._consume()
        except HarnessError:
            self.fail()
            raise

    def schedule_send(self) -> None:
        """Emit the vector at the cursor on the next loop iteration."""
        if self._pending_send is not None:
            raise InvariantViolation(
                "Deferred send already pending",
                details={"cursor": self.cursor},
            )
        self._pending_send = self._loop.call_soon(self.send_scheduled)
        self.state = PeerState.SEND_SCHEDULED

    def send_scheduled(self) -> None:
        """Outbound path: write the vector at the cursor in full."""
        try:
            self._emit()
        except HarnessError:
            self.fail()
            raise

    def _consume(self) -> None:
        try:
            nbytes = self._sock.recv_into(self._buffer)
        except BlockingIOError:
            return
        except OSError as e:
            raise TransportError(
                "Read on harness endpoint failed",
                details={"error": str(e), "cursor": self.cursor},
            )

        if nbytes == 0:
            raise TransportHangupError(
                "Collaborator closed its endpoint",
                details={"cursor": self.cursor},
            )

        if nbytes > self._max_pdu_size:
            raise OversizedPduError(
                f"Inbound PDU exceeds {self._max_pdu_size} octets",
                details={"cursor": self.cursor},
            )

        data = bytes(self._buffer[:nbytes])
        if self._debug_sink:
            hexdump(">", data, self._debug_sink, TRACE_PREFIX)

        expected = self._script.take(self.cursor)
        self.cursor += 1

        if nbytes != expected.size:
            raise PduLengthMismatch(
                f"Expected {expected.size} octets, read {nbytes}",
                details={
                    "cursor": self.cursor - 1,
                    "expected": expected.data.hex(),
                    "actual": data.hex(),
                },
            )
        if data != expected.data:
            raise PduContentMismatch(
                "Inbound PDU differs from script",
                details={
                    "cursor": self.cursor - 1,
                    "expected": expected.data.hex(),
                    "actual": data.hex(),
                },
            )

        logger.debug("peer_pdu_matched", cursor=self.cursor, size=nbytes)

        if self.script_exhausted:
            self._terminate()
        else:
            self.schedule_send()

    def _emit(self) -> None:
        vector = self._script.take(self.cursor)
        self.cursor += 1

        try:
            written = self._sock.send(vector.data)
        except OSError as e:
            raise TransportError(
                "Write on harness endpoint failed",
                details={"error": str(e), "cursor": self.cursor - 1},
            )

        if self._debug_sink:
            hexdump("<", vector.data[:written], self._debug_sink, TRACE_PREFIX)

        if written != vector.size:
            raise ShortWriteError(
                f"Wrote {written} of {vector.size} octets",
                details={"cursor": self.cursor - 1},
            )

        self._pending_send = None
        logger.debug("peer_pdu_sent", cursor=self.cursor, size=written)

        if self.script_exhausted:
            self._terminate()
        else:
            self.state = PeerState.WAITING_FOR_INBOUND

    def _terminate(self) -> None:
        self.state = PeerState.TERMINATED_SUCCESS
        logger.debug("peer_script_exhausted", cursor=self.cursor)
        self._on_exhausted()
