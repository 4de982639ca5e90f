"""
Duplex Transport - connected, message-preserving endpoint pair.

Endpoint A ("client") is handed to the collaborator under test,
endpoint B ("harness") stays with the scripted peer. SOCK_SEQPACKET keeps
every write a single discrete read on the other side. Python sockets
are created close-on-exec.
"""
from __future__ import annotations

import socket
from dataclasses import dataclass, field
from typing import Optional

import structlog

from attharness.exceptions import TransportError, TransportSetupError

logger = structlog.get_logger()


@dataclass
class DuplexPair:
    """Both endpoints of one transport; the client end can be detached once."""

    harness: socket.socket
    _client: Optional[socket.socket] = field(default=None, repr=False)

    def detach_client(self) -> socket.socket:
        """Transfer endpoint A to the collaborator."""
        if self._client is None:
            raise TransportError("Client endpoint already transferred")
        sock, self._client = self._client, None
        return sock

    @property
    def client_attached(self) -> bool:
        return self._client is not None

    def close(self) -> None:
        """Close whatever endpoints this pair still owns."""
        if self._client is not None:
            self._client.close()
            self._client = None
        self.harness.close()


def create_pair() -> DuplexPair:
    """
    Create a connected endpoint pair.

    Raises:
        TransportSetupError: socketpair() failed
    """
    try:
        client, harness = socket.socketpair(
            socket.AF_UNIX, socket.SOCK_SEQPACKET
        )
    except (OSError, AttributeError) as e:
        raise TransportSetupError(
            "Failed to create SEQPACKET socket pair",
            details={"error": str(e)},
        )

    client.setblocking(False)
    harness.setblocking(False)
    logger.debug("transport_pair_created", client_fd=client.fileno(), harness_fd=harness.fileno())
    return DuplexPair(harness=harness, _client=client)
