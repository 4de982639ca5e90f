"""
Tests for the duplex transport pair.

Tests cover:
- Message boundaries preserved in both directions
- One-time transfer of the client endpoint
- Closing whatever the pair still owns
"""
import pytest

from attharness.engine.transport import create_pair
from attharness.exceptions import TransportError


class TestCreatePair:
    """Tests for create_pair()."""

    def test_boundaries_preserved(self, endpoints):
        """Test that two writes arrive as two discrete reads."""
        client, harness = endpoints
        client.send(b"\x02\x00\x02")
        client.send(b"\x10\x01\x00")

        assert harness.recv(512) == b"\x02\x00\x02"
        assert harness.recv(512) == b"\x10\x01\x00"

    def test_full_duplex(self, endpoints):
        """Test traffic in the harness to client direction."""
        client, harness = endpoints
        harness.send(b"\x03\x00\x02")
        assert client.recv(512) == b"\x03\x00\x02"

    def test_endpoints_non_blocking(self, endpoints):
        """Test that an empty endpoint does not block the loop."""
        _, harness = endpoints
        with pytest.raises(BlockingIOError):
            harness.recv(512)


class TestDuplexPair:
    """Tests for endpoint ownership."""

    def test_detach_once(self):
        """Test that the client endpoint can only be transferred once."""
        pair = create_pair()
        try:
            client = pair.detach_client()
            assert not pair.client_attached
            with pytest.raises(TransportError):
                pair.detach_client()
            client.close()
        finally:
            pair.close()

    def test_close_releases_undetached_client(self):
        """Test that close() also closes a client end nobody took."""
        pair = create_pair()
        pair.close()
        assert pair.harness.fileno() == -1
        assert not pair.client_attached
