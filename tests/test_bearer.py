"""
Tests for AttBearer and the GATT helper procedures.

Tests cover:
- One outstanding request, queueing and cancel()
- Response matching and unexpected responses
- Request Not Supported for unserved requests
- Indication confirmation
- Reference counting
- MTU exchange
"""
from unittest.mock import MagicMock

import pytest

from attharness.att.bearer import ATT_DEFAULT_LE_MTU, AttBearer, AttOpcode
from attharness.att.helpers import exchange_mtu
from attharness.exceptions import AttProtocolError, InvariantViolation, TransportError


@pytest.fixture
def bearer_pair(loop, endpoints):
    """(bearer, harness socket); the bearer owns the client endpoint."""
    client, harness = endpoints
    bearer = AttBearer(client, loop, max_pdu_size=512)
    yield bearer, harness
    if not bearer.closed:
        bearer.unref()


class TestRequests:
    """Tests for outgoing requests."""

    def test_one_outstanding_request(self, bearer_pair):
        """Test that a second request waits for the first response."""
        bearer, harness = bearer_pair
        first = MagicMock()
        bearer.send(AttOpcode.MTU_REQ, b"\x00\x02", first)
        bearer.send(AttOpcode.READ_REQ, b"\x01\x00")

        assert harness.recv(512) == b"\x02\x00\x02"
        with pytest.raises(BlockingIOError):
            harness.recv(512)
        assert bearer.pending_opcode == AttOpcode.MTU_REQ

        harness.send(b"\x03\x00\x02")
        bearer._on_readable()

        first.assert_called_once_with(AttOpcode.MTU_RSP, b"\x00\x02")
        assert harness.recv(512) == b"\x0a\x01\x00"

    def test_error_response_routed_to_request(self, bearer_pair):
        """Test that an Error Response naming the request completes it."""
        bearer, harness = bearer_pair
        callback = MagicMock()
        bearer.send(AttOpcode.READ_REQ, b"\x01\x00", callback)
        harness.recv(512)

        harness.send(b"\x01\x0a\x01\x00\x01")
        bearer._on_readable()

        callback.assert_called_once_with(AttOpcode.ERROR_RSP, b"\x0a\x01\x00\x01")
        assert bearer.pending_opcode is None

    def test_cancel_queued(self, bearer_pair):
        """Test that a queued request can be dropped before it is written."""
        bearer, harness = bearer_pair
        bearer.send(AttOpcode.MTU_REQ, b"\x00\x02")
        queued = bearer.send(AttOpcode.READ_REQ, b"\x01\x00")

        assert bearer.cancel(queued) is True
        assert bearer.cancel(queued) is False

        harness.recv(512)
        harness.send(b"\x03\x00\x02")
        bearer._on_readable()
        with pytest.raises(BlockingIOError):
            harness.recv(512)

    def test_unexpected_response(self, bearer_pair):
        """Test that a response with no outstanding request is a protocol error."""
        bearer, harness = bearer_pair
        harness.send(b"\x03\x00\x02")
        with pytest.raises(AttProtocolError):
            bearer._on_readable()

    def test_mismatched_response(self, bearer_pair):
        """Test that a response to a different request is a protocol error."""
        bearer, harness = bearer_pair
        bearer.send(AttOpcode.MTU_REQ, b"\x00\x02")
        harness.recv(512)

        harness.send(b"\x0b\x00")
        with pytest.raises(AttProtocolError):
            bearer._on_readable()

    def test_pdu_larger_than_mtu(self, bearer_pair):
        """Test that requests are bounded by the negotiated MTU."""
        bearer, _ = bearer_pair
        with pytest.raises(AttProtocolError):
            bearer.send(AttOpcode.WRITE_REQ, bytes(ATT_DEFAULT_LE_MTU))


class TestIncoming:
    """Tests for requests and indications from the remote side."""

    def test_request_not_supported(self, bearer_pair):
        """Test the default answer to an unserved request."""
        bearer, harness = bearer_pair
        harness.send(b"\x02\x00\x02")
        bearer._on_readable()
        assert harness.recv(512) == b"\x01\x02\x00\x00\x06"

    def test_command_ignored(self, bearer_pair):
        """Test that commands never get a response."""
        bearer, harness = bearer_pair
        harness.send(b"\x52\x01\x00\xff")
        bearer._on_readable()
        with pytest.raises(BlockingIOError):
            harness.recv(512)

    def test_indication_confirmed(self, bearer_pair):
        """Test that indications are delivered and confirmed."""
        bearer, harness = bearer_pair
        callback = MagicMock()
        bearer.register_notify(callback)

        harness.send(b"\x1d\x03\x00\xaa")
        bearer._on_readable()

        callback.assert_called_once_with(AttOpcode.HANDLE_VAL_IND, b"\x03\x00\xaa")
        assert harness.recv(512) == b"\x1e"


class TestReferences:
    """Tests for shared ownership."""

    def test_last_unref_releases(self, loop, endpoints):
        """Test that the socket closes only with the last reference."""
        client, _ = endpoints
        bearer = AttBearer(client, loop)
        bearer.ref()

        bearer.unref()
        assert not bearer.closed
        bearer.unref()
        assert bearer.closed
        assert client.fileno() == -1

    def test_use_after_release(self, loop, endpoints):
        """Test that a released bearer refuses further use."""
        client, _ = endpoints
        bearer = AttBearer(client, loop)
        bearer.unref()

        with pytest.raises(InvariantViolation):
            bearer.unref()
        with pytest.raises(InvariantViolation):
            bearer.ref()
        with pytest.raises(TransportError):
            bearer.send(AttOpcode.MTU_REQ, b"\x00\x02")


class TestExchangeMtu:
    """Tests for exchange_mtu()."""

    def test_smaller_server_mtu_wins(self, bearer_pair):
        """Test that the bearer adopts the smaller receive MTU."""
        bearer, harness = bearer_pair
        callback = MagicMock()
        exchange_mtu(bearer, 512, callback)
        assert harness.recv(512) == b"\x02\x00\x02"

        harness.send(b"\x03\x64\x00")
        bearer._on_readable()

        assert bearer.mtu == 100
        callback.assert_called_once_with(True, 0)

    def test_error_response(self, bearer_pair):
        """Test that an Error Response leaves the default MTU."""
        bearer, harness = bearer_pair
        callback = MagicMock()
        exchange_mtu(bearer, 512, callback)
        harness.recv(512)

        harness.send(b"\x01\x02\x00\x00\x06")
        bearer._on_readable()

        assert bearer.mtu == ATT_DEFAULT_LE_MTU
        callback.assert_called_once_with(False, 0x06)
