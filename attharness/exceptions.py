"""
Custom Exception Hierarchy for the conformance harness

Every failure a scripted run can hit is one of these. None of them is
retried: a run that raises any HarnessError is a failed test.
"""
from typing import Optional


class HarnessError(Exception):
    """
    Base exception for all harness-specific errors.

    All custom exceptions should inherit from this class to allow
    catching all harness errors with a single except clause.
    """
    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


# Configuration Errors

class ConfigurationError(HarnessError):
    """
    Invalid test case or harness configuration.

    Raised when a test case asks for a role or parameter the driver
    cannot set up.
    """
    pass


# Script Violations

class ScriptViolation(HarnessError):
    """
    Inbound traffic does not match the PDU script.

    Base class for all exact-replay assertion failures.
    """
    pass


class PduLengthMismatch(ScriptViolation):
    """Inbound PDU size differs from the expected vector size."""
    pass


class PduContentMismatch(ScriptViolation):
    """Inbound PDU has the expected size but different octets."""
    pass


class ScriptExhaustedError(ScriptViolation):
    """Cursor indexed the sentinel or past it."""
    pass


class OversizedPduError(ScriptViolation):
    """Inbound PDU does not fit the bounded read buffer."""
    pass


# Transport Errors

class TransportError(HarnessError):
    """
    Failures on the duplex transport.

    Base class for all transport-level errors.
    """
    pass


class TransportSetupError(TransportError):
    """Failed to create the connected endpoint pair."""
    pass


class TransportHangupError(TransportError):
    """The collaborator's endpoint closed while the script expected traffic."""
    pass


class ShortWriteError(TransportError):
    """A scripted PDU was not written in full."""
    pass


# Collaborator Errors

class CollaboratorFailure(HarnessError):
    """
    The collaborator under test reported an unsuccessful completion.
    """
    def __init__(self, message: str, att_ecode: int = 0):
        super().__init__(message, {"att_ecode": att_ecode})
        self.att_ecode = att_ecode


class AttProtocolError(HarnessError):
    """Malformed or unexpected attribute protocol PDU."""
    pass


# Run Control Errors

class RunTimeoutError(HarnessError):
    """The run did not reach a terminal state in time."""
    pass


class InvariantViolation(HarnessError):
    """
    Internal invariant violated.

    Indicates a bug in the harness itself (should never happen).
    """
    pass
