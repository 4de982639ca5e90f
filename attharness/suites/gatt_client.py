"""
GATT client conformance scenarios.

Test identifiers follow the Bluetooth GATT test suite naming
(/TP/<group>/CL/<id>).
"""
from typing import Optional

from attharness.att.helpers import discover_all_primary_services
from attharness.att.uuid import BtUuid
from attharness.config import settings
from attharness.engine.driver import RunContext, create_context, execute_context
from attharness.engine.script import raw_pdu
from attharness.hexdump import DebugSink
from attharness.models import ContextRole, RunVerdict, TestCase
from attharness.registry import TestRegistry

UUID_16 = BtUuid.from_int16(0x1800)


def run_client(test_case: TestCase, debug_sink: Optional[DebugSink] = None) -> RunVerdict:
    """Attach the collaborator and replay the script; nothing else is triggered."""
    context = create_context(settings.default_mtu, test_case, debug_sink)
    return execute_context(context)


def run_search_primary(test_case: TestCase, debug_sink: Optional[DebugSink] = None) -> RunVerdict:
    """Replay the script while discovering primary services on the bearer."""

    def trigger(context: RunContext) -> None:
        discover_all_primary_services(
            context.bearer,
            context.test_case.filter_uuid,
            context.completion_handler(),
        )

    context = create_context(settings.default_mtu, test_case, debug_sink)
    return execute_context(context, trigger)


def register(registry: TestRegistry) -> TestRegistry:
    # Server Configuration: the client negotiates the MTU first. Registered
    # with the GATT client role so construction itself sends the request.
    registry.define_test(
        "/TP/GAC/CL/BV-01-C", run_client, ContextRole.CLIENT_UNDER_TEST, None,
        raw_pdu(0x02, 0x00, 0x02),
    )

    # Discovery of services
    registry.define_test(
        "/TP/GAD/CL/BV-01-C", run_search_primary, ContextRole.RAW_TRANSPORT, None,
        raw_pdu(0x02, 0x00, 0x02),
        raw_pdu(0x03, 0x00, 0x02),
        raw_pdu(0x10, 0x01, 0x00, 0xff, 0xff, 0x00, 0x28),
        raw_pdu(0x11, 0x06, 0x10, 0x00, 0x13, 0x00, 0x00, 0x18,
                0x20, 0x00, 0x29, 0x00, 0xb0, 0x68,
                0x30, 0x00, 0x32, 0x00, 0x19, 0x18),
        raw_pdu(0x10, 0x33, 0x00, 0xff, 0xff, 0x00, 0x28),
        raw_pdu(0x11, 0x14, 0x90, 0x00, 0x96, 0x00, 0xef, 0xcd,
                0xab, 0x89, 0x67, 0x45, 0x23, 0x01,
                0x00, 0x00, 0x00, 0x00, 0x85, 0x60,
                0x00, 0x00),
        raw_pdu(0x10, 0x97, 0x00, 0xff, 0xff, 0x00, 0x28),
        raw_pdu(0x01, 0x10, 0x97, 0x00, 0x0a),
    )

    registry.define_test(
        "/TP/GAD/CL/BV-02-C-1", run_search_primary, ContextRole.RAW_TRANSPORT, UUID_16,
        raw_pdu(0x02, 0x00, 0x02),
        raw_pdu(0x03, 0x00, 0x02),
        raw_pdu(0x06, 0x01, 0x00, 0xff, 0xff, 0x00, 0x28, 0x00, 0x18),
        raw_pdu(0x07, 0x01, 0x00, 0x07, 0x00),
        raw_pdu(0x06, 0x08, 0x00, 0xff, 0xff, 0x00, 0x28, 0x00, 0x18),
        raw_pdu(0x01, 0x06, 0x08, 0x00, 0x0a),
    )

    return registry


def build_registry() -> TestRegistry:
    return register(TestRegistry())
