"""
GATT client layered on an AttBearer.

Construction takes a reference on the bearer and starts the client's own
initialization: MTU exchange, then primary service discovery.
"""
from __future__ import annotations

from typing import Callable, List, Optional, Union

import structlog

from attharness.att.bearer import AttBearer, AttError
from attharness.att.helpers import (
    DiscoveryCallback,
    GattResult,
    PrimaryDiscovery,
    PrimaryService,
    discover_all_primary_services,
    exchange_mtu,
)
from attharness.att.uuid import BtUuid
from attharness.hexdump import DebugSink

logger = structlog.get_logger()

# (success, att_ecode)
ReadyCallback = Callable[[bool, int], None]


class GattClient:
    """
    Minimal GATT client: MTU negotiation and primary service discovery.
    """

    def __init__(self, bearer: AttBearer, mtu: int):
        self._bearer: Optional[AttBearer] = bearer.ref()
        self._mtu = mtu
        self._ops: List[Union[int, PrimaryDiscovery]] = []
        self._ready_callback: Optional[ReadyCallback] = None
        self._debug_sink: Optional[DebugSink] = None
        self._debug_prefix = ""

        self.ready = False
        self.services: List[PrimaryService] = []

        self._ops.append(exchange_mtu(bearer, mtu, self._on_mtu_exchanged))

    @property
    def bearer(self) -> Optional[AttBearer]:
        return self._bearer

    def set_debug(self, sink: Optional[DebugSink], prefix: str = "") -> None:
        self._debug_sink = sink
        self._debug_prefix = prefix

    def set_ready_handler(self, callback: Optional[ReadyCallback]) -> None:
        self._ready_callback = callback

    def discover_primary_services(
        self,
        uuid: Optional[BtUuid],
        callback: DiscoveryCallback,
    ) -> PrimaryDiscovery:
        if self._bearer is None:
            raise RuntimeError("GATT client closed")
        op = discover_all_primary_services(self._bearer, uuid, callback)
        self._ops.append(op)
        return op

    def close(self) -> None:
        """Cancel outstanding procedures and drop the bearer reference."""
        if self._bearer is None:
            return
        for op in self._ops:
            if isinstance(op, PrimaryDiscovery):
                op.cancel()
            else:
                self._bearer.cancel(op)
        self._ops.clear()
        self._ready_callback = None
        self._bearer.unref()
        self._bearer = None

    def _debug(self, message: str) -> None:
        if self._debug_sink:
            self._debug_sink(f"{self._debug_prefix}{message}")

    def _on_mtu_exchanged(self, success: bool, ecode: int) -> None:
        if not success and ecode != AttError.REQUEST_NOT_SUPPORTED:
            self._debug(f"MTU exchange failed. ATT ECODE: 0x{ecode:02x}")
            self._finish_init(False, ecode)
            return

        self._debug(f"MTU exchange complete, with MTU: {self._bearer.mtu}")
        self.discover_primary_services(None, self._on_services)

    def _on_services(self, success: bool, ecode: int, result: Optional[GattResult]) -> None:
        if not success:
            self._debug(f"Failed to discover primary services: 0x{ecode:02x}")
            self._finish_init(False, ecode)
            return

        self.services = list(result)
        for service in self.services:
            self._debug(
                f"start: 0x{service.start_handle:04x}, "
                f"end: 0x{service.end_handle:04x}, uuid: {service.uuid}"
            )
        self._finish_init(True, 0)

    def _finish_init(self, success: bool, ecode: int) -> None:
        self.ready = success
        logger.debug("gatt_client_init_done", success=success, att_ecode=ecode)
        if self._ready_callback:
            self._ready_callback(success, ecode)
