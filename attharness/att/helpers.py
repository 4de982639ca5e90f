"""
GATT procedures built directly on an AttBearer.

- exchange_mtu: Exchange MTU Request / Response
- discover_all_primary_services: Read By Group Type paging, or
  Find By Type Value paging when a service UUID filter is given
"""
from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import Callable, List, Optional

import structlog

from attharness.att.bearer import (
    ATT_DEFAULT_LE_MTU,
    AttBearer,
    AttError,
    AttOpcode,
)
from attharness.att.uuid import BtUuid, UuidType
from attharness.exceptions import AttProtocolError

logger = structlog.get_logger()

PRIMARY_SERVICE_UUID = BtUuid.from_int16(0x2800)
LAST_HANDLE = 0xFFFF

# (success, att_ecode)
MtuCallback = Callable[[bool, int], None]


@dataclass(frozen=True)
class PrimaryService:
    start_handle: int
    end_handle: int
    uuid: BtUuid


@dataclass
class GattResult:
    """Services collected by a discovery procedure."""
    services: List[PrimaryService] = field(default_factory=list)

    def __iter__(self):
        return iter(self.services)

    def __len__(self) -> int:
        return len(self.services)


# (success, att_ecode, result)
DiscoveryCallback = Callable[[bool, int, Optional[GattResult]], None]


def _error_code(params: bytes) -> int:
    # request opcode (1), handle (2), error code (1)
    return params[3]


def exchange_mtu(
    bearer: AttBearer,
    client_rx_mtu: int,
    callback: Optional[MtuCallback] = None,
) -> int:
    """
    Start an MTU exchange.

    On success the bearer MTU becomes the smaller of both receive MTUs,
    never below the LE default of 23.

    Returns:
        Request identifier (for AttBearer.cancel)
    """

    def on_response(opcode: int, params: bytes) -> None:
        if opcode == AttOpcode.ERROR_RSP:
            ecode = _error_code(params)
            logger.debug("mtu_exchange_failed", att_ecode=ecode)
            if callback:
                callback(False, ecode)
            return

        if len(params) != 2:
            logger.warning("mtu_response_malformed", size=len(params))
            if callback:
                callback(False, 0)
            return

        (server_rx_mtu,) = struct.unpack("<H", params)
        bearer.mtu = max(ATT_DEFAULT_LE_MTU, min(client_rx_mtu, server_rx_mtu))
        logger.debug("mtu_exchanged", mtu=bearer.mtu)
        if callback:
            callback(True, 0)

    return bearer.send(AttOpcode.MTU_REQ, struct.pack("<H", client_rx_mtu), on_response)


class PrimaryDiscovery:
    """
    One running primary service discovery.

    Pages through the handle range until the server answers with an
    end handle of 0xFFFF or with Attribute Not Found.
    """

    def __init__(
        self,
        bearer: AttBearer,
        uuid: Optional[BtUuid],
        callback: DiscoveryCallback,
    ):
        self._bearer = bearer
        self._uuid = uuid
        self._callback: Optional[DiscoveryCallback] = callback
        self._request_id: Optional[int] = None
        self.result = GattResult()

    def start(self) -> "PrimaryDiscovery":
        self._request(0x0001)
        return self

    def cancel(self) -> None:
        if self._request_id is not None:
            self._bearer.cancel(self._request_id)
        self._request_id = None
        self._callback = None

    def _request(self, start_handle: int) -> None:
        if self._uuid is None:
            opcode = AttOpcode.READ_BY_GRP_TYPE_REQ
            payload = struct.pack("<HH", start_handle, LAST_HANDLE)
            payload += PRIMARY_SERVICE_UUID.to_le_bytes()
        else:
            opcode = AttOpcode.FIND_BY_TYPE_REQ
            payload = struct.pack(
                "<HHH", start_handle, LAST_HANDLE, PRIMARY_SERVICE_UUID.value
            )
            payload += _service_value(self._uuid)
        self._request_id = self._bearer.send(opcode, payload, self._on_response)

    def _on_response(self, opcode: int, params: bytes) -> None:
        self._request_id = None

        if opcode == AttOpcode.ERROR_RSP:
            ecode = _error_code(params)
            if ecode == AttError.ATTRIBUTE_NOT_FOUND and self.result.services:
                self._finish(True, 0)
            else:
                self._finish(False, ecode)
            return

        try:
            if opcode == AttOpcode.READ_BY_GRP_TYPE_RSP:
                last_end = self._parse_group_type(params)
            else:
                last_end = self._parse_find_by_type(params)
        except AttProtocolError as e:
            logger.warning("primary_discovery_malformed", error=e.message, **e.details)
            self._finish(False, 0)
            return

        if last_end == LAST_HANDLE:
            self._finish(True, 0)
        else:
            self._request(last_end + 1)

    def _parse_group_type(self, params: bytes) -> int:
        if not params:
            raise AttProtocolError("Empty Read By Group Type Response")
        entry_len = params[0]
        data = params[1:]
        if entry_len not in (6, 20) or not data or len(data) % entry_len:
            raise AttProtocolError(
                "Invalid Read By Group Type Response",
                details={"entry_len": entry_len, "size": len(data)},
            )

        last_end = 0
        for offset in range(0, len(data), entry_len):
            entry = data[offset:offset + entry_len]
            start, end = struct.unpack_from("<HH", entry)
            last_end = self._add(start, end, BtUuid.from_le_bytes(entry[4:]))
        return last_end

    def _parse_find_by_type(self, params: bytes) -> int:
        if not params or len(params) % 4:
            raise AttProtocolError(
                "Invalid Find By Type Value Response",
                details={"size": len(params)},
            )

        last_end = 0
        for start, end in struct.iter_unpack("<HH", params):
            last_end = self._add(start, end, self._uuid)
        return last_end

    def _add(self, start: int, end: int, uuid: BtUuid) -> int:
        if start == 0 or end < start:
            raise AttProtocolError(
                "Invalid service handle range",
                details={"start": start, "end": end},
            )
        self.result.services.append(PrimaryService(start, end, uuid))
        return end

    def _finish(self, success: bool, ecode: int) -> None:
        callback, self._callback = self._callback, None
        logger.debug(
            "primary_discovery_done",
            success=success,
            att_ecode=ecode,
            services=len(self.result.services),
        )
        if callback:
            callback(success, ecode, self.result if success else None)


def _service_value(uuid: BtUuid) -> bytes:
    # Find By Type Value only carries 16 or 128 bit forms
    if uuid.type == UuidType.UUID32:
        return uuid.to_uuid128().bytes[::-1]
    return uuid.to_le_bytes()


def discover_all_primary_services(
    bearer: AttBearer,
    uuid: Optional[BtUuid],
    callback: DiscoveryCallback,
) -> PrimaryDiscovery:
    """
    Discover primary services, all of them or only those of type uuid.
    """
    return PrimaryDiscovery(bearer, uuid, callback).start()
