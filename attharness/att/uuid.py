"""
Bluetooth UUIDs as carried in attribute protocol PDUs.

16 and 32 bit UUIDs are aliases into the Bluetooth base UUID
00000000-0000-1000-8000-00805F9B34FB. On the wire every form is
little-endian.
"""
from __future__ import annotations

import uuid as _uuid
from enum import IntEnum

from pydantic import BaseModel

BASE_UUID = _uuid.UUID("00000000-0000-1000-8000-00805f9b34fb")


class UuidType(IntEnum):
    UUID16 = 16
    UUID32 = 32
    UUID128 = 128


class BtUuid(BaseModel):
    """A Bluetooth UUID in its shortest declared form."""

    model_config = {"frozen": True}

    type: UuidType
    value: int

    @classmethod
    def from_int16(cls, value: int) -> "BtUuid":
        if not 0 <= value <= 0xFFFF:
            raise ValueError(f"16-bit UUID out of range: {value:#x}")
        return cls(type=UuidType.UUID16, value=value)

    @classmethod
    def from_int32(cls, value: int) -> "BtUuid":
        if not 0 <= value <= 0xFFFFFFFF:
            raise ValueError(f"32-bit UUID out of range: {value:#x}")
        return cls(type=UuidType.UUID32, value=value)

    @classmethod
    def from_string(cls, text: str) -> "BtUuid":
        """
        Parse "1800", "0x1800", "0000180a" or a full 128-bit UUID string.
        """
        text = text.strip().lower()
        if text.startswith("0x"):
            text = text[2:]
        if len(text) == 4:
            return cls.from_int16(int(text, 16))
        if len(text) == 8:
            return cls.from_int32(int(text, 16))
        return cls(type=UuidType.UUID128, value=_uuid.UUID(text).int)

    @classmethod
    def from_le_bytes(cls, data: bytes) -> "BtUuid":
        if len(data) == 2:
            return cls.from_int16(int.from_bytes(data, "little"))
        if len(data) == 4:
            return cls.from_int32(int.from_bytes(data, "little"))
        if len(data) == 16:
            return cls(type=UuidType.UUID128, value=int.from_bytes(data, "little"))
        raise ValueError(f"invalid UUID length: {len(data)}")

    def to_le_bytes(self) -> bytes:
        return self.value.to_bytes(self.type // 8, "little")

    def to_uuid128(self) -> _uuid.UUID:
        if self.type == UuidType.UUID128:
            return _uuid.UUID(int=self.value)
        return _uuid.UUID(int=BASE_UUID.int | (self.value << 96))

    def __str__(self) -> str:
        return str(self.to_uuid128())
