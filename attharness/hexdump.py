"""Hexdump trace lines for PDUs crossing the transport"""
from typing import Callable

DebugSink = Callable[[str], None]

OCTETS_PER_LINE = 16


def hexdump(direction: str, data: bytes, sink: DebugSink, prefix: str = "") -> None:
    """
    Emit one trace line per 16 octets of data.

    Lines look like "> 02 00 02": a direction marker ('>' inbound,
    '<' outbound) followed by the octets in hex.
    """
    if not data:
        return
    for offset in range(0, len(data), OCTETS_PER_LINE):
        chunk = data[offset:offset + OCTETS_PER_LINE]
        sink(f"{prefix}{direction} {chunk.hex(' ')}")
