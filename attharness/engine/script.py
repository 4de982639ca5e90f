"""
PDU Script - ordered, immutable list of test vectors for one test case.

Each vector is either a PDU the collaborator must send or a PDU the
harness sends back; which one is decided by where the cursor is when
the peer reads or writes. Index len(script) always holds the sentinel.
"""
from __future__ import annotations

from typing import Iterable, Iterator, Tuple

from attharness.exceptions import ConfigurationError, ScriptExhaustedError
from attharness.models import TestVector

SENTINEL = TestVector(valid=False)


def raw_pdu(*octets: int) -> TestVector:
    """Build a vector from literal octets, e.g. raw_pdu(0x02, 0x00, 0x02)."""
    return TestVector(data=bytes(octets))


class PduScript:
    """
    Read-only view over a test case's vectors with the sentinel appended.

    Example:
        script = PduScript([raw_pdu(0x02, 0x00, 0x02)])
        script.take(0)   # the MTU request
        script.next(1)   # SENTINEL
        script.take(1)   # raises ScriptExhaustedError
    """

    def __init__(self, vectors: Iterable[TestVector]):
        vectors = tuple(vectors)
        for index, vector in enumerate(vectors):
            if not vector.valid:
                raise ConfigurationError(
                    f"Sentinel at position {index} inside script",
                    details={"position": index, "length": len(vectors)},
                )
        self._vectors: Tuple[TestVector, ...] = vectors + (SENTINEL,)

    def __len__(self) -> int:
        return len(self._vectors) - 1

    def __iter__(self) -> Iterator[TestVector]:
        return iter(self._vectors[:-1])

    def next(self, cursor: int) -> TestVector:
        """
        Return the vector at cursor; cursor == len(self) is the sentinel.

        Raises:
            ScriptExhaustedError: cursor is past the sentinel
        """
        if not 0 <= cursor < len(self._vectors):
            raise ScriptExhaustedError(
                f"Script cursor {cursor} out of range",
                details={"cursor": cursor, "length": len(self)},
            )
        return self._vectors[cursor]

    def take(self, cursor: int) -> TestVector:
        """
        Return the vector at cursor for consumption or emission.

        Raises:
            ScriptExhaustedError: cursor is at or past the sentinel
        """
        vector = self.next(cursor)
        if not vector.valid:
            raise ScriptExhaustedError(
                "Script already at end, no vector left to match or send",
                details={"cursor": cursor, "length": len(self)},
            )
        return vector

    def is_sentinel(self, cursor: int) -> bool:
        return not self.next(cursor).valid
