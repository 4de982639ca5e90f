"""
Core data models
"""
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, Field

from attharness.att.uuid import BtUuid


class ContextRole(str, Enum):
    """Which collaborator the driver attaches to the transport"""

    RAW_TRANSPORT = "raw_transport"  # bare ATT bearer
    CLIENT_UNDER_TEST = "client_under_test"  # GATT client atop a bearer
    SERVER_UNDER_TEST = "server_under_test"  # bearer serving requests


class RunVerdict(str, Enum):
    """Outcome of one scripted run"""

    PASSED = "passed"
    FAILED = "failed"


class TestVector(BaseModel):
    """One scripted PDU; valid=False marks the end of the script"""

    __test__ = False
    model_config = {"frozen": True}

    valid: bool = True
    data: bytes = b""

    @property
    def size(self) -> int:
        return len(self.data)


class TestCase(BaseModel):
    """A registered scenario: name, PDU script and collaborator role"""

    __test__ = False
    model_config = {"frozen": True}

    name: str
    vectors: Tuple[TestVector, ...]
    role: ContextRole = ContextRole.RAW_TRANSPORT
    filter_uuid: Optional[BtUuid] = None


class TestReport(BaseModel):
    """Per-test result surfaced by the registry"""

    __test__ = False

    name: str
    verdict: RunVerdict
    error: Optional[str] = None
    error_type: Optional[str] = None
    duration_ms: float = 0.0
    details: dict = Field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return self.verdict == RunVerdict.PASSED
