"""
Test registration and reporting.

Each define_test() call builds its own immutable TestCase and binds it to
the test function; nothing is shared between registered tests.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

import structlog

from attharness.att.uuid import BtUuid
from attharness.exceptions import ConfigurationError, HarnessError
from attharness.hexdump import DebugSink
from attharness.models import ContextRole, RunVerdict, TestCase, TestReport, TestVector

logger = structlog.get_logger()

TestFunction = Callable[[TestCase, Optional[DebugSink]], RunVerdict]


@dataclass
class RegisteredTest:
    """A test case bound to the function that runs it."""

    name: str
    function: TestFunction
    test_case: TestCase

    def __call__(self, debug_sink: Optional[DebugSink] = None) -> RunVerdict:
        return self.function(self.test_case, debug_sink)


class TestRegistry:
    """
    Ordered collection of registered conformance tests.

    Example:
        registry = TestRegistry()
        registry.define_test(
            "/TP/GAC/CL/BV-01-C", run_client, ContextRole.CLIENT_UNDER_TEST, None,
            raw_pdu(0x02, 0x00, 0x02),
        )
        reports = registry.run()
    """

    __test__ = False

    def __init__(self):
        self._tests: Dict[str, RegisteredTest] = {}

    def __len__(self) -> int:
        return len(self._tests)

    def __contains__(self, name: str) -> bool:
        return name in self._tests

    def __getitem__(self, name: str) -> RegisteredTest:
        return self._tests[name]

    def define_test(
        self,
        name: str,
        function: TestFunction,
        role: ContextRole,
        uuid: Optional[BtUuid],
        *vectors: TestVector,
    ) -> RegisteredTest:
        if name in self._tests:
            raise ConfigurationError(f"Test already registered: {name}")
        if not vectors:
            raise ConfigurationError(f"Test {name} has an empty script")
        for index, vector in enumerate(vectors):
            # Zero-length SEQPACKET reads mean hangup, so empty PDUs cannot be replayed
            if not vector.valid or vector.size == 0:
                raise ConfigurationError(
                    f"Test {name} has an unusable vector at position {index}",
                    details={"position": index, "valid": vector.valid, "size": vector.size},
                )

        test_case = TestCase(name=name, vectors=vectors, role=role, filter_uuid=uuid)
        test = RegisteredTest(name=name, function=function, test_case=test_case)
        self._tests[name] = test
        logger.debug("test_registered", test=name, role=role.value, vectors=len(vectors))
        return test

    def names(self) -> List[str]:
        return list(self._tests)

    def select(self, paths: Optional[Iterable[str]] = None) -> List[RegisteredTest]:
        """Tests whose name starts with any of paths (all tests when paths is empty)."""
        paths = list(paths or [])
        if not paths:
            return list(self._tests.values())
        return [
            test for test in self._tests.values()
            if any(test.name.startswith(path) for path in paths)
        ]

    def run_one(
        self,
        test: RegisteredTest,
        debug_sink: Optional[DebugSink] = None,
    ) -> TestReport:
        start = time.monotonic()
        try:
            verdict = test(debug_sink)
        except HarnessError as e:
            return TestReport(
                name=test.name,
                verdict=RunVerdict.FAILED,
                error=e.message,
                error_type=type(e).__name__,
                duration_ms=(time.monotonic() - start) * 1000,
                details=e.details,
            )
        except Exception as e:
            logger.error("test_crashed", test=test.name, error=str(e), exc_info=True)
            return TestReport(
                name=test.name,
                verdict=RunVerdict.FAILED,
                error=str(e),
                error_type=type(e).__name__,
                duration_ms=(time.monotonic() - start) * 1000,
            )

        return TestReport(
            name=test.name,
            verdict=verdict,
            duration_ms=(time.monotonic() - start) * 1000,
        )

    def run(
        self,
        paths: Optional[Iterable[str]] = None,
        debug_sink: Optional[DebugSink] = None,
    ) -> List[TestReport]:
        reports = []
        for test in self.select(paths):
            report = self.run_one(test, debug_sink)
            logger.info(
                "test_finished",
                test=report.name,
                verdict=report.verdict.value,
                duration_ms=round(report.duration_ms, 3),
            )
            reports.append(report)
        return reports
