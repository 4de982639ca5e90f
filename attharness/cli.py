"""
Command line entry point: run the registered conformance tests.

Output is TAP ("ok N name" / "not ok N name"); the exit status is 1 when
any test failed.
"""
import argparse
import logging
import sys
from typing import List, Optional

import structlog

from attharness.config import settings
from attharness.logging import setup_logging
from attharness.suites.gatt_client import build_registry

logger = structlog.get_logger()


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    parser = argparse.ArgumentParser(description="ATT/GATT client conformance harness")
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        default=settings.verbose,
        help="Hexdump every PDU exchanged with the collaborator",
    )
    parser.add_argument(
        "-p", "--path",
        action="append",
        default=[],
        help="Only run tests whose name starts with PATH (repeatable)",
    )
    parser.add_argument(
        "-l", "--list",
        action="store_true",
        help="List registered test names and exit",
    )

    args = parser.parse_args(argv)

    setup_logging("harness", level=logging.DEBUG if args.verbose else None)
    registry = build_registry()

    if args.list:
        for name in registry.names():
            print(name)
        return 0

    tests = registry.select(args.path)
    print(f"1..{len(tests)}")

    failed = 0
    debug_sink = print if args.verbose else None
    for index, test in enumerate(tests, start=1):
        report = registry.run_one(test, debug_sink)
        if report.passed:
            print(f"ok {index} {report.name}")
        else:
            failed += 1
            print(f"not ok {index} {report.name} # {report.error_type}: {report.error}")

    logger.info("run_summary", total=len(tests), failed=failed)
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
