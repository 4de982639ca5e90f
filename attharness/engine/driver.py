"""
Test Driver - runs one test case end to end.

create_context() builds a fresh loop, transport pair, collaborator and
scripted peer. execute_context() runs the loop until the run's completion
future resolves, then always calls destroy_context(). Exceptions raised
by any loop callback fail the run through the loop's exception handler.

A run passes when:
- the script cursor sits on the sentinel
- no deferred send is pending
- every completion handler handed out reported success
"""
from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, Optional

import structlog

from attharness.att.bearer import AttBearer
from attharness.att.client import GattClient
from attharness.att.helpers import exchange_mtu
from attharness.config import settings
from attharness.engine.script import PduScript
from attharness.engine.scripted_peer import ScriptedPeer
from attharness.engine.transport import DuplexPair, create_pair
from attharness.exceptions import (
    CollaboratorFailure,
    ConfigurationError,
    InvariantViolation,
    RunTimeoutError,
)
from attharness.hexdump import DebugSink
from attharness.models import ContextRole, RunVerdict, TestCase

logger = structlog.get_logger()

# (success, att_ecode, result=None)
CompletionHandler = Callable[..., None]


class RunContext:
    """Mutable per-run state; owns the loop, the harness endpoint and all registrations."""

    def __init__(
        self,
        test_case: TestCase,
        loop: asyncio.AbstractEventLoop,
        pair: DuplexPair,
        max_pdu_size: int,
        debug_sink: Optional[DebugSink] = None,
    ):
        self.test_case = test_case
        self.loop = loop
        self.pair = pair
        self.script = PduScript(test_case.vectors)
        self.bearer: Optional[AttBearer] = None
        self.client: Optional[GattClient] = None
        self.finished: asyncio.Future = loop.create_future()
        self.destroyed = False

        self.peer = ScriptedPeer(
            loop,
            pair.harness,
            self.script,
            max_pdu_size,
            on_exhausted=self.maybe_finish,
            debug_sink=debug_sink,
        )

        self._outstanding = 0
        self._timeout_handle: Optional[asyncio.TimerHandle] = None
        loop.set_exception_handler(self._on_loop_exception)

    @property
    def cursor(self) -> int:
        return self.peer.cursor

    @property
    def outstanding_completions(self) -> int:
        return self._outstanding

    def completion_handler(self) -> CompletionHandler:
        """
        Handler for a collaborator procedure the run must see succeed.

        Failure fails the run at once. Success lets the run finish as soon
        as the script is also exhausted.
        """
        self._outstanding += 1

        def on_complete(success: bool, att_ecode: int, result: Any = None) -> None:
            self._outstanding -= 1
            if not success:
                raise CollaboratorFailure(
                    f"Collaborator reported failure (ATT error 0x{att_ecode:02x})",
                    att_ecode=att_ecode,
                )
            logger.debug("collaborator_completed", test=self.test_case.name)
            self.maybe_finish()

        return on_complete

    def maybe_finish(self) -> None:
        if self.finished.done():
            return
        if not self.peer.script_exhausted or self.peer.send_pending or self._outstanding:
            return
        self.peer.close()
        self.finished.set_result(RunVerdict.PASSED)

    def fail(self, exc: BaseException) -> None:
        self.peer.fail()
        if not self.finished.done():
            self.finished.set_exception(exc)
        else:
            logger.warning(
                "run_failure_after_finish",
                test=self.test_case.name,
                error=str(exc),
            )

    def arm_timeout(self, timeout_sec: float) -> None:
        self._timeout_handle = self.loop.call_later(timeout_sec, self._on_timeout, timeout_sec)

    def cancel_timeout(self) -> None:
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
            self._timeout_handle = None

    def _on_timeout(self, timeout_sec: float) -> None:
        self._timeout_handle = None
        self.fail(RunTimeoutError(
            f"Run did not finish within {timeout_sec}s",
            details={"cursor": self.cursor, "length": len(self.script)},
        ))

    def _on_loop_exception(self, loop: asyncio.AbstractEventLoop, context: Dict[str, Any]) -> None:
        exc = context.get("exception")
        if exc is None:
            exc = InvariantViolation(context.get("message", "loop error"))
        logger.error(
            "run_callback_failed",
            test=self.test_case.name,
            cursor=self.cursor,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        self.fail(exc)


def create_context(
    mtu: int,
    test_case: TestCase,
    debug_sink: Optional[DebugSink] = None,
) -> RunContext:
    """
    Set up one run: loop, transport pair, collaborator on endpoint A,
    scripted peer watching endpoint B.

    Raises:
        TransportSetupError: the transport pair could not be created
        ConfigurationError: unknown role, or an invalid vector inside the script
    """
    loop = asyncio.new_event_loop()
    try:
        pair = create_pair()
    except Exception:
        loop.close()
        raise

    try:
        context = RunContext(test_case, loop, pair, settings.max_pdu_size, debug_sink)
    except Exception:
        pair.close()
        loop.close()
        raise

    try:
        bearer = AttBearer(pair.detach_client(), loop, max_pdu_size=mtu)
        context.bearer = bearer

        if test_case.role == ContextRole.RAW_TRANSPORT:
            exchange_mtu(bearer, mtu)
        elif test_case.role == ContextRole.CLIENT_UNDER_TEST:
            context.client = GattClient(bearer, mtu)
            if debug_sink:
                context.client.set_debug(debug_sink, "gatt:")
        elif test_case.role != ContextRole.SERVER_UNDER_TEST:
            raise ConfigurationError(f"Unknown role: {test_case.role}")

        context.peer.attach()
    except Exception:
        destroy_context(context)
        raise

    logger.debug("run_context_created", test=test_case.name, role=test_case.role.value, mtu=mtu)
    return context


def destroy_context(context: RunContext) -> None:
    """Release every registration and resource of a run exactly once."""
    if context.destroyed:
        return
    context.destroyed = True

    context.peer.close()
    context.cancel_timeout()

    if context.client is not None:
        context.client.close()
        context.client = None

    # The client took its own bearer reference; ours is released here
    if context.bearer is not None:
        context.bearer.unref()
        context.bearer = None

    context.pair.close()

    if not context.finished.done():
        context.finished.cancel()
    context.loop.close()
    logger.debug("run_context_destroyed", test=context.test_case.name, cursor=context.cursor)


def execute_context(
    context: RunContext,
    trigger: Optional[Callable[[RunContext], None]] = None,
    timeout_sec: Optional[float] = None,
) -> RunVerdict:
    """
    Run the loop until the run passes or fails, then tear down.

    Args:
        context: Context from create_context()
        trigger: Starts the protocol action under test before the loop runs
        timeout_sec: Failure deadline (default settings.run_timeout_sec)

    Returns:
        RunVerdict.PASSED

    Raises:
        HarnessError: the first failure the run hit
    """
    try:
        if trigger is not None:
            trigger(context)
        context.arm_timeout(timeout_sec if timeout_sec is not None else settings.run_timeout_sec)

        verdict = context.loop.run_until_complete(context.finished)

        if context.cursor != len(context.script):
            raise InvariantViolation(
                "Run finished with the cursor off the sentinel",
                details={"cursor": context.cursor, "length": len(context.script)},
            )
        logger.info("run_passed", test=context.test_case.name, vectors=len(context.script))
        return verdict
    finally:
        destroy_context(context)
