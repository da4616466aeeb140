"""Request dispatchers: the bounded-concurrency reactor loop and the
strictly sequential path.

Both drive a single, already opened bus from one thread of control and share
the same completion handler, so a reply is judged identically on either path.
They differ in how failures propagate:

- :class:`BoundedDispatcher` keeps up to ``concurrency_limit`` asynchronous
  calls in flight. A failed request only increments ``failed``; the others
  carry on. Only a submission failure or an expired wait watchdog aborts.
- :class:`SequentialDispatcher` issues one blocking call at a time and
  aborts the run at the first failed request.

Either way the run succeeds only if it reaches ``DONE`` with ``failed == 0``.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from qrng_client.bus.base import Reply
from qrng_client.bus.codec import generate_octets, generate_octets_timeout
from qrng_client.dispatch.handler import CompletionHandler
from qrng_client.dispatch.types import (
    Aggregator,
    DispatchPlan,
    DispatchState,
    RequestContext,
    RunResult,
)
from qrng_client.exceptions import QrngClientError, TransportError

if TYPE_CHECKING:
    from qrng_client.bus.base import RpcFacade
    from qrng_client.bus.codec import MethodSpec
    from qrng_client.config import QrngClientConfig
    from qrng_client.logging.logger import RunLogger

logger = logging.getLogger("qrng_client")


class _Dispatcher:
    """Shared state of both dispatch paths.

    Args:
        bus: An opened bus, used exclusively by this dispatcher for the run.
        plan: Target parameters of the run.
        method: The remote method every request invokes.
        run_logger: Destination for per-request records.
    """

    def __init__(
        self,
        bus: RpcFacade,
        plan: DispatchPlan,
        method: MethodSpec,
        run_logger: RunLogger,
    ) -> None:
        self._bus = bus
        self._plan = plan
        self._method = method
        self._run_logger = run_logger
        self._state = DispatchState.FILLING

    @property
    def state(self) -> DispatchState:
        return self._state

    def _new_context(self, request_id: int) -> RequestContext:
        return RequestContext(
            request_id=request_id,
            expected_length=self._plan.octets_per_call,
            reporting=self._plan.reporting,
        )

    def run(self) -> RunResult:
        raise NotImplementedError


class BoundedDispatcher(_Dispatcher):
    """Reactor loop keeping at most ``concurrency_limit`` calls in flight.

    Each iteration tops up in-flight calls, delivers whatever completions are
    ready and only blocks when nothing was ready and calls are outstanding.
    Completions may arrive in any order; the cap holds by construction since
    a call is only submitted while ``in_flight < concurrency_limit``.
    """

    def run(self) -> RunResult:
        """Dispatch ``target_total`` calls and wait for all of them.

        Returns:
            The run's verdict, in state ``DONE``.

        Raises:
            SubmissionError: A call could not be enqueued. The bus is closed
                before the error propagates.
            WaitTimeoutError: The wait watchdog expired (only when configured).
        """
        plan = self._plan
        aggregator = Aggregator()
        handler = CompletionHandler(aggregator, self._method, self._run_logger)
        started = time.perf_counter()
        logger.debug(
            "Dispatching %d call(s) of %d octets, at most %d in flight",
            plan.target_total,
            plan.octets_per_call,
            plan.concurrency_limit,
        )

        try:
            while True:
                self._state = DispatchState.FILLING
                while (
                    aggregator.sent < plan.target_total
                    and aggregator.in_flight < plan.concurrency_limit
                ):
                    context = self._new_context(aggregator.sent + 1)
                    self._bus.call_async(
                        self._method,
                        (plan.octets_per_call, plan.timeout_ms),
                        None,
                        context,
                        handler,
                    )
                    aggregator.record_sent()

                self._state = DispatchState.DRAINING
                if self._bus.pump_ready() > 0:
                    continue
                if aggregator.in_flight > 0:
                    self._bus.block_until_event(plan.wait_timeout_s)
                    continue
                if aggregator.sent == plan.target_total:
                    self._state = DispatchState.DONE
                    break
        except QrngClientError as exc:
            self._state = DispatchState.ABORTED
            logger.error(
                "Dispatch aborted after %d of %d call(s) (%d in flight): %s",
                aggregator.sent,
                plan.target_total,
                aggregator.in_flight,
                exc,
            )
            self._bus.close()
            raise

        return RunResult.from_aggregator(
            self._state, aggregator, (time.perf_counter() - started) * 1000.0
        )


class SequentialDispatcher(_Dispatcher):
    """Issues calls strictly one after another with blocking calls.

    There is no per-call isolation: the first request that fails, at the
    transport level or in validation, stops the run.
    """

    def run(self) -> RunResult:
        """Issue ``target_total`` blocking calls, stopping at the first failure.

        Returns:
            The run's verdict: ``DONE`` if every call was attempted,
            ``ABORTED`` if a failure cut the run short.
        """
        plan = self._plan
        aggregator = Aggregator()
        handler = CompletionHandler(aggregator, self._method, self._run_logger)
        started = time.perf_counter()

        for request_id in range(1, plan.target_total + 1):
            context = self._new_context(request_id)
            aggregator.record_sent()
            try:
                reply = self._bus.call_sync(
                    self._method, (plan.octets_per_call,), plan.call_timeout_s
                )
            except TransportError as exc:
                # Route the failure through the handler so it is counted once.
                handler(context, Reply.failure("TransportError", str(exc)))
            else:
                handler(context, reply)
            if aggregator.failed:
                self._state = DispatchState.ABORTED
                logger.error(
                    "Sequential run aborted at request %d of %d",
                    request_id,
                    plan.target_total,
                )
                break
        else:
            self._state = DispatchState.DONE

        return RunResult.from_aggregator(
            self._state, aggregator, (time.perf_counter() - started) * 1000.0
        )


def build_dispatcher(
    bus: RpcFacade,
    config: QrngClientConfig,
    run_logger: RunLogger,
) -> _Dispatcher:
    """Pick the dispatch path for *config*.

    The sequential path calls ``config.method`` (``u32`` status); the
    bounded path calls ``config.timeout_method`` (``i32`` status).
    """
    plan = DispatchPlan.from_config(config)
    if config.use_sequential_path:
        return SequentialDispatcher(bus, plan, generate_octets(config.method), run_logger)
    return BoundedDispatcher(bus, plan, generate_octets_timeout(config.timeout_method), run_logger)
