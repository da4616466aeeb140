"""Completion handler: turns one delivered reply into counters and output."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

import numpy as np

from qrng_client.bus.codec import validate_reply
from qrng_client.dispatch.types import ReportingMode
from qrng_client.exceptions import (
    LengthMismatchError,
    ReplyDecodeError,
    ReplyError,
    ServiceStatusError,
    TransportError,
)
from qrng_client.logging.types import RequestRecord

if TYPE_CHECKING:
    from qrng_client.bus.base import Reply
    from qrng_client.bus.codec import MethodSpec
    from qrng_client.dispatch.types import Aggregator, RequestContext
    from qrng_client.logging.logger import RunLogger

_OUTCOMES: dict[type[Exception], str] = {
    TransportError: "transport_error",
    ReplyDecodeError: "decode_error",
    ServiceStatusError: "status_error",
    LengthMismatchError: "length_mismatch",
}


def _sample_mean(payload: bytes) -> float | None:
    return float(np.frombuffer(payload, dtype=np.uint8).mean()) if payload else None


class CompletionHandler:
    """Callback invoked by the bus once per resolved call.

    Validates the reply against the method that produced it, stopping at the
    first failure, and records the outcome in the run's aggregator. Failures
    stay local to the request: nothing here raises.

    Args:
        aggregator: Counters of the current run.
        method: Spec of the method every request of this run invokes.
        run_logger: Destination for per-request records and hex dumps.
    """

    def __init__(self, aggregator: Aggregator, method: MethodSpec, run_logger: RunLogger) -> None:
        self._aggregator = aggregator
        self._method = method
        self._run_logger = run_logger

    def __call__(self, context: RequestContext, reply: Reply) -> None:
        latency_ms = (time.perf_counter() - context.submitted_at) * 1000.0
        try:
            payload = validate_reply(reply, self._method, context.expected_length)
        except (TransportError, ReplyError) as exc:
            self._aggregator.record_failure()
            self._run_logger.log_request(
                RequestRecord(
                    request_id=context.request_id,
                    outcome=_OUTCOMES.get(type(exc), "decode_error"),
                    expected_length=context.expected_length,
                    received_length=exc.actual if isinstance(exc, LengthMismatchError) else 0,
                    status=exc.status if isinstance(exc, ServiceStatusError) else None,
                    latency_ms=latency_ms,
                    detail=str(exc),
                ),
                context.reporting,
            )
            return

        self._aggregator.record_success()
        if context.reporting is ReportingMode.HEX:
            self._run_logger.emit_octets(payload)
        self._run_logger.log_request(
            RequestRecord(
                request_id=context.request_id,
                outcome="ok",
                expected_length=context.expected_length,
                received_length=len(payload),
                status=0,
                latency_ms=latency_ms,
                sample_mean=_sample_mean(payload),
            ),
            context.reporting,
        )
