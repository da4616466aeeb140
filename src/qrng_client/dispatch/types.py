"""Data types for the dispatch subsystem."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from qrng_client.config import QrngClientConfig


class DispatchState(Enum):
    """Lifecycle of one run."""

    FILLING = "filling"
    DRAINING = "draining"
    DONE = "done"
    ABORTED = "aborted"


class ReportingMode(Enum):
    """What a successful request reports."""

    HEX = "hex"
    SUMMARY = "summary"
    SILENT = "silent"


@dataclass(frozen=True, slots=True)
class DispatchPlan:
    """Target parameters of one run, read-only while it executes.

    Attributes:
        target_total: Number of calls to make.
        octets_per_call: Octets requested by each call.
        concurrency_limit: Maximum number of calls in flight.
        timeout_ms: Advisory per-call timeout passed to the service (0 = none).
        wait_timeout_s: Watchdog for the blocking wait, ``None`` = forever.
        reporting: Reporting mode given to every request of the run.
    """

    target_total: int
    octets_per_call: int
    concurrency_limit: int
    timeout_ms: int = 0
    wait_timeout_s: float | None = None
    reporting: ReportingMode = ReportingMode.SUMMARY

    @classmethod
    def from_config(cls, config: QrngClientConfig) -> DispatchPlan:
        if config.count == 1:
            reporting = ReportingMode.HEX
        elif config.logging_enabled:
            reporting = ReportingMode.SUMMARY
        else:
            reporting = ReportingMode.SILENT
        return cls(
            target_total=config.count,
            octets_per_call=config.octets,
            concurrency_limit=config.concurrency,
            timeout_ms=config.timeout_ms,
            wait_timeout_s=config.wait_timeout_s or None,
            reporting=reporting,
        )

    @property
    def call_timeout_s(self) -> float | None:
        """The advisory timeout in seconds, ``None`` when unset."""
        return self.timeout_ms / 1000.0 if self.timeout_ms else None


@dataclass(frozen=True, slots=True)
class RequestContext:
    """State of one outstanding call, owned by the bus until it resolves.

    Attributes:
        request_id: 1-based sequence number, unique per run.
        expected_length: Octets demanded; the payload must match exactly.
        reporting: What to report when the call succeeds.
        submitted_at: ``time.perf_counter()`` at submission.
    """

    request_id: int
    expected_length: int
    reporting: ReportingMode
    submitted_at: float = field(default_factory=time.perf_counter)


@dataclass(slots=True)
class Aggregator:
    """Per-run counters shared by the dispatcher and the completion handler.

    ``succeeded + failed <= sent`` at all times; the difference is the number
    of calls in flight.
    """

    sent: int = 0
    succeeded: int = 0
    failed: int = 0
    peak_in_flight: int = 0

    @property
    def resolved(self) -> int:
        return self.succeeded + self.failed

    @property
    def in_flight(self) -> int:
        return self.sent - self.resolved

    def record_sent(self) -> None:
        self.sent += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)

    def record_success(self) -> None:
        self.succeeded += 1

    def record_failure(self) -> None:
        self.failed += 1


@dataclass(frozen=True, slots=True)
class RunResult:
    """Final verdict of one run.

    Attributes:
        state: ``DONE`` or ``ABORTED``.
        sent: Calls submitted.
        succeeded: Calls that returned a validated payload.
        failed: Calls that failed for any reason.
        peak_in_flight: Largest number of simultaneously outstanding calls.
        elapsed_ms: Wall-clock duration of the run.
    """

    state: DispatchState
    sent: int
    succeeded: int
    failed: int
    peak_in_flight: int
    elapsed_ms: float

    @classmethod
    def from_aggregator(
        cls,
        state: DispatchState,
        aggregator: Aggregator,
        elapsed_ms: float,
    ) -> RunResult:
        return cls(
            state=state,
            sent=aggregator.sent,
            succeeded=aggregator.succeeded,
            failed=aggregator.failed,
            peak_in_flight=aggregator.peak_in_flight,
            elapsed_ms=elapsed_ms,
        )

    @property
    def ok(self) -> bool:
        """Success only if the run finished and no call failed."""
        return self.state is DispatchState.DONE and self.failed == 0
