"""Run logger for per-request outcomes and the final verdict.

Uses the standard ``logging`` module with the ``"qrng_client"`` logger. The
only direct writes go to the output stream, for the hex dump of single-call
runs. Supports three verbosity levels and an in-memory diagnostic mode for
post-hoc analysis.
"""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import asdict
from typing import TYPE_CHECKING, Any, TextIO

from qrng_client.dispatch.types import ReportingMode

if TYPE_CHECKING:
    from qrng_client.config import QrngClientConfig
    from qrng_client.dispatch.types import RunResult
    from qrng_client.logging.types import RequestRecord

logger = logging.getLogger("qrng_client")


def format_octets(payload: bytes) -> str:
    """Render *payload* as ``Generated Octets (N bytes): XX XX ...``."""
    return f"Generated Octets ({len(payload)} bytes): {payload.hex(' ').upper()}"


class RunLogger:
    """Per-request diagnostic logger.

    Log levels:
        ``"none"``: No per-request output. Failures are still logged as
        warnings and records are still stored if ``diagnostic_mode=True``.

        ``"summary"``: One line per successful request with its id, octet
        count and latency.

        ``"full"``: Full JSON dump of every record.

    Args:
        config: Configuration providing ``log_level`` and ``diagnostic_mode``.
        stream: Where hex dumps are written; defaults to ``sys.stdout`` at
            write time.
    """

    def __init__(self, config: QrngClientConfig, stream: TextIO | None = None) -> None:
        self._log_level = config.log_level
        self._diagnostic_mode = config.diagnostic_mode
        self._stream = stream
        self._records: list[RequestRecord] = []

    def log_request(self, record: RequestRecord, reporting: ReportingMode) -> None:
        """Log how one request resolved.

        Args:
            record: Immutable record of the request's outcome.
            reporting: The request's reporting mode; summary lines are only
                produced for ``ReportingMode.SUMMARY``.
        """
        if self._diagnostic_mode:
            self._records.append(record)

        if not record.ok:
            logger.warning(
                "request=%d failed (%s): %s",
                record.request_id,
                record.outcome,
                record.detail,
            )
            return

        if reporting is not ReportingMode.SUMMARY or self._log_level == "none":
            return

        if self._log_level == "full":
            logger.info("request_record: %s", json.dumps(asdict(record)))
        else:
            logger.info(
                "request=%d received %d octets in %.2fms",
                record.request_id,
                record.received_length,
                record.latency_ms,
            )

    def emit_octets(self, payload: bytes) -> None:
        """Write the hex dump of *payload* to the output stream."""
        stream = self._stream if self._stream is not None else sys.stdout
        stream.write(format_octets(payload) + "\n")
        stream.flush()

    def log_run(self, result: RunResult) -> None:
        """Log the one-line verdict of a finished or aborted run."""
        level = logging.INFO if result.ok else logging.ERROR
        logger.log(
            level,
            "run %s: sent=%d succeeded=%d failed=%d peak_in_flight=%d elapsed=%.2fms",
            result.state.value,
            result.sent,
            result.succeeded,
            result.failed,
            result.peak_in_flight,
            result.elapsed_ms,
        )

    def get_diagnostic_data(self) -> list[RequestRecord]:
        """Return all stored records (requires ``diagnostic_mode=True``)."""
        return list(self._records)

    def get_summary_stats(self) -> dict[str, Any]:
        """Compute summary statistics over all stored records.

        Returns:
            Dictionary with aggregate stats, or empty dict if no records.
        """
        if not self._records:
            return {}

        n = len(self._records)
        latencies = [r.latency_ms for r in self._records]
        means = [r.sample_mean for r in self._records if r.sample_mean is not None]
        failures = sum(1 for r in self._records if not r.ok)
        return {
            "total_requests": n,
            "failed": failures,
            "failure_rate": failures / n,
            "octets_received": sum(r.received_length for r in self._records if r.ok),
            "mean_latency_ms": sum(latencies) / n,
            "max_latency_ms": max(latencies),
            "mean_sample_mean": sum(means) / len(means) if means else None,
        }
