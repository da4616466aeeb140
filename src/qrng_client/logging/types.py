"""Data types for the diagnostic logging subsystem."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class RequestRecord:
    """Immutable record of how one request resolved.

    Attributes:
        request_id: 1-based sequence number of the request.
        outcome: ``'ok'``, ``'transport_error'``, ``'decode_error'``,
            ``'status_error'`` or ``'length_mismatch'``.
        expected_length: Octets requested.
        received_length: Octets received (0 when no payload was decoded).
        status: Service status code, ``None`` when it was not decoded.
        latency_ms: Time from submission to completion (milliseconds).
        sample_mean: Mean of the payload octets (expected ~127.5 unbiased),
            ``None`` when there is no payload.
        detail: Error description for failed requests.
    """

    request_id: int
    outcome: str
    expected_length: int
    received_length: int
    status: int | None
    latency_ms: float
    sample_mean: float | None = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome == "ok"
