"""In-process loopback bus serving mock QRNG replies.

Implements the full facade contract without a message bus, for offline runs
(``--bus loopback``) and for exercising the dispatcher deterministically.
Octets are drawn from a normal distribution with configurable mean, clamped
to ``[0, 255]``, optionally seeded.

Delivery is simulated in two stages. A submitted call is *in transit* until
:meth:`LoopbackBus.block_until_event` lands every in-transit call; landed
calls are handed to their callbacks by the next :meth:`LoopbackBus.pump_ready`
in ``fifo`` or ``lifo`` order.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import numpy as np

from qrng_client.bus.base import Reply, RpcFacade
from qrng_client.bus.codec import encode_args
from qrng_client.bus.registry import register_bus
from qrng_client.exceptions import (
    BusConnectionError,
    CodecError,
    SubmissionError,
    TransportError,
)

if TYPE_CHECKING:
    from qrng_client.bus.base import CompletionCallback
    from qrng_client.bus.codec import MethodSpec
    from qrng_client.config import QrngClientConfig

logger = logging.getLogger("qrng_client")


@dataclass(slots=True)
class _PendingCall:
    serial: int
    context: Any
    on_complete: CompletionCallback
    reply: Reply


@register_bus("loopback")
class LoopbackBus(RpcFacade):
    """Mock QRNG service behind the facade contract.

    Args:
        config: Run configuration providing ``loopback_mean``,
            ``loopback_seed`` and ``loopback_delivery``.
    """

    _MOCK_BYTE_STD: float = 40.0
    """Fixed standard deviation for test consistency."""

    def __init__(self, config: QrngClientConfig) -> None:
        self._mean = config.loopback_mean
        self._rng = np.random.default_rng(config.loopback_seed)
        self._lifo = config.loopback_delivery == "lifo"
        self._serials = itertools.count(1)
        self._in_transit: list[_PendingCall] = []
        self._landed: list[_PendingCall] = []
        self._open = False
        self._closed = False
        self._peak_pending = 0
        self._submitted = 0

    @property
    def name(self) -> str:
        """Return ``'loopback'``."""
        return "loopback"

    @property
    def pending_count(self) -> int:
        return len(self._in_transit) + len(self._landed)

    @property
    def peak_pending(self) -> int:
        """Largest number of calls that were pending at the same time."""
        return self._peak_pending

    @property
    def submitted(self) -> int:
        """Number of asynchronous calls accepted so far."""
        return self._submitted

    def open(self) -> None:
        if self._open or self._closed:
            raise BusConnectionError("loopback bus can only be opened once")
        self._open = True

    def serve(self, method: MethodSpec, args: tuple[int, ...]) -> Reply:
        """Produce the service's reply to one call.

        Values are drawn from ``N(mean, _MOCK_BYTE_STD)`` and clamped to
        ``[0, 255]``. Subclasses override this to script faults.

        Args:
            method: The method that was called.
            args: Its validated arguments; ``args[0]`` is the octet count.

        Returns:
            A successful reply shaped by ``method.out_signature``.
        """
        samples = self._rng.normal(loc=self._mean, scale=self._MOCK_BYTE_STD, size=args[0])
        octets = bytes(np.clip(samples, 0, 255).astype(np.uint8))
        return Reply(signature=method.out_signature, body=(0, octets))

    def call_sync(
        self,
        method: MethodSpec,
        args: tuple[int, ...],
        timeout: float | None = None,
    ) -> Reply:
        if not self._open or self._closed:
            raise TransportError("loopback bus is not open")
        try:
            reply = self.serve(method, encode_args(method, *args))
        except CodecError as exc:
            raise TransportError(str(exc)) from exc
        if reply.is_error:
            raise TransportError(
                f"Failed to issue {method.name} call: {reply.error_name}: {reply.error_message}"
            )
        return reply

    def call_async(
        self,
        method: MethodSpec,
        args: tuple[int, ...],
        timeout: float | None,
        context: Any,
        on_complete: CompletionCallback,
    ) -> int:
        if not self._open or self._closed:
            raise SubmissionError("loopback bus is not open")
        try:
            reply = self.serve(method, encode_args(method, *args))
        except CodecError as exc:
            raise SubmissionError(str(exc)) from exc
        serial = next(self._serials)
        self._in_transit.append(_PendingCall(serial, context, on_complete, reply))
        self._submitted += 1
        self._peak_pending = max(self._peak_pending, self.pending_count)
        return serial

    def pump_ready(self) -> int:
        landed, self._landed = self._landed, []
        if self._lifo:
            landed.reverse()
        for call in landed:
            call.on_complete(call.context, call.reply)
        return len(landed)

    def block_until_event(self, timeout: float | None = None) -> None:
        self._landed.extend(self._in_transit)
        self._in_transit.clear()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        dropped = self.pending_count
        self._in_transit.clear()
        self._landed.clear()
        if dropped:
            logger.debug("Dropped %d undelivered loopback call(s) on close", dropped)

    def health_check(self) -> dict[str, Any]:
        """Return delivery counters for the loopback service."""
        return {
            "bus": self.name,
            "healthy": self._open and not self._closed,
            "pending": self.pending_count,
            "peak_pending": self._peak_pending,
            "submitted": self._submitted,
        }
