"""Abstract base class for all bus backends.

Every backend, whether a real D-Bus session or the in-process loopback
service, implements this facade. The dispatcher only ever talks to a bus
through it: open the connection, issue blocking or asynchronous calls, pump
ready completions and block until the next event.

Asynchronous calls carry an opaque *context* chosen by the caller. The
backend keeps it in its pending-call table and hands it back, together with
the :class:`Reply`, to the completion callback exactly once.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

    from qrng_client.bus.codec import MethodSpec

    CompletionCallback = Callable[[Any, "Reply"], None]


@dataclass(frozen=True, slots=True)
class Reply:
    """Outcome of one remote call as delivered by the bus.

    Attributes:
        signature: D-Bus signature of *body* (empty for error replies).
        body: Deserialized reply arguments.
        error_name: Bus error name when the call failed at the transport
            level, ``None`` otherwise.
        error_message: Human-readable error text, if any.
    """

    signature: str
    body: tuple[Any, ...]
    error_name: str | None = None
    error_message: str = ""

    @classmethod
    def failure(cls, error_name: str, error_message: str = "") -> Reply:
        """Build an error reply carrying no body."""
        return cls(signature="", body=(), error_name=error_name, error_message=error_message)

    @property
    def is_error(self) -> bool:
        """Whether the call failed before producing a method return."""
        return self.error_name is not None


class RpcFacade(ABC):
    """Abstract base for all bus backends.

    A facade owns exactly one connection for its lifetime and is driven from a
    single thread of control. It is also a context manager: entering opens the
    connection, leaving closes it.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend identifier (e.g., ``'session'``, ``'loopback'``)."""

    @property
    @abstractmethod
    def pending_count(self) -> int:
        """Number of accepted asynchronous calls not yet delivered."""

    @abstractmethod
    def open(self) -> None:
        """Establish the bus connection.

        Raises:
            BusConnectionError: If the bus cannot be reached.
        """

    @abstractmethod
    def call_sync(
        self,
        method: MethodSpec,
        args: tuple[int, ...],
        timeout: float | None = None,
    ) -> Reply:
        """Issue a call and block until its reply arrives.

        Args:
            method: Method to invoke.
            args: Arguments matching ``method.in_signature``.
            timeout: Client-side reply timeout in seconds, ``None`` to wait
                indefinitely.

        Returns:
            The method return.

        Raises:
            TransportError: On an error envelope, timeout or lost connection.
        """

    @abstractmethod
    def call_async(
        self,
        method: MethodSpec,
        args: tuple[int, ...],
        timeout: float | None,
        context: Any,
        on_complete: CompletionCallback,
    ) -> int:
        """Enqueue a call without blocking.

        ``on_complete(context, reply)`` is invoked exactly once, from inside
        :meth:`pump_ready`, when the outcome is known.

        Returns:
            An acceptance token (serial number) for diagnostics.

        Raises:
            SubmissionError: If the call could not be enqueued.
        """

    @abstractmethod
    def pump_ready(self) -> int:
        """Deliver all completions that are already available, without blocking.

        Returns:
            Number of completion callbacks invoked (0 if nothing was ready).
        """

    @abstractmethod
    def block_until_event(self, timeout: float | None = None) -> None:
        """Suspend until at least one pending call has an outcome.

        Args:
            timeout: Seconds to wait, ``None`` to wait indefinitely.

        Raises:
            WaitTimeoutError: If *timeout* elapsed with no event.
        """

    @abstractmethod
    def close(self) -> None:
        """Release the connection and drop undelivered calls."""

    def health_check(self) -> dict[str, Any]:
        """Return a status dictionary for this backend.

        Returns:
            Dictionary with at least ``'bus'`` and ``'pending'`` keys.
        """
        return {"bus": self.name, "pending": self.pending_count}

    def __enter__(self) -> RpcFacade:
        self.open()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
