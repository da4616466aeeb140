"""D-Bus backend built on jeepney's asyncio integration.

Each facade owns a private asyncio event loop that is driven from the calling
thread, never from a background thread: blocking calls run the loop until
their reply arrives, asynchronous calls become tasks on the loop, and the
dispatcher advances the loop through :meth:`JeepneyBus.pump_ready` and
:meth:`JeepneyBus.block_until_event`. The loop therefore only runs while the
dispatcher asks it to, which keeps every completion callback on the
dispatcher's thread.

The pending-call table maps each task to the caller's context and callback.
An entry is popped before its callback runs, so a reply is delivered at most
once; closing the bus cancels and drops whatever is still pending.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from contextlib import AsyncExitStack
from typing import TYPE_CHECKING, Any, ClassVar

from jeepney import DBusAddress, HeaderFields, MessageType, new_method_call
from jeepney.io.asyncio import open_dbus_router

from qrng_client.bus.base import Reply, RpcFacade
from qrng_client.bus.codec import encode_args
from qrng_client.bus.registry import register_bus
from qrng_client.exceptions import (
    BusConnectionError,
    CodecError,
    SubmissionError,
    TransportError,
    WaitTimeoutError,
)

if TYPE_CHECKING:
    from jeepney import Message

    from qrng_client.bus.base import CompletionCallback
    from qrng_client.bus.codec import MethodSpec
    from qrng_client.config import QrngClientConfig

logger = logging.getLogger("qrng_client")


def message_to_reply(message: Message) -> Reply:
    """Convert a jeepney reply message into a :class:`Reply`."""
    fields = message.header.fields
    if message.header.message_type == MessageType.error:
        text = message.body[0] if message.body and isinstance(message.body[0], str) else ""
        return Reply.failure(str(fields.get(HeaderFields.error_name, "unknown")), text)
    return Reply(
        signature=fields.get(HeaderFields.signature, ""),
        body=tuple(message.body),
    )


def _task_outcome(task: asyncio.Task[Any]) -> Reply:
    if task.cancelled():
        return Reply.failure("Cancelled", "call was cancelled")
    exc = task.exception()
    if exc is not None:
        return Reply.failure(type(exc).__name__, str(exc))
    return message_to_reply(task.result())


class JeepneyBus(RpcFacade):
    """RPC facade over one jeepney D-Bus connection.

    Args:
        config: Run configuration providing the service address.
    """

    _bus_kind: ClassVar[str] = "SESSION"

    def __init__(self, config: QrngClientConfig) -> None:
        self._address = DBusAddress(
            config.object_path,
            bus_name=config.service_name,
            interface=config.interface,
        )
        self._loop: asyncio.AbstractEventLoop | None = None
        self._stack: AsyncExitStack | None = None
        self._router: Any | None = None
        self._pending: dict[asyncio.Task[Any], tuple[Any, CompletionCallback]] = {}
        self._serials = itertools.count(1)
        self._closed = False

    @property
    def name(self) -> str:
        return self._bus_kind.lower()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def open(self) -> None:
        """Connect to the bus and start jeepney's reply router.

        Raises:
            BusConnectionError: If the bus address is missing or unreachable.
        """
        if self._loop is not None or self._closed:
            raise BusConnectionError(f"{self.name} bus connection can only be opened once")
        loop = asyncio.new_event_loop()
        stack = AsyncExitStack()
        try:
            self._router = loop.run_until_complete(
                stack.enter_async_context(open_dbus_router(bus=self._bus_kind))
            )
        except Exception as exc:
            loop.close()
            raise BusConnectionError(f"Failed to connect to {self.name} bus: {exc}") from exc
        self._loop = loop
        self._stack = stack
        logger.debug("Connected to %s bus, service %s", self.name, self._address.bus_name)

    def _require_loop(self) -> asyncio.AbstractEventLoop:
        if self._closed or self._loop is None:
            raise TransportError(f"{self.name} bus connection is not open")
        return self._loop

    def _build_message(self, method: MethodSpec, args: tuple[int, ...]) -> Message:
        body = encode_args(method, *args)
        return new_method_call(self._address, method.name, method.in_signature, body)

    async def _send(self, message: Message, timeout: float | None) -> Message:
        if timeout:
            return await asyncio.wait_for(self._router.send_and_get_reply(message), timeout)
        return await self._router.send_and_get_reply(message)

    def call_sync(
        self,
        method: MethodSpec,
        args: tuple[int, ...],
        timeout: float | None = None,
    ) -> Reply:
        loop = self._require_loop()
        try:
            message = self._build_message(method, args)
        except CodecError as exc:
            raise TransportError(str(exc)) from exc
        try:
            raw = loop.run_until_complete(self._send(message, timeout))
        except Exception as exc:
            raise TransportError(f"Failed to issue {method.name} call: {exc}") from exc
        reply = message_to_reply(raw)
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
        if self._closed or self._loop is None:
            raise SubmissionError(f"{self.name} bus connection is not open")
        try:
            message = self._build_message(method, args)
        except CodecError as exc:
            raise SubmissionError(str(exc)) from exc
        task = self._loop.create_task(self._send(message, timeout))
        self._pending[task] = (context, on_complete)
        return next(self._serials)

    def pump_ready(self) -> int:
        loop = self._require_loop()
        # One pass over the loop's ready queue; never waits on the socket.
        loop.run_until_complete(asyncio.sleep(0))
        done = [task for task in self._pending if task.done()]
        for task in done:
            context, on_complete = self._pending.pop(task)
            on_complete(context, _task_outcome(task))
        return len(done)

    def block_until_event(self, timeout: float | None = None) -> None:
        loop = self._require_loop()
        waiting = [task for task in self._pending if not task.done()]
        if not waiting or len(waiting) < len(self._pending):
            return
        done, _ = loop.run_until_complete(
            asyncio.wait(waiting, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        )
        if not done:
            raise WaitTimeoutError(
                f"No reply from {self._address.bus_name} within {timeout:.3f}s "
                f"({len(waiting)} call(s) in flight)"
            )

    def close(self) -> None:
        """Cancel undelivered calls, stop the router and close the loop."""
        if self._closed:
            return
        self._closed = True
        loop = self._loop
        if loop is None:
            return

        dropped = len(self._pending)
        for task in self._pending:
            task.cancel()
        try:
            if self._pending:
                loop.run_until_complete(asyncio.gather(*self._pending, return_exceptions=True))
            if self._stack is not None:
                loop.run_until_complete(self._stack.aclose())
        except Exception:
            logger.warning("Error during %s bus cleanup", self.name, exc_info=True)
        finally:
            self._pending.clear()
            self._router = None
            loop.close()
        if dropped:
            logger.debug("Dropped %d undelivered call(s) on close", dropped)

    def health_check(self) -> dict[str, Any]:
        """Return connection details and the number of calls in flight."""
        return {
            "bus": self.name,
            "healthy": self._loop is not None and not self._closed,
            "service": self._address.bus_name,
            "object_path": self._address.object_path,
            "interface": self._address.interface,
            "pending": self.pending_count,
        }


@register_bus("session")
class SessionBus(JeepneyBus):
    """The per-user session bus."""

    _bus_kind = "SESSION"


@register_bus("system")
class SystemBus(JeepneyBus):
    """The system-wide bus."""

    _bus_kind = "SYSTEM"
