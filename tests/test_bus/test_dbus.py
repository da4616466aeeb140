"""Tests for the jeepney-backed D-Bus facade.

The reply router is replaced by an in-memory fake, so no message bus is
needed. Outgoing messages are real jeepney method calls.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from types import SimpleNamespace
from typing import Any
from unittest.mock import patch

import pytest
from jeepney import HeaderFields, MessageType

from qrng_client.bus.codec import generate_octets, generate_octets_timeout
from qrng_client.bus.dbus import SessionBus, SystemBus, message_to_reply
from qrng_client.client import run_client
from qrng_client.dispatch.types import DispatchState
from qrng_client.exceptions import (
    BusConnectionError,
    SubmissionError,
    TransportError,
    WaitTimeoutError,
)
from qrng_client.logging.logger import RunLogger

SYNC = generate_octets()
ASYNC = generate_octets_timeout()


def _method_return(signature: str, *body: Any) -> SimpleNamespace:
    return SimpleNamespace(
        header=SimpleNamespace(
            message_type=MessageType.method_return,
            fields={HeaderFields.signature: signature},
        ),
        body=body,
    )


def _error(name: str, text: str) -> SimpleNamespace:
    return SimpleNamespace(
        header=SimpleNamespace(
            message_type=MessageType.error,
            fields={HeaderFields.error_name: name},
        ),
        body=(text,),
    )


class FakeRouter:
    """Answers GenerateOctets/GenerateOctetsTimeout like the QRNG service.

    Args:
        script: Maps 1-based call numbers to a reply message, an exception
            to raise, or ``"hang"`` to never answer.
    """

    def __init__(self, script: dict[int, Any] | None = None) -> None:
        self.script = script or {}
        self.sent: list[Any] = []
        self.closed = False

    async def send_and_get_reply(self, message: Any) -> Any:
        self.sent.append(message)
        scripted = self.script.get(len(self.sent))
        if scripted == "hang":
            await asyncio.Event().wait()
        if isinstance(scripted, Exception):
            raise scripted
        if scripted is not None:
            return scripted
        member = message.header.fields[HeaderFields.member]
        signature = "uay" if member == "GenerateOctets" else "iay"
        await asyncio.sleep(0)
        return _method_return(signature, 0, b"\x5a" * message.body[0])


@pytest.fixture
def router() -> FakeRouter:
    return FakeRouter()


@pytest.fixture
def patched_router(router: FakeRouter) -> Any:
    """Patch jeepney's router factory to yield ``router``."""
    opened: list[str] = []

    @asynccontextmanager
    async def fake_open(bus: str = "SESSION") -> Any:
        opened.append(bus)
        try:
            yield router
        finally:
            router.closed = True

    with patch("qrng_client.bus.dbus.open_dbus_router", fake_open):
        yield opened


class TestMessageToReply:
    """Conversion of jeepney messages into replies."""

    def test_method_return(self) -> None:
        reply = message_to_reply(_method_return("iay", 0, b"\x01"))  # type: ignore[arg-type]
        assert reply.signature == "iay"
        assert reply.body == (0, b"\x01")
        assert reply.is_error is False

    def test_error_message(self) -> None:
        message = _error("org.freedesktop.DBus.Error.ServiceUnknown", "not activatable")
        reply = message_to_reply(message)  # type: ignore[arg-type]
        assert reply.is_error
        assert reply.error_name == "org.freedesktop.DBus.Error.ServiceUnknown"
        assert reply.error_message == "not activatable"


class TestJeepneyBusLifecycle:
    """Opening and closing the connection."""

    def test_open_uses_bus_kind(self, make_config: Any, patched_router: list[str]) -> None:
        with SystemBus(make_config(bus="system")) as bus:
            assert bus.name == "system"
            assert bus.health_check()["healthy"] is True
        assert patched_router == ["SYSTEM"]

    @pytest.mark.usefixtures("patched_router")
    def test_close_stops_router(self, make_config: Any, router: FakeRouter) -> None:
        bus = SessionBus(make_config(bus="session"))
        bus.open()
        bus.close()
        bus.close()
        assert router.closed is True
        assert bus.health_check()["healthy"] is False

    def test_connection_failure(self, make_config: Any) -> None:
        @asynccontextmanager
        async def unreachable(bus: str = "SESSION") -> Any:
            raise OSError("DBUS_SESSION_BUS_ADDRESS is not set")
            yield

        with patch("qrng_client.bus.dbus.open_dbus_router", unreachable):
            bus = SessionBus(make_config(bus="session"))
            with pytest.raises(BusConnectionError, match="session bus"):
                bus.open()

    @pytest.mark.usefixtures("patched_router")
    def test_open_twice(self, make_config: Any) -> None:
        with SessionBus(make_config(bus="session")) as bus, pytest.raises(BusConnectionError):
            bus.open()

    def test_health_check_reports_address(self, make_config: Any) -> None:
        info = SessionBus(make_config(bus="session")).health_check()
        assert info["service"] == "lv.lumii.qrng"
        assert info["object_path"] == "/lv/lumii/qrng/RemoteQrngXorLinuxRng"
        assert info["interface"] == "lv.lumii.qrng.Rng"
        assert info["healthy"] is False


@pytest.mark.usefixtures("patched_router")
class TestJeepneyBusCalls:
    """Blocking and asynchronous calls over the fake router."""

    def test_call_sync(self, make_config: Any, router: FakeRouter) -> None:
        with SessionBus(make_config(bus="session")) as bus:
            reply = bus.call_sync(SYNC, (8,))
        assert reply.signature == "uay"
        assert reply.body == (0, b"\x5a" * 8)
        message = router.sent[0]
        assert message.header.fields[HeaderFields.member] == "GenerateOctets"
        assert message.header.fields[HeaderFields.destination] == "lv.lumii.qrng"
        assert message.body == (8,)

    def test_call_sync_error_reply(self, make_config: Any, router: FakeRouter) -> None:
        router.script[1] = _error("org.freedesktop.DBus.Error.ServiceUnknown", "gone")
        with SessionBus(make_config(bus="session")) as bus, pytest.raises(
            TransportError, match="ServiceUnknown"
        ):
            bus.call_sync(SYNC, (8,))

    def test_call_sync_reply_timeout(self, make_config: Any, router: FakeRouter) -> None:
        router.script[1] = "hang"
        with SessionBus(make_config(bus="session")) as bus, pytest.raises(TransportError):
            bus.call_sync(SYNC, (8,), timeout=0.01)

    def test_call_requires_open_bus(self, make_config: Any) -> None:
        bus = SessionBus(make_config(bus="session"))
        with pytest.raises(TransportError):
            bus.call_sync(SYNC, (1,))
        with pytest.raises(SubmissionError):
            bus.call_async(ASYNC, (1, 0), None, None, lambda ctx, reply: None)

    def test_bad_args_fail_submission(self, make_config: Any) -> None:
        with SessionBus(make_config(bus="session")) as bus, pytest.raises(SubmissionError):
            bus.call_async(ASYNC, (-1, 0), None, None, lambda ctx, reply: None)

    def test_async_delivery(self, make_config: Any) -> None:
        delivered: dict[int, Any] = {}
        with SessionBus(make_config(bus="session")) as bus:
            for i in range(3):
                bus.call_async(
                    ASYNC, (4, 0), None, i, lambda ctx, reply: delivered.__setitem__(ctx, reply)
                )
            while bus.pending_count:
                if bus.pump_ready() == 0:
                    bus.block_until_event(1.0)
        assert sorted(delivered) == [0, 1, 2]
        assert all(reply.body == (0, b"\x5a" * 4) for reply in delivered.values())

    def test_async_transport_exception(self, make_config: Any, router: FakeRouter) -> None:
        router.script[1] = ConnectionResetError("peer went away")
        delivered: list[Any] = []
        with SessionBus(make_config(bus="session")) as bus:
            bus.call_async(ASYNC, (4, 0), None, 1, lambda ctx, reply: delivered.append(reply))
            while bus.pending_count:
                if bus.pump_ready() == 0:
                    bus.block_until_event(1.0)
        assert delivered[0].error_name == "ConnectionResetError"

    def test_block_until_event_watchdog(self, make_config: Any, router: FakeRouter) -> None:
        router.script[1] = "hang"
        with SessionBus(make_config(bus="session")) as bus:
            bus.call_async(ASYNC, (4, 0), None, 1, lambda ctx, reply: None)
            with pytest.raises(WaitTimeoutError):
                bus.block_until_event(0.01)
        assert bus.pending_count == 0


@pytest.mark.usefixtures("patched_router")
class TestRunOverDbus:
    """Full runs through the dispatcher with the fake router."""

    def test_bounded_run(self, make_config: Any, router: FakeRouter) -> None:
        config = make_config(bus="session", count=6, concurrency=3, timeout_ms=250)
        result = run_client(config, RunLogger(config), SessionBus(config))
        assert result.ok
        assert result.sent == 6
        assert result.peak_in_flight <= 3
        members = {m.header.fields[HeaderFields.member] for m in router.sent}
        assert members == {"GenerateOctetsTimeout"}
        assert all(m.body == (10, 250) for m in router.sent)

    def test_error_reply_fails_only_that_request(
        self, make_config: Any, router: FakeRouter
    ) -> None:
        router.script[2] = _error("org.freedesktop.DBus.Error.NoReply", "timed out")
        config = make_config(bus="session", count=4, concurrency=2)
        result = run_client(config, RunLogger(config), SessionBus(config))
        assert result.state is DispatchState.DONE
        assert result.succeeded == 3
        assert result.failed == 1
        assert not result.ok

    def test_watchdog_aborts_run(self, make_config: Any, router: FakeRouter) -> None:
        router.script[1] = "hang"
        router.script[2] = "hang"
        config = make_config(bus="session", count=3, concurrency=2, wait_timeout_s=0.02)
        with pytest.raises(WaitTimeoutError):
            run_client(config, RunLogger(config), SessionBus(config))
        assert router.closed is True
