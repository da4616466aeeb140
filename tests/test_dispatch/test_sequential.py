"""Tests for the sequential (blocking) dispatch path."""

from __future__ import annotations

from typing import Any

from qrng_client.bus.base import Reply
from qrng_client.bus.codec import generate_octets
from qrng_client.dispatch.dispatcher import SequentialDispatcher
from qrng_client.dispatch.types import DispatchPlan, DispatchState, ReportingMode
from qrng_client.logging.logger import RunLogger

SYNC = generate_octets()


def _run(bus: Any, run_logger: RunLogger, total: int, **kwargs: Any) -> Any:
    bus.open()
    plan = DispatchPlan(
        target_total=total,
        octets_per_call=kwargs.pop("octets", 4),
        concurrency_limit=1,
        **kwargs,
    )
    dispatcher = SequentialDispatcher(bus, plan, SYNC, run_logger)
    return dispatcher, dispatcher.run()


class TestSequentialDispatcher:
    """One blocking call at a time, aborting at the first failure."""

    def test_all_succeed(
        self, make_config: Any, scripted_bus: Any, diagnostic_logger: RunLogger
    ) -> None:
        bus = scripted_bus(make_config())
        dispatcher, result = _run(bus, diagnostic_logger, 4)
        assert dispatcher.state is DispatchState.DONE
        assert result.ok
        assert (result.sent, result.succeeded, result.failed) == (4, 4, 0)
        assert result.peak_in_flight == 1
        ids = [r.request_id for r in diagnostic_logger.get_diagnostic_data()]
        assert ids == [1, 2, 3, 4]

    def test_aborts_on_first_failure(
        self,
        make_config: Any,
        scripted_bus: Any,
        diagnostic_logger: RunLogger,
        short_reply: Any,
    ) -> None:
        bus = scripted_bus(make_config(), replies={2: short_reply})
        dispatcher, result = _run(bus, diagnostic_logger, 5)
        assert dispatcher.state is DispatchState.ABORTED
        assert result.state is DispatchState.ABORTED
        assert (result.sent, result.succeeded, result.failed) == (2, 1, 1)
        assert bus.served == 2
        assert not result.ok

    def test_unsigned_status_failure(
        self,
        make_config: Any,
        scripted_bus: Any,
        diagnostic_logger: RunLogger,
        status_reply: Any,
    ) -> None:
        bus = scripted_bus(make_config(), replies={1: status_reply(3_000_000_000)})
        _, result = _run(bus, diagnostic_logger, 3)
        assert result.failed == 1
        assert result.sent == 1
        record = diagnostic_logger.get_diagnostic_data()[0]
        assert record.status == 3_000_000_000
        assert record.detail == "GenerateOctets failed with status code: 3000000000"

    def test_transport_error_counted_once(
        self, make_config: Any, scripted_bus: Any, diagnostic_logger: RunLogger
    ) -> None:
        failure = Reply.failure("org.freedesktop.DBus.Error.ServiceUnknown", "not provided")
        bus = scripted_bus(make_config(), replies={1: failure})
        _, result = _run(bus, diagnostic_logger, 2)
        assert result.state is DispatchState.ABORTED
        assert (result.sent, result.failed) == (1, 1)
        record = diagnostic_logger.get_diagnostic_data()[0]
        assert record.outcome == "transport_error"
        assert "ServiceUnknown" in record.detail

    def test_hex_output(self, make_config: Any, scripted_bus: Any, output: Any) -> None:
        octets = bytes(range(10))
        reply = Reply(signature="uay", body=(0, octets))
        bus = scripted_bus(make_config(), replies={1: reply})
        run_logger = RunLogger(make_config(), stream=output)
        _, result = _run(bus, run_logger, 1, octets=10, reporting=ReportingMode.HEX)
        assert result.ok
        assert output.getvalue() == (
            "Generated Octets (10 bytes): 00 01 02 03 04 05 06 07 08 09\n"
        )
