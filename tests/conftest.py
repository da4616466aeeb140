"""Shared pytest fixtures for qrng-client tests.

Provides configuration factories, a scriptable loopback bus for fault
injection and a run logger that records into memory.
"""

from __future__ import annotations

import io
from typing import Any

import pytest

from qrng_client.bus.base import Reply
from qrng_client.bus.codec import MethodSpec
from qrng_client.bus.loopback import LoopbackBus
from qrng_client.config import QrngClientConfig
from qrng_client.exceptions import SubmissionError
from qrng_client.logging.logger import RunLogger


class ScriptedBus(LoopbackBus):
    """Loopback bus whose replies can be replaced per call number.

    Args:
        config: Run configuration.
        replies: Maps 1-based call numbers to a Reply, or to a callable
            ``(method, args) -> Reply``.
        fail_submission_at: Asynchronous submission number that raises
            SubmissionError.
    """

    def __init__(
        self,
        config: QrngClientConfig,
        replies: dict[int, Any] | None = None,
        fail_submission_at: int | None = None,
    ) -> None:
        super().__init__(config)
        self.replies = replies or {}
        self.fail_submission_at = fail_submission_at
        self.served = 0
        self.closed_calls = 0

    def serve(self, method: MethodSpec, args: tuple[int, ...]) -> Reply:
        self.served += 1
        scripted = self.replies.get(self.served)
        if scripted is None:
            return super().serve(method, args)
        return scripted(method, args) if callable(scripted) else scripted

    def call_async(  # type: ignore[no-untyped-def]
        self, method, args, timeout, context, on_complete
    ):
        if self.fail_submission_at is not None and self.submitted + 1 == self.fail_submission_at:
            raise SubmissionError("resource exhaustion")
        return super().call_async(method, args, timeout, context, on_complete)

    def close(self) -> None:
        self.closed_calls += 1
        super().close()


def _short_reply(method: MethodSpec, args: tuple[int, ...]) -> Reply:
    """A successful reply carrying one octet fewer than requested."""
    return Reply(signature=method.out_signature, body=(0, b"\xab" * (args[0] - 1)))


def _status_reply(status: int) -> Any:
    """A reply factory with a non-zero status and a full payload."""

    def build(method: MethodSpec, args: tuple[int, ...]) -> Reply:
        return Reply(signature=method.out_signature, body=(status, b"\x00" * args[0]))

    return build


@pytest.fixture
def make_config() -> Any:
    """Return a factory building configs isolated from the environment."""

    def factory(**overrides: Any) -> QrngClientConfig:
        defaults: dict[str, Any] = {"bus": "loopback", "loopback_seed": 42}
        defaults.update(overrides)
        return QrngClientConfig(_env_file=None, **defaults)  # type: ignore[call-arg]

    return factory


@pytest.fixture
def default_config(make_config: Any) -> QrngClientConfig:
    """Loopback config with all other fields at their defaults."""
    return make_config()


@pytest.fixture
def scripted_bus() -> type[ScriptedBus]:
    """Return the ScriptedBus class for fault-injection tests."""
    return ScriptedBus


@pytest.fixture
def output() -> io.StringIO:
    """In-memory stream receiving hex dumps."""
    return io.StringIO()


@pytest.fixture
def diagnostic_logger(make_config: Any, output: io.StringIO) -> RunLogger:
    """RunLogger storing every record, writing hex dumps to ``output``."""
    return RunLogger(make_config(diagnostic_mode=True), stream=output)


@pytest.fixture
def short_reply() -> Any:
    """Reply factory returning one octet fewer than requested."""
    return _short_reply


@pytest.fixture
def status_reply() -> Any:
    """Return ``status -> reply factory`` for non-zero service statuses."""
    return _status_reply
