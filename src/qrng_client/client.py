"""Top-level run orchestration for qrng-client.

Wires a resolved configuration to a bus backend, picks the dispatch path and
returns the run's verdict::

    config = load_config(count=5, concurrency=2, bus="loopback")
    result = run_client(config)
    assert result.ok

The bus is opened once, used exclusively by one dispatcher and closed on
every exit path.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

# The package import registers the built-in backends.
from qrng_client.bus import BusRegistry
from qrng_client.dispatch.dispatcher import build_dispatcher
from qrng_client.exceptions import ConfigValidationError
from qrng_client.logging.logger import RunLogger

if TYPE_CHECKING:
    from qrng_client.bus.base import RpcFacade
    from qrng_client.config import QrngClientConfig
    from qrng_client.dispatch.types import RunResult

logger = logging.getLogger("qrng_client")


def build_bus(config: QrngClientConfig) -> RpcFacade:
    """Instantiate (but do not open) the backend named by ``config.bus``.

    Raises:
        ConfigValidationError: If no backend is registered under that name.
    """
    try:
        return BusRegistry.build(config)
    except KeyError as exc:
        raise ConfigValidationError(exc.args[0]) from exc


def run_client(
    config: QrngClientConfig,
    run_logger: RunLogger | None = None,
    bus: RpcFacade | None = None,
) -> RunResult:
    """Open the bus, dispatch every call and close the bus.

    Args:
        config: Validated run configuration.
        run_logger: Logger for per-request output; built from *config* when
            omitted.
        bus: A backend to use instead of the one named by ``config.bus``.
            It must not be open yet.

    Returns:
        The run's verdict. ``result.ok`` is the process's success criterion.

    Raises:
        BusConnectionError: The bus could not be reached; nothing was sent.
        SubmissionError: A call could not be enqueued.
        WaitTimeoutError: The configured wait watchdog expired.
    """
    if run_logger is None:
        run_logger = RunLogger(config)
    if bus is None:
        bus = build_bus(config)

    with bus:
        logger.debug("Bus %s open: %s", bus.name, bus.health_check())
        result = build_dispatcher(bus, config, run_logger).run()

    run_logger.log_run(result)
    return result
