"""qrng-client: fetch random octets from a QRNG service over D-Bus.

Issues batches of ``GenerateOctets`` calls against one bus connection, either
strictly one after another or with a bounded number of calls in flight, and
validates every reply before counting it as a success.
"""

from __future__ import annotations

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("qrng-client")
except PackageNotFoundError:
    __version__ = "0.0.0"

from qrng_client.client import run_client
from qrng_client.config import QrngClientConfig, load_config, resolve_config
from qrng_client.dispatch import DispatchState, RunResult
from qrng_client.exceptions import (
    BusConnectionError,
    ConfigValidationError,
    QrngClientError,
    ReplyError,
    SubmissionError,
    TransportError,
    WaitTimeoutError,
)

__all__ = [
    "BusConnectionError",
    "ConfigValidationError",
    "DispatchState",
    "QrngClientConfig",
    "QrngClientError",
    "ReplyError",
    "RunResult",
    "SubmissionError",
    "TransportError",
    "WaitTimeoutError",
    "__version__",
    "load_config",
    "resolve_config",
    "run_client",
]
