"""Diagnostic logging subsystem for qrng-client.

Provides immutable per-request records and a run logger that supports
none/summary/full verbosity and in-memory diagnostic mode.
"""

from qrng_client.logging.logger import RunLogger, format_octets
from qrng_client.logging.types import RequestRecord

__all__ = [
    "RequestRecord",
    "RunLogger",
    "format_octets",
]
