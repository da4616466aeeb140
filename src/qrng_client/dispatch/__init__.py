"""Dispatch subsystem for qrng-client.

Re-exports the run types, the completion handler and both dispatchers::

    from qrng_client.dispatch import BoundedDispatcher, DispatchPlan, RunResult
"""

from qrng_client.dispatch.types import (
    Aggregator,
    DispatchPlan,
    DispatchState,
    ReportingMode,
    RequestContext,
    RunResult,
)
from qrng_client.dispatch.handler import CompletionHandler
from qrng_client.dispatch.dispatcher import (
    BoundedDispatcher,
    SequentialDispatcher,
    build_dispatcher,
)

__all__ = [
    "Aggregator",
    "BoundedDispatcher",
    "CompletionHandler",
    "DispatchPlan",
    "DispatchState",
    "ReportingMode",
    "RequestContext",
    "RunResult",
    "SequentialDispatcher",
    "build_dispatcher",
]
