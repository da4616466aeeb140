"""Bus backend subsystem for qrng-client.

Re-exports the facade ABC, the registry, the method codec and the built-in
backends::

    from qrng_client.bus import BusRegistry, LoopbackBus, SessionBus
"""

from qrng_client.bus.base import Reply, RpcFacade
from qrng_client.bus.codec import (
    MethodSpec,
    generate_octets,
    generate_octets_timeout,
    validate_reply,
)
from qrng_client.bus.dbus import JeepneyBus, SessionBus, SystemBus
from qrng_client.bus.loopback import LoopbackBus
from qrng_client.bus.registry import BusRegistry, register_bus

__all__ = [
    "BusRegistry",
    "JeepneyBus",
    "LoopbackBus",
    "MethodSpec",
    "Reply",
    "RpcFacade",
    "SessionBus",
    "SystemBus",
    "generate_octets",
    "generate_octets_timeout",
    "register_bus",
    "validate_reply",
]
