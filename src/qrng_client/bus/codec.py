"""Argument encoding and reply decoding for the QRNG bus methods.

The service exports two related methods whose replies differ in the width and
signedness of the leading status field:

- ``GenerateOctets(t) -> (u, ay)``: blocking single-shot call.
- ``GenerateOctetsTimeout(t, t) -> (i, ay)``: byte count plus an advisory
  timeout in milliseconds, used by the bounded-concurrency path.

Each method carries its own decoding rule. A reply is always decoded against
the :class:`MethodSpec` of the call that produced it, never against a shared
"status + bytes" shape.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from qrng_client.exceptions import (
    CodecError,
    LengthMismatchError,
    ReplyDecodeError,
    ServiceStatusError,
    TransportError,
)

if TYPE_CHECKING:
    from qrng_client.bus.base import Reply

# Inclusive bounds for the integer type codes used by the two methods.
_INT_BOUNDS: dict[str, tuple[int, int]] = {
    "t": (0, 2**64 - 1),
    "u": (0, 2**32 - 1),
    "i": (-(2**31), 2**31 - 1),
}


@dataclass(frozen=True, slots=True)
class MethodSpec:
    """Name and signatures of one remote method.

    Attributes:
        name: Bus method name.
        in_signature: D-Bus signature of the arguments (integer codes only).
        out_signature: D-Bus signature of the reply: one integer status code
            followed by ``ay``.
    """

    name: str
    in_signature: str
    out_signature: str

    @property
    def status_code(self) -> str:
        """Type code of the leading status field (``'u'`` or ``'i'``)."""
        return self.out_signature[0]


def generate_octets(name: str = "GenerateOctets") -> MethodSpec:
    """Spec for the blocking method: ``(t) -> (u, ay)``."""
    return MethodSpec(name=name, in_signature="t", out_signature="uay")


def generate_octets_timeout(name: str = "GenerateOctetsTimeout") -> MethodSpec:
    """Spec for the asynchronous method: ``(t, t) -> (i, ay)``."""
    return MethodSpec(name=name, in_signature="tt", out_signature="iay")


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def encode_args(method: MethodSpec, *values: int) -> tuple[int, ...]:
    """Check call arguments against the method's input signature.

    Args:
        method: The method being called.
        *values: One integer per type code in ``method.in_signature``.

    Returns:
        The arguments as a tuple, ready to be used as a message body.

    Raises:
        CodecError: On arity mismatch, non-integers or out-of-range values.
    """
    if len(values) != len(method.in_signature):
        raise CodecError(
            f"{method.name} takes {len(method.in_signature)} argument(s), got {len(values)}"
        )
    for code, value in zip(method.in_signature, values):
        low, high = _INT_BOUNDS[code]
        if not _is_int(value) or not low <= value <= high:
            raise CodecError(f"{method.name}: {value!r} does not fit type code {code!r}")
    return tuple(values)


def decode_status(reply: Reply, method: MethodSpec) -> int:
    """Read the leading status field using *method*'s decoding rule.

    Raises:
        ReplyDecodeError: If the reply does not start with the expected
            status type or the value is outside that type's range.
    """
    code = method.status_code
    if not reply.signature.startswith(code) or not reply.body:
        raise ReplyDecodeError(
            f"{method.name}: expected status of type {code!r}, "
            f"reply signature is {reply.signature!r}"
        )
    status = reply.body[0]
    low, high = _INT_BOUNDS[code]
    if not _is_int(status) or not low <= status <= high:
        raise ReplyDecodeError(f"{method.name}: invalid status field {status!r}")
    return status


def decode_payload(reply: Reply, method: MethodSpec) -> bytes:
    """Read the octet array that follows the status field.

    Raises:
        ReplyDecodeError: If the reply signature or body does not match
            ``method.out_signature``.
    """
    if reply.signature != method.out_signature or len(reply.body) != 2:
        raise ReplyDecodeError(
            f"{method.name}: expected reply signature {method.out_signature!r}, "
            f"got {reply.signature!r}"
        )
    payload = reply.body[1]
    if not isinstance(payload, (bytes, bytearray)):
        raise ReplyDecodeError(f"{method.name}: octet array decoded as {type(payload).__name__}")
    return bytes(payload)


def validate_reply(reply: Reply, method: MethodSpec, expected_length: int) -> bytes:
    """Run the full reply check, stopping at the first failure.

    Order: transport error, status decode, status value, payload decode,
    payload length. A transport error is never reported as a service error,
    and the length is only checked on a structurally valid payload.

    Args:
        reply: The reply delivered by the bus.
        method: Spec of the method that produced *reply*.
        expected_length: Number of octets that were requested.

    Returns:
        The validated payload.

    Raises:
        TransportError: The reply is an error envelope.
        ReplyDecodeError: Status or payload could not be decoded.
        ServiceStatusError: The status is non-zero.
        LengthMismatchError: The payload has the wrong length.
    """
    if reply.is_error:
        raise TransportError(f"{method.name}: {reply.error_name}: {reply.error_message}")
    status = decode_status(reply, method)
    if status != 0:
        raise ServiceStatusError(method.name, status)
    payload = decode_payload(reply, method)
    if len(payload) != expected_length:
        raise LengthMismatchError(expected_length, len(payload))
    return payload
