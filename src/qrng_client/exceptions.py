"""Exception hierarchy for qrng-client.

All exceptions derive from QrngClientError, enabling broad catch patterns
at the CLI boundary while allowing fine-grained handling internally.
"""


class QrngClientError(Exception):
    """Base exception for all qrng-client errors."""


class ConfigValidationError(QrngClientError):
    """Configuration field validation failed.

    Raised for out-of-range counts, unknown bus backends or override keys,
    and values that do not fit the remote method's argument types.
    """


class BusConnectionError(QrngClientError):
    """The message bus could not be reached.

    Fatal: raised before any request is submitted.
    """


class SubmissionError(QrngClientError):
    """Enqueuing an asynchronous call failed.

    This is about the act of submitting, not the eventual reply. Fatal for
    the whole run.
    """


class TransportError(QrngClientError):
    """A call failed at the transport level.

    Covers error envelopes returned by the bus, dropped connections and
    client-side reply timeouts.
    """


class WaitTimeoutError(QrngClientError):
    """The blocking wait for a completion event expired.

    Only raised when a watchdog timeout is configured; the default is to
    wait indefinitely.
    """


class CodecError(QrngClientError):
    """Call arguments do not fit the method's input signature."""


class ReplyError(QrngClientError):
    """A reply arrived but failed validation."""


class ReplyDecodeError(ReplyError):
    """The reply body does not have the expected structure."""


class ServiceStatusError(ReplyError):
    """The service answered with a non-zero status code."""

    def __init__(self, method: str, status: int) -> None:
        super().__init__(f"{method} failed with status code: {status}")
        self.status = status


class LengthMismatchError(ReplyError):
    """The payload length differs from the number of bytes requested."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"expected {expected} octets, received {actual}")
        self.expected = expected
        self.actual = actual
