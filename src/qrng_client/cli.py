"""Command-line entry point for qrng-client.

Usage:
    # One call, 10 octets, printed as hex:
    qrng-client

    # 100 calls of 32 octets with up to 8 calls in flight:
    qrng-client --count 100 --bytes 32 --concurrency 8

    # Offline run against the in-process loopback service:
    qrng-client --bus loopback --count 5 --concurrency 2

Every flag can also be set through a ``QRNG_*`` environment variable (for
example ``QRNG_CONCURRENCY=8``); flags take precedence.

Exit status is 0 only if every call returned a validated payload.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import TYPE_CHECKING, Any

from qrng_client import __version__
from qrng_client.client import build_bus, run_client
from qrng_client.config import load_config, resolve_config
from qrng_client.exceptions import BusConnectionError, ConfigValidationError, QrngClientError
from qrng_client.logging.logger import RunLogger

if TYPE_CHECKING:
    from collections.abc import Sequence

    from qrng_client.config import QrngClientConfig

logger = logging.getLogger("qrng_client")

EXIT_OK = 0
EXIT_FAILURE = 1


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser. Unset flags default to ``None``."""
    parser = argparse.ArgumentParser(
        prog="qrng-client",
        description="Fetch random octets from a QRNG service over D-Bus.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "examples:\n"
            "  qrng-client --bytes 32\n"
            "  qrng-client --count 100 --concurrency 8 --no-log\n"
        ),
    )
    parser.add_argument(
        "-n",
        "--count",
        type=int,
        help="Number of calls to make (default: 1).",
    )
    parser.add_argument(
        "-b",
        "--bytes",
        dest="octets",
        type=int,
        help="Octets requested per call (default: 10).",
    )
    parser.add_argument(
        "-c",
        "--concurrency",
        type=int,
        help="Maximum number of calls in flight (default: 1).",
    )
    parser.add_argument(
        "-t",
        "--timeout",
        dest="timeout_ms",
        type=int,
        help="Advisory per-call timeout in milliseconds (default: 0, none).",
    )
    parser.add_argument(
        "--wait-timeout",
        dest="wait_timeout_s",
        type=float,
        help="Give up if no reply arrives for this many seconds (default: wait forever).",
    )
    parser.add_argument(
        "--bus",
        help="Bus backend: session, system or loopback (default: session).",
    )
    parser.add_argument(
        "--mode",
        dest="dispatch_mode",
        choices=("auto", "sync", "async"),
        help="Dispatch path; 'auto' is sequential when concurrency is 1.",
    )
    log_group = parser.add_mutually_exclusive_group()
    log_group.add_argument(
        "-l",
        "--log",
        dest="log",
        action="store_true",
        default=None,
        help="Log one line per request (default).",
    )
    log_group.add_argument(
        "--no-log",
        dest="log",
        action="store_false",
        help="Disable per-request log lines.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log full request records and debug output.",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        default=None,
        help="Only report errors; overrides --log and --verbose.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def _overrides_from_args(args: argparse.Namespace) -> dict[str, Any]:
    log_level = None
    if args.verbose:
        log_level = "full"
    elif args.log is not None:
        log_level = "summary" if args.log else "none"
    return {
        "count": args.count,
        "octets": args.octets,
        "concurrency": args.concurrency,
        "timeout_ms": args.timeout_ms,
        "wait_timeout_s": args.wait_timeout_s,
        "bus": args.bus,
        "dispatch_mode": args.dispatch_mode,
        "log_level": log_level,
        "quiet": args.quiet,
    }


def _configure_logging(config: QrngClientConfig) -> None:
    if config.quiet:
        level = logging.ERROR
    elif config.log_level == "full":
        level = logging.DEBUG
    elif config.log_level == "summary":
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


def main(argv: Sequence[str] | None = None) -> int:
    """Run the client and return the process exit status.

    Configuration errors exit through ``argparse`` with status 2 before any
    bus activity.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = resolve_config(load_config(), _overrides_from_args(args))
        bus = build_bus(config)
    except ConfigValidationError as exc:
        parser.error(str(exc))

    _configure_logging(config)

    try:
        result = run_client(config, RunLogger(config), bus)
    except BusConnectionError as exc:
        logger.error("%s", exc)
        return EXIT_FAILURE
    except QrngClientError as exc:
        logger.error("Run aborted: %s", exc)
        return EXIT_FAILURE

    return EXIT_OK if result.ok else EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
