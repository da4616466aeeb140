"""Configuration system for qrng-client.

Uses pydantic-settings for declarative, layered configuration:
init kwargs -> environment variables (QRNG_*) -> .env file -> field defaults.

Command-line flags are applied on top via resolve_config(), which creates a
new config instance without mutating the defaults. Every value is checked by
validate_config() before the bus is touched.
"""

from __future__ import annotations

from typing import Any

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from qrng_client.exceptions import ConfigValidationError

# Largest value representable by the remote's u64 arguments.
MAX_U64 = 2**64 - 1

_DISPATCH_MODES: frozenset[str] = frozenset({"auto", "sync", "async"})
_LOG_LEVELS: frozenset[str] = frozenset({"none", "summary", "full"})
_DELIVERY_ORDERS: frozenset[str] = frozenset({"fifo", "lifo"})

# All known config field names (populated after class definition).
_ALL_FIELDS: frozenset[str] = frozenset()


class QrngClientConfig(BaseSettings):
    """Configuration for one qrng-client run.

    Resolution order: init kwargs -> env vars (QRNG_*) -> .env file -> defaults.

    Fields are divided into three groups:
    - **Bus addressing**: backend, service name, object path, interface and
      method names.
    - **Run parameters**: call count, octets per call, concurrency cap and
      timeouts. Read-only for the lifetime of a run.
    - **Reporting**: log level, quiet override and diagnostic mode.
    """

    model_config = SettingsConfigDict(
        env_prefix="QRNG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Bus addressing ---

    bus: str = Field(
        default="session",
        description="Bus backend: 'session', 'system', 'loopback' or a plugin name",
    )
    service_name: str = Field(
        default="lv.lumii.qrng",
        description="Well-known bus name of the QRNG service",
    )
    object_path: str = Field(
        default="/lv/lumii/qrng/RemoteQrngXorLinuxRng",
        description="Object path exporting the RNG interface",
    )
    interface: str = Field(
        default="lv.lumii.qrng.Rng",
        description="Interface name of the RNG methods",
    )
    method: str = Field(
        default="GenerateOctets",
        description="Blocking method: (t count) -> (u status, ay octets)",
    )
    timeout_method: str = Field(
        default="GenerateOctetsTimeout",
        description="Asynchronous method: (t count, t timeout_ms) -> (i status, ay octets)",
    )

    # --- Run parameters ---

    count: int = Field(
        default=1,
        description="Total number of calls to make",
    )
    octets: int = Field(
        default=10,
        description="Number of octets requested per call",
    )
    concurrency: int = Field(
        default=1,
        description="Maximum number of calls in flight at once",
    )
    timeout_ms: int = Field(
        default=0,
        description="Advisory per-call timeout in milliseconds (0 = none)",
    )
    wait_timeout_s: float = Field(
        default=0.0,
        description="Watchdog for the blocking event wait in seconds (0 = wait forever)",
    )
    dispatch_mode: str = Field(
        default="auto",
        description="'auto' (sequential when concurrency is 1), 'sync' or 'async'",
    )

    # --- Reporting ---

    log_level: str = Field(
        default="summary",
        description="Logging verbosity: 'none', 'summary', 'full'",
    )
    quiet: bool = Field(
        default=False,
        description="Suppress all output except errors",
    )
    diagnostic_mode: bool = Field(
        default=False,
        description="Store all request records in memory for analysis",
    )

    # --- Loopback service ---

    loopback_mean: float = Field(
        default=127.5,
        description="Centre of the loopback service's byte distribution",
    )
    loopback_seed: int | None = Field(
        default=None,
        description="RNG seed for reproducible loopback output",
    )
    loopback_delivery: str = Field(
        default="fifo",
        description="Order in which the loopback bus delivers replies: 'fifo' or 'lifo'",
    )

    @property
    def logging_enabled(self) -> bool:
        """Whether per-request summary lines should be produced."""
        return self.log_level != "none" and not self.quiet

    @property
    def use_sequential_path(self) -> bool:
        """Whether calls are issued strictly one after another."""
        if self.dispatch_mode == "auto":
            return self.concurrency == 1
        return self.dispatch_mode == "sync"


# Populate _ALL_FIELDS now that the class is defined.
_ALL_FIELDS = frozenset(QrngClientConfig.model_fields.keys())


def _require_positive(name: str, value: int) -> None:
    if value <= 0:
        raise ConfigValidationError(f"{name} must be a positive integer, got {value}")


def validate_config(config: QrngClientConfig) -> None:
    """Check ranges and enumerations of a resolved config.

    Args:
        config: The configuration to check.

    Raises:
        ConfigValidationError: If any value is out of range or unknown.
    """
    _require_positive("count", config.count)
    _require_positive("octets", config.octets)
    _require_positive("concurrency", config.concurrency)
    if config.octets > MAX_U64:
        raise ConfigValidationError(f"octets must fit in 64 bits, got {config.octets}")
    if not 0 <= config.timeout_ms <= MAX_U64:
        raise ConfigValidationError(
            f"timeout_ms must be between 0 and {MAX_U64}, got {config.timeout_ms}"
        )
    if config.wait_timeout_s < 0:
        raise ConfigValidationError(
            f"wait_timeout_s must not be negative, got {config.wait_timeout_s}"
        )
    if config.dispatch_mode not in _DISPATCH_MODES:
        raise ConfigValidationError(
            f"Unknown dispatch_mode {config.dispatch_mode!r}; "
            f"expected one of {sorted(_DISPATCH_MODES)}"
        )
    if config.log_level not in _LOG_LEVELS:
        raise ConfigValidationError(
            f"Unknown log_level {config.log_level!r}; expected one of {sorted(_LOG_LEVELS)}"
        )
    if config.loopback_delivery not in _DELIVERY_ORDERS:
        raise ConfigValidationError(
            f"Unknown loopback_delivery {config.loopback_delivery!r}; "
            f"expected one of {sorted(_DELIVERY_ORDERS)}"
        )


def load_config(**kwargs: Any) -> QrngClientConfig:
    """Build a config from kwargs and the environment, then validate it.

    Args:
        **kwargs: Explicit field values; highest precedence.

    Returns:
        A validated QrngClientConfig.

    Raises:
        ConfigValidationError: If pydantic rejects a value or a range check fails.
    """
    try:
        config = QrngClientConfig(**kwargs)
    except ValidationError as exc:
        raise ConfigValidationError(str(exc)) from exc
    validate_config(config)
    return config


def resolve_config(
    defaults: QrngClientConfig,
    overrides: dict[str, Any] | None,
) -> QrngClientConfig:
    """Create a new config instance merging defaults with command-line overrides.

    Keys whose value is ``None`` are treated as "not given" and skipped, so
    an unset flag never masks an environment variable.

    Args:
        defaults: The base configuration loaded from environment.
        overrides: Field values taken from the command line.

    Returns:
        A validated QrngClientConfig with overrides applied, or *defaults*
        itself when there is nothing to override.

    Raises:
        ConfigValidationError: If a key is unknown or a value is invalid.
    """
    given = {key: value for key, value in (overrides or {}).items() if value is not None}
    unknown = sorted(set(given) - _ALL_FIELDS)
    if unknown:
        raise ConfigValidationError(f"Unknown config field(s): {', '.join(unknown)}")

    if not given:
        validate_config(defaults)
        return defaults

    # model_copy(update=...) skips validation, so string "100" would not
    # be coerced to int 100. model_validate runs the full validator.
    merged = defaults.model_dump()
    merged.update(given)
    try:
        config = QrngClientConfig.model_validate(merged)
    except ValidationError as exc:
        raise ConfigValidationError(str(exc)) from exc
    validate_config(config)
    return config
