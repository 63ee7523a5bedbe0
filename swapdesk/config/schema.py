"""
Configuration schema using Pydantic for validation.

Single source of truth for all configuration parameters.
Validates on load, fails fast on invalid config. Every block has
defaults so an empty config file yields a runnable service.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class LogLevel(str, Enum):
    """Log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


# ============================================================================
# VENUE CONFIGURATION
# ============================================================================

class VenueConfig(BaseModel):
    """
    One simulated liquidity venue.

    RULES:
    - Quote price = base_price * U(1 - price_variation, 1 + price_variation)
    - Output = input * price * (1 - fee)
    - Realized price = quoted price * U(1 - max_slippage, 1 + max_slippage)
    """

    name: str = Field(..., min_length=1, description="Venue name")

    fee: float = Field(ge=0.0, lt=1.0, default=0.003, description="Fee rate")

    base_price: float = Field(gt=0.0, default=1.0, description="Reference price")

    price_variation: float = Field(
        ge=0.0,
        lt=1.0,
        default=0.02,
        description="Half-width of the quote price band",
    )

    max_slippage: float = Field(
        ge=0.0,
        lt=1.0,
        default=0.01,
        description="Half-width of the execution slippage band",
    )

    quote_delay_ms: int = Field(ge=0, le=60_000, default=200, description="Simulated quote latency")

    execution_delay_ms: int = Field(ge=0, le=120_000, default=2500, description="Simulated execution latency")

    failure_rate: float = Field(ge=0.0, le=1.0, default=0.05, description="Execution failure probability")

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Empty venue name not allowed")
        return v


def _default_venues() -> List[VenueConfig]:
    return [
        VenueConfig(name="Raydium", fee=0.003),
        VenueConfig(name="Meteora", fee=0.002),
    ]


# ============================================================================
# ROUTER CONFIGURATION
# ============================================================================

class RouterConfig(BaseModel):
    """Quote selection policy."""

    default_venue: Optional[str] = Field(
        default="Meteora",
        description="Venue preferred when output amounts tie",
    )

    tolerate_venue_failures: bool = Field(
        default=False,
        description="Route with surviving venues when some quotes fail",
    )

    seed: Optional[int] = Field(
        default=None,
        description="Seed for simulated venue randomness (None = nondeterministic)",
    )


# ============================================================================
# WORKER CONFIGURATION
# ============================================================================

class WorkerConfig(BaseModel):
    """Execution worker pool and retry policy."""

    concurrency: int = Field(ge=1, le=100, default=10, description="Concurrent executors")

    max_attempts: int = Field(ge=1, le=10, default=3, description="Total attempts per order")

    base_delay_seconds: float = Field(ge=0.0, le=300.0, default=1.0, description="First retry delay")

    backoff_multiplier: float = Field(ge=1.0, le=10.0, default=2.0, description="Delay growth per retry")

    max_delay_seconds: float = Field(ge=0.0, le=3600.0, default=60.0, description="Retry delay cap")

    rate_limit_max: int = Field(ge=1, default=100, description="Executions per rate window")

    rate_limit_window_seconds: float = Field(gt=0.0, default=60.0, description="Rate window length")

    poll_interval_seconds: float = Field(
        gt=0.0,
        le=60.0,
        default=0.5,
        description="Idle poll interval for delayed or externally enqueued jobs",
    )

    shutdown_grace_seconds: float = Field(
        ge=0.0,
        le=300.0,
        default=10.0,
        description="Time in-flight tasks get to finish on shutdown",
    )

    @model_validator(mode="after")
    def validate_delays(self):
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError(
                f"max_delay_seconds ({self.max_delay_seconds}) must be "
                f">= base_delay_seconds ({self.base_delay_seconds})"
            )
        return self


# ============================================================================
# STORAGE / STREAM / LOGGING
# ============================================================================

class StoreConfig(BaseModel):
    """Order store settings."""

    db_path: Path = Field(default=Path("data/orders.db"), description="SQLite order database")

    max_list_limit: int = Field(ge=1, le=1000, default=100, description="Upper bound for list queries")


class QueueConfig(BaseModel):
    """Submission queue settings."""

    db_path: Path = Field(default=Path("data/queue.db"), description="SQLite queue database")


class StreamConfig(BaseModel):
    """Live status WebSocket endpoint."""

    enabled: bool = Field(default=True, description="Serve the status stream")

    host: str = Field(default="127.0.0.1", description="Bind address")

    port: int = Field(ge=0, le=65535, default=8765, description="Bind port")

    subscriber_queue_size: int = Field(
        ge=1,
        le=10_000,
        default=64,
        description="Events buffered per subscriber before it is dropped",
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    log_dir: Path = Field(default=Path("logs"), description="Base log directory")

    log_level: LogLevel = Field(default=LogLevel.INFO, description="File logging level")

    console_level: LogLevel = Field(default=LogLevel.INFO, description="Console logging level")

    json_logs: bool = Field(default=True, description="Use JSON formatting for files")

    file_logging: bool = Field(default=True, description="Write per-stream log files")

    max_bytes: int = Field(ge=1_000_000, le=100_000_000, default=10_000_000, description="Max bytes per log file")

    backup_count: int = Field(ge=1, le=20, default=5, description="Number of backup files")


# ============================================================================
# MASTER CONFIGURATION
# ============================================================================

class ConfigSchema(BaseModel):
    """
    Master configuration schema.

    Single source of truth for all parameters.
    """

    venues: List[VenueConfig] = Field(default_factory=_default_venues, min_length=1)
    router: RouterConfig = Field(default_factory=RouterConfig)
    worker: WorkerConfig = Field(default_factory=WorkerConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = ConfigDict(validate_assignment=True)

    @model_validator(mode="after")
    def validate_venues(self):
        """Venue names unique; default venue must be one of them."""
        names = [v.name for v in self.venues]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate venue names: {names}")

        if self.router.default_venue is not None and self.router.default_venue not in names:
            raise ValueError(
                f"router.default_venue '{self.router.default_venue}' "
                f"is not a configured venue ({names})"
            )
        return self

    def ensure_directories(self) -> None:
        """Create directories for databases and logs."""
        self.store.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.queue.db_path.parent.mkdir(parents=True, exist_ok=True)
        if self.logging.file_logging:
            self.logging.log_dir.mkdir(parents=True, exist_ok=True)
