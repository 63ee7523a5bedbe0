"""
Configuration system with Pydantic validation.

Single source of truth for all configuration parameters.
"""

from .schema import (
    ConfigSchema,
    VenueConfig,
    RouterConfig,
    WorkerConfig,
    StoreConfig,
    QueueConfig,
    StreamConfig,
    LoggingConfig,
    LogLevel,
)

from .loader import ConfigLoader

from .env import load_env

__all__ = [
    "ConfigSchema",
    "VenueConfig",
    "RouterConfig",
    "WorkerConfig",
    "StoreConfig",
    "QueueConfig",
    "StreamConfig",
    "LoggingConfig",
    "LogLevel",
    "ConfigLoader",
    "load_env",
]
