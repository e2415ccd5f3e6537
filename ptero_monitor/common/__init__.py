"""
Common Utilities

Shared modules used across the supervisor, clients and orchestrators:
- config.py - Configuration dataclasses and YAML loading
- exceptions.py - Custom exception classes
- logging_setup.py - Structured logging setup
"""

from .config import (
    TargetConfig,
    UpdateTimings,
    StatusSettings,
    AppSettings,
    validate_target,
    parse_settings,
    load_settings,
)
from .exceptions import (
    MonitorError,
    ConfigError,
    EventStreamError,
    MalformedEventError,
)
from .logging_setup import (
    setup_logging,
    setup_logging_from_env,
    get_service_logger,
    get_target_logger,
)

__all__ = [
    # Config
    "TargetConfig",
    "UpdateTimings",
    "StatusSettings",
    "AppSettings",
    "validate_target",
    "parse_settings",
    "load_settings",
    # Exceptions
    "MonitorError",
    "ConfigError",
    "EventStreamError",
    "MalformedEventError",
    # Logging
    "setup_logging",
    "setup_logging_from_env",
    "get_service_logger",
    "get_target_logger",
]
