"""Core primitives: errors, logging, settings."""

from capforge.core.errors import (
    AbnormalExit,
    CapforgeError,
    ConfigurationError,
    ErrorCategory,
    ErrorContext,
    GenerationError,
    InvalidJobDescriptor,
    PoolStateError,
    ProcessError,
    SpawnError,
    UsageError,
)
from capforge.core.logging import configure_logging, get_logger

__all__ = [
    "AbnormalExit",
    "CapforgeError",
    "ConfigurationError",
    "ErrorCategory",
    "ErrorContext",
    "GenerationError",
    "InvalidJobDescriptor",
    "PoolStateError",
    "ProcessError",
    "SpawnError",
    "UsageError",
    "configure_logging",
    "get_logger",
]
