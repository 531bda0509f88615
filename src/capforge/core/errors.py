"""
Structured error types for capforge.

Every failure the generator can hit falls into one of three groups, and
each group has a different propagation rule:

- **Configuration errors** (``ConfigurationError`` and subclasses) are fatal
  at the point they occur.  They are raised before any worker is launched:
  an invalid pool limit, a malformed job descriptor, an invalid invocation.
- **Process errors** (``SpawnError``, ``AbnormalExit``) belong to a single
  task.  The launcher converts them into a ``Failed`` termination signal so
  they never abort sibling tasks or the pool.
- **Generation errors** (``GenerationError``) come from the artifact
  pipeline inside a worker.  The worker boundary catches them and turns them
  into a non-zero exit code.

Architecture:
    ::

        CapforgeError (category, context, cause)
          ├── ConfigurationError      (CONFIG)
          │     ├── InvalidJobDescriptor
          │     └── UsageError
          ├── PoolStateError          (INTERNAL)
          ├── ProcessError            (PROCESS)
          │     ├── SpawnError
          │     └── AbnormalExit(exit_code)
          └── GenerationError         (GENERATION)

Examples:
    >>> err = AbnormalExit(3).with_context(task="1u r2 sa")
    >>> err.exit_code
    3
    >>> err.to_dict()["context"]
    {'task': '1u r2 sa', 'exit_code': 3}
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and log routing."""

    CONFIG = "CONFIG"            # Invalid settings, descriptors, invocation
    PROCESS = "PROCESS"          # Worker spawn / exit failures
    GENERATION = "GENERATION"    # Artifact pipeline failures
    INTERNAL = "INTERNAL"        # Programmer errors, unexpected state
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error for logging.

    Attributes:
        job: Serialized job descriptor or display name.
        task: Task name inside the pool.
        exit_code: Process exit code, when one exists.
        metadata: Additional key-value pairs.
    """

    job: str | None = None
    task: str | None = None
    exit_code: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging, skipping unset fields."""
        result: dict[str, Any] = {}
        for key in ("job", "task", "exit_code"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class CapforgeError(Exception):
    """Base exception for all capforge errors.

    Subclasses set ``default_category``; callers may override it per
    instance.  ``cause`` is chained as ``__cause__`` so tracebacks keep the
    original exception.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> CapforgeError:
        """Add context to this error (fluent API).

        Usage:
            raise GenerationError("OpenSCAD failed").with_context(
                job="sa-2-1.25", stderr=tail,
            )
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION ERRORS (fatal, raised before any work starts)
# =============================================================================


class ConfigurationError(CapforgeError):
    """Invalid configuration: pool limit, settings, descriptors."""

    default_category = ErrorCategory.CONFIG


class InvalidJobDescriptor(ConfigurationError):
    """A serialized job descriptor could not be parsed or validated."""

    def __init__(self, descriptor: str, message: str | None = None, *, cause: BaseException | None = None):
        super().__init__(
            message or f"Invalid job descriptor: {descriptor!r}",
            context=ErrorContext(job=descriptor),
            cause=cause,
        )
        self.descriptor = descriptor


class UsageError(ConfigurationError):
    """The process was invoked in a way that matches neither role."""


# =============================================================================
# POOL STATE ERRORS (programmer errors)
# =============================================================================


class PoolStateError(CapforgeError):
    """The task pool was used out of order (add after run, duplicate name)."""

    default_category = ErrorCategory.INTERNAL


# =============================================================================
# PROCESS ERRORS (contained per task)
# =============================================================================


class ProcessError(CapforgeError):
    """Base class for worker process failures."""

    default_category = ErrorCategory.PROCESS


class SpawnError(ProcessError):
    """The worker process could not be created."""


class AbnormalExit(ProcessError):
    """The worker ran but exited with a non-zero code or was signalled.

    A negative ``exit_code`` follows the asyncio convention: the process
    was terminated by signal ``-exit_code``.
    """

    def __init__(self, exit_code: int, message: str | None = None):
        if message is None:
            if exit_code < 0:
                message = f"Worker terminated by signal {-exit_code}"
            else:
                message = f"Worker exited with code {exit_code}"
        super().__init__(message, context=ErrorContext(exit_code=exit_code))
        self.exit_code = exit_code


# =============================================================================
# GENERATION ERRORS (caught at the worker boundary)
# =============================================================================


class GenerationError(CapforgeError):
    """The artifact pipeline failed to produce an output file."""

    default_category = ErrorCategory.GENERATION


def categorize_error(error: BaseException) -> ErrorCategory:
    """Return the category of ``error``; non-capforge errors are UNKNOWN."""
    if isinstance(error, CapforgeError):
        return error.category
    return ErrorCategory.UNKNOWN


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
    "categorize_error",
]
