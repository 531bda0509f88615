"""Termination signals: the recorded outcome of one task.

Every task in the pool ends with exactly one signal:

    Completed()                                   exit code 0
    Failed(SPAWN_ERROR, "...")                    process never started
    Failed(NONZERO_EXIT, "...", exit_code=1)      worker reported failure
    Failed(SIGNALED, "...", exit_code=-9)         killed by a signal
    Failed(OPERATION_ERROR, "...")                operation raised in the driver

Signals are values, never exceptions: the pool stores them and keeps
scheduling.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union


class FailureKind(str, Enum):
    """Why a task failed."""

    SPAWN_ERROR = "spawn-error"
    NONZERO_EXIT = "nonzero-exit"
    SIGNALED = "signaled"
    OPERATION_ERROR = "operation-error"


@dataclass(frozen=True)
class Completed:
    """The task's operation finished successfully."""

    @property
    def ok(self) -> bool:
        return True

    def __str__(self) -> str:
        return "completed"


@dataclass(frozen=True)
class Failed:
    """The task's operation failed.

    ``exit_code`` is set for ``NONZERO_EXIT`` and ``SIGNALED`` (negative,
    the signal number negated).
    """

    kind: FailureKind
    message: str = ""
    exit_code: int | None = None

    @property
    def ok(self) -> bool:
        return False

    @classmethod
    def spawn_error(cls, exc: BaseException) -> Failed:
        return cls(FailureKind.SPAWN_ERROR, f"{type(exc).__name__}: {exc}")

    @classmethod
    def nonzero_exit(cls, exit_code: int) -> Failed:
        return cls(FailureKind.NONZERO_EXIT, f"exited with code {exit_code}", exit_code)

    @classmethod
    def signaled(cls, signum: int) -> Failed:
        return cls(FailureKind.SIGNALED, f"terminated by signal {signum}", -signum)

    @classmethod
    def from_exception(cls, exc: BaseException) -> Failed:
        return cls(FailureKind.OPERATION_ERROR, f"{type(exc).__name__}: {exc}")

    def __str__(self) -> str:
        if self.kind is FailureKind.NONZERO_EXIT:
            return f"{self.kind.value}: {self.exit_code}"
        if self.kind is FailureKind.SIGNALED and self.exit_code is not None:
            return f"{self.kind.value}: {-self.exit_code}"
        return f"{self.kind.value}: {self.message}" if self.message else self.kind.value


TerminationSignal = Union[Completed, Failed]


def signal_from_returncode(returncode: int) -> TerminationSignal:
    """Map a child process return code onto a termination signal."""
    if returncode == 0:
        return Completed()
    if returncode < 0:
        return Failed.signaled(-returncode)
    return Failed.nonzero_exit(returncode)
