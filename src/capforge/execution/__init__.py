"""capforge execution: bounded task pool and process-per-task launcher.

ARCHITECTURE
────────────
::

    Job ──▶ WorkerLauncher.operation_for(job) ──▶ TaskPool.add(name, op)
                                                      │
                                                      ▼
                                            TaskPool.run() ─▶ PoolResult
                                                      │
                              each op: spawn child, await exit, map to
                              Completed | Failed
"""

from capforge.execution.launcher import WorkerLauncher
from capforge.execution.pool import PoolResult, PoolTask, TaskPool
from capforge.execution.signals import (
    Completed,
    Failed,
    FailureKind,
    TerminationSignal,
    signal_from_returncode,
)

__all__ = [
    "Completed",
    "Failed",
    "FailureKind",
    "PoolResult",
    "PoolTask",
    "TaskPool",
    "TerminationSignal",
    "WorkerLauncher",
    "signal_from_returncode",
]
