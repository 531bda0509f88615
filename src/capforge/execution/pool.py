"""Task Pool: bounded, single-threaded scheduler for process-backed tasks.

WHY
───
Each keycap is rendered by an expensive and occasionally unstable
OpenSCAD run.  We want as many running at once as the machine can take,
no more, and one bad render must not stop the rest of the catalog.  The
pool therefore runs on a single event loop: every task's operation is a
non-blocking wait on a child process, so the bookkeeping below never
needs a lock.

ARCHITECTURE
────────────
::

    TaskPool(limit=4)
      ├── .add(name, operation)   ─ enqueue (FIFO), rejected once run() starts
      ├── .run()                  ─ fill slots, wait FIRST_COMPLETED, refill
      └── PoolResult              ─ outcomes keyed by task name

    pending (deque) ──start──▶ running (≤ limit) ──settle──▶ outcomes

Tasks start in registration order subject to free slots; they may
finish in any order.  A failed task is recorded as a ``Failed`` signal
and its slot is refilled immediately, exactly like a completed one.

Related modules:
    signals.py   - Completed / Failed values recorded per task
    launcher.py  - produces the operations scheduled here

Example::

    pool = TaskPool(limit=2)
    pool.add("1u dsa", launcher.operation_for(job_a))
    pool.add("1u xda", launcher.operation_for(job_b))
    result = await pool.run()
    print(result.succeeded, result.failed)  # 2 0
"""

from __future__ import annotations

import asyncio
import uuid
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from capforge.core.errors import ConfigurationError, PoolStateError
from capforge.core.logging import get_logger
from capforge.execution.signals import Completed, Failed, TerminationSignal

logger = get_logger(__name__)

Operation = Callable[[], Awaitable[Any]]


@dataclass
class PoolTask:
    """A single task owned by the pool."""

    name: str
    operation: Operation
    status: str = "pending"
    signal: TerminationSignal | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def duration_seconds(self) -> float | None:
        """Wall-clock duration if both timestamps are set."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None


@dataclass
class PoolResult:
    """Aggregate outcome of one ``TaskPool.run()``."""

    pool_id: str
    tasks: list[PoolTask]
    started_at: datetime
    completed_at: datetime

    @property
    def outcomes(self) -> dict[str, TerminationSignal]:
        """Task name → signal, in registration order."""
        return {t.name: t.signal for t in self.tasks if t.signal is not None}

    @property
    def failures(self) -> dict[str, Failed]:
        return {
            name: signal for name, signal in self.outcomes.items()
            if isinstance(signal, Failed)
        }

    @property
    def succeeded(self) -> int:
        return sum(1 for t in self.tasks if isinstance(t.signal, Completed))

    @property
    def failed(self) -> int:
        return sum(1 for t in self.tasks if isinstance(t.signal, Failed))

    @property
    def total(self) -> int:
        return len(self.tasks)

    @property
    def ok(self) -> bool:
        return self.failed == 0

    @property
    def exit_code(self) -> int:
        """Process exit code the driver should report: 0 or 1."""
        return 0 if self.ok else 1

    @property
    def duration_seconds(self) -> float:
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        """Serialise for logging."""
        return {
            "pool_id": self.pool_id,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "duration_seconds": self.duration_seconds,
            "tasks": [
                {
                    "name": t.name,
                    "status": t.status,
                    "signal": str(t.signal) if t.signal is not None else None,
                    "duration_seconds": t.duration_seconds,
                }
                for t in self.tasks
            ],
        }


class TaskPool:
    """FIFO task scheduler with at most ``limit`` operations in flight.

    Parameters
    ----------
    limit : int
        Maximum simultaneously running operations; must be ``>= 1``.
    on_settled : callable, optional
        Called with each :class:`PoolTask` right after its outcome is
        recorded (progress reporting).
    """

    def __init__(
        self,
        limit: int,
        *,
        on_settled: Callable[[PoolTask], None] | None = None,
    ) -> None:
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ConfigurationError(f"Task pool limit must be a positive integer, got {limit!r}")
        self._limit = limit
        self._on_settled = on_settled
        self._tasks: list[PoolTask] = []
        self._names: set[str] = set()
        self._pending: deque[PoolTask] = deque()
        self._running: dict[asyncio.Future[TerminationSignal], PoolTask] = {}
        self._started = False
        self._pool_id = str(uuid.uuid4())

    # ── Building ─────────────────────────────────────────────────────

    def add(self, name: str, operation: Operation) -> TaskPool:
        """Register a task.

        Args:
            name: Unique human-readable task name; outcomes are keyed by it.
            operation: Zero-argument callable returning an awaitable.  It
                may resolve to a :data:`TerminationSignal`; any other value
                counts as ``Completed``.

        Returns:
            ``self`` for fluent chaining.

        Raises:
            PoolStateError: If ``run()`` has already started or ``name``
                is already registered.
        """
        if self._started:
            raise PoolStateError(f"Cannot add task {name!r}: pool has already run")
        if name in self._names:
            raise PoolStateError(f"Duplicate task name {name!r}")
        task = PoolTask(name=name, operation=operation)
        self._names.add(name)
        self._tasks.append(task)
        self._pending.append(task)
        return self

    # ── Execution ────────────────────────────────────────────────────

    async def run(self) -> PoolResult:
        """Run every registered task and wait until all have an outcome.

        Task failures never raise out of this method.  Cancelling the
        caller cancels the in-flight operations, waits for them to unwind,
        then re-raises ``CancelledError``.

        Raises:
            PoolStateError: If called more than once.
        """
        if self._started:
            raise PoolStateError("TaskPool.run() may only be called once")
        self._started = True
        started_at = datetime.now(UTC)

        logger.info(
            "task_pool.start",
            pool_id=self._pool_id,
            tasks=len(self._tasks),
            limit=self._limit,
        )

        try:
            self._fill()
            while self._running:
                done, _ = await asyncio.wait(
                    self._running.keys(), return_when=asyncio.FIRST_COMPLETED,
                )
                for handle in done:
                    self._settle(self._running.pop(handle), handle)
                    self._fill()
        except asyncio.CancelledError:
            handles = list(self._running)
            for handle in handles:
                handle.cancel()
            await asyncio.gather(*handles, return_exceptions=True)
            logger.warning(
                "task_pool.cancelled",
                pool_id=self._pool_id,
                running=len(handles),
                pending=len(self._pending),
            )
            raise

        result = PoolResult(
            pool_id=self._pool_id,
            tasks=list(self._tasks),
            started_at=started_at,
            completed_at=datetime.now(UTC),
        )

        logger.info(
            "task_pool.complete",
            pool_id=self._pool_id,
            succeeded=result.succeeded,
            failed=result.failed,
            duration_seconds=result.duration_seconds,
        )
        return result

    def _fill(self) -> None:
        while self._pending and len(self._running) < self._limit:
            task = self._pending.popleft()
            task.status = "running"
            task.started_at = datetime.now(UTC)
            handle = asyncio.ensure_future(self._invoke(task))
            self._running[handle] = task
            logger.debug(
                "task_pool.task_started",
                pool_id=self._pool_id,
                task=task.name,
                running=len(self._running),
                pending=len(self._pending),
            )

    @staticmethod
    async def _invoke(task: PoolTask) -> TerminationSignal:
        try:
            result = await task.operation()
        except Exception as exc:
            return Failed.from_exception(exc)
        if isinstance(result, (Completed, Failed)):
            return result
        return Completed()

    def _settle(self, task: PoolTask, handle: asyncio.Future[TerminationSignal]) -> None:
        if handle.cancelled():
            signal: TerminationSignal = Failed.from_exception(asyncio.CancelledError("operation cancelled"))
        else:
            signal = handle.result()

        task.signal = signal
        task.completed_at = datetime.now(UTC)
        task.status = "completed" if signal.ok else "failed"

        if isinstance(signal, Failed):
            logger.warning(
                "task_pool.task_failed",
                pool_id=self._pool_id,
                task=task.name,
                reason=str(signal),
            )
        else:
            logger.debug(
                "task_pool.task_completed",
                pool_id=self._pool_id,
                task=task.name,
                duration_seconds=task.duration_seconds,
            )

        if self._on_settled is not None:
            try:
                self._on_settled(task)
            except Exception:
                logger.exception("task_pool.on_settled_failed", task=task.name)

    # ── Inspection ───────────────────────────────────────────────────

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def task_count(self) -> int:
        """Number of tasks registered."""
        return len(self._tasks)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def running_count(self) -> int:
        return len(self._running)

    @property
    def pool_id(self) -> str:
        return self._pool_id
