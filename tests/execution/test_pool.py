"""Tests for TaskPool: bounded FIFO scheduling with contained failures."""

from __future__ import annotations

import asyncio

import pytest

from capforge.core.errors import ConfigurationError, PoolStateError
from capforge.execution.pool import PoolResult, PoolTask, TaskPool
from capforge.execution.signals import Completed, Failed, FailureKind


# ── Helpers ──────────────────────────────────────────────────────────────


async def _spin(times: int = 10) -> None:
    """Give scheduled tasks a few loop iterations to run."""
    for _ in range(times):
        await asyncio.sleep(0)


class Gated:
    """Operations that block until released, recording start order."""

    def __init__(self) -> None:
        self.started: list[str] = []
        self.gates: dict[str, asyncio.Event] = {}

    def op(self, name: str, signal=None):
        self.gates[name] = asyncio.Event()

        async def _op():
            self.started.append(name)
            await self.gates[name].wait()
            return signal if signal is not None else Completed()

        return _op

    def release(self, name: str) -> None:
        self.gates[name].set()


async def _ok():
    return Completed()


async def _exit_1():
    return Failed.nonzero_exit(1)


async def _boom():
    raise RuntimeError("boom")


# ── Construction ─────────────────────────────────────────────────────────


class TestConstruction:
    @pytest.mark.parametrize("limit", [0, -1])
    def test_non_positive_limit_rejected(self, limit):
        with pytest.raises(ConfigurationError):
            TaskPool(limit)

    @pytest.mark.parametrize("limit", [True, 2.0, "2", None])
    def test_non_integer_limit_rejected(self, limit):
        with pytest.raises(ConfigurationError):
            TaskPool(limit)

    def test_initial_state(self):
        pool = TaskPool(3)
        assert pool.limit == 3
        assert pool.task_count == 0
        assert pool.pending_count == 0
        assert pool.running_count == 0


# ── Registration ─────────────────────────────────────────────────────────


class TestAdd:
    def test_add_returns_self(self):
        pool = TaskPool(1)
        assert pool.add("a", _ok) is pool

    def test_add_counts(self):
        pool = TaskPool(1).add("a", _ok).add("b", _ok)
        assert pool.task_count == 2
        assert pool.pending_count == 2

    def test_duplicate_name_rejected(self):
        pool = TaskPool(1).add("a", _ok)
        with pytest.raises(PoolStateError, match="Duplicate"):
            pool.add("a", _ok)

    @pytest.mark.asyncio
    async def test_add_after_run_rejected(self):
        pool = TaskPool(1).add("a", _ok)
        await pool.run()
        with pytest.raises(PoolStateError):
            pool.add("b", _ok)

    @pytest.mark.asyncio
    async def test_add_while_running_rejected(self):
        gated = Gated()
        pool = TaskPool(1).add("a", gated.op("a"))
        runner = asyncio.ensure_future(pool.run())
        await _spin()
        with pytest.raises(PoolStateError):
            pool.add("b", _ok)
        gated.release("a")
        result = await runner
        assert list(result.outcomes) == ["a"]

    @pytest.mark.asyncio
    async def test_run_twice_rejected(self):
        pool = TaskPool(1)
        await pool.run()
        with pytest.raises(PoolStateError):
            await pool.run()


# ── Scheduling ───────────────────────────────────────────────────────────


class TestRun:
    @pytest.mark.asyncio
    async def test_empty_pool_resolves_immediately(self):
        result = await TaskPool(1).run()
        assert result.outcomes == {}
        assert result.total == 0
        assert result.exit_code == 0

    @pytest.mark.asyncio
    async def test_two_slots_three_tasks_with_failure(self):
        """A and B start at once, C waits for a slot, B's failure is recorded."""
        gated = Gated()
        pool = TaskPool(2)
        pool.add("A", gated.op("A"))
        pool.add("B", gated.op("B", Failed.nonzero_exit(1)))
        pool.add("C", gated.op("C"))

        runner = asyncio.ensure_future(pool.run())
        await _spin()
        assert gated.started == ["A", "B"]
        assert pool.running_count == 2
        assert pool.pending_count == 1

        gated.release("B")
        await _spin()
        assert gated.started == ["A", "B", "C"]
        assert pool.running_count == 2

        gated.release("A")
        gated.release("C")
        result = await runner

        assert result.outcomes == {
            "A": Completed(),
            "B": Failed.nonzero_exit(1),
            "C": Completed(),
        }
        assert result.succeeded == 2
        assert result.failed == 1
        assert result.exit_code == 1
        assert str(result.failures["B"]) == "nonzero-exit: 1"

    @pytest.mark.asyncio
    async def test_fifo_start_order(self):
        gated = Gated()
        names = [f"t{i}" for i in range(6)]
        pool = TaskPool(2)
        for name in names:
            pool.add(name, gated.op(name))

        runner = asyncio.ensure_future(pool.run())
        await _spin()
        assert gated.started == names[:2]

        # Release in reverse order of what is running; starts stay FIFO.
        for _ in range(len(names)):
            await _spin()
            running = [n for n in gated.started if not gated.gates[n].is_set()]
            gated.release(running[-1])
        result = await runner

        assert gated.started == names
        assert result.succeeded == len(names)

    @pytest.mark.asyncio
    async def test_concurrency_bounded(self):
        active = 0
        max_active = 0

        async def _track():
            nonlocal active, max_active
            active += 1
            max_active = max(max_active, active)
            await asyncio.sleep(0.01)
            active -= 1

        pool = TaskPool(3)
        for i in range(10):
            pool.add(f"t{i}", _track)
        result = await pool.run()

        assert max_active == 3
        assert result.succeeded == 10

    @pytest.mark.asyncio
    async def test_outcomes_keyed_in_registration_order(self):
        async def _sleep(delay):
            await asyncio.sleep(delay)

        pool = TaskPool(3)
        pool.add("slow", lambda: _sleep(0.03))
        pool.add("medium", lambda: _sleep(0.02))
        pool.add("fast", lambda: _sleep(0.0))
        result = await pool.run()

        assert list(result.outcomes) == ["slow", "medium", "fast"]
        assert [t.name for t in result.tasks] == ["slow", "medium", "fast"]


# ── Failure containment ──────────────────────────────────────────────────


class TestFailureIsolation:
    @pytest.mark.asyncio
    async def test_raising_operation_is_recorded_not_propagated(self):
        pool = TaskPool(1)
        pool.add("ok-1", _ok)
        pool.add("bad", _boom)
        pool.add("ok-2", _ok)
        result = await pool.run()

        bad = result.outcomes["bad"]
        assert isinstance(bad, Failed)
        assert bad.kind is FailureKind.OPERATION_ERROR
        assert "boom" in bad.message
        assert result.outcomes["ok-1"] == Completed()
        assert result.outcomes["ok-2"] == Completed()

    @pytest.mark.asyncio
    async def test_operation_raising_at_call_time(self):
        def _broken():
            raise ValueError("not even a coroutine")

        pool = TaskPool(2).add("broken", _broken).add("ok", _ok)
        result = await pool.run()
        assert result.outcomes["broken"].kind is FailureKind.OPERATION_ERROR
        assert result.outcomes["ok"] == Completed()

    @pytest.mark.asyncio
    async def test_every_task_fails(self):
        pool = TaskPool(2)
        for i in range(5):
            pool.add(f"t{i}", _exit_1)
        result = await pool.run()
        assert result.failed == 5
        assert set(result.failures) == {f"t{i}" for i in range(5)}
        assert not result.ok

    @pytest.mark.asyncio
    async def test_non_signal_result_counts_as_completed(self):
        async def _value():
            return {"artifact": "key-dsa-1.stl"}

        result = await TaskPool(1).add("v", _value).run()
        assert result.outcomes["v"] == Completed()


# ── Callbacks, bookkeeping, cancellation ─────────────────────────────────


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_on_settled_called_per_task(self):
        seen: list[tuple[str, str]] = []
        pool = TaskPool(2, on_settled=lambda t: seen.append((t.name, t.status)))
        pool.add("a", _ok).add("b", _exit_1)
        await pool.run()
        assert sorted(seen) == [("a", "completed"), ("b", "failed")]

    @pytest.mark.asyncio
    async def test_raising_callback_does_not_break_pool(self):
        def _bad_callback(task):
            raise RuntimeError("progress bar broke")

        pool = TaskPool(1, on_settled=_bad_callback).add("a", _ok).add("b", _ok)
        result = await pool.run()
        assert result.succeeded == 2

    @pytest.mark.asyncio
    async def test_task_timestamps(self):
        result = await TaskPool(1).add("a", _ok).run()
        task = result.tasks[0]
        assert task.status == "completed"
        assert task.started_at is not None
        assert task.completed_at >= task.started_at
        assert task.duration_seconds >= 0
        assert result.duration_seconds >= 0

    @pytest.mark.asyncio
    async def test_to_dict(self):
        result = await TaskPool(1).add("a", _ok).add("b", _exit_1).run()
        d = result.to_dict()
        assert d["total"] == 2
        assert d["succeeded"] == 1
        assert d["failed"] == 1
        assert d["tasks"][1] == {
            "name": "b",
            "status": "failed",
            "signal": "nonzero-exit: 1",
            "duration_seconds": result.tasks[1].duration_seconds,
        }

    @pytest.mark.asyncio
    async def test_cancel_run_cancels_running_operations(self):
        cancelled: list[str] = []

        async def _forever(name):
            try:
                await asyncio.sleep(3600)
            except asyncio.CancelledError:
                cancelled.append(name)
                raise

        pool = TaskPool(2)
        for name in ("a", "b", "c"):
            pool.add(name, lambda name=name: _forever(name))

        runner = asyncio.ensure_future(pool.run())
        await _spin()
        runner.cancel()
        with pytest.raises(asyncio.CancelledError):
            await runner
        assert sorted(cancelled) == ["a", "b"]
        assert pool.pending_count == 1


class TestPoolResult:
    def _make(self, signals):
        from datetime import UTC, datetime

        now = datetime.now(UTC)
        tasks = [
            PoolTask(name=f"t{i}", operation=_ok, signal=s)
            for i, s in enumerate(signals)
        ]
        return PoolResult(pool_id="p1", tasks=tasks, started_at=now, completed_at=now)

    def test_counts(self):
        r = self._make([Completed(), Failed.nonzero_exit(2), Completed()])
        assert r.total == 3
        assert r.succeeded == 2
        assert r.failed == 1
        assert r.exit_code == 1

    def test_all_completed(self):
        r = self._make([Completed(), Completed()])
        assert r.ok
        assert r.exit_code == 0
        assert r.failures == {}
