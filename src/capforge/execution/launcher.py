"""Worker launcher: one isolated OS process per job.

The launcher turns a :class:`~capforge.keycaps.jobs.Job` into a child
process that re-enters the capforge entry point in worker mode, then
adapts the child's termination into a :data:`TerminationSignal`:

    spawn raised OSError   → Failed(SPAWN_ERROR)
    return code 0          → Completed
    return code > 0        → Failed(NONZERO_EXIT)
    return code < 0        → Failed(SIGNALED)

The child is always reaped before ``launch()`` returns.  If the awaiting
coroutine is cancelled the child is killed first, then reaped, then the
cancellation propagates.  There is no retry; callers re-add a task if
they want one.

Children inherit the parent's stdout/stderr and environment, plus
``CAPFORGE_WORKER=1`` so a worker can never start a driver of its own.
"""

from __future__ import annotations

import asyncio
import os
import sys
from collections.abc import Sequence

from capforge.core.errors import AbnormalExit, SpawnError
from capforge.core.logging import get_logger
from capforge.execution.pool import Operation
from capforge.execution.signals import Failed, TerminationSignal, signal_from_returncode
from capforge.keycaps.jobs import Job, encode_job

logger = get_logger(__name__)

WORKER_ENV_FLAG = "CAPFORGE_WORKER"
WORKER_JOB_NAME_ENV = "CAPFORGE_JOB_NAME"


def default_worker_command() -> list[str]:
    """Argv prefix that re-enters the entry point; the descriptor is appended."""
    return [sys.executable, "-m", "capforge", "--job"]


class WorkerLauncher:
    """Spawns worker processes with ``asyncio.create_subprocess_exec``.

    Args:
        command: Argv prefix for the worker.  The job descriptor is appended
            as the final argument.  Defaults to :func:`default_worker_command`.
        env: Extra environment variables for every worker.
    """

    def __init__(
        self,
        command: Sequence[str] | None = None,
        env: dict[str, str] | None = None,
    ) -> None:
        self._command = list(command) if command is not None else default_worker_command()
        self._env = dict(env or {})

    @property
    def command(self) -> list[str]:
        return list(self._command)

    def build_argv(self, job: Job) -> list[str]:
        return [*self._command, encode_job(job)]

    def build_env(self, job: Job) -> dict[str, str]:
        env = dict(os.environ)
        env.update(self._env)
        env[WORKER_ENV_FLAG] = "1"
        env[WORKER_JOB_NAME_ENV] = job.display_name
        return env

    async def launch(self, job: Job) -> TerminationSignal:
        """Run ``job`` in a new process and wait for it to terminate."""
        argv = self.build_argv(job)
        try:
            process = await asyncio.create_subprocess_exec(*argv, env=self.build_env(job))
        except OSError as exc:
            error = SpawnError(f"Could not start worker: {exc}", cause=exc).with_context(job=job.display_name)
            logger.error("worker.spawn_failed", **error.to_dict())
            return Failed.spawn_error(exc)

        logger.debug("worker.spawned", job=job.display_name, pid=process.pid)
        try:
            returncode = await process.wait()
        except asyncio.CancelledError:
            await self._reap(process)
            raise

        if returncode != 0:
            error = AbnormalExit(returncode).with_context(job=job.display_name)
            logger.warning("worker.abnormal_exit", pid=process.pid, **error.to_dict())
        else:
            logger.debug("worker.exited", job=job.display_name, pid=process.pid)
        return signal_from_returncode(returncode)

    def operation_for(self, job: Job) -> Operation:
        """Zero-argument operation the task pool schedules for ``job``."""

        async def _operation() -> TerminationSignal:
            return await self.launch(job)

        return _operation

    @staticmethod
    async def _reap(process: asyncio.subprocess.Process) -> None:
        """Kill a still-running child and wait for it, shielded from cancellation."""
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass  # exited between the check and the kill
        await asyncio.shield(process.wait())
        logger.warning("worker.killed", pid=process.pid, returncode=process.returncode)
