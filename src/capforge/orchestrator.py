"""Driver and worker roles of the capforge entry point.

One program plays two roles, decided once from how it was invoked:

    capforge                     driver: render the whole catalog
    capforge --job '{"..."}'     worker: render exactly one job, then exit

The driver wraps every catalog job in a task whose operation launches a
worker process, runs those tasks through a :class:`TaskPool`, and reports
which tasks failed.  A worker runs the artifact pipeline in-process and
converts any failure into exit code 1; it never launches processes itself.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Union

from rich.console import Console
from rich.markup import escape

from capforge.core.errors import (
    GenerationError,
    InvalidJobDescriptor,
    UsageError,
    categorize_error,
)
from capforge.core.logging import LogContext, configure_logging, get_logger
from capforge.core.settings import CapforgeSettings, load_settings
from capforge.execution.launcher import WORKER_ENV_FLAG, WorkerLauncher
from capforge.execution.pool import PoolResult, PoolTask, TaskPool
from capforge.keycaps.catalog import build_catalog
from capforge.keycaps.jobs import Job, decode_job
from capforge.keycaps.scad import ArtifactProducer, ScadPipeline

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


@dataclass(frozen=True)
class DriverRole:
    """Render the catalog through worker processes."""


@dataclass(frozen=True)
class WorkerRole:
    """Render a single job in this process."""

    job: Job


Role = Union[DriverRole, WorkerRole]


def resolve_role(job_arg: str | None) -> Role:
    """Decide the process role from the ``--job`` argument.

    Raises:
        UsageError: If a descriptor was given but does not parse.
    """
    if job_arg is None:
        return DriverRole()
    try:
        return WorkerRole(decode_job(job_arg))
    except InvalidJobDescriptor as exc:
        raise UsageError(f"--job expects a job descriptor, got {job_arg!r}", cause=exc) from exc


class Orchestrator:
    """Runs either role against explicit settings.

    Args:
        settings: Output location, concurrency, OpenSCAD configuration.
        catalog: Jobs the driver schedules (default: catalog filtered by
            ``settings.profiles``).
        launcher: Worker launcher used by the driver.
        producer: Artifact pipeline used by the worker.
        console: Where the driver's report is printed.
    """

    def __init__(
        self,
        settings: CapforgeSettings,
        *,
        catalog: Iterable[Job] | None = None,
        launcher: WorkerLauncher | None = None,
        producer: ArtifactProducer | None = None,
        console: Console | None = None,
    ) -> None:
        self.settings = settings
        self._catalog = catalog
        self.launcher = launcher or WorkerLauncher()
        self.producer = producer or ScadPipeline(settings)
        self.console = console or Console()

    def jobs(self) -> list[Job]:
        if self._catalog is not None:
            return list(self._catalog)
        return list(build_catalog(self.settings.profiles))

    # ── Driver ───────────────────────────────────────────────────────

    def build_pool(self, jobs: Iterable[Job]) -> TaskPool:
        pool = TaskPool(self.settings.concurrency, on_settled=self._progress)
        for job in jobs:
            pool.add(job.display_name, self.launcher.operation_for(job))
        return pool

    async def drive(self) -> PoolResult:
        """Render every job in a worker process, at bounded concurrency.

        Raises:
            UsageError: If called from inside a worker process.
        """
        if os.environ.get(WORKER_ENV_FLAG):
            raise UsageError("Driver mode is not allowed inside a worker process")

        self.settings.target_dir.mkdir(parents=True, exist_ok=True)
        jobs = self.jobs()
        logger.info(
            "driver.start",
            jobs=len(jobs),
            concurrency=self.settings.concurrency,
            target_dir=str(self.settings.target_dir),
        )
        result = await self.build_pool(jobs).run()
        logger.info("driver.complete", **{k: v for k, v in result.to_dict().items() if k != "tasks"})
        return result

    def report(self, result: PoolResult) -> int:
        """Print the outcome summary; return the aggregate exit code."""
        self.console.print(
            f"[bold]{result.total}[/bold] tasks: "
            f"[green]{result.succeeded} completed[/green], "
            f"[red]{result.failed} failed[/red] "
            f"in {result.duration_seconds:.1f}s"
        )
        for name, failure in result.failures.items():
            self.console.print(f"  [red]✗[/red] {escape(name)}: {escape(str(failure))}")
        return result.exit_code

    @staticmethod
    def _progress(task: PoolTask) -> None:
        logger.info("driver.task_settled", task=task.name, status=task.status)

    # ── Worker ───────────────────────────────────────────────────────

    def work(self, job: Job) -> int:
        """Render one job in this process; return the process exit code."""
        with LogContext(job=job.display_name, pid=os.getpid()):
            try:
                artifact = self.producer.produce(job)
            except GenerationError as exc:
                logger.error("worker.failed", **exc.to_dict())
                return EXIT_FAILED
            except Exception as exc:
                logger.exception("worker.crashed", category=categorize_error(exc).value)
                return EXIT_FAILED
            logger.info("worker.completed", artifact=str(artifact.path))
            return EXIT_OK


def main(job_arg: str | None = None, settings: CapforgeSettings | None = None) -> int:
    """Resolve the role, configure the process, and run it.

    Returns the process exit code.  Configuration errors (malformed
    descriptor, invalid settings) propagate before any work starts.
    """
    role = resolve_role(job_arg)
    settings = settings or load_settings()
    configure_logging(level=settings.log_level, json_format=settings.json_logs)

    orchestrator = Orchestrator(settings)
    if isinstance(role, WorkerRole):
        return orchestrator.work(role.job)
    result = asyncio.run(orchestrator.drive())
    return orchestrator.report(result)
