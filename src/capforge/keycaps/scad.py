"""Keycap artifact pipeline backed by the OpenSCAD command line.

Workers call :meth:`ScadPipeline.produce` for their one job.  The pipeline
writes a small OpenSCAD program that includes the KeyV2 library, asks the
``openscad`` binary to export it, and reports the output path.  It does
not look inside the exported mesh; success means OpenSCAD exited cleanly
and the file exists.

Example::

    pipeline = ScadPipeline(settings)
    artifact = pipeline.produce(Job(profile="sa", u=1.25, row=2))
    artifact.path  # target/key-sa-2-1.25.stl
"""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from capforge.core.errors import GenerationError
from capforge.core.logging import get_logger
from capforge.core.settings import CapforgeSettings
from capforge.keycaps.jobs import Job, format_width

logger = get_logger(__name__)

HEADER = """\
include <KeyV2/includes.scad>
$support_type = "disable";
$stem_support_type = "disable";
"""

# Lines of OpenSCAD stderr kept on a GenerationError.
_STDERR_TAIL = 20


@dataclass(frozen=True)
class Artifact:
    """A generated output file."""

    job: Job
    path: Path


class ArtifactProducer(Protocol):
    """Anything that can turn a job into an artifact (or raise GenerationError)."""

    def produce(self, job: Job) -> Artifact: ...


def render_source(job: Job) -> str:
    """OpenSCAD program for one keycap."""
    row = "" if job.effective_row is None else str(job.effective_row)
    stem = '$stem_type = "choc";' if job.profile == "choc" else ""
    body = f"u({format_width(job.u)}) {job.profile}_row({row}) key();"
    return HEADER + (f"{stem} {body}" if stem else body) + "\n"


class ScadPipeline:
    """Produces keycap meshes by shelling out to OpenSCAD."""

    def __init__(self, settings: CapforgeSettings) -> None:
        self.settings = settings

    def output_path(self, job: Job) -> Path:
        return self.settings.target_dir / job.artifact_filename(self.settings.export_format)

    def write_source(self, job: Job) -> Path:
        """Write the job's ``.scad`` program to its scratch directory."""
        scratch = self.settings.target_dir / "scad"
        scratch.mkdir(parents=True, exist_ok=True)
        source = scratch / f"{job.artifact_stem}.scad"
        source.write_text(render_source(job), encoding="utf-8")
        return source

    def build_env(self) -> dict[str, str]:
        env = dict(os.environ)
        # ``include <KeyV2/...>`` resolves against the library's parent.
        library_root = str(self.settings.keyv2_dir.resolve().parent)
        existing = env.get("OPENSCADPATH")
        env["OPENSCADPATH"] = library_root if not existing else os.pathsep.join([library_root, existing])
        return env

    def produce(self, job: Job) -> Artifact:
        """Render ``job`` and return the artifact.

        Raises:
            GenerationError: If OpenSCAD is missing, fails, or writes nothing.
        """
        source = self.write_source(job).resolve()
        output = self.output_path(job).resolve()
        output.parent.mkdir(parents=True, exist_ok=True)
        argv = [self.settings.openscad_binary, "-o", str(output), str(source)]

        logger.info("scad.render", job=job.display_name, output=str(output))
        try:
            completed = subprocess.run(
                argv,
                env=self.build_env(),
                cwd=str(source.parent),
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as exc:
            raise GenerationError(
                f"Could not run OpenSCAD ({self.settings.openscad_binary}): {exc}",
                cause=exc,
            ).with_context(job=job.display_name) from exc

        if completed.returncode != 0:
            tail = "\n".join(completed.stderr.splitlines()[-_STDERR_TAIL:])
            raise GenerationError(
                f"OpenSCAD exited with code {completed.returncode} for {job.display_name}",
            ).with_context(job=job.display_name, exit_code=completed.returncode, stderr=tail)

        if not output.is_file():
            raise GenerationError(
                f"OpenSCAD reported success but {output} was not written",
            ).with_context(job=job.display_name)

        return Artifact(job=job, path=output)
