"""
Typer entry point for capforge.

``capforge`` with no options drives the whole catalog; ``capforge --job
DESCRIPTOR`` is how the driver re-enters this program as a worker.  Any
other invocation (positional arguments, unknown options, a malformed
descriptor) exits with code 2 before any work starts.
"""

from __future__ import annotations

import typer
from rich.console import Console

from capforge.core.errors import ConfigurationError
from capforge.orchestrator import EXIT_USAGE, main

err_console = Console(stderr=True)

app = typer.Typer(
    name="capforge",
    help="capforge: render the keycap catalog with isolated worker processes.",
    add_completion=False,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        from capforge import __version__

        try:
            v = pkg_version("capforge")
        except PackageNotFoundError:
            v = __version__
        typer.echo(f"capforge {v}")
        raise typer.Exit()


@app.command()
def run(
    job: str | None = typer.Option(  # noqa: UP007
        None,
        "--job",
        help="Serialized job descriptor. Runs a single worker instead of the driver.",
        metavar="DESCRIPTOR",
    ),
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """Render every keycap in the catalog, or one job with --job."""
    try:
        code = main(job)
    except ConfigurationError as exc:
        err_console.print(f"Error: {exc.message}", style="red", markup=False, highlight=False)
        raise typer.Exit(code=EXIT_USAGE)
    raise typer.Exit(code=code)
