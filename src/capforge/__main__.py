"""``python -m capforge``: also the worker re-entry point."""

from capforge.cli.app import app

app(prog_name="capforge")
