"""
capforge - batch keycap model generation with process-isolated workers.

- capforge.execution: bounded task pool and worker launcher
- capforge.keycaps: job model, catalog, OpenSCAD pipeline
- capforge.orchestrator: driver / worker entry point
"""

__version__ = "0.1.0"
