"""
Shared pytest fixtures for capforge tests.

- ``settings``: settings rooted in a temporary target directory
- ``fake_openscad``: executable stand-in for the OpenSCAD binary
- autouse isolation of logging state and the worker-process marker
"""

from __future__ import annotations

import sys
from collections.abc import Generator
from pathlib import Path

import pytest
import structlog

from capforge.core.settings import CapforgeSettings, load_settings
from capforge.execution.launcher import WORKER_ENV_FLAG


@pytest.fixture(autouse=True)
def isolate_process_state(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Tests run as a driver unless they say otherwise; logging is reset after."""
    monkeypatch.delenv(WORKER_ENV_FLAG, raising=False)
    for name in ("CAPFORGE_CONCURRENCY", "CAPFORGE_TARGET_DIR", "CAPFORGE_PROFILES",
                 "CAPFORGE_EXPORT_FORMAT", "CAPFORGE_OPENSCAD_BINARY", "CAPFORGE_LIBRARY_DIR",
                 "CAPFORGE_LOG_LEVEL", "CAPFORGE_JSON_LOGS"):
        monkeypatch.delenv(name, raising=False)
    yield
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()


@pytest.fixture
def settings(tmp_path: Path) -> CapforgeSettings:
    return load_settings(target_dir=tmp_path / "target", concurrency=2)


_FAKE_OPENSCAD = """#!/bin/sh
out="$2"
case "$out" in
  *key-sa-1-1.*) echo "ERROR: rendering row 1 failed" >&2; exit 1;;
esac
echo "solid fake" > "$out"
"""


@pytest.fixture
def fake_openscad(tmp_path: Path) -> Path:
    """A POSIX shell script standing in for the ``openscad`` binary.

    Succeeds and writes its ``-o`` file, except for ``key-sa-1-1.*`` where
    it prints an error and exits 1.
    """
    if sys.platform == "win32":
        pytest.skip("fake openscad is a POSIX shell script")
    script = tmp_path / "bin" / "openscad"
    script.parent.mkdir(parents=True, exist_ok=True)
    script.write_text(_FAKE_OPENSCAD)
    script.chmod(0o755)
    return script
