"""Settings for the capforge driver and its workers.

Configuration is read from ``CAPFORGE_*`` environment variables and an
optional ``.env`` file.  The orchestrator receives a settings instance
explicitly; nothing reads module-level globals, so tests can point the
whole system at a temporary directory.

Examples:
    >>> settings = load_settings(target_dir="/tmp/keys", concurrency=2)
    >>> settings.concurrency
    2

Workers inherit the driver's environment, so a driver started with
``CAPFORGE_TARGET_DIR=/data/keys`` writes all artifacts there.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from capforge.core.errors import ConfigurationError

EXPORT_FORMATS = ("stl", "3mf", "off", "amf", "csg")


def _default_concurrency() -> int:
    return max(os.cpu_count() or 1, 1)


class CapforgeSettings(BaseSettings):
    """Runtime configuration.

    Fields
    ──────
    target_dir      : Output directory for generated artifacts
    library_dir     : KeyV2 OpenSCAD library (default ``<target_dir>/KeyV2``)
    concurrency     : Maximum simultaneous worker processes
    profiles        : Restrict the catalog to these profiles (None = all)
    openscad_binary : OpenSCAD executable used by workers
    export_format   : Artifact file extension passed to OpenSCAD
    log_level       : Structlog log level
    json_logs       : Force JSON (True) / console (False) logs, None = auto
    """

    model_config = SettingsConfigDict(
        env_prefix="CAPFORGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Output ───────────────────────────────────────────────────
    target_dir: Path = Path("target")
    library_dir: Path | None = None
    export_format: str = "stl"

    # ── Scheduling ───────────────────────────────────────────────
    concurrency: int = Field(default_factory=_default_concurrency, ge=1)
    profiles: list[str] | None = None

    # ── Generation ───────────────────────────────────────────────
    openscad_binary: str = "openscad"

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None

    @field_validator("export_format")
    @classmethod
    def _check_format(cls, value: str) -> str:
        value = value.lower().lstrip(".")
        if value not in EXPORT_FORMATS:
            raise ValueError(f"export_format must be one of {', '.join(EXPORT_FORMATS)}")
        return value

    @field_validator("log_level")
    @classmethod
    def _check_level(cls, value: str) -> str:
        value = value.upper()
        if value not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level {value!r}")
        return value

    @property
    def keyv2_dir(self) -> Path:
        """Directory containing ``includes.scad`` of the KeyV2 library."""
        return self.library_dir if self.library_dir is not None else self.target_dir / "KeyV2"


def load_settings(**overrides: Any) -> CapforgeSettings:
    """Build settings from the environment plus explicit overrides.

    Raises:
        ConfigurationError: If any value fails validation.
    """
    try:
        return CapforgeSettings(**overrides)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid settings: {exc}", cause=exc) from exc
