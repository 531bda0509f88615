"""Keycap jobs, the default catalog, and the OpenSCAD artifact pipeline."""

from capforge.keycaps.catalog import ROWS, WIDTHS, build_catalog, default_catalog
from capforge.keycaps.jobs import Job, decode_job, encode_job
from capforge.keycaps.scad import Artifact, ArtifactProducer, ScadPipeline

__all__ = [
    "ROWS",
    "WIDTHS",
    "Artifact",
    "ArtifactProducer",
    "Job",
    "ScadPipeline",
    "build_catalog",
    "decode_job",
    "default_catalog",
    "encode_job",
]
