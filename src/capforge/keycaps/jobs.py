"""Keycap jobs and their descriptor encoding.

A :class:`Job` is one keycap to render: a profile, a width in units (``u``)
and, for sculpted profiles, a row.  Jobs are immutable values; they cross
the process boundary as a compact JSON object passed as a single argument::

    {"profile":"sa","u":1.25,"row":2}

Uniform profiles (``dsa``, ``xda``, ``choc``) have the same shape on every
row, so their jobs carry no row.  Sculpted profiles require one (0-5).
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from capforge.core.errors import InvalidJobDescriptor

UNIFORM_PROFILES = ("dsa", "xda", "choc")
SCULPTED_PROFILES = ("mt3", "oem", "sa", "cherry", "des")
PROFILES = UNIFORM_PROFILES + SCULPTED_PROFILES

# DSA is rendered with the row-3 key function; its shape is row-independent.
_UNIFORM_RENDER_ROW = {"dsa": 3}


def format_width(u: float) -> str:
    """Render a width the way artifact names use it: ``1``, ``1.25``.

    Every digit of the float is kept, so distinct widths never share a name.
    """
    text = repr(float(u))
    return text[:-2] if text.endswith(".0") else text


class Job(BaseModel):
    """One keycap to generate."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    profile: str
    u: float = Field(gt=0)
    row: int | None = Field(default=None, ge=0, le=5)

    @model_validator(mode="after")
    def _check_profile_row(self) -> Job:
        if self.profile not in PROFILES:
            raise ValueError(f"unknown profile {self.profile!r}")
        if self.profile in UNIFORM_PROFILES and self.row is not None:
            raise ValueError(f"profile {self.profile!r} does not take a row")
        if self.profile in SCULPTED_PROFILES and self.row is None:
            raise ValueError(f"profile {self.profile!r} requires a row")
        return self

    @property
    def uniform(self) -> bool:
        return self.profile in UNIFORM_PROFILES

    @property
    def display_name(self) -> str:
        """Task name shown in logs and reports, e.g. ``1.25u r2 sa``."""
        row = f" r{self.row}" if self.row is not None else ""
        return f"{format_width(self.u)}u{row} {self.profile}"

    @property
    def artifact_stem(self) -> str:
        """``dsa-1.25`` for uniform profiles, ``sa-2-1.25`` for sculpted ones."""
        if self.uniform:
            return f"{self.profile}-{format_width(self.u)}"
        return f"{self.profile}-{self.row}-{format_width(self.u)}"

    def artifact_filename(self, extension: str) -> str:
        return f"key-{self.artifact_stem}.{extension}"

    @property
    def effective_row(self) -> int | None:
        """Row passed to the profile's key function (None = library default)."""
        if self.uniform:
            return _UNIFORM_RENDER_ROW.get(self.profile)
        return self.row


def encode_job(job: Job) -> str:
    """Serialize ``job`` into its single-argument descriptor."""
    return job.model_dump_json(exclude_none=True)


def decode_job(descriptor: str) -> Job:
    """Parse a descriptor produced by :func:`encode_job`.

    Raises:
        InvalidJobDescriptor: If the text is not a valid job object.
    """
    try:
        return Job.model_validate_json(descriptor)
    except ValidationError as exc:
        raise InvalidJobDescriptor(descriptor, cause=exc) from exc
