"""The default keycap catalog.

Every uniform profile is generated in each width; every sculpted profile
in each width and row.  Order matters only for scheduling: the pool
starts tasks in the order the catalog yields them.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Iterator

from capforge.core.errors import ConfigurationError
from capforge.keycaps.jobs import (
    PROFILES,
    SCULPTED_PROFILES,
    UNIFORM_PROFILES,
    Job,
    format_width,
)

WIDTHS: tuple[float, ...] = (1, 1.25, 1.5, 2)
ROWS: tuple[int, ...] = tuple(range(6))


def _reject_duplicates(kind: str, values: list[str]) -> None:
    repeated = sorted(v for v, count in Counter(values).items() if count > 1)
    if repeated:
        raise ConfigurationError(f"Duplicate {kind}(s): {', '.join(repeated)}")


def build_catalog(
    profiles: Iterable[str] | None = None,
    widths: Iterable[float] = WIDTHS,
    rows: Iterable[int] = ROWS,
) -> Iterator[Job]:
    """Yield jobs for ``profiles`` (default: all) in catalog order.

    Uniform profiles come first, then sculpted ones; within a sculpted
    profile jobs are ordered by width, then row.

    Raises:
        ConfigurationError: If a requested profile is unknown, or a width or
            row is listed twice (their jobs would share a task name).
    """
    selected = list(PROFILES if profiles is None else profiles)
    unknown = sorted(set(selected) - set(PROFILES))
    if unknown:
        raise ConfigurationError(f"Unknown profile(s): {', '.join(unknown)}")

    widths = tuple(widths)
    rows = tuple(rows)
    _reject_duplicates("width", [format_width(u) for u in widths])
    _reject_duplicates("row", [str(row) for row in rows])

    for profile in UNIFORM_PROFILES:
        if profile in selected:
            for u in widths:
                yield Job(profile=profile, u=u)

    for profile in SCULPTED_PROFILES:
        if profile in selected:
            for u in widths:
                for row in rows:
                    yield Job(profile=profile, u=u, row=row)


def default_catalog() -> list[Job]:
    """All 132 keycaps: 3 uniform x 4 widths + 5 sculpted x 4 widths x 6 rows."""
    return list(build_catalog())
