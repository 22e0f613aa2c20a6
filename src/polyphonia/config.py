"""Run configuration.

Defaults follow the thresholds biologists have used with SARS-CoV-2 amplicon
data; all of them can be overridden from the CLI.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_PLATE_SIZE = 96

# plate size -> number of columns; rows are size / columns
STANDARD_PLATE_COLUMNS: Dict[int, int] = {
    6: 3,
    12: 4,
    24: 6,
    48: 8,
    96: 12,
    384: 24,
    1536: 48,
    3456: 72,
}

ALL_PAIRS_WARNING_THRESHOLD = 5000


class ConfigurationError(ValueError):
    """Raised for invalid or contradictory configuration, before any comparison."""


@dataclass(frozen=True)
class DetectionParameters:
    """Thresholds shared by allele-table construction and the detector.

    Attributes
    ----------
    min_readcount:
        Minimum minor-allele readcount for a heterozygous locus (inclusive).
    min_maf:
        Minimum minor-allele frequency for a heterozygous locus (inclusive).
    min_depth:
        Minimum read depth; 0 disables depth filtering.
    min_coverage:
        Minimum proportion of the reference covered by unambiguous bases.
    max_mismatches:
        Mismatches tolerated before a comparison is abandoned.
    print_all:
        Emit records even when coverage or mismatch thresholds fail.
    """

    min_readcount: int = 10
    min_maf: float = 0.03
    min_depth: int = 100
    min_coverage: float = 0.95
    max_mismatches: int = 1
    print_all: bool = False

    def validate(self) -> "DetectionParameters":
        if not 0.0 <= self.min_maf <= 1.0:
            raise ConfigurationError(f"Minimum minor allele frequency must be within [0, 1], got {self.min_maf}")
        if not 0.0 <= self.min_coverage <= 1.0:
            raise ConfigurationError(f"Minimum genome coverage must be within [0, 1], got {self.min_coverage}")
        for name in ("min_readcount", "min_depth", "max_mismatches"):
            value = getattr(self, name)
            if value < 0:
                raise ConfigurationError(f"{name} must be >= 0, got {value}")
        return self


@dataclass(frozen=True)
class PlateDimensions:
    rows: int
    columns: int

    @property
    def size(self) -> int:
        return self.rows * self.columns


def resolve_plate_dimensions(
    plate_size: Optional[int] = None,
    rows: Optional[int] = None,
    columns: Optional[int] = None,
) -> PlateDimensions:
    """Work out plate rows and columns.

    Rows and columns of a standard plate size (96 by default) are used unless
    given explicitly. Explicit rows and columns together need no plate size.
    """
    if rows is not None and rows <= 0:
        raise ConfigurationError(f"Plate rows must be positive, got {rows}")
    if columns is not None and columns <= 0:
        raise ConfigurationError(f"Plate columns must be positive, got {columns}")

    if plate_size is None and rows is not None and columns is not None:
        return PlateDimensions(rows=rows, columns=columns)

    size = DEFAULT_PLATE_SIZE if plate_size is None else plate_size
    if size not in STANDARD_PLATE_COLUMNS:
        standard = ", ".join(str(s) for s in sorted(STANDARD_PLATE_COLUMNS))
        raise ConfigurationError(
            f"Plate size {size} is not a standard plate size ({standard}). "
            "Use --plate-rows and --plate-columns for other layouts."
        )
    standard_columns = STANDARD_PLATE_COLUMNS[size]
    return PlateDimensions(
        rows=rows if rows is not None else size // standard_columns,
        columns=columns if columns is not None else standard_columns,
    )


@dataclass(frozen=True)
class Adjacency:
    """Which wells count as neighbours of a well.

    ``whole_plate`` overrides every other flag.
    """

    direct: bool = True
    diagonal: bool = False
    row: bool = False
    column: bool = False
    whole_plate: bool = False

    def any(self) -> bool:
        return self.direct or self.diagonal or self.row or self.column or self.whole_plate


@dataclass(frozen=True)
class PlateOptions:
    dimensions: PlateDimensions
    adjacency: Adjacency = field(default_factory=Adjacency)
