"""Microplate topology: well identifiers, plate maps and neighbour sets.

Rows are labelled with spreadsheet-style letters (A..Z, AA..AZ, BA, ...),
i.e. bijective base 26, and columns are 1-indexed integers.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Collection, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from .config import Adjacency, ConfigurationError, PlateDimensions
from .models import Diagnostic

logger = logging.getLogger(__name__)

_WELL_RE = re.compile(r"^\s*([A-Za-z]+)\s*(\d+)\s*$")


class PlateConfigurationError(ConfigurationError):
    """A plate map does not fit the declared plate dimensions."""


def row_letters(n: int) -> str:
    """1 -> 'A', 26 -> 'Z', 27 -> 'AA', 703 -> 'AAA'."""
    if n < 1:
        raise ValueError(f"Row number must be >= 1, got {n}")
    letters: List[str] = []
    while n > 0:
        n, rem = divmod(n - 1, 26)
        letters.append(chr(ord("A") + rem))
    return "".join(reversed(letters))


def row_number(letters: str) -> int:
    """Inverse of :func:`row_letters`."""
    if not letters or not letters.isalpha() or not letters.isascii():
        raise ValueError(f"Row letters must be a non-empty A-Z sequence, got {letters!r}")
    n = 0
    for ch in letters.upper():
        n = n * 26 + (ord(ch) - ord("A") + 1)
    return n


@dataclass(frozen=True, order=True)
class Well:
    row: int
    column: int

    @property
    def letters(self) -> str:
        return row_letters(self.row)

    def __str__(self) -> str:
        return f"{self.letters}{self.column}"


def parse_well(text: str) -> Optional[Well]:
    """Parse identifiers such as 'A1', 'h12' or 'AB 3'; returns None if malformed."""
    m = _WELL_RE.match(text)
    if not m:
        return None
    return Well(row=row_number(m.group(1)), column=int(m.group(2)))


@dataclass(frozen=True)
class PlateMap:
    """Sample placement on one plate.

    Attributes
    ----------
    name:
        Plate name, used to label per-plate outputs.
    dimensions:
        Declared plate rows and columns.
    occupancy:
        Sample name by occupied well.
    """

    name: str
    dimensions: PlateDimensions
    occupancy: Mapping[Well, str] = field(default_factory=dict)

    @property
    def wells(self) -> List[Well]:
        return sorted(self.occupancy)

    @property
    def samples(self) -> List[str]:
        return [self.occupancy[w] for w in self.wells]

    def well_of(self, sample: str) -> Optional[Well]:
        for w, s in self.occupancy.items():
            if s == sample:
                return w
        return None

    def restricted_to(self, samples: Collection[str]) -> "PlateMap":
        keep = set(samples)
        return PlateMap(
            name=self.name,
            dimensions=self.dimensions,
            occupancy={w: s for w, s in self.occupancy.items() if s in keep},
        )

    @classmethod
    def from_rows(
        cls,
        name: str,
        rows: Iterable[Tuple[str, str]],
        dimensions: PlateDimensions,
    ) -> Tuple["PlateMap", List[Diagnostic]]:
        """Build a plate map from (sample, well identifier) pairs.

        Malformed identifiers are skipped with a warning. A well outside the
        declared dimensions means the plate size is wrong and is fatal.
        """
        occupancy: Dict[Well, str] = {}
        diagnostics: List[Diagnostic] = []

        for sample, text in rows:
            well = parse_well(text)
            if well is None:
                msg = f"Plate map {name}: ignoring unparseable well '{text}' for sample {sample}."
                logger.warning(msg)
                diagnostics.append(Diagnostic(level="warning", message=msg, sample=sample))
                continue
            if well.column < 1 or well.column > dimensions.columns or well.row > dimensions.rows:
                raise PlateConfigurationError(
                    f"Plate map {name}: well {text.strip()} (sample {sample}) lies outside a plate of "
                    f"{dimensions.rows} rows x {dimensions.columns} columns "
                    f"(last well {row_letters(dimensions.rows)}{dimensions.columns}). "
                    "Set --plate-size, --plate-rows or --plate-columns to match your plate."
                )
            if well in occupancy:
                msg = f"Plate map {name}: well {well} listed more than once; keeping sample {occupancy[well]}."
                logger.warning(msg)
                diagnostics.append(Diagnostic(level="warning", message=msg, sample=sample))
                continue
            occupancy[well] = sample

        return cls(name=name, dimensions=dimensions, occupancy=occupancy), diagnostics


def read_plate_map(
    path: str | Path,
    dimensions: PlateDimensions,
) -> Tuple[PlateMap, List[Diagnostic]]:
    """Read a tab-separated plate map: sample name, then well."""
    p = Path(path)
    rows: List[Tuple[str, str]] = []
    with open(p, "rt", encoding="utf-8") as fh:
        for line in fh:
            line = line.rstrip("\r\n")
            if not line.strip():
                continue
            fields = line.split("\t")
            if len(fields) < 2 or not fields[0] or not fields[1]:
                continue
            rows.append((fields[0], fields[1]))
    return PlateMap.from_rows(plate_name(p), rows, dimensions)


def plate_name(path: str | Path) -> str:
    name = Path(path).name
    stem, sep, _ = name.rpartition(".")
    return stem if sep and stem else name


def _direct(well: Well) -> List[Well]:
    r, c = well.row, well.column
    return [Well(r - 1, c), Well(r + 1, c), Well(r, c - 1), Well(r, c + 1)]


def _diagonal(well: Well) -> List[Well]:
    r, c = well.row, well.column
    return [Well(r - 1, c - 1), Well(r - 1, c + 1), Well(r + 1, c - 1), Well(r + 1, c + 1)]


def neighbors(
    well: Well,
    adjacency: Adjacency,
    plate_map: PlateMap,
    *,
    included: Optional[Collection[str]] = None,
) -> List[str]:
    """Samples neighbouring ``well`` on ``plate_map``, sorted by well.

    Only occupied wells holding included samples are returned, never the well
    itself or the sample placed in it.
    """
    occupied = plate_map.occupancy
    candidates: Set[Well] = set()

    if adjacency.whole_plate:
        candidates.update(occupied)
    else:
        if adjacency.direct:
            candidates.update(_direct(well))
        if adjacency.diagonal:
            candidates.update(_diagonal(well))
        if adjacency.row:
            candidates.update(w for w in occupied if w.row == well.row)
        if adjacency.column:
            candidates.update(w for w in occupied if w.column == well.column)

    self_sample = occupied.get(well)
    keep = None if included is None else set(included)

    out: List[str] = []
    for w in sorted(candidates):
        if w == well or w not in occupied:
            continue
        sample = occupied[w]
        if sample == self_sample:
            continue
        if keep is not None and sample not in keep:
            continue
        if sample not in out:
            out.append(sample)
    return out
