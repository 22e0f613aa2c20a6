from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Mapping, NewType, Optional, Tuple, Union

# 1-indexed position on the unaligned reference. After reference-gap columns are
# stripped from an alignment, positions in every stripped sequence are of this kind.
OriginalPosition = NewType("OriginalPosition", int)

# 1-indexed column of the raw multiple-sequence alignment.
AlignmentColumn = NewType("AlignmentColumn", int)

BASES = frozenset("ACGT")
AMBIGUOUS_BASE = "N"

CONTAMINATION_MINOR = "minor alleles"
CONTAMINATION_MINOR_AND_CONSENSUS = "minor and consensus-level"
CONTAMINATION_CONSENSUS = "consensus-level"


def is_unambiguous_base(base: str) -> bool:
    return base in BASES


@dataclass(frozen=True)
class HeterozygosityRow:
    """One raw line of a heterozygosity table, before any filtering.

    Attributes
    ----------
    reference:
        Name of the reference sequence the position refers to.
    position:
        1-based position on the unaligned reference.
    major, minor:
        Most and second-most frequent base at the position.
    major_readcount, minor_readcount:
        Reads supporting each allele.
    major_frequency, minor_frequency:
        Allele frequencies in [0, 1].
    """

    reference: str
    position: int
    major: str
    major_readcount: int
    major_frequency: float
    minor: str
    minor_readcount: int
    minor_frequency: float


@dataclass(frozen=True)
class AlleleEntry:
    major: str
    major_readcount: int
    major_frequency: float
    minor: str
    minor_readcount: int
    minor_frequency: float


@dataclass(frozen=True)
class AlleleTable:
    """Filtered heterozygous loci of one sample, keyed by position."""

    entries: Mapping[int, AlleleEntry] = field(default_factory=dict)

    @property
    def num_positions_with_heterozygosity(self) -> int:
        return len(self.entries)

    @property
    def positions(self) -> Tuple[int, ...]:
        return tuple(sorted(self.entries))

    def entry(self, position: int) -> Optional[AlleleEntry]:
        return self.entries.get(position)

    def __contains__(self, position: object) -> bool:
        return position in self.entries

    def alleles(self) -> Tuple[Tuple[int, str], ...]:
        """(position, major + minor) for every locus, ascending by position."""
        return tuple((p, self.entries[p].major + self.entries[p].minor) for p in self.positions)


@dataclass(frozen=True)
class BamSource:
    """Aligned reads; reduced to a VCF by an external variant caller."""

    path: str


@dataclass(frozen=True)
class VcfSource:
    """Variant calls; reduced to heterozygosity rows."""

    path: str


@dataclass(frozen=True)
class HeterozygosityTableSource:
    """An unparsed heterozygosity table on disk."""

    path: str


# Within-sample diversity at any preprocessing stage. Only AlleleTable is fully
# preprocessed and may reach the detector.
DiversitySource = Union[BamSource, VcfSource, HeterozygosityTableSource, AlleleTable]


@dataclass(frozen=True)
class Sample:
    """A sample ready for comparison.

    Attributes
    ----------
    name:
        Unique sample identifier.
    consensus:
        Gap-stripped consensus after read-depth and user masking.
    pre_masking_consensus:
        Gap-stripped consensus before masking; used for reporting only.
    diversity:
        Within-sample diversity source, an ``AlleleTable`` once preprocessed.
    read_depth:
        Read depth by reference position, when depth filtering is active.
    plate_positions:
        Well identifier by plate map name.
    """

    name: str
    consensus: Optional[str]
    pre_masking_consensus: Optional[str]
    diversity: Optional[DiversitySource]
    read_depth: Optional[Mapping[int, int]] = None
    plate_positions: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ContaminationRecord:
    """Result of one directional comparison (contaminated <- contaminating).

    Positions in ``heterozygous_alleles``, ``matched_alleles`` and
    ``mismatches`` are ascending. Coverage values are proportions of the
    reference length.
    """

    contaminated: str
    contaminating: str

    contaminated_bases: int
    contaminated_coverage: float
    contaminated_pre_masking_bases: int
    contaminated_pre_masking_coverage: float
    contaminating_bases: int
    contaminating_coverage: float
    contaminating_pre_masking_bases: int
    contaminating_pre_masking_coverage: float

    num_positions_with_heterozygosity: int
    heterozygous_alleles: Tuple[Tuple[int, str], ...]

    minor_alleles_matched: int
    major_alleles_matched: int
    heterozygous_positions_matched: Optional[float]
    matched_alleles: Tuple[Tuple[int, str], ...]
    num_mismatches: int
    mismatches: Tuple[Tuple[int, str], ...]

    contamination_type: str
    median_frequency: float
    min_frequency: Optional[float]
    max_frequency: Optional[float]
    matched_frequencies: Tuple[float, ...]

    exceeds_max_mismatches: bool = False
    meets_min_coverage: bool = True

    @property
    def pair(self) -> Tuple[str, str]:
        return (self.contaminated, self.contaminating)


@dataclass(frozen=True)
class Diagnostic:
    """A recoverable problem surfaced alongside results."""

    level: str  # 'warning' or 'info'
    message: str
    sample: Optional[str] = None
    pair: Optional[Tuple[str, str]] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "level": self.level,
            "message": self.message,
            "sample": self.sample,
            "pair": list(self.pair) if self.pair else None,
        }
