"""Reference-anchored alignment store.

All comparisons happen on sequences from which every alignment column with a
gap in the reference has been removed. In that space the position of a base
equals its position on the unaligned reference, so allele tables, read depths
and masked positions (all produced against the unaligned reference) can index
sequences directly. :class:`ReferenceCoordinates` is the only place where raw
alignment columns and reference positions are converted into each other.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Collection, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pysam

from .external import ensure_executable_in_path, run_command
from .models import AMBIGUOUS_BASE, AlignmentColumn, OriginalPosition

logger = logging.getLogger(__name__)

GAP_CHARACTERS = (b"-", b".", b" ")
_BASES = (b"A", b"C", b"G", b"T")

MAFFT_HINT = (
    "Ubuntu: sudo apt-get install -y mafft\n"
    "Conda/mamba: mamba install -c bioconda mafft\n"
    "Or pass an existing alignment with --consensus-aligned."
)


class AlignmentError(ValueError):
    """Raised when aligned sequences cannot be placed in a common coordinate space."""


def _as_array(sequence: str) -> np.ndarray:
    return np.frombuffer(sequence.encode("ascii"), dtype="S1")


def _is_gap(arr: np.ndarray) -> np.ndarray:
    return np.isin(arr, GAP_CHARACTERS)


class ReferenceCoordinates:
    """Translation between alignment columns and unaligned reference positions."""

    def __init__(self, reference_aligned: str) -> None:
        arr = _as_array(reference_aligned)
        # index p-1 holds the alignment column of reference position p
        self._columns = np.flatnonzero(~_is_gap(arr)) + 1
        self._n_columns = int(arr.shape[0])

    @property
    def reference_length(self) -> int:
        return int(self._columns.shape[0])

    @property
    def alignment_length(self) -> int:
        return self._n_columns

    def column_of(self, position: OriginalPosition) -> AlignmentColumn:
        if not 1 <= position <= self.reference_length:
            raise IndexError(f"Reference position {position} outside 1..{self.reference_length}")
        return AlignmentColumn(int(self._columns[position - 1]))

    def position_of(self, column: AlignmentColumn) -> Optional[OriginalPosition]:
        """Reference position at an alignment column, or None for a reference gap."""
        idx = int(np.searchsorted(self._columns, column))
        if idx < self.reference_length and int(self._columns[idx]) == column:
            return OriginalPosition(idx + 1)
        return None


def strip_reference_gaps(
    reference_aligned: str,
    sequences_aligned: Mapping[str, str],
) -> Tuple[str, Dict[str, str]]:
    """Remove every column where the reference has a gap, from every sequence.

    Stripping already-stripped input returns it unchanged.
    """
    ref = _as_array(reference_aligned)
    keep = ~_is_gap(ref)

    stripped: Dict[str, str] = {}
    for name, seq in sequences_aligned.items():
        if len(seq) != len(reference_aligned):
            raise AlignmentError(
                f"Aligned sequence '{name}' has length {len(seq)}, "
                f"but the aligned reference has length {len(reference_aligned)}."
            )
        stripped[name] = _as_array(seq)[keep].tobytes().decode("ascii")

    n_removed = int((~keep).sum())
    if n_removed:
        logger.info("Removed %d alignment columns with gaps in the reference", n_removed)
    return ref[keep].tobytes().decode("ascii"), stripped


def unambiguous_base_count(sequence: str) -> int:
    if not sequence:
        return 0
    return int(np.isin(_as_array(sequence.upper()), _BASES).sum())


def coverage(sequence: str, reference_length: int) -> float:
    return unambiguous_base_count(sequence) / reference_length


def mask(
    sequence: str,
    masked_positions: Collection[int] = (),
    read_depth: Optional[Mapping[int, int]] = None,
    min_depth: int = 0,
    coordinates: Optional[ReferenceCoordinates] = None,
) -> str:
    """Return ``sequence`` with masked and low-depth positions replaced by N.

    Positions are reference positions. Without ``coordinates`` the sequence
    must already be gap-stripped; with them it is a raw aligned sequence and
    each position is translated to its alignment column. When ``min_depth`` is
    positive, a position without a recorded depth counts as depth 0.
    """
    if coordinates is None:
        n_positions = len(sequence)
    else:
        if len(sequence) != coordinates.alignment_length:
            raise AlignmentError(
                f"Sequence length {len(sequence)} does not match alignment length {coordinates.alignment_length}."
            )
        n_positions = coordinates.reference_length

    to_mask = {p for p in masked_positions if 1 <= p <= n_positions}
    if min_depth > 0:
        depth = read_depth or {}
        to_mask.update(p for p in range(1, n_positions + 1) if depth.get(p, 0) < min_depth)

    if not to_mask:
        return sequence

    bases = list(sequence)
    for p in to_mask:
        idx = p - 1 if coordinates is None else coordinates.column_of(OriginalPosition(p)) - 1
        bases[idx] = AMBIGUOUS_BASE
    return "".join(bases)


@dataclass(frozen=True)
class AlignedGenomeStore:
    """The gap-stripped reference and consensus sequences of all samples.

    Attributes
    ----------
    reference_name:
        Name of the reference record.
    reference:
        Gap-stripped reference; identical to the unaligned reference.
    consensus:
        Gap-stripped consensus by sample, after masking.
    pre_masking_consensus:
        Gap-stripped consensus by sample, before masking.
    """

    reference_name: str
    reference: str
    consensus: Mapping[str, str] = field(default_factory=dict)
    pre_masking_consensus: Mapping[str, str] = field(default_factory=dict)

    @property
    def reference_length(self) -> int:
        """Unambiguous bases in the reference; the coverage denominator."""
        return unambiguous_base_count(self.reference)

    @classmethod
    def from_alignment(
        cls,
        records: Sequence[Tuple[str, str]],
        *,
        reference_name: Optional[str] = None,
    ) -> "AlignedGenomeStore":
        """Build the store from aligned records; the reference must be the first record
        (or the record named ``reference_name``). Masking is applied separately.
        """
        if not records:
            raise AlignmentError("Alignment is empty.")

        by_name: Dict[str, str] = {}
        for name, seq in records:
            if name in by_name:
                logger.warning("Sequence name '%s' appears more than once in alignment; keeping the first.", name)
                continue
            by_name[name] = seq.upper()

        ref_name = reference_name if reference_name is not None else records[0][0]
        if ref_name not in by_name:
            raise AlignmentError(f"Reference '{ref_name}' not found in alignment.")

        ref_aligned = by_name.pop(ref_name)
        reference, stripped = strip_reference_gaps(ref_aligned, by_name)
        return cls(
            reference_name=ref_name,
            reference=reference,
            consensus=dict(stripped),
            pre_masking_consensus=dict(stripped),
        )

    def with_masking(self, masked: Mapping[str, str]) -> "AlignedGenomeStore":
        consensus = dict(self.consensus)
        consensus.update(masked)
        return AlignedGenomeStore(
            reference_name=self.reference_name,
            reference=self.reference,
            consensus=consensus,
            pre_masking_consensus=self.pre_masking_consensus,
        )


def read_fasta(path: str | Path) -> List[Tuple[str, str]]:
    """Read (name, uppercase sequence) records from a FASTA file."""
    records: List[Tuple[str, str]] = []
    with pysam.FastxFile(str(path)) as fh:
        for entry in fh:
            name = entry.name if not entry.comment else f"{entry.name} {entry.comment}"
            records.append((name, (entry.sequence or "").upper()))
    return records


def write_fasta(path: str | Path, records: Sequence[Tuple[str, str]], *, width: int = 60) -> Path:
    out = Path(path)
    lines: List[str] = []
    for name, seq in records:
        lines.append(f">{name}")
        for i in range(0, len(seq), width):
            lines.append(seq[i : i + width])
    out.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return out


def align_with_mafft(
    records: Sequence[Tuple[str, str]],
    *,
    workdir: str | Path,
    threads: int = 1,
) -> List[Tuple[str, str]]:
    """Align the reference (first record) and consensus sequences with MAFFT."""
    ensure_executable_in_path("mafft", hint=MAFFT_HINT)

    workdir_p = Path(workdir)
    workdir_p.mkdir(parents=True, exist_ok=True)
    unaligned = write_fasta(workdir_p / "consensus_genomes_concat.fasta", records)
    aligned = workdir_p / "consensus_genomes_aligned.fasta"

    cmd = ["mafft", "--thread", str(max(1, threads)), str(unaligned)]
    run_command(cmd, stdout_path=aligned)
    logger.info("MAFFT alignment written: %s", aligned)
    return read_fasta(aligned)
