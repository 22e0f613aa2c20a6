"""Pairwise contamination detection.

For an ordered pair (contaminated, contaminating) the detector asks whether
the contaminating sample's consensus alleles appear among the alleles of the
contaminated sample: as minor alleles at its heterozygous positions, or as its
major/consensus alleles elsewhere. A small number of disagreeing alleles is
tolerated; more than ``max_mismatches`` rules the contaminating sample out.

The comparison is directional. Both directions of a pair are evaluated
independently by the scheduler.
"""

from __future__ import annotations

import logging
from typing import Collection, List, Mapping, Optional, Tuple

import numpy as np

from .alignment import coverage, unambiguous_base_count
from .config import DetectionParameters
from .models import (
    CONTAMINATION_CONSENSUS,
    CONTAMINATION_MINOR,
    CONTAMINATION_MINOR_AND_CONSENSUS,
    AlleleTable,
    ContaminationRecord,
    Sample,
    is_unambiguous_base,
)

logger = logging.getLogger(__name__)

_BASES = (b"A", b"C", b"G", b"T")


class MissingSampleData(ValueError):
    """One side of a comparison lacks a consensus or an allele table."""


class InvariantViolation(RuntimeError):
    """A sample reached the detector before preprocessing was complete."""


def allele_table_of(sample: Sample) -> AlleleTable:
    if sample.diversity is None:
        raise MissingSampleData(f"Sample {sample.name} has no within-sample diversity data.")
    if not isinstance(sample.diversity, AlleleTable):
        raise InvariantViolation(
            f"Sample {sample.name} still holds a {type(sample.diversity).__name__}; "
            "within-sample diversity must be reduced to an allele table before comparison."
        )
    return sample.diversity


def median_frequency(frequencies: List[float]) -> float:
    """Median of matched allele frequencies; 1.0 when nothing matched."""
    if not frequencies:
        return 1.0
    return float(np.median(np.asarray(frequencies, dtype=float)))


def classify_contamination(minor_matched: int, major_matched: int) -> str:
    if minor_matched and not major_matched:
        return CONTAMINATION_MINOR
    if minor_matched and major_matched:
        return CONTAMINATION_MINOR_AND_CONSENSUS
    return CONTAMINATION_CONSENSUS


def _depth_array(read_depth: Optional[Mapping[int, int]], length: int) -> np.ndarray:
    """Depth indexed by position (index 0 unused); missing positions are 0."""
    arr = np.zeros(length + 1, dtype=np.int64)
    if read_depth:
        positions = np.fromiter(read_depth.keys(), dtype=np.int64, count=len(read_depth))
        depths = np.fromiter(read_depth.values(), dtype=np.int64, count=len(read_depth))
        ok = (positions >= 1) & (positions <= length)
        arr[positions[ok]] = depths[ok]
    return arr


def _depth_ok(sample: Sample, position: int, min_depth: int) -> bool:
    if not min_depth:
        return True
    return (sample.read_depth or {}).get(position, 0) >= min_depth


def detect_contamination(
    contaminated: Sample,
    contaminating: Sample,
    *,
    params: DetectionParameters,
    reference_length: int,
    masked_positions: Collection[int] = (),
) -> Optional[ContaminationRecord]:
    """Decide whether ``contaminating`` may have contaminated ``contaminated``.

    Returns None when the pair is ruled out (insufficient coverage or too many
    mismatches), unless ``params.print_all`` is set, in which case a record is
    always produced and flagged.

    Raises
    ------
    MissingSampleData
        Either sample lacks a consensus or within-sample diversity data.
    InvariantViolation
        Either sample's diversity has not been reduced to an allele table.
    """
    for s in (contaminated, contaminating):
        if not s.consensus:
            raise MissingSampleData(f"Sample {s.name} has no consensus genome.")
    table = allele_table_of(contaminated)
    allele_table_of(contaminating)

    consensus_a: str = contaminated.consensus  # type: ignore[assignment]
    consensus_b: str = contaminating.consensus  # type: ignore[assignment]
    if len(consensus_a) != len(consensus_b):
        raise MissingSampleData(
            f"Consensus genomes of {contaminated.name} and {contaminating.name} are not aligned "
            f"({len(consensus_a)} vs {len(consensus_b)} bases)."
        )

    bases_a = unambiguous_base_count(consensus_a)
    bases_b = unambiguous_base_count(consensus_b)
    cov_a = bases_a / reference_length
    cov_b = bases_b / reference_length
    meets_min_coverage = cov_a >= params.min_coverage and cov_b >= params.min_coverage
    if not meets_min_coverage and not params.print_all:
        return None

    masked = set(masked_positions)
    min_depth = params.min_depth
    max_mismatches = params.max_mismatches

    minor_matched = 0
    major_matched = 0
    matched_alleles: List[Tuple[int, str]] = []
    matched_frequencies: List[float] = []
    mismatches: List[Tuple[int, str]] = []

    # 1) heterozygous positions of the contaminated sample
    for p in table.positions:
        if p in masked or p > len(consensus_b):
            continue
        if not (_depth_ok(contaminating, p, min_depth) and _depth_ok(contaminated, p, min_depth)):
            continue
        b = consensus_b[p - 1]
        if not is_unambiguous_base(b):
            continue
        entry = table.entries[p]
        if b == entry.minor:
            minor_matched += 1
            matched_alleles.append((p, b))
            matched_frequencies.append(entry.minor_frequency)
        elif b == entry.major:
            major_matched += 1
            matched_alleles.append((p, b))
            matched_frequencies.append(entry.major_frequency)
        else:
            mismatches.append((p, b))
            if len(mismatches) > max_mismatches and not params.print_all:
                return None

    # 2) every other position: consensus-level disagreement
    arr_a = np.frombuffer(consensus_a.encode("ascii"), dtype="S1")
    arr_b = np.frombuffer(consensus_b.encode("ascii"), dtype="S1")
    differs = (arr_a != arr_b) & np.isin(arr_a, _BASES) & np.isin(arr_b, _BASES)

    excluded = [p - 1 for p in table.positions if p <= len(consensus_a)]
    excluded.extend(p - 1 for p in masked if 1 <= p <= len(consensus_a))
    if excluded:
        differs[np.asarray(excluded, dtype=np.int64)] = False
    if min_depth:
        n = len(consensus_a)
        differs &= _depth_array(contaminated.read_depth, n)[1:] >= min_depth
        differs &= _depth_array(contaminating.read_depth, n)[1:] >= min_depth

    for idx in np.flatnonzero(differs):
        p = int(idx) + 1
        mismatches.append((p, consensus_b[p - 1]))
        if len(mismatches) > max_mismatches and not params.print_all:
            return None

    mismatches.sort()
    matched_frequencies.sort()
    num_het = table.num_positions_with_heterozygosity

    pre_a = contaminated.pre_masking_consensus or consensus_a
    pre_b = contaminating.pre_masking_consensus or consensus_b
    pre_bases_a = unambiguous_base_count(pre_a)
    pre_bases_b = unambiguous_base_count(pre_b)

    return ContaminationRecord(
        contaminated=contaminated.name,
        contaminating=contaminating.name,
        contaminated_bases=bases_a,
        contaminated_coverage=cov_a,
        contaminated_pre_masking_bases=pre_bases_a,
        contaminated_pre_masking_coverage=coverage(pre_a, reference_length),
        contaminating_bases=bases_b,
        contaminating_coverage=cov_b,
        contaminating_pre_masking_bases=pre_bases_b,
        contaminating_pre_masking_coverage=coverage(pre_b, reference_length),
        num_positions_with_heterozygosity=num_het,
        heterozygous_alleles=table.alleles(),
        minor_alleles_matched=minor_matched,
        major_alleles_matched=major_matched,
        heterozygous_positions_matched=(minor_matched + major_matched) / num_het if num_het else None,
        matched_alleles=tuple(matched_alleles),
        num_mismatches=len(mismatches),
        mismatches=tuple(mismatches),
        contamination_type=classify_contamination(minor_matched, major_matched),
        median_frequency=median_frequency(matched_frequencies),
        min_frequency=matched_frequencies[0] if matched_frequencies else None,
        max_frequency=matched_frequencies[-1] if matched_frequencies else None,
        matched_frequencies=tuple(matched_frequencies),
        exceeds_max_mismatches=len(mismatches) > max_mismatches,
        meets_min_coverage=meets_min_coverage,
    )
