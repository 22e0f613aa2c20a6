from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Collection, Dict, Iterable, List, Mapping, Optional, Tuple

import pysam

from .models import AlleleEntry, AlleleTable, Diagnostic, HeterozygosityRow, is_unambiguous_base
from .utils import open_textmaybe_gzip

logger = logging.getLogger(__name__)

_HET_TABLE_COLUMNS = 8


def _warn(message: str, sample: Optional[str]) -> Diagnostic:
    logger.warning(message)
    return Diagnostic(level="warning", message=message, sample=sample)


def build_allele_table(
    rows: Iterable[HeterozygosityRow],
    *,
    min_readcount: int,
    min_maf: float,
    min_depth: int,
    masked_positions: Collection[int] = (),
    read_depth: Optional[Mapping[int, int]] = None,
    sample: Optional[str] = None,
) -> Tuple[AlleleTable, List[Diagnostic]]:
    """Filter raw heterozygosity rows down to the heterozygous loci of one sample.

    A row is kept when its minor allele has at least ``min_readcount`` reads and
    frequency ``min_maf``, its summed readcount reaches ``min_depth``, its read
    depth (if depth filtering is on) reaches ``min_depth`` and it is not masked.
    All thresholds are inclusive.

    Rows whose alleles are not A/T/C/G are dropped with a warning. When a
    position occurs more than once, only the first occurrence is considered.

    Returns
    -------
    (table, diagnostics)
    """
    diagnostics: List[Diagnostic] = []
    entries: Dict[int, AlleleEntry] = {}
    seen: set[int] = set()
    masked = set(masked_positions)
    depth = read_depth or {}

    for row in rows:
        if row.position in seen:
            diagnostics.append(
                _warn(f"Position {row.position} appears in more than one heterozygosity row; keeping the first.", sample)
            )
            continue
        seen.add(row.position)

        major = row.major.upper()
        minor = row.minor.upper()
        if not (is_unambiguous_base(major) and is_unambiguous_base(minor)):
            diagnostics.append(
                _warn(
                    f"Ignoring position {row.position}: alleles must be A, T, C or G (major={row.major!r}, minor={row.minor!r}).",
                    sample,
                )
            )
            continue

        if row.minor_readcount < min_readcount:
            continue
        if row.minor_frequency < min_maf:
            continue
        if row.minor_readcount + row.major_readcount < min_depth:
            continue
        if min_depth and depth.get(row.position, 0) < min_depth:
            continue
        if row.position in masked:
            continue

        entries[row.position] = AlleleEntry(
            major=major,
            major_readcount=row.major_readcount,
            major_frequency=row.major_frequency,
            minor=minor,
            minor_readcount=row.minor_readcount,
            minor_frequency=row.minor_frequency,
        )

    table = AlleleTable(entries={p: entries[p] for p in sorted(entries)})
    logger.debug(
        "Allele table%s: %d heterozygous positions",
        f" for {sample}" if sample else "",
        table.num_positions_with_heterozygosity,
    )
    return table, diagnostics


def read_heterozygosity_table(
    path: str | Path,
    *,
    sample: Optional[str] = None,
) -> Tuple[List[HeterozygosityRow], List[Diagnostic]]:
    """Parse a tab-separated heterozygosity table.

    Columns: reference, position, major allele, major readcount, major
    frequency, minor allele, minor readcount, minor frequency. Blank lines and
    lines starting with ``#`` are ignored; malformed lines are skipped with a
    warning.
    """
    rows: List[HeterozygosityRow] = []
    diagnostics: List[Diagnostic] = []

    with open_textmaybe_gzip(path) as fh:
        for lineno, line in enumerate(fh, start=1):
            line = line.rstrip("\r\n")
            if not line.strip() or line.startswith("#"):
                continue
            fields = line.split("\t")
            if len(fields) < _HET_TABLE_COLUMNS:
                diagnostics.append(
                    _warn(f"{path}:{lineno}: expected {_HET_TABLE_COLUMNS} columns, found {len(fields)}; skipping.", sample)
                )
                continue
            try:
                rows.append(
                    HeterozygosityRow(
                        reference=fields[0],
                        position=int(fields[1]),
                        major=fields[2],
                        major_readcount=int(fields[3]),
                        major_frequency=float(fields[4]),
                        minor=fields[5],
                        minor_readcount=int(fields[6]),
                        minor_frequency=float(fields[7]),
                    )
                )
            except ValueError:
                diagnostics.append(
                    _warn(f"{path}:{lineno}: non-numeric position, readcount or frequency; skipping.", sample)
                )
    return rows, diagnostics


def write_heterozygosity_table(path: str | Path, rows: Iterable[HeterozygosityRow]) -> Path:
    out = Path(path)
    with open(out, "wt", encoding="utf-8") as fh:
        for r in rows:
            fh.write(
                "\t".join(
                    str(x)
                    for x in (
                        r.reference,
                        r.position,
                        r.major,
                        r.major_readcount,
                        r.major_frequency,
                        r.minor,
                        r.minor_readcount,
                        r.minor_frequency,
                    )
                )
                + "\n"
            )
    return out


def round_half_up(x: float) -> int:
    """Round to the nearest integer, halves away from zero (x >= 0)."""
    return int(math.floor(x + 0.5))


def _info_float(rec: pysam.VariantRecord, key: str) -> Optional[float]:
    if key not in rec.header.info or key not in rec.info:
        return None
    value = rec.info[key]
    if isinstance(value, (list, tuple)):
        if not value:
            return None
        value = value[0]
    if value is None:
        return None
    return float(value)


def heterozygosity_rows_from_vcf(
    path: str | Path,
    *,
    sample: Optional[str] = None,
) -> Tuple[List[HeterozygosityRow], List[Diagnostic]]:
    """Reduce a LoFreq or GATK VCF to heterozygosity rows.

    The frequency of the REF allele is ``ABHet`` (GATK) or ``1 - AF``
    (LoFreq); ``ABHom`` records are homozygous and ignored. Alleles are
    swapped when needed so the major allele comes first, and readcounts are
    derived from INFO ``DP``.
    """
    rows: List[HeterozygosityRow] = []
    diagnostics: List[Diagnostic] = []
    stats = {"records_total": 0, "records_kept": 0}

    with pysam.VariantFile(str(path)) as vcf:
        for rec in vcf:
            stats["records_total"] += 1

            ab_het = _info_float(rec, "ABHet")
            if ab_het is not None:
                allele_1_frequency = ab_het
            elif _info_float(rec, "ABHom") is not None:
                continue
            else:
                af = _info_float(rec, "AF")
                if af is None:
                    continue
                allele_1_frequency = 1.0 - af

            alts = rec.alts or ()
            if len(alts) > 1:
                diagnostics.append(
                    _warn(f"{path}: {rec.contig}:{rec.pos} has more than two alleles; skipping.", sample)
                )
                continue
            if len(alts) == 0:
                continue

            allele_1, allele_2 = rec.ref, alts[0]
            if allele_1_frequency < 0.5:
                allele_1_frequency = 1.0 - allele_1_frequency
                allele_1, allele_2 = allele_2, allele_1
            allele_2_frequency = 1.0 - allele_1_frequency

            if len(allele_1) != 1 or len(allele_2) != 1:
                continue

            dp = _info_float(rec, "DP")
            read_depth = int(dp) if dp is not None else 0

            rows.append(
                HeterozygosityRow(
                    reference=rec.contig,
                    position=int(rec.pos),
                    major=allele_1,
                    major_readcount=round_half_up(allele_1_frequency * read_depth),
                    major_frequency=allele_1_frequency,
                    minor=allele_2,
                    minor_readcount=round_half_up(allele_2_frequency * read_depth),
                    minor_frequency=allele_2_frequency,
                )
            )
            stats["records_kept"] += 1

    logger.info("VCF %s: %d records, %d heterozygosity rows", path, stats["records_total"], stats["records_kept"])
    return rows, diagnostics
