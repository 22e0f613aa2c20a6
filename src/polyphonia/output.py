"""Tab-separated result tables.

Formatting rules: percentages with one decimal place and a trailing '%',
thousands separators in counts and positions, 'NA' for undefined values,
'; ' between alleles and ', ' between frequencies, wells and plates.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .models import ContaminationRecord
from .plate import PlateMap
from .utils import NO_DATA, add_comma_separators, format_percentage

logger = logging.getLogger(__name__)

DELIMITER = "\t"
ALLELE_LIST_SEPARATOR = "; "
LIST_SEPARATOR = ", "

MAIN_TABLE_NAME = "potential_cross_contamination.txt"


def check_before_writing(path: str | Path, *, overwrite: bool) -> Path:
    p = Path(path)
    if p.exists():
        if not overwrite:
            raise FileExistsError(f"File already exists at path to write to: {p}. Use --overwrite to replace it.")
        logger.warning("File already exists and will be overwritten: %s", p)
    return p


def format_alleles(alleles: Sequence[Tuple[int, str]]) -> str:
    return ALLELE_LIST_SEPARATOR.join(f"{add_comma_separators(p)} {bases}" for p, bases in alleles)


def format_frequency_range(rec: ContaminationRecord) -> str:
    if rec.min_frequency is None or rec.max_frequency is None:
        return NO_DATA
    if rec.min_frequency == rec.max_frequency:
        return format_percentage(rec.min_frequency)
    return f"{format_percentage(rec.min_frequency)} - {format_percentage(rec.max_frequency)}"


def _sample_columns(prefix: str, show_pre_masking: bool) -> List[str]:
    cols: List[str] = [prefix]
    cols += [f"{prefix}_unambiguous_bases", f"{prefix}_genome_covered"]
    if show_pre_masking:
        cols += [
            f"{prefix}_unambiguous_bases_passing_read_depth_filter",
            f"{prefix}_genome_covered_passing_read_depth_filter",
        ]
    return cols


def table_header(*, show_pre_masking: bool, n_plates: int = 0) -> List[str]:
    cols = _sample_columns("potential_contaminated_sample", show_pre_masking)
    cols += ["num_positions_with_heterozygosity", "alleles_at_positions_with_heterozygosity"]
    cols += _sample_columns("potential_contaminating_sample", show_pre_masking)
    cols += [
        "minor_alleles_matched",
        "major_alleles_matched",
        "heterozygous_positions_matched",
        "alleles_matched",
        "num_mismatches",
        "mismatches",
        "appearance_of_potential_contamination",
        "estimated_contamination_volume",
        "contaminating_allele_frequency_range",
        "contaminating_allele_frequencies",
    ]
    if n_plates:
        cols += ["potential_contaminated_sample_plate_position", "potential_contaminating_sample_plate_position"]
        if n_plates > 1:
            cols += ["potential_contaminated_sample_plate", "potential_contaminating_sample_plate"]
    return cols


def _plate_locations(sample: str, plate_maps: Sequence[PlateMap]) -> Tuple[str, str]:
    wells: List[str] = []
    plates: List[str] = []
    for plate in plate_maps:
        well = plate.well_of(sample)
        if well is not None:
            wells.append(str(well))
            plates.append(plate.name)
    return LIST_SEPARATOR.join(wells), LIST_SEPARATOR.join(plates)


def record_row(
    rec: ContaminationRecord,
    *,
    show_pre_masking: bool,
    plate_maps: Sequence[PlateMap] = (),
) -> List[str]:
    row: List[str] = [rec.contaminated]
    if show_pre_masking:
        row += [
            add_comma_separators(rec.contaminated_pre_masking_bases),
            format_percentage(rec.contaminated_pre_masking_coverage),
        ]
    row += [add_comma_separators(rec.contaminated_bases), format_percentage(rec.contaminated_coverage)]
    row += [str(rec.num_positions_with_heterozygosity), format_alleles(rec.heterozygous_alleles)]

    row.append(rec.contaminating)
    if show_pre_masking:
        row += [
            add_comma_separators(rec.contaminating_pre_masking_bases),
            format_percentage(rec.contaminating_pre_masking_coverage),
        ]
    row += [add_comma_separators(rec.contaminating_bases), format_percentage(rec.contaminating_coverage)]

    row += [
        str(rec.minor_alleles_matched),
        str(rec.major_alleles_matched),
        format_percentage(rec.heterozygous_positions_matched),
        format_alleles(rec.matched_alleles),
        str(rec.num_mismatches),
        format_alleles(rec.mismatches),
        rec.contamination_type,
        format_percentage(rec.median_frequency),
        format_frequency_range(rec),
        LIST_SEPARATOR.join(format_percentage(f) for f in rec.matched_frequencies),
    ]

    if plate_maps:
        wells_a, plates_a = _plate_locations(rec.contaminated, plate_maps)
        wells_b, plates_b = _plate_locations(rec.contaminating, plate_maps)
        row += [wells_a, wells_b]
        if len(plate_maps) > 1:
            row += [plates_a, plates_b]
    return row


def write_contamination_table(
    path: str | Path,
    records: Sequence[ContaminationRecord],
    *,
    show_pre_masking: bool,
    plate_maps: Sequence[PlateMap] = (),
    overwrite: bool = False,
) -> Path:
    out = check_before_writing(path, overwrite=overwrite)
    out.parent.mkdir(parents=True, exist_ok=True)
    with open(out, "wt", encoding="utf-8") as fh:
        fh.write(DELIMITER.join(table_header(show_pre_masking=show_pre_masking, n_plates=len(plate_maps))) + "\n")
        for rec in records:
            fh.write(DELIMITER.join(record_row(rec, show_pre_masking=show_pre_masking, plate_maps=plate_maps)) + "\n")
    logger.info("Wrote %d potential contamination events to %s", len(records), out)
    return out


def write_plate_contamination_tables(
    outdir: str | Path,
    plate_maps: Sequence[PlateMap],
    records: Sequence[ContaminationRecord],
    *,
    overwrite: bool = False,
) -> List[Path]:
    """One table per plate listing events between samples both placed on that plate.

    Plates without events get no table.
    """
    written: List[Path] = []
    for plate in plate_maps:
        rows: List[List[str]] = []
        for rec in records:
            well_a = plate.well_of(rec.contaminated)
            well_b = plate.well_of(rec.contaminating)
            if well_a is None or well_b is None:
                continue
            rows.append(
                [
                    str(well_a),
                    str(well_b),
                    rec.contaminated,
                    rec.contaminating,
                    rec.contamination_type,
                    repr(rec.median_frequency),
                ]
            )
        if not rows:
            continue
        out = check_before_writing(Path(outdir) / f"{plate.name}_potential_cross_contamination.txt", overwrite=overwrite)
        out.parent.mkdir(parents=True, exist_ok=True)
        with open(out, "wt", encoding="utf-8") as fh:
            fh.write(
                DELIMITER.join(
                    [
                        "well",
                        "contamination_source_well",
                        "sample",
                        "contamination_source_sample",
                        "appearance_of_potential_contamination",
                        "estimated_contamination_volume",
                    ]
                )
                + "\n"
            )
            for row in rows:
                fh.write(DELIMITER.join(row) + "\n")
        written.append(out)
    return written


def write_plate_isnv_tables(
    outdir: str | Path,
    plate_maps: Sequence[PlateMap],
    isnv_counts: Mapping[str, int],
    *,
    overwrite: bool = False,
) -> List[Path]:
    """Heterozygous-position counts by well; 'NA' for samples excluded from comparison."""
    written: List[Path] = []
    for plate in plate_maps:
        out = check_before_writing(Path(outdir) / f"{plate.name}_iSNVs.txt", overwrite=overwrite)
        out.parent.mkdir(parents=True, exist_ok=True)
        with open(out, "wt", encoding="utf-8") as fh:
            fh.write(DELIMITER.join(["well", "sample", "iSNVs"]) + "\n")
            for well in plate.wells:
                sample = plate.occupancy[well]
                count: Optional[int] = isnv_counts.get(sample)
                fh.write(DELIMITER.join([str(well), sample, NO_DATA if count is None else str(count)]) + "\n")
        written.append(out)
    return written


def records_to_jsonable(records: Sequence[ContaminationRecord]) -> List[Dict[str, object]]:
    return [
        {
            "contaminated": r.contaminated,
            "contaminating": r.contaminating,
            "contamination_type": r.contamination_type,
            "minor_alleles_matched": r.minor_alleles_matched,
            "major_alleles_matched": r.major_alleles_matched,
            "num_mismatches": r.num_mismatches,
            "median_frequency": r.median_frequency,
        }
        for r in records
    ]
