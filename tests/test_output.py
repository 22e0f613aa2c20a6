from pathlib import Path

import pytest

from polyphonia.config import PlateDimensions
from polyphonia.models import ContaminationRecord
from polyphonia.output import (
    check_before_writing,
    format_alleles,
    format_frequency_range,
    record_row,
    table_header,
    write_contamination_table,
    write_plate_contamination_tables,
    write_plate_isnv_tables,
)
from polyphonia.plate import PlateMap, Well
from polyphonia.utils import add_comma_separators, format_percentage, trim_file_extension


def _record(**kw) -> ContaminationRecord:
    fields = dict(
        contaminated="B",
        contaminating="A",
        contaminated_bases=29_800,
        contaminated_coverage=0.9966,
        contaminated_pre_masking_bases=29_850,
        contaminated_pre_masking_coverage=0.9982,
        contaminating_bases=29_700,
        contaminating_coverage=0.9932,
        contaminating_pre_masking_bases=29_903,
        contaminating_pre_masking_coverage=1.0,
        num_positions_with_heterozygosity=2,
        heterozygous_alleles=((241, "CT"), (14_408, "CT")),
        minor_alleles_matched=2,
        major_alleles_matched=0,
        heterozygous_positions_matched=1.0,
        matched_alleles=((241, "T"), (14_408, "T")),
        num_mismatches=0,
        mismatches=(),
        contamination_type="minor alleles",
        median_frequency=0.04,
        min_frequency=0.03,
        max_frequency=0.05,
        matched_frequencies=(0.03, 0.05),
    )
    fields.update(kw)
    return ContaminationRecord(**fields)


def test_formatting_helpers():
    assert format_percentage(0.0412) == "4.1%"
    assert format_percentage(1.0) == "100.0%"
    assert format_percentage(None) == "NA"
    assert add_comma_separators(29_903) == "29,903"
    assert format_alleles([(1_234, "AG"), (5, "T")]) == "1,234 AG; 5 T"
    assert trim_file_extension("s1.ext1.ext2") == "s1.ext1"
    assert trim_file_extension("s1") == "s1"


def test_frequency_range():
    assert format_frequency_range(_record()) == "3.0% - 5.0%"
    assert format_frequency_range(_record(min_frequency=0.05, max_frequency=0.05)) == "5.0%"
    assert format_frequency_range(_record(min_frequency=None, max_frequency=None)) == "NA"


@pytest.mark.parametrize("show_pre_masking", [False, True])
@pytest.mark.parametrize("n_plates", [0, 1, 2])
def test_row_matches_header(show_pre_masking, n_plates):
    plates = [
        PlateMap(name=f"p{i}", dimensions=PlateDimensions(8, 12), occupancy={Well(1, 1): "A", Well(1, 2): "B"})
        for i in range(n_plates)
    ]
    header = table_header(show_pre_masking=show_pre_masking, n_plates=n_plates)
    row = record_row(_record(), show_pre_masking=show_pre_masking, plate_maps=plates)
    assert len(row) == len(header)
    values = dict(zip(header, row))
    assert values["potential_contaminated_sample"] == "B"
    assert values["potential_contaminated_sample_unambiguous_bases"] == (
        "29,850" if show_pre_masking else "29,800"
    )
    assert values["alleles_at_positions_with_heterozygosity"] == "241 CT; 14,408 CT"
    assert values["heterozygous_positions_matched"] == "100.0%"
    assert values["estimated_contamination_volume"] == "4.0%"
    assert values["contaminating_allele_frequencies"] == "3.0%, 5.0%"
    if show_pre_masking:
        assert values["potential_contaminated_sample_unambiguous_bases_passing_read_depth_filter"] == "29,800"
    if n_plates:
        assert values["potential_contaminating_sample_plate_position"] == ", ".join(["A1"] * n_plates)


def test_existing_output_requires_overwrite(tmp_path: Path):
    path = tmp_path / "out.txt"
    path.write_text("old", encoding="utf-8")
    with pytest.raises(FileExistsError):
        check_before_writing(path, overwrite=False)
    assert check_before_writing(path, overwrite=True) == path

    written = write_contamination_table(path, [_record()], show_pre_masking=False, overwrite=True)
    lines = written.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    assert lines[0].startswith("potential_contaminated_sample\t")


def test_plate_tables(tmp_path: Path):
    plate = PlateMap(
        name="plate1",
        dimensions=PlateDimensions(8, 12),
        occupancy={Well(1, 1): "A", Well(1, 2): "B", Well(2, 1): "C"},
    )
    empty = PlateMap(name="plate2", dimensions=PlateDimensions(8, 12), occupancy={Well(1, 1): "D"})

    written = write_plate_contamination_tables(tmp_path, [plate, empty], [_record()])
    assert [p.name for p in written] == ["plate1_potential_cross_contamination.txt"]
    lines = written[0].read_text(encoding="utf-8").splitlines()
    assert lines[1].split("\t") == ["A2", "A1", "B", "A", "minor alleles", "0.04"]

    written = write_plate_isnv_tables(tmp_path, [plate], {"A": 0, "B": 21})
    lines = written[0].read_text(encoding="utf-8").splitlines()
    assert lines == ["well\tsample\tiSNVs", "A1\tA\t0", "A2\tB\t21", "B1\tC\tNA"]
