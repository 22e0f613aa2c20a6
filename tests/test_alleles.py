from pathlib import Path

import pysam
import pytest

from polyphonia.alleles import (
    build_allele_table,
    heterozygosity_rows_from_vcf,
    read_heterozygosity_table,
    round_half_up,
)
from polyphonia.models import HeterozygosityRow


def row(position: int, *, major="A", minor="G", minor_readcount=50, minor_frequency=0.05, major_readcount=950):
    return HeterozygosityRow(
        reference="ref",
        position=position,
        major=major,
        major_readcount=major_readcount,
        major_frequency=1 - minor_frequency,
        minor=minor,
        minor_readcount=minor_readcount,
        minor_frequency=minor_frequency,
    )


def build(rows, **kw):
    opts = dict(min_readcount=10, min_maf=0.03, min_depth=0)
    opts.update(kw)
    return build_allele_table(rows, **opts)


def test_thresholds_are_inclusive():
    table, diags = build(
        [
            row(10, minor_readcount=10, minor_frequency=0.03),
            row(20, minor_readcount=9, minor_frequency=0.5),
            row(30, minor_readcount=100, minor_frequency=0.029),
        ]
    )
    assert table.positions == (10,)
    assert diags == []


def test_duplicate_position_keeps_first_occurrence_only():
    # first occurrence fails the readcount threshold; the passing duplicate is ignored
    table, diags = build([row(5, minor_readcount=1), row(5, minor_readcount=500)])
    assert table.num_positions_with_heterozygosity == 0
    assert len(diags) == 1
    assert "more than one" in diags[0].message


def test_non_acgt_alleles_are_excluded_with_warning():
    table, diags = build([row(7, minor="N"), row(8, major="c", minor="t")], sample="s1")
    assert table.positions == (8,)
    assert table.entry(8).major == "C"
    assert table.entry(8).minor == "T"
    assert len(diags) == 1
    assert diags[0].sample == "s1"


def test_masked_and_low_depth_positions_are_excluded():
    rows = [row(1), row(2), row(3)]
    table, _ = build(rows, min_depth=100, read_depth={1: 1000, 2: 99, 3: 1000}, masked_positions={3})
    assert table.positions == (1,)

    # summed readcount below the depth threshold
    table, _ = build([row(4, minor_readcount=20, major_readcount=79)], min_depth=100, read_depth={4: 500})
    assert table.positions == ()


def test_alleles_listing_is_ascending():
    table, _ = build([row(300, major="T", minor="C"), row(12)])
    assert table.alleles() == ((12, "AG"), (300, "TC"))
    assert 12 in table
    assert 13 not in table


def test_read_heterozygosity_table_skips_comments_and_malformed_lines(tmp_path: Path):
    path = tmp_path / "s1.het.txt"
    path.write_text(
        "# comment\n"
        "ref\t100\tA\t900\t0.9\tG\t100\t0.1\n"
        "\n"
        "ref\t101\tA\t900\n"
        "ref\tx\tA\t900\t0.9\tG\t100\t0.1\n",
        encoding="utf-8",
    )
    rows, diags = read_heterozygosity_table(path)
    assert len(rows) == 1
    assert rows[0].position == 100
    assert rows[0].minor == "G"
    assert rows[0].minor_readcount == 100
    assert len(diags) == 2


def test_round_half_up():
    assert round_half_up(2.5) == 3
    assert round_half_up(3.5) == 4
    assert round_half_up(2.49) == 2


def _write_vcf(path: Path, records) -> Path:
    header = pysam.VariantHeader()
    header.add_meta("fileformat", "VCFv4.2")
    header.contigs.add("ref", length=1000)
    header.info.add("DP", number=1, type="Integer", description="Raw Depth")
    header.info.add("AF", number=1, type="Float", description="Allele Frequency")

    with pysam.VariantFile(str(path), "w", header=header) as vcf:
        for pos, alleles, af, dp in records:
            rec = vcf.new_record(
                contig="ref",
                start=pos - 1,
                stop=pos - 1 + len(alleles[0]),
                alleles=alleles,
                qual=60,
                filter="PASS",
            )
            rec.info["AF"] = af
            rec.info["DP"] = dp
            vcf.write(rec)
    return path


def test_vcf_rows_put_major_allele_first(tmp_path: Path):
    vcf = _write_vcf(
        tmp_path / "s1.vcf",
        [
            (10, ("A", "G"), 0.1, 100),
            (20, ("C", "T"), 0.7, 100),
        ],
    )
    rows, diags = heterozygosity_rows_from_vcf(vcf)
    assert diags == []
    assert [r.position for r in rows] == [10, 20]

    low_af, high_af = rows
    assert (low_af.major, low_af.minor) == ("A", "G")
    assert low_af.minor_frequency == pytest.approx(0.1, abs=1e-6)
    assert (low_af.major_readcount, low_af.minor_readcount) == (90, 10)

    # ALT above 50% becomes the major allele
    assert (high_af.major, high_af.minor) == ("T", "C")
    assert high_af.major_frequency == pytest.approx(0.7, abs=1e-6)
    assert (high_af.major_readcount, high_af.minor_readcount) == (70, 30)


def test_vcf_multiallelic_and_indel_records_are_skipped(tmp_path: Path):
    vcf = _write_vcf(
        tmp_path / "s2.vcf",
        [
            (10, ("A", "G", "T"), 0.2, 100),
            (20, ("CA", "C"), 0.2, 100),
            (30, ("G", "A"), 0.2, 100),
        ],
    )
    rows, diags = heterozygosity_rows_from_vcf(vcf, sample="s2")
    assert [r.position for r in rows] == [30]
    assert len(diags) == 1
    assert diags[0].sample == "s2"
