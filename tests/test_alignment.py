from pathlib import Path

import pytest

from polyphonia.alignment import (
    AlignedGenomeStore,
    AlignmentError,
    ReferenceCoordinates,
    coverage,
    mask,
    read_fasta,
    strip_reference_gaps,
    unambiguous_base_count,
    write_fasta,
)


def test_strip_reference_gaps_and_idempotence():
    ref, seqs = strip_reference_gaps("AC-GT-", {"s1": "ACTGTA", "s2": "A--GTC"})
    assert ref == "ACGT"
    assert seqs == {"s1": "ACGT", "s2": "A-GT"}

    ref2, seqs2 = strip_reference_gaps(ref, seqs)
    assert ref2 == ref
    assert seqs2 == seqs


def test_strip_reference_gaps_length_mismatch():
    with pytest.raises(AlignmentError):
        strip_reference_gaps("ACGT", {"s1": "ACG"})


def test_reference_coordinates_roundtrip():
    coords = ReferenceCoordinates("A--CG")
    assert coords.reference_length == 3
    assert coords.alignment_length == 5
    assert coords.column_of(2) == 4
    assert coords.position_of(4) == 2
    assert coords.position_of(2) is None
    with pytest.raises(IndexError):
        coords.column_of(4)


def test_mask_positions_and_depth():
    assert mask("ACGT", {2}) == "ANGT"
    assert mask("ACGT", read_depth={1: 10, 2: 5, 3: 20}, min_depth=10) == "ANGN"
    assert mask("ACGT") == "ACGT"
    # positions outside the sequence are ignored
    assert mask("ACGT", {9}) == "ACGT"


def test_mask_translates_through_alignment_columns():
    coords = ReferenceCoordinates("A--CG")
    assert mask("ATTCG", {2}, coordinates=coords) == "ATTNG"


def test_base_counting_and_coverage():
    assert unambiguous_base_count("ACGTN-acgt") == 8
    assert unambiguous_base_count("") == 0
    assert coverage("ACNN", 4) == pytest.approx(0.5)


def test_store_from_alignment_keeps_first_duplicate():
    store = AlignedGenomeStore.from_alignment(
        [("ref", "AC-GT"), ("s1", "acTgt"), ("s1", "AAAAA"), ("s2", "NC-GT")]
    )
    assert store.reference_name == "ref"
    assert store.reference == "ACGT"
    assert store.consensus == {"s1": "ACGT", "s2": "NCGT"}
    assert store.reference_length == 4

    masked = store.with_masking({"s1": "ANGT"})
    assert masked.consensus["s1"] == "ANGT"
    assert masked.pre_masking_consensus["s1"] == "ACGT"


def test_fasta_roundtrip_uses_full_header(tmp_path: Path):
    path = write_fasta(tmp_path / "x.fasta", [("s1 run 7", "acgt" * 20), ("s2", "NNNN")])
    records = read_fasta(path)
    assert records[0] == ("s1 run 7", "ACGT" * 20)
    assert records[1] == ("s2", "NNNN")
