import pytest

from polyphonia.config import DetectionParameters
from polyphonia.detector import (
    InvariantViolation,
    MissingSampleData,
    classify_contamination,
    detect_contamination,
    median_frequency,
)
from polyphonia.models import AlleleEntry, AlleleTable, HeterozygosityTableSource, Sample

REF = "ACGTACGTACGTACGTACGT"


def mutate(seq: str, changes: dict) -> str:
    out = list(seq)
    for pos, base in changes.items():
        out[pos - 1] = base
    return "".join(out)


def sample(name: str, consensus: str, het=None, read_depth=None) -> Sample:
    entries = {}
    for pos, (major, minor, minor_frequency) in (het or {}).items():
        entries[pos] = AlleleEntry(
            major=major,
            major_readcount=int(1000 * (1 - minor_frequency)),
            major_frequency=1 - minor_frequency,
            minor=minor,
            minor_readcount=int(1000 * minor_frequency),
            minor_frequency=minor_frequency,
        )
    return Sample(
        name=name,
        consensus=consensus,
        pre_masking_consensus=consensus,
        diversity=AlleleTable(entries=entries),
        read_depth=read_depth,
    )


def params(**kw) -> DetectionParameters:
    opts = dict(min_depth=0, min_coverage=0.9, max_mismatches=1)
    opts.update(kw)
    return DetectionParameters(**opts)


def detect(a, b, **kw):
    masked = kw.pop("masked_positions", ())
    return detect_contamination(a, b, params=params(**kw), reference_length=len(REF), masked_positions=masked)


def test_median_frequency():
    assert median_frequency([0.03, 0.05]) == pytest.approx(0.04)
    assert median_frequency([0.05]) == pytest.approx(0.05)
    assert median_frequency([0.05, 0.01, 0.5]) == pytest.approx(0.05)
    assert median_frequency([]) == 1.0


def test_classify_contamination():
    assert classify_contamination(3, 0) == "minor alleles"
    assert classify_contamination(3, 2) == "minor and consensus-level"
    assert classify_contamination(0, 2) == "consensus-level"
    assert classify_contamination(0, 0) == "consensus-level"


def test_minor_allele_contamination_is_directional():
    a = sample("A", mutate(REF, {3: "T", 9: "C"}))
    b = sample("B", REF, het={3: ("G", "T", 0.05), 9: ("A", "C", 0.03)})

    rec = detect(b, a, max_mismatches=0)
    assert rec is not None
    assert rec.pair == ("B", "A")
    assert rec.minor_alleles_matched == 2
    assert rec.major_alleles_matched == 0
    assert rec.contamination_type == "minor alleles"
    assert rec.matched_alleles == ((3, "T"), (9, "C"))
    assert rec.median_frequency == pytest.approx(0.04)
    assert rec.min_frequency == pytest.approx(0.03)
    assert rec.max_frequency == pytest.approx(0.05)
    assert rec.heterozygous_positions_matched == pytest.approx(1.0)
    assert rec.num_mismatches == 0

    # A has no heterozygous positions and lacks B's consensus alleles at 3 and 9
    assert detect(a, b, max_mismatches=0) is None


def test_mismatch_limit_aborts_comparison():
    a = sample("A", mutate(REF, {3: "T", 5: "C", 8: "A"}))
    b = sample("B", REF, het={3: ("G", "T", 0.05)})

    assert detect(b, a, max_mismatches=1) is None

    rec = detect(b, a, max_mismatches=2)
    assert rec is not None
    assert rec.num_mismatches == 2
    assert rec.mismatches == ((5, "C"), (8, "A"))
    assert not rec.exceeds_max_mismatches


def test_print_all_reports_flagged_records():
    a = sample("A", mutate(REF, {3: "T", 5: "C", 8: "A"}))
    b = sample("B", REF, het={3: ("G", "T", 0.05)})
    rec = detect(b, a, max_mismatches=1, print_all=True)
    assert rec is not None
    assert rec.exceeds_max_mismatches
    assert rec.num_mismatches == 2


def test_major_allele_matches_and_masked_positions():
    a = sample("A", mutate(REF, {3: "T", 6: "T"}))
    b = sample("B", REF, het={3: ("G", "T", 0.05), 6: ("C", "T", 0.2)})
    a_major = sample("A2", mutate(REF, {3: "T", 12: "A"}))

    rec = detect(b, a)
    assert rec.contamination_type == "minor alleles"

    # position 6 of A2 carries B's major allele
    rec = detect(b, a_major)
    assert rec.minor_alleles_matched == 1
    assert rec.major_alleles_matched == 1
    assert rec.contamination_type == "minor and consensus-level"
    assert rec.mismatches == ((12, "A"),)

    rec = detect(b, a_major, masked_positions={12})
    assert rec.num_mismatches == 0
    assert detect(b, a_major, max_mismatches=0) is None
    assert detect(b, a_major, max_mismatches=0, masked_positions={12}) is not None


def test_ambiguous_bases_are_not_compared():
    a = sample("A", mutate(REF, {3: "T", 5: "N", 7: "N"}))
    b = sample("B", mutate(REF, {7: "A"}), het={3: ("G", "T", 0.05)})
    rec = detect(b, a, max_mismatches=0, min_coverage=0.5)
    assert rec is not None
    assert rec.num_mismatches == 0


def test_low_depth_positions_are_skipped():
    depth_ok = {p: 100 for p in range(1, len(REF) + 1)}
    depth_low = dict(depth_ok)
    depth_low[5] = 3
    a = sample("A", mutate(REF, {3: "T", 5: "C"}), read_depth=depth_low)
    b = sample("B", REF, het={3: ("G", "T", 0.05)}, read_depth=depth_ok)
    assert detect(b, a, max_mismatches=0, min_depth=10) is not None
    assert detect(b, a, max_mismatches=0) is None


def test_low_coverage_pair_is_skipped():
    a = sample("A", "N" * 10 + REF[10:])
    b = sample("B", REF, het={3: ("G", "T", 0.05)})
    assert detect(b, a) is None
    rec = detect(b, a, print_all=True)
    assert rec is not None
    assert not rec.meets_min_coverage


def test_unprocessed_diversity_is_an_invariant_violation():
    a = sample("A", REF)
    b = Sample(name="B", consensus=REF, pre_masking_consensus=REF, diversity=HeterozygosityTableSource("B.txt"))
    with pytest.raises(InvariantViolation):
        detect(b, a)


def test_missing_data_raises():
    a = sample("A", REF)
    no_diversity = Sample(name="B", consensus=REF, pre_masking_consensus=REF, diversity=None)
    with pytest.raises(MissingSampleData):
        detect(no_diversity, a)

    no_consensus = Sample(name="C", consensus=None, pre_masking_consensus=None, diversity=AlleleTable())
    with pytest.raises(MissingSampleData):
        detect(a, no_consensus)

    with pytest.raises(MissingSampleData):
        detect(a, sample("D", REF[:-1]))


def test_mismatches_at_heterozygous_positions():
    b = sample("B", REF, het={3: ("G", "T", 0.05), 5: ("A", "G", 0.05)})

    one = sample("A", mutate(REF, {3: "C"}))
    rec = detect(b, one, max_mismatches=1)
    assert rec is not None
    assert rec.mismatches == ((3, "C"),)
    assert rec.major_alleles_matched == 1

    two = sample("A", mutate(REF, {3: "C", 5: "C"}))
    assert detect(b, two, max_mismatches=1) is None


def test_repeated_runs_are_identical():
    a = sample("A", mutate(REF, {3: "T", 9: "C"}))
    b = sample("B", REF, het={3: ("G", "T", 0.05), 9: ("A", "C", 0.03)})
    assert detect(b, a) == detect(b, a)
