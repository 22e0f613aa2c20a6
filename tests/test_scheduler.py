import pytest

from polyphonia.config import Adjacency, DetectionParameters, PlateDimensions
from polyphonia.detector import InvariantViolation
from polyphonia.models import AlleleEntry, AlleleTable, HeterozygosityTableSource, Sample
from polyphonia.plate import PlateMap, Well
from polyphonia.scheduler import (
    run_comparisons,
    samples_with_neighbors,
    schedule_pairs,
)

REF = "ACGTACGTACGTACGTACGTACGTACGTAC"
PLATE_96 = PlateDimensions(rows=8, columns=12)


def _plate() -> PlateMap:
    return PlateMap(
        name="p1",
        dimensions=PLATE_96,
        occupancy={Well(1, 1): "a", Well(1, 2): "b", Well(1, 4): "c", Well(2, 4): "d"},
    )


def test_all_pairs_sorted_and_unique():
    assert schedule_pairs(["c", "a", "b", "a"]) == [("a", "b"), ("a", "c"), ("b", "c")]
    assert schedule_pairs(["a"]) == []


def test_plate_pairs_follow_adjacency():
    plate = _plate()
    assert schedule_pairs(["a", "b", "c", "d"], plate_maps=[plate], adjacency=Adjacency()) == [
        ("a", "b"),
        ("c", "d"),
    ]
    assert schedule_pairs(["a", "b", "c", "d"], plate_maps=[plate], adjacency=Adjacency(row=True)) == [
        ("a", "b"),
        ("a", "c"),
        ("b", "c"),
        ("c", "d"),
    ]
    # excluded samples leave holes rather than bridging neighbours
    assert schedule_pairs(["a", "c", "d"], plate_maps=[plate], adjacency=Adjacency()) == [("c", "d")]


def test_samples_without_neighbours_are_removed():
    plate = _plate()
    assert samples_with_neighbors(["a", "c", "d"], [plate], Adjacency()) == {"c", "d"}


def _sample(name: str, changes: dict, het: dict) -> Sample:
    seq = list(REF)
    for pos, base in changes.items():
        seq[pos - 1] = base
    entries = {
        pos: AlleleEntry(major=maj, major_readcount=950, major_frequency=0.95, minor=mnr, minor_readcount=50, minor_frequency=f)
        for pos, (maj, mnr, f) in het.items()
    }
    return Sample(name, "".join(seq), "".join(seq), AlleleTable(entries=entries))


def _samples():
    return {
        "s1": _sample("s1", {3: "T", 10: "A"}, {}),
        "s2": _sample("s2", {}, {3: ("G", "T", 0.05), 10: ("C", "A", 0.07)}),
        "s3": _sample("s3", {3: "T"}, {10: ("C", "A", 0.1)}),
        "s4": _sample("s4", {20: "A", 21: "A", 22: "T"}, {}),
        "s5": _sample("s5", {}, {}),
    }


def test_parallel_results_match_serial():
    samples = _samples()
    pairs = schedule_pairs(sorted(samples))
    params = DetectionParameters(min_depth=0, min_coverage=0.9, max_mismatches=1)

    serial = run_comparisons(samples, pairs, params=params, reference_length=len(REF), workers=1)
    threaded = run_comparisons(samples, pairs, params=params, reference_length=len(REF), workers=4)

    assert serial.comparisons == 2 * len(pairs) == threaded.comparisons
    assert [r.pair for r in serial.sorted_records()] == [r.pair for r in threaded.sorted_records()]
    assert serial.sorted_records() == threaded.sorted_records()
    assert ("s2", "s1") in serial.records
    assert serial.records[("s2", "s1")].contamination_type == "minor alleles"


def test_missing_data_becomes_diagnostic():
    samples = _samples()
    samples["s5"] = Sample("s5", REF, REF, None)
    params = DetectionParameters(min_depth=0, min_coverage=0.9)
    res = run_comparisons(samples, [("s1", "s5")], params=params, reference_length=len(REF))
    assert res.records == {}
    assert len(res.diagnostics) == 2
    assert {d.pair for d in res.diagnostics} == {("s1", "s5"), ("s5", "s1")}


def test_unknown_scheduled_sample_is_fatal():
    params = DetectionParameters(min_depth=0)
    with pytest.raises(KeyError):
        run_comparisons(_samples(), [("s1", "nope")], params=params, reference_length=len(REF))


def test_fatal_error_in_worker_propagates():
    samples = _samples()
    samples["s5"] = Sample("s5", REF, REF, HeterozygosityTableSource("s5.txt"))
    pairs = schedule_pairs(sorted(samples))
    params = DetectionParameters(min_depth=0, min_coverage=0.9)
    with pytest.raises(InvariantViolation):
        run_comparisons(samples, pairs, params=params, reference_length=len(REF), workers=3)
