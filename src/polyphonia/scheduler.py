from __future__ import annotations

import logging
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Collection, Dict, List, Mapping, Optional, Sequence, Set, Tuple

from tqdm import tqdm

from .config import ALL_PAIRS_WARNING_THRESHOLD, Adjacency, DetectionParameters
from .detector import MissingSampleData, detect_contamination
from .models import ContaminationRecord, Diagnostic, Sample
from .plate import PlateMap, neighbors

logger = logging.getLogger(__name__)

Pair = Tuple[str, str]


@dataclass
class ComparisonResults:
    """Records keyed by (contaminated, contaminating), plus per-pair diagnostics."""

    records: Dict[Pair, ContaminationRecord] = field(default_factory=dict)
    diagnostics: List[Diagnostic] = field(default_factory=list)
    comparisons: int = 0

    def sorted_records(self) -> List[ContaminationRecord]:
        return [self.records[k] for k in sorted(self.records)]


def _unordered(a: str, b: str) -> Pair:
    return (a, b) if a <= b else (b, a)


def schedule_pairs(
    names: Sequence[str],
    *,
    plate_maps: Optional[Sequence[PlateMap]] = None,
    adjacency: Optional[Adjacency] = None,
) -> List[Pair]:
    """Unordered sample pairs to compare, each exactly once, sorted.

    With plate maps, pairs are restricted to plate neighbours on any plate;
    otherwise every pair among ``names`` is compared.
    """
    included = set(names)
    pairs: Set[Pair] = set()

    if plate_maps:
        adj = adjacency or Adjacency()
        for plate in plate_maps:
            for well in plate.wells:
                sample = plate.occupancy[well]
                if sample not in included:
                    continue
                for other in neighbors(well, adj, plate, included=included):
                    pairs.add(_unordered(sample, other))
    else:
        if len(included) > ALL_PAIRS_WARNING_THRESHOLD:
            logger.warning(
                "Comparing all pairs of %d samples (%d pairs). This is impractical at this scale; "
                "provide plate maps to restrict comparisons to plate neighbours.",
                len(included),
                len(included) * (len(included) - 1) // 2,
            )
        ordered = sorted(included)
        for i, a in enumerate(ordered):
            for b in ordered[i + 1 :]:
                pairs.add((a, b))

    return sorted(pairs)


def samples_with_neighbors(
    names: Collection[str],
    plate_maps: Sequence[PlateMap],
    adjacency: Adjacency,
) -> Set[str]:
    included = set(names)
    out: Set[str] = set()
    for plate in plate_maps:
        for well in plate.wells:
            sample = plate.occupancy[well]
            if sample in included and neighbors(well, adjacency, plate, included=included):
                out.add(sample)
    return out


def _compare_both_directions(
    a: Sample,
    b: Sample,
    params: DetectionParameters,
    reference_length: int,
    masked_positions: Collection[int],
) -> Tuple[Pair, List[Tuple[Pair, Optional[ContaminationRecord], Optional[str]]]]:
    out: List[Tuple[Pair, Optional[ContaminationRecord], Optional[str]]] = []
    for contaminated, contaminating in ((a, b), (b, a)):
        key = (contaminated.name, contaminating.name)
        try:
            rec = detect_contamination(
                contaminated,
                contaminating,
                params=params,
                reference_length=reference_length,
                masked_positions=masked_positions,
            )
            out.append((key, rec, None))
        except MissingSampleData as e:
            out.append((key, None, str(e)))
    return (a.name, b.name), out


def run_comparisons(
    samples: Mapping[str, Sample],
    pairs: Sequence[Pair],
    *,
    params: DetectionParameters,
    reference_length: int,
    masked_positions: Collection[int] = (),
    workers: int = 1,
    progress: bool = False,
) -> ComparisonResults:
    """Run the detector in both directions for every pair.

    Tasks only read immutable samples; results are merged here, in the calling
    thread, as tasks complete. A fatal error cancels every pending task and
    propagates. Per-pair data errors become diagnostics.
    """
    results = ComparisonResults()
    jobs = max(1, int(workers))

    def _merge(payload: Tuple[Pair, List[Tuple[Pair, Optional[ContaminationRecord], Optional[str]]]]) -> None:
        _, directions = payload
        for key, rec, err in directions:
            results.comparisons += 1
            if err is not None:
                logger.warning("Skipping comparison %s <- %s: %s", key[0], key[1], err)
                results.diagnostics.append(Diagnostic(level="warning", message=err, pair=key))
            elif rec is not None:
                results.records[key] = rec

    for a, b in pairs:
        for name in (a, b):
            if name not in samples:
                raise KeyError(f"Scheduled sample {name} is not among the prepared samples.")

    bar = tqdm(total=len(pairs), unit="pair", desc="Comparing samples", disable=not progress)
    try:
        if jobs == 1:
            for a, b in pairs:
                _merge(_compare_both_directions(samples[a], samples[b], params, reference_length, masked_positions))
                bar.update(1)
        else:
            logger.info("Comparing %d sample pairs using %d workers", len(pairs), jobs)
            ex = ThreadPoolExecutor(max_workers=jobs)
            try:
                pending: Set[Future] = {
                    ex.submit(
                        _compare_both_directions,
                        samples[a],
                        samples[b],
                        params,
                        reference_length,
                        masked_positions,
                    )
                    for a, b in pairs
                }
                while pending:
                    done, pending = wait(pending, return_when=FIRST_EXCEPTION)
                    for fut in done:
                        _merge(fut.result())
                        bar.update(1)
            finally:
                ex.shutdown(wait=True, cancel_futures=True)
    finally:
        bar.close()

    results.diagnostics.sort(key=lambda d: d.pair or ("", ""))
    logger.info(
        "Ran %d directional comparisons; %d potential contamination events",
        results.comparisons,
        len(results.records),
    )
    return results
