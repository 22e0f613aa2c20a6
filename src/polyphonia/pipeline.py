"""End-to-end cross-contamination detection.

Order of operations:

1. validate configuration and inputs; read the reference
2. name samples (from plate maps, else from consensus FASTA headers)
3. attach within-sample diversity files and read depths to samples
4. drop samples with too little coverage or without plate neighbours
5. align consensus genomes (MAFFT) or read an existing alignment
6. strip reference-gap columns; mask low-depth and user-masked positions
7. re-check coverage on the masked consensus
8. reduce within-sample diversity to allele tables
9. compare neighbouring (or all) pairs in both directions
10. write tables, summary.json and report.html
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set, Tuple

from . import __version__
from .alignment import AlignedGenomeStore, align_with_mafft, coverage, mask, read_fasta, unambiguous_base_count
from .config import DetectionParameters, PlateOptions, resolve_plate_dimensions
from .diversity import reduce_sample, samtools_depth, source_for
from .eligibility import filter_eligible, require_comparable
from .inputs import assign_files_to_samples, parse_masked_positions, read_masked_positions_file, read_read_depth_table
from .models import AlleleTable, BamSource, ContaminationRecord, Diagnostic, DiversitySource, Sample
from .output import (
    MAIN_TABLE_NAME,
    check_before_writing,
    records_to_jsonable,
    write_contamination_table,
    write_plate_contamination_tables,
    write_plate_isnv_tables,
)
from .parallel import parallel_map
from .plate import PlateMap, read_plate_map
from .report import render_report
from .scheduler import run_comparisons, samples_with_neighbors, schedule_pairs
from .utils import ensure_outdir, write_json
from .validation import check_input_combination, check_input_file, check_input_files, check_reference

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetectionInputs:
    """Input file paths for one run."""

    ref: str
    consensus: Sequence[str] = ()
    consensus_aligned: Optional[str] = None
    bam: Sequence[str] = ()
    vcf: Sequence[str] = ()
    het: Sequence[str] = ()
    read_depths: Sequence[str] = ()
    plate_maps: Sequence[str] = ()
    masked_positions: str = ""
    masked_positions_file: Optional[str] = None


@dataclass
class DetectionResult:
    records: List[ContaminationRecord]
    diagnostics: List[Diagnostic]
    samples: Dict[str, Sample]
    isnv_counts: Dict[str, int]
    plate_maps: List[PlateMap]
    params: DetectionParameters
    reference_name: str
    reference_length: int
    comparisons: int = 0
    outputs: Dict[str, str] = field(default_factory=dict)

    def summary(self) -> Dict[str, object]:
        counts: Dict[str, int] = {}
        for r in self.records:
            counts[r.contamination_type] = counts.get(r.contamination_type, 0) + 1
        return {
            "version": __version__,
            "reference": self.reference_name,
            "reference_length": self.reference_length,
            "parameters": dataclasses.asdict(self.params),
            "samples_compared": sorted(self.samples),
            "directional_comparisons": self.comparisons,
            "potential_contamination_events": len(self.records),
            "events_by_type": counts,
            "events": records_to_jsonable(self.records),
            "diagnostics": [d.to_dict() for d in self.diagnostics],
            "outputs": dict(self.outputs),
        }


def _masked_positions(inputs: DetectionInputs) -> Set[int]:
    masked: Set[int] = set()
    if inputs.masked_positions:
        masked |= parse_masked_positions(inputs.masked_positions)
    if inputs.masked_positions_file:
        masked |= read_masked_positions_file(inputs.masked_positions_file)
    if masked:
        logger.info("%d positions masked by user", len(masked))
    return masked


def _read_consensus(paths: Sequence[str]) -> Dict[str, str]:
    consensus: Dict[str, str] = {}
    for path in paths:
        for name, seq in read_fasta(path):
            if not seq:
                continue
            if name in consensus:
                logger.warning("Consensus genome %s appears more than once; keeping the first.", name)
                continue
            consensus[name] = seq
    return consensus


def _drop(names: Set[str], keep: Set[str], reason: str, diagnostics: List[Diagnostic]) -> Set[str]:
    for name in sorted(names - keep):
        msg = f"Excluding sample {name}: {reason}."
        logger.warning(msg)
        diagnostics.append(Diagnostic(level="warning", message=msg, sample=name))
    return names & keep


def _diversity_sources(
    inputs: DetectionInputs,
    names: Set[str],
    diagnostics: List[Diagnostic],
) -> Dict[str, DiversitySource]:
    sources: Dict[str, DiversitySource] = {}
    # later stages replace earlier ones for the same sample
    for stage, paths in (("bam", inputs.bam), ("vcf", inputs.vcf), ("het", inputs.het)):
        assigned, diags = assign_files_to_samples(paths, names, kind=f"{stage} file")
        diagnostics.extend(diags)
        for name, path in assigned.items():
            sources[name] = source_for(path, stage)
    return sources


def _read_depths(
    inputs: DetectionInputs,
    names: Set[str],
    sources: Dict[str, DiversitySource],
    *,
    workdir: Path,
    workers: int,
    overwrite: bool,
    diagnostics: List[Diagnostic],
) -> Dict[str, Dict[int, int]]:
    assigned, diags = assign_files_to_samples(inputs.read_depths, names, kind="read depth table")
    diagnostics.extend(diags)

    jobs: List[Tuple[str, Optional[str], Optional[str]]] = []
    for name in sorted(names):
        if name in assigned:
            jobs.append((name, assigned[name], None))
            continue
        src = sources.get(name)
        if isinstance(src, BamSource):
            jobs.append((name, None, src.path))
            continue
        msg = f"Excluding sample {name}: no read depth table and no BAM file to generate one from."
        logger.warning(msg)
        diagnostics.append(Diagnostic(level="warning", message=msg, sample=name))

    def _load(job: Tuple[str, Optional[str], Optional[str]]) -> Tuple[str, Dict[int, int]]:
        name, table, bam = job
        if table is None:
            table = str(samtools_depth(bam, workdir=workdir, overwrite=overwrite))  # type: ignore[arg-type]
        check_input_file(table, "read depth table")
        return name, read_read_depth_table(table)

    return dict(parallel_map(_load, jobs, workers=workers))


def _plate_positions(name: str, plate_maps: Sequence[PlateMap]) -> Dict[str, str]:
    positions: Dict[str, str] = {}
    for pm in plate_maps:
        well = pm.well_of(name)
        if well is not None:
            positions[pm.name] = str(well)
    return positions


def _report_remaining(names: Set[str], step: str) -> None:
    logger.info("%d samples remaining after %s", len(names), step)
    require_comparable(names)


def run_detection(
    inputs: DetectionInputs,
    *,
    params: DetectionParameters,
    outdir: str | Path,
    plate_options: Optional[PlateOptions] = None,
    output: Optional[str | Path] = None,
    workers: int = 1,
    print_all_isnvs: bool = False,
    overwrite: bool = False,
    progress: bool = False,
    write_report: bool = True,
) -> DetectionResult:
    """Run detection and write all outputs into ``outdir``.

    Raises
    ------
    ConfigurationError
        Invalid thresholds, plate layout or input combination.
    NoComparableSamples
        Fewer than two samples survive filtering.
    """
    params.validate()
    diagnostics: List[Diagnostic] = []

    # 1) configuration and inputs
    diversity_inputs = len(inputs.bam) + len(inputs.vcf) + len(inputs.het)
    check_input_combination(
        consensus=inputs.consensus,
        consensus_aligned=inputs.consensus_aligned,
        diversity_inputs=diversity_inputs,
    )
    check_input_file(inputs.ref, "reference genome file")
    check_input_files(inputs.consensus, "consensus genome file")
    if inputs.consensus_aligned:
        check_input_file(inputs.consensus_aligned, "aligned consensus genomes file")
    check_input_files(list(inputs.bam) + list(inputs.vcf), "within-sample diversity file")
    for path in list(inputs.het) + list(inputs.plate_maps) + list(inputs.read_depths):
        check_input_file(path, "input file", allow_empty=True)
    if inputs.masked_positions_file:
        check_input_file(inputs.masked_positions_file, "masked positions file", allow_empty=True)

    outdir_p = ensure_outdir(outdir)
    workdir = ensure_outdir(outdir_p / "intermediate")
    main_table = check_before_writing(Path(output) if output else outdir_p / MAIN_TABLE_NAME, overwrite=overwrite)

    masked = _masked_positions(inputs)

    plate_paths = list(inputs.plate_maps)
    options = plate_options or PlateOptions(dimensions=resolve_plate_dimensions())
    if plate_paths and not options.adjacency.any():
        logger.warning("All plate neighbour options are off; plate maps will not be used and all pairs are compared.")
        plate_paths = []
    if not plate_paths:
        print_all_isnvs = False

    if params.min_depth and (inputs.vcf or inputs.het) and not inputs.read_depths:
        logger.warning(
            "Minimum read depth %d requested but no read depth tables were provided for VCF or "
            "heterozygosity-table inputs; not applying the read depth filter.",
            params.min_depth,
        )
        diagnostics.append(
            Diagnostic(
                level="warning",
                message="Read depth filter not applied: no read depth tables were provided for VCF or heterozygosity-table inputs.",
            )
        )
        params = dataclasses.replace(params, min_depth=0)

    ref_name, ref_seq = check_reference(read_fasta(inputs.ref), inputs.ref)
    reference_length = unambiguous_base_count(ref_seq)
    logger.info("Reference %s: %d unambiguous bases", ref_name, reference_length)

    # 2) sample names
    aligned_records: Optional[List[Tuple[str, str]]] = None
    if inputs.consensus_aligned:
        aligned_records = read_fasta(inputs.consensus_aligned)
        consensus = {name: seq for name, seq in aligned_records[1:] if seq}
    else:
        consensus = _read_consensus(inputs.consensus)

    plate_maps: List[PlateMap] = []
    if plate_paths:
        for path in plate_paths:
            pm, diags = read_plate_map(path, options.dimensions)
            plate_maps.append(pm)
            diagnostics.extend(diags)
        names = {s for pm in plate_maps for s in pm.samples}
        _report_remaining(names, "reading plate maps")
        names = _drop(names, set(consensus), "no consensus genome", diagnostics)
    else:
        names = set(consensus)
    _report_remaining(names, "matching consensus genomes")

    # 3) within-sample diversity and read depths
    sources = _diversity_sources(inputs, names, diagnostics)
    names = _drop(names, set(sources), "no within-sample diversity file", diagnostics)
    _report_remaining(names, "matching within-sample diversity files")

    read_depths: Dict[str, Dict[int, int]] = {}
    if params.min_depth:
        read_depths = _read_depths(
            inputs,
            names,
            sources,
            workdir=workdir,
            workers=workers,
            overwrite=overwrite,
            diagnostics=diagnostics,
        )
        names &= set(read_depths)
        _report_remaining(names, "reading read depths")

    # 4) unaligned coverage, plate neighbours
    well_covered = {n for n in names if coverage(consensus[n], reference_length) >= params.min_coverage}
    names = _drop(names, well_covered, f"consensus covers less than {100 * params.min_coverage:.1f}% of the reference", diagnostics)
    _report_remaining(names, "checking genome coverage")

    def _restrict_to_neighbours(current: Set[str]) -> Set[str]:
        maps = [pm.restricted_to(current) for pm in plate_maps]
        remaining = _drop(current, samples_with_neighbors(current, maps, options.adjacency), "no included plate neighbours", diagnostics)
        _report_remaining(remaining, "removing samples without plate neighbours")
        return remaining

    if plate_maps and not print_all_isnvs:
        names = _restrict_to_neighbours(names)

    # 5-6) alignment, gap stripping, masking
    if aligned_records is None:
        to_align = [(ref_name, ref_seq)] + [(n, consensus[n]) for n in sorted(names)]
        logger.info("Aligning %d consensus genomes to the reference with MAFFT", len(names))
        aligned_records = align_with_mafft(to_align, workdir=workdir, threads=workers)
    store = AlignedGenomeStore.from_alignment(aligned_records)
    names &= set(store.consensus)

    if params.min_depth or masked:
        ordered = sorted(names)
        masked_seqs = parallel_map(
            lambda n: mask(store.consensus[n], masked, read_depths.get(n), params.min_depth),
            ordered,
            workers=workers,
        )
        store = store.with_masking(dict(zip(ordered, masked_seqs)))

    samples = [
        Sample(
            name=n,
            consensus=store.consensus[n],
            pre_masking_consensus=store.pre_masking_consensus[n],
            diversity=sources[n],
            read_depth=read_depths.get(n),
            plate_positions=_plate_positions(n, plate_maps),
        )
        for n in sorted(names)
    ]

    # 7) coverage after masking
    if params.min_depth or masked:
        n_before = len(samples)
        samples, diags = filter_eligible(samples, reference_length=reference_length, min_coverage=params.min_coverage)
        diagnostics.extend(diags)
        names = {s.name for s in samples}
        _report_remaining(names, "checking coverage after masking")
        if len(samples) < n_before and plate_maps and not print_all_isnvs:
            names = _restrict_to_neighbours(names)
            samples = [s for s in samples if s.name in names]

    # 8) within-sample diversity -> allele tables
    logger.info("Preparing within-sample diversity for %d samples using %d workers", len(samples), workers)
    reduced = parallel_map(
        lambda s: reduce_sample(
            s,
            params=params,
            masked_positions=masked,
            ref_fasta=inputs.ref,
            workdir=workdir,
            overwrite=overwrite,
        ),
        samples,
        workers=workers,
    )
    samples = []
    for s, diags in reduced:
        samples.append(s)
        diagnostics.extend(diags)
    isnv_counts = {
        s.name: s.diversity.num_positions_with_heterozygosity for s in samples if isinstance(s.diversity, AlleleTable)
    }

    if plate_maps and print_all_isnvs:
        names = _restrict_to_neighbours({s.name for s in samples})
        samples = [s for s in samples if s.name in names]

    # 9) comparisons
    by_name = {s.name: s for s in samples}
    active_maps = [pm.restricted_to(by_name) for pm in plate_maps]
    pairs = schedule_pairs(sorted(by_name), plate_maps=active_maps or None, adjacency=options.adjacency)
    logger.info("Comparing %d sample pairs in both directions", len(pairs))
    comparison = run_comparisons(
        by_name,
        pairs,
        params=params,
        reference_length=reference_length,
        masked_positions=masked,
        workers=workers,
        progress=progress,
    )
    diagnostics.extend(comparison.diagnostics)
    records = comparison.sorted_records()

    result = DetectionResult(
        records=records,
        diagnostics=diagnostics,
        samples=by_name,
        isnv_counts=isnv_counts,
        plate_maps=plate_maps,
        params=params,
        reference_name=ref_name,
        reference_length=reference_length,
        comparisons=comparison.comparisons,
    )

    # 10) outputs
    show_pre_masking = bool(params.min_depth or masked)
    result.outputs["table"] = str(
        write_contamination_table(
            main_table,
            records,
            show_pre_masking=show_pre_masking,
            plate_maps=plate_maps,
            overwrite=overwrite,
        )
    )
    if plate_maps:
        plates_dir = ensure_outdir(outdir_p / "plates")
        for p in write_plate_contamination_tables(plates_dir, plate_maps, records, overwrite=overwrite):
            result.outputs[p.name] = str(p)
        for p in write_plate_isnv_tables(plates_dir, plate_maps, isnv_counts, overwrite=overwrite):
            result.outputs[p.name] = str(p)

    summary_path = outdir_p / "summary.json"
    result.outputs["summary"] = str(summary_path)
    if write_report:
        result.outputs["report"] = str(outdir_p / "report.html")
        render_report(outdir=outdir_p, version=__version__, summary=result.summary(), records=records)
    write_json(summary_path, result.summary())

    logger.info("Found %d potential contamination events", len(records))
    return result
