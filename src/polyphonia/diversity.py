"""Within-sample diversity preprocessing.

A sample's diversity arrives at one of three stages: aligned reads (BAM),
variant calls (VCF) or a heterozygosity table. Each stage is reduced to the
next until an :class:`~polyphonia.models.AlleleTable` remains:

    BamSource --lofreq call--> VcfSource --> heterozygosity rows --> AlleleTable
"""

from __future__ import annotations

import dataclasses
import logging
from pathlib import Path
from typing import Collection, List, Optional, Tuple

from .alleles import build_allele_table, heterozygosity_rows_from_vcf, read_heterozygosity_table, write_heterozygosity_table
from .config import DetectionParameters
from .external import ensure_executable_in_path, run_command
from .models import (
    AlleleTable,
    BamSource,
    Diagnostic,
    DiversitySource,
    HeterozygosityRow,
    HeterozygosityTableSource,
    Sample,
    VcfSource,
)

logger = logging.getLogger(__name__)

LOFREQ_HINT = (
    "Conda/mamba: mamba install -c bioconda lofreq\n"
    "Or call variants yourself and pass --vcf / --het instead of --bam."
)
SAMTOOLS_HINT = (
    "Ubuntu: sudo apt-get install -y samtools\n"
    "Conda/mamba: mamba install -c bioconda samtools\n"
    "Or pass read depth tables with --read-depths."
)


def _prepare_output(path: Path, *, overwrite: bool) -> None:
    if path.exists():
        if not overwrite:
            raise FileExistsError(f"File already exists: {path}. Use --overwrite to replace it.")
        logger.warning("Overwriting existing file: %s", path)
        path.unlink()


def call_variants_lofreq(
    bam_path: str | Path,
    *,
    ref_fasta: str | Path,
    workdir: str | Path,
    overwrite: bool = False,
) -> Path:
    """Run ``lofreq call`` on a BAM and return the VCF path."""
    ensure_executable_in_path("lofreq", hint=LOFREQ_HINT)
    out_vcf = Path(workdir) / f"{Path(bam_path).name}_LoFreq.vcf"
    _prepare_output(out_vcf, overwrite=overwrite)
    run_command(["lofreq", "call", "-f", str(ref_fasta), "-o", str(out_vcf), str(bam_path)])
    return out_vcf


def samtools_depth(
    bam_path: str | Path,
    *,
    workdir: str | Path,
    overwrite: bool = False,
) -> Path:
    """Write ``samtools depth`` output for a BAM and return its path."""
    ensure_executable_in_path("samtools", hint=SAMTOOLS_HINT)
    out_path = Path(workdir) / f"{Path(bam_path).name}_read_depth.txt"
    _prepare_output(out_path, overwrite=overwrite)
    run_command(["samtools", "depth", str(bam_path)], stdout_path=out_path)
    return out_path


def reduce_to_rows(
    source: DiversitySource,
    *,
    ref_fasta: Optional[str | Path],
    workdir: str | Path,
    sample: Optional[str] = None,
    overwrite: bool = False,
) -> Tuple[List[HeterozygosityRow], List[Diagnostic]]:
    """Walk a diversity source through the remaining stages down to heterozygosity rows."""
    if isinstance(source, AlleleTable):
        raise TypeError("Allele tables are already fully reduced.")

    if isinstance(source, BamSource):
        if ref_fasta is None:
            raise ValueError("A reference FASTA is required to call variants from BAM files.")
        logger.info("Sample %s: calling variants with LoFreq", sample)
        source = VcfSource(str(call_variants_lofreq(source.path, ref_fasta=ref_fasta, workdir=workdir, overwrite=overwrite)))

    if isinstance(source, VcfSource):
        rows, diagnostics = heterozygosity_rows_from_vcf(source.path, sample=sample)
        het_path = Path(workdir) / f"{Path(source.path).name}_heterozygosity.txt"
        _prepare_output(het_path, overwrite=overwrite)
        write_heterozygosity_table(het_path, rows)
        return rows, diagnostics

    if isinstance(source, HeterozygosityTableSource):
        return read_heterozygosity_table(source.path, sample=sample)

    raise TypeError(f"Unknown diversity source: {source!r}")


def reduce_sample(
    sample: Sample,
    *,
    params: DetectionParameters,
    masked_positions: Collection[int] = (),
    ref_fasta: Optional[str | Path] = None,
    workdir: str | Path,
    overwrite: bool = False,
) -> Tuple[Sample, List[Diagnostic]]:
    """Return a copy of ``sample`` whose diversity is an allele table."""
    if sample.diversity is None or isinstance(sample.diversity, AlleleTable):
        return sample, []

    rows, diagnostics = reduce_to_rows(
        sample.diversity,
        ref_fasta=ref_fasta,
        workdir=workdir,
        sample=sample.name,
        overwrite=overwrite,
    )
    table, build_diagnostics = build_allele_table(
        rows,
        min_readcount=params.min_readcount,
        min_maf=params.min_maf,
        min_depth=params.min_depth,
        masked_positions=masked_positions,
        read_depth=sample.read_depth,
        sample=sample.name,
    )
    return dataclasses.replace(sample, diversity=table), diagnostics + build_diagnostics


def source_for(path: str | Path, stage: str) -> DiversitySource:
    if stage == "bam":
        return BamSource(str(path))
    if stage == "vcf":
        return VcfSource(str(path))
    if stage == "het":
        return HeterozygosityTableSource(str(path))
    raise ValueError(f"Unknown diversity stage: {stage}")
