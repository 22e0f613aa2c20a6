from __future__ import annotations

import random
from pathlib import Path
from typing import Dict, List, Tuple

import pysam

from .alignment import write_fasta
from .utils import ensure_outdir, write_json

TOY_REFERENCE_LENGTH = 29_903
TOY_DEPTH = 1000
TOY_MINOR_FREQUENCY = 0.04


def _mutate_base(base: str) -> str:
    for alt in ["A", "C", "G", "T"]:
        if alt != base:
            return alt
    return "A"


def _mutate(seq: str, positions: List[int]) -> str:
    out = list(seq)
    for p in positions:
        out[p - 1] = _mutate_base(out[p - 1])
    return "".join(out)


def _write_depths(path: Path, contig: str, length: int) -> None:
    lines = [f"{contig}\t{p}\t{TOY_DEPTH}" for p in range(1, length + 1)]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def _write_lofreq_vcf(path: Path, contig: str, ref_seq: str, variants: List[Tuple[int, str]]) -> None:
    header = pysam.VariantHeader()
    header.add_meta("fileformat", "VCFv4.0")
    header.contigs.add(contig, length=len(ref_seq))
    header.info.add("DP", number=1, type="Integer", description="Raw Depth")
    header.info.add("AF", number=1, type="Float", description="Allele Frequency")

    with pysam.VariantFile(str(path), "w", header=header) as vcf:
        for pos, alt in variants:
            rec = vcf.new_record(
                contig=contig,
                start=pos - 1,
                stop=pos,
                alleles=(ref_seq[pos - 1], alt),
                qual=60,
                filter="PASS",
            )
            rec.info["DP"] = TOY_DEPTH
            rec.info["AF"] = TOY_MINOR_FREQUENCY
            vcf.write(rec)


def make_toy_data(*, outdir: str | Path) -> Dict[str, str]:
    """Create a small three-sample dataset for quick demos/tests.

    Sample ``A`` differs from the reference at 21 positions. Sample ``B``
    matches the reference but carries A's alleles as minor alleles (4%) at
    exactly those positions, so B looks contaminated by A. Sample ``C`` has
    5 private mutations and no heterozygous positions. On the plate, A sits
    in A1, B in A2 and C in B2.

    The outputs include:
    - toy_ref.fasta
    - toy_consensus.fasta (unaligned) and toy_consensus_aligned.fasta
    - B.vcf (LoFreq-style), A.het.txt, C.het.txt
    - A/B/C read depth tables
    - toy_plate_map.txt

    Returns
    -------
    dict
        Paths to the generated files.
    """
    outdir_p = ensure_outdir(outdir)
    rng = random.Random(7)

    contig = "toy_reference"
    ref_seq = "".join(rng.choice("ACGT") for _ in range(TOY_REFERENCE_LENGTH))
    positions = rng.sample(range(11, TOY_REFERENCE_LENGTH - 10), 26)
    a_positions = sorted(positions[:21])
    c_positions = sorted(positions[21:])

    consensus = {
        "A": _mutate(ref_seq, a_positions),
        "B": ref_seq,
        "C": _mutate(ref_seq, c_positions),
    }

    ref_fa = write_fasta(outdir_p / "toy_ref.fasta", [(contig, ref_seq)])
    consensus_fa = write_fasta(outdir_p / "toy_consensus.fasta", sorted(consensus.items()))
    aligned_fa = write_fasta(outdir_p / "toy_consensus_aligned.fasta", [(contig, ref_seq)] + sorted(consensus.items()))

    vcf_path = outdir_p / "B.vcf"
    _write_lofreq_vcf(vcf_path, contig, ref_seq, [(p, consensus["A"][p - 1]) for p in a_positions])

    het_paths = {}
    for name in ("A", "C"):
        het_paths[name] = outdir_p / f"{name}.het.txt"
        het_paths[name].write_text("", encoding="utf-8")

    depth_paths = {}
    for name in consensus:
        depth_paths[name] = outdir_p / f"{name}.depth.txt"
        _write_depths(depth_paths[name], contig, len(ref_seq))

    plate_map = outdir_p / "toy_plate_map.txt"
    plate_map.write_text("A\tA1\nB\tA2\nC\tB2\n", encoding="utf-8")

    summary = {
        "ref": str(ref_fa),
        "consensus": str(consensus_fa),
        "consensus_aligned": str(aligned_fa),
        "vcf": [str(vcf_path)],
        "het": [str(het_paths["A"]), str(het_paths["C"])],
        "read_depths": [str(depth_paths[n]) for n in sorted(depth_paths)],
        "plate_map": str(plate_map),
        "contaminated_positions": [int(p) for p in a_positions],
        "outdir": str(outdir_p),
    }

    write_json(outdir_p / "toy_summary.json", summary)
    return summary
