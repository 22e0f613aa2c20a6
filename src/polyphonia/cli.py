from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from . import __version__
from .config import Adjacency, DetectionParameters, PlateOptions, resolve_plate_dimensions
from .doctor import collect_checks
from .external import ExternalCommandError
from .output import MAIN_TABLE_NAME
from .pipeline import DetectionInputs, run_detection
from .toy_data import make_toy_data

_DEFAULTS = DetectionParameters()


def _setup_logging(verbosity: int, *, logfile: Optional[Path] = None) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    log_fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    logging.basicConfig(level=level, format=log_fmt, stream=sys.stderr)

    if logfile is not None:
        logfile.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(logfile)
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(log_fmt))
        logging.getLogger().addHandler(fh)


def _path_exists(p: str) -> str:
    if not Path(p).exists():
        raise argparse.ArgumentTypeError(f"Path does not exist: {p}")
    return p


def _proportion(s: str) -> float:
    value = float(s)
    if not 0.0 <= value <= 1.0:
        raise argparse.ArgumentTypeError(f"Expected a proportion between 0 and 1, got {s}")
    return value


def _non_negative_int(s: str) -> int:
    value = int(s)
    if value < 0:
        raise argparse.ArgumentTypeError(f"Expected an integer >= 0, got {s}")
    return value


def _log_path(outdir: Path, name: str) -> Path:
    return outdir / "logs" / name


def _handle_error(err: Exception, *, log_path: Optional[Path] = None) -> int:
    if isinstance(err, ExternalCommandError):
        msg = str(err)
    else:
        msg = f"{err.__class__.__name__}: {err}"

    sys.stderr.write(msg + "\n")
    if log_path is not None:
        sys.stderr.write(f"See log: {log_path}\n")
    return 2


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="polyphonia",
        description=(
            "Polyphonia: detect potential cross-contamination between samples from "
            "consensus genomes and within-sample diversity, optionally restricted to plate neighbours."
        ),
    )
    p.add_argument("--version", action="version", version=f"polyphonia {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    # -----------------
    # quickstart
    # -----------------
    sub.add_parser(
        "quickstart",
        help="Print ready-to-run recipes for common scenarios.",
    )

    # -----------------
    # make-toy-data
    # -----------------
    t = sub.add_parser(
        "make-toy-data",
        help="Generate a tiny three-sample dataset with one contamination event.",
    )
    t.add_argument("--outdir", required=True, help="Output directory for toy data.")
    t.add_argument("--dry-run", action="store_true", help="Validate paths without writing files.")

    # -----------------
    # detect-cross-contam
    # -----------------
    a = sub.add_parser(
        "detect-cross-contam",
        help="Detect potential cross-contamination between samples.",
    )
    a.add_argument("--ref", required=True, type=_path_exists, help="Reference genome FASTA (one sequence).")
    a.add_argument(
        "--consensus",
        nargs="+",
        default=[],
        type=_path_exists,
        help="Unaligned consensus genome FASTA file(s); aligned to the reference with MAFFT.",
    )
    a.add_argument(
        "--consensus-aligned",
        default=None,
        type=_path_exists,
        help="Consensus genomes already aligned to the reference; the reference must be the first sequence.",
    )

    div = a.add_argument_group("within-sample diversity (one file per sample)")
    div.add_argument("--bam", nargs="+", default=[], type=_path_exists, help="Aligned reads; variants called with LoFreq.")
    div.add_argument("--vcf", nargs="+", default=[], type=_path_exists, help="LoFreq or GATK VCF files.")
    div.add_argument("--het", nargs="+", default=[], type=_path_exists, help="Heterozygosity tables.")
    div.add_argument(
        "--read-depths",
        nargs="+",
        default=[],
        type=_path_exists,
        help="Read depth tables (samtools depth output); generated from BAM files when omitted.",
    )

    th = a.add_argument_group("thresholds")
    th.add_argument(
        "--min-maf",
        type=_proportion,
        default=_DEFAULTS.min_maf,
        help="Minimum minor allele frequency for a heterozygous position.",
    )
    th.add_argument(
        "--min-readcount",
        type=_non_negative_int,
        default=_DEFAULTS.min_readcount,
        help="Minimum minor allele readcount for a heterozygous position.",
    )
    th.add_argument(
        "--min-depth",
        type=_non_negative_int,
        default=_DEFAULTS.min_depth,
        help="Minimum read depth for a position to be used (0 disables the filter).",
    )
    th.add_argument(
        "--min-covered",
        type=_proportion,
        default=_DEFAULTS.min_coverage,
        help="Minimum proportion of the reference covered by the consensus.",
    )
    th.add_argument(
        "--max-mismatches",
        type=_non_negative_int,
        default=_DEFAULTS.max_mismatches,
        help="Maximum alleles of the contaminating consensus missing from the contaminated sample.",
    )
    th.add_argument("--masked-positions", default="", help="Positions to ignore, e.g. 1-10,50,55-70.")
    th.add_argument(
        "--masked-positions-file",
        default=None,
        type=_path_exists,
        help="File of positions to ignore, one position or range per line.",
    )

    pl = a.add_argument_group("plate maps")
    pl.add_argument(
        "--plate-map",
        nargs="+",
        default=[],
        type=_path_exists,
        help="Tab-separated sample name and well (e.g. A1), one plate per file.",
    )
    pl.add_argument("--plate-size", type=int, default=None, help="Standard plate size (default: 96).")
    pl.add_argument("--plate-rows", type=int, default=None, help="Number of rows, for non-standard plates.")
    pl.add_argument("--plate-columns", type=int, default=None, help="Number of columns, for non-standard plates.")
    pl.add_argument("--no-compare-direct", action="store_true", help="Do not compare wells directly above/below/left/right.")
    pl.add_argument("--compare-diagonal", action="store_true", help="Compare diagonal neighbours.")
    pl.add_argument("--compare-row", action="store_true", help="Compare all wells in the same row.")
    pl.add_argument("--compare-column", action="store_true", help="Compare all wells in the same column.")
    pl.add_argument("--compare-plate", action="store_true", help="Compare all wells on the same plate.")

    a.add_argument("--outdir", required=True, help="Output directory.")
    a.add_argument(
        "--output",
        default=None,
        help=f"Path of the main output table (default: outdir/{MAIN_TABLE_NAME}).",
    )
    a.add_argument("--cores", type=int, default=1, help="Worker threads for preprocessing and comparisons.")
    a.add_argument("--overwrite", action="store_true", help="Overwrite existing output files.")
    a.add_argument(
        "--print-all",
        action="store_true",
        help="Report every comparison, flagging those failing coverage or mismatch thresholds.",
    )
    a.add_argument(
        "--print-all-isnvs",
        action="store_true",
        help="Include samples without plate neighbours in the per-plate iSNV tables.",
    )
    a.add_argument("--no-report", action="store_true", help="Do not write report.html.")
    a.add_argument("--dry-run", action="store_true", help="Validate arguments and print planned outputs.")
    a.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    # -----------------
    # doctor
    # -----------------
    d = sub.add_parser(
        "doctor",
        help="Check your environment for external tools (mafft/lofreq/samtools).",
    )
    d.add_argument("--dry-run", action="store_true", help="Print checks without exiting nonzero.")
    d.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    return p


# -----------------
# Command handlers
# -----------------

def cmd_quickstart() -> int:
    lines = [
        "Polyphonia quickstart (copy/paste):",
        "",
        "1) Consensus genomes + LoFreq VCFs, all pairs compared:",
        "   polyphonia detect-cross-contam \\",
        "     --ref reference.fasta \\",
        "     --consensus consensus.fasta \\",
        "     --vcf sample1.vcf sample2.vcf sample3.vcf \\",
        "     --read-depths sample1.depth.txt sample2.depth.txt sample3.depth.txt \\",
        "     --outdir results/",
        "   Outputs: results/potential_cross_contamination.txt, results/report.html",
        "",
        "2) Plate neighbours only (BAMs; LoFreq and samtools run for you):",
        "   polyphonia detect-cross-contam \\",
        "     --ref reference.fasta \\",
        "     --consensus consensus.fasta \\",
        "     --bam *.bam \\",
        "     --plate-map plate1.txt --compare-diagonal \\",
        "     --cores 8 --outdir plate_run/",
        "   Outputs: plate_run/plates/plate1_potential_cross_contamination.txt, plate_run/plates/plate1_iSNVs.txt",
        "",
        "3) Try it on toy data (no external tools needed):",
        "   polyphonia make-toy-data --outdir toy/",
        "   polyphonia detect-cross-contam \\",
        "     --ref toy/toy_ref.fasta \\",
        "     --consensus-aligned toy/toy_consensus_aligned.fasta \\",
        "     --vcf toy/B.vcf --het toy/A.het.txt toy/C.het.txt \\",
        "     --read-depths toy/A.depth.txt toy/B.depth.txt toy/C.depth.txt \\",
        "     --plate-map toy/toy_plate_map.txt \\",
        "     --outdir toy_results/",
        "",
        "Tip: run 'polyphonia doctor' to check for mafft, lofreq and samtools.",
    ]
    print("\n".join(lines))
    return 0


def cmd_make_toy_data(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    if args.dry_run:
        print(f"Would write toy data into: {outdir}")
        return 0

    summary = make_toy_data(outdir=outdir)
    print(json.dumps(summary, indent=2))
    return 0


def _plate_options(args: argparse.Namespace) -> PlateOptions:
    return PlateOptions(
        dimensions=resolve_plate_dimensions(args.plate_size, args.plate_rows, args.plate_columns),
        adjacency=Adjacency(
            direct=not args.no_compare_direct,
            diagonal=args.compare_diagonal,
            row=args.compare_row,
            column=args.compare_column,
            whole_plate=args.compare_plate,
        ),
    )


def cmd_detect(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    log_path = _log_path(outdir, "detect.log")
    _setup_logging(args.verbose, logfile=None if args.dry_run else log_path)

    logger = logging.getLogger("polyphonia")
    logger.info("polyphonia %s", __version__)

    try:
        params = DetectionParameters(
            min_readcount=args.min_readcount,
            min_maf=args.min_maf,
            min_depth=args.min_depth,
            min_coverage=args.min_covered,
            max_mismatches=args.max_mismatches,
            print_all=args.print_all,
        ).validate()
        plate_options = _plate_options(args)
        if args.cores < 1:
            raise ValueError(f"--cores must be >= 1, got {args.cores}")

        inputs = DetectionInputs(
            ref=args.ref,
            consensus=args.consensus,
            consensus_aligned=args.consensus_aligned,
            bam=args.bam,
            vcf=args.vcf,
            het=args.het,
            read_depths=args.read_depths,
            plate_maps=args.plate_map,
            masked_positions=args.masked_positions,
            masked_positions_file=args.masked_positions_file,
        )

        if args.dry_run:
            main_table = Path(args.output) if args.output else outdir / MAIN_TABLE_NAME
            print("Dry-run: arguments look OK.")
            print(f"Plate: {plate_options.dimensions.rows} rows x {plate_options.dimensions.columns} columns")
            print("Planned outputs:")
            print(f"  table -> {main_table}")
            if args.plate_map:
                print(f"  per-plate tables -> {outdir / 'plates'}")
            print(f"  summary.json -> {outdir / 'summary.json'}")
            if not args.no_report:
                print(f"  report.html -> {outdir / 'report.html'}")
            return 0

        result = run_detection(
            inputs,
            params=params,
            outdir=outdir,
            plate_options=plate_options,
            output=args.output,
            workers=args.cores,
            print_all_isnvs=args.print_all_isnvs,
            overwrite=args.overwrite,
            progress=args.verbose > 0,
            write_report=not args.no_report,
        )

        print(result.outputs["table"])
        return 0
    except Exception as e:
        return _handle_error(e, log_path=None if args.dry_run else log_path)


def cmd_doctor(args: argparse.Namespace) -> int:
    _setup_logging(args.verbose, logfile=None)

    checks = collect_checks()

    # Human-readable output
    lines = []
    ok_all = True
    for name in ["python", "mafft", "lofreq", "samtools"]:
        r = checks[name]
        status = "OK" if r.ok else "MISSING"
        lines.append(f"{name:9s} : {status:7s}  {r.detail}")
        if not r.ok:
            ok_all = False

    print("\n".join(lines))

    # Guidance
    for name in ["mafft", "lofreq", "samtools"]:
        r = checks[name]
        if not r.ok and r.howto:
            print("\n---")
            print(f"How to install/fix '{name}' (needed for {r.needed_for}):")
            print(r.howto)

    if args.dry_run:
        return 0
    return 0 if ok_all else 1


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "quickstart":
        return cmd_quickstart()
    if args.cmd == "make-toy-data":
        return cmd_make_toy_data(args)
    if args.cmd == "detect-cross-contam":
        return cmd_detect(args)
    if args.cmd == "doctor":
        return cmd_doctor(args)

    parser.error(f"Unknown command: {args.cmd}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
