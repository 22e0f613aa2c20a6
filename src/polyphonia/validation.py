from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from .alignment import unambiguous_base_count
from .config import ConfigurationError

logger = logging.getLogger(__name__)


def check_input_file(path: str | Path, description: str, *, allow_empty: bool = False) -> Path:
    """Ensure an input file exists (and is non-empty); raise with the offending path."""
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"{description} does not exist: {p}")
    if p.is_dir():
        raise ConfigurationError(f"{description} is a directory, expected a file: {p}")
    if not allow_empty and p.stat().st_size == 0:
        raise ConfigurationError(f"{description} is empty: {p}")
    return p


def check_input_files(paths: Sequence[str | Path], description: str) -> List[Path]:
    return [check_input_file(p, description) for p in paths]


def check_reference(records: Sequence[Tuple[str, str]], path: str | Path) -> Tuple[str, str]:
    """The reference FASTA must hold exactly one sequence with at least one A/T/C/G."""
    if len(records) != 1:
        raise ConfigurationError(
            f"Reference FASTA must contain exactly one sequence, found {len(records)}: {path}"
        )
    name, seq = records[0]
    if unambiguous_base_count(seq) == 0:
        raise ConfigurationError(f"Reference sequence contains no unambiguous (A, T, C, G) bases: {path}")
    return name, seq


def check_input_combination(
    *,
    consensus: Sequence[str],
    consensus_aligned: Optional[str],
    diversity_inputs: int,
) -> None:
    """Fail early on input combinations that cannot produce any comparison."""
    if not consensus and not consensus_aligned:
        raise ConfigurationError("Provide consensus genomes with --consensus or --consensus-aligned.")
    if consensus and consensus_aligned:
        raise ConfigurationError(
            "--consensus and --consensus-aligned are mutually exclusive: "
            "either let polyphonia align the genomes or provide an existing alignment."
        )
    if diversity_inputs == 0:
        raise ConfigurationError("Provide within-sample diversity files with --bam, --vcf or --het.")
