"""Polyphonia: detection of potential cross-contamination between samples.

Samples are compared pairwise. A sample's consensus alleles that reappear as
minor alleles in a neighbouring sample are evidence of contamination.

Public API is intentionally small; most users should use the CLI:

    polyphonia detect-cross-contam --ref ref.fasta --consensus *.fasta --het *.txt --outdir out/

"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.3.0"
