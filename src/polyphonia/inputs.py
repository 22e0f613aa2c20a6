"""Parsers for the small tabular inputs: read depths, masked positions, and the
file-name based matching of per-sample files to sample names.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Collection, Dict, Iterable, List, Optional, Set, Tuple

from .config import ConfigurationError
from .models import Diagnostic
from .utils import open_textmaybe_gzip, trim_file_extension

logger = logging.getLogger(__name__)


def match_sample_name(path: str | Path, names: Collection[str]) -> Optional[str]:
    """Find the sample a file belongs to by trimming extensions off its file name.

    ``sample1.ext1.ext2`` tries ``sample1.ext1.ext2``, ``sample1.ext1`` and
    ``sample1`` in that order, so the longest matching sample name wins.
    """
    candidate = Path(path).name
    while candidate:
        if candidate in names:
            return candidate
        trimmed = trim_file_extension(candidate)
        if trimmed == candidate:
            return None
        candidate = trimmed
    return None


def assign_files_to_samples(
    paths: Iterable[str | Path],
    names: Collection[str],
    *,
    kind: str,
) -> Tuple[Dict[str, str], List[Diagnostic]]:
    """Map sample name -> file path; later files replace earlier ones for the same sample."""
    assigned: Dict[str, str] = {}
    diagnostics: List[Diagnostic] = []
    for path in paths:
        name = match_sample_name(path, names)
        if name is None:
            msg = f"Could not match {kind} {path} to any sample name; ignoring it."
            logger.warning(msg)
            diagnostics.append(Diagnostic(level="warning", message=msg))
            continue
        if name in assigned:
            logger.info("Sample %s: %s %s replaces %s", name, kind, path, assigned[name])
        assigned[name] = str(path)
    return assigned, diagnostics


def read_read_depth_table(path: str | Path) -> Dict[int, int]:
    """Read a ``samtools depth`` table: reference, position, depth (tab-separated)."""
    depth: Dict[int, int] = {}
    n_bad = 0
    with open_textmaybe_gzip(path) as fh:
        for line in fh:
            if not line.strip() or line.startswith("#"):
                continue
            fields = line.rstrip("\r\n").split("\t")
            try:
                depth[int(fields[1])] = int(fields[2])
            except (IndexError, ValueError):
                n_bad += 1
    if n_bad:
        logger.warning("Read depth table %s: skipped %d malformed lines", path, n_bad)
    return depth


def parse_masked_positions(text: str) -> Set[int]:
    """'1-10,50,55-70' -> {1..10, 50, 55..70}."""
    positions: Set[int] = set()
    for item in text.split(","):
        item = item.strip()
        if not item:
            continue
        try:
            if "-" in item:
                first_s, last_s = item.split("-", 1)
                first, last = int(first_s), int(last_s)
                if first > last:
                    first, last = last, first
                positions.update(range(first, last + 1))
            else:
                positions.add(int(item))
        except ValueError:
            raise ConfigurationError(
                f"Masked position '{item}' is not a position or a range such as 55-70."
            ) from None
    if any(p < 1 for p in positions):
        raise ConfigurationError("Masked positions must be 1-based (>= 1).")
    return positions


def read_masked_positions_file(path: str | Path) -> Set[int]:
    """One position (or range) per line."""
    positions: Set[int] = set()
    with open_textmaybe_gzip(path) as fh:
        for line in fh:
            line = line.strip()
            if line:
                positions.update(parse_masked_positions(line))
    return positions
