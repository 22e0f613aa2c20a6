from __future__ import annotations

import gzip
import json
import logging
from pathlib import Path
from typing import Any, Optional, TextIO

logger = logging.getLogger(__name__)

NO_DATA = "NA"


def ensure_outdir(path: str | Path) -> Path:
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


def open_textmaybe_gzip(path: str | Path, mode: str = "rt") -> TextIO:
    p = str(path)
    if p.endswith(".gz"):
        return gzip.open(p, mode)  # type: ignore[return-value]
    return open(p, mode)


def write_json(path: str | Path, obj: Any) -> None:
    with open(path, "wt", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, sort_keys=True)


def add_comma_separators(value: int) -> str:
    return f"{value:,}"


def format_percentage(proportion: Optional[float]) -> str:
    """0.0412 -> '4.1%'; None -> 'NA'."""
    if proportion is None:
        return NO_DATA
    return f"{100 * proportion:.1f}%"


def trim_file_extension(name: str) -> str:
    """'s1.ext1.ext2' -> 's1.ext1'; names without an extension are returned as-is."""
    base, sep, _ = name.rpartition(".")
    if not sep or not base:
        return name
    return base
