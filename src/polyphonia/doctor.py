"""Environment self-checks.

This module powers the ``polyphonia doctor`` CLI command.

Comparisons themselves are pure Python. Alignment, variant calling and
read-depth generation call MAFFT, LoFreq and samtools; which of them a run
needs depends on its inputs (an existing alignment, VCFs and read depth tables
need none of them).
"""

from __future__ import annotations

import logging
import platform
import shutil
from dataclasses import dataclass
from typing import Dict, Optional

from .alignment import MAFFT_HINT
from .diversity import LOFREQ_HINT, SAMTOOLS_HINT
from .external import run_command

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckResult:
    name: str
    ok: bool
    detail: str
    howto: Optional[str] = None
    needed_for: Optional[str] = None


def check_python() -> CheckResult:
    v = platform.python_version()
    return CheckResult(name="python", ok=True, detail=f"Python {v}")


def check_executable(
    name: str,
    *,
    howto: Optional[str] = None,
    needed_for: Optional[str] = None,
    version_args: Optional[list] = None,
) -> CheckResult:
    p = shutil.which(name)
    if p is None:
        return CheckResult(name=name, ok=False, detail="not found in PATH", howto=howto, needed_for=needed_for)
    if version_args:
        try:
            cp = run_command([name, *version_args], check=False)
        except OSError as e:
            return CheckResult(name=name, ok=False, detail=f"present but not runnable: {e}", howto=howto, needed_for=needed_for)
        lines = ((cp.stdout or "") + (cp.stderr or "")).strip().splitlines()
        if lines:
            return CheckResult(name=name, ok=True, detail=f"{p} ({lines[0].strip()})", needed_for=needed_for)
    return CheckResult(name=name, ok=True, detail=p, needed_for=needed_for)


def collect_checks() -> Dict[str, CheckResult]:
    """Run all checks and return a mapping name->result."""
    checks: Dict[str, CheckResult] = {}

    checks["python"] = check_python()
    checks["mafft"] = check_executable(
        "mafft",
        howto=MAFFT_HINT,
        needed_for="--consensus (aligning genomes)",
        version_args=["--version"],
    )
    checks["lofreq"] = check_executable(
        "lofreq",
        howto=LOFREQ_HINT,
        needed_for="--bam (calling within-sample variants)",
        version_args=["version"],
    )
    checks["samtools"] = check_executable(
        "samtools",
        howto=SAMTOOLS_HINT,
        needed_for="--bam with --min-depth and no --read-depths",
        version_args=["--version"],
    )

    return checks
