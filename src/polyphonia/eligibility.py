from __future__ import annotations

import logging
from typing import Collection, List, Sequence, Tuple

from .alignment import coverage
from .models import Diagnostic, Sample

logger = logging.getLogger(__name__)


class NoComparableSamples(ValueError):
    """Fewer than two samples are left to compare."""


def is_eligible(sample: Sample, reference_length: int, min_coverage: float) -> bool:
    """True iff the post-masking consensus covers at least ``min_coverage`` of the reference."""
    if not sample.consensus:
        return False
    return coverage(sample.consensus, reference_length) >= min_coverage


def filter_eligible(
    samples: Sequence[Sample],
    *,
    reference_length: int,
    min_coverage: float,
) -> Tuple[List[Sample], List[Diagnostic]]:
    kept: List[Sample] = []
    diagnostics: List[Diagnostic] = []
    for sample in samples:
        if is_eligible(sample, reference_length, min_coverage):
            kept.append(sample)
            continue
        cov = coverage(sample.consensus, reference_length) if sample.consensus else 0.0
        msg = (
            f"Excluding sample {sample.name}: consensus covers {100 * cov:.1f}% of the reference "
            f"(minimum {100 * min_coverage:.1f}%)."
        )
        logger.warning(msg)
        diagnostics.append(Diagnostic(level="warning", message=msg, sample=sample.name))

    logger.info("%d of %d samples meet the minimum genome coverage", len(kept), len(samples))
    return kept, diagnostics


def require_comparable(names: Collection[str]) -> None:
    if len(names) < 2:
        raise NoComparableSamples(
            f"No pairs of samples to compare: {len(names)} sample(s) remain after filtering. "
            "Check consensus coverage (--min-covered), sample naming, and plate maps."
        )
