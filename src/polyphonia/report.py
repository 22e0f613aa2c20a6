from __future__ import annotations

import datetime as _dt
import logging
from pathlib import Path
from typing import Any, Dict, List, Sequence

from jinja2 import Template

from .models import ContaminationRecord
from .output import format_alleles, format_frequency_range
from .utils import format_percentage

logger = logging.getLogger(__name__)


_REPORT_TEMPLATE = Template(
    """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>Polyphonia Report</title>
  <style>
    body { font-family: Arial, Helvetica, sans-serif; margin: 24px; }
    code, pre { background: #f6f8fa; padding: 2px 4px; border-radius: 4px; }
    h1, h2, h3 { margin-top: 1.2em; }
    table { border-collapse: collapse; margin-top: 0.6em; }
    th, td { border: 1px solid #ddd; padding: 8px; vertical-align: top; }
    th { background: #f2f2f2; text-align: left; }
    .grid { display: grid; grid-template-columns: 1fr 1fr; gap: 16px; }
    .card { border: 1px solid #ddd; border-radius: 8px; padding: 12px; }
    .small { color: #666; font-size: 0.9em; }
    .warning { color: #8a4b00; }
  </style>
</head>
<body>

<h1>Polyphonia Report</h1>
<p class="small">Generated: {{ generated_at }}</p>

<h2>Run summary</h2>
<div class="grid">
  <div class="card">
    <h3>Reference and samples</h3>
    <table>
      <tr><th>Reference</th><td><code>{{ summary.reference }}</code></td></tr>
      <tr><th>Unambiguous reference bases</th><td>{{ summary.reference_length }}</td></tr>
      <tr><th>Samples compared</th><td>{{ summary.samples_compared | length }}</td></tr>
      <tr><th>Directional comparisons</th><td>{{ summary.directional_comparisons }}</td></tr>
    </table>
  </div>
  <div class="card">
    <h3>Thresholds</h3>
    <table>
      <tr><th>Min minor allele readcount</th><td>{{ summary.parameters.min_readcount }}</td></tr>
      <tr><th>Min minor allele frequency</th><td>{{ summary.parameters.min_maf }}</td></tr>
      <tr><th>Min read depth</th><td>{{ summary.parameters.min_depth }}</td></tr>
      <tr><th>Min genome coverage</th><td>{{ summary.parameters.min_coverage }}</td></tr>
      <tr><th>Max mismatches</th><td>{{ summary.parameters.max_mismatches }}</td></tr>
    </table>
  </div>
</div>

<h2>Potential cross-contamination ({{ rows | length }})</h2>
{% if rows %}
<table>
  <tr>
    <th>Contaminated</th><th>Contaminating</th><th>Appearance</th>
    <th>Estimated volume</th><th>Frequency range</th>
    <th>Minor / major matched</th><th>Mismatches</th><th>Matched alleles</th>
  </tr>
  {% for r in rows %}
  <tr>
    <td><code>{{ r.contaminated }}</code></td>
    <td><code>{{ r.contaminating }}</code></td>
    <td>{{ r.type }}</td>
    <td>{{ r.volume }}</td>
    <td>{{ r.range }}</td>
    <td>{{ r.minor }} / {{ r.major }}</td>
    <td>{{ r.mismatches }}</td>
    <td class="small">{{ r.matched }}</td>
  </tr>
  {% endfor %}
</table>
{% else %}
<p>No potential cross-contamination detected.</p>
{% endif %}

{% if summary.diagnostics %}
<h2>Warnings</h2>
<ul>
  {% for d in summary.diagnostics %}
  <li class="{{ d.level }}">{{ d.message }}</li>
  {% endfor %}
</ul>
{% endif %}

<h2>Outputs</h2>
<ul>
  {% for name, path in summary.outputs | dictsort %}
  <li><code>{{ path }}</code></li>
  {% endfor %}
</ul>

<h2>Interpretation notes</h2>
<ul>
  <li>Each row reads "contaminated sample contains alleles of contaminating sample"; both directions are tested.</li>
  <li>The estimated volume is the median frequency of matched alleles in the contaminated sample.</li>
  <li>Consensus-level matches alone cannot be told apart from true relatedness of the two genomes.</li>
</ul>

<hr>
<p class="small">Polyphonia {{ version }}</p>
</body>
</html>"""
)


def _rows(records: Sequence[ContaminationRecord]) -> List[Dict[str, Any]]:
    return [
        {
            "contaminated": r.contaminated,
            "contaminating": r.contaminating,
            "type": r.contamination_type,
            "volume": format_percentage(r.median_frequency),
            "range": format_frequency_range(r),
            "minor": r.minor_alleles_matched,
            "major": r.major_alleles_matched,
            "mismatches": r.num_mismatches,
            "matched": format_alleles(r.matched_alleles),
        }
        for r in records
    ]


def render_report(
    *,
    outdir: str | Path,
    version: str,
    summary: Dict[str, Any],
    records: Sequence[ContaminationRecord],
) -> Path:
    outdir = Path(outdir)
    outdir.mkdir(parents=True, exist_ok=True)

    html = _REPORT_TEMPLATE.render(
        generated_at=_dt.datetime.now().isoformat(timespec="seconds"),
        version=version,
        summary=summary,
        rows=_rows(records),
    )

    out_path = outdir / "report.html"
    out_path.write_text(html, encoding="utf-8")
    logger.info("Report written: %s", out_path)
    return out_path
