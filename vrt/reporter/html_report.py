"""HTML report generator - a static report with baseline/current/diff images per result."""

from __future__ import annotations

import html
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path

from vrt.models.test_result import DIMENSION_MISMATCH, TestResult

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Visual Regression Report"
REPORT_INDEX = "index.html"
IMAGES_DIR = "images"


@dataclass
class ReportSummary:
    report_path: Path
    images_dir: Path
    total: int
    passed: int
    failed: int


def _copy_image(source: str | None, kind: str, index: int, images_dir: Path) -> str | None:
    """Copy an image into the report and return its path relative to index.html."""
    if not source:
        return None
    src = Path(source)
    if not src.is_file():
        return None
    name = f"{kind}_{index}_{src.name}"
    shutil.copyfile(src, images_dir / name)
    return f"{IMAGES_DIR}/{name}"


def _image_cell(label: str, src: str | None) -> str:
    if not src:
        return f'''
        <div class="image-cell empty">
          <div class="image-label">{label}</div>
          <div class="image-missing">Not available</div>
        </div>'''
    return f'''
        <div class="image-cell">
          <div class="image-label">{label}</div>
          <a href="{html.escape(src)}" target="_blank"><img src="{html.escape(src)}" alt="{label}" loading="lazy"/></a>
        </div>'''


def _build_result_card(r: TestResult, images: dict[str, str | None]) -> str:
    status = r.status
    border_color = "#22c55e" if r.passed else "#ef4444"

    card = f'''
    <div class="result-card {status}" data-status="{status}">
      <div class="result-header" style="border-left: 4px solid {border_color};" onclick="this.parentElement.classList.toggle('expanded')">
        <div class="result-header-left">
          <span class="badge {status}">{status.upper()}</span>
          {'<span class="badge warning">DIMENSION MISMATCH</span>' if r.warning == DIMENSION_MISMATCH else ''}
          <strong>{html.escape(r.scenario_title or r.scenario_id)}</strong>
          <span class="result-meta">{html.escape(r.viewport)} &middot; {r.duration_seconds:.1f}s</span>
        </div>
        <span class="expand-arrow">&#9660;</span>
      </div>
      <div class="result-body">
        <div class="urls">
          <div><span class="url-label">Test URL</span> <a href="{html.escape(r.scenario_url)}" target="_blank">{html.escape(r.scenario_url)}</a></div>'''

    if r.baseline_url:
        card += f'''
          <div><span class="url-label">Baseline URL</span> <a href="{html.escape(r.baseline_url)}" target="_blank">{html.escape(r.baseline_url)}</a></div>'''
    card += '</div>'

    if r.error:
        card += f'<div class="failure-banner"><strong>Error:</strong> {html.escape(r.error)}</div>'
    if r.warning == DIMENSION_MISMATCH:
        card += ('<div class="warning-banner"><strong>Dimension mismatch:</strong> '
                 'the screenshot and baseline differ in size, so no pixel diff was counted.</div>')

    if r.diff_pixels is not None and r.diff_pixels >= 0:
        card += f'''
        <div class="diff-stats">
          <span><strong>{r.diff_pixels:,}</strong> different pixels</span>
          <span><strong>{r.diff_percentage or 0:.4f}%</strong> of {r.total_pixels or 0:,}</span>
        </div>'''

    card += '<div class="images-grid">'
    card += _image_cell("Baseline", images.get("baseline"))
    card += _image_cell("Current", images.get("current"))
    card += _image_cell("Diff", images.get("diff"))
    card += '</div></div></div>'
    return card


def generate_html_report(
    results: list[TestResult],
    output_dir: str | Path,
    title: str = DEFAULT_TITLE,
    copy_images: bool = True,
) -> ReportSummary:
    """Write ``index.html`` (and copied images) into ``output_dir``."""
    out_dir = Path(output_dir)
    images_dir = out_dir / IMAGES_DIR
    out_dir.mkdir(parents=True, exist_ok=True)
    if copy_images:
        images_dir.mkdir(parents=True, exist_ok=True)

    cards = []
    for index, r in enumerate(results):
        if copy_images:
            images = {
                "baseline": _copy_image(r.baseline_path, "baseline", index, images_dir),
                "current": _copy_image(r.screenshot_path, "current", index, images_dir),
                "diff": _copy_image(r.diff_path, "diff", index, images_dir),
            }
        else:
            images = {"baseline": r.baseline_path, "current": r.screenshot_path, "diff": r.diff_path}
        cards.append(_build_result_card(r, images))

    passed = sum(1 for r in results if r.passed)
    failed = len(results) - passed
    warnings = sum(1 for r in results if r.warning == DIMENSION_MISMATCH)
    safe_title = html.escape(title)

    report_html = f'''<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>{safe_title}</title>
<style>
  :root {{ --pass: #22c55e; --fail: #ef4444; --warn: #eab308; --bg: #f8fafc; --card: #ffffff; --border: #e2e8f0; --muted: #64748b; --accent: #3b82f6; }}
  * {{ box-sizing: border-box; }}
  body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; margin: 0; background: var(--bg); color: #0f172a; }}
  .container {{ max-width: 1400px; margin: 0 auto; padding: 2rem; }}
  h1 {{ margin: 0 0 0.3rem; }}
  .meta {{ color: var(--muted); margin: 0 0 1.5rem; }}
  .summary {{ display: flex; gap: 1rem; margin-bottom: 1.5rem; flex-wrap: wrap; }}
  .stat {{ background: var(--card); border: 1px solid var(--border); border-radius: 8px; padding: 1rem 1.5rem; min-width: 120px; }}
  .stat .value {{ font-size: 1.8rem; font-weight: 700; }}
  .stat .label {{ color: var(--muted); font-size: 0.85rem; }}
  .stat.pass .value {{ color: var(--pass); }}
  .stat.fail .value {{ color: var(--fail); }}
  .stat.warn .value {{ color: var(--warn); }}
  .badge {{ display: inline-block; padding: 0.15rem 0.5rem; border-radius: 4px; font-size: 0.75rem; font-weight: 600; }}
  .badge.passed {{ background: #dcfce7; color: #166534; }}
  .badge.failed {{ background: #fee2e2; color: #991b1b; }}
  .badge.warning {{ background: #fef3c7; color: #92400e; border: 1px dashed #f59e0b; }}
  .result-card {{ background: var(--card); border: 1px solid var(--border); border-radius: 8px; margin-bottom: 0.6rem; overflow: hidden; }}
  .result-header {{ display: flex; justify-content: space-between; align-items: center; padding: 0.7rem 1rem; cursor: pointer; }}
  .result-header-left {{ display: flex; gap: 0.6rem; align-items: center; flex-wrap: wrap; }}
  .result-meta {{ color: var(--muted); font-size: 0.82rem; }}
  .result-body {{ display: none; padding: 0 1rem 1rem; }}
  .result-card.expanded .result-body {{ display: block; }}
  .result-card.expanded .expand-arrow {{ transform: rotate(180deg); }}
  .urls {{ font-size: 0.85rem; margin-bottom: 0.6rem; }}
  .url-label {{ display: inline-block; min-width: 100px; color: var(--muted); }}
  .failure-banner {{ background: #fef2f2; border: 1px solid #fecaca; color: #991b1b; border-radius: 6px; padding: 0.6rem 0.8rem; margin-bottom: 0.8rem; font-size: 0.88rem; }}
  .warning-banner {{ background: #fefce8; border: 1px solid #fde68a; color: #92400e; border-radius: 6px; padding: 0.6rem 0.8rem; margin-bottom: 0.8rem; font-size: 0.88rem; }}
  .diff-stats {{ display: flex; gap: 1.5rem; font-size: 0.88rem; margin-bottom: 0.8rem; }}
  .images-grid {{ display: grid; grid-template-columns: repeat(3, 1fr); gap: 0.6rem; }}
  .image-cell {{ text-align: center; }}
  .image-cell img {{ width: 100%; border-radius: 6px; border: 1px solid var(--border); }}
  .image-label {{ font-size: 0.8rem; color: var(--muted); margin-bottom: 0.2rem; }}
  .image-missing {{ padding: 2rem 0; color: var(--muted); border: 1px dashed var(--border); border-radius: 6px; font-size: 0.85rem; }}
  .filter-bar {{ display: flex; gap: 0.5rem; margin-bottom: 1rem; flex-wrap: wrap; }}
  .filter-btn {{ padding: 0.3rem 0.8rem; border-radius: 6px; border: 1px solid var(--border); background: var(--card); cursor: pointer; font-size: 0.82rem; }}
  .filter-btn.active {{ background: var(--accent); color: white; border-color: var(--accent); }}
</style>
</head>
<body>
<div class="container">
  <h1>{safe_title}</h1>
  <p class="meta">{len(results)} screenshots compared</p>

  <div class="summary">
    <div class="stat"><div class="value">{len(results)}</div><div class="label">Total</div></div>
    <div class="stat pass"><div class="value">{passed}</div><div class="label">Passed</div></div>
    <div class="stat fail"><div class="value">{failed}</div><div class="label">Failed</div></div>
    <div class="stat warn"><div class="value">{warnings}</div><div class="label">Size Warnings</div></div>
  </div>

  <div class="filter-bar">
    <button class="filter-btn active" onclick="filterResults(event, 'all')">All</button>
    <button class="filter-btn" onclick="filterResults(event, 'failed')">Failed</button>
    <button class="filter-btn" onclick="filterResults(event, 'passed')">Passed</button>
  </div>

  <div id="result-list">
    {"".join(cards)}
  </div>
</div>

<script>
function filterResults(event, status) {{
  document.querySelectorAll('.filter-btn').forEach(b => b.classList.remove('active'));
  event.target.classList.add('active');
  document.querySelectorAll('.result-card').forEach(card => {{
    card.style.display = status === 'all' || card.dataset.status === status ? '' : 'none';
  }});
}}
document.querySelectorAll('.result-card.failed').forEach(c => c.classList.add('expanded'));
</script>
</body>
</html>'''

    report_path = out_dir / REPORT_INDEX
    with open(report_path, "w", encoding="utf-8") as f:
        f.write(report_html)
    logger.debug("Wrote HTML report with %d results to %s", len(results), report_path)

    return ReportSummary(
        report_path=report_path,
        images_dir=images_dir,
        total=len(results),
        passed=passed,
        failed=failed,
    )


def clean_report(output_dir: str | Path) -> None:
    """Remove the images and index.html of a previous report."""
    out_dir = Path(output_dir)
    shutil.rmtree(out_dir / IMAGES_DIR, ignore_errors=True)
    (out_dir / REPORT_INDEX).unlink(missing_ok=True)
