"""Report generation orchestration."""

from __future__ import annotations

import logging
from pathlib import Path

from vrt.models.config import VrtConfig
from vrt.models.test_result import TestRunSummary

from .html_report import DEFAULT_TITLE, ReportSummary, clean_report, generate_html_report
from .json_report import generate_json_report

logger = logging.getLogger(__name__)

JSON_REPORT = "report.json"


class Reporter:
    """Generates the HTML and JSON reports for a test run."""

    def __init__(self, config: VrtConfig):
        self.config = config

    def generate_reports(
        self,
        summary: TestRunSummary,
        output_dir: Path | None = None,
        title: str | None = None,
    ) -> dict[str, str]:
        """Replace any previous report and write both formats. Returns format -> file path."""
        out_dir = output_dir or Path(self.config.report_dir)
        logger.debug("Report output directory: %s", out_dir)
        clean_report(out_dir)

        generated = {}
        html_summary: ReportSummary = generate_html_report(
            summary.results, out_dir, title=title or DEFAULT_TITLE,
        )
        generated["html"] = str(html_summary.report_path)
        logger.info("HTML report: %s", html_summary.report_path)

        json_path = out_dir / JSON_REPORT
        generate_json_report(summary, json_path)
        generated["json"] = str(json_path)
        logger.info("JSON report: %s", json_path)

        return generated

    @staticmethod
    def basic_summary(summary: TestRunSummary) -> str:
        parts = [
            f"Compared {summary.total} screenshots in {summary.duration_seconds:.1f}s.",
            f"Results: {summary.passed} passed, {summary.failed} failed.",
        ]
        if summary.failures:
            parts.append(f"Failures: {', '.join(r.name for r in summary.failures[:5])}")
        return " ".join(parts)
