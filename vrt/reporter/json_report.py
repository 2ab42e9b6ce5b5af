"""JSON report output."""

from __future__ import annotations

import json
from pathlib import Path

from vrt.models.test_result import TestRunSummary


def generate_json_report(summary: TestRunSummary, output_path: Path) -> None:
    """Write a machine-readable JSON report."""
    report = summary.model_dump()
    report["pass_rate"] = round(summary.pass_rate, 2)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        json.dump(report, f, indent=2, default=str)
