"""Applies the tolerance policy to baseline/candidate pairs and manages image directories."""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path

from vrt.comparison.pixel_diff import crop_to_overlap, diff_images, load_rgba, write_diff_image
from vrt.models.config import VrtConfig
from vrt.models.test_result import DIMENSION_MISMATCH, ComparisonResult, TestResult
from vrt.naming import screenshot_filename

logger = logging.getLogger(__name__)

BASELINE_NOT_FOUND = "Baseline not found"
SCREENSHOT_NOT_FOUND = "Screenshot not found"
BASELINE_MISSING_HINT = "Baseline not found. Run generate-baseline first."


def evaluate_pass(
    diff_pixels: int, total_pixels: int, max_diff_pixels: int, max_diff_pixel_ratio: float,
) -> bool:
    """Pass iff nothing differs, or the diff is within both the count and ratio limits."""
    if diff_pixels == 0:
        return True
    if total_pixels <= 0:
        return False
    return diff_pixels <= max_diff_pixels and diff_pixels / total_pixels <= max_diff_pixel_ratio


class ComparisonService:
    """Compares candidate screenshots to baselines and manages the image directories."""

    def __init__(self, config: VrtConfig):
        self.config = config
        self.baseline_dir = Path(config.baseline_dir)
        self.diff_dir = Path(config.diff_dir)

    def init_directories(self) -> None:
        self.baseline_dir.mkdir(parents=True, exist_ok=True)
        self.diff_dir.mkdir(parents=True, exist_ok=True)

    def get_baseline_path(self, scenario_id: str, viewport_key: str) -> Path:
        return self.baseline_dir / screenshot_filename(scenario_id, viewport_key)

    def get_diff_path(self, scenario_id: str, viewport_key: str) -> Path:
        return self.diff_dir / screenshot_filename(scenario_id, viewport_key)

    def baseline_exists(self, scenario_id: str, viewport_key: str) -> bool:
        return self.get_baseline_path(scenario_id, viewport_key).is_file()

    def evaluate_pass(self, diff_pixels: int, total_pixels: int) -> bool:
        cmp = self.config.comparison
        return evaluate_pass(diff_pixels, total_pixels, cmp.max_diff_pixels, cmp.max_diff_pixel_ratio)

    def compare(
        self,
        baseline_path: str | Path,
        candidate_path: str | Path,
        diff_path: str | Path | None = None,
    ) -> ComparisonResult:
        """Compare two image files.

        Missing files and decode errors come back as a failed result with
        ``diff_pixel_count == -1``. A failing diff writes the diff image to
        ``diff_path``; a passing one removes any stale image there.
        """
        baseline_path = Path(baseline_path)
        candidate_path = Path(candidate_path)
        if not baseline_path.is_file():
            return ComparisonResult.failure(BASELINE_NOT_FOUND)
        if not candidate_path.is_file():
            return ComparisonResult.failure(SCREENSHOT_NOT_FOUND)

        cmp = self.config.comparison
        try:
            baseline = load_rgba(baseline_path)
            candidate = load_rgba(candidate_path)

            warning = None
            if baseline.shape != candidate.shape:
                logger.warning(
                    "Dimension mismatch for %s: baseline %dx%d, screenshot %dx%d",
                    candidate_path.name, baseline.shape[1], baseline.shape[0],
                    candidate.shape[1], candidate.shape[0],
                )
                if cmp.dimension_mismatch == "warn":
                    self._remove_stale_diff(diff_path)
                    return ComparisonResult(passed=True, warning=DIMENSION_MISMATCH)
                warning = DIMENSION_MISMATCH
                baseline, candidate = crop_to_overlap(baseline, candidate)

            diff = diff_images(
                baseline, candidate,
                threshold=cmp.threshold,
                include_antialiasing=cmp.include_antialiasing,
            )
            passed = self.evaluate_pass(diff.diff_count, diff.total_pixels)

            written = None
            if passed:
                self._remove_stale_diff(diff_path)
            elif diff_path is not None and diff.diff_count > 0:
                written = str(write_diff_image(baseline, diff, diff_path))
                logger.debug("Wrote diff image: %s", written)

            return ComparisonResult(
                passed=passed,
                diff_pixel_count=diff.diff_count,
                diff_percentage=round(diff.diff_percentage, 4),
                total_pixel_count=diff.total_pixels,
                diff_path=written,
                warning=warning,
            )
        except (OSError, ValueError) as e:
            logger.debug("Comparison of %s failed: %s", candidate_path, e)
            return ComparisonResult.failure(f"Comparison failed: {e}")

    def compare_screenshot(
        self,
        scenario_id: str,
        viewport_key: str,
        screenshot_path: str | Path,
        scenario_title: str = "",
        scenario_url: str = "",
        baseline_url: str | None = None,
    ) -> TestResult:
        """Compare a captured screenshot with its baseline. Never raises.

        The title and URLs only populate the report fields of the result.
        """
        baseline_path = self.get_baseline_path(scenario_id, viewport_key)
        base = dict(
            scenario_id=scenario_id,
            scenario_title=scenario_title,
            scenario_url=scenario_url,
            baseline_url=baseline_url,
            viewport=viewport_key,
            screenshot_path=str(screenshot_path),
        )

        if not baseline_path.is_file():
            return TestResult(
                **base, passed=False, diff_pixels=-1, diff_percentage=100.0,
                error=BASELINE_MISSING_HINT,
            )

        try:
            result = self.compare(
                baseline_path, screenshot_path,
                self.get_diff_path(scenario_id, viewport_key),
            )
        except Exception as e:
            logger.error("Unexpected comparison error for %s @ %s: %s", scenario_id, viewport_key, e)
            result = ComparisonResult.failure(str(e))

        return TestResult(
            **base,
            passed=result.passed,
            diff_pixels=result.diff_pixel_count,
            diff_percentage=result.diff_percentage,
            total_pixels=result.total_pixel_count,
            error=result.error,
            warning=result.warning,
            baseline_path=str(baseline_path),
            diff_path=result.diff_path,
        )

    def copy_to_baseline(self, screenshot_path: str | Path, scenario_id: str, viewport_key: str) -> Path:
        """Promote a screenshot to baseline as a whole-file replace."""
        target = self.get_baseline_path(scenario_id, viewport_key)
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".tmp-", suffix=".png")
        os.close(fd)
        try:
            shutil.copyfile(screenshot_path, tmp_name)
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("Baseline updated: %s", target)
        return target

    def list_baselines(self) -> list[str]:
        if not self.baseline_dir.is_dir():
            return []
        return sorted(p.name for p in self.baseline_dir.glob("*.png"))

    def clean_diffs(self) -> int:
        return self._remove_pngs(self.diff_dir)

    def clean_baselines(self) -> int:
        return self._remove_pngs(self.baseline_dir)

    @staticmethod
    def _remove_pngs(directory: Path) -> int:
        if not directory.is_dir():
            return 0
        removed = 0
        for path in directory.glob("*.png"):
            path.unlink(missing_ok=True)
            removed += 1
        return removed

    @staticmethod
    def _remove_stale_diff(diff_path: str | Path | None) -> None:
        if diff_path is not None:
            Path(diff_path).unlink(missing_ok=True)
