"""Run orchestrator - coordinates fetch, capture, compare, record and report stages."""

from __future__ import annotations

import asyncio
import logging
import shutil
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from vrt.api.client import ApiClient
from vrt.capture.screenshot import ScreenshotService, build_tasks
from vrt.capture.worker_pool import PoolProgress, WorkerPool
from vrt.comparison.comparison import ComparisonService
from vrt.models.config import VrtConfig
from vrt.models.scenario import ApiPayload, CaptureTask
from vrt.models.test_result import (
    BaselineRunResult,
    ConnectionTestResult,
    FailedTest,
    TestResult,
    TestRunSummary,
)
from vrt.reporter.reporter import Reporter
from vrt.tracking.failed_tracker import FailedTestTracker
from vrt.url_utils import replace_domain

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[PoolProgress, CaptureTask], None]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class GeneratedData:
    name: str
    path: Path

    @property
    def is_dir(self) -> bool:
        return self.path.is_dir()


def find_generated_data(config: VrtConfig | None = None) -> list[GeneratedData]:
    """Generated artifacts that currently exist on disk.

    Without a config the default directory names are used.
    """
    def _default(field: str) -> str:
        return getattr(config, field) if config else VrtConfig.model_fields[field].default

    candidates = [
        GeneratedData("Baselines", Path(_default("baseline_dir"))),
        GeneratedData("Screenshots", Path(_default("output_dir"))),
        GeneratedData("Diffs", Path(_default("diff_dir"))),
        GeneratedData("VRT Report", Path(_default("report_dir"))),
        GeneratedData("Failed tests", Path(_default("failed_tests_file"))),
    ]
    return [item for item in candidates if item.path.exists()]


def remove_generated_data(items: list[GeneratedData]) -> int:
    """Delete the given artifacts and return the number of files removed."""
    removed = 0
    for item in items:
        if item.is_dir:
            removed += sum(1 for p in item.path.rglob("*") if p.is_file())
            shutil.rmtree(item.path)
        else:
            item.path.unlink(missing_ok=True)
            removed += 1
        logger.debug("Removed %s: %s", item.name, item.path)
    return removed


class Orchestrator:
    """Coordinates baseline generation and test runs."""

    def __init__(
        self,
        config: VrtConfig,
        headless: bool | None = None,
        api_client: ApiClient | None = None,
        screenshot_service: ScreenshotService | None = None,
    ):
        self.config = config
        self.api = api_client or ApiClient(config)
        self.screenshots = screenshot_service or ScreenshotService(config, headless=headless)
        self.comparison = ComparisonService(config)
        self.tracker = FailedTestTracker(config.failed_tests_file)
        self.reporter = Reporter(config)
        self.last_reports: dict[str, str] = {}

    # ------------------------------------------------------------------
    # Sync entry points
    # ------------------------------------------------------------------

    def test_connection(self) -> ConnectionTestResult:
        return asyncio.run(self.api.test_connection())

    def list_scenarios(
        self, scenario_ids: list[str] | None = None, viewport_keys: list[str] | None = None,
    ) -> ApiPayload:
        return asyncio.run(self.api.fetch_filtered_scenarios(scenario_ids, viewport_keys))

    def generate_baseline(
        self,
        scenario_ids: list[str] | None = None,
        viewport_keys: list[str] | None = None,
        failed: bool = False,
        on_progress: Optional[ProgressCallback] = None,
    ) -> BaselineRunResult:
        """Capture baselines for every selected (scenario, viewport) pair."""
        return asyncio.run(self._generate_baseline(scenario_ids, viewport_keys, failed, on_progress))

    def run_tests(
        self,
        scenario_ids: list[str] | None = None,
        viewport_keys: list[str] | None = None,
        update_baseline: bool = False,
        failed: bool = False,
        on_progress: Optional[ProgressCallback] = None,
    ) -> TestRunSummary:
        """Capture and compare every selected pair, then record failures and write reports."""
        return asyncio.run(
            self._run_tests(scenario_ids, viewport_keys, update_baseline, failed, on_progress)
        )

    # ------------------------------------------------------------------
    # Payload selection
    # ------------------------------------------------------------------

    async def fetch_payload(
        self,
        scenario_ids: list[str] | None = None,
        viewport_keys: list[str] | None = None,
        failed: bool = False,
    ) -> ApiPayload:
        """Fetch the payload; with ``failed`` narrow it to the recorded failing pairs."""
        if not failed:
            return await self.api.fetch_filtered_scenarios(scenario_ids, viewport_keys)

        pairs = self.tracker.failed_pairs()
        payload = await self.api.fetch_filtered_scenarios(self.tracker.failed_scenario_ids(), viewport_keys)
        scenarios = []
        for scenario in payload.scenarios:
            keys = [k for k in scenario.viewport_keys if (scenario.id, k) in pairs]
            if keys:
                scenarios.append(scenario.model_copy(update={"viewport_keys": keys}))
        logger.info("Re-running %d failed pair(s) across %d scenario(s)",
                    sum(len(s.viewport_keys) for s in scenarios), len(scenarios))
        return payload.model_copy(update={"scenarios": scenarios})

    # ------------------------------------------------------------------
    # Baselines
    # ------------------------------------------------------------------

    async def _generate_baseline(
        self,
        scenario_ids: list[str] | None,
        viewport_keys: list[str] | None,
        failed: bool,
        on_progress: Optional[ProgressCallback],
    ) -> BaselineRunResult:
        start = time.time()
        if failed and not self.tracker.has_failed_tests():
            logger.info("No failed tests recorded, nothing to regenerate")
            return BaselineRunResult()

        payload = await self.fetch_payload(scenario_ids, viewport_keys, failed=failed)
        total = len(build_tasks(payload.scenarios, payload.viewports))
        logger.info("Generating baselines: %d scenarios, %d viewports, %d screenshots",
                    len(payload.scenarios), len(payload.viewports), total)
        if total == 0:
            return BaselineRunResult(duration_seconds=round(time.time() - start, 2))

        if not failed:
            removed = self.comparison.clean_baselines()
            logger.debug("Removed %d existing baseline(s)", removed)
        self.comparison.init_directories()

        async with self.screenshots:
            captured = await self.screenshots.capture_all(
                payload.scenarios, payload.viewports, self.config.baseline_dir,
                domain=self.config.baseline_domain,
                on_progress=on_progress,
            )

        result = BaselineRunResult(
            total=total,
            captured=len(captured),
            failed=total - len(captured),
            duration_seconds=round(time.time() - start, 2),
            screenshots=captured,
        )
        if failed and result.failed == 0:
            self.tracker.clear()
        logger.info("Baselines complete: %d captured, %d failed in %.1fs",
                    result.captured, result.failed, result.duration_seconds)
        return result

    # ------------------------------------------------------------------
    # Test runs
    # ------------------------------------------------------------------

    def _base_result(self, task: CaptureTask) -> dict:
        scenario = task.scenario
        return dict(
            scenario_id=scenario.id,
            scenario_title=scenario.title,
            scenario_url=replace_domain(scenario.url, self.config.test_domain),
            baseline_url=replace_domain(scenario.url, self.config.baseline_domain),
            viewport=task.viewport.key,
        )

    async def process_task(self, task: CaptureTask, update_baseline: bool = False) -> TestResult:
        """Capture one pair and compare it, optionally promoting the screenshot to baseline.

        With ``update_baseline`` a missing baseline is created from the
        capture, and a passing capture replaces its baseline. A failing one
        never does.
        """
        started = time.monotonic()
        scenario, viewport = task.scenario, task.viewport
        base = self._base_result(task)

        screenshot_path = await self.screenshots.capture_with_retry(
            scenario, viewport, self.config.output_dir, domain=self.config.test_domain,
        )

        # Image work stays off the event loop
        if update_baseline and not self.comparison.baseline_exists(scenario.id, viewport.key):
            baseline_path = await asyncio.to_thread(
                self.comparison.copy_to_baseline, screenshot_path, scenario.id, viewport.key,
            )
            logger.info("Created baseline for %s", task.name)
            return TestResult(
                **base, passed=True,
                screenshot_path=screenshot_path,
                baseline_path=str(baseline_path),
                duration_seconds=round(time.monotonic() - started, 2),
            )

        result = await asyncio.to_thread(
            self.comparison.compare_screenshot,
            scenario.id, viewport.key, screenshot_path,
            scenario_title=scenario.title,
            scenario_url=base["scenario_url"],
            baseline_url=base["baseline_url"],
        )
        if update_baseline and result.passed:
            await asyncio.to_thread(self.comparison.copy_to_baseline, screenshot_path, scenario.id, viewport.key)
        result.duration_seconds = round(time.monotonic() - started, 2)
        return result

    def _error_result(self, task: CaptureTask, exc: Exception) -> TestResult:
        logger.error("Test failed for %s: %s", task.name, exc)
        return TestResult(**self._base_result(task), passed=False, error=str(exc) or exc.__class__.__name__)

    async def _run_tests(
        self,
        scenario_ids: list[str] | None,
        viewport_keys: list[str] | None,
        update_baseline: bool,
        failed: bool,
        on_progress: Optional[ProgressCallback],
    ) -> TestRunSummary:
        started_at = _now_iso()
        start = time.time()

        if failed and not self.tracker.has_failed_tests():
            logger.info("No failed tests recorded, nothing to re-run")
            return TestRunSummary(started_at=started_at, completed_at=_now_iso())

        payload = await self.fetch_payload(scenario_ids, viewport_keys, failed=failed)
        viewport_map = payload.viewport_map()

        results: list[TestResult] = []
        tasks: list[CaptureTask] = []
        for scenario in payload.scenarios:
            for key in scenario.viewport_keys:
                viewport = viewport_map.get(key)
                if viewport is None:
                    logger.warning("Viewport not found: %s (scenario %s)", key, scenario.id)
                    results.append(TestResult(
                        scenario_id=scenario.id,
                        scenario_title=scenario.title,
                        scenario_url=replace_domain(scenario.url, self.config.test_domain),
                        baseline_url=replace_domain(scenario.url, self.config.baseline_domain),
                        viewport=key,
                        passed=False,
                        error=f"Viewport not found: {key}",
                    ))
                    continue
                tasks.append(CaptureTask(scenario=scenario, viewport=viewport))

        logger.info("Running %d tests (%d workers)", len(tasks), self.config.playwright.workers)
        self.comparison.init_directories()
        self.comparison.clean_diffs()
        Path(self.config.output_dir).mkdir(parents=True, exist_ok=True)

        if tasks:
            pool: WorkerPool = WorkerPool(self.config.playwright.workers)
            async with self.screenshots:
                results.extend(await pool.run(
                    tasks,
                    lambda task: self.process_task(task, update_baseline=update_baseline),
                    self._error_result,
                    on_progress=on_progress,
                ))

        summary = TestRunSummary.from_results(
            results, time.time() - start, started_at=started_at, completed_at=_now_iso(),
        )
        self._record_failures(summary)
        self.last_reports = self.reporter.generate_reports(summary)
        logger.info("Run complete: %d passed, %d failed in %.1fs",
                    summary.passed, summary.failed, summary.duration_seconds)
        return summary

    def _record_failures(self, summary: TestRunSummary) -> None:
        failures = [FailedTest(scenario_id=r.scenario_id, viewport=r.viewport) for r in summary.failures]
        if failures:
            self.tracker.save(failures)
        else:
            self.tracker.clear()
