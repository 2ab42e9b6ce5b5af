"""Screenshot service - owns the browser and captures stabilized screenshots."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Callable, Optional

from playwright.async_api import Browser, Page, Playwright, async_playwright

from vrt.capture.stabilizer import SCROLL_HEIGHT_JS, Stabilizer
from vrt.capture.worker_pool import PoolProgress, WorkerPool
from vrt.errors import BrowserNotInitialized
from vrt.models.config import VrtConfig
from vrt.models.scenario import CaptureTask, Scenario, Viewport
from vrt.naming import screenshot_filename
from vrt.url_utils import replace_domain
from vrt.utils.browser import create_capture_context, launch_browser

logger = logging.getLogger(__name__)


def build_tasks(scenarios: list[Scenario], viewports: list[Viewport]) -> list[CaptureTask]:
    """Cross each scenario's viewport keys with the known viewports.

    Keys that do not resolve to a viewport are skipped with a warning.
    """
    viewport_map = {v.key: v for v in viewports}
    tasks = []
    for scenario in scenarios:
        for key in scenario.viewport_keys:
            viewport = viewport_map.get(key)
            if viewport is None:
                logger.warning("Viewport not found: %s (scenario %s)", key, scenario.id)
                continue
            tasks.append(CaptureTask(scenario=scenario, viewport=viewport))
    return tasks


class ScreenshotService:
    """Captures screenshots with one shared Chromium and a fresh context per capture."""

    def __init__(self, config: VrtConfig, headless: bool | None = None):
        self.config = config
        self.headless = config.playwright.headless if headless is None else headless
        self.stabilizer = Stabilizer(
            config.stabilization,
            navigation_timeout=config.playwright.navigation_timeout,
            action_timeout=config.playwright.screenshot_timeout,
        )
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None

    @property
    def is_initialized(self) -> bool:
        return self._browser is not None

    async def initialize(self) -> None:
        if self._browser is not None:
            return
        logger.debug("Launching Chromium (headless=%s)...", self.headless)
        self._playwright = await async_playwright().start()
        try:
            self._browser = await launch_browser(self._playwright, headless=self.headless)
        except Exception:
            await self._playwright.stop()
            self._playwright = None
            raise

    async def close(self) -> None:
        if self._browser is not None:
            try:
                await self._browser.close()
            finally:
                self._browser = None
        if self._playwright is not None:
            try:
                await self._playwright.stop()
            finally:
                self._playwright = None

    async def __aenter__(self) -> "ScreenshotService":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def capture_screenshot(
        self,
        scenario: Scenario,
        viewport: Viewport,
        output_dir: str | Path,
        domain: str | None = None,
    ) -> str:
        """Capture one scenario at one viewport and return the written file path."""
        if self._browser is None:
            raise BrowserNotInitialized()

        stab = self.config.stabilization
        height = viewport.height or stab.default_viewport_height
        url = replace_domain(scenario.url, domain)
        output_path = Path(output_dir) / screenshot_filename(scenario.id, viewport.key)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        context = await create_capture_context(
            self._browser,
            width=viewport.width,
            height=height,
            device_scale_factor=viewport.device_scale_factor,
            ignore_https_errors=self.config.insecure,
        )
        try:
            context.set_default_timeout(self.config.playwright.timeout)
            page = await context.new_page()
            await self.stabilizer.stabilize(page, scenario, viewport, url=url)

            full_page = viewport.full_page
            if full_page:
                page_height = await self._measure_height(page, url)
                if page_height and page_height > stab.max_full_page_height:
                    logger.warning(
                        "Page height %spx exceeds %dpx, capturing viewport only: %s",
                        page_height, stab.max_full_page_height, url,
                    )
                    full_page = False

            await page.screenshot(
                path=str(output_path),
                full_page=full_page,
                animations="disabled",
                mask=[page.locator(selector) for selector in stab.mask_selectors],
                timeout=self.config.playwright.screenshot_timeout,
            )
        finally:
            await context.close()

        logger.debug("Saved screenshot: %s", output_path)
        return str(output_path)

    async def _measure_height(self, page: Page, url: str) -> int | None:
        """Scroll height of the page, or None when the page does not answer in time."""
        timeout_ms = self.stabilizer.action_timeout
        try:
            return await asyncio.wait_for(page.evaluate(SCROLL_HEIGHT_JS), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            logger.warning("Page height check timed out after %dms, keeping full-page capture: %s",
                           timeout_ms, url)
            return None

    async def capture_with_retry(
        self,
        scenario: Scenario,
        viewport: Viewport,
        output_dir: str | Path,
        domain: str | None = None,
    ) -> str:
        """Capture with up to ``max_retries`` extra attempts; re-raise the last error."""
        retries = self.config.retries
        attempts = retries.max_retries + 1
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            try:
                return await self.capture_screenshot(scenario, viewport, output_dir, domain=domain)
            except BrowserNotInitialized:
                raise
            except Exception as e:
                last_error = e
                if attempt < attempts:
                    logger.warning(
                        "Capture failed for %s @ %s (attempt %d/%d): %s. Retrying in %dms...",
                        scenario.id, viewport.key, attempt, attempts, e, retries.retry_delay,
                    )
                    await asyncio.sleep(retries.retry_delay / 1000)

        assert last_error is not None
        raise last_error

    async def capture_all(
        self,
        scenarios: list[Scenario],
        viewports: list[Viewport],
        output_dir: str | Path,
        domain: str | None = None,
        on_progress: Optional[Callable[[PoolProgress, CaptureTask], None]] = None,
    ) -> dict[str, str]:
        """Capture every (scenario, viewport) pair through the worker pool.

        Returns result key -> screenshot path. Failed captures are logged and
        left out of the map.
        """
        tasks = build_tasks(scenarios, viewports)
        captured: dict[str, str] = {}

        async def _handle(task: CaptureTask) -> tuple[CaptureTask, str | None]:
            path = await self.capture_with_retry(task.scenario, task.viewport, output_dir, domain=domain)
            return task, path

        def _on_error(task: CaptureTask, exc: Exception) -> tuple[CaptureTask, str | None]:
            logger.error("Failed to capture %s: %s", task.name, exc)
            return task, None

        pool: WorkerPool = WorkerPool(self.config.playwright.workers)
        results = await pool.run(
            tasks, _handle, _on_error,
            on_progress=on_progress,
            is_success=lambda result: result[1] is not None,
        )
        for task, path in results:
            if path is not None:
                captured[task.key] = path
        return captured
