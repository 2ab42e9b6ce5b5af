"""Page stabilizer - drives a loaded page into a reproducible visual state.

The steps run strictly in order. Each wait is individually time-boxed and a
timeout degrades the pipeline (capture proceeds with whatever state exists)
instead of failing it. Only a navigation timeout is raised, so that the
capture can be retried.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from vrt.capture.interactions import run_interactions
from vrt.errors import NavigationTimeout
from vrt.models.config import StabilizationConfig
from vrt.models.scenario import Scenario, Viewport

logger = logging.getLogger(__name__)

DISABLE_ANIMATIONS_CSS = """
*, *::before, *::after {
    animation-duration: 0s !important;
    animation-delay: 0s !important;
    animation-iteration-count: 1 !important;
    transition-duration: 0s !important;
    transition-delay: 0s !important;
    scroll-behavior: auto !important;
    caret-color: transparent !important;
}
"""

_FREEZE_VIDEOS_JS = """
async (timeoutMs) => {
    const videos = Array.from(document.querySelectorAll('video'));
    await Promise.all(videos.map((video) => new Promise((resolve) => {
        let done = false;
        const finish = () => { if (!done) { done = true; resolve(); } };
        setTimeout(finish, timeoutMs);
        try {
            const alreadyAtStart = video.currentTime === 0 || video.readyState === 0;
            video.autoplay = false;
            video.loop = false;
            video.removeAttribute('autoplay');
            video.pause();
            video.addEventListener('seeked', finish, { once: true });
            video.currentTime = 0;
            if (alreadyAtStart) finish();
        } catch (e) {
            finish();
        }
    })));
    return videos.length;
}
"""

_FONTS_READY_JS = "() => document.fonts ? document.fonts.ready.then(() => true) : true"

_RESOLVE_LAZY_CONTENT_JS = """
(rules) => {
    let resolved = 0;
    for (const rule of rules) {
        let elements;
        try {
            elements = document.querySelectorAll(rule.selector);
        } catch (e) {
            continue;
        }
        for (const el of elements) {
            const value = rule.value != null
                ? rule.value
                : (rule.sourceAttribute ? el.getAttribute(rule.sourceAttribute) : null);
            if (!value) continue;
            if (rule.background) {
                el.style.backgroundImage = /^url\\(/i.test(value) ? value : `url("${value}")`;
            } else if (rule.targetAttribute && el.getAttribute(rule.targetAttribute) !== value) {
                el.setAttribute(rule.targetAttribute, value);
            } else {
                continue;
            }
            resolved++;
        }
    }
    return resolved;
}
"""

_SCROLL_THROUGH_JS = """
async ({ step, delay, maxDistance, timeout }) => {
    const started = Date.now();
    const sleep = (ms) => new Promise((resolve) => setTimeout(resolve, ms));
    let position = 0;
    while (position < maxDistance && Date.now() - started < timeout) {
        const height = Math.max(
            document.body ? document.body.scrollHeight : 0,
            document.documentElement.scrollHeight,
        );
        if (position + window.innerHeight >= height) break;
        position = Math.min(position + step, maxDistance);
        window.scrollTo(0, position);
        await sleep(delay);
    }
    window.scrollTo(0, 0);
    return position;
}
"""

_WAIT_FOR_IMAGES_JS = """
async (timeoutMs) => {
    const pending = Array.from(document.images).filter((img) => !img.complete);
    if (pending.length === 0) return 0;
    const settled = Promise.all(pending.map((img) => new Promise((resolve) => {
        img.addEventListener('load', resolve, { once: true });
        img.addEventListener('error', resolve, { once: true });
    })));
    await Promise.race([settled, new Promise((resolve) => setTimeout(resolve, timeoutMs))]);
    return pending.filter((img) => !img.complete).length;
}
"""

SCROLL_HEIGHT_JS = """
() => Math.max(
    document.body ? document.body.scrollHeight : 0,
    document.documentElement.scrollHeight,
)
"""

# Extra room given to in-page timers before the Python-side bound fires
_EVALUATE_GRACE_MS = 1000


@dataclass
class StabilizationReport:
    """What the pipeline did for one capture."""
    steps: list[str] = field(default_factory=list)
    videos_frozen: int = 0
    lazy_elements_resolved: int = 0
    scrolled_to: int = 0
    pending_images: int = 0
    height_stable: bool | None = None
    degraded: list[str] = field(default_factory=list)


class Stabilizer:
    """Runs the ordered stabilization pipeline against a Playwright page."""

    def __init__(
        self,
        config: StabilizationConfig,
        navigation_timeout: int = 30000,
        action_timeout: int = 10000,
    ):
        self.config = config
        self.navigation_timeout = navigation_timeout
        self.action_timeout = action_timeout

    async def _bounded(
        self, awaitable: Awaitable[Any], timeout_ms: int, step: str, report: StabilizationReport,
    ) -> Any:
        """Await with a hard timeout; on timeout or page error log and return None."""
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout_ms / 1000)
        except (asyncio.TimeoutError, PlaywrightError) as e:
            logger.debug("Stabilization step '%s' degraded: %s", step, e or "timed out")
            report.degraded.append(step)
            return None

    async def stabilize(
        self, page: Page, scenario: Scenario, viewport: Viewport, url: str | None = None,
    ) -> StabilizationReport:
        """Navigate to the scenario and settle the page for capture."""
        cfg = self.config
        report = StabilizationReport()

        await self.navigate(page, url or scenario.url, scenario.wait_time_ms)
        report.steps.append("navigate")

        if cfg.disable_animations:
            await self.disable_animations(page, report)
            report.steps.append("disable_animations")

        if cfg.freeze_videos:
            await self.freeze_videos(page, report)
            report.steps.append("freeze_videos")

        if scenario.interactions:
            logger.debug("Replaying %d interactions for %s", len(scenario.interactions), scenario.id)
            await run_interactions(page, scenario.interactions, timeout=self.action_timeout)
            report.steps.append("interactions")

        await self.wait_for_fonts(page, report)
        report.steps.append("fonts")

        if viewport.full_page:
            await self.resolve_lazy_content(page, report)
            report.steps.append("lazy_content")
            await self.scroll_through(page, report)
            report.steps.append("scroll")
            await self.wait_for_images(page, report)
            report.steps.append("images")
            report.height_stable = await self.wait_for_stable_height(page, report)
            report.steps.append("height")
            if report.height_stable and cfg.settle_delay > 0:
                await page.wait_for_timeout(cfg.settle_delay)
        elif cfg.viewport_settle_delay > 0:
            await page.wait_for_timeout(cfg.viewport_settle_delay)
            report.steps.append("settle")

        if report.degraded:
            logger.debug("Stabilization of %s degraded at: %s", scenario.id, ", ".join(report.degraded))
        return report

    async def navigate(self, page: Page, url: str, wait_time_ms: int = 0) -> None:
        logger.debug("Navigating to %s...", url)
        try:
            await page.goto(url, wait_until="domcontentloaded", timeout=self.navigation_timeout)
        except PlaywrightTimeoutError as e:
            raise NavigationTimeout(url, self.navigation_timeout) from e

        try:
            logger.debug("Waiting for network idle...")
            await page.wait_for_load_state("networkidle", timeout=self.config.network_idle_timeout)
        except PlaywrightTimeoutError:
            logger.debug("Network idle timeout, continuing")

        if wait_time_ms > 0:
            logger.debug("Scenario wait %dms...", wait_time_ms)
            await page.wait_for_timeout(wait_time_ms)

    async def disable_animations(self, page: Page, report: StabilizationReport) -> None:
        await self._bounded(
            page.add_style_tag(content=DISABLE_ANIMATIONS_CSS),
            self.action_timeout, "disable_animations", report,
        )

    async def freeze_videos(self, page: Page, report: StabilizationReport) -> None:
        timeout = self.config.video_seek_timeout
        count = await self._bounded(
            page.evaluate(_FREEZE_VIDEOS_JS, timeout),
            timeout + _EVALUATE_GRACE_MS, "freeze_videos", report,
        )
        report.videos_frozen = count or 0
        if report.videos_frozen:
            logger.debug("Froze %d video(s) at t=0", report.videos_frozen)

    async def wait_for_fonts(self, page: Page, report: StabilizationReport) -> None:
        await self._bounded(
            page.evaluate(_FONTS_READY_JS), self.config.font_timeout, "fonts", report,
        )

    async def resolve_lazy_content(self, page: Page, report: StabilizationReport) -> None:
        rules = [rule.model_dump(by_alias=True) for rule in self.config.lazy_load_rules]
        if not rules:
            return
        resolved = await self._bounded(
            page.evaluate(_RESOLVE_LAZY_CONTENT_JS, rules),
            self.action_timeout, "lazy_content", report,
        )
        report.lazy_elements_resolved = resolved or 0
        logger.debug("Resolved %d lazy-loaded element(s)", report.lazy_elements_resolved)

    async def scroll_through(self, page: Page, report: StabilizationReport) -> None:
        cfg = self.config
        args = {
            "step": cfg.scroll_step,
            "delay": cfg.scroll_delay,
            "maxDistance": cfg.max_scroll_distance,
            "timeout": cfg.scroll_timeout,
        }
        position = await self._bounded(
            page.evaluate(_SCROLL_THROUGH_JS, args),
            cfg.scroll_timeout + _EVALUATE_GRACE_MS, "scroll", report,
        )
        if position is None:
            # The in-page loop was cut off before it could return to the top
            await self._bounded(
                page.evaluate("() => window.scrollTo(0, 0)"),
                self.action_timeout, "scroll_reset", report,
            )
        report.scrolled_to = position or 0

    async def wait_for_images(self, page: Page, report: StabilizationReport) -> None:
        timeout = self.config.image_timeout
        pending = await self._bounded(
            page.evaluate(_WAIT_FOR_IMAGES_JS, timeout),
            timeout + _EVALUATE_GRACE_MS, "images", report,
        )
        report.pending_images = pending or 0
        if report.pending_images:
            logger.debug("%d image(s) still loading after %dms", report.pending_images, timeout)

    async def wait_for_stable_height(self, page: Page, report: StabilizationReport) -> bool:
        """Poll scrollHeight until it repeats ``height_stable_readings`` times in a row.

        Bounded both by ``height_timeout`` wall-clock time and by the number of
        polls that fit in it. Returns False when stability was not reached.
        """
        cfg = self.config
        max_polls = max(cfg.height_stable_readings, cfg.height_timeout // cfg.height_poll_interval)
        deadline = time.monotonic() + cfg.height_timeout / 1000
        last_height = None
        readings = 0

        for _ in range(max_polls + 1):
            height = await self._bounded(
                page.evaluate(SCROLL_HEIGHT_JS), cfg.height_poll_interval + _EVALUATE_GRACE_MS,
                "height_read", report,
            )
            if height is not None and height == last_height:
                readings += 1
            else:
                readings = 1 if height is not None else 0
                last_height = height

            if readings >= cfg.height_stable_readings:
                logger.debug("Document height stable at %spx", last_height)
                return True
            if time.monotonic() >= deadline:
                break
            await page.wait_for_timeout(cfg.height_poll_interval)

        logger.debug("Document height did not stabilize within %dms (last %spx)",
                     cfg.height_timeout, last_height)
        report.degraded.append("height")
        return False
