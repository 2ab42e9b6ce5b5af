"""Tests for the page stabilization pipeline."""

import asyncio
import itertools
from unittest.mock import AsyncMock

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from vrt.capture.stabilizer import (
    DISABLE_ANIMATIONS_CSS,
    SCROLL_HEIGHT_JS,
    StabilizationReport,
    Stabilizer,
)
from vrt.errors import NavigationTimeout
from vrt.models.scenario import Scenario, Viewport

FULL_PAGE_STEPS = ["navigate", "disable_animations", "freeze_videos", "fonts",
                   "lazy_content", "scroll", "images", "height"]


@pytest.fixture
def stabilizer(stabilization_config) -> Stabilizer:
    return Stabilizer(stabilization_config, navigation_timeout=1000, action_timeout=500)


def _scripts(page) -> list[str]:
    return [c.args[0] for c in page.evaluate.call_args_list]


class TestStabilizeOrder:
    """Tests for the order of pipeline steps."""

    @pytest.mark.asyncio
    async def test_full_page_steps(self, stabilizer, mock_page, home_scenario, mobile_viewport):
        report = await stabilizer.stabilize(mock_page, home_scenario, mobile_viewport)
        assert report.steps == FULL_PAGE_STEPS
        assert report.height_stable is True
        assert report.degraded == []

    @pytest.mark.asyncio
    async def test_interactions_run_after_freeze_and_before_fonts(
        self, stabilizer, mock_page, mock_locator, interactive_scenario, mobile_viewport,
    ):
        report = await stabilizer.stabilize(mock_page, interactive_scenario, mobile_viewport)
        assert report.steps[:5] == ["navigate", "disable_animations", "freeze_videos",
                                    "interactions", "fonts"]
        mock_locator.click.assert_awaited_once_with(timeout=500)
        mock_locator.hover.assert_awaited_once_with(timeout=500)

    @pytest.mark.asyncio
    async def test_viewport_capture_skips_full_page_steps(self, stabilizer, mock_page,
                                                          home_scenario, desktop_viewport):
        report = await stabilizer.stabilize(mock_page, home_scenario, desktop_viewport)
        assert report.steps == ["navigate", "disable_animations", "freeze_videos", "fonts"]
        assert SCROLL_HEIGHT_JS not in _scripts(mock_page)
        assert report.height_stable is None

    @pytest.mark.asyncio
    async def test_viewport_settle_delay(self, stabilization_config, mock_page,
                                         home_scenario, desktop_viewport):
        stabilization_config.viewport_settle_delay = 25
        report = await Stabilizer(stabilization_config).stabilize(mock_page, home_scenario, desktop_viewport)
        assert report.steps[-1] == "settle"
        mock_page.wait_for_timeout.assert_awaited_with(25)

    @pytest.mark.asyncio
    async def test_disabled_steps_are_skipped(self, stabilization_config, mock_page,
                                              home_scenario, desktop_viewport):
        stabilization_config.disable_animations = False
        stabilization_config.freeze_videos = False
        report = await Stabilizer(stabilization_config).stabilize(mock_page, home_scenario, desktop_viewport)
        assert report.steps == ["navigate", "fonts"]
        mock_page.add_style_tag.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_injects_animation_css(self, stabilizer, mock_page, home_scenario, desktop_viewport):
        await stabilizer.stabilize(mock_page, home_scenario, desktop_viewport)
        mock_page.add_style_tag.assert_awaited_once_with(content=DISABLE_ANIMATIONS_CSS)

    @pytest.mark.asyncio
    async def test_lazy_rules_sent_with_camel_case_keys(self, stabilizer, mock_page,
                                                        home_scenario, mobile_viewport):
        await stabilizer.stabilize(mock_page, home_scenario, mobile_viewport)
        rule_args = [c.args[1] for c in mock_page.evaluate.call_args_list
                     if len(c.args) > 1 and isinstance(c.args[1], list)]
        assert len(rule_args) == 1
        assert rule_args[0][0]["selector"] == "img[data-src]"
        assert rule_args[0][0]["sourceAttribute"] == "data-src"


class TestNavigate:
    @pytest.mark.asyncio
    async def test_uses_override_url(self, stabilizer, mock_page, home_scenario, desktop_viewport):
        await stabilizer.stabilize(mock_page, home_scenario, desktop_viewport, url="https://prod.example.com/")
        mock_page.goto.assert_awaited_once_with(
            "https://prod.example.com/", wait_until="domcontentloaded", timeout=1000,
        )

    @pytest.mark.asyncio
    async def test_navigation_timeout_raises(self, stabilizer, mock_page, home_scenario, desktop_viewport):
        mock_page.goto.side_effect = PlaywrightTimeoutError("Timeout 1000ms exceeded")
        with pytest.raises(NavigationTimeout) as exc_info:
            await stabilizer.stabilize(mock_page, home_scenario, desktop_viewport)
        assert exc_info.value.url == "https://local.example.com/"
        assert exc_info.value.timeout_ms == 1000
        mock_page.add_style_tag.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_network_idle_timeout_is_soft(self, stabilizer, mock_page, home_scenario, desktop_viewport):
        mock_page.wait_for_load_state.side_effect = PlaywrightTimeoutError("networkidle")
        report = await stabilizer.stabilize(mock_page, home_scenario, desktop_viewport)
        assert report.steps[0] == "navigate"
        assert "fonts" in report.steps

    @pytest.mark.asyncio
    async def test_scenario_wait_time(self, stabilizer, mock_page):
        await stabilizer.navigate(mock_page, "https://local.example.com/", wait_time_ms=300)
        mock_page.wait_for_timeout.assert_awaited_once_with(300)


class TestDegradation:
    """A failing or slow wait degrades the pipeline without failing it."""

    @pytest.mark.asyncio
    async def test_page_error_degrades_step(self, stabilizer, mock_page, home_scenario, mobile_viewport):
        async def _evaluate(script, arg=None):
            if "document.fonts" in script:
                raise PlaywrightError("Execution context was destroyed")
            return 2000 if script == SCROLL_HEIGHT_JS else 0

        mock_page.evaluate = AsyncMock(side_effect=_evaluate)
        report = await stabilizer.stabilize(mock_page, home_scenario, mobile_viewport)
        assert report.steps == FULL_PAGE_STEPS
        assert report.degraded == ["fonts"]

    @pytest.mark.asyncio
    async def test_slow_wait_is_time_boxed(self, stabilizer, mock_page, home_scenario, desktop_viewport):
        async def _evaluate(script, arg=None):
            if "document.fonts" in script:
                await asyncio.sleep(5)
            return 0

        mock_page.evaluate = AsyncMock(side_effect=_evaluate)
        report = await asyncio.wait_for(
            stabilizer.stabilize(mock_page, home_scenario, desktop_viewport), timeout=2,
        )
        assert "fonts" in report.steps
        assert report.degraded == ["fonts"]

    @pytest.mark.asyncio
    async def test_interrupted_scroll_resets_to_top(self, stabilizer, mock_page):
        async def _evaluate(script, arg=None):
            if "maxDistance" in script:
                raise PlaywrightError("Target closed")
            return 0

        mock_page.evaluate = AsyncMock(side_effect=_evaluate)
        report = StabilizationReport()
        await stabilizer.scroll_through(mock_page, report)
        assert report.degraded == ["scroll"]
        assert report.scrolled_to == 0
        assert "() => window.scrollTo(0, 0)" in _scripts(mock_page)


class TestStableHeight:
    @pytest.mark.asyncio
    async def test_stable_after_consecutive_readings(self, stabilizer, mock_page):
        heights = iter([1000, 1500, 2000, 2000, 2000])
        mock_page.evaluate = AsyncMock(side_effect=lambda script, arg=None: next(heights))
        report = StabilizationReport()

        assert await stabilizer.wait_for_stable_height(mock_page, report) is True
        assert mock_page.evaluate.await_count == 5
        assert report.degraded == []

    @pytest.mark.asyncio
    async def test_growing_page_gives_up(self, stabilizer, mock_page):
        counter = itertools.count(1000, 100)
        mock_page.evaluate = AsyncMock(side_effect=lambda script, arg=None: next(counter))
        report = StabilizationReport()

        assert await stabilizer.wait_for_stable_height(mock_page, report) is False
        assert report.degraded == ["height"]
        # height_timeout 200 / poll 10 bounds the number of reads
        assert mock_page.evaluate.await_count <= 21

    @pytest.mark.asyncio
    async def test_unstable_height_skips_settle_delay(self, stabilization_config, mock_page,
                                                      home_scenario, mobile_viewport):
        stabilization_config.settle_delay = 77
        counter = itertools.count(1000, 100)

        async def _evaluate(script, arg=None):
            return next(counter) if script == SCROLL_HEIGHT_JS else 0

        mock_page.evaluate = AsyncMock(side_effect=_evaluate)
        report = await Stabilizer(stabilization_config).stabilize(mock_page, home_scenario, mobile_viewport)
        assert report.height_stable is False
        waits = [c.args[0] for c in mock_page.wait_for_timeout.await_args_list]
        assert 77 not in waits

    @pytest.mark.asyncio
    async def test_stable_height_applies_settle_delay(self, stabilization_config, mock_page,
                                                      home_scenario, mobile_viewport):
        stabilization_config.settle_delay = 77
        await Stabilizer(stabilization_config).stabilize(mock_page, home_scenario, mobile_viewport)
        mock_page.wait_for_timeout.assert_awaited_with(77)
