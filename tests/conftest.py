"""Pytest configuration and shared fixtures."""

from pathlib import Path
from typing import Callable
from unittest.mock import AsyncMock, MagicMock

import pytest
from PIL import Image
from playwright.async_api import Browser, BrowserContext, Page

from vrt.capture.stabilizer import SCROLL_HEIGHT_JS
from vrt.models.config import (
    ComparisonConfig,
    RetryConfig,
    StabilizationConfig,
    VrtConfig,
)
from vrt.models.scenario import ApiPayload, Interaction, Meta, Scenario, Viewport


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def stabilization_config() -> StabilizationConfig:
    """Stabilization settings with short timeouts for tests."""
    return StabilizationConfig(
        video_seek_timeout=100,
        network_idle_timeout=100,
        font_timeout=100,
        scroll_timeout=100,
        image_timeout=100,
        height_poll_interval=10,
        height_stable_readings=3,
        height_timeout=200,
        settle_delay=0,
        viewport_settle_delay=0,
    )


@pytest.fixture
def vrt_config(tmp_path: Path, stabilization_config: StabilizationConfig) -> VrtConfig:
    """Create a config whose directories all live under tmp_path."""
    return VrtConfig(
        endpoint="https://vrt.example.com/api/vrt/pages",
        token="secret-token",
        output_dir=str(tmp_path / "screenshots"),
        baseline_dir=str(tmp_path / "baselines"),
        diff_dir=str(tmp_path / "diffs"),
        report_dir=str(tmp_path / "vrt-report"),
        failed_tests_file=str(tmp_path / ".vrt-failed.json"),
        comparison=ComparisonConfig(),
        retries=RetryConfig(max_retries=2, retry_delay=0),
        stabilization=stabilization_config,
    )


@pytest.fixture
def temp_config_file(vrt_config: VrtConfig, tmp_path: Path) -> Path:
    """Create a temporary config file."""
    config_file = tmp_path / ".vrtrc.json"
    vrt_config.save(config_file)
    return config_file


# ============================================================================
# Payload Fixtures
# ============================================================================


@pytest.fixture
def desktop_viewport() -> Viewport:
    return Viewport(machine_name="desktop", label="Desktop", width=1280, height=800)


@pytest.fixture
def mobile_viewport() -> Viewport:
    return Viewport(machine_name="mobile", label="Mobile", width=375, height=0,
                    device_scale_factor=2, full_page=True)


@pytest.fixture
def home_scenario() -> Scenario:
    return Scenario(
        id="home",
        title="Home Page",
        url="https://local.example.com/",
        viewport_keys=["desktop"],
    )


@pytest.fixture
def interactive_scenario() -> Scenario:
    return Scenario(
        id="menu-open",
        title="Main Menu Open",
        url="https://local.example.com/about?tab=team#top",
        mode="interactive",
        wait_time_ms=50,
        viewport_keys=["desktop", "mobile"],
        interactions=[
            Interaction(type="click", selector="button.menu-toggle", wait_ms=20),
            Interaction(type="mouseover", selector="nav a.first"),
        ],
    )


@pytest.fixture
def payload_dict() -> dict:
    """A raw API payload as served by the scenarios endpoint."""
    return {
        "meta": {
            "generated_at": "2025-01-01T00:00:00Z",
            "generated_by": "vrt",
            "scenario_count": 3,
            "viewport_count": 2,
            "is_regenerating": False,
            "token_required": True,
        },
        "viewports": [
            {"machine_name": "desktop", "label": "Desktop", "width": 1280, "height": 800},
            {"machine_name": "mobile", "label": "Mobile", "width": 375, "height": 0,
             "device_scale_factor": 2, "full_page": True},
        ],
        "scenarios": [
            {"id": "home", "title": "Home Page", "url": "https://local.example.com/",
             "viewport_keys": ["desktop", "mobile"]},
            {"id": "about-us", "title": "About Us", "url": "https://local.example.com/about",
             "viewport_keys": ["desktop"]},
            {"id": "contact", "title": "Contact Form", "url": "https://local.example.com/contact",
             "mode": "interactive", "viewport_keys": ["mobile"],
             "interactions": [{"type": "type", "selector": "#email", "value": "a@b.c"}]},
        ],
    }


@pytest.fixture
def api_payload(payload_dict: dict) -> ApiPayload:
    return ApiPayload.model_validate(payload_dict)


@pytest.fixture
def single_scenario_payload(home_scenario: Scenario, desktop_viewport: Viewport) -> ApiPayload:
    return ApiPayload(
        meta=Meta(scenario_count=1, viewport_count=1),
        viewports=[desktop_viewport],
        scenarios=[home_scenario],
    )


# ============================================================================
# Mock Fixtures
# ============================================================================


@pytest.fixture
def mock_locator() -> AsyncMock:
    """The ``.first`` locator returned for any selector."""
    return AsyncMock()


@pytest.fixture
def mock_page(mock_locator: AsyncMock) -> AsyncMock:
    """Create a mock Playwright page."""
    page = AsyncMock(spec=Page)
    page.url = "https://local.example.com/"
    page.goto = AsyncMock()
    page.wait_for_load_state = AsyncMock()
    page.wait_for_timeout = AsyncMock()
    page.add_style_tag = AsyncMock()
    page.screenshot = AsyncMock()
    page.locator = MagicMock()
    page.locator.return_value.first = mock_locator

    async def _evaluate(script, arg=None):
        if script == SCROLL_HEIGHT_JS:
            return 2000
        return 0

    page.evaluate = AsyncMock(side_effect=_evaluate)
    return page


@pytest.fixture
def mock_context(mock_page: AsyncMock) -> AsyncMock:
    """Create a mock Playwright browser context."""
    context = AsyncMock(spec=BrowserContext)
    context.new_page = AsyncMock(return_value=mock_page)
    context.close = AsyncMock()
    context.set_default_timeout = MagicMock()
    return context


@pytest.fixture
def mock_browser(mock_context: AsyncMock) -> AsyncMock:
    """Create a mock Playwright browser."""
    browser = AsyncMock(spec=Browser)
    browser.new_context = AsyncMock(return_value=mock_context)
    browser.close = AsyncMock()
    return browser


# ============================================================================
# Image Helpers
# ============================================================================


@pytest.fixture
def make_png() -> Callable[..., Path]:
    """Write a solid-colour PNG, optionally with a block of another colour."""

    def _make(
        path: Path,
        size: tuple[int, int] = (40, 30),
        color: tuple[int, int, int, int] = (255, 255, 255, 255),
        block: tuple[int, int, int, int] | None = None,
        block_color: tuple[int, int, int, int] = (0, 0, 0, 255),
    ) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        img = Image.new("RGBA", size, color)
        if block is not None:
            left, top, right, bottom = block
            for x in range(left, right):
                for y in range(top, bottom):
                    img.putpixel((x, y), block_color)
        img.save(path, format="PNG")
        return path

    return _make
