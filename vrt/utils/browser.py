"""Browser utilities - launch Chromium and open deterministic capture contexts."""

from __future__ import annotations

from playwright.async_api import Browser, BrowserContext, Playwright

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/122.0.0.0 Safari/537.36 vrt"
)

# Pinned on every capture context
CAPTURE_LOCALE = "en-US"
CAPTURE_TIMEZONE = "UTC"

# Delay between actions when running headed
HEADED_SLOW_MO_MS = 100

_LAUNCH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--hide-scrollbars",
    "--font-render-hinting=none",
    "--force-color-profile=srgb",
]


async def launch_browser(playwright: Playwright, headless: bool = True) -> Browser:
    """Launch Chromium with flags that keep rendering stable between runs."""
    return await playwright.chromium.launch(
        headless=headless,
        slow_mo=0 if headless else HEADED_SLOW_MO_MS,
        args=_LAUNCH_ARGS,
    )


async def create_capture_context(
    browser: Browser,
    width: int,
    height: int,
    device_scale_factor: float = 1.0,
    ignore_https_errors: bool = False,
    user_agent: str | None = None,
) -> BrowserContext:
    """Create an isolated context sized for one viewport.

    Every capture gets its own context, so cookies, storage and service
    workers never leak between scenarios.
    """
    return await browser.new_context(
        viewport={"width": width, "height": height},
        device_scale_factor=device_scale_factor,
        ignore_https_errors=ignore_https_errors,
        user_agent=user_agent or DEFAULT_USER_AGENT,
        locale=CAPTURE_LOCALE,
        timezone_id=CAPTURE_TIMEZONE,
        reduced_motion="reduce",
        extra_http_headers={
            "Accept-Language": "en-US,en;q=0.9",
        },
    )
