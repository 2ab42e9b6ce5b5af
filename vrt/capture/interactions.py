"""Replays scenario interactions as Playwright calls."""

from __future__ import annotations

import logging

from playwright.async_api import Page

from vrt.models.scenario import Interaction, InteractionType

logger = logging.getLogger(__name__)


async def run_interaction(page: Page, interaction: Interaction, timeout: int = 10000) -> None:
    """Execute a single interaction on the page.

    A ``wait_ms`` on click/type/mouseover is a settle delay applied after the
    action. Unknown interaction types are logged and skipped.
    """
    logger.debug("Running interaction: %s | selector=%s | value=%s | wait_ms=%s",
                 interaction.type, interaction.selector, interaction.value,
                 interaction.wait_ms)

    match interaction.type:
        case InteractionType.CLICK:
            if not interaction.selector:
                raise ValueError("click interaction requires a selector")
            await page.locator(interaction.selector).first.click(timeout=timeout)

        case InteractionType.TYPE:
            if not interaction.selector:
                raise ValueError("type interaction requires a selector")
            if interaction.value is None:
                raise ValueError("type interaction requires a value")
            await page.locator(interaction.selector).first.fill(interaction.value, timeout=timeout)

        case InteractionType.MOUSEOVER:
            if not interaction.selector:
                raise ValueError("mouseover interaction requires a selector")
            await page.locator(interaction.selector).first.hover(timeout=timeout)

        case InteractionType.WAIT:
            if interaction.wait_ms and interaction.wait_ms > 0:
                logger.debug("Waiting %dms...", interaction.wait_ms)
                await page.wait_for_timeout(interaction.wait_ms)
            return

        case _:
            logger.warning("Unknown interaction type: %s (skipped)", interaction.type)
            return

    if interaction.wait_ms and interaction.wait_ms > 0:
        logger.debug("Settling %dms after %s", interaction.wait_ms, interaction.type)
        await page.wait_for_timeout(interaction.wait_ms)


async def run_interactions(page: Page, interactions: list[Interaction], timeout: int = 10000) -> None:
    """Replay interactions strictly in declaration order."""
    for index, interaction in enumerate(interactions):
        logger.debug("Interaction %d/%d", index + 1, len(interactions))
        await run_interaction(page, interaction, timeout=timeout)
