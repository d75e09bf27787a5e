"""Readiness detection: tolerant OR over the known prompt-input selector variants."""

import logging
from typing import Any

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from council.browser.base import InputNotFoundError

logger = logging.getLogger(__name__)


async def wait_for_ready(
    page: Any,
    selectors: list[str],
    per_variant_timeout_ms: int,
    agent_id: str | None = None,
) -> str:
    """Wait until any selector variant resolves, trying them in priority order.

    Returns:
        The selector that matched.

    Raises:
        InputNotFoundError: If no variant appears within its timeout.
    """
    for selector in selectors:
        try:
            await page.wait_for_selector(selector, timeout=per_variant_timeout_ms)
        except PlaywrightTimeoutError:
            logger.debug("Input selector not found within %dms: %s", per_variant_timeout_ms, selector)
            continue
        logger.info("Found input with selector: %s", selector)
        return selector

    raise InputNotFoundError(agent_id, selectors)
