"""Completion detection: a polling state machine over a streaming chat page.

States:
    GENERATING      a stop/cancel control or a streaming indicator is visible,
                    or the candidate text is still changing length
    STABLE_PENDING  text length unchanged but not yet confirmed
    DONE            length unchanged for ``stable_polls`` consecutive polls
    TIMED_OUT       ``ceiling_sec`` elapsed without reaching DONE

The extraction cascade is data (``SelectorsConfig.extraction``); the first
strategy that yields acceptable text wins.
"""

import asyncio
import logging
import time
from typing import Any

from playwright.async_api import Error as PlaywrightError

from config.config_loader import DetectorConfig, ExtractionStrategy, SelectorsConfig
from council.browser.base import ResponseTimeoutError
from council.models import Completion, DetectorState

logger = logging.getLogger(__name__)


class CompletionDetector:
    """Decides when a response has finished rendering and extracts its text."""

    def __init__(self, config: DetectorConfig, selectors: SelectorsConfig) -> None:
        self._config = config
        self._selectors = selectors

    @property
    def sentinel(self) -> str:
        return self._config.extraction_failed_sentinel

    async def is_generating(self, page: Any) -> bool:
        """True while a stop control or a loading/streaming indicator is present."""
        for group in (self._selectors.stop_generation, self._selectors.loading):
            if group and await page.query_selector(", ".join(group)) is not None:
                return True
        return False

    async def _run_strategy(self, page: Any, strategy: ExtractionStrategy) -> str:
        root = page
        if strategy.scope:
            root = await page.query_selector(strategy.scope)
            if root is None:
                return ""
        elements = await root.query_selector_all(strategy.selector)
        if not elements:
            return ""
        text = await elements[-1].inner_text()
        return (text or "").strip()

    def _acceptable(self, text: str) -> bool:
        if len(text) <= self._config.min_response_chars:
            return False
        return not any(phrase in text for phrase in self._selectors.stopped_phrases)

    async def _extract_candidate(self, page: Any) -> str:
        """Run the cascade; returns "" when no strategy yields acceptable text."""
        for strategy in self._selectors.extraction:
            try:
                text = await self._run_strategy(page, strategy)
            except PlaywrightError as exc:
                logger.debug("Extraction strategy %s failed: %s", strategy.selector, exc)
                continue
            if self._acceptable(text):
                return text
        return ""

    async def extract_last_response(self, page: Any) -> str:
        """Return the trailing model-authored message, or the failure sentinel."""
        text = await self._extract_candidate(page)
        return text or self.sentinel

    async def wait_for_completion(self, page: Any) -> Completion:
        """Poll the page until the response is stable or the ceiling elapses.

        Returns:
            Completion with the final text and terminal state. The text is the
            failure sentinel when nothing could be extracted.

        Raises:
            ResponseTimeoutError: On TIMED_OUT when return_partial_on_timeout
                is disabled.
        """
        cfg = self._config
        await asyncio.sleep(cfg.grace_sec)

        start = time.monotonic()
        state = DetectorState.GENERATING
        stable_count = 0
        last_length = 0
        last_text = ""
        polls = 0

        while time.monotonic() - start < cfg.ceiling_sec:
            polls += 1

            if await self.is_generating(page):
                state = DetectorState.GENERATING
                stable_count = 0
                await asyncio.sleep(cfg.poll_interval_sec)
                continue

            # the sentinel is a constant candidate, so a failed extraction settles too
            candidate = await self.extract_last_response(page)
            if candidate != self.sentinel:
                last_text = candidate
            if len(candidate) == last_length:
                stable_count += 1
                state = DetectorState.STABLE_PENDING
                if stable_count >= cfg.stable_polls:
                    state = DetectorState.DONE
                    break
            else:
                stable_count = 0
                last_length = len(candidate)
                state = DetectorState.GENERATING

            await asyncio.sleep(cfg.poll_interval_sec)
        else:
            state = DetectorState.TIMED_OUT

        elapsed = time.monotonic() - start
        if state is DetectorState.TIMED_OUT:
            logger.warning("Response not stable after %.0fs (%d polls)", cfg.ceiling_sec, polls)
            if not cfg.return_partial_on_timeout:
                raise ResponseTimeoutError(cfg.ceiling_sec, last_text)
        else:
            logger.info("Response complete after %d polls (%.1fs)", polls, elapsed)

        await asyncio.sleep(cfg.settle_sec)
        final = await self._extract_candidate(page)
        text = final or last_text or self.sentinel
        return Completion(text=text, state=state, polls=polls, elapsed_sec=elapsed)
