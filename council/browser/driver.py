"""Interaction driver: type -> send -> wait -> extract against one agent's tab."""

import asyncio
import logging
from typing import Any

from playwright.async_api import Error as PlaywrightError

from config.config_loader import AppConfig, BrowserConfig, SelectorsConfig
from council.browser.base import AgentChannel, InputInjectionError, SendTriggerExhaustedError
from council.browser.detector import CompletionDetector
from council.browser.registry import SessionRegistry

logger = logging.getLogger(__name__)

# Direct DOM assignment plus a synthetic input event; works even when the
# window is not focused or visible.
_INJECT_JS = """
({text, selectors}) => {
    let input = null;
    for (const selector of selectors) {
        input = document.querySelector(selector);
        if (input) break;
    }
    if (!input) {
        return {success: false, error: 'Could not find input field'};
    }
    input.focus();
    input.textContent = text;
    input.dispatchEvent(new InputEvent('input', {bubbles: true, data: text}));
    return {success: true};
}
"""

_TRIGGER_JS = """
({buttons, inputs}) => {
    for (const selector of buttons) {
        const button = document.querySelector(selector);
        if (button && !button.disabled) {
            button.click();
            return {success: true, method: 'button'};
        }
    }
    for (const selector of inputs) {
        const input = document.querySelector(selector);
        if (input) {
            input.dispatchEvent(new KeyboardEvent('keydown', {key: 'Enter', code: 'Enter', keyCode: 13, bubbles: true}));
            return {success: true, method: 'enter'};
        }
    }
    return {success: false, error: 'Could not find send button'};
}
"""


def _preview(text: str, limit: int = 50) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


class InteractionDriver(AgentChannel):
    """Drives the Gemini web UI for any account tracked by the registry."""

    def __init__(
        self,
        registry: SessionRegistry,
        detector: CompletionDetector,
        selectors: SelectorsConfig,
        browser_config: BrowserConfig,
    ) -> None:
        self._registry = registry
        self._detector = detector
        self._selectors = selectors
        self._browser_config = browser_config

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    async def dismiss_overlays(self, page: Any) -> int:
        """Best-effort close of known popups. Returns how many were clicked."""
        dismissed = 0
        for selector in self._selectors.overlays:
            try:
                button = await page.query_selector(selector)
                if button is None:
                    continue
                logger.info("Closing overlay with selector: %s", selector)
                await button.click(timeout=self._browser_config.overlay_click_timeout_ms, force=True)
                dismissed += 1
                await asyncio.sleep(self._browser_config.overlay_settle_ms / 1000)
            except PlaywrightError as exc:
                logger.debug("Overlay dismissal failed for %s: %s", selector, exc)
        return dismissed

    async def _inject(self, page: Any, agent_id: str, text: str) -> None:
        try:
            result = await page.evaluate(_INJECT_JS, {"text": text, "selectors": self._selectors.input})
        except PlaywrightError as exc:
            raise InputInjectionError(agent_id, f"Input injection failed: {exc}") from exc
        if not result or not result.get("success"):
            error = (result or {}).get("error", "Could not find input field")
            raise InputInjectionError(agent_id, error)

    async def _trigger_send(self, page: Any, agent_id: str) -> str:
        """Click send, else synthetic Enter, else keyboard Enter. Returns the method used."""
        try:
            result = await page.evaluate(
                _TRIGGER_JS,
                {"buttons": self._selectors.send_buttons, "inputs": self._selectors.input},
            )
        except PlaywrightError as exc:
            logger.debug("[Account %s] DOM send trigger failed: %s", agent_id, exc)
            result = None

        if result and result.get("success"):
            return str(result.get("method", "button"))

        try:
            await page.keyboard.press("Enter")
        except PlaywrightError as exc:
            raise SendTriggerExhaustedError(agent_id, f"All send methods failed: {exc}") from exc
        return "keyboard"

    async def send_message(self, agent_id: str, text: str) -> str:
        async with self._registry.checkout(agent_id) as page:
            logger.info("[Account %s] Sending: %r", agent_id, _preview(text))
            await self.dismiss_overlays(page)
            await self._inject(page, agent_id, text)
            await asyncio.sleep(self._browser_config.post_input_delay_ms / 1000)
            method = await self._trigger_send(page, agent_id)
            logger.info("[Account %s] Message sent via %s", agent_id, method)
            completion = await self._detector.wait_for_completion(page)

        logger.info(
            "[Account %s] Response received (%d chars, %s)",
            agent_id,
            len(completion.text),
            completion.state.value,
        )
        return completion.text

    async def start_new_chat(self, agent_id: str) -> None:
        await self._registry.start_new_chat(agent_id)

    async def current_url(self, agent_id: str) -> str | None:
        return self._registry.get_current_url(agent_id)


def create_driver(config: AppConfig, context: Any | None = None) -> InteractionDriver:
    """Wire registry, detector and driver from configuration."""
    registry = SessionRegistry(config.browser, config.selectors, context=context)
    detector = CompletionDetector(config.detector, config.selectors)
    return InteractionDriver(registry, detector, config.selectors, config.browser)
