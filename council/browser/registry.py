"""Session registry: owns the agent id -> browser tab mapping over one CDP connection."""

import asyncio
import logging
import re
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any
from urllib.parse import urlparse

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from config.config_loader import BrowserConfig, SelectorsConfig
from council.browser.base import BrowserConnectionError, NavigationError
from council.browser.readiness import wait_for_ready
from council.models import AgentSession

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Sole owner and mutator of the agent sessions.

    All page work for one agent goes through that agent's lock, so two
    callers never drive the same tab at once. Distinct agents run freely.
    The browser itself is externally owned: tabs are never closed here.
    """

    def __init__(
        self,
        config: BrowserConfig,
        selectors: SelectorsConfig,
        context: Any | None = None,
    ) -> None:
        self._config = config
        self._selectors = selectors
        self._context = context
        self._owns_context = context is None
        self._playwright: Any | None = None
        self._browser: Any | None = None
        self._connected = False
        self._sessions: dict[str, AgentSession] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._connect_lock = asyncio.Lock()

        host = urlparse(config.app_url).netloc
        self._account_pattern = re.compile(re.escape(host) + r"/u/(\d+)")
        self._default_prefix = config.app_url.split("://", 1)[-1]

    @property
    def is_connected(self) -> bool:
        return self._connected

    def available_accounts(self) -> list[str]:
        return list(self._config.accounts)

    def list_active_agents(self) -> list[str]:
        return sorted(self._sessions)

    def _lock_for(self, agent_id: str) -> asyncio.Lock:
        return self._locks.setdefault(agent_id, asyncio.Lock())

    async def _open_context(self) -> Any:
        endpoint = self._config.cdp_endpoint
        logger.info("Connecting to Chrome at %s...", endpoint)
        playwright = await async_playwright().start()
        try:
            browser = await playwright.chromium.connect_over_cdp(endpoint)
        except (PlaywrightError, OSError) as exc:
            await playwright.stop()
            raise BrowserConnectionError(
                endpoint,
                f"Cannot connect to Chrome ({exc}). Start it with --remote-debugging-port",
            ) from exc

        if not browser.contexts:
            await playwright.stop()
            raise BrowserConnectionError(endpoint, "No browser contexts found")

        self._playwright = playwright
        self._browser = browser
        logger.info("Connected to Chrome")
        return browser.contexts[0]

    async def connect(self) -> None:
        """Connect once to the remote browser and adopt already-open app tabs.

        Raises:
            BrowserConnectionError: If the debug endpoint is unreachable.
        """
        async with self._connect_lock:
            if self._connected:
                return
            if self._context is None:
                self._context = await self._open_context()
            self._connected = True
            self.discover_existing()

    def _infer_agent_id(self, url: str) -> str | None:
        match = self._account_pattern.search(url)
        if match:
            return match.group(1)
        if self._default_prefix in url:
            return "0"
        return None

    def discover_existing(self) -> list[str]:
        """Track open tabs whose URL identifies an account. Returns the adopted ids."""
        if self._context is None:
            return []
        adopted: list[str] = []
        for page in self._context.pages:
            agent_id = self._infer_agent_id(page.url)
            if agent_id is None or agent_id in self._sessions:
                continue
            logger.info("Found existing page for account %s", agent_id)
            self._sessions[agent_id] = AgentSession(agent_id=agent_id, page=page, ready=True)
            adopted.append(agent_id)
        return adopted

    async def _load(self, page: Any, agent_id: str, url: str) -> None:
        try:
            await page.goto(url, wait_until="domcontentloaded", timeout=self._config.navigation_timeout_ms)
        except PlaywrightError as exc:
            raise NavigationError(agent_id, url, str(exc)) from exc
        await asyncio.sleep(self._config.post_navigation_delay_ms / 1000)
        await wait_for_ready(page, self._selectors.ready, self._config.ready_timeout_ms, agent_id=agent_id)

    async def _ensure_page(self, agent_id: str) -> Any:
        # Caller holds the agent lock.
        if not self._connected:
            await self.connect()

        session = self._sessions.get(agent_id)
        if session is not None and session.ready:
            return session.page

        if session is None:
            logger.info("Opening Gemini for account %s...", agent_id)
            session = AgentSession(agent_id=agent_id, page=await self._context.new_page())
            self._sessions[agent_id] = session

        await self._load(session.page, agent_id, self._config.account_url(agent_id))
        session.ready = True
        logger.info("Account %s is ready", agent_id)
        return session.page

    async def get_agent_page(self, agent_id: str) -> Any:
        """Return a ready page for agent_id, provisioning a tab on first use."""
        async with self._lock_for(agent_id):
            return await self._ensure_page(agent_id)

    @asynccontextmanager
    async def checkout(self, agent_id: str) -> AsyncIterator[Any]:
        """Hold agent_id's lock for the block and yield its ready page."""
        async with self._lock_for(agent_id):
            yield await self._ensure_page(agent_id)

    async def start_new_chat(self, agent_id: str) -> None:
        async with self._lock_for(agent_id):
            page = await self._ensure_page(agent_id)
            logger.info("[Account %s] Starting new chat...", agent_id)
            await self._load(page, agent_id, self._config.account_url(agent_id))
            logger.info("[Account %s] New chat ready", agent_id)

    async def navigate_to_conversation(self, agent_id: str, url: str) -> Any:
        """Load a stored conversation URL into the agent's tab, opening one if needed."""
        async with self._lock_for(agent_id):
            if not self._connected:
                await self.connect()
            logger.info("[Account %s] Navigating to: %s", agent_id, url)
            session = self._sessions.get(agent_id)
            if session is None:
                session = AgentSession(agent_id=agent_id, page=await self._context.new_page())
                self._sessions[agent_id] = session
            await self._load(session.page, agent_id, url)
            session.ready = True
            logger.info("[Account %s] Restored conversation", agent_id)
            return session.page

    def get_current_url(self, agent_id: str) -> str | None:
        session = self._sessions.get(agent_id)
        if session is None:
            return None
        return session.page.url

    async def close(self) -> None:
        """Forget all sessions and drop the connection. Chrome stays open."""
        self._sessions.clear()
        self._connected = False
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
            self._browser = None
        if self._owns_context:
            self._context = None
