"""Shared pytest fixtures and browser/agent test doubles."""

import asyncio
import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from config.config_loader import (
    AppConfig,
    BrowserConfig,
    DetectorConfig,
    DiscussionConfig,
    ExtractionStrategy,
    ParallelConfig,
    PromptsConfig,
    RoleConfig,
    SelectorsConfig,
    ServerConfig,
    StorageConfig,
    SubtaskTemplate,
)
from council.browser.base import AgentChannel, SendTriggerExhaustedError
from council.store import RoomStore

READY_SELECTORS = ['div[contenteditable="true"]', "rich-textarea", '[aria-label="Enter a prompt here"]']
STOP_SELECTOR = 'button[aria-label="Stop response"]'
LOADING_SELECTOR = ".loading"
MESSAGE_SELECTOR = "message-content"
MODEL_ROLE_SELECTOR = '[data-message-author-role="model"]'
MARKDOWN_SELECTOR = ".markdown-main-panel"
MAIN_SELECTOR = '[role="main"]'

SPLIT_JSON = json.dumps(
    {
        "subtasks": [
            {"id": 1, "task": "Map the domain boundaries", "focus": "architecture"},
            {"id": 2, "task": "Plan the data migration", "focus": "data"},
            {"id": 3, "task": "Design the rollout", "focus": "operations"},
        ]
    }
)


# ---- browser doubles ----


class FakeElement:
    """DOM element double. texts: successive inner_text values, the last one sticks."""

    def __init__(self, *texts: str, children: dict[str, list["FakeElement"]] | None = None,
                 click_error: Exception | None = None) -> None:
        self._texts = list(texts) or [""]
        self.children = children or {}
        self.click_error = click_error
        self.clicks = 0

    async def inner_text(self) -> str:
        if len(self._texts) > 1:
            return self._texts.pop(0)
        return self._texts[0]

    async def query_selector_all(self, selector: str) -> list["FakeElement"]:
        return list(self.children.get(selector, []))

    async def click(self, timeout: float | None = None, force: bool = False) -> None:
        if self.click_error is not None:
            raise self.click_error
        self.clicks += 1


class FakeKeyboard:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.pressed: list[str] = []

    async def press(self, key: str) -> None:
        if self.error is not None:
            raise self.error
        self.pressed.append(key)


class FakePage:
    """Playwright Page double.

    present: selectors that wait_for_selector resolves.
    elements: selector -> elements for query_selector / query_selector_all.
    on_evaluate: optional async handler(arg) for page.evaluate.
    """

    def __init__(
        self,
        url: str = "about:blank",
        present: set[str] | None = None,
        elements: dict[str, list[FakeElement]] | None = None,
        on_evaluate: Callable[[dict], Any] | None = None,
        goto_error: Exception | None = None,
    ) -> None:
        self.url = url
        self.present = set(READY_SELECTORS[:1]) if present is None else set(present)
        self.elements = elements or {}
        self.on_evaluate = on_evaluate
        self.keyboard = FakeKeyboard()
        self.goto_calls: list[str] = []
        self.evaluations: list[dict] = []
        self.failing_selectors: set[str] = set()
        self.goto_error = goto_error

    async def goto(self, url: str, wait_until: str | None = None, timeout: float | None = None) -> None:
        await asyncio.sleep(0)
        if self.goto_error is not None:
            raise self.goto_error
        self.goto_calls.append(url)
        self.url = url

    async def wait_for_selector(self, selector: str, timeout: float | None = None) -> FakeElement:
        if selector in self.present:
            return FakeElement()
        raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for {selector}")

    async def query_selector(self, selector: str) -> FakeElement | None:
        if selector in self.failing_selectors:
            raise PlaywrightError("Execution context was destroyed")
        found = self.elements.get(selector, [])
        return found[0] if found else None

    async def query_selector_all(self, selector: str) -> list[FakeElement]:
        if selector in self.failing_selectors:
            raise PlaywrightError("Execution context was destroyed")
        return list(self.elements.get(selector, []))

    async def evaluate(self, script: str, arg: dict | None = None) -> Any:
        self.evaluations.append(arg or {})
        if self.on_evaluate is not None:
            return await self.on_evaluate(arg or {})
        if arg and "text" in arg:
            return {"success": True}
        return {"success": True, "method": "button"}


class FakeContext:
    """BrowserContext double; new_page() builds pages with page_factory."""

    def __init__(self, pages: list[FakePage] | None = None,
                 page_factory: Callable[[], FakePage] | None = None) -> None:
        self.pages = list(pages or [])
        self.page_factory = page_factory or FakePage
        self.created: list[FakePage] = []

    async def new_page(self) -> FakePage:
        await asyncio.sleep(0)
        page = self.page_factory()
        self.pages.append(page)
        self.created.append(page)
        return page


# ---- agent doubles ----


class FakeRegistry:
    """Just enough of SessionRegistry for the HTTP layer."""

    def __init__(self, accounts: list[str] | None = None, connect_error: Exception | None = None) -> None:
        self.accounts = accounts or ["0", "1", "2"]
        self.connect_error = connect_error
        self.is_connected = False
        self.active: list[str] = []
        self.navigations: list[tuple[str, str]] = []
        self.closed = False

    async def connect(self) -> None:
        if self.connect_error is not None:
            raise self.connect_error
        self.is_connected = True

    def available_accounts(self) -> list[str]:
        return list(self.accounts)

    def list_active_agents(self) -> list[str]:
        return sorted(self.active)

    async def navigate_to_conversation(self, agent_id: str, url: str) -> None:
        self.navigations.append((agent_id, url))

    async def close(self) -> None:
        self.closed = True


class FakeChannel(AgentChannel):
    """AgentChannel double.

    responder(agent_id, prompt) returns the response text or raises. The
    default answers "Response from <id> #<n>". Tracks in-flight sends.
    """

    def __init__(self, responder: Callable[[str, str], Any] | None = None, delay: float = 0.0) -> None:
        self.responder = responder
        self.delay = delay
        self.sent: list[tuple[str, str]] = []
        self.new_chats: list[str] = []
        self.urls: dict[str, str] = {}
        self.in_flight = 0
        self.max_in_flight = 0
        self.registry = FakeRegistry()

    async def send_message(self, agent_id: str, text: str) -> str:
        self.sent.append((agent_id, text))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if self.responder is not None:
                return self.responder(agent_id, text)
            return f"Response from {agent_id} #{len(self.sent)}"
        finally:
            self.in_flight -= 1

    async def start_new_chat(self, agent_id: str) -> None:
        self.new_chats.append(agent_id)

    async def current_url(self, agent_id: str) -> str | None:
        return self.urls.get(agent_id)


# ---- config fixtures ----


@pytest.fixture
def browser_config() -> BrowserConfig:
    return BrowserConfig(
        cdp_endpoint="http://localhost:9222",
        app_url="https://gemini.google.com/app",
        account_url_template="https://gemini.google.com/u/{account}/app",
        accounts=["0", "1", "2"],
        navigation_timeout_ms=1000,
        post_navigation_delay_ms=0,
        ready_timeout_ms=10,
        overlay_click_timeout_ms=10,
        overlay_settle_ms=0,
        post_input_delay_ms=0,
    )


@pytest.fixture
def fast_detector_config() -> DetectorConfig:
    return DetectorConfig(
        grace_sec=0.0,
        poll_interval_sec=0.001,
        ceiling_sec=2.0,
        stable_polls=5,
        settle_sec=0.0,
        min_response_chars=10,
        return_partial_on_timeout=True,
        extraction_failed_sentinel="[Response extraction failed]",
    )


@pytest.fixture
def selectors_config() -> SelectorsConfig:
    return SelectorsConfig(
        ready=list(READY_SELECTORS),
        input=['rich-textarea div[contenteditable="true"]', 'div[contenteditable="true"]'],
        send_buttons=['button[aria-label="Send message"]', ".send-button"],
        overlays=['button[aria-label="No thanks"]', 'button[aria-label="Close"]'],
        stop_generation=[STOP_SELECTOR],
        loading=[LOADING_SELECTOR],
        extraction=[
            ExtractionStrategy(selector=MESSAGE_SELECTOR),
            ExtractionStrategy(selector=MODEL_ROLE_SELECTOR),
            ExtractionStrategy(selector=MARKDOWN_SELECTOR),
            ExtractionStrategy(selector=MODEL_ROLE_SELECTOR, scope=MAIN_SELECTOR),
        ],
        stopped_phrases=["You stopped this response"],
    )


@pytest.fixture
def sample_prompts_config() -> PromptsConfig:
    return PromptsConfig(
        opening="OPENING {name} ({role}) Q: {question}",
        critique="CRITIQUE {name} ({role}) Q: {question}\nPREV {previous_name}: {previous_response}",
        final="FINAL {name} ({role}) Q: {question}\nPREVS:\n{previous_responses}",
        split="SPLIT Q: {question}",
        execute="EXECUTE #{index} Q: {question} TASK {task} FOCUS {focus}",
        review="REVIEW #{reviewer_index} of #{target_index} Q: {question} FOCUS {focus} TASK {task}\nANSWER {target_response}",
        summarize="SUMMARIZE Q: {question}\n{results}\n{reviews}",
    )


@pytest.fixture
def parallel_config() -> ParallelConfig:
    return ParallelConfig(
        participants=["0", "1", "2"],
        coordinator="0",
        default_subtasks=[
            SubtaskTemplate(task="Analyze the technical side", focus="technical"),
            SubtaskTemplate(task="Work out practical steps", focus="practical"),
            SubtaskTemplate(task="Identify risks", focus="risk"),
        ],
    )


@pytest.fixture
def discussion_config(parallel_config: ParallelConfig) -> DiscussionConfig:
    return DiscussionConfig(
        rounds=1,
        max_rounds=3,
        panel=[
            RoleConfig(account="0", name="Expert A", role="Analyst"),
            RoleConfig(account="1", name="Expert B", role="Reviewer"),
            RoleConfig(account="2", name="Expert C", role="Synthesizer"),
        ],
        parallel=parallel_config,
    )


@pytest.fixture
def sample_app_config(
    tmp_path: Path,
    browser_config: BrowserConfig,
    fast_detector_config: DetectorConfig,
    selectors_config: SelectorsConfig,
    discussion_config: DiscussionConfig,
    sample_prompts_config: PromptsConfig,
) -> AppConfig:
    return AppConfig(
        browser=browser_config,
        detector=fast_detector_config,
        selectors=selectors_config,
        discussion=discussion_config,
        prompts=sample_prompts_config,
        storage=StorageConfig(db_path=tmp_path / "council.db", output_dir=tmp_path / "output"),
        server=ServerConfig(host="127.0.0.1", port=3000),
    )


@pytest.fixture
def room_store(tmp_path: Path):
    store = RoomStore(tmp_path / "data" / "council.db")
    yield store
    store.close()


@pytest.fixture
def fake_channel() -> FakeChannel:
    return FakeChannel()


def phase_responder(split_reply: str = SPLIT_JSON, failing: dict[str, str] | None = None):
    """Responder keyed on the first word of the prompt.

    failing maps a prompt kind (e.g. "EXECUTE") to the account that raises.
    """
    failing = failing or {}

    def respond(agent_id: str, prompt: str) -> str:
        kind = prompt.split()[0]
        if failing.get(kind) == agent_id:
            raise SendTriggerExhaustedError(agent_id, "All send methods failed")
        if kind == "SPLIT":
            return split_reply
        if kind == "SUMMARIZE":
            return f"Consolidated answer by {agent_id}"
        return f"{kind.lower()} by {agent_id}"

    return respond
